import logging
from typing import Dict, List, Optional

from data_manager_impl.core import PersistenceError
from utils.activity import ValidationError
from utils.date_keys import is_date_key

logger = logging.getLogger(__name__)

_MAX_EMOJI_LEN = 16


class ReactionsMixin:
    def toggle_reaction(self, habit_id: int, reactor_id: str, date_key: str, emoji: str) -> bool:
        """
        Adds the reactor's emoji to a habit day, or removes it if already there.
        Returns True when the reaction now exists.
        """
        emoji = (emoji or "").strip()
        if not emoji or len(emoji) > _MAX_EMOJI_LEN:
            raise ValidationError("A single emoji is required.")
        if not is_date_key(date_key):
            raise ValidationError(f"Not a YYYY-MM-DD date key: {date_key!r}")
        if self.get_habit(habit_id) is None:
            raise PersistenceError(f"Habit {habit_id} not found.")

        params = {"habit_id": int(habit_id), "reactor_id": str(reactor_id), "date_key": date_key, "emoji": emoji}
        key_filter = "habit_id = :habit_id AND reactor_id = :reactor_id AND date_key = :date_key AND emoji = :emoji"
        with self._lock:
            existing = self._execute_query(f"SELECT 1 AS hit FROM habit_reactions WHERE {key_filter}", params, fetch_one=True)
            if existing:
                self._execute_query(f"DELETE FROM habit_reactions WHERE {key_filter}", params, commit=True)
                return False
            self._execute_query(
                """
                INSERT INTO habit_reactions (habit_id, reactor_id, date_key, emoji)
                VALUES (:habit_id, :reactor_id, :date_key, :emoji)
                """,
                params,
                commit=True,
            )
            return True

    def list_reactions(self, habit_id: int, date_key: Optional[str] = None) -> Dict[str, Dict[str, List[str]]]:
        """Returns {date_key: {emoji: [reactor_id, ...]}}."""
        query = "SELECT date_key, emoji, reactor_id FROM habit_reactions WHERE habit_id = :habit_id"
        params = {"habit_id": int(habit_id)}
        if date_key is not None:
            query += " AND date_key = :date_key"
            params["date_key"] = date_key
        query += " ORDER BY date_key ASC, created_at ASC, reactor_id ASC"

        out: Dict[str, Dict[str, List[str]]] = {}
        for r in self._execute_query(query, params, fetch_all=True):
            out.setdefault(r["date_key"], {}).setdefault(r["emoji"], []).append(r["reactor_id"])
        return out
