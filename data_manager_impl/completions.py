import logging
import datetime
from typing import Dict, Iterable, List, Optional, Tuple, Union

from utils.date_keys import format_date, is_date_key

logger = logging.getLogger(__name__)

DateLike = Union[str, datetime.date]

_UPSERT_COMPLETION_SQL = """
INSERT INTO todoist_completions (user_id, task_id, completion_date)
VALUES (:user_id, :task_id, :completion_date)
ON CONFLICT(user_id, task_id, completion_date) DO UPDATE SET synced_at = CURRENT_TIMESTAMP
"""


def _date_param(value: DateLike) -> str:
    key = format_date(value) if isinstance(value, datetime.date) else value
    if not is_date_key(key):
        raise ValueError(f"Not a YYYY-MM-DD date key: {value!r}")
    return key


class CompletionsMixin:
    def upsert_completion(self, user_id: str, task_id: str, completion_date: DateLike) -> None:
        """Records one completion; repeated calls for the same key leave a single row."""
        self._execute_query(
            _UPSERT_COMPLETION_SQL,
            {"user_id": str(user_id), "task_id": str(task_id), "completion_date": _date_param(completion_date)},
            commit=True,
        )

    def upsert_completions(self, rows: Iterable[Tuple[str, str, DateLike]]) -> int:
        """
        Upserts (user_id, task_id, completion_date) rows in one transaction and returns
        how many were submitted. Raises PersistenceError if the batch fails.
        """
        params = [
            {"user_id": str(u), "task_id": str(t), "completion_date": _date_param(d)}
            for u, t, d in rows
        ]
        written = self._execute_many(_UPSERT_COMPLETION_SQL, params)
        if written:
            logger.info(f"Upserted {written} Todoist completion rows.")
        return written

    def query_completions(
        self,
        user_id: str,
        task_ids: Optional[Iterable[str]] = None,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
    ) -> Dict[str, List[str]]:
        """Returns {task_id: [completion_date, ...]} with dates ascending."""
        query = """
        SELECT task_id, completion_date
        FROM todoist_completions
        WHERE user_id = :user_id
        """
        params: Dict[str, object] = {"user_id": str(user_id)}
        if start is not None:
            query += " AND completion_date >= :start"
            params["start"] = _date_param(start)
        if end is not None:
            query += " AND completion_date <= :end"
            params["end"] = _date_param(end)
        ids = [str(t) for t in task_ids] if task_ids is not None else None
        if ids is not None:
            if not ids:
                return {}
            placeholders = ", ".join(f":t{i}" for i in range(len(ids)))
            query += f" AND task_id IN ({placeholders})"
            for i, t in enumerate(ids):
                params[f"t{i}"] = t
        query += " ORDER BY task_id ASC, completion_date ASC"

        out: Dict[str, List[str]] = {}
        for r in self._execute_query(query, params, fetch_all=True):
            out.setdefault(r["task_id"], []).append(r["completion_date"])
        return out

    def count_completions(self, user_id: str) -> int:
        row = self._execute_query(
            "SELECT COUNT(*) AS n FROM todoist_completions WHERE user_id = :user_id",
            {"user_id": str(user_id)},
            fetch_one=True,
        )
        return int(row["n"]) if row else 0
