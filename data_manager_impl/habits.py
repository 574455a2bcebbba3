import sqlite3
import json
import logging
import datetime
from typing import Any, Dict, List, Optional

import config
from data_manager_impl.core import PersistenceError
from utils.activity import (
    FREQUENCIES,
    Book,
    DailyActivity,
    Habit,
    ReadingActivity,
    ValidationError,
    empty_activity,
    normalize_activity,
    parse_books,
)
from utils.date_keys import parse_date_key, parse_timestamp, today_in

logger = logging.getLogger(__name__)

_SQLITE_TS_FORMAT = "%Y-%m-%d %H:%M:%S"


class HabitsMixin:
    def _row_to_habit(self, row: Dict[str, Any]) -> Habit:
        habit_id = int(row["id"])
        created_at = parse_timestamp(row.get("created_at"))
        if created_at is None:
            logger.warning(f"Habit {habit_id} has unreadable created_at {row.get('created_at')!r}; using epoch.")
            created_at = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)

        books: List[Book] = []
        try:
            raw_books = json.loads(row.get("books_json") or "[]")
        except (TypeError, ValueError):
            logger.warning(f"Habit {habit_id} has unreadable books_json; ignoring.")
            raw_books = []
        for raw in raw_books if isinstance(raw_books, list) else []:
            try:
                books.append(Book.from_dict(raw))
            except ValidationError as e:
                logger.warning(f"Habit {habit_id}: skipping malformed book config: {e}")

        try:
            blob = json.loads(row["activity_json"]) if row.get("activity_json") else None
        except (TypeError, ValueError):
            logger.warning(f"Habit {habit_id} has unreadable activity_json; treating as empty.")
            blob = None

        frequency = row.get("frequency") or "daily"
        return Habit(
            id=habit_id,
            name=row.get("name") or "Habit",
            frequency=frequency,
            created_at=created_at,
            activity=normalize_activity(frequency, blob, books),
            owner_id=row.get("owner_id"),
            books=books,
        )

    def create_habit(
        self,
        name: str,
        frequency: str = "daily",
        owner_id: Optional[str] = None,
        books: Optional[List[Dict[str, Any]]] = None,
        created_at: Optional[datetime.datetime] = None,
    ) -> Habit:
        """
        Creates a habit and returns it. Reading habits need at least one book;
        book configs are validated before anything is written.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Habit name is required.")
        if frequency not in FREQUENCIES:
            raise ValidationError(f"frequency must be one of {', '.join(FREQUENCIES)}.")
        parsed_books = parse_books(books) if frequency == "reading" else []
        if frequency == "reading" and not parsed_books:
            raise ValidationError("Reading habits need at least one book.")

        created = created_at or datetime.datetime.now(datetime.timezone.utc)
        if created.tzinfo is None:
            created = created.replace(tzinfo=datetime.timezone.utc)

        query = """
        INSERT INTO habits (name, frequency, owner_id, created_at, activity_json, books_json)
        VALUES (:name, :frequency, :owner_id, :created_at, :activity_json, :books_json)
        """
        params = {
            "name": name.strip(),
            "frequency": frequency,
            "owner_id": str(owner_id) if owner_id is not None else None,
            "created_at": created.astimezone(datetime.timezone.utc).strftime(_SQLITE_TS_FORMAT),
            "activity_json": json.dumps(empty_activity(frequency).to_blob()),
            "books_json": json.dumps([b.to_dict() for b in parsed_books]),
        }
        conn = self._get_connection()
        cur = None
        with self._lock:
            try:
                cur = conn.cursor()
                cur.execute(query, params)
                conn.commit()
                habit_id = int(cur.lastrowid)
            except sqlite3.Error as e:
                logger.error(f"create_habit failed: {e}")
                try:
                    conn.rollback()
                except sqlite3.Error as re:
                    logger.error(f"Rollback failed: {re}")
                raise PersistenceError(f"Failed to create habit: {e}") from e
            finally:
                if cur:
                    cur.close()

        logger.info(f"Created {frequency} habit {habit_id} for owner {owner_id}.")
        habit = self.get_habit(habit_id)
        if habit is None:
            raise PersistenceError(f"Habit {habit_id} vanished right after creation.")
        return habit

    def get_habit(self, habit_id: int) -> Optional[Habit]:
        query = """
        SELECT id, name, frequency, owner_id, created_at, activity_json, books_json
        FROM habits
        WHERE id = :habit_id
        """
        row = self._execute_query(query, {"habit_id": int(habit_id)}, fetch_one=True)
        return self._row_to_habit(row) if row else None

    def list_habits(self, owner_id: str, limit: int = 200) -> List[Habit]:
        limit = max(1, min(2000, int(limit)))
        query = """
        SELECT id, name, frequency, owner_id, created_at, activity_json, books_json
        FROM habits
        WHERE owner_id = :owner_id
        ORDER BY id DESC
        LIMIT :limit
        """
        rows = self._execute_query(query, {"owner_id": str(owner_id), "limit": limit}, fetch_all=True)
        return [self._row_to_habit(r) for r in rows]

    def save_habit_activity(self, habit_id: int, activity: Any) -> Habit:
        """
        Replaces the habit's whole activity blob. Accepts an activity object or a raw blob
        (normalized against the habit's frequency). Concurrent savers overwrite each other.
        """
        habit = self.get_habit(habit_id)
        if habit is None:
            raise PersistenceError(f"Habit {habit_id} not found.")
        if not isinstance(activity, (DailyActivity, ReadingActivity)):
            activity = normalize_activity(habit.frequency, activity, habit.books)
        if activity.frequency != habit.frequency:
            raise ValidationError(f"Habit {habit_id} is a {habit.frequency} habit; got {activity.frequency} activity.")

        self._execute_query(
            "UPDATE habits SET activity_json = :activity_json WHERE id = :habit_id",
            {"activity_json": json.dumps(activity.to_blob()), "habit_id": int(habit_id)},
            commit=True,
        )
        habit.activity = activity
        return habit

    def _load_for_edit(self, habit_id: int, date_key: str, frequency: str, today: Optional[datetime.date], tz_name: Optional[str]) -> Habit:
        tz_name = tz_name or config.DEFAULT_TIMEZONE
        habit = self.get_habit(habit_id)
        if habit is None:
            raise PersistenceError(f"Habit {habit_id} not found.")
        if habit.frequency != frequency:
            raise ValidationError(f"Habit {habit_id} is a {habit.frequency} habit.")
        try:
            day = parse_date_key(date_key)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        today = today or today_in(tz_name)
        creation = habit.creation_date(tz_name)
        if day < creation:
            raise ValidationError(f"{date_key} is before the habit was created ({creation.isoformat()}).")
        if day > today:
            raise ValidationError(f"{date_key} is in the future.")
        return habit

    def mark_habit_day(self, habit_id: int, date_key: str, today: Optional[datetime.date] = None, tz_name: Optional[str] = None) -> Habit:
        habit = self._load_for_edit(habit_id, date_key, "daily", today, tz_name)
        habit.activity.mark_done(date_key)
        return self.save_habit_activity(habit_id, habit.activity)

    def unmark_habit_day(self, habit_id: int, date_key: str, today: Optional[datetime.date] = None, tz_name: Optional[str] = None) -> Habit:
        habit = self._load_for_edit(habit_id, date_key, "daily", today, tz_name)
        habit.activity.unmark(date_key)
        return self.save_habit_activity(habit_id, habit.activity)

    def toggle_habit_day(self, habit_id: int, date_key: str, today: Optional[datetime.date] = None, tz_name: Optional[str] = None) -> Habit:
        habit = self._load_for_edit(habit_id, date_key, "daily", today, tz_name)
        habit.activity.toggle(date_key)
        return self.save_habit_activity(habit_id, habit.activity)

    def record_book_progress(
        self,
        habit_id: int,
        date_key: str,
        book_id: str,
        raw_value: Any,
        today: Optional[datetime.date] = None,
        tz_name: Optional[str] = None,
    ) -> Habit:
        habit = self._load_for_edit(habit_id, date_key, "reading", today, tz_name)
        book = habit.get_book(book_id)
        if book is None:
            raise ValidationError(f"Habit {habit_id} has no book {book_id!r}.")
        pages = habit.activity.record_book_progress(date_key, book, raw_value)
        logger.info(f"Habit {habit_id}: book {book.id} on {date_key} -> {pages} pages.")
        return self.save_habit_activity(habit_id, habit.activity)
