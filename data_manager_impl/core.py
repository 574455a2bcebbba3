import sqlite3
import os
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the habit store cannot be read or written."""
    pass


class DataManagerCore:
    def __init__(self, db_path: str) -> None:
        if not db_path:
            logger.error("SQLite database path (db_path) not set.")
            raise PersistenceError("SQLite database path not set.")

        self.db_path = db_path

        try:
            logger.info(f"Attempting to connect to database at: {db_path}")

            db_dir = os.path.dirname(db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
                logger.info(f"Ensured directory exists: {db_dir}")

            self.conn = sqlite3.connect(db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self._lock = threading.RLock()

            logger.info(f"Successfully connected to SQLite database at {db_path}.")
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to SQLite Database: {e}")
            raise PersistenceError(f"Failed to connect to SQLite Database: {e}") from e
        except OSError as e:
            logger.error(f"Failed to create directory for SQLite database: {e}")
            raise PersistenceError(f"Failed to create directory for SQLite database: {e}") from e

        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Returns the active connection."""
        return self.conn

    def _execute_query(
        self,
        query: str,
        params: Optional[Dict[str, Any]] = None,
        fetch_one: bool = False,
        fetch_all: bool = False,
        commit: bool = False,
    ) -> Any:
        """
        Executes a given SQL query.

        Return values:
        - commit=True  -> int rowcount
        - fetch_one=True -> dict|None
        - fetch_all=True -> list[dict]
        - otherwise -> None

        Any sqlite3.Error is rolled back and raised as PersistenceError.
        """
        conn = self._get_connection()
        cursor = None
        # Connection is shared across threads; ensure serialized access.
        with self._lock:
            try:
                cursor = conn.cursor()
                if params:
                    cursor.execute(query, params)
                else:
                    cursor.execute(query)

                if commit:
                    conn.commit()
                    return cursor.rowcount

                if fetch_one:
                    row = cursor.fetchone()
                    return dict(row) if row else None
                if fetch_all:
                    return [dict(row) for row in cursor.fetchall()]
                return None
            except sqlite3.Error as e:
                logger.error(f"Database query error: {e}\nQuery: {query}\nParams: {params}")
                try:
                    conn.rollback()
                except sqlite3.Error as re:
                    logger.error(f"Rollback failed: {re}")
                raise PersistenceError(f"Database query failed: {e}") from e
            finally:
                if cursor:
                    cursor.close()

    def _execute_many(self, query: str, rows: Iterable[Dict[str, Any]]) -> int:
        """Runs `query` once per row inside a single transaction. All or nothing."""
        rows = list(rows)
        if not rows:
            return 0
        conn = self._get_connection()
        cursor = None
        with self._lock:
            try:
                cursor = conn.cursor()
                cursor.executemany(query, rows)
                conn.commit()
                return len(rows)
            except sqlite3.Error as e:
                logger.error(f"Database batch error: {e}\nQuery: {query}\nRows: {len(rows)}")
                try:
                    conn.rollback()
                except sqlite3.Error as re:
                    logger.error(f"Rollback failed: {re}")
                raise PersistenceError(f"Database batch write failed: {e}") from e
            finally:
                if cursor:
                    cursor.close()

    def _table_columns(self, table_name: str) -> List[str]:
        cols = self._execute_query(f"PRAGMA table_info({table_name});", fetch_all=True) or []
        return [c["name"] for c in cols if isinstance(c, dict) and "name" in c]

    def _initialize_db(self) -> None:
        """Creates tables if they don't exist and applies column migrations."""

        def create_table_if_not_exists(table_name: str, create_sql: str) -> None:
            self._execute_query(create_sql, commit=True)
            logger.info(f"Table {table_name} checked/created.")

        # Habits. activity_json holds the whole per-habit activity blob and is
        # rewritten on every save (last writer wins).
        create_habits_sql = """
        CREATE TABLE IF NOT EXISTS habits (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            frequency TEXT NOT NULL CHECK (frequency IN ('daily', 'reading')),
            owner_id TEXT, -- NULL for guest-created habits
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP, -- UTC "YYYY-MM-DD HH:MM:SS"
            activity_json TEXT,
            books_json TEXT
        )
        """
        create_table_if_not_exists("habits", create_habits_sql)

        # Databases created before reading habits existed lack books_json.
        if "books_json" not in self._table_columns("habits"):
            logger.info("Column 'books_json' not found in 'habits'. Adding it.")
            self._execute_query("ALTER TABLE habits ADD COLUMN books_json TEXT;", commit=True)
        self._execute_query("CREATE INDEX IF NOT EXISTS idx_habits_owner ON habits(owner_id, id);", commit=True)

        create_todoist_completions_sql = """
        CREATE TABLE IF NOT EXISTS todoist_completions (
            user_id TEXT NOT NULL,
            task_id TEXT NOT NULL,
            completion_date TEXT NOT NULL, -- local YYYY-MM-DD
            synced_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (user_id, task_id, completion_date)
        )
        """
        create_table_if_not_exists("todoist_completions", create_todoist_completions_sql)
        self._execute_query(
            "CREATE INDEX IF NOT EXISTS idx_todoist_completions_date ON todoist_completions(user_id, completion_date);",
            commit=True,
        )

        create_habit_reactions_sql = """
        CREATE TABLE IF NOT EXISTS habit_reactions (
            habit_id INTEGER NOT NULL,
            reactor_id TEXT NOT NULL,
            date_key TEXT NOT NULL,
            emoji TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (habit_id, reactor_id, date_key, emoji),
            FOREIGN KEY (habit_id) REFERENCES habits (id)
        )
        """
        create_table_if_not_exists("habit_reactions", create_habit_reactions_sql)

        logger.info("Database initialization check complete.")

    def close(self) -> None:
        """Closes the database connection."""
        if hasattr(self, 'conn') and self.conn:
            try:
                self.conn.close()
                logger.info("SQLite database connection closed.")
            except sqlite3.Error as e:
                logger.error(f"Error closing SQLite database connection: {e}")
