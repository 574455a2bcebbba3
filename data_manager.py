# data_manager.py
import logging
from typing import Optional

from config import HABITS_DB_PATH
from data_manager_impl.core import DataManagerCore, PersistenceError
from data_manager_impl.habits import HabitsMixin
from data_manager_impl.completions import CompletionsMixin
from data_manager_impl.reactions import ReactionsMixin

logger = logging.getLogger(__name__)


class DataManager(HabitsMixin, CompletionsMixin, ReactionsMixin, DataManagerCore):
    def __init__(self, db_path: Optional[str] = None) -> None:
        path = db_path or HABITS_DB_PATH
        if not path:
            logger.error("SQLite database path (HABITS_DB_PATH) not set in environment variables.")
            raise PersistenceError("SQLite database path not set.")
        super().__init__(path)
