import math
import logging
import datetime
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Set, Union

import config
from utils.date_keys import is_date_key, parse_date_key, tz_from_name
from utils.reading_progress import derive_pages_read

logger = logging.getLogger(__name__)

FREQUENCIES = ("daily", "reading")
TRACKING_MODES = ("pages", "percentage")


class ValidationError(ValueError):
    """Raised for malformed input that must be rejected before any side effect."""
    pass


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class Book:
    id: str
    name: str
    total_pages: int
    tracking_mode: str = "pages"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Book":
        if not isinstance(data, dict):
            raise ValidationError("Book config must be an object.")
        book_id = data.get("id")
        if book_id is None or not str(book_id).strip():
            raise ValidationError("Book id is required.")
        total = _to_number(data.get("totalPages", data.get("total_pages")))
        if total is None or total <= 0 or int(total) != total:
            raise ValidationError(f"Book {book_id}: totalPages must be a positive integer.")
        mode = str(data.get("trackingMode", data.get("tracking_mode")) or "pages").strip().lower()
        if mode not in TRACKING_MODES:
            raise ValidationError(f"Book {book_id}: trackingMode must be one of {', '.join(TRACKING_MODES)}.")
        name = str(data.get("name") or "").strip() or f"Book {book_id}"
        return cls(id=str(book_id).strip(), name=name, total_pages=int(total), tracking_mode=mode)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "totalPages": self.total_pages, "trackingMode": self.tracking_mode}


@dataclass(frozen=True)
class ReadingEntry:
    book_id: str
    raw_value: float
    pages_read: int

    def to_dict(self) -> Dict[str, Any]:
        return {"bookId": self.book_id, "rawValue": self.raw_value, "pagesRead": self.pages_read}


@dataclass
class DailyActivity:
    """Check-off log: a date key is present when the habit was done that day."""
    frequency: ClassVar[str] = "daily"
    checked_days: Set[str] = field(default_factory=set)

    def has_activity(self, date_key: str) -> bool:
        return date_key in self.checked_days

    def activity_magnitude(self, date_key: str) -> int:
        return 1 if date_key in self.checked_days else 0

    def active_date_keys(self) -> List[str]:
        return sorted(self.checked_days)

    def mark_done(self, date_key: str) -> None:
        parse_date_key(date_key)
        self.checked_days.add(date_key)

    def unmark(self, date_key: str) -> None:
        self.checked_days.discard(date_key)

    def toggle(self, date_key: str) -> bool:
        if date_key in self.checked_days:
            self.unmark(date_key)
            return False
        self.mark_done(date_key)
        return True

    def to_blob(self) -> Dict[str, Any]:
        return {"checkedDays": sorted(self.checked_days)}


@dataclass
class ReadingActivity:
    """Per-day reading log: date key -> one entry per book with progress that day."""
    frequency: ClassVar[str] = "reading"
    log: Dict[str, List[ReadingEntry]] = field(default_factory=dict)

    def has_activity(self, date_key: str) -> bool:
        return self.activity_magnitude(date_key) > 0

    def activity_magnitude(self, date_key: str) -> int:
        return sum(max(0, e.pages_read) for e in self.log.get(date_key, []))

    def active_date_keys(self) -> List[str]:
        return sorted(k for k in self.log if self.activity_magnitude(k) > 0)

    def raw_value_for(self, book_id: str, date_key: str) -> Optional[float]:
        for entry in self.log.get(date_key, []):
            if entry.book_id == book_id:
                return entry.raw_value
        return None

    def _store_entry(self, date_key: str, book: Book, raw: float) -> int:
        entries = [e for e in self.log.get(date_key, []) if e.book_id != book.id]
        pages = 0
        if raw > 0:
            pages = derive_pages_read(book, date_key, raw, self.raw_value_for)
            entries.append(ReadingEntry(book_id=book.id, raw_value=raw, pages_read=pages))

        if any(e.pages_read > 0 for e in entries):
            self.log[date_key] = entries
        else:
            self.log.pop(date_key, None)
        return pages

    def record_book_progress(self, date_key: str, book: Book, raw_value: Any) -> int:
        """
        Stores (or replaces) a book's raw input for a day and returns the derived pages.
        Non-positive raw values remove the book's entry; a day left without any
        positive entry disappears from the log.

        In pages mode the next day's entry for the same book is derived from this
        day's value, so it is re-derived as well.
        """
        day = parse_date_key(date_key)
        raw = _to_number(raw_value)
        if raw is None:
            raise ValidationError(f"Progress value for book {book.id} must be a finite number.")

        pages = self._store_entry(date_key, book, raw)
        if book.tracking_mode == "pages":
            next_key = (day + datetime.timedelta(days=1)).isoformat()
            next_raw = self.raw_value_for(book.id, next_key)
            if next_raw is not None:
                self._store_entry(next_key, book, next_raw)
        return pages

    def to_blob(self) -> Dict[str, Any]:
        return {
            "readingLog": {
                key: [e.to_dict() for e in entries]
                for key, entries in sorted(self.log.items())
            }
        }


Activity = Union[DailyActivity, ReadingActivity]


def _normalize_daily(blob: Any) -> DailyActivity:
    if blob is None:
        return DailyActivity()
    if isinstance(blob, dict) and "checkedDays" in blob:
        raw_keys = blob.get("checkedDays") or []
    elif isinstance(blob, dict):
        # {date_key: true} shape
        raw_keys = [k for k, v in blob.items() if v]
    elif isinstance(blob, (list, tuple, set)):
        raw_keys = list(blob)
    else:
        logger.warning(f"Unrecognized daily activity shape {type(blob).__name__}; treating as empty.")
        return DailyActivity()

    if not isinstance(raw_keys, (list, tuple, set)):
        logger.warning("checkedDays is not a list; treating as empty.")
        return DailyActivity()

    days: Set[str] = set()
    for k in raw_keys:
        if is_date_key(k):
            days.add(k)
        else:
            logger.warning(f"Dropping invalid date key {k!r} from daily activity.")
    return DailyActivity(checked_days=days)


def _normalize_reading_entry(item: Any, date_key: str) -> Optional[ReadingEntry]:
    if not isinstance(item, dict):
        logger.warning(f"Dropping non-object reading entry on {date_key}: {item!r}")
        return None
    book_id = item.get("bookId", item.get("book_id"))
    raw = _to_number(item.get("rawValue", item.get("raw_value")))
    pages = _to_number(item.get("pagesRead", item.get("pages_read")))
    if book_id is None or pages is None:
        logger.warning(f"Dropping reading entry without bookId/pagesRead on {date_key}.")
        return None
    if pages < 0:
        logger.warning(f"Dropping negative pagesRead ({pages}) for book {book_id} on {date_key}.")
        return None
    return ReadingEntry(book_id=str(book_id), raw_value=raw if raw is not None else pages, pages_read=int(pages))


def _normalize_reading(blob: Any, books: List[Book]) -> ReadingActivity:
    if blob is None:
        return ReadingActivity()
    if isinstance(blob, dict) and isinstance(blob.get("readingLog"), dict):
        blob = blob["readingLog"]
    if not isinstance(blob, dict):
        logger.warning(f"Unrecognized reading activity shape {type(blob).__name__}; treating as empty.")
        return ReadingActivity()

    legacy_book_id = books[0].id if books else "legacy"
    log: Dict[str, List[ReadingEntry]] = {}
    for date_key, value in blob.items():
        if not is_date_key(date_key):
            logger.warning(f"Dropping invalid date key {date_key!r} from reading activity.")
            continue

        entries: List[ReadingEntry] = []
        if isinstance(value, list):
            for item in value:
                entry = _normalize_reading_entry(item, date_key)
                if entry is not None:
                    entries.append(entry)
        else:
            # Legacy single-book records: a bare number or {"pages": n}.
            legacy = value.get("pages") if isinstance(value, dict) else value
            number = _to_number(legacy)
            if number is None:
                logger.warning(f"Dropping unreadable reading value {value!r} on {date_key}.")
                continue
            if number > 0:
                entries.append(ReadingEntry(book_id=legacy_book_id, raw_value=number, pages_read=int(number)))

        if any(e.pages_read > 0 for e in entries):
            log[date_key] = entries
    return ReadingActivity(log=log)


def normalize_activity(frequency: str, blob: Any, books: Optional[List[Book]] = None) -> Activity:
    """
    Converts any stored activity shape (current or legacy) into the current variant.
    Never raises for malformed records; offending parts are dropped with a warning.
    """
    if frequency == "reading":
        return _normalize_reading(blob, books or [])
    if frequency != "daily":
        logger.warning(f"Unknown habit frequency {frequency!r}; reading activity as daily.")
    return _normalize_daily(blob)


def empty_activity(frequency: str) -> Activity:
    if frequency not in FREQUENCIES:
        raise ValidationError(f"frequency must be one of {', '.join(FREQUENCIES)}.")
    return ReadingActivity() if frequency == "reading" else DailyActivity()


def parse_books(raw_books: Any) -> List[Book]:
    if raw_books is None:
        return []
    if not isinstance(raw_books, list):
        raise ValidationError("books must be a list.")
    books = [Book.from_dict(b) for b in raw_books]
    ids = [b.id for b in books]
    if len(set(ids)) != len(ids):
        raise ValidationError("Book ids must be unique.")
    return books


@dataclass
class Habit:
    id: int
    name: str
    frequency: str
    created_at: datetime.datetime
    activity: Activity
    owner_id: Optional[str] = None
    books: List[Book] = field(default_factory=list)

    def creation_date(self, tz_name: Optional[str] = None) -> datetime.date:
        """Local calendar date of creation in the given (or default) timezone."""
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=datetime.timezone.utc)
        return created.astimezone(tz_from_name(tz_name or config.DEFAULT_TIMEZONE)).date()

    def get_book(self, book_id: str) -> Optional[Book]:
        for book in self.books:
            if book.id == str(book_id):
                return book
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "frequency": self.frequency,
            "createdAt": self.created_at.isoformat(),
            "ownerId": self.owner_id,
            "activity": self.activity.to_blob(),
            "books": [b.to_dict() for b in self.books],
        }
