# tests/test_activity.py
import datetime
import pytest

from utils.activity import (
    Book,
    DailyActivity,
    Habit,
    ReadingActivity,
    ValidationError,
    normalize_activity,
    parse_books,
)

BOOK = Book(id="b1", name="Dune", total_pages=600)
OTHER = Book(id="b2", name="Emma", total_pages=400, tracking_mode="percentage")


def test_daily_mutations_are_idempotent():
    a = DailyActivity()
    a.mark_done("2024-06-10")
    a.mark_done("2024-06-10")
    assert a.active_date_keys() == ["2024-06-10"]
    assert a.has_activity("2024-06-10")
    assert a.activity_magnitude("2024-06-10") == 1
    assert a.activity_magnitude("2024-06-11") == 0

    a.unmark("2024-06-10")
    a.unmark("2024-06-10")
    assert a.active_date_keys() == []


def test_daily_toggle_and_bad_key():
    a = DailyActivity()
    assert a.toggle("2024-06-10") is True
    assert a.toggle("2024-06-10") is False
    with pytest.raises(ValueError):
        a.mark_done("2024-6-10")


def test_reading_progress_records_delta_and_is_idempotent():
    a = ReadingActivity()
    assert a.record_book_progress("2024-06-09", BOOK, 120) == 120
    assert a.record_book_progress("2024-06-10", BOOK, 145) == 25
    assert a.record_book_progress("2024-06-10", BOOK, 145) == 25
    assert len(a.log["2024-06-10"]) == 1
    assert a.activity_magnitude("2024-06-10") == 25


def test_reading_day_sums_books():
    a = ReadingActivity()
    a.record_book_progress("2024-06-10", BOOK, 30)
    a.record_book_progress("2024-06-10", OTHER, 10)  # 10% of 400
    assert a.activity_magnitude("2024-06-10") == 70
    assert a.raw_value_for("b2", "2024-06-10") == 10


def test_reading_zero_progress_removes_the_day():
    a = ReadingActivity()
    a.record_book_progress("2024-06-10", BOOK, 30)
    a.record_book_progress("2024-06-10", BOOK, 0)
    assert "2024-06-10" not in a.log
    assert a.has_activity("2024-06-10") is False


def test_reading_day_with_only_zero_deltas_is_dropped():
    a = ReadingActivity()
    a.record_book_progress("2024-06-09", BOOK, 50)
    # Same page as yesterday -> 0 pages read; no zero-value day is kept.
    assert a.record_book_progress("2024-06-10", BOOK, 50) == 0
    assert "2024-06-10" not in a.log
    assert a.active_date_keys() == ["2024-06-09"]


@pytest.mark.parametrize("raw", ["lots", "inf", float("nan"), float("-inf"), "1e400"])
def test_reading_rejects_non_numeric_value(raw):
    a = ReadingActivity()
    with pytest.raises(ValidationError):
        a.record_book_progress("2024-06-10", BOOK, raw)
    assert a.log == {}


def test_correcting_a_day_rederives_the_next_day():
    a = ReadingActivity()
    a.record_book_progress("2024-06-09", BOOK, 100)
    a.record_book_progress("2024-06-10", BOOK, 130)
    assert a.activity_magnitude("2024-06-10") == 30

    # The reader was really on page 110 on the 9th.
    assert a.record_book_progress("2024-06-09", BOOK, 110) == 110
    assert a.activity_magnitude("2024-06-10") == 20
    assert a.raw_value_for("b1", "2024-06-10") == 130

    # Percentage entries are cumulative and stay as they were.
    a.record_book_progress("2024-06-09", OTHER, 10)
    a.record_book_progress("2024-06-10", OTHER, 20)
    a.record_book_progress("2024-06-09", OTHER, 15)
    assert a.raw_value_for("b2", "2024-06-10") == 20
    assert a.activity_magnitude("2024-06-10") == 20 + 80


def test_normalize_daily_shapes():
    assert normalize_activity("daily", {"checkedDays": ["2024-06-10", "junk"]}).active_date_keys() == ["2024-06-10"]
    assert normalize_activity("daily", ["2024-06-11"]).active_date_keys() == ["2024-06-11"]
    assert normalize_activity("daily", {"2024-06-12": True, "2024-06-13": False}).active_date_keys() == ["2024-06-12"]
    assert normalize_activity("daily", None).active_date_keys() == []
    assert normalize_activity("daily", 42).active_date_keys() == []


def test_normalize_reading_current_and_legacy_shapes():
    current = {"readingLog": {"2024-06-10": [{"bookId": "b1", "rawValue": 40, "pagesRead": 40}]}}
    a = normalize_activity("reading", current, [BOOK])
    assert a.activity_magnitude("2024-06-10") == 40

    # Legacy: a bare number per day, attributed to the first book.
    legacy = normalize_activity("reading", {"2024-06-10": 12, "2024-06-11": {"pages": 7}, "2024-06-12": 0}, [BOOK])
    assert legacy.active_date_keys() == ["2024-06-10", "2024-06-11"]
    assert legacy.log["2024-06-10"][0].book_id == "b1"
    assert legacy.activity_magnitude("2024-06-11") == 7


def test_normalize_reading_drops_non_finite_numbers():
    blob = {
        "2024-06-08": float("inf"),
        "2024-06-09": {"pages": "nan"},
        "2024-06-10": [{"bookId": "b1", "rawValue": 40, "pagesRead": "nan"}, {"bookId": "b2", "pagesRead": float("inf")}],
        "2024-06-11": [{"bookId": "b1", "rawValue": "inf", "pagesRead": 12}],
    }
    a = normalize_activity("reading", blob, [BOOK, OTHER])
    assert a.active_date_keys() == ["2024-06-11"]
    assert a.raw_value_for("b1", "2024-06-11") == 12


def test_normalize_reading_drops_corrupt_entries():
    blob = {
        "readingLog": {
            "2024-06-10": [{"bookId": "b1", "pagesRead": -3}, {"bookId": "b2", "pagesRead": 5}, "nope"],
            "not-a-date": [{"bookId": "b1", "pagesRead": 5}],
            "2024-06-11": "abc",
        }
    }
    a = normalize_activity("reading", blob, [BOOK, OTHER])
    assert a.active_date_keys() == ["2024-06-10"]
    assert a.activity_magnitude("2024-06-10") == 5


def test_book_validation():
    assert Book.from_dict({"id": 1, "name": "X", "totalPages": 10}).id == "1"
    with pytest.raises(ValidationError):
        Book.from_dict({"id": "x", "totalPages": 0})
    with pytest.raises(ValidationError):
        Book.from_dict({"id": "x"})
    with pytest.raises(ValidationError):
        Book.from_dict({"id": "x", "totalPages": 100, "trackingMode": "chapters"})
    with pytest.raises(ValidationError):
        parse_books([{"id": "a", "totalPages": 1}, {"id": "a", "totalPages": 2}])
    for total in ("nan", "inf", float("inf"), "1e400"):
        with pytest.raises(ValidationError):
            Book.from_dict({"id": "x", "totalPages": total})


def test_habit_creation_date_is_local():
    # 05:00 UTC on June 10th is still June 9th in Los Angeles.
    habit = Habit(
        id=1,
        name="Run",
        frequency="daily",
        created_at=datetime.datetime(2024, 6, 10, 5, 0, tzinfo=datetime.timezone.utc),
        activity=DailyActivity(),
    )
    assert habit.creation_date("America/Los_Angeles") == datetime.date(2024, 6, 9)
    assert habit.creation_date("UTC") == datetime.date(2024, 6, 10)
