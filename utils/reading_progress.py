import math
import logging
from typing import Callable, Optional

from utils.date_keys import add_days, format_date, parse_date_key

logger = logging.getLogger(__name__)

# (book_id, date_key) -> raw value recorded for that book on that day, or None.
RawValueLookup = Callable[[str, str], Optional[float]]


def round_half_up(value: float) -> int:
    return int(math.floor(float(value) + 0.5))


def derive_pages_read(book, date_key: str, raw_value_today: float, raw_value_yesterday_lookup: RawValueLookup) -> int:
    """
    Derives how many pages a day's raw input stands for.

    pages mode: the raw value is the page the reader is on. The day's pages are the
    difference to yesterday's raw value. Without a value for yesterday (first entry or
    a gap in the log) the whole raw value is attributed to today; that over-counts
    after a gap and is accepted as the price of not having history.

    percentage mode: the raw value is overall progress (0-100). The result is the
    cumulative page count the percentage implies, not a daily delta.
    """
    try:
        raw_today = float(raw_value_today)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(raw_today) or raw_today <= 0:
        return 0

    if book.tracking_mode == "percentage":
        pct = min(100.0, raw_today)
        return max(0, round_half_up(pct / 100.0 * float(book.total_pages)))

    yesterday_key = format_date(add_days(parse_date_key(date_key), -1))
    raw_yesterday = raw_value_yesterday_lookup(book.id, yesterday_key)
    if raw_yesterday is None:
        return round_half_up(raw_today)
    try:
        prev = float(raw_yesterday)
    except (TypeError, ValueError):
        prev = math.nan
    if not math.isfinite(prev):
        logger.warning(f"Ignoring non-numeric baseline {raw_yesterday!r} for book {book.id} on {yesterday_key}.")
        return round_half_up(raw_today)
    return max(0, round_half_up(raw_today - prev))
