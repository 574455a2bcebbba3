"""
Todoist completion sync.

Pulls "item completed" events, maps each one to (user, task, local date) and
upserts the rows so that re-running a sync for the same window changes nothing.
"""
import asyncio
import logging
import datetime
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

import config
from api_clients import todoist_client
from api_clients.todoist_client import TodoistError
from utils.activity import ValidationError
from utils.date_keys import (
    add_days,
    format_date,
    is_date_key,
    month_bounds,
    parse_date_key,
    parse_timestamp,
    resolve_local_date,
)

logger = logging.getLogger(__name__)

# Event payloads are not schema-stable; the first usable field wins.
TASK_ID_FIELDS = ("object_id", "item_id", "task_id", "id")
TIMESTAMP_FIELDS = ("event_date", "date_completed", "completed_at", "completed_date", "created_at", "date")

CompletionRow = Tuple[str, str, str]
WindowBound = Union[None, str, datetime.date, datetime.datetime]


@dataclass(frozen=True)
class NormalizedEvent:
    task_id: str
    timestamp: Union[datetime.datetime, datetime.date]


@dataclass(frozen=True)
class SyncResult:
    synced_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "synced": self.synced_count}


def _parse_candidate(value: Any) -> Union[None, datetime.datetime, datetime.date]:
    if isinstance(value, str) and is_date_key(value.strip()):
        return parse_date_key(value.strip())
    return parse_timestamp(value)


def normalize_event(raw: Any) -> Optional[NormalizedEvent]:
    """Returns None (with a warning) for events without a task id or a usable timestamp."""
    if not isinstance(raw, dict):
        logger.warning(f"Dropping non-object Todoist event: {raw!r}")
        return None

    task_id = None
    for name in TASK_ID_FIELDS:
        value = raw.get(name)
        if value is not None and str(value).strip():
            task_id = str(value).strip()
            break
    if task_id is None:
        logger.warning(f"Dropping Todoist event without a task id (fields: {sorted(raw.keys())}).")
        return None

    for name in TIMESTAMP_FIELDS:
        value = raw.get(name)
        if value is None:
            continue
        parsed = _parse_candidate(value)
        if parsed is not None:
            return NormalizedEvent(task_id=task_id, timestamp=parsed)
    logger.warning(f"Dropping Todoist event for task {task_id}: no parseable timestamp.")
    return None


def current_month_window(now: Optional[datetime.datetime] = None) -> Tuple[datetime.date, datetime.date]:
    """First and last day of the current month on the server's clock."""
    now = now or datetime.datetime.now()
    return month_bounds(now.year, now.month)


def _coerce_bound(value: WindowBound, name: str) -> Optional[datetime.date]:
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return parse_date_key(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"{name} must be a YYYY-MM-DD date.") from e


def resolve_window(since: WindowBound = None, until: WindowBound = None, now: Optional[datetime.datetime] = None) -> Tuple[datetime.date, datetime.date]:
    default_since, default_until = current_month_window(now)
    start = _coerce_bound(since, "since") or default_since
    end = _coerce_bound(until, "until") or default_until
    if start > end:
        raise ValidationError(f"since ({start.isoformat()}) is after until ({end.isoformat()}).")
    return start, end


def collect_completions(
    events: Iterable[Any],
    user_id: str,
    tz_name: Optional[str],
    since: datetime.date,
    until: datetime.date,
) -> List[CompletionRow]:
    """
    Normalizes events into unique (user_id, task_id, local date) rows whose local date
    lies within [since, until].
    """
    tz = tz_name or config.DEFAULT_TIMEZONE
    seen: Set[CompletionRow] = set()
    rows: List[CompletionRow] = []
    for raw in events:
        event = normalize_event(raw)
        if event is None:
            continue
        local_date = resolve_local_date(event.timestamp, tz)
        if local_date is None or not (since <= local_date <= until):
            continue
        row = (str(user_id), event.task_id, format_date(local_date))
        if row in seen:
            continue
        seen.add(row)
        rows.append(row)
    return rows


def _fetch_window_events(token: str, since: datetime.date, until: datetime.date) -> List[dict]:
    # Pad by a day on each side: the window is in local dates, the API filters on UTC instants.
    since_dt = datetime.datetime.combine(add_days(since, -1), datetime.time.min, tzinfo=datetime.timezone.utc)
    until_dt = datetime.datetime.combine(add_days(until, 2), datetime.time.min, tzinfo=datetime.timezone.utc)
    return todoist_client.get_completed_events(token, since=since_dt, until=until_dt)


def sync_completions(
    data_manager,
    token: str,
    user_id: str,
    tz_name: Optional[str] = None,
    since: WindowBound = None,
    until: WindowBound = None,
    raise_upstream: bool = False,
    now: Optional[datetime.datetime] = None,
) -> SyncResult:
    """
    Fetches completed tasks and upserts them as (user_id, task_id, completion_date) rows.

    Todoist failures yield SyncResult(0) unless `raise_upstream` is set.
    Persistence failures always raise.
    """
    if not user_id or not token:
        raise ValidationError("user id and Todoist token are required.")
    start, end = resolve_window(since, until, now)

    try:
        events = _fetch_window_events(token, start, end)
    except TodoistError as e:
        if raise_upstream:
            raise
        logger.warning(f"Todoist unavailable, skipping completion sync for user {user_id}: {e}")
        return SyncResult(synced_count=0)

    rows = collect_completions(events, str(user_id), tz_name, start, end)
    if rows:
        data_manager.upsert_completions(rows)
    logger.info(
        f"Todoist sync for user {user_id}: {len(events)} events -> {len(rows)} completions "
        f"({start.isoformat()}..{end.isoformat()}, tz={tz_name or config.DEFAULT_TIMEZONE})."
    )
    return SyncResult(synced_count=len(rows))


async def sync_completions_async(data_manager, token: str, user_id: str, **kwargs) -> SyncResult:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(sync_completions, data_manager, token, user_id, **kwargs))


def fetch_completion_overlay(
    token: str,
    tz_name: Optional[str] = None,
    task_ids: Optional[Iterable[str]] = None,
    since: WindowBound = None,
    until: WindowBound = None,
    now: Optional[datetime.datetime] = None,
) -> Dict[str, List[str]]:
    """
    Read-through view of completions for calendar overlays: {task_id: [date_key, ...]}.
    Nothing is written, and any Todoist failure yields an empty mapping.
    """
    start, end = resolve_window(since, until, now)
    try:
        events = _fetch_window_events(token, start, end)
    except TodoistError as e:
        logger.warning(f"Todoist unavailable, showing no completion overlay: {e}")
        return {}

    wanted = {str(t) for t in task_ids} if task_ids is not None else None
    out: Dict[str, List[str]] = {}
    for _, task_id, day in collect_completions(events, "", tz_name, start, end):
        if wanted is not None and task_id not in wanted:
            continue
        out.setdefault(task_id, []).append(day)
    return {task_id: sorted(days) for task_id, days in out.items()}
