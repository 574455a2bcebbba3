# api_clients/todoist_client.py

import logging
import datetime
from typing import Any, Dict, List, Optional

import requests

import config

logger = logging.getLogger(__name__)


class TodoistError(Exception):
    """Base exception for Todoist API errors."""
    pass

class TodoistConnectionError(TodoistError):
    """Raised when a network problem occurs (DNS, refused, timeout, blocked transport)."""
    pass

class TodoistAPIError(TodoistError):
    """Raised when the API returns an error code (HTTP 4xx/5xx) or an unreadable body."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _headers(token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }


def _format_api_datetime(value: datetime.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _extract_events(data: Any) -> List[dict]:
    """The activity endpoint has answered with a bare list, {"events": [...]} and {"items": [...]}."""
    if isinstance(data, list):
        events = data
    elif isinstance(data, dict) and isinstance(data.get("events"), list):
        events = data["events"]
    elif isinstance(data, dict) and isinstance(data.get("items"), list):
        events = data["items"]
    else:
        logger.warning(f"Unexpected Todoist activity payload type: {type(data).__name__}")
        return []
    return [e for e in events if isinstance(e, dict)]


def get_completed_events(
    token: str,
    since: Optional[datetime.datetime] = None,
    until: Optional[datetime.datetime] = None,
    limit: Optional[int] = None,
) -> List[dict]:
    """
    Fetches "item completed" activity events.

    Only a single page is requested and `limit` is capped at
    config.TODOIST_ACTIVITY_PAGE_LIMIT. Events beyond one page are not fetched.
    Raises TodoistError subclasses on failure.
    """
    if not token:
        raise TodoistError("Todoist token is missing.")

    page_limit = config.TODOIST_ACTIVITY_PAGE_LIMIT
    effective_limit = page_limit if limit is None else max(1, min(page_limit, int(limit)))
    payload: Dict[str, Any] = {
        "object_type": "item",
        "event_type": "completed",
        "limit": effective_limit,
    }
    if since is not None:
        payload["since"] = _format_api_datetime(since)
    if until is not None:
        payload["until"] = _format_api_datetime(until)

    url = f"{config.TODOIST_SYNC_API_URL}/activity/get"
    try:
        response = requests.post(url, headers=_headers(token), json=payload, timeout=config.TODOIST_TIMEOUT_SECONDS)
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        logger.error(f"HTTP error during Todoist API request (get_completed_events): {e}")
        raise TodoistAPIError(f"Todoist API Error: {e}", status_code=status) from e
    except ValueError as e:
        logger.error(f"Error parsing JSON response from Todoist (get_completed_events): {e}")
        raise TodoistAPIError(f"Invalid API response: {e}") from e
    except requests.exceptions.RequestException as e:
        logger.error(f"Connection error during Todoist API request (get_completed_events): {e}")
        raise TodoistConnectionError(f"Connection error: {e}") from e

    events = _extract_events(data)
    if len(events) >= effective_limit:
        logger.warning(
            f"Todoist returned a full page ({len(events)} events); older completions in the window may be missing."
        )
    return events


def _get_rest(token: str, path: str, params: Optional[dict] = None, what: str = "resource") -> List[dict]:
    if not token:
        raise TodoistError("Todoist token is missing.")
    url = f"{config.TODOIST_REST_API_URL}/{path}"
    try:
        response = requests.get(url, headers=_headers(token), params=params, timeout=config.TODOIST_TIMEOUT_SECONDS)
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        logger.error(f"HTTP error fetching Todoist {what}: {e}")
        raise TodoistAPIError(f"Failed to fetch {what}: {e}", status_code=status) from e
    except ValueError as e:
        logger.error(f"Error parsing JSON response from Todoist ({what}): {e}")
        raise TodoistAPIError(f"Invalid API response: {e}") from e
    except requests.exceptions.RequestException as e:
        logger.error(f"Connection error fetching Todoist {what}: {e}")
        raise TodoistConnectionError(f"Connection error: {e}") from e

    if not isinstance(data, list):
        raise TodoistAPIError(f"Expected a list of {what}, got {type(data).__name__}")
    return [item for item in data if isinstance(item, dict)]


def get_projects(token: str) -> List[dict]:
    """All projects of the token's user."""
    return _get_rest(token, "projects", what="projects")


def get_labels(token: str) -> List[dict]:
    return _get_rest(token, "labels", what="labels")


def get_tasks(token: str, project_id: Optional[str] = None) -> List[dict]:
    """Active tasks, optionally limited to one project."""
    params = {"project_id": str(project_id)} if project_id is not None else None
    return _get_rest(token, "tasks", params=params, what="tasks")
