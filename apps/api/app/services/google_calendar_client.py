"""Google Calendar API client - events delta fetch, event writes, free/busy and push channels.

All calls use httpx.AsyncClient with GOOGLE_API_TIMEOUT_SECONDS. Failures are
raised as ProviderApiError (or SyncCursorExpired for HTTP 410) so callers can
decide how to degrade.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from app.core.config import settings
from app.services.errors import ProviderApiError, SyncCursorExpired

logger = logging.getLogger(__name__)

PAGE_SIZE = 250
MAX_PAGES = 40


# =============================================================================
# Types
# =============================================================================

@dataclass
class EventPage:
    """Accumulated result of one (possibly paginated) events.list call."""
    items: list[dict[str, Any]] = field(default_factory=list)
    next_sync_token: str | None = None


@dataclass
class BusyInterval:
    start: datetime
    end: datetime


@dataclass
class CalendarSummary:
    """One entry of the user's calendar list (no event content)."""
    id: str
    summary: str
    primary: bool = False
    access_role: str | None = None
    time_zone: str | None = None


@dataclass
class WatchChannel:
    """A push channel as acknowledged by Google."""
    channel_id: str
    resource_id: str
    expiration: datetime | None


# =============================================================================
# Helpers
# =============================================================================

def _client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.GOOGLE_CALENDAR_API_BASE,
        timeout=settings.GOOGLE_API_TIMEOUT_SECONDS,
        transport=transport,
    )


def _auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _events_path(calendar_id: str) -> str:
    return f"/calendars/{quote(calendar_id, safe='')}/events"


def _isoformat(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _parse_instant(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _event_path(calendar_id: str, event_id: str) -> str:
    return f"{_events_path(calendar_id)}/{quote(event_id, safe='')}"


# =============================================================================
# Events
# =============================================================================

async def list_events(
    access_token: str,
    calendar_id: str,
    sync_token: str | None = None,
    time_min: datetime | None = None,
    time_max: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> EventPage:
    """
    Fetch event changes for a calendar.

    With ``sync_token`` only the delta since that cursor is requested;
    otherwise the bounded [time_min, time_max] window is listed. Follows
    nextPageToken until the final page, which carries nextSyncToken.

    Raises:
        SyncCursorExpired: Google returned 410 for the sync token
        ProviderApiError: any other non-2xx response, timeout or transport error
    """
    base_params: dict[str, str] = {
        "singleEvents": "true",
        "maxResults": str(PAGE_SIZE),
    }
    if sync_token:
        base_params["syncToken"] = sync_token
    else:
        if time_min is not None:
            base_params["timeMin"] = _isoformat(time_min)
        if time_max is not None:
            base_params["timeMax"] = _isoformat(time_max)

    page = EventPage()
    page_token: str | None = None

    try:
        async with _client(transport) as client:
            for _ in range(MAX_PAGES):
                params = dict(base_params)
                if page_token:
                    params["pageToken"] = page_token

                response = await client.get(
                    _events_path(calendar_id),
                    headers=_auth_headers(access_token),
                    params=params,
                )

                if response.status_code == 410:
                    raise SyncCursorExpired("Google sync token is no longer valid")
                if response.status_code != 200:
                    raise ProviderApiError(
                        f"Google events.list failed with HTTP {response.status_code}",
                        status_code=response.status_code,
                    )

                data = response.json()
                page.items.extend(data.get("items", []))
                page_token = data.get("nextPageToken")
                if not page_token:
                    page.next_sync_token = data.get("nextSyncToken")
                    break
            else:
                logger.warning("Google events.list stopped after %s pages", MAX_PAGES)
    except httpx.HTTPError as exc:
        raise ProviderApiError(f"Google events.list request failed: {type(exc).__name__}") from exc

    return page


async def insert_event(
    access_token: str,
    calendar_id: str,
    body: dict[str, Any],
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """
    Create an event and return Google's representation of it.

    Raises:
        ProviderApiError: non-2xx response, timeout or transport error
    """
    try:
        async with _client(transport) as client:
            response = await client.post(
                _events_path(calendar_id),
                headers=_auth_headers(access_token),
                json=body,
            )
    except httpx.HTTPError as exc:
        raise ProviderApiError(f"Google events.insert request failed: {type(exc).__name__}") from exc

    if response.status_code not in (200, 201):
        raise ProviderApiError(
            f"Google events.insert failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )
    return response.json()


async def patch_event(
    access_token: str,
    calendar_id: str,
    event_id: str,
    body: dict[str, Any],
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """
    Update the given fields of an existing event.

    Raises:
        ProviderApiError: non-2xx response (404/410 when the event is gone)
    """
    try:
        async with _client(transport) as client:
            response = await client.patch(
                _event_path(calendar_id, event_id),
                headers=_auth_headers(access_token),
                json=body,
            )
    except httpx.HTTPError as exc:
        raise ProviderApiError(f"Google events.patch request failed: {type(exc).__name__}") from exc

    if response.status_code != 200:
        raise ProviderApiError(
            f"Google events.patch failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )
    return response.json()


async def delete_event(
    access_token: str,
    calendar_id: str,
    event_id: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """
    Delete an event. 404 and 410 mean it is already gone and are not errors.

    Raises:
        ProviderApiError: any other failure
    """
    try:
        async with _client(transport) as client:
            response = await client.delete(
                _event_path(calendar_id, event_id),
                headers=_auth_headers(access_token),
            )
    except httpx.HTTPError as exc:
        raise ProviderApiError(f"Google events.delete request failed: {type(exc).__name__}") from exc

    if response.status_code not in (200, 204, 404, 410):
        raise ProviderApiError(
            f"Google events.delete failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )


# =============================================================================
# Free/busy and calendar list
# =============================================================================

async def query_free_busy(
    access_token: str,
    calendar_id: str,
    time_min: datetime,
    time_max: datetime,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[BusyInterval]:
    """
    Busy intervals of one calendar between two instants.

    Only start/end pairs come back from Google, never event details.

    Raises:
        ProviderApiError: non-200 response, a per-calendar error, or transport failure
    """
    body = {
        "timeMin": _isoformat(time_min),
        "timeMax": _isoformat(time_max),
        "items": [{"id": calendar_id}],
    }
    try:
        async with _client(transport) as client:
            response = await client.post(
                "/freeBusy",
                headers=_auth_headers(access_token),
                json=body,
            )
    except httpx.HTTPError as exc:
        raise ProviderApiError(f"Google freeBusy request failed: {type(exc).__name__}") from exc

    if response.status_code != 200:
        raise ProviderApiError(
            f"Google freeBusy failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )

    calendar = response.json().get("calendars", {}).get(calendar_id, {})
    if calendar.get("errors"):
        reason = calendar["errors"][0].get("reason", "unknown")
        raise ProviderApiError(f"Google freeBusy rejected the calendar: {reason}")
    return [
        BusyInterval(start=_parse_instant(b["start"]), end=_parse_instant(b["end"]))
        for b in calendar.get("busy", [])
    ]


async def list_calendars(
    access_token: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[CalendarSummary]:
    """
    Calendars the user can see, for picking the synced calendar.

    Raises:
        ProviderApiError: non-200 response, timeout or transport error
    """
    calendars: list[CalendarSummary] = []
    page_token: str | None = None
    try:
        async with _client(transport) as client:
            for _ in range(MAX_PAGES):
                params = {"maxResults": str(PAGE_SIZE)}
                if page_token:
                    params["pageToken"] = page_token
                response = await client.get(
                    "/users/me/calendarList",
                    headers=_auth_headers(access_token),
                    params=params,
                )
                if response.status_code != 200:
                    raise ProviderApiError(
                        f"Google calendarList failed with HTTP {response.status_code}",
                        status_code=response.status_code,
                    )

                data = response.json()
                calendars.extend(
                    CalendarSummary(
                        id=item["id"],
                        summary=item.get("summaryOverride") or item.get("summary", ""),
                        primary=bool(item.get("primary", False)),
                        access_role=item.get("accessRole"),
                        time_zone=item.get("timeZone"),
                    )
                    for item in data.get("items", [])
                )
                page_token = data.get("nextPageToken")
                if not page_token:
                    break
    except httpx.HTTPError as exc:
        raise ProviderApiError(f"Google calendarList request failed: {type(exc).__name__}") from exc

    return calendars


    return page


# =============================================================================
# Push channels
# =============================================================================

async def watch_events(
    access_token: str,
    calendar_id: str,
    channel_id: str,
    webhook_url: str,
    expiration: datetime,
    transport: httpx.AsyncBaseTransport | None = None,
) -> WatchChannel:
    """
    Register a push channel for a calendar's events.

    Raises:
        ProviderApiError: Google rejected the watch request or it failed in transit
    """
    body = {
        "id": channel_id,
        "type": "web_hook",
        "address": webhook_url,
        "expiration": str(int(expiration.timestamp() * 1000)),
    }
    try:
        async with _client(transport) as client:
            response = await client.post(
                f"{_events_path(calendar_id)}/watch",
                headers=_auth_headers(access_token),
                json=body,
            )
    except httpx.HTTPError as exc:
        raise ProviderApiError(f"Google events.watch request failed: {type(exc).__name__}") from exc

    if response.status_code != 200:
        raise ProviderApiError(
            f"Google events.watch failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )

    data = response.json()
    expires_at = None
    if data.get("expiration"):
        expires_at = datetime.fromtimestamp(int(data["expiration"]) / 1000, tz=expiration.tzinfo)
    return WatchChannel(
        channel_id=data.get("id", channel_id),
        resource_id=data["resourceId"],
        expiration=expires_at,
    )


async def stop_channel(
    access_token: str,
    channel_id: str,
    resource_id: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """
    Stop a push channel.

    A 404 means the channel is already gone and is not an error.

    Raises:
        ProviderApiError: any other failure
    """
    try:
        async with _client(transport) as client:
            response = await client.post(
                "/channels/stop",
                headers=_auth_headers(access_token),
                json={"id": channel_id, "resourceId": resource_id},
            )
    except httpx.HTTPError as exc:
        raise ProviderApiError(f"Google channels.stop request failed: {type(exc).__name__}") from exc

    if response.status_code not in (200, 204, 404):
        raise ProviderApiError(
            f"Google channels.stop failed with HTTP {response.status_code}",
            status_code=response.status_code,
        )
