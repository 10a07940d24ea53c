"""Structured logging helpers (PHI-safe)."""

from typing import Any


def build_log_context(
    *,
    tenant_id: str | None = None,
    staff_id: str | None = None,
    series_id: str | None = None,
    channel_id: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """
    Return a PHI-safe log context dict.

    Only identifiers are accepted: titles, client names and external event
    content never enter logs.
    """
    context: dict[str, Any] = {}
    if tenant_id:
        context["tenant_id"] = tenant_id
    if staff_id:
        context["staff_id"] = staff_id
    if series_id:
        context["series_id"] = series_id
    if channel_id:
        context["channel_id"] = channel_id
    if route:
        context["route"] = route
    return context
