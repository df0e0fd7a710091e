"""Shared utility functions for services and blueprints.

site_now:              current time in the site time zone (signatures, audit)
parse_datetime_input:  window timestamps → naive site-local datetime
format_display:        DD/MM/YYYY HH:MM for exports
"""
from datetime import datetime
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context

DEFAULT_SITE_TIMEZONE = "Asia/Kolkata"


def site_timezone() -> ZoneInfo:
    name = DEFAULT_SITE_TIMEZONE
    if has_app_context():
        name = current_app.config.get("SITE_TIMEZONE", DEFAULT_SITE_TIMEZONE)
    return ZoneInfo(name)


def site_now() -> datetime:
    """Return the current time as an aware datetime in the site time zone."""
    return datetime.now(site_timezone())


def parse_datetime_input(value):
    """Parse a window timestamp, raising ValueError on bad input.

    Windows are stored as naive site-local datetimes. Aware input is
    converted to the site zone first, then made naive.

    Supports: datetime objects, ISO 8601 strings (``2024-01-01T08:00``,
    ``2024-01-01 08:00:00``, ``2024-01-01T02:30:00Z``).
    """
    if value is None or value == "":
        raise ValueError("Timestamp is required")
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError as exc:
            raise ValueError(
                f"Invalid timestamp {value!r}. Use ISO 8601, e.g. 2024-01-01T08:00."
            ) from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(site_timezone()).replace(tzinfo=None)
    return parsed


def format_display(value) -> str:
    """Format a timestamp for printed records; '-' when empty."""
    if not value:
        return "-"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    return value.strftime("%d/%m/%Y %H:%M")
