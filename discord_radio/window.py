from __future__ import annotations

import datetime as dt
from typing import Optional, Union

from .models import TimeWindow


WINDOW_SPAN = dt.timedelta(hours=24)


def _zone(utc_offset_hours: float) -> dt.timezone:
    return dt.timezone(dt.timedelta(hours=utc_offset_hours))


def resolve_window(
    date: Optional[Union[str, dt.date]] = None,
    now: Optional[dt.datetime] = None,
    utc_offset_hours: float = 9,
    boundary_hour: int = 4,
) -> TimeWindow:
    """Resolve the 24h window ending at the daily boundary hour.

    With ``date`` the window ends at that civil date's boundary (in the fixed
    offset). Otherwise it ends at the most recent boundary at or before ``now``.
    A malformed date string raises ``ValueError``.
    """
    zone = _zone(utc_offset_hours)
    if date is not None:
        if isinstance(date, str):
            date = dt.date.fromisoformat(date)
        end_local = dt.datetime.combine(date, dt.time(boundary_hour), tzinfo=zone)
    else:
        now = now or dt.datetime.now(dt.timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=dt.timezone.utc)
        now_local = now.astimezone(zone)
        end_local = now_local.replace(hour=boundary_hour, minute=0, second=0, microsecond=0)
        if now_local < end_local:
            end_local -= dt.timedelta(days=1)
    end = end_local.astimezone(dt.timezone.utc)
    return TimeWindow(start=end - WINDOW_SPAN, end=end)


def format_local(value: dt.datetime, utc_offset_hours: float = 9, zone_label: str = "JST") -> str:
    local = value.astimezone(_zone(utc_offset_hours))
    return f"{local:%Y-%m-%d %H:%M} {zone_label}".rstrip()


def window_label(window: TimeWindow, utc_offset_hours: float = 9, zone_label: str = "JST") -> str:
    return (
        f"{format_local(window.start, utc_offset_hours, zone_label)} -> "
        f"{format_local(window.end, utc_offset_hours, zone_label)}"
    )
