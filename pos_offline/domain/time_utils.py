from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, timezone
from typing import Any, Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def business_day(value: Any) -> str | None:
    """Calendar day (YYYY-MM-DD) of a stored date, whatever shape it was persisted in."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Mapping):
        seconds = value.get("seconds")
        if isinstance(seconds, (int, float)):
            return datetime.fromtimestamp(seconds, tz=timezone.utc).date().isoformat()
        return None
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    for fmt in ("%d/%m/%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def today_iso(clock: Clock = utc_now) -> str:
    """Local calendar day for ``clock``; shops close their day in local time."""
    return clock().astimezone().date().isoformat()
