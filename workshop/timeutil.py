"""
Time helpers shared by the ledger queries and the export.

Everything stored or compared is timezone-aware UTC. Query bounds may be a bare
``YYYY-MM-DD`` or an ISO datetime; inputs without an offset are read in the
caller's zone (``tz``), falling back to UTC.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from workshop.error import abort


def as_utc(value: datetime) -> datetime:
    # 有的驱动读回来是 naive（sqlite），按 UTC 理解
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def naive_utc(value: datetime) -> datetime:
    """UTC wall-clock time without tzinfo; openpyxl refuses aware datetimes."""
    return as_utc(value).replace(tzinfo=None)


def resolve_zone(name: Optional[str]) -> tzinfo:
    name = (name or "").strip()
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        abort(400, "BAD_REQUEST", f"Unknown time zone: {name} (try Asia/Colombo, Europe/London or UTC)")


def _parse_bound(raw: str, zone: tzinfo, *, upper: bool) -> datetime:
    text = raw.strip()
    if not text:
        abort(400, "BAD_REQUEST", "start/end must not be empty")

    try:
        day = date.fromisoformat(text)
    except ValueError:
        day = None
    if day is not None:
        # 结束日期包含当天：取次日零点做开区间上界
        if upper:
            day += timedelta(days=1)
        return as_utc(datetime.combine(day, time.min, tzinfo=zone))

    try:
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        abort(400, "BAD_REQUEST", f"Cannot read '{text}' as a date (2026-01-12) or datetime (2026-01-12T08:30:00Z)")
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=zone)
    return as_utc(moment)


def parse_range(
    start: Optional[str],
    end: Optional[str],
    tz: Optional[str] = None,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Turn query-string bounds into a half-open UTC range ``[lower, upper)``."""
    zone = resolve_zone(tz)
    lower = _parse_bound(start, zone, upper=False) if start is not None else None
    upper = _parse_bound(end, zone, upper=True) if end is not None else None

    if lower is not None and upper is not None and lower >= upper:
        abort(400, "BAD_REQUEST", "start must be earlier than end")
    return lower, upper
