"""
Availability Validator

Pure functions: does a date range overlap a confirmed booking or an active
hold on a unit? No I/O, no side effects.

Ranges are whole days. Time-of-day components (the provider works with
"2025-06-01 15:00:01" style values) are stripped before comparison.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, Optional, Union

# Closed ranges: a stay ending on day D conflicts with one starting on day D.
# Flip to True to allow same-day turnover (checkout day == next check-in day).
SAME_DAY_TURNOVER_ALLOWED = False

DateLike = Union[date, datetime, str]


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Range end {self.end} is before start {self.start}")

    @classmethod
    def of(cls, start: DateLike, end: DateLike) -> "DateRange":
        return cls(to_day(start), to_day(end))

    @property
    def nights(self) -> int:
        return (self.end - self.start).days

    def as_entry(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def to_day(value: DateLike) -> date:
    """Normalize a date, datetime or date string to a whole-day value."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip().replace("T", " ")
        raw = raw.split(" ")[0]
        try:
            return date.fromisoformat(raw)
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}")
    raise ValueError(f"Invalid date: {value!r}")


def overlaps(a: DateRange, b: DateRange, allow_same_day_turnover: bool = SAME_DAY_TURNOVER_ALLOWED) -> bool:
    """A.start <= B.end and A.end >= B.start (strict when same-day turnover is allowed)."""
    if allow_same_day_turnover:
        return a.start < b.end and a.end > b.start
    return a.start <= b.end and a.end >= b.start


def hold_is_live(entry: Dict, now: datetime) -> bool:
    """An entry in a unit's holds map blocks capacity only until expiresAt."""
    expires_at = entry.get("expiresAt")
    if not expires_at:
        return False
    if isinstance(expires_at, str):
        expires_at = datetime.fromisoformat(expires_at)
    return expires_at > now


def live_holds(holds: Optional[Dict[str, Dict]], now: datetime) -> Dict[str, Dict]:
    """Drop expired entries from a unit's holds map (returns a new dict)."""
    return {
        hold_id: entry
        for hold_id, entry in (holds or {}).items()
        if hold_is_live(entry, now)
    }


def find_booking_conflict(
    requested: DateRange,
    bookings: Iterable[Dict],
    ignore_external_id: Optional[str] = None
) -> Optional[Dict]:
    """
    First confirmed booking entry overlapping `requested`, or None.

    Entries sharing `ignore_external_id` are the same booking replayed and
    never count as a conflict.
    """
    for entry in bookings or []:
        if ignore_external_id is not None and str(entry.get("externalBookingId")) == str(ignore_external_id):
            continue
        try:
            existing = DateRange.of(entry["start"], entry["end"])
        except (KeyError, ValueError):
            # Malformed entries block nothing but are worth noticing upstream
            continue
        if overlaps(requested, existing):
            return entry
    return None


def find_hold_conflict(
    requested: DateRange,
    holds: Optional[Dict[str, Dict]],
    now: datetime,
    exclude_hold_id: Optional[str] = None
) -> Optional[str]:
    """Id of the first live hold overlapping `requested`, or None."""
    for hold_id, entry in live_holds(holds, now).items():
        if hold_id == exclude_hold_id:
            continue
        try:
            existing = DateRange.of(entry["start"], entry["end"])
        except (KeyError, ValueError):
            continue
        if overlaps(requested, existing):
            return hold_id
    return None


def find_conflict(
    requested: DateRange,
    bookings: Iterable[Dict],
    holds: Optional[Dict[str, Dict]],
    now: datetime,
    exclude_hold_id: Optional[str] = None,
    ignore_external_id: Optional[str] = None
) -> Optional[Dict]:
    """
    Check a range against both confirmed bookings and live holds.

    Returns a description of the first conflict:
        {"type": "booking", "externalBookingId": ..., "start": ..., "end": ...}
        {"type": "hold", "holdId": ...}
    or None when the range is free.
    """
    booking = find_booking_conflict(requested, bookings, ignore_external_id=ignore_external_id)
    if booking is not None:
        return {"type": "booking", **booking}

    hold_id = find_hold_conflict(requested, holds, now, exclude_hold_id=exclude_hold_id)
    if hold_id is not None:
        return {"type": "hold", "holdId": hold_id}

    return None


def blocked_ranges(bookings: Iterable[Dict], holds: Optional[Dict[str, Dict]], now: datetime) -> list:
    """Calendar view of everything currently blocking a unit."""
    ranges = [
        {"start": entry.get("start"), "end": entry.get("end"), "source": "booking"}
        for entry in bookings or []
    ]
    ranges.extend(
        {"start": entry.get("start"), "end": entry.get("end"), "source": "hold"}
        for entry in live_holds(holds, now).values()
    )
    return sorted(ranges, key=lambda r: (str(r["start"]), str(r["end"])))
