"""
Half-open [start, end) interval arithmetic shared by the availability engine
and the conflict detector.

All windows handled here carry timezone-aware datetimes. Arithmetic is done on
UTC instants; local wall-clock values are converted at the edges with
``local_day_window`` / ``local_window``.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Iterator, List, Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True, order=True)
class TimeWindow:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def overlaps(self, other: "TimeWindow") -> bool:
        """True when the windows share any instant. Touching windows do not overlap."""
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeWindow") -> bool:
        return self.start <= other.start and other.end <= self.end

    def intersection(self, other: "TimeWindow") -> Optional["TimeWindow"]:
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if end <= start:
            return None
        return TimeWindow(start, end)

    def expand(self, before: timedelta, after: Optional[timedelta] = None) -> "TimeWindow":
        return TimeWindow(self.start - before, self.end + (before if after is None else after))

    def subtract(self, other: "TimeWindow") -> List["TimeWindow"]:
        """Return what is left of this window once ``other`` is removed (0, 1 or 2 pieces)"""
        if not self.overlaps(other):
            return [self]
        pieces = []
        if self.start < other.start:
            pieces.append(TimeWindow(self.start, other.start))
        if other.end < self.end:
            pieces.append(TimeWindow(other.end, self.end))
        return pieces

    def to_utc(self) -> "TimeWindow":
        return TimeWindow(self.start.astimezone(timezone.utc), self.end.astimezone(timezone.utc))

    def __repr__(self):
        return f"TimeWindow({self.start.isoformat()} -> {self.end.isoformat()})"


def merge_windows(windows: Iterable[TimeWindow]) -> List[TimeWindow]:
    """Union of the given windows, sorted. Overlapping and touching windows are joined."""
    merged: List[TimeWindow] = []
    for window in sorted(w for w in windows if not w.is_empty):
        if merged and window.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = TimeWindow(last.start, max(last.end, window.end))
        else:
            merged.append(window)
    return merged


def subtract_windows(windows: Iterable[TimeWindow], cuts: Iterable[TimeWindow]) -> List[TimeWindow]:
    """Remove every cut from every window"""
    remaining = list(windows)
    for cut in cuts:
        if cut.is_empty:
            continue
        next_remaining = []
        for window in remaining:
            next_remaining.extend(window.subtract(cut))
        remaining = next_remaining
    return sorted(remaining)


def tile(window: TimeWindow, duration: timedelta) -> Iterator[TimeWindow]:
    """
    Cut ``window`` into consecutive slots of ``duration`` starting at its start.

    A trailing piece shorter than ``duration`` is dropped, so every slot is
    exactly ``duration`` long and slots are aligned to the free window start.
    """
    if duration <= timedelta(0):
        raise ValueError("Slot duration must be positive")
    cursor = window.start
    while cursor + duration <= window.end:
        yield TimeWindow(cursor, cursor + duration)
        cursor += duration


def local_day_window(day: date, tz: ZoneInfo) -> TimeWindow:
    """The UTC span covered by local calendar ``day`` in ``tz`` (23/24/25 hours around DST)"""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return TimeWindow(start, end).to_utc()


def local_window(day: date, start: time, end: time, tz: ZoneInfo) -> TimeWindow:
    """A wall-clock [start, end) on ``day`` in ``tz``, as UTC instants"""
    return TimeWindow(
        datetime.combine(day, start, tzinfo=tz),
        datetime.combine(day, end, tzinfo=tz),
    ).to_utc()


def local_days(window: TimeWindow, tz: ZoneInfo) -> Iterator[date]:
    """Every local calendar date in ``tz`` that ``window`` touches"""
    first = window.start.astimezone(tz).date()
    # end is exclusive: a window ending exactly at midnight does not touch the next day
    last = (window.end - timedelta(microseconds=1)).astimezone(tz).date()
    day = first
    while day <= last:
        yield day
        day += timedelta(days=1)


def buffered_within_day(
        booking: TimeWindow,
        buffer: timedelta,
        day: TimeWindow
) -> Optional[TimeWindow]:
    """
    The part of ``day`` blocked by ``booking`` once padded by ``buffer`` on both sides.

    Padding reaches into a neighbouring day when the booking runs close to
    midnight. A booking that only touches the day edge, ending exactly at the
    day's start or starting exactly at its end, blocks nothing on that day.
    """
    if booking.end == day.start or booking.start == day.end:
        return None
    return booking.expand(buffer).intersection(day)


def blocks_with_buffer(
        existing: TimeWindow,
        candidate: TimeWindow,
        buffer: timedelta,
        tz: ZoneInfo
) -> bool:
    """Whether ``existing`` padded by ``buffer`` rules out ``candidate`` on any local day they share"""
    if existing.overlaps(candidate):
        return True
    if buffer <= timedelta(0):
        return False
    for day in local_days(candidate, tz):
        blocked = buffered_within_day(existing, buffer, local_day_window(day, tz))
        if blocked is not None and blocked.overlaps(candidate):
            return True
    return False


def ensure_utc(value: datetime) -> datetime:
    """Convert an aware datetime to UTC; naive values are taken to already be UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
