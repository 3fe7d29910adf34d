from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from sqlalchemy.orm import Session

from booking_core.config.settings import get_settings
from booking_core.core.exceptions import ValidationError
from booking_core.models.availability import AvailabilityRule
from booking_core.models.base import utcnow
from booking_core.models.booking import Booking, ACTIVE_BOOKING_STATUSES
from booking_core.models.user import User, UserSettings
from booking_core.services.scheduling.time_window import (
    TimeWindow,
    buffered_within_day,
    ensure_utc,
    local_day_window,
    local_days,
    local_window,
    merge_windows,
    subtract_windows,
    tile,
)

logger = logging.getLogger(__name__)
settings = get_settings()

DEFAULT_MIN_NOTICE_MINUTES = 0
DEFAULT_BOOKING_HORIZON_DAYS = 30


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Host zone, falling back to the configured default for unknown names"""
    try:
        return ZoneInfo(name or settings.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name!r}, using {settings.DEFAULT_TIMEZONE}")
        return ZoneInfo(settings.DEFAULT_TIMEZONE)


class AvailabilityEngine:
    """Turns a host's weekly rules and current commitments into bookable slots"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def compute_slots(
            self,
            user_id: UUID,
            range_start: datetime,
            range_end: datetime,
            slot_duration_minutes: int,
            busy_intervals: Iterable[TimeWindow] = (),
            now: Optional[datetime] = None
    ) -> Iterator[TimeWindow]:
        """
        Lazily yield bookable slots for ``user_id`` inside [range_start, range_end).

        Rules, settings and bookings are read when iteration starts, so every
        call observes the store as it is at that moment. For each local day of
        the host's zone the day's rule windows are unioned, active bookings
        (padded by the rule buffer) and busy intervals are removed, and what
        is left is tiled into ``slot_duration_minutes`` slots from the start
        of each free window; a trailing partial slot is dropped.

        Yielded windows are UTC and ordered by start.
        """
        if slot_duration_minutes <= 0:
            raise ValidationError("Slot duration must be positive", {"slot_duration_minutes": slot_duration_minutes})

        requested = TimeWindow(ensure_utc(range_start), ensure_utc(range_end))
        if requested.is_empty:
            return

        duration = timedelta(minutes=slot_duration_minutes)
        now = ensure_utc(now or self.clock())

        host, host_settings = self._load_host(user_id)
        tz = resolve_timezone(host.timezone)

        rules_by_day = self._rules_by_day(user_id)
        if not rules_by_day:
            logger.warning(f"No availability rules found for user {user_id}")
            return

        min_notice = host_settings.min_notice_minutes if host_settings else DEFAULT_MIN_NOTICE_MINUTES
        horizon = host_settings.booking_horizon_days if host_settings else DEFAULT_BOOKING_HORIZON_DAYS
        earliest_start = now + timedelta(minutes=min_notice or 0)
        latest_end = now + timedelta(days=horizon or DEFAULT_BOOKING_HORIZON_DAYS)

        days = list(local_days(requested, tz))
        span = TimeWindow(local_day_window(days[0], tz).start, local_day_window(days[-1], tz).end)
        # bookings just outside the span can still pad into it
        widest_buffer = max(
            (r.buffer_minutes or 0 for rules in rules_by_day.values() for r in rules), default=0
        )
        bookings = self._active_booking_windows(user_id, span.expand(timedelta(minutes=widest_buffer)))
        busy = [w.to_utc() for w in busy_intervals if not w.is_empty]

        for day in days:
            day_window = local_day_window(day, tz)
            if day_window.end <= earliest_start:
                continue
            if day_window.start >= latest_end:
                return

            day_rules = rules_by_day.get(day.weekday())
            if not day_rules:
                continue

            booked_today = sum(1 for b in bookings if b.start.astimezone(tz).date() == day)
            free = self._free_windows(day, day_window, day_rules, bookings, busy, booked_today, tz)

            for window in free:
                for slot in tile(window, duration):
                    if slot.start < earliest_start:
                        continue
                    if slot.end > latest_end:
                        return
                    if requested.contains(slot):
                        yield slot

    def is_within_hours(self, user_id: UUID, window: TimeWindow) -> bool:
        """Whether ``window`` falls inside one local day's (unioned) rule windows"""
        host, _ = self._load_host(user_id)
        tz = resolve_timezone(host.timezone)
        window = window.to_utc()

        days = list(local_days(window, tz))
        if len(days) != 1:
            return False
        day = days[0]

        rules = (
            self.db.query(AvailabilityRule)
            .filter(AvailabilityRule.user_id == user_id, AvailabilityRule.day_of_week == day.weekday())
            .all()
        )
        hours = merge_windows(local_window(day, r.start_time, r.end_time, tz) for r in rules)
        return any(h.contains(window) for h in hours)

    def next_available_slot(
            self,
            user_id: UUID,
            range_start: datetime,
            range_end: datetime,
            slot_duration_minutes: int,
            busy_intervals: Iterable[TimeWindow] = (),
            now: Optional[datetime] = None
    ) -> Optional[TimeWindow]:
        slots = self.compute_slots(user_id, range_start, range_end, slot_duration_minutes, busy_intervals, now)
        return next(slots, None)

    def _free_windows(
            self,
            day,
            day_window: TimeWindow,
            day_rules: List[AvailabilityRule],
            bookings: List[TimeWindow],
            busy: List[TimeWindow],
            booked_today: int,
            tz: ZoneInfo
    ) -> List[TimeWindow]:
        """Union of what each open rule leaves free on ``day``"""
        pieces = []
        for rule in day_rules:
            if rule.max_bookings_per_day is not None and booked_today >= rule.max_bookings_per_day:
                logger.debug(f"Rule {rule.id} reached {rule.max_bookings_per_day} bookings on {day}")
                continue

            buffer = timedelta(minutes=rule.buffer_minutes or 0)
            cuts = [buffered_within_day(b, buffer, day_window) for b in bookings]
            cuts = [c for c in cuts if c is not None] + busy

            raw = local_window(day, rule.start_time, rule.end_time, tz)
            pieces.extend(subtract_windows([raw], cuts))
        return merge_windows(pieces)

    def _load_host(self, user_id: UUID) -> Tuple[User, Optional[UserSettings]]:
        host = self.db.query(User).filter(User.id == user_id).first()
        if not host:
            raise ValidationError(f"Unknown host {user_id}", {"host_user_id": str(user_id)})
        return host, host.settings

    def _rules_by_day(self, user_id: UUID) -> Dict[int, List[AvailabilityRule]]:
        rules = (
            self.db.query(AvailabilityRule)
            .filter(AvailabilityRule.user_id == user_id)
            .order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time)
            .all()
        )
        grouped = defaultdict(list)
        for rule in rules:
            grouped[rule.day_of_week].append(rule)
        return grouped

    def _active_booking_windows(self, user_id: UUID, span: TimeWindow) -> List[TimeWindow]:
        bookings = (
            self.db.query(Booking.start_time, Booking.end_time)
            .filter(
                Booking.user_id == user_id,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                Booking.start_time < span.end,
                Booking.end_time > span.start,
            )
            .order_by(Booking.start_time)
            .all()
        )
        return [TimeWindow(start, end) for start, end in bookings]
