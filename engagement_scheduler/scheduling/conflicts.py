"""
Conflict Resolution

Decides whether a desired slot can be booked against an availability and,
when it falls outside the availability's hours, proposes alternatives.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from engagement_scheduler.core import config
from engagement_scheduler.core.errors import Conflict, PolicyViolation
from engagement_scheduler.models.availability import Availability
from engagement_scheduler.models.booking import Booking
from engagement_scheduler.scheduling import policy
from engagement_scheduler.scheduling.timezone_math import (
    convert,
    duration,
    enumerate_free_slots,
    get_time_zone,
    localize,
    pad_range,
    to_utc,
    utc_now,
)
from engagement_scheduler.store.base import AvailabilityStore

logger = logging.getLogger(__name__)

REASON_OUTSIDE_WINDOW = 'outside_window'
REASON_CONFLICT = 'conflict'
REASON_CAPACITY = 'capacity'


@dataclass(frozen=True)
class SuggestedTime:
    start: datetime
    end: datetime
    time_zone: str

    def to_dict(self) -> dict:
        return {'start': self.start.isoformat(), 'end': self.end.isoformat(), 'timeZone': self.time_zone}


@dataclass
class SlotCheckResult:
    available: bool
    reason: str | None = None
    message: str | None = None
    conflicting_bookings: list[Booking] = field(default_factory=list)
    suggested_times: list[SuggestedTime] = field(default_factory=list)

    def raise_for_failure(self) -> None:
        if self.available:
            return
        if self.reason == REASON_CONFLICT:
            raise Conflict(self.message, self.conflicting_bookings)
        raise PolicyViolation(self.reason, self.message)

    def to_dict(self) -> dict:
        return {
            'available': self.available,
            'reason': self.reason,
            'message': self.message,
            'conflictingBookings': [booking.to_dict() for booking in self.conflicting_bookings],
            'suggestedTimes': [suggestion.to_dict() for suggestion in self.suggested_times],
        }


class ConflictResolver:
    def __init__(
        self,
        store: AvailabilityStore,
        clock: Callable[[], datetime] = utc_now,
        lookahead_days: int = config.SUGGESTION_LOOKAHEAD_DAYS,
        max_suggestions: int = config.MAX_SUGGESTED_TIMES,
    ):
        self.store = store
        self.clock = clock
        self.lookahead_days = lookahead_days
        self.max_suggestions = max_suggestions

    def check_slot_availability(
        self,
        availability: Availability,
        desired_start: datetime,
        desired_end: datetime,
        request_time_zone: str = 'UTC',
        exclude_booking_id: int | None = None,
        suggest_alternatives: bool = True,
    ) -> SlotCheckResult:
        """
        Evaluate a desired slot against an availability.

        Checks run in a fixed order and stop at the first failure: request
        time zone, bookability policy, daily window, overlapping bookings,
        capacity. Bookings closer than the availability's ``buffer_minutes``
        to the requested slot count as overlapping. ``exclude_booking_id``
        leaves one booking out of the overlap and capacity checks so an
        existing booking can be moved. Alternative times are only searched
        when ``suggest_alternatives`` is set.

        Raises:
            InvalidTimeZone: ``request_time_zone`` is not a known zone.
            InvalidRange: ``desired_end`` is not after ``desired_start``.
        """
        get_time_zone(request_time_zone)
        start = to_utc(desired_start, request_time_zone)
        end = to_utc(desired_end, request_time_zone)
        duration_minutes = duration(start, end)
        now = to_utc(self.clock())

        bookability = policy.is_bookable(availability, now, start)
        if not bookability.bookable:
            return SlotCheckResult(False, bookability.reason, bookability.message)

        if not self.is_within_daily_window(availability, start, end):
            suggestions = []
            if suggest_alternatives:
                suggestions = self.suggest_alternative_times(availability, duration_minutes, request_time_zone, now)
            return SlotCheckResult(
                False,
                REASON_OUTSIDE_WINDOW,
                'Booking time is outside the availability window.',
                suggested_times=suggestions,
            )

        conflicts = self.store.list_active_bookings(
            availability.id,
            pad_range((start, end), availability.buffer_minutes or 0),
            exclude_booking_id=exclude_booking_id,
        )
        if conflicts:
            return SlotCheckResult(
                False,
                REASON_CONFLICT,
                'Time slot conflicts with existing bookings.',
                conflicting_bookings=conflicts,
            )

        if self._bookings_in_use(availability, exclude_booking_id) >= availability.max_bookings:
            return SlotCheckResult(False, REASON_CAPACITY, 'Maximum booking capacity reached.')

        return SlotCheckResult(True)

    def is_within_daily_window(self, availability: Availability, start: datetime, end: datetime) -> bool:
        local_day = convert(start, 'UTC', availability.time_zone).date()
        window_start = localize(local_day, availability.daily_start_time, availability.time_zone)
        window_end = localize(local_day, availability.daily_end_time, availability.time_zone)
        return window_start <= start and end <= window_end

    def suggest_alternative_times(
        self,
        availability: Availability,
        duration_minutes: int,
        request_time_zone: str,
        now: datetime,
    ) -> list[SuggestedTime]:
        # Advisory only: any failure here yields no suggestions.
        try:
            search_end = now + timedelta(days=self.lookahead_days)
            busy_ranges = [
                (booking.start_time, booking.end_time)
                for booking in self.store.list_active_bookings(availability.id, (now, search_end))
            ]
            free_slots = enumerate_free_slots(
                now,
                search_end,
                duration_minutes,
                busy_ranges,
                [(availability.daily_start_time, availability.daily_end_time)],
                availability.time_zone,
                availability.buffer_minutes or 0,
            )

            suggestions = []
            for slot in free_slots:
                if len(suggestions) >= self.max_suggestions:
                    break
                if not policy.is_bookable(availability, now, slot.start).bookable:
                    continue
                suggestions.append(
                    SuggestedTime(
                        start=convert(slot.start, availability.time_zone, request_time_zone),
                        end=convert(slot.end, availability.time_zone, request_time_zone),
                        time_zone=request_time_zone,
                    )
                )
            return suggestions
        except Exception:
            logger.warning(
                'Failed to generate alternative times for availability %s',
                availability.id,
                exc_info=True,
            )
            return []

    def _bookings_in_use(self, availability: Availability, exclude_booking_id: int | None) -> int:
        in_use = availability.current_bookings or 0
        if exclude_booking_id is not None:
            excluded = self.store.get_booking(exclude_booking_id)
            if excluded is not None and excluded.is_active and excluded.availability_id == availability.id:
                in_use -= 1
        return in_use
