"""
Booking Lifecycle

State machine for a single booking:

    pending -> confirmed -> completed
    pending -> cancelled
    confirmed -> cancelled

Cancelled and completed bookings are final. Each accepted mutation returns
the full booking record after the change.
"""

import logging
from datetime import datetime
from typing import Any, Callable

from engagement_scheduler.core.errors import (
    ImmutableField,
    InvalidTransition,
    MissingField,
    NotFound,
    ValidationError,
)
from engagement_scheduler.models.booking import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_PENDING,
    BOOKING_STATUSES,
    Booking,
)
from engagement_scheduler.scheduling.timezone_math import duration, get_time_zone, to_utc, utc_now
from engagement_scheduler.store.base import AvailabilityStore

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('availability_id', 'booked_by', 'start_time', 'end_time')
IMMUTABLE_FIELDS = ('id', 'availability_id', 'booked_by', 'created_at', 'status')
UPDATABLE_FIELDS = ('start_time', 'end_time', 'time_zone', 'notes', 'attendee_info')

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_CONFIRMED, STATUS_CANCELLED},
    STATUS_CONFIRMED: {STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_CANCELLED: set(),
    STATUS_COMPLETED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class BookingLifecycle:
    def __init__(self, store: AvailabilityStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def _now(self) -> datetime:
        return to_utc(self.clock())

    def get(self, booking_id: int) -> Booking:
        booking = self.store.get_booking(booking_id)
        if booking is None:
            raise NotFound(f'Booking {booking_id} not found.')
        return booking

    def validate_required(self, fields: dict[str, Any]) -> None:
        missing = [name for name in REQUIRED_FIELDS if fields.get(name) in (None, '')]
        if missing:
            raise MissingField(missing)

    def create(self, fields: dict[str, Any]) -> Booking:
        self.validate_required(fields)

        time_zone = fields.get('time_zone') or 'UTC'
        get_time_zone(time_zone)
        start_time = to_utc(fields['start_time'], time_zone)
        end_time = to_utc(fields['end_time'], time_zone)
        now = self._now()

        booking = Booking(
            availability_id=fields['availability_id'],
            booked_by=fields['booked_by'],
            start_time=start_time,
            end_time=end_time,
            time_zone=time_zone,
            duration_minutes=duration(start_time, end_time),
            notes=fields.get('notes') or '',
            attendee_info=dict(fields.get('attendee_info') or {}),
            status=STATUS_PENDING,
            created_at=now,
            updated_at=now,
        )

        with self.store.transaction():
            booking = self.store.add_booking(booking)

        logger.info('Booking %s created on availability %s by %s', booking.id, booking.availability_id, booking.booked_by)
        return booking

    def _transition(self, booking_id: int, target: str, now: datetime, **audit: Any) -> Booking:
        with self.store.transaction():
            booking = self.get(booking_id)
            if not can_transition(booking.status, target):
                raise InvalidTransition(
                    f'Cannot move booking {booking_id} from {booking.status} to {target}.'
                )

            booking.status = target
            booking.updated_at = now
            for name, value in audit.items():
                setattr(booking, name, value)
            booking = self.store.save_booking(booking)

        logger.info('Booking %s is now %s', booking.id, booking.status)
        return booking

    def confirm(self, booking_id: int, confirmed_by: str) -> Booking:
        now = self._now()
        return self._transition(booking_id, STATUS_CONFIRMED, now, confirmed_by=confirmed_by, confirmed_at=now)

    def cancel(self, booking_id: int, cancelled_by: str, reason: str = '') -> Booking:
        now = self._now()
        return self._transition(
            booking_id,
            STATUS_CANCELLED,
            now,
            cancelled_by=cancelled_by,
            cancelled_at=now,
            cancellation_reason=reason if reason is not None else '',
        )

    def complete(self, booking_id: int) -> Booking:
        now = self._now()
        return self._transition(booking_id, STATUS_COMPLETED, now, completed_at=now)

    def validate_changes(self, partial_fields: dict[str, Any]) -> None:
        for name, value in partial_fields.items():
            if name in IMMUTABLE_FIELDS:
                raise ImmutableField(name)
            if name not in UPDATABLE_FIELDS:
                raise ValidationError(f"Unknown booking field '{name}'.", field=name)
            if name in ('start_time', 'end_time') and value is None:
                raise ValidationError(f"Field '{name}' cannot be null.", field=name)

    def update(self, booking_id: int, partial_fields: dict[str, Any]) -> Booking:
        self.validate_changes(partial_fields)

        with self.store.transaction():
            booking = self.get(booking_id)
            if booking.is_terminal:
                raise InvalidTransition(f'Booking {booking_id} is {booking.status} and cannot be changed.')

            time_zone = partial_fields.get('time_zone') or booking.time_zone
            get_time_zone(time_zone)
            start_time = booking.start_time
            end_time = booking.end_time
            if 'start_time' in partial_fields:
                start_time = to_utc(partial_fields['start_time'], time_zone)
            if 'end_time' in partial_fields:
                end_time = to_utc(partial_fields['end_time'], time_zone)
            duration_minutes = duration(start_time, end_time)

            booking.start_time = start_time
            booking.end_time = end_time
            booking.duration_minutes = duration_minutes
            booking.time_zone = time_zone
            if 'notes' in partial_fields:
                booking.notes = partial_fields['notes'] or ''
            if 'attendee_info' in partial_fields:
                booking.attendee_info = dict(partial_fields['attendee_info'] or {})
            booking.updated_at = self._now()
            booking = self.store.save_booking(booking)

        logger.info('Booking %s updated', booking.id)
        return booking

    def list_for_availability(
        self,
        availability_id: int,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Booking]:
        bookings = self.store.list_bookings(availability_id=availability_id, status=status)
        if start is not None:
            bookings = [booking for booking in bookings if booking.start_time >= to_utc(start)]
        if end is not None:
            bookings = [booking for booking in bookings if booking.end_time <= to_utc(end)]
        return bookings

    def list_for_user(self, user_id: str, status: str | None = None) -> list[Booking]:
        return self.store.list_bookings(booked_by=user_id, status=status)

    def stats(self, availability_id: int) -> dict[str, int]:
        bookings = self.store.list_bookings(availability_id=availability_id)
        summary = {status: 0 for status in BOOKING_STATUSES}
        for booking in bookings:
            summary[booking.status] = summary.get(booking.status, 0) + 1

        total_duration = sum(booking.duration_minutes for booking in bookings)
        summary['total'] = len(bookings)
        summary['total_duration'] = total_duration
        summary['average_duration'] = round(total_duration / len(bookings)) if bookings else 0
        return summary

