"""
Scheduling Service

Single entry point the HTTP layer talks to. It wires the resolver, the
booking lifecycle and the multi-party scheduler to one store, runs every
check-then-write inside one store transaction, and hands committed booking
changes to an optional event sink.
"""

import logging
from datetime import datetime, time
from typing import Any, Callable, Sequence

from engagement_scheduler.core import config
from engagement_scheduler.core.errors import (
    InvalidTransition,
    NotFound,
    ServiceNotRunning,
    ValidationError,
)
from engagement_scheduler.models.availability import AVAILABILITY_STATUSES, Availability
from engagement_scheduler.models.booking import Booking
from engagement_scheduler.scheduling import policy
from engagement_scheduler.scheduling.conflicts import ConflictResolver, SlotCheckResult
from engagement_scheduler.scheduling.lifecycle import BookingLifecycle
from engagement_scheduler.scheduling.multi_party import CandidateSlot, MultiPartyScheduler
from engagement_scheduler.scheduling.timezone_math import to_utc, utc_now
from engagement_scheduler.store.base import AvailabilityStore
from engagement_scheduler.store.sql import SqlAlchemyStore

logger = logging.getLogger(__name__)

EVENT_CREATED = 'booking.created'
EVENT_CONFIRMED = 'booking.confirmed'
EVENT_CANCELLED = 'booking.cancelled'
EVENT_COMPLETED = 'booking.completed'
EVENT_UPDATED = 'booking.updated'

AVAILABILITY_FIELDS = (
    'owner_id',
    'title',
    'schedule_type',
    'start_date',
    'end_date',
    'daily_start_time',
    'daily_end_time',
    'time_zone',
    'recurrence_pattern',
    'recurrence_days',
    'day_of_month',
    'status',
    'max_bookings',
    'minimum_notice_hours',
    'maximum_advance_days',
    'buffer_minutes',
)

EventSink = Callable[[str, Booking], None]


class SchedulingService:
    def __init__(
        self,
        store: AvailabilityStore,
        clock: Callable[[], datetime] = utc_now,
        event_sink: EventSink | None = None,
        business_hours: tuple[time, time] | None = None,
    ):
        self.store = store
        self.clock = clock
        self.event_sink = event_sink
        self.resolver = ConflictResolver(store, clock)
        self.lifecycle = BookingLifecycle(store, clock)
        self.multi_party = MultiPartyScheduler(self.resolver, business_hours)
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info('Scheduling service started with %s', type(self.store).__name__)

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        logger.info('Scheduling service stopped')

    def _ensure_running(self) -> None:
        if not self._running:
            raise ServiceNotRunning()

    def _publish(self, event: str, booking: Booking) -> None:
        if self.event_sink is None:
            return
        try:
            self.event_sink(event, booking)
        except Exception:
            logger.exception('Event sink failed for %s on booking %s', event, booking.id)

    # Availability

    def create_availability(self, fields: dict[str, Any]) -> Availability:
        self._ensure_running()
        unknown = sorted(set(fields) - set(AVAILABILITY_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown availability field '{unknown[0]}'.", field=unknown[0])

        now = to_utc(self.clock())
        availability = Availability(
            created_at=now,
            updated_at=now,
            **{name: value for name, value in fields.items() if value is not None},
        )
        policy.validate_availability(availability)

        with self.store.transaction():
            availability = self.store.add_availability(availability)

        logger.info('Availability %s created for %s', availability.id, availability.owner_id)
        return availability

    def get_availability(self, availability_id: int, for_update: bool = False) -> Availability:
        self._ensure_running()
        availability = self.store.get_availability(availability_id, for_update=for_update)
        if availability is None:
            raise NotFound(f'Availability {availability_id} not found.')
        return availability

    def set_availability_status(self, availability_id: int, status: str) -> Availability:
        if status not in AVAILABILITY_STATUSES:
            raise ValidationError(
                f"Status must be one of: {', '.join(AVAILABILITY_STATUSES)}.",
                field='status',
            )

        with self.store.transaction():
            availability = self.get_availability(availability_id, for_update=True)
            availability.status = status
            availability.updated_at = to_utc(self.clock())
            availability = self.store.save_availability(availability)

        logger.info('Availability %s is now %s', availability.id, status)
        return availability

    def delete_availability(self, availability_id: int) -> None:
        with self.store.transaction():
            availability = self.get_availability(availability_id, for_update=True)
            if self.store.list_bookings(availability_id=availability_id):
                raise InvalidTransition(
                    f'Availability {availability_id} has bookings and cannot be deleted; close it instead.'
                )
            self.store.delete_availability(availability)

        logger.info('Availability %s deleted', availability_id)

    # Bookings

    def check_slot(
        self,
        availability_id: int,
        desired_start: datetime,
        desired_end: datetime,
        request_time_zone: str = 'UTC',
    ) -> SlotCheckResult:
        availability = self.get_availability(availability_id)
        return self.resolver.check_slot_availability(
            availability, desired_start, desired_end, request_time_zone
        )

    def request_booking(self, fields: dict[str, Any]) -> Booking:
        """Check the requested slot and create a pending booking atomically.

        Raises:
            MissingField: a required field is absent.
            NotFound: the availability does not exist.
            Conflict: an active booking overlaps the slot.
            PolicyViolation: any other rule refused the slot.
        """
        self._ensure_running()
        self.lifecycle.validate_required(fields)
        time_zone = fields.get('time_zone') or 'UTC'

        with self.store.transaction():
            availability = self.get_availability(fields['availability_id'], for_update=True)
            result = self.resolver.check_slot_availability(
                availability,
                fields['start_time'],
                fields['end_time'],
                time_zone,
                suggest_alternatives=False,
            )
            result.raise_for_failure()
            booking = self.lifecycle.create(fields)

        self._publish(EVENT_CREATED, booking)
        return booking

    def confirm_booking(self, booking_id: int, confirmed_by: str) -> Booking:
        self._ensure_running()
        booking = self.lifecycle.confirm(booking_id, confirmed_by)
        self._publish(EVENT_CONFIRMED, booking)
        return booking

    def cancel_booking(self, booking_id: int, cancelled_by: str, reason: str = '') -> Booking:
        self._ensure_running()
        booking = self.lifecycle.cancel(booking_id, cancelled_by, reason)
        self._publish(EVENT_CANCELLED, booking)
        return booking

    def complete_booking(self, booking_id: int) -> Booking:
        self._ensure_running()
        booking = self.lifecycle.complete(booking_id)
        self._publish(EVENT_COMPLETED, booking)
        return booking

    def update_booking(self, booking_id: int, partial_fields: dict[str, Any]) -> Booking:
        """Apply a partial update; moved bookings must still fit their availability."""
        self._ensure_running()
        self.lifecycle.validate_changes(partial_fields)

        with self.store.transaction():
            if 'start_time' in partial_fields or 'end_time' in partial_fields:
                current = self.lifecycle.get(booking_id)
                if not current.is_terminal:
                    time_zone = partial_fields.get('time_zone') or current.time_zone
                    availability = self.get_availability(current.availability_id, for_update=True)
                    result = self.resolver.check_slot_availability(
                        availability,
                        partial_fields.get('start_time', current.start_time),
                        partial_fields.get('end_time', current.end_time),
                        time_zone,
                        exclude_booking_id=booking_id,
                        suggest_alternatives=False,
                    )
                    result.raise_for_failure()
            booking = self.lifecycle.update(booking_id, partial_fields)

        self._publish(EVENT_UPDATED, booking)
        return booking

    def get_booking(self, booking_id: int) -> Booking:
        self._ensure_running()
        return self.lifecycle.get(booking_id)

    def list_bookings(
        self,
        availability_id: int | None = None,
        booked_by: str | None = None,
        status: str | None = None,
    ) -> list[Booking]:
        self._ensure_running()
        if availability_id is not None:
            self.get_availability(availability_id)
            bookings = self.lifecycle.list_for_availability(availability_id, status=status)
            if booked_by is not None:
                bookings = [booking for booking in bookings if booking.booked_by == booked_by]
            return bookings
        if booked_by is not None:
            return self.lifecycle.list_for_user(booked_by, status=status)
        return self.store.list_bookings(status=status)

    def booking_stats(self, availability_id: int) -> dict[str, int]:
        self.get_availability(availability_id)
        return self.lifecycle.stats(availability_id)

    # Multi-party

    def find_common_slots(
        self,
        availability_ids: Sequence[int],
        duration_minutes: int,
        earliest_start: datetime,
        latest_end: datetime,
        output_time_zone: str = 'UTC',
    ) -> list[CandidateSlot]:
        self._ensure_running()
        availabilities = [self.get_availability(availability_id) for availability_id in availability_ids]
        return self.multi_party.find_common_slots(
            availabilities, duration_minutes, earliest_start, latest_end, output_time_zone
        )


def build_default_service(event_sink: EventSink | None = None) -> SchedulingService:
    return SchedulingService(
        SqlAlchemyStore(),
        event_sink=event_sink,
        business_hours=config.business_hours(),
    )
