"""Storage contract consumed by the scheduling engine."""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime

from engagement_scheduler.models.availability import Availability
from engagement_scheduler.models.booking import Booking


class AvailabilityStore(ABC):
    """Persistence for availabilities and their bookings.

    ``transaction()`` must make everything executed inside it one atomic unit
    with respect to other transactions on the same store. Nested calls join
    the outer transaction. The scheduling service runs its conflict check and
    the booking write inside a single transaction, so a store that honours
    this contract cannot double-book a slot.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        ...

    @abstractmethod
    def get_availability(self, availability_id: int, for_update: bool = False) -> Availability | None:
        ...

    @abstractmethod
    def add_availability(self, availability: Availability) -> Availability:
        ...

    @abstractmethod
    def save_availability(self, availability: Availability) -> Availability:
        ...

    @abstractmethod
    def delete_availability(self, availability: Availability) -> None:
        ...

    @abstractmethod
    def get_booking(self, booking_id: int) -> Booking | None:
        ...

    @abstractmethod
    def add_booking(self, booking: Booking) -> Booking:
        """Persist a new booking and refresh the owning availability's count."""

    @abstractmethod
    def save_booking(self, booking: Booking) -> Booking:
        """Persist changes to a booking and refresh the owning availability's count."""

    @abstractmethod
    def list_bookings(
        self,
        availability_id: int | None = None,
        booked_by: str | None = None,
        status: str | None = None,
    ) -> list[Booking]:
        ...

    @abstractmethod
    def list_active_bookings(
        self,
        availability_id: int,
        time_range: tuple[datetime, datetime] | None = None,
        exclude_booking_id: int | None = None,
    ) -> list[Booking]:
        """Non-cancelled bookings, optionally only those overlapping ``time_range``."""

    @abstractmethod
    def count_active_bookings(self, availability_id: int) -> int:
        ...

    def refresh_current_bookings(self, availability_id: int) -> None:
        availability = self.get_availability(availability_id)
        if availability is None:
            return
        availability.current_bookings = self.count_active_bookings(availability_id)
        self.save_availability(availability)
