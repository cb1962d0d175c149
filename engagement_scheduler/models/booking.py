"""Booking model definitions."""

from sqlalchemy import JSON, Column, ForeignKey, Integer, String, Text

from engagement_scheduler.database import Base, UTCDateTime

STATUS_PENDING = 'pending'
STATUS_CONFIRMED = 'confirmed'
STATUS_CANCELLED = 'cancelled'
STATUS_COMPLETED = 'completed'
BOOKING_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_CANCELLED, STATUS_COMPLETED)

TERMINAL_STATUSES = frozenset({STATUS_CANCELLED, STATUS_COMPLETED})


class Booking(Base):
    """A time-bound engagement booked against an availability."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    availability_id = Column(Integer, ForeignKey("availability.id"), nullable=False, index=True)
    booked_by = Column(String, nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    time_zone = Column(String, nullable=False, default='UTC')
    duration_minutes = Column(Integer, nullable=False)
    notes = Column(Text, default='')
    attendee_info = Column(JSON)
    status = Column(String, nullable=False, default=STATUS_PENDING)

    created_at = Column(UTCDateTime)
    updated_at = Column(UTCDateTime)
    confirmed_by = Column(String)
    confirmed_at = Column(UTCDateTime)
    cancelled_by = Column(String)
    cancelled_at = Column(UTCDateTime)
    cancellation_reason = Column(Text)
    completed_at = Column(UTCDateTime)

    @property
    def is_active(self) -> bool:
        return self.status != STATUS_CANCELLED

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        def _iso(value):
            return value.isoformat() if value is not None else None

        return {
            'id': self.id,
            'availability_id': self.availability_id,
            'booked_by': self.booked_by,
            'start_time': _iso(self.start_time),
            'end_time': _iso(self.end_time),
            'time_zone': self.time_zone,
            'duration_minutes': self.duration_minutes,
            'notes': self.notes,
            'attendee_info': dict(self.attendee_info or {}),
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'confirmed_by': self.confirmed_by,
            'confirmed_at': _iso(self.confirmed_at),
            'cancelled_by': self.cancelled_by,
            'cancelled_at': _iso(self.cancelled_at),
            'cancellation_reason': self.cancellation_reason,
            'completed_at': _iso(self.completed_at),
        }
