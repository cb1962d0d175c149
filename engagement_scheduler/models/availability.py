"""Availability model definitions."""

from datetime import date

from sqlalchemy import JSON, Column, Date, Integer, String, Time

from engagement_scheduler.core import config
from engagement_scheduler.database import Base, UTCDateTime
from engagement_scheduler.scheduling.timezone_math import utc_now

SCHEDULE_ONE_TIME = 'one_time'
SCHEDULE_RECURRING = 'recurring'
SCHEDULE_TYPES = (SCHEDULE_ONE_TIME, SCHEDULE_RECURRING)

STATUS_AVAILABLE = 'available'
STATUS_PAUSED = 'paused'
STATUS_CLOSED = 'closed'
AVAILABILITY_STATUSES = (STATUS_AVAILABLE, STATUS_PAUSED, STATUS_CLOSED)

RECURRENCE_DAILY = 'daily'
RECURRENCE_WEEKLY = 'weekly'
RECURRENCE_MONTHLY = 'monthly'
RECURRENCE_PATTERNS = (RECURRENCE_DAILY, RECURRENCE_WEEKLY, RECURRENCE_MONTHLY)


class Availability(Base):
    """A provider-declared window during which bookings may be made."""
    __tablename__ = "availability"

    id = Column(Integer, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    title = Column(String)
    schedule_type = Column(String, nullable=False, default=SCHEDULE_ONE_TIME)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)
    daily_start_time = Column(Time, nullable=False)
    daily_end_time = Column(Time, nullable=False)
    time_zone = Column(String, nullable=False, default='UTC')
    recurrence_pattern = Column(String)
    recurrence_days = Column(JSON)  # weekday numbers, 0 = Monday
    day_of_month = Column(Integer)
    status = Column(String, nullable=False, default=STATUS_AVAILABLE)
    max_bookings = Column(Integer, nullable=False, default=1)
    current_bookings = Column(Integer, nullable=False, default=0)
    minimum_notice_hours = Column(Integer, nullable=False, default=24)
    maximum_advance_days = Column(Integer, nullable=False, default=90)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime)
    updated_at = Column(UTCDateTime)

    def __init__(self, **kwargs):
        now = utc_now()
        kwargs.setdefault('schedule_type', SCHEDULE_ONE_TIME)
        kwargs.setdefault('time_zone', config.DEFAULT_TIME_ZONE)
        kwargs.setdefault('status', STATUS_AVAILABLE)
        kwargs.setdefault('max_bookings', 1)
        kwargs.setdefault('current_bookings', 0)
        kwargs.setdefault('minimum_notice_hours', config.DEFAULT_MINIMUM_NOTICE_HOURS)
        kwargs.setdefault('maximum_advance_days', config.DEFAULT_MAXIMUM_ADVANCE_DAYS)
        kwargs.setdefault('buffer_minutes', 0)
        kwargs.setdefault('created_at', now)
        kwargs.setdefault('updated_at', now)
        super().__init__(**kwargs)

    @property
    def last_date(self) -> date | None:
        """Final day of the active range; ``None`` means open ended."""
        if self.end_date is not None:
            return self.end_date
        if self.schedule_type == SCHEDULE_ONE_TIME:
            return self.start_date
        return None

    def is_active_on(self, local_date: date) -> bool:
        if local_date < self.start_date:
            return False
        if self.last_date is not None and local_date > self.last_date:
            return False
        if self.schedule_type != SCHEDULE_RECURRING:
            return True

        pattern = self.effective_recurrence_pattern
        if pattern == RECURRENCE_WEEKLY:
            return local_date.weekday() in (self.recurrence_days or [])
        if pattern == RECURRENCE_MONTHLY:
            return local_date.day == self.day_of_month
        return True

    @property
    def effective_recurrence_pattern(self) -> str | None:
        """Recurring availability without a pattern is weekly when weekdays are given, daily otherwise."""
        if self.schedule_type != SCHEDULE_RECURRING:
            return None
        if self.recurrence_pattern:
            return self.recurrence_pattern
        return RECURRENCE_WEEKLY if self.recurrence_days else RECURRENCE_DAILY

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'title': self.title,
            'schedule_type': self.schedule_type,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'daily_start_time': self.daily_start_time.strftime('%H:%M') if self.daily_start_time else None,
            'daily_end_time': self.daily_end_time.strftime('%H:%M') if self.daily_end_time else None,
            'time_zone': self.time_zone,
            'recurrence_pattern': self.effective_recurrence_pattern,
            'recurrence_days': list(self.recurrence_days or []),
            'day_of_month': self.day_of_month,
            'status': self.status,
            'max_bookings': self.max_bookings,
            'current_bookings': self.current_bookings,
            'minimum_notice_hours': self.minimum_notice_hours,
            'maximum_advance_days': self.maximum_advance_days,
            'buffer_minutes': self.buffer_minutes,
        }
