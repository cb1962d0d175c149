"""
Availability Policy

Decides whether an availability accepts a booking that starts at a given
instant, and validates provider-entered availability records.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from engagement_scheduler.core.errors import PolicyViolation, ValidationError
from engagement_scheduler.models.availability import (
    AVAILABILITY_STATUSES,
    RECURRENCE_MONTHLY,
    RECURRENCE_PATTERNS,
    RECURRENCE_WEEKLY,
    SCHEDULE_RECURRING,
    SCHEDULE_TYPES,
    STATUS_AVAILABLE,
    Availability,
)
from engagement_scheduler.scheduling.timezone_math import convert, is_valid_time_zone, to_utc

REASON_STATUS = 'status'
REASON_NOTICE = 'notice'
REASON_ADVANCE_WINDOW = 'advance_window'
REASON_DATE_RANGE = 'date_range'

MIN_WINDOW_MINUTES = 15
MAX_WINDOW_MINUTES = 12 * 60
MAX_NOTICE_HOURS = 8760
MAX_ADVANCE_DAYS = 365
MAX_BUFFER_MINUTES = 240


@dataclass(frozen=True)
class BookabilityResult:
    bookable: bool
    reason: str | None = None
    message: str | None = None

    def raise_for_failure(self) -> None:
        if not self.bookable:
            raise PolicyViolation(self.reason, self.message)


def is_bookable(availability: Availability, now: datetime, desired_start: datetime) -> BookabilityResult:
    """Apply status, notice/advance window and date range rules in that order."""
    if availability.status != STATUS_AVAILABLE:
        return BookabilityResult(
            False,
            REASON_STATUS,
            f'Availability is {availability.status} and not accepting bookings.',
        )

    now = to_utc(now)
    desired_start = to_utc(desired_start, availability.time_zone)
    earliest = now + timedelta(hours=availability.minimum_notice_hours)
    latest = now + timedelta(days=availability.maximum_advance_days)

    if desired_start < earliest:
        return BookabilityResult(
            False,
            REASON_NOTICE,
            f'Booking requires at least {availability.minimum_notice_hours} hours advance notice.',
        )

    if desired_start > latest:
        return BookabilityResult(
            False,
            REASON_ADVANCE_WINDOW,
            f'Booking cannot be made more than {availability.maximum_advance_days} days in advance.',
        )

    local_day = convert(desired_start, 'UTC', availability.time_zone).date()
    if not availability.is_active_on(local_day):
        return BookabilityResult(
            False,
            REASON_DATE_RANGE,
            f'Availability is not active on {local_day.isoformat()}.',
        )

    return BookabilityResult(True)


def validate_availability(availability: Availability) -> None:
    if not availability.owner_id:
        raise ValidationError('Owner is required.', field='owner_id')

    if availability.schedule_type not in SCHEDULE_TYPES:
        raise ValidationError(
            f"Schedule type must be one of: {', '.join(SCHEDULE_TYPES)}.",
            field='schedule_type',
        )

    if availability.status not in AVAILABILITY_STATUSES:
        raise ValidationError(
            f"Status must be one of: {', '.join(AVAILABILITY_STATUSES)}.",
            field='status',
        )

    if availability.start_date is None:
        raise ValidationError('Start date is required.', field='start_date')

    if availability.end_date is not None and availability.end_date < availability.start_date:
        raise ValidationError('End date cannot be before start date.', field='end_date')

    if availability.daily_start_time is None or availability.daily_end_time is None:
        raise ValidationError('Daily start and end times are required.', field='daily_start_time')

    if availability.daily_end_time <= availability.daily_start_time:
        raise ValidationError('Daily end time must be after daily start time.', field='daily_end_time')

    start = availability.daily_start_time
    end = availability.daily_end_time
    window_minutes = (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)
    if window_minutes < MIN_WINDOW_MINUTES:
        raise ValidationError(f'Minimum window is {MIN_WINDOW_MINUTES} minutes.', field='daily_end_time')
    if window_minutes > MAX_WINDOW_MINUTES:
        raise ValidationError('Maximum window is 12 hours.', field='daily_end_time')

    if not is_valid_time_zone(availability.time_zone):
        raise ValidationError(f'Invalid time zone: {availability.time_zone}', field='time_zone')

    if availability.recurrence_days:
        if any(not isinstance(day, int) or not 0 <= day <= 6 for day in availability.recurrence_days):
            raise ValidationError('Recurrence days must be integers 0-6 (Mon-Sun).', field='recurrence_days')

    if availability.recurrence_pattern is not None:
        if availability.recurrence_pattern not in RECURRENCE_PATTERNS:
            raise ValidationError(
                f"Recurrence pattern must be one of: {', '.join(RECURRENCE_PATTERNS)}.",
                field='recurrence_pattern',
            )
        if availability.schedule_type != SCHEDULE_RECURRING:
            raise ValidationError('Only recurring availability takes a recurrence pattern.', field='recurrence_pattern')
        if availability.recurrence_pattern == RECURRENCE_WEEKLY and not availability.recurrence_days:
            raise ValidationError('Weekly recurrence needs at least one weekday.', field='recurrence_days')
        if availability.recurrence_pattern == RECURRENCE_MONTHLY and availability.day_of_month is None:
            raise ValidationError('Monthly recurrence needs a day of month.', field='day_of_month')

    if availability.day_of_month is not None and not 1 <= availability.day_of_month <= 31:
        raise ValidationError('Day of month must be between 1 and 31.', field='day_of_month')

    if availability.max_bookings is None or availability.max_bookings < 1:
        raise ValidationError('Maximum bookings must be at least 1.', field='max_bookings')

    if availability.current_bookings > availability.max_bookings:
        raise ValidationError('Current bookings cannot exceed maximum bookings.', field='current_bookings')

    if not 0 <= availability.minimum_notice_hours <= MAX_NOTICE_HOURS:
        raise ValidationError(
            f'Minimum notice hours must be between 0 and {MAX_NOTICE_HOURS}.',
            field='minimum_notice_hours',
        )

    if not 1 <= availability.maximum_advance_days <= MAX_ADVANCE_DAYS:
        raise ValidationError(
            f'Maximum advance days must be between 1 and {MAX_ADVANCE_DAYS}.',
            field='maximum_advance_days',
        )

    if not 0 <= (availability.buffer_minutes or 0) <= MAX_BUFFER_MINUTES:
        raise ValidationError(
            f'Buffer minutes must be between 0 and {MAX_BUFFER_MINUTES}.',
            field='buffer_minutes',
        )

    if availability.minimum_notice_hours >= availability.maximum_advance_days * 24:
        raise ValidationError(
            'Minimum notice must be shorter than the maximum advance window.',
            field='minimum_notice_hours',
        )
