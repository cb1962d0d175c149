from contextlib import contextmanager
from datetime import date, datetime, time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError

from engagement_scheduler.core.errors import (
    Conflict,
    InvalidTimeZone,
    InvalidTransition,
    NotFound,
    PolicyViolation,
    SchedulingError,
    ServiceNotRunning,
    ValidationError,
)
from engagement_scheduler.models.availability import (
    AVAILABILITY_STATUSES,
    RECURRENCE_PATTERNS,
    SCHEDULE_ONE_TIME,
    SCHEDULE_TYPES,
)
from engagement_scheduler.models.booking import BOOKING_STATUSES
from engagement_scheduler.scheduling.service import SchedulingService

router = APIRouter(tags=['scheduling'])

MAX_NOTES_LENGTH = 2000
MAX_COMMON_SLOT_DURATION_MINUTES = 12 * 60

ERROR_STATUS_CODES = (
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidTimeZone, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (Conflict, status.HTTP_409_CONFLICT),
    (PolicyViolation, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (ServiceNotRunning, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _normalize_user_id(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('User id is required.')
    return normalized


class CreateAvailabilityRequest(BaseModel):
    owner_id: str
    title: str | None = None
    schedule_type: str = SCHEDULE_ONE_TIME
    start_date: date
    end_date: date | None = None
    daily_start_time: time
    daily_end_time: time
    time_zone: str = 'UTC'
    recurrence_pattern: str | None = None
    recurrence_days: list[int] | None = None
    day_of_month: int | None = None
    max_bookings: int = 1
    minimum_notice_hours: int | None = None
    maximum_advance_days: int | None = None
    buffer_minutes: int | None = None

    @field_validator('owner_id')
    @classmethod
    def validate_owner_id(cls, value: str) -> str:
        return _normalize_user_id(value)

    @field_validator('schedule_type')
    @classmethod
    def validate_schedule_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SCHEDULE_TYPES:
            raise ValueError('Invalid schedule type.')
        return normalized

    @field_validator('recurrence_pattern')
    @classmethod
    def validate_recurrence_pattern(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip().lower()
        if normalized not in RECURRENCE_PATTERNS:
            raise ValueError('Invalid recurrence pattern.')
        return normalized


class AvailabilityStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in AVAILABILITY_STATUSES:
            raise ValueError('Invalid availability status.')
        return normalized


class AvailabilityResponse(BaseModel):
    id: int
    owner_id: str
    title: str | None = None
    schedule_type: str
    start_date: date
    end_date: date | None = None
    daily_start_time: time
    daily_end_time: time
    time_zone: str
    recurrence_pattern: str | None = None
    recurrence_days: list[int] | None = None
    day_of_month: int | None = None
    status: str
    max_bookings: int
    current_bookings: int
    minimum_notice_hours: int
    maximum_advance_days: int
    buffer_minutes: int

    class Config:
        from_attributes = True


class SlotCheckRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    time_zone: str = 'UTC'


class CreateBookingRequest(BaseModel):
    availability_id: int
    booked_by: str
    start_time: datetime
    end_time: datetime
    time_zone: str = 'UTC'
    notes: str | None = None
    attendee_info: dict[str, Any] | None = None

    @field_validator('booked_by')
    @classmethod
    def validate_booked_by(cls, value: str) -> str:
        return _normalize_user_id(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')

        return normalized


class UpdateBookingRequest(BaseModel):
    start_time: datetime | None = None
    end_time: datetime | None = None
    time_zone: str | None = None
    notes: str | None = None
    attendee_info: dict[str, Any] | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: datetime | None) -> datetime:
        if value is None:
            raise ValueError('Booking times cannot be cleared.')
        return value


class ConfirmBookingRequest(BaseModel):
    confirmed_by: str

    @field_validator('confirmed_by')
    @classmethod
    def validate_confirmed_by(cls, value: str) -> str:
        return _normalize_user_id(value)


class CancelBookingRequest(BaseModel):
    cancelled_by: str
    reason: str = ''

    @field_validator('cancelled_by')
    @classmethod
    def validate_cancelled_by(cls, value: str) -> str:
        return _normalize_user_id(value)


class BookingResponse(BaseModel):
    id: int
    availability_id: int
    booked_by: str
    start_time: datetime
    end_time: datetime
    time_zone: str
    duration_minutes: int
    notes: str | None = None
    attendee_info: dict[str, Any] | None = None
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    confirmed_by: str | None = None
    confirmed_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


class SuggestedTimeResponse(BaseModel):
    start: datetime
    end: datetime
    time_zone: str

    class Config:
        from_attributes = True


class SlotCheckResponse(BaseModel):
    available: bool
    reason: str | None = None
    message: str | None = None
    conflicting_bookings: list[BookingResponse] = []
    suggested_times: list[SuggestedTimeResponse] = []

    class Config:
        from_attributes = True


class CommonSlotsRequest(BaseModel):
    availability_ids: list[int] = Field(min_length=1)
    duration_minutes: int = Field(gt=0, le=MAX_COMMON_SLOT_DURATION_MINUTES)
    earliest_start: datetime
    latest_end: datetime
    time_zone: str = 'UTC'


class CandidateSlotResponse(BaseModel):
    start: datetime
    end: datetime
    time_zone: str
    participants: list[str]

    class Config:
        from_attributes = True


class BookingStatsResponse(BaseModel):
    pending: int
    confirmed: int
    cancelled: int
    completed: int
    total: int
    total_duration: int
    average_duration: int


def get_scheduler(request: Request) -> SchedulingService:
    return request.app.state.scheduler


@contextmanager
def scheduling_errors():
    try:
        yield
    except SchedulingError as exc:
        for error_type, status_code in ERROR_STATUS_CODES:
            if isinstance(exc, error_type):
                raise HTTPException(status_code=status_code, detail=exc.to_dict()) from exc
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict()) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


@router.post('/availability', response_model=AvailabilityResponse, status_code=status.HTTP_201_CREATED)
def create_availability(data: CreateAvailabilityRequest, scheduler: SchedulingService = Depends(get_scheduler)):
    with scheduling_errors():
        return scheduler.create_availability(data.model_dump())


@router.get('/availability/{availability_id}', response_model=AvailabilityResponse)
def get_availability(availability_id: int, scheduler: SchedulingService = Depends(get_scheduler)):
    with scheduling_errors():
        return scheduler.get_availability(availability_id)


@router.patch('/availability/{availability_id}/status', response_model=AvailabilityResponse)
def update_availability_status(
    availability_id: int,
    data: AvailabilityStatusRequest,
    scheduler: SchedulingService = Depends(get_scheduler),
):
    with scheduling_errors():
        return scheduler.set_availability_status(availability_id, data.status)


@router.delete('/availability/{availability_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_availability(availability_id: int, scheduler: SchedulingService = Depends(get_scheduler)):
    with scheduling_errors():
        scheduler.delete_availability(availability_id)


@router.post('/availability/{availability_id}/check', response_model=SlotCheckResponse)
def check_slot(
    availability_id: int,
    data: SlotCheckRequest,
    scheduler: SchedulingService = Depends(get_scheduler),
):
    with scheduling_errors():
        result = scheduler.check_slot(availability_id, data.start_time, data.end_time, data.time_zone)
        return SlotCheckResponse.model_validate(result)


@router.get('/availability/{availability_id}/bookings', response_model=list[BookingResponse])
def list_availability_bookings(
    availability_id: int,
    booking_status: str | None = Query(default=None, alias='status'),
    scheduler: SchedulingService = Depends(get_scheduler),
):
    if booking_status is not None and booking_status not in BOOKING_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid booking status.')

    with scheduling_errors():
        return scheduler.list_bookings(availability_id=availability_id, status=booking_status)


@router.get('/availability/{availability_id}/stats', response_model=BookingStatsResponse)
def get_booking_stats(availability_id: int, scheduler: SchedulingService = Depends(get_scheduler)):
    with scheduling_errors():
        return scheduler.booking_stats(availability_id)


@router.post('/bookings', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(data: CreateBookingRequest, scheduler: SchedulingService = Depends(get_scheduler)):
    with scheduling_errors():
        return scheduler.request_booking(data.model_dump())


@router.get('/bookings', response_model=list[BookingResponse])
def list_bookings(
    booked_by: str | None = Query(default=None),
    booking_status: str | None = Query(default=None, alias='status'),
    scheduler: SchedulingService = Depends(get_scheduler),
):
    if booking_status is not None and booking_status not in BOOKING_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid booking status.')

    normalized_user = booked_by.strip() if booked_by else None
    with scheduling_errors():
        return scheduler.list_bookings(booked_by=normalized_user or None, status=booking_status)


@router.get('/bookings/{booking_id}', response_model=BookingResponse)
def get_booking(booking_id: int, scheduler: SchedulingService = Depends(get_scheduler)):
    with scheduling_errors():
        return scheduler.get_booking(booking_id)


@router.patch('/bookings/{booking_id}', response_model=BookingResponse)
def update_booking(
    booking_id: int,
    data: UpdateBookingRequest,
    scheduler: SchedulingService = Depends(get_scheduler),
):
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='No changes supplied.')

    with scheduling_errors():
        return scheduler.update_booking(booking_id, changes)


@router.post('/bookings/{booking_id}/confirm', response_model=BookingResponse)
def confirm_booking(
    booking_id: int,
    data: ConfirmBookingRequest,
    scheduler: SchedulingService = Depends(get_scheduler),
):
    with scheduling_errors():
        return scheduler.confirm_booking(booking_id, data.confirmed_by)


@router.post('/bookings/{booking_id}/cancel', response_model=BookingResponse)
def cancel_booking(
    booking_id: int,
    data: CancelBookingRequest,
    scheduler: SchedulingService = Depends(get_scheduler),
):
    with scheduling_errors():
        return scheduler.cancel_booking(booking_id, data.cancelled_by, data.reason)


@router.post('/bookings/{booking_id}/complete', response_model=BookingResponse)
def complete_booking(booking_id: int, scheduler: SchedulingService = Depends(get_scheduler)):
    with scheduling_errors():
        return scheduler.complete_booking(booking_id)


@router.post('/scheduling/common-slots', response_model=list[CandidateSlotResponse])
def find_common_slots(data: CommonSlotsRequest, scheduler: SchedulingService = Depends(get_scheduler)):
    with scheduling_errors():
        slots = scheduler.find_common_slots(
            data.availability_ids,
            data.duration_minutes,
            data.earliest_start,
            data.latest_end,
            data.time_zone,
        )
        return [CandidateSlotResponse.model_validate(slot) for slot in slots]
