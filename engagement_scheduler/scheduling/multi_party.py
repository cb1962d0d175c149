"""
Multi-party Scheduling

Finds windows that every participant can take. Busy time from all
participants is unioned first so the expensive per-participant check only
runs on candidates that survive the union.
"""

from dataclasses import dataclass
from datetime import datetime, time
from typing import Sequence

from engagement_scheduler.core import config
from engagement_scheduler.core.errors import InvalidRange
from engagement_scheduler.models.availability import Availability
from engagement_scheduler.scheduling.conflicts import ConflictResolver
from engagement_scheduler.scheduling.timezone_math import (
    convert,
    enumerate_free_slots,
    get_time_zone,
    merge_ranges,
    pad_range,
    to_utc,
)


@dataclass(frozen=True)
class CandidateSlot:
    start: datetime
    end: datetime
    time_zone: str
    participants: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'timeZone': self.time_zone,
            'participants': list(self.participants),
        }


class MultiPartyScheduler:
    def __init__(
        self,
        resolver: ConflictResolver,
        business_hours: tuple[time, time] | None = None,
        max_results: int = config.MAX_COMMON_SLOTS,
    ):
        self.resolver = resolver
        self.business_hours = business_hours or config.business_hours()
        self.max_results = max_results

    @property
    def store(self):
        return self.resolver.store

    def find_common_slots(
        self,
        participant_availabilities: Sequence[Availability],
        duration_minutes: int,
        earliest_start: datetime,
        latest_end: datetime,
        output_time_zone: str = 'UTC',
    ) -> list[CandidateSlot]:
        get_time_zone(output_time_zone)
        window_start = to_utc(earliest_start, output_time_zone)
        window_end = to_utc(latest_end, output_time_zone)
        if window_end <= window_start:
            raise InvalidRange('Latest end must be after earliest start.', field='latest_end')
        if not participant_availabilities:
            return []

        busy_ranges = []
        for availability in participant_availabilities:
            buffer_minutes = availability.buffer_minutes or 0
            busy_ranges.extend(
                pad_range((booking.start_time, booking.end_time), buffer_minutes)
                for booking in self.store.list_active_bookings(
                    availability.id, pad_range((window_start, window_end), buffer_minutes)
                )
            )

        candidates = enumerate_free_slots(
            window_start,
            window_end,
            duration_minutes,
            merge_ranges(busy_ranges),
            [self.business_hours],
            output_time_zone,
        )

        participants = tuple(availability.owner_id for availability in participant_availabilities)
        common_slots: list[CandidateSlot] = []
        for candidate in candidates:
            if len(common_slots) >= self.max_results:
                break
            if self._works_for_everyone(participant_availabilities, candidate, output_time_zone):
                common_slots.append(CandidateSlot(candidate.start, candidate.end, output_time_zone, participants))

        return common_slots

    def _works_for_everyone(self, participant_availabilities, candidate, output_time_zone: str) -> bool:
        for availability in participant_availabilities:
            local_start = convert(candidate.start, output_time_zone, availability.time_zone)
            local_end = convert(candidate.end, output_time_zone, availability.time_zone)
            result = self.resolver.check_slot_availability(
                availability,
                local_start,
                local_end,
                availability.time_zone,
                suggest_alternatives=False,
            )
            if not result.available:
                return False
        return True
