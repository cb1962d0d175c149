"""
Calendar arithmetic shared by the scheduling engine.

All comparisons happen on timezone-aware UTC instants. A naive datetime is
read as wall-clock time in whichever zone the caller names for it.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, NamedTuple

import pytz

from engagement_scheduler.core.errors import InvalidRange, InvalidTimeZone


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


class TimeRange(NamedTuple):
    start: datetime
    end: datetime


def get_time_zone(name: str) -> pytz.BaseTzInfo:
    if not isinstance(name, str) or not name.strip():
        raise InvalidTimeZone(name)
    try:
        return pytz.timezone(name.strip())
    except pytz.UnknownTimeZoneError as exc:
        raise InvalidTimeZone(name) from exc


def is_valid_time_zone(name: str) -> bool:
    try:
        get_time_zone(name)
    except InvalidTimeZone:
        return False
    return True


def to_utc(instant: datetime, zone: str = 'UTC') -> datetime:
    if instant.tzinfo is None:
        instant = get_time_zone(zone).localize(instant)
    return instant.astimezone(pytz.UTC)


def convert(instant: datetime, from_zone: str, to_zone: str) -> datetime:
    """Return ``instant`` expressed in ``to_zone``.

    A naive ``instant`` is taken as local time in ``from_zone``. The
    underlying point in time never changes, so converting there and back
    yields the same instant.
    """
    get_time_zone(from_zone)
    target = get_time_zone(to_zone)
    return to_utc(instant, from_zone).astimezone(target)


def localize(day: date, clock_time: time, zone: str) -> datetime:
    tz = get_time_zone(zone)
    return tz.localize(datetime.combine(day, clock_time))


def overlap(range_a, range_b) -> bool:
    # half-open: touching boundaries do not overlap
    start_a, end_a = range_a
    start_b, end_b = range_b
    return start_a < end_b and start_b < end_a


def pad_range(time_range, minutes: int) -> TimeRange:
    start, end = time_range
    padding = timedelta(minutes=minutes)
    return TimeRange(start - padding, end + padding)


def duration(start: datetime, end: datetime) -> int:
    if end <= start:
        raise InvalidRange('End time must be after start time.', field='end_time')
    return int((end - start).total_seconds() // 60)


def merge_ranges(ranges: Iterable) -> list[TimeRange]:
    """Union of overlapping or touching ranges, sorted by start."""
    ordered = sorted((TimeRange(start, end) for start, end in ranges), key=lambda item: item.start)
    if not ordered:
        return []

    merged = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if current.start <= last.end:
            if current.end > last.end:
                merged[-1] = TimeRange(last.start, current.end)
        else:
            merged.append(current)

    return merged


def _merge_daily_hours(daily_hours: Iterable[tuple[time, time]]) -> list[tuple[time, time]]:
    bands = []
    for band_start, band_end in daily_hours:
        if band_end <= band_start:
            raise InvalidRange('Daily hours must end after they start.', field='daily_hours')
        bands.append((band_start, band_end))

    bands.sort()
    merged: list[tuple[time, time]] = []
    for band_start, band_end in bands:
        if merged and band_start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], band_end))
        else:
            merged.append((band_start, band_end))
    return merged


class FreeSlotSequence:
    """Ordered free windows of a fixed length inside daily bands.

    Iterating again starts over from the first slot. Candidates are laid on a
    grid that starts at each band's opening time and advances by the slot
    duration plus ``buffer_minutes``, so returned slots never overlap one
    another. A candidate also counts as busy when a busy range falls within
    ``buffer_minutes`` of either end.
    """

    def __init__(
        self,
        window_start: datetime,
        window_end: datetime,
        duration_minutes: int,
        busy_ranges: Iterable = (),
        daily_hours: Iterable[tuple[time, time]] = ((time(9, 0), time(17, 0)),),
        time_zone: str = 'UTC',
        buffer_minutes: int = 0,
    ):
        if duration_minutes <= 0:
            raise InvalidRange('Slot duration must be positive.', field='duration_minutes')
        if buffer_minutes < 0:
            raise InvalidRange('Buffer must not be negative.', field='buffer_minutes')

        self.time_zone = time_zone
        self._tz = get_time_zone(time_zone)
        self.window_start = to_utc(window_start, time_zone)
        self.window_end = to_utc(window_end, time_zone)
        self.duration_minutes = duration_minutes
        self.buffer_minutes = buffer_minutes
        self.busy_ranges = merge_ranges(
            (to_utc(start, time_zone), to_utc(end, time_zone)) for start, end in busy_ranges
        )
        self.daily_hours = _merge_daily_hours(daily_hours)

    def _is_busy(self, candidate: TimeRange) -> bool:
        padded = pad_range(candidate, self.buffer_minutes)
        for busy in self.busy_ranges:
            if busy.start >= padded.end:
                break
            if overlap(padded, busy):
                return True
        return False

    def __iter__(self) -> Iterator[TimeRange]:
        if self.window_end <= self.window_start:
            return

        length = timedelta(minutes=self.duration_minutes)
        step = length + timedelta(minutes=self.buffer_minutes)
        current_day = self.window_start.astimezone(self._tz).date()
        last_day = self.window_end.astimezone(self._tz).date()

        while current_day <= last_day:
            for band_start, band_end in self.daily_hours:
                slot_start = to_utc(self._tz.localize(datetime.combine(current_day, band_start)))
                band_close = to_utc(self._tz.localize(datetime.combine(current_day, band_end)))

                while slot_start + length <= band_close:
                    candidate = TimeRange(slot_start, slot_start + length)
                    slot_start += step

                    if candidate.start < self.window_start:
                        continue
                    if candidate.end > self.window_end:
                        return
                    if self._is_busy(candidate):
                        continue

                    yield TimeRange(candidate.start.astimezone(self._tz), candidate.end.astimezone(self._tz))

            current_day += timedelta(days=1)


def enumerate_free_slots(
    window_start: datetime,
    window_end: datetime,
    duration_minutes: int,
    busy_ranges: Iterable = (),
    daily_hours: Iterable[tuple[time, time]] = ((time(9, 0), time(17, 0)),),
    time_zone: str = 'UTC',
    buffer_minutes: int = 0,
) -> FreeSlotSequence:
    return FreeSlotSequence(
        window_start, window_end, duration_minutes, busy_ranges, daily_hours, time_zone, buffer_minutes
    )
