'''
Pure date arithmetic for recurring class series.

Nothing in here touches the database: the services feed it the series
template and stored exceptions and persist whatever it returns.
'''
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Container, Iterable, Iterator, Optional

from ..database.db_enums import RecurrenceFrequencyEnum, ExceptionStatusEnum, OccurrenceStatusEnum

FREQUENCY_STEP_DAYS = {
    RecurrenceFrequencyEnum.WEEKLY.value: 7,
    RecurrenceFrequencyEnum.BIWEEKLY.value: 14,
    RecurrenceFrequencyEnum.MONTHLY.value: 30,
}


class UnsupportedFrequencyError(ValueError):
    """Raised for a recurrence frequency outside weekly/biweekly/monthly."""
    pass


def step_for(frequency: str) -> timedelta:
    """Returns the gap between two consecutive occurrences of a series."""
    try:
        return timedelta(days=FREQUENCY_STEP_DAYS[frequency])
    except KeyError:
        raise UnsupportedFrequencyError(f"Unsupported frequency: {frequency}")


def next_occurrence(current: datetime, frequency: str) -> datetime:
    return current + step_for(frequency)


def occurrences_from(start: datetime, frequency: str, until: datetime, max_count: int) -> list[datetime]:
    """
    Replays the series increment from `start` (inclusive) up to `until`
    (inclusive), stopping after `max_count` dates even if `until` is not reached.
    """
    step = step_for(frequency)
    dates = []
    current = start
    while current <= until and len(dates) < max_count:
        dates.append(current)
        current = current + step
    return dates


def dates_to_generate(
    last_date: datetime,
    frequency: str,
    target: datetime,
    max_count: int,
    end_date: Optional[datetime] = None,
    skip: Container[datetime] = ()
) -> list[datetime]:
    """
    Dates to materialize after `last_date` so the series reaches `target`.

    Steps forward until an occurrence at or past `target` exists, producing at
    most `max_count` dates. A series `end_date` is exclusive. Dates in `skip`
    are stepped over and do not count against `max_count`.
    """
    step = step_for(frequency)
    dates = []
    current = last_date
    while current < target and len(dates) < max_count:
        current = current + step
        if end_date is not None and current >= end_date:
            break
        if current in skip:
            continue
        dates.append(current)
    return dates


@dataclass
class Occurrence:
    """One occurrence of a series after its exception (if any) was applied."""
    occurrence_date: datetime
    status: OccurrenceStatusEnum
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    title: Optional[str] = None
    description: Optional[str] = None


def expand_series(
    anchor: datetime,
    frequency: str,
    duration_minutes: int,
    window_start: datetime,
    window_end: datetime,
    exceptions: Iterable = (),
    end_date: Optional[datetime] = None,
    max_count: int = 1000
) -> Iterator[Occurrence]:
    """
    Expands a series into the occurrences falling inside
    [window_start, window_end], overlaying stored exceptions keyed by
    their `exception_date`.
    """
    by_date = {exc.exception_date: exc for exc in exceptions}
    step = step_for(frequency)
    current = anchor
    count = 0
    while current <= window_end and count < max_count:
        if end_date is not None and current >= end_date:
            return
        count += 1
        if current >= window_start:
            exc = by_date.get(current)
            if exc is None:
                yield Occurrence(
                    occurrence_date=current,
                    status=OccurrenceStatusEnum.SCHEDULED,
                    start_time=current,
                    end_time=current + timedelta(minutes=duration_minutes),
                    duration_minutes=duration_minutes
                )
            elif exc.status == ExceptionStatusEnum.CANCELED.value:
                yield Occurrence(
                    occurrence_date=current,
                    status=OccurrenceStatusEnum.CANCELED,
                    start_time=current,
                    end_time=current + timedelta(minutes=duration_minutes),
                    duration_minutes=duration_minutes
                )
            else:
                new_duration = exc.new_duration_minutes or duration_minutes
                new_start = exc.new_start_time or current
                yield Occurrence(
                    occurrence_date=current,
                    status=OccurrenceStatusEnum.RESCHEDULED,
                    start_time=new_start,
                    end_time=exc.new_end_time or new_start + timedelta(minutes=new_duration),
                    duration_minutes=new_duration,
                    title=exc.new_title,
                    description=exc.new_description
                )
        current = current + step
