'''
API models for classes, recurring series and their occurrences.
'''
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..database.db_enums import ClassStatusEnum, OccurrenceStatusEnum, RecurrenceFrequencyEnum
from ..database.utils import ensure_utc


class RecurrencePattern(BaseModel):
    """The JSON stored on a series template's `recurrence_pattern` column."""
    frequency: RecurrenceFrequencyEnum
    is_infinite: bool = False


# --- API Read Models (Output) ---

class ClassRead(BaseModel):
    id: UUID
    teacher_id: UUID
    student_id: Optional[UUID] = None
    service_id: Optional[UUID] = None
    series_id: Optional[UUID] = None
    class_date: datetime
    duration_minutes: int
    status: ClassStatusEnum
    is_experimental: bool
    is_group_class: bool
    charge_applied: bool
    notes: Optional[str] = None
    recurrence_pattern: Optional[RecurrencePattern] = None
    recurrence_end_date: Optional[datetime] = None
    participant_ids: list[UUID] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class OccurrenceRead(BaseModel):
    """
    One occurrence of a recurring series as the calendar shows it:
    SCHEDULED follows the base pattern. CANCELED comes from a stored exception
    or from the materialized class being cancelled, RESCHEDULED from an exception.
    """
    occurrence_date: datetime
    status: OccurrenceStatusEnum
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    title: Optional[str] = None
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class GenerateClassesResponse(BaseModel):
    generated: int


class EndRecurrenceResponse(BaseModel):
    success: bool = True
    deleted_count: int
    message: str


# --- API Write Models (Input) ---

class GenerateClassesRequest(BaseModel):
    """
    The calendar window currently rendered by the client.
    """
    view_start: Optional[datetime] = None
    view_end: datetime
    selected_students: list[UUID] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_window(self) -> 'GenerateClassesRequest':
        if self.view_start is not None and self.view_end < self.view_start:
            raise ValueError('view_end cannot be before view_start')
        return self


class EndRecurrenceRequest(BaseModel):
    end_date: datetime


class ClassCreate(BaseModel):
    """
    A class booked by a teacher. With `recurrence` the new class is the
    template (first occurrence) of a recurring series.
    """
    student_id: Optional[UUID] = None
    class_date: datetime
    duration_minutes: int = Field(default=60, gt=0)
    notes: Optional[str] = None
    service_id: Optional[UUID] = None
    is_experimental: bool = False
    is_group_class: bool = False
    participant_ids: list[UUID] = Field(default_factory=list)
    recurrence: Optional[RecurrencePattern] = None
    recurrence_end_date: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_attendees(self) -> 'ClassCreate':
        if self.is_group_class:
            if not self.participant_ids:
                raise ValueError('participant_ids is required for a group class')
        elif self.student_id is None:
            raise ValueError('student_id is required')
        if self.recurrence_end_date is not None:
            if self.recurrence is None:
                raise ValueError('recurrence_end_date requires recurrence')
            if ensure_utc(self.recurrence_end_date) <= ensure_utc(self.class_date):
                raise ValueError('recurrence_end_date must be after class_date')
        return self
