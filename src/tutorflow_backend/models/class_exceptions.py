'''
API models for exceptions recorded against recurring class series.
'''
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..database.db_enums import ExceptionActionEnum, ExceptionStatusEnum


class RescheduleData(BaseModel):
    """
    The new slot for a rescheduled occurrence. For a batch reschedule,
    `start_time` is the new start of the first occurrence only.
    """
    start_time: datetime
    end_time: Optional[datetime] = None
    title: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: int = Field(..., gt=0)

    @model_validator(mode='after')
    def validate_times(self) -> 'RescheduleData':
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError('end_time must be after start_time')
        return self


class ClassExceptionCreate(BaseModel):
    original_class_id: UUID
    exception_date: datetime
    action: ExceptionActionEnum
    new_data: Optional[RescheduleData] = None


class FutureClassExceptionsCreate(BaseModel):
    original_class_id: UUID
    from_date: datetime
    action: ExceptionActionEnum
    new_data: Optional[RescheduleData] = None
    end_date: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_range(self) -> 'FutureClassExceptionsCreate':
        if self.end_date is not None and self.end_date < self.from_date:
            raise ValueError('end_date cannot be before from_date')
        return self


class ClassExceptionRead(BaseModel):
    id: UUID
    original_class_id: UUID
    exception_date: datetime
    status: ExceptionStatusEnum
    new_start_time: Optional[datetime] = None
    new_end_time: Optional[datetime] = None
    new_title: Optional[str] = None
    new_description: Optional[str] = None
    new_duration_minutes: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ClassExceptionResponse(BaseModel):
    success: bool = True
    exception: ClassExceptionRead
    message: str


class FutureClassExceptionsResponse(BaseModel):
    success: bool = True
    affected_count: int
    message: str
