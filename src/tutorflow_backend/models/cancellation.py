'''
API models for class cancellations, amnesty and cancellation policies.
'''
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# --- Cancellation ---

class CancellationRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class CancellationResponse(BaseModel):
    success: bool = True
    charged: bool
    message: str


class AmnestyResponse(BaseModel):
    success: bool = True
    message: str


class EmailMessage(BaseModel):
    """An HTML e-mail waiting to be handed to the e-mail provider."""
    to: str
    subject: str
    html: str


class CancellationOutcome(BaseModel):
    """
    Internal result of a cancellation. The API returns `charged`/`message`
    and schedules `emails` to be sent after the response.
    """
    charged: bool
    message: str
    invoice_id: Optional[UUID] = None
    notification_ids: list[UUID] = Field(default_factory=list)
    emails: list[EmailMessage] = Field(default_factory=list)


# --- Cancellation Policy ---

class CancellationPolicyRead(BaseModel):
    """
    The policy in force for a teacher. `id` is None when the teacher has not
    configured one and the defaults apply.
    """
    id: Optional[UUID] = None
    teacher_id: UUID
    hours_before_class: int
    charge_percentage: Decimal
    allow_amnesty: bool
    is_active: bool
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CancellationPolicyWrite(BaseModel):
    hours_before_class: int = Field(..., ge=0, le=720)
    charge_percentage: Decimal = Field(..., ge=0, le=100)
    allow_amnesty: bool = True
    is_active: bool = True
