'''
Models reported by the billing jobs.
'''
from uuid import UUID

from pydantic import BaseModel, Field


class OrphanChargesSummary(BaseModel):
    processed: int = 0
    dropped: int = 0
    invoice_ids: list[UUID] = Field(default_factory=list)
    message: str = ""
