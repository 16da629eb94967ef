"""Problem domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...config import DEFAULT_PREVIEW_LEAD_TIME, DEFAULT_PREVIEW_LEAD_UNIT

PREVIEW_LEAD_UNITS = {"minutes", "hours"}


class ProblemCreate(BaseModel):
    """Schema for creating a draft problem"""

    title: Optional[str] = None
    content: Optional[str] = None
    scheduledPublishAt: Optional[datetime] = None
    previewLeadTime: int = DEFAULT_PREVIEW_LEAD_TIME
    previewLeadUnit: str = DEFAULT_PREVIEW_LEAD_UNIT

    @field_validator("previewLeadTime")
    @classmethod
    def validate_lead_time(cls, v: int) -> int:
        if v < 0:
            raise ValueError("previewLeadTime cannot be negative")
        return v

    @field_validator("previewLeadUnit")
    @classmethod
    def validate_lead_unit(cls, v: str) -> str:
        v = v.lower()
        if v not in PREVIEW_LEAD_UNITS:
            raise ValueError("previewLeadUnit must be 'minutes' or 'hours'")
        return v


class ProblemUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    scheduledPublishAt: Optional[datetime] = None
    previewLeadTime: Optional[int] = None
    previewLeadUnit: Optional[str] = None

    @field_validator("previewLeadTime")
    @classmethod
    def validate_lead_time(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("previewLeadTime cannot be negative")
        return v

    @field_validator("previewLeadUnit")
    @classmethod
    def validate_lead_unit(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.lower()
        if v not in PREVIEW_LEAD_UNITS:
            raise ValueError("previewLeadUnit must be 'minutes' or 'hours'")
        return v


class PublishRequest(BaseModel):
    """Publish now, or schedule the automatic publication for a later time"""

    scheduledPublishAt: Optional[datetime] = None


class ProblemResponse(BaseModel):
    id: int
    title: Optional[str] = None
    content: Optional[str] = None
    status: str
    scheduledPublishAt: Optional[datetime] = None
    previewLeadTime: int
    previewLeadUnit: str
    createdBy: int
    createdAt: Optional[datetime] = None


class PublishResponse(BaseModel):
    success: bool
    published: bool
    message: str
    problem: ProblemResponse
