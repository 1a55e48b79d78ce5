"""Hold-related Pydantic schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AcquireHoldRequest(BaseModel):
    """Request schema for acquiring or extending a hold."""

    resource_id: UUID = Field(..., description="Resource to hold")
    requester_id: Optional[str] = Field(None, min_length=1, max_length=128, description="Member reference")
    ttl_seconds: Optional[int] = Field(None, ge=1, le=3600, description="Hold lifetime; kind default when unset")


class ReleaseHoldRequest(BaseModel):
    """Request schema for releasing a hold."""

    resource_id: UUID = Field(..., description="Resource to release")
    requester_id: Optional[str] = Field(None, min_length=1, max_length=128, description="Member reference")


class GetHoldRequest(BaseModel):
    """Request schema for looking up the active hold of a resource."""

    resource_id: UUID = Field(..., description="Resource to inspect")


class Hold(BaseModel):
    """Hold response schema."""

    resource_id: str = Field(..., description="Held resource")
    hold_by: str = Field(..., description="Member holding the resource")
    hold_expiry: datetime = Field(..., description="Hold expiration time (UTC)")
    acquired_at: Optional[datetime] = Field(None, description="When the current holder first acquired it (UTC)")


class GetHoldResponse(BaseModel):
    """Active hold of a resource, if any."""

    resource_id: str
    hold: Optional[Hold] = None


class ReleaseHoldResponse(BaseModel):
    """Outcome of a release request."""

    resource_id: str
    released: bool = Field(..., description="False when there was no hold to release")
