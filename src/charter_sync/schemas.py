# SPDX-License-Identifier: MIT
"""Entity schemas checked by the data integrity validator."""

import re
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import PlanStatus


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_email(email: str | None) -> bool:
    """
    Validate e-mail address format.

    Args:
        email: Address to validate

    Returns:
        True if the address has a local part, an @ and a dotted domain

    Examples:
        >>> validate_email("founder@acme.io")
        True
        >>> validate_email("founder@localhost")
        False
    """
    if not email:
        return False

    return bool(EMAIL_PATTERN.match(email.strip()))


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so timestamps always compare."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class _TimestampedSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    created_at: datetime = Field(..., description="Creation time (ISO-8601)")
    updated_at: datetime = Field(..., description="Last modification (ISO-8601)")

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def make_aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)


class BusinessPlanSchema(_TimestampedSchema):
    """Business plan as stored in the record store."""

    id: str = Field(..., min_length=1, description="Plan id")
    title: str = Field(..., min_length=1, description="Plan title")
    description: str | None = Field(None, description="Short description")
    sections: dict[str, str] = Field(..., description="Section id to section body")
    user_id: str | None = Field(None, description="Owner id")
    status: PlanStatus = Field(PlanStatus.DRAFT, description="Editorial status")


class UserProfileSchema(_TimestampedSchema):
    """User profile as stored in the record store."""

    id: str = Field(..., min_length=1, description="User id")
    email: str = Field(..., description="Contact e-mail")
    full_name: str = Field(..., min_length=1, description="Display name")
    company: str | None = Field(None, description="Company name")
    role: str | None = Field(None, description="Role within the company")

    @field_validator("email", mode="after")
    @classmethod
    def check_email(cls, v: str) -> str:
        if not validate_email(v):
            raise ValueError(f"Invalid email address: {v}")
        return v.strip()


class SectionChangeSchema(BaseModel):
    """Change to a single named section of a business plan."""

    model_config = ConfigDict(extra="allow")

    plan_id: str = Field(..., min_length=1, description="Parent plan id")
    section_id: str = Field(..., min_length=1, description="Section key")
    content: str | None = Field(None, description="New body; unused on delete")
