"""Pydantic schemas for contacts.

Learn: Separate schemas for create/update/read keeps the API clean.
- ContactCreate: the public contact form body
- ContactUpdate: full edit from the dashboard (all optional)
- StatusChange: dedicated schema for status updates
- ContactRead: what the API returns and what realtime envelopes carry
"""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

Subject = Literal["general", "demo", "support", "partnership"]
Status = Literal["new", "read", "replied", "archived"]


class ContactCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    subject: Subject = "general"
    message: str = Field(..., min_length=10, max_length=1000)

    @field_validator("name", "message", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="after")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class ContactUpdate(BaseModel):
    """Partial update — only fields present in the body are applied."""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    subject: Optional[Subject] = None
    message: Optional[str] = Field(None, min_length=10, max_length=1000)
    status: Optional[Status] = None
    is_read: Optional[bool] = None

    @field_validator("email", mode="after")
    @classmethod
    def lowercase_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class StatusChange(BaseModel):
    status: Status


class ContactRead(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    subject: str
    message: str
    user_id: Optional[uuid.UUID]
    status: str
    is_read: bool
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(
            page=page,
            limit=limit,
            total=total,
            pages=(total + limit - 1) // limit,
            has_next=page * limit < total,
            has_prev=page > 1,
        )


class ContactPage(BaseModel):
    data: list[ContactRead]
    pagination: Pagination


class ContactStats(BaseModel):
    total: int = 0
    new: int = 0
    read: int = 0
    replied: int = 0
    archived: int = 0
    unread: int = 0
    last_30_days: int = 0
