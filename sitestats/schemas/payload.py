"""
Typed shapes of the remote batch payload.
Every record is validated on its own at the ingestion boundary, so one malformed
event becomes a dropped record instead of a failed batch.
"""
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


def parse_utc(value: Any) -> Any:
    """Remote timestamps are UTC strings like '2025-01-01 10:00:00'."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return value


def remote_id(record: Any, key: str) -> Optional[int]:
    """Integer id of a raw record, or None when absent or not a whole number."""
    if not isinstance(record, dict):
        return None
    value = record.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _blank_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class RawEvent(BaseModel):
    id: int = Field(..., description="Remote event id, increasing per source")
    time: datetime = Field(..., description="UTC time of the hit")
    click: Optional[str] = Field(None, description="Outbound link target, absent for page views")
    page: str = Field(..., description="Page the hit happened on")
    referrer: Optional[str] = None
    ip: str = ""
    user_agent: str = ""
    title: Optional[str] = None

    @field_validator("time", mode="before")
    @classmethod
    def normalize_time(cls, v):
        return parse_utc(v)

    @field_validator("click", "referrer", "title", mode="before")
    @classmethod
    def blank_is_absent(cls, v):
        return _blank_to_none(v)

    @field_validator("page")
    @classmethod
    def page_required(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("page url is empty")
        return v

    @field_validator("ip", "user_agent", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return "" if v is None else v


class RawComment(BaseModel):
    comment_id: int
    comment_post_id: Optional[int] = None
    comment_date_gmt: datetime
    comment_author: Optional[str] = None
    comment_author_email: Optional[str] = None
    comment_url: Optional[str] = None
    comment_content: Optional[str] = None
    comment_approved: str = "0"

    @field_validator("comment_date_gmt", mode="before")
    @classmethod
    def normalize_time(cls, v):
        return parse_utc(v)

    @field_validator("comment_approved", mode="before")
    @classmethod
    def status_as_text(cls, v):
        return "0" if v is None else str(v)


class RemoteBatch(BaseModel):
    events: List[Any] = Field(default_factory=list)
    comments: List[Any] = Field(default_factory=list)
