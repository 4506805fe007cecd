from datetime import date, datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar('T')


class MetaData(BaseModel):
    request_id: str
    latency_ms: float


class ListResponse(BaseModel, Generic[T]):
    meta: MetaData
    data: List[T]


class SourceStatusResponse(BaseModel):
    host: str
    last_event_id: int
    last_comment_id: int
    last_status: str
    records_processed: Optional[int] = None
    run_duration_ms: Optional[int] = None
    error_log: Optional[str] = None
    last_polled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class HistorySummaryResponse(BaseModel):
    source: str
    date: date
    views: int
    visitors: int
    clicks: int
    referrers: int

    model_config = ConfigDict(from_attributes=True)


class CommentResponse(BaseModel):
    source: str
    comment_id: int
    post_id: Optional[int] = None
    comment_date: datetime
    author: Optional[str] = None
    url: Optional[str] = None
    content: Optional[str] = None
    status: str

    model_config = ConfigDict(from_attributes=True)

