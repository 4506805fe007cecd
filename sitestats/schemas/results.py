from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class Outcome(str, Enum):
    VIEW = "view"
    CLICK = "click"
    SKIPPED = "skipped"  # id at or below the watermark
    BOT = "bot"
    SUPPRESSED = "suppressed"  # dedup window
    IGNORED = "ignored"  # click to the site's own non-media pages
    ANOMALY = "anomaly"


class ClassifiedBatch(BaseModel):
    max_id: int = 0
    views: int = 0
    clicks: int = 0
    referrers: int = 0
    skipped: int = 0
    bots: int = 0
    suppressed: int = 0
    ignored: int = 0
    anomalies: int = 0

    @property
    def recorded(self) -> int:
        return self.views + self.clicks


class SourceOutcome(BaseModel):
    host: str
    ok: bool
    events: ClassifiedBatch = Field(default_factory=ClassifiedBatch)
    comments: int = 0
    last_event_id: Optional[int] = None
    last_comment_id: Optional[int] = None
    duration_ms: int = 0
    error: Optional[str] = None


class BatchResult(BaseModel):
    sources: List[SourceOutcome] = Field(default_factory=list)
    summaries_written: int = 0
    enrichment_started: bool = False

    @property
    def failed(self) -> List[str]:
        return [s.host for s in self.sources if not s.ok]
