from datetime import datetime
from typing import Any, List
from zoneinfo import ZoneInfo

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from sitestats.core.logging_config import get_logger
from sitestats.db.models import Comment, Source
from sitestats.schemas.payload import RawComment, remote_id

logger = get_logger("comments")


class CommentSynchronizer:
    """
    Upserts remote comments keyed by (source, remote id).
    Content is written once; a re-delivered comment only refreshes its status.
    """

    def __init__(self, local_timezone: str = "UTC"):
        self.tz = ZoneInfo(local_timezone)

    def to_local(self, gmt: datetime) -> datetime:
        return gmt.astimezone(self.tz).replace(tzinfo=None)

    async def sync(self, session: AsyncSession, source: Source, raw_comments: List[Any]) -> int:
        synced = 0
        for raw in raw_comments:
            comment_id = remote_id(raw, "comment_id")
            if comment_id is None:
                logger.warning("comment_without_id", source=source.host)
                continue
            # every delivered id moves the watermark, even if the record is unusable
            source.last_comment_id = comment_id

            try:
                remote = RawComment.model_validate(raw)
            except ValidationError as e:
                logger.warning("comment_anomaly", source=source.host, comment_id=comment_id, error=str(e))
                continue

            result = await session.execute(
                select(Comment).where(
                    Comment.source == source.host,
                    Comment.comment_id == remote.comment_id,
                )
            )
            existing = result.scalars().first()

            if existing:
                if existing.status != remote.comment_approved:
                    logger.info("comment_status_changed", source=source.host, comment_id=remote.comment_id,
                                old=existing.status, new=remote.comment_approved)
                existing.status = remote.comment_approved
            else:
                session.add(Comment(
                    source=source.host,
                    comment_id=remote.comment_id,
                    post_id=remote.comment_post_id,
                    comment_date=self.to_local(remote.comment_date_gmt),
                    comment_date_gmt=remote.comment_date_gmt,
                    author=remote.comment_author,
                    email=remote.comment_author_email,
                    url=remote.comment_url,
                    content=remote.comment_content,
                    status=remote.comment_approved,
                ))
                # flush so a duplicate id later in the same batch finds this row
                await session.flush()
            synced += 1
        return synced
