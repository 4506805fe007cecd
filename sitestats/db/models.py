from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class Source(Base):
    __tablename__ = "sources"

    id = Column(Integer, primary_key=True, index=True)
    host = Column(String, unique=True, index=True, nullable=False)
    last_event_id = Column(Integer, nullable=False, default=0)
    last_comment_id = Column(Integer, nullable=False, default=0)

    # Poll bookkeeping
    last_status = Column(String, nullable=False, default="success")  # success, failure
    records_processed = Column(Integer, default=0)
    run_duration_ms = Column(Integer, default=0)
    error_log = Column(String, nullable=True)
    last_polled_at = Column(DateTime(timezone=True), nullable=True)


class ViewFact(Base):
    __tablename__ = "view_facts"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    page = Column(Text, nullable=False)
    ip = Column(String, nullable=False)
    user_agent = Column(Text, nullable=False, default="")
    agent = Column(String, nullable=True)
    title = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)
    # Written exactly once by the enrichment worker
    country = Column(String(2), nullable=True)

    __table_args__ = (
        Index("ix_view_facts_source_date", "source", "date"),
    )


class ClickFact(Base):
    __tablename__ = "click_facts"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    url = Column(Text, nullable=False)
    domain = Column(String, nullable=False, index=True)
    page = Column(Text, nullable=False)

    __table_args__ = (
        Index("ix_click_facts_source_timestamp", "source", "timestamp"),
    )


class ReferrerFact(Base):
    __tablename__ = "referrer_facts"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    referrer = Column(Text, nullable=False)
    page = Column(Text, nullable=False)

    __table_args__ = (
        Index("ix_referrer_facts_source_timestamp", "source", "timestamp"),
    )


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String, nullable=False)
    comment_id = Column(Integer, nullable=False)
    post_id = Column(Integer, nullable=True)
    comment_date = Column(DateTime, nullable=False)  # local wall-clock time
    comment_date_gmt = Column(DateTime(timezone=True), nullable=False)
    author = Column(String, nullable=True)
    email = Column(String, nullable=True)
    url = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    status = Column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint('source', 'comment_id', name='uix_comment_source_remote_id'),
    )


class HistorySummary(Base):
    __tablename__ = "history_summaries"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    views = Column(Integer, nullable=False, default=0)
    visitors = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)
    referrers = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('source', 'date', name='uix_history_source_date'),
    )


class Country(Base):
    __tablename__ = "countries"

    code = Column(String(2), primary_key=True)
    name = Column(String, nullable=False)


class EnrichmentCursor(Base):
    __tablename__ = "enrichment_cursor"

    id = Column(Integer, primary_key=True)
    last_view_id = Column(Integer, nullable=False, default=0)
