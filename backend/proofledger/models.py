from sqlalchemy import Column, String, DateTime, JSON
from datetime import datetime, timezone

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoreDocument(Base):
    """One shard of the path store: a whole JSON document keyed by shard name."""

    __tablename__ = "path_store_documents"
    shard = Column(String, primary_key=True)
    document = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
