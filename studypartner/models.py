"""
StudyPartner - ORM Models
Response cache entries and per-session adaptive state blobs.
UUID primary keys. Timestamps are naive UTC so SQLite and Postgres compare alike.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Integer, Text, DateTime, JSON, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from studypartner.database import Base


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ─── Response Cache ──────────────────────────────────────────────────────────

class ResponseCacheEntry(Base):
    __tablename__ = "ai_response_cache"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    query_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    query_normalized: Mapped[str] = mapped_column(Text)
    response: Mapped[str] = mapped_column(Text)

    scope: Mapped[str] = mapped_column(String(10), default="global")  # global | user | session
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    subject: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    skill_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    hit_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # original_query, model_used, tokens_used, response_length, complexity
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    __table_args__ = (
        CheckConstraint("scope IN ('global', 'user', 'session')", name="ck_cache_scope"),
        CheckConstraint("scope != 'global' OR user_id IS NULL", name="ck_cache_global_owner"),
        Index("ix_cache_scope_hits", "scope", "hit_count"),
    )


# ─── Adaptive State ──────────────────────────────────────────────────────────

class AdaptiveStateRecord(Base):
    __tablename__ = "adaptive_states"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    state_json: Mapped[str] = mapped_column(Text)  # AdaptiveState.to_json()
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
