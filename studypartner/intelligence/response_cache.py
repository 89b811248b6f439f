"""
StudyPartner Intelligence - Response Cache

Hybrid-scope cache for generated answers.

    global   one answer for everyone (factual questions)
    user     personalised to one user
    session  only reused inside one conversation

Lookup order: in-process hot cache → exact hash in the store → (global only)
fuzzy Jaccard pass over the most popular live entries. Expired rows are
never returned; they are purged by cleanup_expired().

TTL is content-tiered (factual 7d, conceptual 3d, procedural and
personalised 24h); user-scope entries are capped at the personalised TTL.

Store failures degrade to a miss (lookup), a failed result (write) or 0
(invalidate/cleanup). A derived user/session scope with no owner id fails the
write; passing that scope explicitly without an owner is a caller bug and
raises DecisionContractError.
"""

import re
import time
import hashlib
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from studypartner.config import (
    CACHE_TTL_HOURS,
    CACHE_SIMILARITY_THRESHOLD,
    CACHE_FUZZY_SAMPLE_SIZE,
    CACHE_MIN_QUERY_LENGTH,
    CACHE_MAX_RESPONSE_LENGTH,
    HOT_CACHE_MAX_ENTRIES,
    HOT_CACHE_TTL_SECONDS,
)
from studypartner.database import get_session_factory
from studypartner.errors import DecisionContractError
from studypartner.models import ResponseCacheEntry, utcnow
from studypartner.intelligence.ttl_cache import TTLCache

logger = logging.getLogger("studypartner.cache")


class CacheScope(str, Enum):
    GLOBAL = "global"
    USER = "user"
    SESSION = "session"


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"


# ─── Query Normalization ─────────────────────────────────────────────────────

_FILLER_PREFIX_RE = re.compile(
    r"^(hey|hi|hello|please|can you|could you|would you|i want to know|"
    r"i need to know|tell me|explain to me)\s+"
)
_CANONICAL_STEMS = (
    (re.compile(r"^what is (a |an |the )?"), "what is "),
    (re.compile(r"^what are (the )?"), "what are "),
    (re.compile(r"^how (do|does|can|should) (i |you |we )?"), "how to "),
    (re.compile(r"^why (do|does|is|are) "), "why "),
)


def _normalize_once(query: str) -> str:
    q = re.sub(r"\s+", " ", query.lower().strip())
    q = re.sub(r"[?!.]+$", "", q)
    q = _FILLER_PREFIX_RE.sub("", q)
    for pattern, replacement in _CANONICAL_STEMS:
        q = pattern.sub(replacement, q)
    return q.strip()


def normalize_query(query: str) -> str:
    """
    Canonical cache form of a query. Idempotent.

    Each rewrite step only ever shortens the text, so iterating to a
    fixed point terminates.
    """
    current = query or ""
    while True:
        nxt = _normalize_once(current)
        if nxt == current:
            return current
        current = nxt


def hash_query(normalized: str, scope: CacheScope, owner_id: Optional[str] = None) -> str:
    if scope == CacheScope.GLOBAL:
        prefix = "g"
    elif scope == CacheScope.USER:
        prefix = f"u:{owner_id}"
    else:
        prefix = f"s:{owner_id}"
    return hashlib.sha256(f"{prefix}:{normalized}".encode("utf-8")).hexdigest()[:32]


def calculate_similarity(a: str, b: str) -> float:
    """Jaccard similarity over words longer than two characters."""
    words_a = {w for w in a.split(" ") if len(w) > 2}
    words_b = {w for w in b.split(" ") if len(w) > 2}
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


# ─── Scope & TTL ─────────────────────────────────────────────────────────────

PERSONAL_MARKERS = (
    "my ", "mine", "i am", "i'm", "i have", "i've",
    "for me", "help me", "my name", "my goal",
    "my level", "my progress", "my score",
)

_FACTUAL_SCOPE_RE = re.compile(
    "|".join([
        r"^what is (a |an |the )?[\w\s]+$",
        r"^define\s+",
        r"^who (is|was|invented|discovered)",
        r"^when (was|did|is)",
        r"^where (is|was|are)",
        r"^how many",
        r"^what year",
    ]),
    re.IGNORECASE,
)


def determine_cache_scope(
    query: str,
    *,
    is_factual_question: bool = False,
    is_personalized: bool = False,
    has_user_context: bool = False,
) -> CacheScope:
    lower = (query or "").lower().strip()
    if is_personalized or any(marker in lower for marker in PERSONAL_MARKERS):
        return CacheScope.USER
    if is_factual_question or _FACTUAL_SCOPE_RE.search(lower):
        return CacheScope.GLOBAL
    return CacheScope.USER if has_user_context else CacheScope.GLOBAL


def determine_ttl(
    scope: CacheScope,
    *,
    is_factual_question: bool = False,
    is_conceptual_question: bool = False,
    is_procedural_question: bool = False,
) -> timedelta:
    hours = CACHE_TTL_HOURS["personalized"]
    if is_factual_question:
        hours = CACHE_TTL_HOURS["factual"]
    elif is_conceptual_question:
        hours = CACHE_TTL_HOURS["conceptual"]
    elif is_procedural_question:
        hours = CACHE_TTL_HOURS["procedural"]
    if scope == CacheScope.USER:
        hours = min(hours, CACHE_TTL_HOURS["personalized"])
    return timedelta(hours=hours)


# ─── Content Filter ──────────────────────────────────────────────────────────

MIN_CACHEABLE_RESPONSE = 50
MAX_CACHEABLE_RESPONSE = 5000

_TIME_SENSITIVE_RE = re.compile(
    r"today|tomorrow|yesterday|this (week|month|year)|\d{1,2}:\d{2}|current(ly)?",
    re.IGNORECASE,
)
_PERSONAL_RESPONSE_RE = re.compile(
    r"your score|your progress|you've (done|completed|studied)|based on your",
    re.IGNORECASE,
)
_EDUCATIONAL_RE = re.compile(
    r"definition|meaning|concept|example|such as|for instance|steps?:|here's how|"
    r"to do this|formula|equation|rule",
    re.IGNORECASE,
)


def should_cache_response(query: str, response: str) -> bool:
    """Is this answer worth sharing across turns? Rejects dated or personal answers."""
    if len(response) < MIN_CACHEABLE_RESPONSE or len(response) > MAX_CACHEABLE_RESPONSE:
        return False
    if _TIME_SENSITIVE_RE.search(response):
        return False
    if _PERSONAL_RESPONSE_RE.search(response):
        return False
    return bool(_EDUCATIONAL_RE.search(response)) or len(query or "") > 20


# ─── Results ─────────────────────────────────────────────────────────────────

@dataclass
class CacheEntry:
    id: str
    query_hash: str
    query_normalized: str
    response: str
    scope: CacheScope
    user_id: Optional[str]
    subject: Optional[str]
    skill_level: Optional[str]
    hit_count: int
    created_at: datetime
    expires_at: datetime
    last_accessed_at: datetime
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: ResponseCacheEntry) -> "CacheEntry":
        return cls(
            id=row.id,
            query_hash=row.query_hash,
            query_normalized=row.query_normalized,
            response=row.response,
            scope=CacheScope(row.scope),
            user_id=row.user_id,
            subject=row.subject,
            skill_level=row.skill_level,
            hit_count=row.hit_count or 0,
            created_at=row.created_at,
            expires_at=row.expires_at,
            last_accessed_at=row.last_accessed_at,
            metadata=dict(row.meta or {}),
        )


@dataclass
class CacheLookupResult:
    status: CacheStatus
    entry: Optional[CacheEntry] = None
    response: Optional[str] = None
    lookup_time_ms: int = 0
    source: Optional[str] = None  # hot | exact | fuzzy

    @property
    def hit(self) -> bool:
        return self.status == CacheStatus.HIT


@dataclass
class CacheWriteResult:
    success: bool
    entry_id: Optional[str] = None
    error: Optional[str] = None


# ─── SQL Store ───────────────────────────────────────────────────────────────

class SQLCacheStore:
    """ai_response_cache table access. One short DB session per call."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_session_factory()

    def find_live(self, query_hash: str, now: datetime) -> Optional[CacheEntry]:
        with self._session_factory() as db:
            row = (
                db.query(ResponseCacheEntry)
                .filter(
                    ResponseCacheEntry.query_hash == query_hash,
                    ResponseCacheEntry.expires_at > now,
                )
                .first()
            )
            return CacheEntry.from_row(row) if row else None

    def popular_global(self, now: datetime, subject: Optional[str] = None,
                       limit: int = CACHE_FUZZY_SAMPLE_SIZE) -> list[CacheEntry]:
        with self._session_factory() as db:
            query = db.query(ResponseCacheEntry).filter(
                ResponseCacheEntry.scope == CacheScope.GLOBAL.value,
                ResponseCacheEntry.expires_at > now,
            )
            if subject:
                query = query.filter(ResponseCacheEntry.subject == subject)
            rows = query.order_by(ResponseCacheEntry.hit_count.desc()).limit(limit).all()
            return [CacheEntry.from_row(r) for r in rows]

    def record_hit(self, entry_id: str, now: datetime) -> None:
        with self._session_factory() as db:
            db.query(ResponseCacheEntry).filter(ResponseCacheEntry.id == entry_id).update(
                {
                    ResponseCacheEntry.hit_count: ResponseCacheEntry.hit_count + 1,
                    ResponseCacheEntry.last_accessed_at: now,
                },
                synchronize_session=False,
            )
            db.commit()

    def upsert(
        self,
        *,
        query_hash: str,
        query_normalized: str,
        response: str,
        scope: CacheScope,
        user_id: Optional[str],
        subject: Optional[str],
        skill_level: Optional[str],
        expires_at: datetime,
        meta: dict,
        now: datetime,
    ) -> str:
        """Insert or refresh by query_hash. Concurrent writers converge on one row."""
        with self._session_factory() as db:
            row = db.query(ResponseCacheEntry).filter(
                ResponseCacheEntry.query_hash == query_hash
            ).first()
            if row is None:
                row = ResponseCacheEntry(
                    query_hash=query_hash,
                    query_normalized=query_normalized,
                    response=response,
                    scope=scope.value,
                    user_id=None if scope == CacheScope.GLOBAL else user_id,
                    subject=subject,
                    skill_level=skill_level,
                    hit_count=0,
                    created_at=now,
                    expires_at=expires_at,
                    last_accessed_at=now,
                    meta=meta,
                )
                db.add(row)
                try:
                    db.commit()
                    return row.id
                except IntegrityError:
                    # Another writer inserted the same hash first
                    db.rollback()
                    row = db.query(ResponseCacheEntry).filter(
                        ResponseCacheEntry.query_hash == query_hash
                    ).one()

            row.response = response
            row.expires_at = expires_at
            row.last_accessed_at = now
            row.meta = meta
            db.commit()
            return row.id

    def delete_matching(
        self,
        *,
        user_id: Optional[str] = None,
        subject: Optional[str] = None,
        scope: Optional[CacheScope] = None,
        older_than: Optional[datetime] = None,
    ) -> int:
        with self._session_factory() as db:
            query = db.query(ResponseCacheEntry)
            if user_id:
                query = query.filter(ResponseCacheEntry.user_id == user_id)
            if subject:
                query = query.filter(ResponseCacheEntry.subject == subject)
            if scope:
                query = query.filter(ResponseCacheEntry.scope == scope.value)
            if older_than:
                query = query.filter(ResponseCacheEntry.created_at < older_than)
            count = query.delete(synchronize_session=False)
            db.commit()
            return count

    def delete_expired(self, now: datetime) -> int:
        with self._session_factory() as db:
            count = (
                db.query(ResponseCacheEntry)
                .filter(ResponseCacheEntry.expires_at < now)
                .delete(synchronize_session=False)
            )
            db.commit()
            return count

    def stats(self) -> dict:
        with self._session_factory() as db:
            per_scope = dict(
                db.query(ResponseCacheEntry.scope, func.count(ResponseCacheEntry.id))
                .group_by(ResponseCacheEntry.scope)
                .all()
            )
            total_hits, avg_hits, oldest, newest = db.query(
                func.sum(ResponseCacheEntry.hit_count),
                func.avg(ResponseCacheEntry.hit_count),
                func.min(ResponseCacheEntry.created_at),
                func.max(ResponseCacheEntry.created_at),
            ).one()
        return {
            "total_entries": sum(per_scope.values()),
            "global_entries": per_scope.get(CacheScope.GLOBAL.value, 0),
            "user_entries": per_scope.get(CacheScope.USER.value, 0),
            "session_entries": per_scope.get(CacheScope.SESSION.value, 0),
            "total_hits": int(total_hits or 0),
            "average_hit_count": float(avg_hits or 0),
            "oldest_entry": oldest,
            "newest_entry": newest,
        }


# ─── Cache Service ───────────────────────────────────────────────────────────

class ResponseCache:
    """
    Public cache surface: lookup / write / invalidate / cleanup_expired / stats.

    `now` returns naive UTC and drives every expiry check, including the
    hot cache, so tests can move time with a fake clock.
    """

    def __init__(
        self,
        store: Optional[SQLCacheStore] = None,
        hot: Optional[TTLCache] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store or SQLCacheStore()
        self._now = now
        self.hot = hot if hot is not None else TTLCache(
            HOT_CACHE_MAX_ENTRIES, HOT_CACHE_TTL_SECONDS,
            clock=lambda: self._now().timestamp(),
        )
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _owner_for(self, scope: CacheScope, user_id: Optional[str], session_id: Optional[str]) -> Optional[str]:
        if scope == CacheScope.USER:
            return user_id
        if scope == CacheScope.SESSION:
            return session_id
        return None

    def _count(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    def lookup(
        self,
        query: str,
        *,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        subject: Optional[str] = None,
        scope: Optional[CacheScope] = None,
        is_factual_question: bool = False,
        is_personalized: bool = False,
    ) -> CacheLookupResult:
        start = time.perf_counter()

        def done(result: CacheLookupResult) -> CacheLookupResult:
            result.lookup_time_ms = int((time.perf_counter() - start) * 1000)
            self._count(result.hit)
            return result

        normalized = normalize_query(query)
        if len(normalized) < CACHE_MIN_QUERY_LENGTH:
            return done(CacheLookupResult(CacheStatus.MISS))

        scope = scope or determine_cache_scope(
            query,
            is_factual_question=is_factual_question,
            is_personalized=is_personalized,
            has_user_context=bool(user_id),
        )
        owner = self._owner_for(scope, user_id, session_id)
        if scope != CacheScope.GLOBAL and not owner:
            return done(CacheLookupResult(CacheStatus.MISS))

        query_hash = hash_query(normalized, scope, owner)
        now = self._now()

        hot = self.hot.get(query_hash)
        if hot is not None:
            response, expires_at = hot
            if expires_at > now:
                logger.debug(f"Cache hit (hot): {query_hash[:8]}")
                return done(CacheLookupResult(CacheStatus.HIT, response=response, source="hot"))
            self.hot.delete(query_hash)

        try:
            entry = self.store.find_live(query_hash, now)
            source = "exact"
            if entry is None and scope == CacheScope.GLOBAL:
                entry = self._fuzzy_match(normalized, subject, now)
                source = "fuzzy"
            if entry is None:
                logger.debug(f"Cache miss: {query_hash[:8]} ({scope.value})")
                return done(CacheLookupResult(CacheStatus.MISS))
            self.store.record_hit(entry.id, now)
        except SQLAlchemyError as e:
            logger.warning(f"Cache lookup failed, treating as miss: {e}")
            return done(CacheLookupResult(CacheStatus.MISS))

        entry.hit_count += 1
        entry.last_accessed_at = now
        self.hot.set(query_hash, (entry.response, entry.expires_at))
        logger.debug(f"Cache hit ({source}): {entry.query_hash[:8]}, hits={entry.hit_count}")
        return done(CacheLookupResult(CacheStatus.HIT, entry=entry, response=entry.response, source=source))

    def _fuzzy_match(self, normalized: str, subject: Optional[str], now: datetime) -> Optional[CacheEntry]:
        for candidate in self.store.popular_global(now, subject, CACHE_FUZZY_SAMPLE_SIZE):
            if calculate_similarity(normalized, candidate.query_normalized) >= CACHE_SIMILARITY_THRESHOLD:
                return candidate
        return None

    def write(
        self,
        query: str,
        response: str,
        *,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        subject: Optional[str] = None,
        skill_level: Optional[str] = None,
        scope: Optional[CacheScope] = None,
        model_used: str = "unknown",
        tokens_used: int = 0,
        response_length: str = "medium",
        complexity: str = "moderate",
        is_factual_question: bool = False,
        is_conceptual_question: bool = False,
        is_procedural_question: bool = False,
        is_personalized: bool = False,
    ) -> CacheWriteResult:
        normalized = normalize_query(query)
        if len(normalized) < CACHE_MIN_QUERY_LENGTH:
            return CacheWriteResult(False, error="Query too short")
        if len(response) > CACHE_MAX_RESPONSE_LENGTH:
            return CacheWriteResult(False, error="Response too long")

        explicit = scope is not None
        scope = scope or determine_cache_scope(
            query,
            is_factual_question=is_factual_question,
            is_personalized=is_personalized,
            has_user_context=bool(user_id),
        )
        owner = self._owner_for(scope, user_id, session_id)
        if scope != CacheScope.GLOBAL and not owner:
            if explicit:
                raise DecisionContractError(f"{scope.value}-scope cache write needs an owner id")
            return CacheWriteResult(False, error=f"{scope.value} scope requires an owner id")

        query_hash = hash_query(normalized, scope, owner)
        now = self._now()
        expires_at = now + determine_ttl(
            scope,
            is_factual_question=is_factual_question,
            is_conceptual_question=is_conceptual_question,
            is_procedural_question=is_procedural_question,
        )
        meta = {
            "original_query": query,
            "model_used": model_used,
            "tokens_used": tokens_used,
            "response_length": response_length,
            "complexity": complexity,
        }

        try:
            entry_id = self.store.upsert(
                query_hash=query_hash,
                query_normalized=normalized,
                response=response,
                scope=scope,
                user_id=user_id,
                subject=subject,
                skill_level=skill_level,
                expires_at=expires_at,
                meta=meta,
                now=now,
            )
        except SQLAlchemyError as e:
            logger.warning(f"Cache write failed: {e}")
            return CacheWriteResult(False, error=str(e))

        self.hot.delete(query_hash)
        logger.info(f"Cached response {query_hash[:8]} ({scope.value}, expires {expires_at:%Y-%m-%d %H:%M})")
        return CacheWriteResult(True, entry_id=entry_id)

    def invalidate(
        self,
        *,
        user_id: Optional[str] = None,
        subject: Optional[str] = None,
        scope: Optional[CacheScope] = None,
        older_than: Optional[datetime] = None,
    ) -> int:
        """Delete matching entries and drop the hot cache. Needs at least one filter."""
        if not any((user_id, subject, scope, older_than)):
            raise DecisionContractError("invalidate needs at least one filter")
        self.hot.clear()
        try:
            count = self.store.delete_matching(
                user_id=user_id, subject=subject, scope=scope, older_than=older_than,
            )
        except SQLAlchemyError as e:
            logger.warning(f"Cache invalidation failed: {e}")
            return 0
        logger.info(f"Invalidated {count} cache entries")
        return count

    def cleanup_expired(self) -> int:
        now = self._now()
        self.hot.sweep()
        try:
            count = self.store.delete_expired(now)
        except SQLAlchemyError as e:
            logger.warning(f"Cache cleanup failed: {e}")
            return 0
        logger.info(f"Cleaned up {count} expired cache entries")
        return count

    def stats(self) -> dict:
        with self._lock:
            hits, misses = self._hits, self._misses
        lookups = hits + misses
        process = {
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / lookups, 3) if lookups else 0.0,
            "hot_entries": len(self.hot),
        }
        try:
            stored = self.store.stats()
        except SQLAlchemyError as e:
            logger.warning(f"Cache stats unavailable: {e}")
            stored = {
                "total_entries": 0, "global_entries": 0, "user_entries": 0,
                "session_entries": 0, "total_hits": 0, "average_hit_count": 0.0,
                "oldest_entry": None, "newest_entry": None,
            }
        return {**stored, **process}
