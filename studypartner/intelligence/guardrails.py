"""
StudyPartner Intelligence - Guardrails

Bounds per-session resource use. Nothing in here raises on a limit:
fallback permission turns off, token budgets get clamped, history gets
trimmed. The turn always completes, at reduced quality if it has to.

Limits (defaults from config):
    max fallback LLM calls per session   10
    fallback call timeout                2000 ms
    max tokens per response              1200
    max tokens per session               50000
    fallback calls per rolling window    10 / 60 s (per session key)
"""

import time
import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Optional

from studypartner import config
from studypartner.intelligence.types import ResponseConfig, ResponseLength, SessionContext

logger = logging.getLogger("studypartner.guardrails")

# Budgets below this are too small for anything but a short answer
SHORT_ANSWER_TOKEN_FLOOR = 300


@dataclass(frozen=True)
class GuardrailPolicy:
    max_fallback_calls_per_session: int = 10
    fallback_call_timeout_ms: int = 2000
    max_tokens_per_response: int = 1200
    max_tokens_per_session: int = 50000
    memory_extraction_interval: int = 5
    max_memories_per_session: int = 20
    max_history_size: int = 50

    @classmethod
    def from_config(cls) -> "GuardrailPolicy":
        return cls(
            max_fallback_calls_per_session=config.MAX_FALLBACK_CALLS_PER_SESSION,
            fallback_call_timeout_ms=config.FALLBACK_CALL_TIMEOUT_MS,
            max_tokens_per_response=config.MAX_TOKENS_PER_RESPONSE,
            max_tokens_per_session=config.MAX_TOKENS_PER_SESSION,
            memory_extraction_interval=config.MEMORY_EXTRACTION_INTERVAL,
            max_memories_per_session=config.MAX_MEMORIES_PER_SESSION,
            max_history_size=config.MAX_HISTORY_SIZE,
        )

    @property
    def fallback_timeout_seconds(self) -> float:
        return self.fallback_call_timeout_ms / 1000.0


DEFAULT_GUARDRAILS = GuardrailPolicy()


# ─── Rate Limiter ────────────────────────────────────────────────────────────

class RateLimiter:
    """
    Rolling-window call counter per key (session id).

    Process-local. allows() does not consume; record() does, so a session
    is only charged when a fallback call actually went out.
    """

    def __init__(
        self,
        max_calls: int = config.RATE_LIMIT_MAX_CALLS,
        window_seconds: float = config.RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._calls: dict[str, list[float]] = {}

    def _prune(self, key: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        recent = [t for t in self._calls.get(key, []) if t > cutoff]
        if recent:
            self._calls[key] = recent
        else:
            self._calls.pop(key, None)
        return recent

    def allows(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            return len(self._prune(key, now)) < self.max_calls

    def record(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            self._prune(key, now)
            self._calls.setdefault(key, []).append(now)

    def usage(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            return len(self._prune(key, now))

    def sweep(self) -> int:
        """Forget keys with no calls inside the window. Returns keys dropped."""
        now = self._clock()
        with self._lock:
            keys = list(self._calls)
            for key in keys:
                self._prune(key, now)
            return len(keys) - len(self._calls)

    def reset(self, key: str) -> None:
        with self._lock:
            self._calls.pop(key, None)


# ─── Checks ──────────────────────────────────────────────────────────────────

def should_use_fallback(
    ctx: SessionContext,
    policy: GuardrailPolicy = DEFAULT_GUARDRAILS,
    limiter: Optional[RateLimiter] = None,
) -> bool:
    """May this session spend another fallback LLM call?"""
    if ctx.fallback_call_count >= policy.max_fallback_calls_per_session:
        logger.info(
            f"Fallback budget spent for session {ctx.session_id} "
            f"({ctx.fallback_call_count}/{policy.max_fallback_calls_per_session})"
        )
        return False
    if limiter is not None and not limiter.allows(ctx.session_id):
        logger.info(f"Fallback rate limited for session {ctx.session_id}")
        return False
    return True


def remaining_session_tokens(ctx: SessionContext, policy: GuardrailPolicy = DEFAULT_GUARDRAILS) -> int:
    return max(0, policy.max_tokens_per_session - ctx.total_tokens_used)


def enforce_token_limit(
    cfg: ResponseConfig,
    ctx: SessionContext,
    policy: GuardrailPolicy = DEFAULT_GUARDRAILS,
) -> ResponseConfig:
    """
    Clamp max_tokens to min(requested, remaining session budget, per-response cap).

    A budget too small for a medium answer also forces short length.
    """
    remaining = remaining_session_tokens(ctx, policy)
    limit = min(cfg.max_tokens, remaining, policy.max_tokens_per_response)
    if limit == cfg.max_tokens:
        return cfg

    logger.info(
        f"Token budget clamped for session {ctx.session_id}: "
        f"{cfg.max_tokens} -> {limit} (remaining={remaining})"
    )
    clamped = replace(cfg, max_tokens=limit)
    if limit < SHORT_ANSWER_TOKEN_FLOOR and clamped.length != ResponseLength.SHORT:
        clamped = replace(clamped, length=ResponseLength.SHORT)
    return clamped


def should_extract_memories(message_count: int, policy: GuardrailPolicy = DEFAULT_GUARDRAILS) -> bool:
    interval = policy.memory_extraction_interval
    return interval > 0 and message_count > 0 and message_count % interval == 0


def can_store_memory(stored_this_session: int, policy: GuardrailPolicy = DEFAULT_GUARDRAILS) -> bool:
    return stored_this_session < policy.max_memories_per_session


def trim_history(messages: list[dict], policy: GuardrailPolicy = DEFAULT_GUARDRAILS) -> list[dict]:
    """Keep only the newest max_history_size messages."""
    if len(messages) <= policy.max_history_size:
        return list(messages)
    return list(messages[-policy.max_history_size:])
