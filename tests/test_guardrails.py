"""
Tests for guardrails.py: fallback budget, rate limiter, token clamps.
"""

from studypartner.intelligence.guardrails import (
    GuardrailPolicy, RateLimiter, DEFAULT_GUARDRAILS,
    should_use_fallback, remaining_session_tokens, enforce_token_limit,
    should_extract_memories, can_store_memory, trim_history,
)
from studypartner.intelligence.types import ResponseConfig, ResponseLength, SessionContext


def ctx(**kwargs):
    return SessionContext(session_id="s1", user_id="u1", **kwargs)


# ─── Fallback Budget ─────────────────────────────────────────────────────────

class TestFallbackBudget:
    def test_allowed_under_budget(self):
        assert should_use_fallback(ctx(fallback_call_count=9))

    def test_denied_at_budget(self):
        assert not should_use_fallback(ctx(fallback_call_count=10))

    def test_custom_policy(self):
        policy = GuardrailPolicy(max_fallback_calls_per_session=1)
        assert not should_use_fallback(ctx(fallback_call_count=1), policy)

    def test_rate_limiter_denies(self, clock):
        limiter = RateLimiter(max_calls=2, window_seconds=60, clock=clock)
        limiter.record("s1")
        limiter.record("s1")
        assert not should_use_fallback(ctx(), limiter=limiter)

    def test_timeout_seconds(self):
        assert DEFAULT_GUARDRAILS.fallback_timeout_seconds == 2.0


class TestRateLimiter:
    def test_allows_does_not_consume(self, clock):
        limiter = RateLimiter(max_calls=1, window_seconds=60, clock=clock)
        assert limiter.allows("s1")
        assert limiter.allows("s1")
        assert limiter.usage("s1") == 0

    def test_window_rolls(self, clock):
        limiter = RateLimiter(max_calls=1, window_seconds=60, clock=clock)
        limiter.record("s1")
        assert not limiter.allows("s1")
        clock.advance(61)
        assert limiter.allows("s1")

    def test_keys_are_independent(self, clock):
        limiter = RateLimiter(max_calls=1, window_seconds=60, clock=clock)
        limiter.record("s1")
        assert limiter.allows("s2")

    def test_sweep_drops_idle_keys(self, clock):
        limiter = RateLimiter(max_calls=5, window_seconds=60, clock=clock)
        limiter.record("s1")
        limiter.record("s2")
        clock.advance(30)
        limiter.record("s2")
        clock.advance(40)
        assert limiter.sweep() == 1
        assert limiter.usage("s2") == 1

    def test_reset(self, clock):
        limiter = RateLimiter(max_calls=1, window_seconds=60, clock=clock)
        limiter.record("s1")
        limiter.reset("s1")
        assert limiter.allows("s1")


# ─── Token Clamp ─────────────────────────────────────────────────────────────

class TestTokenClamp:
    def test_unchanged_when_within_budget(self):
        cfg = ResponseConfig(max_tokens=600)
        assert enforce_token_limit(cfg, ctx()) is cfg

    def test_per_response_cap(self):
        cfg = ResponseConfig(max_tokens=5000)
        assert enforce_token_limit(cfg, ctx()).max_tokens == 1200

    def test_session_budget(self):
        cfg = ResponseConfig(max_tokens=600, length=ResponseLength.MEDIUM)
        clamped = enforce_token_limit(cfg, ctx(total_tokens_used=49900))
        assert clamped.max_tokens == 100
        assert clamped.length == ResponseLength.SHORT

    def test_exhausted_budget(self):
        clamped = enforce_token_limit(ResponseConfig(), ctx(total_tokens_used=60000))
        assert clamped.max_tokens == 0

    def test_clamp_never_exceeds_any_limit(self):
        for requested in (0, 150, 600, 1199, 1200, 1201, 10000):
            for used in (0, 1000, 49000, 49999, 50000):
                session = ctx(total_tokens_used=used)
                out = enforce_token_limit(ResponseConfig(max_tokens=requested), session)
                assert out.max_tokens <= requested
                assert out.max_tokens <= 1200
                assert out.max_tokens <= remaining_session_tokens(session)


# ─── Misc ────────────────────────────────────────────────────────────────────

class TestMisc:
    def test_memory_extraction_interval(self):
        assert should_extract_memories(5)
        assert should_extract_memories(10)
        assert not should_extract_memories(0)
        assert not should_extract_memories(7)

    def test_memory_store_cap(self):
        assert can_store_memory(19)
        assert not can_store_memory(20)

    def test_trim_history_keeps_newest(self):
        messages = [{"role": "user", "content": str(i)} for i in range(60)]
        trimmed = trim_history(messages)
        assert len(trimmed) == 50
        assert trimmed[-1]["content"] == "59"
