"""
Tests for decision_controller.py: full decision pipeline, quick path,
session bookkeeping and the freeform routing plan.
"""

import logging
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock

import pytest

from studypartner.config import FAST_MODEL, ADVANCED_MODEL
from studypartner.errors import DecisionContractError
from studypartner.intelligence.decision_controller import (
    DecisionController, make_quick_decision, update_session_context,
    plan_freeform_response, build_prompt_injections,
)
from studypartner.intelligence.guardrails import RateLimiter
from studypartner.intelligence.intent_classifier import IntentClassifier
from studypartner.intelligence.response_cache import ResponseCache, SQLCacheStore
from studypartner.intelligence.ttl_cache import TTLCache
from studypartner.intelligence.types import (
    AIAction, AdaptiveState, MemoryContext, SessionContext, SessionPhase, UserIntent,
    ResponseStyle, ResponseTone, ResponseLength, ModelTier, DEFAULT_RESPONSE_CONFIG,
    PromptInjections,
)

from conftest import llm_returning

STARTED = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def session(**kwargs):
    kwargs.setdefault("started_at", STARTED)
    return SessionContext(session_id="s1", user_id="u1", **kwargs)


def controller(llm=None, limiter=None, minutes=0, clock=None):
    return DecisionController(
        classifier=IntentClassifier(llm=llm, cache=TTLCache(100, 60, clock=clock or (lambda: 0.0))),
        limiter=limiter or RateLimiter(),
        clock=lambda: STARTED + timedelta(minutes=minutes),
    )


# ─── Contract ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestContract:
    async def test_missing_context(self):
        with pytest.raises(DecisionContractError):
            await controller().make_decision("what is mitosis", None)

    async def test_empty_session_id(self):
        with pytest.raises(DecisionContractError):
            await controller().make_decision("what is mitosis", SessionContext(session_id="", user_id="u1"))

    async def test_unknown_override(self):
        with pytest.raises(DecisionContractError):
            await controller().make_decision("what is mitosis", session(), overrides={"font": "serif"})


# ─── Branches ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestBranches:
    async def test_image_request(self):
        d = await controller().make_decision("draw a diagram of the water cycle", session())
        assert d.action == AIAction.GENERATE_IMAGE
        assert d.response_config == DEFAULT_RESPONSE_CONFIG
        assert d.prompt_injections == PromptInjections()
        assert d.meta.intent == UserIntent.GENERATE_IMAGE

    async def test_flashcards(self):
        d = await controller().make_decision("make flashcards for the krebs cycle", session())
        assert d.action == AIAction.CREATE_FLASHCARDS

    async def test_quiz(self):
        d = await controller().make_decision("quiz me on photosynthesis", session())
        assert d.action == AIAction.CREATE_QUIZ
        assert d.prompt_injections.special_instructions == ("Include 4 answer options (A, B, C, D)",)

    async def test_plain_explanation(self):
        state = AdaptiveState(message_count=8)
        d = await controller().make_decision("what is mitosis", session(), state=state)
        assert d.action == AIAction.RESPOND
        assert d.meta.intent == UserIntent.EXPLAIN
        assert d.meta.session_phase == SessionPhase.WORKING
        assert d.response_config.style == ResponseStyle.DETAILED
        assert "Include a concrete, relatable example." in d.prompt_injections.special_instructions
        assert "Do NOT end with a question. End your response naturally." in d.prompt_injections.special_instructions

    async def test_session_start_phase(self):
        d = await controller().make_decision("what is mitosis", session(), state=AdaptiveState(message_count=1))
        assert d.meta.session_phase == SessionPhase.START
        assert d.response_config.tone == ResponseTone.ENCOURAGING
        assert d.response_config.include_question

    async def test_wrap_up_after_long_session(self):
        d = await controller(minutes=50).make_decision(
            "what is meiosis", session(), state=AdaptiveState(message_count=30),
        )
        assert d.meta.session_phase == SessionPhase.WRAP_UP
        assert d.response_config.length == ResponseLength.SHORT


# ─── Adaptation & Guardrails ─────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAdaptation:
    async def test_repeated_confusion_escalates(self):
        state = AdaptiveState(message_count=8, confusion_count=3)
        d = await controller().make_decision("I still don't understand", session(), state=state)
        cfg = d.response_config
        assert d.meta.intent == UserIntent.CONFUSED
        assert d.meta.session_phase == SessionPhase.STUCK
        assert cfg.style == ResponseStyle.EXAMPLE_FIRST
        assert cfg.tone == ResponseTone.PATIENT
        assert cfg.include_example and cfg.include_question
        special = d.prompt_injections.special_instructions
        assert "The student has expressed confusion multiple times. Be extra patient and clear." in special

    async def test_visual_learner_gets_offer(self):
        memory = MemoryContext(preferred_learning_style="visual")
        d = await controller().make_decision(
            "what is mitosis", session(), memory=memory, state=AdaptiveState(message_count=8),
        )
        assert d.response_config.include_visual_offer

    async def test_token_budget_clamped(self):
        d = await controller().make_decision(
            "what is mitosis", session(total_tokens_used=49900), state=AdaptiveState(message_count=8),
        )
        assert d.response_config.max_tokens == 100
        assert d.response_config.length == ResponseLength.SHORT

    async def test_override_cannot_exceed_cap(self):
        d = await controller().make_decision(
            "what is mitosis", session(), state=AdaptiveState(message_count=8),
            overrides={"max_tokens": 5000},
        )
        assert d.response_config.max_tokens == 1200

    async def test_fallback_budget_spent(self):
        llm = llm_returning("EXPLAIN")
        d = await controller(llm=llm).make_decision("photosynthesis stuff", session(fallback_call_count=10))
        llm.complete.assert_not_awaited()
        assert not d.meta.used_fallback

    async def test_provider_failure_still_decides(self):
        llm = AsyncMock()
        llm.complete.side_effect = RuntimeError("provider 503")
        d = await controller(llm=llm).make_decision("photosynthesis stuff", session())
        assert d.action == AIAction.RESPOND
        assert not d.meta.used_fallback

    async def test_fallback_recorded_on_limiter(self):
        limiter = RateLimiter()
        d = await controller(llm=llm_returning("EXPLAIN"), limiter=limiter).make_decision(
            "photosynthesis stuff", session(),
        )
        assert d.meta.used_fallback
        assert limiter.usage("s1") == 1

    async def test_fallback_usage_logged(self, caplog):
        caplog.set_level(logging.DEBUG, logger="studypartner.decision")
        await controller(llm=llm_returning("EXPLAIN"), limiter=RateLimiter(max_calls=5)).make_decision(
            "photosynthesis stuff", session(),
        )
        assert "Fallback calls for s1: 1/5" in caplog.text

    async def test_context_not_mutated(self):
        ctx = session()
        await controller().make_decision("what is mitosis", ctx)
        assert ctx.message_count == 0

    async def test_memory_extraction_due(self):
        d = await controller().make_decision(
            "what is mitosis", session(message_count=5), state=AdaptiveState(message_count=8, topic_depth=2),
        )
        assert d.post_actions.extract_memories
        assert d.post_actions.check_for_visual_offer


class TestPromptInjections:
    def test_low_engagement_question_hint(self):
        from studypartner.intelligence.types import ResponseConfig, EngagementLevel
        cfg = ResponseConfig(include_question=True)
        state = AdaptiveState(engagement_level=EngagementLevel.LOW, short_reply_count=3)
        special = build_prompt_injections(cfg, UserIntent.EXPLAIN, state).special_instructions
        assert "End with a gentle, re-engaging question to help the student." in special
        assert any("shorter than usual" in s for s in special)


# ─── Quick Path & Bookkeeping ────────────────────────────────────────────────

class TestQuickDecision:
    def test_short_message(self):
        q = make_quick_decision("hi there")
        assert q.response_config.length == ResponseLength.SHORT
        assert q.response_config.include_question

    def test_math(self):
        q = make_quick_decision("please solve 2x + 3 = 7 for x")
        assert q.response_config.style == ResponseStyle.STEP_BY_STEP

    def test_default(self):
        assert make_quick_decision("tell me about the french revolution please").response_config == DEFAULT_RESPONSE_CONFIG


@pytest.mark.asyncio
class TestSessionBookkeeping:
    async def test_update_session_context(self):
        ctx = session(message_count=2, fallback_call_count=1)
        d = await controller(llm=llm_returning("EXPLAIN")).make_decision("photosynthesis stuff", ctx)
        updated = update_session_context(ctx, d, tokens_used=250)
        assert updated.message_count == 3
        assert updated.fallback_call_count == 2
        assert updated.total_tokens_used == 250
        assert ctx.message_count == 2

    async def test_naive_clock_measures_session_length(self):
        ctrl = DecisionController(
            classifier=IntentClassifier(llm=None, cache=TTLCache(100, 60, clock=lambda: 0.0)),
            clock=lambda: datetime(2024, 3, 1, 12, 50),
        )
        d = await ctrl.make_decision("what is meiosis", session(), state=AdaptiveState(message_count=30))
        assert d.meta.session_phase == SessionPhase.WRAP_UP


# ─── Freeform Routing ────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestFreeformPlan:
    async def test_cache_hit_routes_fast(self, session_factory, fake_now):
        cache = ResponseCache(store=SQLCacheStore(session_factory), now=fake_now)
        cache.write("What is mitosis?", "Mitosis is the division of one cell nucleus into two identical nuclei.")
        plan = await plan_freeform_response("what is mitosis", cache=cache, ctx=session())
        assert plan.cache_hit
        assert plan.cached_response.startswith("Mitosis")
        assert plan.routing.model == FAST_MODEL

    async def test_miss_routes_by_complexity(self, session_factory, fake_now):
        cache = ResponseCache(store=SQLCacheStore(session_factory), now=fake_now)
        plan = await plan_freeform_response(
            "prove that the derivative of x squared is 2x step by step", cache=cache, ctx=session(),
        )
        assert not plan.cache_hit
        assert plan.routing.model == ADVANCED_MODEL

    async def test_hard_subject_upgrades(self):
        plan = await plan_freeform_response(
            "why does the current flow through the resistor when the switch closes",
            ctx=session(subject="Physics"),
        )
        assert plan.routing.tier == ModelTier.ADVANCED

    async def test_detail_request_upgrades(self):
        plan = await plan_freeform_response("what is mitosis", user_requested_detail=True)
        assert plan.routing.tier == ModelTier.ADVANCED
