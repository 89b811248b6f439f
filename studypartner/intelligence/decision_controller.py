"""
StudyPartner Intelligence - Decision Controller

Turns one user message plus session/memory/adaptive context into an
AIDecision:

    normalize → session phase → classify intent (guardrail-gated fallback)
      ├─ GENERATE_IMAGE / FLASHCARDS → minimal decision, default config
      ├─ QUIZ_ME                     → config + create_quiz action
      └─ everything else             → config → token clamp → prompt hints → post actions

Freeform answers also get a routing plan (cache → analyze → route) from
plan_freeform_response(), independent of the intent-driven config.
"""

import time
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Optional

from studypartner.errors import DecisionContractError
from studypartner.llm import LLMClient
from studypartner.intelligence.types import (
    AIAction, AIDecision, AdaptiveState, DecisionMeta, EngagementLevel,
    MemoryContext, PostActions, PromptInjections, QueryAnalysis,
    ResponseConfig, SessionContext, UserIntent,
    DEFAULT_MEMORY_CONTEXT, DEFAULT_RESPONSE_CONFIG, ModelTier, ResponseLength,
    ResponseStyle,
)
from studypartner.intelligence.input_processor import process_input
from studypartner.intelligence.intent_classifier import (
    IntentClassifier, get_classifier, is_image_generation_intent,
)
from studypartner.intelligence.adaptive_tracker import determine_session_state
from studypartner.intelligence.guardrails import (
    GuardrailPolicy, RateLimiter, DEFAULT_GUARDRAILS,
    should_use_fallback, enforce_token_limit, should_extract_memories, trim_history,
)
from studypartner.intelligence.response_mapper import (
    build_response_config, style_instruction, tone_instruction, length_instruction,
)
from studypartner.intelligence.query_analyzer import analyze_query, analyze_query_fast
from studypartner.intelligence.model_router import (
    RoutingDecision, route_query, should_upgrade_model, should_downgrade_model, with_tier,
)
from studypartner.intelligence.response_cache import ResponseCache

logger = logging.getLogger("studypartner.decision")

VISUAL_CHECK_TOPIC_DEPTH = 2

QUIZ_INJECTIONS = PromptInjections(
    style_instruction="Ask a clear, well-structured question.",
    tone_instruction="Be encouraging and supportive.",
    length_instruction="Keep the question concise but complete.",
    special_instructions=("Include 4 answer options (A, B, C, D)",),
)

INTENT_INSTRUCTIONS = {
    UserIntent.CONFUSED: "The student is confused. Explain differently using simpler terms or a new approach.",
    UserIntent.CHECK_ANSWER: "First state if the answer is correct or incorrect, then explain why.",
    UserIntent.SOLVE: "Show the solution step by step. Explain each step briefly.",
    UserIntent.COMPARE: "Structure the comparison clearly, highlighting key differences and similarities.",
    UserIntent.CASUAL_CHAT: "Be friendly but gently redirect toward studying.",
    UserIntent.UNCLEAR: "The request is unclear. Politely ask for clarification.",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def session_minutes(ctx: SessionContext, now: datetime) -> int:
    started = ctx.started_at
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max(0, int((now - started).total_seconds() // 60))


# ─── Prompt Hints & Post Actions ─────────────────────────────────────────────

def build_prompt_injections(cfg: ResponseConfig, intent: UserIntent, state: AdaptiveState) -> PromptInjections:
    special = []
    if not cfg.include_question:
        special.append("Do NOT end with a question. End your response naturally.")
    elif state.engagement_level == EngagementLevel.LOW:
        special.append("End with a gentle, re-engaging question to help the student.")

    if cfg.include_example:
        special.append("Include a concrete, relatable example.")
    if cfg.include_visual_offer:
        special.append("If this topic would benefit from a visual diagram, briefly offer to generate one.")

    if intent in INTENT_INSTRUCTIONS:
        special.append(INTENT_INSTRUCTIONS[intent])

    if state.short_reply_count >= 3:
        special.append("Keep your response shorter than usual - the student seems to prefer brief answers.")
    if state.confusion_count >= 2:
        special.append("The student has expressed confusion multiple times. Be extra patient and clear.")

    return PromptInjections(
        style_instruction=style_instruction(cfg.style),
        tone_instruction=tone_instruction(cfg.tone),
        length_instruction=length_instruction(cfg.length),
        special_instructions=tuple(special),
    )


def build_post_actions(ctx: SessionContext, state: AdaptiveState,
                       policy: GuardrailPolicy = DEFAULT_GUARDRAILS) -> PostActions:
    return PostActions(
        extract_memories=should_extract_memories(ctx.message_count, policy),
        update_signals=True,
        check_for_visual_offer=state.topic_depth >= VISUAL_CHECK_TOPIC_DEPTH,
    )


# ─── Controller ──────────────────────────────────────────────────────────────

class DecisionController:

    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        policy: GuardrailPolicy = DEFAULT_GUARDRAILS,
        limiter: Optional[RateLimiter] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.classifier = classifier or get_classifier()
        self.policy = policy
        self.limiter = limiter if limiter is not None else RateLimiter()
        self._clock = clock

    async def make_decision(
        self,
        text: str,
        ctx: SessionContext,
        memory: MemoryContext = DEFAULT_MEMORY_CONTEXT,
        state: Optional[AdaptiveState] = None,
        overrides: Optional[dict] = None,
    ) -> AIDecision:
        if ctx is None or not getattr(ctx, "session_id", None):
            raise DecisionContractError("make_decision needs a session context with a session id")

        start = time.perf_counter()
        state = state or AdaptiveState()

        processed = process_input(text)
        phase = determine_session_state(state, session_minutes(ctx, self._clock()))

        allow_fallback = should_use_fallback(ctx, self.policy, self.limiter)
        recent = [m.get("content", "") for m in trim_history(ctx.recent_messages, self.policy)]
        intent = await self.classifier.classify(
            processed.cleaned,
            recent,
            allow_fallback=allow_fallback,
            timeout=self.policy.fallback_timeout_seconds,
        )
        if intent.used_fallback:
            self.limiter.record(ctx.session_id)
            logger.debug(
                f"Fallback calls for {ctx.session_id}: "
                f"{self.limiter.usage(ctx.session_id)}/{self.limiter.max_calls}"
            )

        def meta() -> DecisionMeta:
            return DecisionMeta(
                intent=intent.intent,
                confidence=intent.confidence,
                used_fallback=intent.used_fallback,
                processing_time_ms=int((time.perf_counter() - start) * 1000),
                session_phase=phase,
            )

        if is_image_generation_intent(intent.intent):
            return _minimal_decision(AIAction.GENERATE_IMAGE, meta())
        if intent.intent == UserIntent.FLASHCARDS:
            return _minimal_decision(AIAction.CREATE_FLASHCARDS, meta())

        cfg = build_response_config(intent.intent, state, memory, phase, overrides)
        cfg = enforce_token_limit(cfg, ctx, self.policy)

        if intent.intent == UserIntent.QUIZ_ME:
            return AIDecision(
                action=AIAction.CREATE_QUIZ,
                response_config=cfg,
                prompt_injections=QUIZ_INJECTIONS,
                post_actions=PostActions(),
                meta=meta(),
            )

        decision = AIDecision(
            action=AIAction.RESPOND,
            response_config=cfg,
            prompt_injections=build_prompt_injections(cfg, intent.intent, state),
            post_actions=build_post_actions(ctx, state, self.policy),
            meta=meta(),
        )
        logger.info(
            f"Decision for session {ctx.session_id}: intent={intent.intent.value} "
            f"({intent.confidence.value}{', fallback' if intent.used_fallback else ''}), "
            f"phase={phase.value}, style={cfg.style.value}, max_tokens={cfg.max_tokens}"
        )
        return decision


def _minimal_decision(action: AIAction, meta: DecisionMeta) -> AIDecision:
    return AIDecision(
        action=action,
        response_config=DEFAULT_RESPONSE_CONFIG,
        prompt_injections=PromptInjections(),
        post_actions=PostActions(),
        meta=meta,
    )


_default_controller: Optional[DecisionController] = None


async def make_decision(
    text: str,
    ctx: SessionContext,
    memory: MemoryContext = DEFAULT_MEMORY_CONTEXT,
    state: Optional[AdaptiveState] = None,
    overrides: Optional[dict] = None,
) -> AIDecision:
    """make_decision on the process-wide controller."""
    global _default_controller
    if _default_controller is None:
        _default_controller = DecisionController()
    return await _default_controller.make_decision(text, ctx, memory, state, overrides)


# ─── Quick Path & Bookkeeping ────────────────────────────────────────────────

@dataclass(frozen=True)
class QuickDecision:
    action: AIAction
    response_config: ResponseConfig


def make_quick_decision(text: str) -> QuickDecision:
    """Synchronous heuristic decision. No classification, no LLM."""
    processed = process_input(text)
    if processed.word_count <= 3:
        cfg = replace(DEFAULT_RESPONSE_CONFIG, length=ResponseLength.SHORT, include_question=True)
    elif processed.math_expressions:
        cfg = replace(DEFAULT_RESPONSE_CONFIG, style=ResponseStyle.STEP_BY_STEP, include_example=False)
    else:
        cfg = DEFAULT_RESPONSE_CONFIG
    return QuickDecision(AIAction.RESPOND, cfg)


def update_session_context(ctx: SessionContext, decision: AIDecision, tokens_used: int = 0) -> SessionContext:
    """New context advanced past one decision. The input is not modified."""
    return replace(
        ctx,
        message_count=ctx.message_count + 1,
        fallback_call_count=ctx.fallback_call_count + (1 if decision.meta.used_fallback else 0),
        total_tokens_used=ctx.total_tokens_used + max(0, tokens_used),
        recent_messages=list(ctx.recent_messages),
    )


# ─── Freeform Routing Plan ───────────────────────────────────────────────────

@dataclass(frozen=True)
class FreeformPlan:
    analysis: QueryAnalysis
    routing: RoutingDecision
    cache_hit: bool = False
    cached_response: Optional[str] = None


async def plan_freeform_response(
    query: str,
    *,
    cache: Optional[ResponseCache] = None,
    llm: Optional[LLMClient] = None,
    ctx: Optional[SessionContext] = None,
    is_follow_up: bool = False,
    user_requested_detail: bool = False,
) -> FreeformPlan:
    """Cache first; on a miss analyze the query and route it to a model tier."""
    user_id = ctx.user_id if ctx else None
    session_id = ctx.session_id if ctx else None
    subject = ctx.subject if ctx else None

    if cache is not None:
        hit = cache.lookup(query, user_id=user_id, session_id=session_id, subject=subject)
        if hit.hit:
            analysis = analyze_query_fast(query)
            if should_downgrade_model(analysis, is_cache_hit=True):
                analysis = with_tier(analysis, ModelTier.FAST)
            return FreeformPlan(analysis, route_query(analysis), cache_hit=True, cached_response=hit.response)

    analysis = await analyze_query(query, subject=subject, llm=llm)
    if should_upgrade_model(
        analysis,
        skill_level=ctx.skill_level if ctx else None,
        session_subject=subject,
        user_requested_detail=user_requested_detail,
    ):
        analysis = with_tier(analysis, ModelTier.ADVANCED)
    elif should_downgrade_model(analysis, is_follow_up=is_follow_up):
        analysis = with_tier(analysis, ModelTier.FAST)

    routing = route_query(analysis)
    logger.info(f"Routed query to {routing.model} ({routing.reason})")
    return FreeformPlan(analysis, routing)
