"""
StudyPartner Intelligence - Response Mapper

Builds a ResponseConfig as a pure fold:

    fold(INTENT_RESPONSE_MAP[intent], [adaptive, memory, phase, overrides])

Each rule is a function ResponseConfig -> ResponseConfig built from its
input (adaptive state, memory, session phase). Order is fixed and later
rules win on direct conflicts. Caller overrides are applied last, so
nothing can contradict them.
"""

from dataclasses import replace, fields
from functools import reduce
from typing import Callable, Optional

from studypartner.errors import DecisionContractError
from studypartner.intelligence.types import (
    UserIntent, ResponseConfig, ResponseStyle, ResponseTone, ResponseLength,
    AdaptiveState, EngagementLevel, PreferredLength, MemoryContext, SessionPhase,
)

Rule = Callable[[ResponseConfig], ResponseConfig]

S, T, L = ResponseStyle, ResponseTone, ResponseLength


def _cfg(style, tone, length, question, example, tokens) -> ResponseConfig:
    return ResponseConfig(
        style=style, tone=tone, length=length,
        include_question=question, include_example=example, max_tokens=tokens,
    )


# ─── Intent Defaults ─────────────────────────────────────────────────────────

INTENT_RESPONSE_MAP: dict[UserIntent, ResponseConfig] = {
    # Learning
    UserIntent.EXPLAIN:        _cfg(S.DETAILED, T.NEUTRAL, L.MEDIUM, False, True, 800),
    UserIntent.SOLVE:          _cfg(S.STEP_BY_STEP, T.DIRECT, L.MEDIUM, False, False, 600),
    UserIntent.SUMMARIZE:      _cfg(S.CONCISE, T.DIRECT, L.SHORT, False, False, 400),
    UserIntent.COMPARE:        _cfg(S.COMPARISON, T.NEUTRAL, L.MEDIUM, False, False, 600),
    # Interactive
    UserIntent.QUIZ_ME:        _cfg(S.SOCRATIC, T.ENCOURAGING, L.SHORT, True, False, 300),
    UserIntent.CHECK_ANSWER:   _cfg(S.DETAILED, T.ENCOURAGING, L.MEDIUM, False, True, 500),
    UserIntent.PRACTICE:       _cfg(S.STEP_BY_STEP, T.ENCOURAGING, L.MEDIUM, True, False, 400),
    # Clarification
    UserIntent.CONFUSED:       _cfg(S.EXAMPLE_FIRST, T.PATIENT, L.MEDIUM, True, True, 700),
    UserIntent.FOLLOW_UP:      _cfg(S.CONCISE, T.NEUTRAL, L.ADAPTIVE, False, False, 500),
    UserIntent.ELABORATE:      _cfg(S.DETAILED, T.ENTHUSIASTIC, L.LONG, False, True, 1000),
    # Special
    UserIntent.GENERATE_IMAGE: _cfg(S.CONCISE, T.ENCOURAGING, L.SHORT, False, False, 200),
    UserIntent.FLASHCARDS:     _cfg(S.CONCISE, T.ENCOURAGING, L.SHORT, False, False, 200),
    UserIntent.PLAN_STUDY:     _cfg(S.STEP_BY_STEP, T.ENCOURAGING, L.MEDIUM, True, False, 600),
    # Other
    UserIntent.CASUAL_CHAT:    _cfg(S.CONCISE, T.ENCOURAGING, L.SHORT, True, False, 150),
    UserIntent.OFF_TOPIC:      _cfg(S.CONCISE, T.PATIENT, L.SHORT, True, False, 150),
    UserIntent.UNCLEAR:        _cfg(S.CONCISE, T.PATIENT, L.SHORT, True, False, 200),
}


def base_config(intent: UserIntent) -> ResponseConfig:
    return INTENT_RESPONSE_MAP.get(intent, ResponseConfig())


# ─── Rules ───────────────────────────────────────────────────────────────────

def adaptive_rule(state: AdaptiveState) -> Rule:
    def apply(cfg: ResponseConfig) -> ResponseConfig:
        if state.confusion_count >= 2:
            cfg = replace(
                cfg, style=S.EXAMPLE_FIRST, tone=T.PATIENT, include_example=True,
                max_tokens=min(cfg.max_tokens + 200, 1000),
            )
        elif state.confusion_count == 1:
            cfg = replace(cfg, include_example=True)

        if state.short_reply_count >= 3 or state.engagement_level == EngagementLevel.LOW:
            cfg = replace(cfg, length=L.SHORT, include_question=True,
                          max_tokens=min(cfg.max_tokens, 300))

        if state.engagement_level == EngagementLevel.HIGH and state.understanding_confirmed:
            cfg = replace(cfg, include_question=False)

        if state.preferred_response_length == PreferredLength.SHORT and cfg.length != L.LONG:
            cfg = replace(cfg, length=L.SHORT, max_tokens=min(cfg.max_tokens, 400))

        # Assistant asked more than the user has answered: stop asking
        if state.questions_asked_by_ai > state.questions_answered_by_user + 1:
            cfg = replace(cfg, include_question=False)
        return cfg
    return apply


def memory_rule(memory: MemoryContext) -> Rule:
    def apply(cfg: ResponseConfig) -> ResponseConfig:
        style = memory.preferred_learning_style
        if style == "visual":
            cfg = replace(cfg, include_visual_offer=True)
        elif style == "hands-on":
            cfg = replace(
                cfg, include_example=True,
                style=S.EXAMPLE_FIRST if cfg.style == S.DETAILED else cfg.style,
            )

        difficulty = memory.preferred_difficulty
        if difficulty == "easy":
            cfg = replace(
                cfg,
                length=L.SHORT if cfg.length == L.SHORT else L.MEDIUM,
                include_example=True, tone=T.PATIENT,
                max_tokens=min(cfg.max_tokens + 100, 1000),
            )
        elif difficulty == "hard":
            cfg = replace(
                cfg,
                length=L.MEDIUM if cfg.length == L.LONG else cfg.length,
                tone=T.DIRECT,
                max_tokens=max(cfg.max_tokens - 100, 300),
            )

        pace = memory.preferred_pace
        if pace == "slow":
            cfg = replace(cfg, max_tokens=int(min(cfg.max_tokens * 1.2, 1200)))
        elif pace == "fast":
            cfg = replace(
                cfg, max_tokens=int(max(cfg.max_tokens * 0.8, 200)),
                length=L.MEDIUM if cfg.length == L.LONG else cfg.length,
            )

        if memory.communication_style == "formal":
            cfg = replace(cfg, tone=T.NEUTRAL)
        elif memory.communication_style == "casual" and cfg.tone == T.NEUTRAL:
            cfg = replace(cfg, tone=T.ENCOURAGING)
        return cfg
    return apply


def phase_rule(phase: SessionPhase, intent: UserIntent) -> Rule:
    def apply(cfg: ResponseConfig) -> ResponseConfig:
        if phase == SessionPhase.START:
            ask = cfg.include_question or intent not in (UserIntent.QUIZ_ME, UserIntent.PRACTICE)
            return replace(cfg, include_question=ask, tone=T.ENCOURAGING)
        if phase == SessionPhase.STUCK:
            return replace(cfg, tone=T.PATIENT, include_question=True, include_example=True)
        if phase == SessionPhase.PROGRESS_CHECK:
            return replace(cfg, include_question=True, length=L.SHORT)
        if phase == SessionPhase.WRAP_UP:
            return replace(cfg, length=L.SHORT, include_question=True, style=S.CONCISE)
        return cfg
    return apply


_CONFIG_FIELDS = frozenset(f.name for f in fields(ResponseConfig))


def override_rule(overrides: dict) -> Rule:
    unknown = set(overrides) - _CONFIG_FIELDS
    if unknown:
        raise DecisionContractError(f"unknown response config override(s): {sorted(unknown)}")

    def apply(cfg: ResponseConfig) -> ResponseConfig:
        return replace(cfg, **overrides)
    return apply


def fold_rules(base: ResponseConfig, rules: list[Rule]) -> ResponseConfig:
    return reduce(lambda cfg, rule: rule(cfg), rules, base)


def build_response_config(
    intent: UserIntent,
    state: AdaptiveState,
    memory: MemoryContext,
    phase: SessionPhase,
    overrides: Optional[dict] = None,
) -> ResponseConfig:
    rules = [adaptive_rule(state), memory_rule(memory), phase_rule(phase, intent)]
    if overrides:
        rules.append(override_rule(overrides))
    return fold_rules(base_config(intent), rules)


# ─── Prompt Instruction Text ─────────────────────────────────────────────────

STYLE_INSTRUCTIONS = {
    S.CONCISE: "Be brief and direct. Get to the point quickly without unnecessary elaboration.",
    S.DETAILED: "Provide a thorough explanation with context and depth.",
    S.STEP_BY_STEP: "Break down your response into clear, numbered steps.",
    S.EXAMPLE_FIRST: "Start with a concrete example, then explain the underlying concept.",
    S.ANALOGY: "Use an analogy or metaphor to make the concept relatable.",
    S.SOCRATIC: "Guide understanding through thoughtful questions rather than direct answers.",
    S.COMPARISON: "Structure as a clear comparison with distinct points of similarity and difference.",
    S.VISUAL_DESC: "Describe concepts in a way that helps visualize them mentally.",
}

TONE_INSTRUCTIONS = {
    T.ENCOURAGING: "Be warm, supportive, and positive.",
    T.DIRECT: "Be straightforward and efficient, without extra pleasantries.",
    T.PATIENT: "Be very patient and understanding. Take time to ensure clarity.",
    T.ENTHUSIASTIC: "Show genuine interest and energy about the topic.",
    T.NEUTRAL: "",
}

LENGTH_INSTRUCTIONS = {
    L.SHORT: "Keep your response brief - 1-2 sentences only.",
    L.MEDIUM: "Keep your response focused - 1-2 short paragraphs.",
    L.LONG: "Provide a comprehensive response, but stay focused and organized.",
    L.ADAPTIVE: "Match the length and energy of the student's message.",
}


def style_instruction(style: ResponseStyle) -> str:
    return STYLE_INSTRUCTIONS[style]


def tone_instruction(tone: ResponseTone) -> str:
    return TONE_INSTRUCTIONS[tone]


def length_instruction(length: ResponseLength) -> str:
    return LENGTH_INSTRUCTIONS[length]
