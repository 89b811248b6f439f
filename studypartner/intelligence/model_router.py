"""
StudyPartner Intelligence - Model Router

Maps a QueryAnalysis onto a concrete model id, token budget, temperature
and length instruction. Pure functions; the upgrade/downgrade helpers are
advisory and the caller decides whether to apply them.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from studypartner.config import FAST_MODEL, ADVANCED_MODEL
from studypartner.intelligence.types import (
    QueryAnalysis, QueryComplexity, AnswerLength, ModelTier, SkillLevel,
)

logger = logging.getLogger("studypartner.router")


# ─── Models ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ModelSpec:
    id: str
    cost_per_1k_input: float   # USD
    cost_per_1k_output: float  # USD
    avg_latency_ms: int


MODELS = {
    ModelTier.FAST: ModelSpec(FAST_MODEL, 0.00015, 0.0006, 600),
    ModelTier.ADVANCED: ModelSpec(ADVANCED_MODEL, 0.0025, 0.01, 1200),
}

LENGTH_INSTRUCTIONS = {
    AnswerLength.SHORT: """
RESPONSE LENGTH: Keep your response BRIEF and CONCISE.
- Answer in 1-3 sentences maximum
- Get straight to the point
- No unnecessary elaboration
- If it's a definition, give just the definition
- If it's yes/no, answer directly then briefly explain if needed""",
    AnswerLength.MEDIUM: """
RESPONSE LENGTH: Provide a BALANCED response.
- Use 1-2 short paragraphs
- Include a clear explanation
- Add one example if helpful
- Cover the main points without excessive detail
- Aim for clarity over comprehensiveness""",
    AnswerLength.DETAILED: """
RESPONSE LENGTH: Provide a THOROUGH and COMPREHENSIVE response.
- Use multiple paragraphs as needed
- Break down complex concepts step-by-step
- Include examples, analogies, or diagrams descriptions
- Explain the "why" behind concepts
- Cover edge cases or common misconceptions
- Provide actionable takeaways or next steps""",
}

# Session subjects where anything above "simple" goes to the advanced tier
UPGRADE_SUBJECTS = (
    "calculus", "physics", "chemistry", "algorithms",
    "machine learning", "quantum", "organic chemistry",
)


@dataclass(frozen=True)
class RoutingDecision:
    model: str
    tier: ModelTier
    max_tokens: int
    temperature: float
    length_instruction: str
    reason: str
    estimated_cost: str     # low | medium | high
    estimated_latency: str  # fast | moderate | slow


# ─── Routing ─────────────────────────────────────────────────────────────────

def model_for_tier(tier: ModelTier) -> str:
    return MODELS[tier].id


def length_instruction_for(length: AnswerLength) -> str:
    return LENGTH_INSTRUCTIONS[length]


def route_query(analysis: QueryAnalysis) -> RoutingDecision:
    tier = analysis.model_tier
    if tier == ModelTier.FAST:
        cost, latency = "low", "fast"
    elif analysis.response_length == AnswerLength.DETAILED:
        cost, latency = "high", "slow"
    else:
        cost, latency = "medium", "moderate"

    reasons = [f"complexity={analysis.complexity.value}"]
    if analysis.requires_reasoning:
        reasons.append("needs reasoning")
    if analysis.requires_calculation:
        reasons.append("needs calculation")
    if analysis.requires_code_generation:
        reasons.append("needs code generation")
    if analysis.is_factual_question:
        reasons.append("factual")

    return RoutingDecision(
        model=model_for_tier(tier),
        tier=tier,
        max_tokens=analysis.max_tokens,
        temperature=analysis.temperature,
        length_instruction=length_instruction_for(analysis.response_length),
        reason=", ".join(reasons),
        estimated_cost=cost,
        estimated_latency=latency,
    )


def override_routing(
    decision: RoutingDecision,
    *,
    force_tier: Optional[ModelTier] = None,
    force_max_tokens: Optional[int] = None,
    force_length: Optional[AnswerLength] = None,
    add_to_instruction: Optional[str] = None,
) -> RoutingDecision:
    """Apply caller overrides on top of a routing decision."""
    result = decision
    if force_tier is not None:
        result = replace(
            result,
            tier=force_tier,
            model=model_for_tier(force_tier),
            reason=f"{result.reason} (forced to {model_for_tier(force_tier)})",
        )
    if force_max_tokens:
        result = replace(result, max_tokens=force_max_tokens)
    if force_length is not None:
        result = replace(result, length_instruction=length_instruction_for(force_length))
    if add_to_instruction:
        result = replace(result, length_instruction=f"{result.length_instruction}\n\n{add_to_instruction}")
    return result


def estimate_cost(decision: RoutingDecision, input_tokens: int) -> float:
    """Worst-case USD cost: input tokens plus the full output budget."""
    spec = MODELS[decision.tier]
    return (input_tokens / 1000) * spec.cost_per_1k_input + (decision.max_tokens / 1000) * spec.cost_per_1k_output


# ─── Upgrade / Downgrade Advice ──────────────────────────────────────────────

def should_upgrade_model(
    analysis: QueryAnalysis,
    *,
    skill_level: Optional[SkillLevel] = None,
    session_subject: Optional[str] = None,
    user_requested_detail: bool = False,
) -> bool:
    if analysis.model_tier == ModelTier.ADVANCED:
        return False
    if user_requested_detail:
        return True
    if skill_level == SkillLevel.EXPERT and analysis.complexity == QueryComplexity.MODERATE:
        return True
    if session_subject and analysis.complexity != QueryComplexity.SIMPLE:
        lower = session_subject.lower()
        if any(subject in lower for subject in UPGRADE_SUBJECTS):
            return True
    return False


def should_downgrade_model(
    analysis: QueryAnalysis,
    *,
    is_cache_hit: bool = False,
    is_follow_up: bool = False,
) -> bool:
    if analysis.model_tier == ModelTier.FAST:
        return False
    if is_cache_hit:
        return True
    return is_follow_up and analysis.complexity == QueryComplexity.MODERATE


def with_tier(analysis: QueryAnalysis, tier: ModelTier) -> QueryAnalysis:
    if analysis.model_tier != tier:
        logger.debug(f"Model tier {analysis.model_tier.value} -> {tier.value}")
    return replace(analysis, model_tier=tier)
