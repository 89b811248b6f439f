"""
StudyPartner Intelligence - Query Complexity Analyzer

Classifies a freeform question as simple / moderate / complex and derives
response length, model tier, token budget and temperature from that.

Scoring (fast path, no I/O):
    +1 per matching pattern in each family (simple / moderate / complex)
    +2 to simple or complex for a subject found in the subject tables
    +2 simple for ≤5 words, +1 moderate for ≤15, +1 complex for >30
    +1 complex for more than one sentence terminator

The dominant bucket wins; confidence grows with the margin. Below the
confidence threshold, and only with an LLM client, one JSON fallback call
refines complexity and the reasoning/calculation/code flags.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

from studypartner.config import CLASSIFIER_MODEL, COMPLEXITY_CONFIDENCE_THRESHOLD
from studypartner.llm import LLMClient
from studypartner.intelligence.types import (
    QueryAnalysis, QueryComplexity, AnswerLength, ModelTier,
)

logger = logging.getLogger("studypartner.query")

FALLBACK_CONFIDENCE = 0.85


def _compile_all(patterns: list[str]) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# ─── Pattern Families ────────────────────────────────────────────────────────

SIMPLE_PATTERNS = {
    "definitions": _compile_all([
        r"^what is (a |an |the )?[\w\s]{1,30}\??$",
        r"^what('s| is) the definition of",
        r"^define\s+[\w\s]{1,30}\??$",
        r"^what does [\w\s]{1,30} mean\??$",
    ]),
    "yes_no": _compile_all([
        r"^(is|are|was|were|do|does|did|can|could|will|would|should|has|have|had)\s+",
    ]),
    "factual": _compile_all([
        r"^who (is|was|invented|discovered|created)",
        r"^when (was|did|is)",
        r"^where (is|was|are|were)",
        r"^how many",
        r"^how much",
        r"^what year",
        r"^what color",
        r"^what type of",
        r"^name (the|a|an)",
        r"^list (the|some|\d+)",
    ]),
    "clarifications": _compile_all([
        r"^what's the difference between [\w\s]+ and [\w\s]+\??$",
        r"^is it true that",
        r"^quick question",
        r"^just wondering",
        r"^real quick",
    ]),
}

COMPLEX_PATTERNS = {
    "multi_step": _compile_all([
        r"solve (this|the) (problem|equation|system)",
        r"step by step",
        r"walk me through",
        r"show (me )?your (work|reasoning|steps)",
        r"derive|derivation",
        r"prove|proof",
    ]),
    "deep_explanation": _compile_all([
        r"explain (in detail|thoroughly|completely)",
        r"why does .+ (work|happen|occur)",
        r"how does .+ (work|function|operate)",
        r"what('s| is) the (relationship|connection) between",
        r"analyze|analysis",
        r"compare and contrast",
        r"evaluate|evaluation",
        r"critically",
    ]),
    "advanced_subjects": _compile_all([
        r"integral|derivative|differential equation",
        r"linear algebra|matrix|matrices|eigenvalue",
        r"quantum|thermodynamics|electromagnetic",
        r"algorithm|complexity|big o",
        r"recursion|dynamic programming",
        r"neural network|machine learning|deep learning",
        r"organic chemistry|biochemistry",
        r"calculus|multivariable",
    ]),
    "code_generation": _compile_all([
        r"write (a |an |the )?(code|program|function|script|class)",
        r"implement|implementation",
        r"create (a |an )?(function|class|module|api)",
        r"debug|fix (this |the )?(code|bug|error)",
        r"refactor",
        r"optimize (this |the )?(code|algorithm)",
    ]),
    "long_form": _compile_all([
        r"write (a |an )?(essay|report|summary|analysis)",
        r"discuss (the |in detail)?",
        r"comprehensive",
        r"in-depth",
        r"elaborate",
    ]),
    "multi_part": _compile_all([
        r"\d+\.\s+",
        r"first.+then.+finally",
        r"and also|additionally|furthermore|moreover",
        r"multiple (questions|parts|aspects)",
    ]),
}

MODERATE_PATTERNS = {
    "explanations": _compile_all([
        r"^explain\s+",
        r"^how (do|does|can|should)",
        r"^why (do|does|is|are|did)",
        r"^what (causes|happens when|would happen)",
    ]),
    "examples": _compile_all([
        r"give (me )?(an? )?(example|examples)",
        r"for example",
        r"such as",
        r"show me how",
    ]),
    "comparisons": _compile_all([
        r"compare",
        r"versus|vs\.?",
        r"difference between",
        r"similarities",
        r"pros and cons",
    ]),
    "procedures": _compile_all([
        r"how (do|can) (i|you|we)",
        r"what are the steps",
        r"guide me",
        r"teach me",
        r"help me understand",
    ]),
}

COMPLEX_SUBJECTS = frozenset({
    "calculus", "differential equations", "linear algebra",
    "quantum mechanics", "quantum physics", "quantum computing",
    "organic chemistry", "biochemistry",
    "machine learning", "deep learning", "neural networks",
    "algorithms", "data structures",
    "thermodynamics", "electromagnetism",
    "topology", "abstract algebra", "real analysis",
    "compiler design", "operating systems",
    "cryptography", "distributed systems",
})

SIMPLE_SUBJECTS = frozenset({
    "basic math", "arithmetic", "fractions",
    "spelling", "vocabulary", "grammar",
    "geography facts", "capitals", "countries",
    "basic biology", "basic chemistry",
    "history dates", "historical events",
})

_CONCEPTUAL_RE = re.compile(r"why|how does|explain|understand", re.IGNORECASE)
_PROCEDURAL_RE = re.compile(r"how (do|can|should)|steps|guide|process", re.IGNORECASE)
_CODE_WORDS_RE = re.compile(r"code|program|function", re.IGNORECASE)
_SENTENCE_END_RE = re.compile(r"[.!?]")


# ─── Fast Scoring ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ComplexitySignals:
    simple_score: int
    moderate_score: int
    complex_score: int
    subject_complexity: str  # simple | complex | unknown
    word_count: int
    has_question_mark: bool
    has_multiple_sentences: bool


def _count_matches(text: str, families: dict[str, list[re.Pattern]]) -> int:
    return sum(1 for patterns in families.values() for p in patterns if p.search(text))


def detect_subject_complexity(text: str) -> str:
    lower = text.lower()
    if any(subject in lower for subject in COMPLEX_SUBJECTS):
        return "complex"
    if any(subject in lower for subject in SIMPLE_SUBJECTS):
        return "simple"
    return "unknown"


def score_query(query: str) -> tuple[QueryComplexity, float, ComplexitySignals]:
    """Fast regex scoring. Returns (complexity, confidence, signals)."""
    lower = query.lower().strip()
    word_count = len(query.split())
    has_multiple_sentences = len(_SENTENCE_END_RE.findall(query)) > 1

    simple = _count_matches(lower, SIMPLE_PATTERNS)
    moderate = _count_matches(lower, MODERATE_PATTERNS)
    complex_ = _count_matches(lower, COMPLEX_PATTERNS)

    subject = detect_subject_complexity(query)
    if subject == "complex":
        complex_ += 2
    elif subject == "simple":
        simple += 2

    if word_count <= 5:
        simple += 2
    elif word_count <= 15:
        moderate += 1
    elif word_count > 30:
        complex_ += 1

    if has_multiple_sentences:
        complex_ += 1

    if complex_ > simple and complex_ > moderate:
        complexity = QueryComplexity.COMPLEX
        confidence = min(0.9, 0.5 + (complex_ - max(simple, moderate)) * 0.1)
    elif simple > complex_ and simple >= moderate:
        complexity = QueryComplexity.SIMPLE
        confidence = min(0.9, 0.5 + (simple - max(complex_, moderate)) * 0.1)
    else:
        complexity = QueryComplexity.MODERATE
        total = simple + moderate + complex_
        confidence = 0.3 if total == 0 else min(0.7, 0.4 + moderate * 0.1)

    signals = ComplexitySignals(
        simple_score=simple,
        moderate_score=moderate,
        complex_score=complex_,
        subject_complexity=subject,
        word_count=word_count,
        has_question_mark="?" in query,
        has_multiple_sentences=has_multiple_sentences,
    )
    return complexity, round(confidence, 2), signals


# ─── Response Shape ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ResponseShape:
    response_length: AnswerLength
    model_tier: ModelTier
    max_tokens: int
    temperature: float


def response_shape_for(
    complexity: QueryComplexity,
    requires_reasoning: bool = False,
    requires_calculation: bool = False,
    requires_code_generation: bool = False,
) -> ResponseShape:
    if complexity == QueryComplexity.SIMPLE:
        return ResponseShape(AnswerLength.SHORT, ModelTier.FAST, 150, 0.5)
    if complexity == QueryComplexity.COMPLEX:
        return ResponseShape(AnswerLength.DETAILED, ModelTier.ADVANCED, 800, 0.7)
    needs_advanced = requires_reasoning or requires_calculation or requires_code_generation
    return ResponseShape(
        AnswerLength.MEDIUM,
        ModelTier.ADVANCED if needs_advanced else ModelTier.FAST,
        400,
        0.6,
    )


def is_conceptual(query: str) -> bool:
    return bool(_CONCEPTUAL_RE.search(query))


def is_procedural(query: str) -> bool:
    return bool(_PROCEDURAL_RE.search(query))


def is_factual(signals: ComplexitySignals) -> bool:
    return signals.simple_score > 0


# ─── LLM Fallback ────────────────────────────────────────────────────────────

ANALYZER_SYSTEM = """You are a query complexity analyzer. Analyze the student's question and respond with ONLY a JSON object:
{"complexity": "simple" | "moderate" | "complex",
 "requires_reasoning": boolean,
 "requires_calculation": boolean,
 "requires_code_generation": boolean,
 "is_factual_question": boolean}

Guidelines:
- simple: factual questions, definitions, yes/no, quick lookups (1-2 sentence answer)
- moderate: explanations, how-to, comparisons, examples needed (paragraph answer)
- complex: multi-step problems, proofs, deep analysis, code, essays (detailed answer)"""


class ComplexityVerdict(BaseModel):
    complexity: QueryComplexity = QueryComplexity.MODERATE
    requires_reasoning: bool = False
    requires_calculation: bool = False
    requires_code_generation: bool = False
    is_factual_question: bool = False


async def _analyze_with_llm(query: str, llm: LLMClient, subject: Optional[str]) -> ComplexityVerdict:
    user = f"Subject: {subject}\nQuestion: {query}" if subject else f"Question: {query}"
    reply = await llm.complete(
        [
            {"role": "system", "content": ANALYZER_SYSTEM},
            {"role": "user", "content": user},
        ],
        model=CLASSIFIER_MODEL,
        max_tokens=100,
        temperature=0.0,
        json_mode=True,
    )
    return ComplexityVerdict.model_validate(json.loads(reply.text))


# ─── Public API ──────────────────────────────────────────────────────────────

async def analyze_query(
    query: str,
    *,
    subject: Optional[str] = None,
    llm: Optional[LLMClient] = None,
    force_llm: bool = False,
    confidence_threshold: float = COMPLEXITY_CONFIDENCE_THRESHOLD,
) -> QueryAnalysis:
    """Full analysis, with the LLM fallback when confidence is low and llm is given."""
    complexity, confidence, signals = score_query(query)
    requires_reasoning = False
    requires_calculation = False
    requires_code = False
    factual = is_factual(signals)
    used_llm = False

    if llm is not None and (force_llm or confidence < confidence_threshold):
        logger.info(f"Low complexity confidence ({confidence:.2f}), using LLM fallback")
        try:
            verdict = await _analyze_with_llm(query, llm, subject)
        except Exception as e:
            logger.warning(f"Complexity fallback failed, keeping fast analysis: {e}")
        else:
            complexity = verdict.complexity
            requires_reasoning = verdict.requires_reasoning
            requires_calculation = verdict.requires_calculation
            requires_code = verdict.requires_code_generation
            factual = verdict.is_factual_question
            confidence = FALLBACK_CONFIDENCE
            used_llm = True

    shape = response_shape_for(complexity, requires_reasoning, requires_calculation, requires_code)

    reasons = []
    if signals.complex_score > 0:
        reasons.append("complex patterns detected")
    if signals.subject_complexity == "complex":
        reasons.append("advanced subject")
    if requires_reasoning:
        reasons.append("requires reasoning")
    if requires_calculation:
        reasons.append("requires calculation")
    if requires_code:
        reasons.append("requires code")
    if factual:
        reasons.append("factual question")
    if used_llm:
        reasons.append("llm refined")
    if not reasons:
        reasons.append("standard query")

    return QueryAnalysis(
        complexity=complexity,
        response_length=shape.response_length,
        model_tier=shape.model_tier,
        confidence=confidence,
        reason=", ".join(reasons),
        max_tokens=shape.max_tokens,
        temperature=shape.temperature,
        requires_reasoning=requires_reasoning,
        requires_calculation=requires_calculation,
        requires_code_generation=requires_code,
        is_factual_question=factual,
        is_conceptual_question=is_conceptual(query),
        is_procedural_question=is_procedural(query),
    )


def analyze_query_fast(query: str) -> QueryAnalysis:
    """Synchronous analysis. Never calls an LLM."""
    complexity, confidence, signals = score_query(query)
    shape = response_shape_for(complexity)
    return QueryAnalysis(
        complexity=complexity,
        response_length=shape.response_length,
        model_tier=shape.model_tier,
        confidence=confidence,
        reason=(
            f"fast analysis (scores: simple={signals.simple_score}, "
            f"moderate={signals.moderate_score}, complex={signals.complex_score})"
        ),
        max_tokens=shape.max_tokens,
        temperature=shape.temperature,
        requires_code_generation=signals.complex_score > 0 and bool(_CODE_WORDS_RE.search(query)),
        is_factual_question=is_factual(signals),
        is_conceptual_question=is_conceptual(query),
        is_procedural_question=is_procedural(query),
    )
