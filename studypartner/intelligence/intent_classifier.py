"""
StudyPartner Intelligence - Intent Classifier

Two-tier classification:
    1. Fast path: signal patterns, then the ordered INTENT_RULES table, then
       a few heuristics. No I/O.
    2. Fallback: one bounded call to a cheap model that must answer with a
       single intent label. Only when the fast path is low-confidence or
       empty and the caller allows it.

Results are memoized for INTENT_CACHE_TTL_SECONDS keyed by the first
INTENT_CACHE_KEY_LENGTH characters of the normalized text. Fallback errors
and timeouts degrade to the best fast-path guess; they are never raised.
"""

import time
import asyncio
import logging
from dataclasses import replace
from typing import Optional, Sequence

from studypartner.config import (
    CLASSIFIER_MODEL,
    FALLBACK_CALL_TIMEOUT_MS,
    INTENT_CACHE_TTL_SECONDS,
    INTENT_CACHE_MAX_ENTRIES,
    INTENT_CACHE_KEY_LENGTH,
)
from studypartner.llm import LLMClient
from studypartner.intelligence.types import (
    UserIntent, Confidence, IntentResult, ExtractedSlots, ProcessedInput,
    UserSignals, VALID_INTENTS,
)
from studypartner.intelligence.patterns import (
    INTENT_RULES, CONFUSION_RE, COMPLETION_RE, DISENGAGEMENT_RE,
    matches_any, extract_topic,
)
from studypartner.intelligence.input_processor import (
    process_input, normalize_for_matching, is_short_reply, count_words,
)
from studypartner.intelligence.ttl_cache import TTLCache

logger = logging.getLogger("studypartner.intent")


# ─── Fallback Prompt ─────────────────────────────────────────────────────────

CLASSIFIER_PROMPT = """Classify the student's intent. Return ONLY the intent label, nothing else.

INTENTS:
- EXPLAIN: Wants something explained or defined
- SOLVE: Wants a math problem or equation solved
- SUMMARIZE: Wants a summary of content
- COMPARE: Wants comparison between things
- QUIZ_ME: Wants to be quizzed or tested
- CHECK_ANSWER: Wants their answer verified
- CONFUSED: Expresses confusion, needs re-explanation
- FOLLOW_UP: Continuing the previous topic
- ELABORATE: Wants more details on current topic
- PRACTICE: Wants practice problems
- PLAN_STUDY: Wants help planning their study
- FLASHCARDS: Wants flashcards created
- GENERATE_IMAGE: Wants a diagram/image created
- CASUAL_CHAT: Greetings, thanks, or small talk
- UNCLEAR: Cannot determine
{context}
Student message: "{message}"

Intent:"""

FALLBACK_MAX_TOKENS = 30
CONTEXT_MESSAGES = 3
CONTEXT_MESSAGE_CHARS = 100


def build_classification_prompt(processed: ProcessedInput, recent_context: Sequence[str]) -> str:
    context = ""
    if recent_context:
        lines = [
            f"{i}. {msg[:CONTEXT_MESSAGE_CHARS]}"
            for i, msg in enumerate(list(recent_context)[-CONTEXT_MESSAGES:], start=1)
        ]
        context = "\nRecent conversation:\n" + "\n".join(lines) + "\n"
    return CLASSIFIER_PROMPT.format(context=context, message=processed.cleaned)


def parse_intent_label(raw: Optional[str]) -> UserIntent:
    """Exact label, else first valid label contained in the reply, else UNCLEAR."""
    label = (raw or "").strip().upper()
    if not label:
        return UserIntent.UNCLEAR
    if label in VALID_INTENTS:
        return UserIntent(label)
    for valid in VALID_INTENTS:
        if valid in label:
            return UserIntent(valid)
    return UserIntent.UNCLEAR


# ─── Fast Path ───────────────────────────────────────────────────────────────

def _slots(processed: ProcessedInput, topic: Optional[str] = None) -> ExtractedSlots:
    return ExtractedSlots(
        topic=topic or (processed.topics[0] if processed.topics else None),
        question=processed.questions[0] if processed.questions else None,
        math_expression=processed.math_expressions[0] if processed.math_expressions else None,
    )


def classify_intent_fast(processed: ProcessedInput) -> Optional[IntentResult]:
    """Pattern-only classification. None when nothing applies."""
    content = processed.cleaned
    normalized = normalize_for_matching(content)

    # Signals short-circuit the rule table
    if matches_any(normalized, CONFUSION_RE):
        topic = processed.topics[0] if processed.topics else None
        return IntentResult(UserIntent.CONFUSED, Confidence.HIGH, ExtractedSlots(topic=topic))
    if matches_any(normalized, COMPLETION_RE):
        return IntentResult(UserIntent.CASUAL_CHAT, Confidence.HIGH)
    if matches_any(normalized, DISENGAGEMENT_RE) and is_short_reply(content):
        return IntentResult(UserIntent.CASUAL_CHAT, Confidence.MEDIUM)

    for rule in INTENT_RULES:
        if rule.matches(normalized):
            return IntentResult(rule.intent, Confidence.HIGH, _slots(processed, extract_topic(content)))

    if normalized.endswith("?"):
        if processed.word_count < 5:
            return IntentResult(UserIntent.FOLLOW_UP, Confidence.MEDIUM)
        topic = processed.topics[0] if processed.topics else None
        return IntentResult(
            UserIntent.EXPLAIN, Confidence.MEDIUM,
            ExtractedSlots(topic=topic, question=content),
        )

    if processed.math_expressions:
        return IntentResult(
            UserIntent.SOLVE, Confidence.MEDIUM,
            ExtractedSlots(math_expression=processed.math_expressions[0]),
        )

    if processed.word_count <= 3:
        return IntentResult(UserIntent.FOLLOW_UP, Confidence.LOW)

    return None


# ─── Classifier ──────────────────────────────────────────────────────────────

class IntentClassifier:
    """
    Fast path + cached LLM fallback.

    The cache and LLM client are injected so tests can use isolated
    instances and fake clocks.
    """

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        cache: Optional[TTLCache[IntentResult]] = None,
        model: str = CLASSIFIER_MODEL,
    ):
        self.llm = llm
        self.cache = cache if cache is not None else TTLCache(
            INTENT_CACHE_MAX_ENTRIES, INTENT_CACHE_TTL_SECONDS
        )
        self.model = model

    @staticmethod
    def cache_key(text: str) -> str:
        return normalize_for_matching(text)[:INTENT_CACHE_KEY_LENGTH]

    async def classify(
        self,
        text: str,
        recent_context: Sequence[str] = (),
        *,
        allow_fallback: bool = True,
        timeout: float = FALLBACK_CALL_TIMEOUT_MS / 1000.0,
    ) -> IntentResult:
        start = time.perf_counter()

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        key = self.cache_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Intent cache hit: {cached.intent.value}")
            return replace(cached, processing_time_ms=elapsed_ms())

        processed = process_input(text)
        fast = classify_intent_fast(processed)

        if fast is not None and fast.confidence != Confidence.LOW:
            result = replace(fast, processing_time_ms=elapsed_ms())
            self.cache.set(key, result)
            return result

        if allow_fallback and self.llm is not None:
            try:
                intent = await asyncio.wait_for(
                    self._classify_with_llm(processed, recent_context), timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"Intent fallback timed out after {timeout:.1f}s")
            except Exception as e:
                logger.warning(f"Intent fallback failed: {e}")
            else:
                result = IntentResult(
                    intent=intent,
                    confidence=Confidence.MEDIUM,
                    extracted=_slots(processed),
                    used_fallback=True,
                    processing_time_ms=elapsed_ms(),
                )
                logger.info(f"Intent fallback used: {intent.value} ({result.processing_time_ms}ms)")
                self.cache.set(key, result)
                return result

            # Degraded: not cached so the next attempt can retry the fallback
            return IntentResult(
                intent=fast.intent if fast else UserIntent.UNCLEAR,
                confidence=Confidence.LOW,
                extracted=fast.extracted if fast else ExtractedSlots(),
                used_fallback=False,
                processing_time_ms=elapsed_ms(),
            )

        result = IntentResult(
            intent=fast.intent if fast else UserIntent.UNCLEAR,
            confidence=fast.confidence if fast else Confidence.LOW,
            extracted=fast.extracted if fast else ExtractedSlots(),
            used_fallback=False,
            processing_time_ms=elapsed_ms(),
        )
        self.cache.set(key, result)
        return result

    async def _classify_with_llm(self, processed: ProcessedInput, recent_context: Sequence[str]) -> UserIntent:
        prompt = build_classification_prompt(processed, recent_context)
        reply = await self.llm.complete(
            [{"role": "user", "content": prompt}],
            model=self.model,
            max_tokens=FALLBACK_MAX_TOKENS,
            temperature=0.0,
        )
        return parse_intent_label(reply.text)

    def clear_cache(self) -> None:
        self.cache.clear()


_default_classifier: Optional[IntentClassifier] = None


def get_classifier() -> IntentClassifier:
    """Process-wide classifier wired to the configured LLM client."""
    global _default_classifier
    if _default_classifier is None:
        from studypartner.llm import get_llm
        _default_classifier = IntentClassifier(llm=get_llm())
    return _default_classifier


async def classify_intent(
    text: str,
    recent_context: Sequence[str] = (),
    *,
    allow_fallback: bool = True,
    timeout: float = FALLBACK_CALL_TIMEOUT_MS / 1000.0,
    classifier: Optional[IntentClassifier] = None,
) -> IntentResult:
    """Classify one message with the given (or process-wide) classifier."""
    classifier = classifier or get_classifier()
    return await classifier.classify(
        text, recent_context, allow_fallback=allow_fallback, timeout=timeout
    )


# ─── Signals & Helpers ───────────────────────────────────────────────────────

def detect_user_signals(text: str) -> UserSignals:
    """Behavioural signals for one user message."""
    normalized = normalize_for_matching(text)
    words = count_words(text)
    return UserSignals(
        is_short=words <= 3,
        is_confused=matches_any(normalized, CONFUSION_RE),
        is_completed=matches_any(normalized, COMPLETION_RE),
        is_question=(text or "").strip().endswith("?"),
        is_disengaged=matches_any(normalized, DISENGAGEMENT_RE),
        is_engaged=words > 10 or (words > 5 and "?" in (text or "")),
    )


def is_image_generation_intent(intent: UserIntent) -> bool:
    return intent == UserIntent.GENERATE_IMAGE


STUDY_INTENTS = frozenset({
    UserIntent.EXPLAIN, UserIntent.SOLVE, UserIntent.SUMMARIZE, UserIntent.COMPARE,
    UserIntent.QUIZ_ME, UserIntent.CHECK_ANSWER, UserIntent.PRACTICE,
    UserIntent.CONFUSED, UserIntent.FOLLOW_UP, UserIntent.ELABORATE,
    UserIntent.FLASHCARDS, UserIntent.PLAN_STUDY, UserIntent.GENERATE_IMAGE,
})


def is_study_related_intent(intent: UserIntent) -> bool:
    return intent in STUDY_INTENTS


INTENT_DESCRIPTIONS = {
    UserIntent.EXPLAIN: "asking for an explanation",
    UserIntent.SOLVE: "requesting a problem solution",
    UserIntent.SUMMARIZE: "requesting a summary",
    UserIntent.COMPARE: "requesting a comparison",
    UserIntent.QUIZ_ME: "wanting to be quizzed",
    UserIntent.CHECK_ANSWER: "checking their answer",
    UserIntent.PRACTICE: "wanting practice problems",
    UserIntent.CONFUSED: "expressing confusion",
    UserIntent.FOLLOW_UP: "following up on the topic",
    UserIntent.ELABORATE: "asking for more details",
    UserIntent.GENERATE_IMAGE: "requesting an image",
    UserIntent.FLASHCARDS: "requesting flashcards",
    UserIntent.PLAN_STUDY: "planning their study",
    UserIntent.CASUAL_CHAT: "casual conversation",
    UserIntent.OFF_TOPIC: "off-topic message",
    UserIntent.UNCLEAR: "unclear intent",
}


def describe_intent(intent: UserIntent) -> str:
    return INTENT_DESCRIPTIONS.get(intent, "unknown intent")
