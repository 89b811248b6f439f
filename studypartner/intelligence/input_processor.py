"""
StudyPartner Intelligence - Input Processor

Cleans raw user text and pulls out the pieces the classifiers care about:
questions, topic phrases, math fragments and code spans. Pure functions,
no I/O, never raises on string input.

Shape detection order (first hit wins):
  code fence/backtick → bullet list → bare math → short fragment → mixed → sentence
"""

import re
import logging

from studypartner.intelligence.types import InputShape, ProcessedInput
from studypartner.intelligence.patterns import (
    TOPIC_EXTRACTION_PATTERNS,
    SHORT_REPLY_THRESHOLD,
    extract_math_expressions,
)

logger = logging.getLogger("studypartner.input")

MAX_TOPICS = 3
MIN_INLINE_CODE_LENGTH = 10

_QUOTE_MAP = str.maketrans({
    "\u2018": "'", "\u2019": "'", "\u201c": '"', "\u201d": '"',
    "\u200b": None, "\u200c": None, "\u200d": None, "\ufeff": None,
})

_FENCED_CODE_RE = re.compile(r"```[a-zA-Z0-9_+-]*\n?(.*?)```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_BULLET_LINE_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+\S")
_OPERATOR_ADJACENCY_RE = re.compile(
    r"(?:\d|\b[xyz]\b|\))\s*[+\-*/^=<>]\s*(?:\d|\b[xyz]\b|\()", re.IGNORECASE
)
_NAMED_FUNCTION_RE = re.compile(r"\b(?:sin|cos|tan|log|ln|sqrt)\s*\(", re.IGNORECASE)
_QUESTION_RE = re.compile(r"[^.!?\n]*\?")
_ALPHA_WORD_RE = re.compile(r"[a-zA-Z]{2,}")
_PUNCT_RE = re.compile(r"[^\w\s]")


# ─── Cleaning ────────────────────────────────────────────────────────────────

def clean_text(text: str) -> str:
    """Straighten quotes, drop zero-width characters, collapse runs of spaces.

    Line breaks survive so bullet lists stay detectable.
    """
    text = (text or "").translate(_QUOTE_MAP)
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def normalize_for_matching(text: str) -> str:
    """Single-line lowercase form used by every pattern table. Keeps '?'."""
    text = (text or "").translate(_QUOTE_MAP).lower()
    return re.sub(r"\s+", " ", text).strip()


def count_words(text: str) -> int:
    return len((text or "").split())


def is_short_reply(text: str) -> bool:
    return count_words(text) <= SHORT_REPLY_THRESHOLD


# ─── Extraction ──────────────────────────────────────────────────────────────

def extract_questions(text: str) -> list[str]:
    questions = []
    for match in _QUESTION_RE.finditer(text):
        candidate = match.group(0).strip()
        if len(candidate) > 1:
            questions.append(candidate)
    return questions


def extract_topics(text: str) -> list[str]:
    topics: list[str] = []
    seen: set[str] = set()
    for pattern in TOPIC_EXTRACTION_PATTERNS:
        for match in pattern.finditer(text):
            topic = match.group(1).strip()
            if topic and topic.lower() not in seen:
                seen.add(topic.lower())
                topics.append(topic)
            if len(topics) >= MAX_TOPICS:
                return topics
    return topics


def extract_code_blocks(text: str) -> list[str]:
    blocks = [m.group(1).strip() for m in _FENCED_CODE_RE.finditer(text) if m.group(1).strip()]
    without_fences = _FENCED_CODE_RE.sub(" ", text)
    for match in _INLINE_CODE_RE.finditer(without_fences):
        span = match.group(1).strip()
        if len(span) >= MIN_INLINE_CODE_LENGTH:
            blocks.append(span)
    return blocks


# ─── Shape ───────────────────────────────────────────────────────────────────

def detect_shape(text: str) -> InputShape:
    if "```" in text or _INLINE_CODE_RE.search(text):
        return InputShape.CODE

    lines = text.splitlines()
    if sum(1 for line in lines if _BULLET_LINE_RE.match(line)) >= 2:
        return InputShape.BULLETS

    has_math = bool(_OPERATOR_ADJACENCY_RE.search(text) or _NAMED_FUNCTION_RE.search(text))
    alpha_words = len(_ALPHA_WORD_RE.findall(text))
    if has_math and alpha_words <= 3:
        return InputShape.MATH

    if count_words(text) <= SHORT_REPLY_THRESHOLD and not text.rstrip().endswith((".", "?", "!")):
        return InputShape.FRAGMENT

    if has_math or (len(lines) > 1 and "?" in text):
        return InputShape.MIXED

    return InputShape.SENTENCE


# ─── Entry Point ─────────────────────────────────────────────────────────────

def process_input(text: str) -> ProcessedInput:
    """Clean and analyse one user message."""
    original = text or ""
    cleaned = clean_text(original)
    if not cleaned:
        cleaned = _PUNCT_RE.sub("", original).strip()

    processed = ProcessedInput(
        original=original,
        cleaned=cleaned,
        shape=detect_shape(cleaned),
        word_count=count_words(cleaned),
        questions=extract_questions(cleaned),
        topics=extract_topics(cleaned),
        math_expressions=extract_math_expressions(cleaned),
        code_blocks=extract_code_blocks(cleaned),
    )
    logger.debug(
        f"Input processed: shape={processed.shape.value}, words={processed.word_count}, "
        f"questions={len(processed.questions)}, topics={processed.topics}"
    )
    return processed
