"""
StudyPartner Intelligence - Pattern Tables

Regex tables for the fast path. Every table is a list of raw patterns compiled
into one case-insensitive alternation, the same way the detectors in
input_processor do it.

INTENT_RULES is the single ordered rule list for intent matching: the
classifier walks it top to bottom and the first rule that matches wins.
Reordering it changes classification results.
"""

import re
from dataclasses import dataclass
from typing import Optional

from studypartner.intelligence.types import UserIntent


def _compile(patterns: list[str]) -> re.Pattern:
    return re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE)


# ─── Intent Patterns ─────────────────────────────────────────────────────────

EXPLAIN_PATTERNS = [
    r"^(what|who|where|when|why|how)\s+(is|are|was|were|does|do|did|can|could|would|should)",
    r"^(what|who|where|when|why|how)\s+.{3,}",
    r"explain\s+(to me\s+)?(what|how|why|the|this|that|a|an)?",
    r"tell me (about|what|how|why)",
    r"what does .+ mean",
    r"what('s| is) (the |a |an )?(meaning|definition)",
    r"define\s+",
    r"meaning of",
    r"can you (explain|tell me|describe)",
    r"help me understand",
    r"i('m| am) (not sure|confused about) (what|how|why)",
    r"what exactly is",
    r"break down",
]

SOLVE_PATTERNS = [
    r"solve\s+(this|the|for|equation|problem|x|y)",
    r"calculate\s+",
    r"find\s+(the\s+)?(value|answer|solution|result|x|y)",
    r"what\s+is\s+\d+\s*[+\-*/^]",
    r"\d+\s*[+\-*/^]\s*\d+",
    r"work out",
    r"figure out",
    r"compute",
    r"evaluate\s+(this|the)?",
    r"simplify",
    r"factor",
    r"derive",
    r"integrate",
    r"differentiate",
    r"what('s| is) the (answer|solution|result)",
    r"how do (i|you) solve",
    r"solve for",
]

SUMMARIZE_PATTERNS = [
    r"summarize",
    r"summary\s+(of|for)",
    r"give me (a\s+)?summary",
    r"tldr",
    r"tl;dr",
    r"main points",
    r"key (points|takeaways|ideas|concepts)",
    r"in (short|brief|a nutshell)",
    r"quick (overview|summary|recap)",
    r"recap",
    r"overview of",
    r"bullet points",
    r"cliff notes",
]

COMPARE_PATTERNS = [
    r"difference\s+between",
    r"differences?\s+(of|in)",
    r"compare\s+(and\s+contrast)?",
    r"\bvs\.?\s",
    r"versus",
    r"how\s+(is|are|does)\s+.+\s+(different|similar|compare)",
    r"what.+(distinguishes|separates)",
    r"similarities\s+(between|and)",
    r"contrast\s+(between|with)",
    r"which (is|one is) (better|faster|more)",
    r"pros and cons",
    r".+ or .+\?$",
]

QUIZ_ME_PATTERNS = [
    r"quiz\s+me",
    r"test\s+me",
    r"ask\s+me\s+(a\s+)?question",
    r"give\s+me\s+(a\s+)?(quiz|test|question)",
    r"practice\s+questions?",
    r"can you (quiz|test) me",
    r"i want (a|to be) quiz(zed)?",
    r"let('s| us) (do a|have a) quiz",
    r"challenge me",
    r"ready (to be |for )?(tested|quizzed)",
]

CHECK_ANSWER_PATTERNS = [
    r"is\s+(this|my|that)\s+(answer|solution|work)\s+(correct|right|wrong)",
    r"check\s+(my|this)\s+(answer|work|solution)",
    r"did\s+i\s+(get|do)\s+(this|it)\s+(right|correctly|wrong)",
    r"am\s+i\s+(right|correct|wrong)",
    r"correct\s+(my|this)",
    r"is this (right|correct|wrong)",
    r"my answer (is|was|:)",
    r"i (got|think|believe|said) .+ (is that (right|correct)|right\?|correct\?)",
    r"verify my",
    r"grade (my|this)",
]

PRACTICE_PATTERNS = [
    r"give me (a\s+)?(practice|more) (problems?|questions?|exercises?)",
    r"more (practice|problems|questions|exercises)",
    r"another (problem|question|example)",
    r"practice (problems?|exercises?|questions?)",
    r"let('s| me) practice",
    r"i (want|need) (to |more )?practice",
    r"drill me",
    r"more examples",
    r"keep going",
    r"next (one|problem|question)",
]

CONFUSED_PATTERNS = [
    r"i\s+(don'?t|do not|still don'?t)\s+(understand|get|follow|see)",
    r"(still\s+)?(confused|lost|stuck)",
    r"makes?\s+no\s+sense",
    r"doesn'?t\s+make\s+sense",
    r"^huh\??$",
    r"^what\??$",
    r"lost\s+me",
    r"explain\s+(it\s+)?(again|differently|another way)",
    r"come\s+again",
    r"run\s+that\s+by\s+me\s+again",
    r"i'?m\s+(so\s+)?lost",
    r"not (following|getting it|understanding)",
    r"can you (say that|explain|rephrase) (again|differently)",
    r"too (fast|confusing|complicated|complex)",
    r"over my head",
    r"went (right )?over my head",
    r"wait,?\s+what",
    r"you lost me",
]

FOLLOW_UP_PATTERNS = [
    r"^(and|but|so|also|what about|how about)\b",
    r"^(ok|okay|alright|got it|i see),?\s+(but|and|so|now|what|how)",
    r"following\s+up",
    r"related\s+to\s+that",
    r"speaking\s+of",
    r"on that note",
    r"going back to",
    r"^one more (thing|question)",
    r"^additionally",
    r"^furthermore",
    r"^moreover",
    r"what if",
]

ELABORATE_PATTERNS = [
    r"tell\s+me\s+more",
    r"go\s+(on|deeper|further|into more detail)",
    r"elaborate",
    r"more\s+details?",
    r"expand\s+on",
    r"can you (explain|go into) (more|further|greater)",
    r"dig deeper",
    r"in (more |greater )?detail",
    r"continue",
    r"and(\?|\.\.\.?)$",
    r"what else",
    r"is there more",
]

GENERATE_IMAGE_PATTERNS = [
    r"(generate|create|make|draw|show)\s+(me\s+)?(an?\s+|the\s+)?(image|picture|diagram|illustration|visual|chart|graph|flowchart|infographic|mindmap|logo|poster)",
    r"(can|could|would|please)\s+(you\s+)?(generate|create|make|draw|show)\s+(me\s+)?(an?\s+|the\s+)?(image|picture|diagram|illustration|visual)",
    r"i\s+(want|need)\s+(an?\s+|the\s+)?(image|picture|diagram|illustration|visual)",
    r"visualize",
    r"\billustrate\b",
    r"illustration (of|for)",
    r"design\s+(a|an|the)\s+(logo|poster|infographic|diagram)",
    r"show\s+(me\s+)?visually",
]

FLASHCARDS_PATTERNS = [
    r"flashcards?",
    r"flash cards?",
    r"make\s+(me\s+)?(study\s+)?cards",
    r"create\s+(study\s+)?cards",
    r"study cards",
    r"vocabulary cards",
    r"note cards",
]

PLAN_STUDY_PATTERNS = [
    r"help\s+me\s+(plan|organize|schedule|prepare)",
    r"study\s+(plan|schedule|strategy)",
    r"how\s+should\s+i\s+(study|prepare|review)",
    r"prepare\s+for\s+(the\s+)?(exam|test|quiz|final)",
    r"exam\s+prep",
    r"study\s+guide",
    r"learning\s+(plan|path|roadmap)",
    r"what should i (study|focus on|review)",
    r"best way to (study|learn|prepare)",
    r"study tips",
    r"how (can|do) i (prepare|study) for",
]

CASUAL_CHAT_PATTERNS = [
    r"^(hi|hey|hello|howdy|sup|yo|hiya)!?$",
    r"^(hi|hey|hello|howdy),?\s+.{0,20}$",
    r"^good\s+(morning|afternoon|evening|night)!?$",
    r"how\s+(are|r)\s+(you|u|ya)",
    r"what'?s?\s+up",
    r"^thanks?(\s+you)?!?$",
    r"^thank you( so much)?!?$",
    r"^(ok|okay|cool|nice|great|awesome|perfect|got it|understood|i see)!?$",
    r"^(bye|goodbye|see you|later|cya|ttyl)!?$",
    r"^lol!?$",
    r"^haha!?$",
    r"^:[)(DPp]$",
    r"^(yes|no|yeah|yep|nope|nah|sure|maybe)!?$",
]


@dataclass(frozen=True)
class IntentRule:
    intent: UserIntent
    pattern: re.Pattern

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


# Declaration order is tie-break order. OFF_TOPIC and UNCLEAR are never
# produced by the fast path.
INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(UserIntent.EXPLAIN, _compile(EXPLAIN_PATTERNS)),
    IntentRule(UserIntent.SOLVE, _compile(SOLVE_PATTERNS)),
    IntentRule(UserIntent.SUMMARIZE, _compile(SUMMARIZE_PATTERNS)),
    IntentRule(UserIntent.COMPARE, _compile(COMPARE_PATTERNS)),
    IntentRule(UserIntent.QUIZ_ME, _compile(QUIZ_ME_PATTERNS)),
    IntentRule(UserIntent.CHECK_ANSWER, _compile(CHECK_ANSWER_PATTERNS)),
    IntentRule(UserIntent.PRACTICE, _compile(PRACTICE_PATTERNS)),
    IntentRule(UserIntent.CONFUSED, _compile(CONFUSED_PATTERNS)),
    IntentRule(UserIntent.FOLLOW_UP, _compile(FOLLOW_UP_PATTERNS)),
    IntentRule(UserIntent.ELABORATE, _compile(ELABORATE_PATTERNS)),
    IntentRule(UserIntent.GENERATE_IMAGE, _compile(GENERATE_IMAGE_PATTERNS)),
    IntentRule(UserIntent.FLASHCARDS, _compile(FLASHCARDS_PATTERNS)),
    IntentRule(UserIntent.PLAN_STUDY, _compile(PLAN_STUDY_PATTERNS)),
    IntentRule(UserIntent.CASUAL_CHAT, _compile(CASUAL_CHAT_PATTERNS)),
)


# ─── Signal Patterns (adaptive tracking + classifier short-circuit) ──────────

CONFUSION_SIGNAL_PATTERNS = [
    r"i\s+(don'?t|do not|still don'?t)\s+(understand|get|follow)",
    r"(confused|lost|stuck)",
    r"makes?\s+no\s+sense",
    r"^huh\??$",
    r"^what\??$",
    r"explain.+again",
    r"not (following|getting it)",
]

COMPLETION_SIGNAL_PATTERNS = [
    r"^(got it|i (got|get) it|understood|i (understand|see)|makes sense|that makes sense|clear now|ah i see|oh i see|now i (get|understand) it)!?$",
    r"thanks?,?\s+(that|this)\s+(helps?|makes sense|is clear)",
    r"^perfect!?$",
    r"^exactly!?$",
    r"^right!?$",
]

DISENGAGEMENT_SIGNAL_PATTERNS = [
    r"^(ok|okay|k|kk|cool|sure|fine|whatever|idk|dunno|meh)!?\.?$",
    r"^(yes|no|yeah|yep|nope|nah)!?\.?$",
    r"^\.{1,3}$",
    r"^[a-z]{1,3}$",
]

CONFUSION_RE = _compile(CONFUSION_SIGNAL_PATTERNS)
COMPLETION_RE = _compile(COMPLETION_SIGNAL_PATTERNS)
DISENGAGEMENT_RE = _compile(DISENGAGEMENT_SIGNAL_PATTERNS)

SHORT_REPLY_THRESHOLD = 3  # words


# ─── Extraction Patterns ─────────────────────────────────────────────────────

TOPIC_EXTRACTION_PATTERNS = [
    re.compile(
        r"(?:about|on|for|regarding|study|learn|explain|understand)\s+([a-zA-Z][a-zA-Z\s]{2,30}?)(?:[.,?!]|$)",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:what is|what are|how does|how do)\s+([a-zA-Z][a-zA-Z\s]{2,30}?)(?:\?|$)",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:help me with|teach me|show me)\s+([a-zA-Z][a-zA-Z\s]{2,30}?)(?:[.,?!]|$)",
        re.IGNORECASE,
    ),
]

MATH_EXPRESSION_PATTERNS = [
    re.compile(r"\d+\s*[+\-*/^=]\s*[\dx()]+"),                  # arithmetic
    re.compile(r"\b[xyz]\s*[+\-*/^=]\s*[\dxyz()]+"),             # algebraic
    re.compile(r"\b(?:sin|cos|tan|log|ln|sqrt)\b", re.IGNORECASE),
    re.compile(r"\b(?:integral|derivative|limit)\b", re.IGNORECASE),
]


def matches_any(text: str, pattern: re.Pattern) -> bool:
    return pattern.search(text) is not None


def extract_topic(text: str) -> Optional[str]:
    """First topic phrase found, or None."""
    for pattern in TOPIC_EXTRACTION_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def extract_math_expressions(text: str) -> list[str]:
    """All math fragments, deduplicated, in first-seen order."""
    found: list[str] = []
    for pattern in MATH_EXPRESSION_PATTERNS:
        for match in pattern.finditer(text):
            expr = match.group(0)
            if expr not in found:
                found.append(expr)
    return found
