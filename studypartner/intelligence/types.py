"""
StudyPartner Intelligence - Type Definitions

Closed label sets are str Enums so they serialize as plain strings.
Per-decision values (ProcessedInput, IntentResult, ResponseConfig,
QueryAnalysis, AIDecision) are ephemeral dataclasses. AdaptiveState is the
only long-lived value and owns its own to_dict/from_dict.
"""

from dataclasses import dataclass, field, fields, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


# ─── Intents ─────────────────────────────────────────────────────────────────

class UserIntent(str, Enum):
    """What the user is trying to accomplish with their message."""
    # Learning
    EXPLAIN = "EXPLAIN"
    SOLVE = "SOLVE"
    SUMMARIZE = "SUMMARIZE"
    COMPARE = "COMPARE"
    # Interactive
    QUIZ_ME = "QUIZ_ME"
    CHECK_ANSWER = "CHECK_ANSWER"
    PRACTICE = "PRACTICE"
    # Clarification
    CONFUSED = "CONFUSED"
    FOLLOW_UP = "FOLLOW_UP"
    ELABORATE = "ELABORATE"
    # Special
    GENERATE_IMAGE = "GENERATE_IMAGE"
    FLASHCARDS = "FLASHCARDS"
    PLAN_STUDY = "PLAN_STUDY"
    # Other
    CASUAL_CHAT = "CASUAL_CHAT"
    OFF_TOPIC = "OFF_TOPIC"
    UNCLEAR = "UNCLEAR"


VALID_INTENTS = tuple(i.value for i in UserIntent)


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ─── Input Processing ────────────────────────────────────────────────────────

class InputShape(str, Enum):
    SENTENCE = "sentence"
    BULLETS = "bullets"
    FRAGMENT = "fragment"
    CODE = "code"
    MATH = "math"
    MIXED = "mixed"


@dataclass
class ProcessedInput:
    """Cleaned user text plus everything pulled out of it. Lives for one call."""
    original: str
    cleaned: str
    shape: InputShape
    word_count: int
    questions: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    math_expressions: list[str] = field(default_factory=list)
    code_blocks: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractedSlots:
    topic: Optional[str] = None
    question: Optional[str] = None
    math_expression: Optional[str] = None


@dataclass(frozen=True)
class IntentResult:
    intent: UserIntent
    confidence: Confidence
    extracted: ExtractedSlots = field(default_factory=ExtractedSlots)
    used_fallback: bool = False
    processing_time_ms: int = 0


@dataclass(frozen=True)
class UserSignals:
    """Per-message behavioural signals read by the adaptive tracker."""
    is_short: bool = False        # <= 3 words
    is_confused: bool = False     # "I don't understand"
    is_completed: bool = False    # "got it", "makes sense"
    is_question: bool = False     # ends with ?
    is_disengaged: bool = False   # "ok", "idk", "whatever"
    is_engaged: bool = False      # long or detailed message


# ─── Response Configuration ──────────────────────────────────────────────────

class ResponseStyle(str, Enum):
    CONCISE = "concise"
    DETAILED = "detailed"
    STEP_BY_STEP = "step_by_step"
    EXAMPLE_FIRST = "example_first"
    ANALOGY = "analogy"
    SOCRATIC = "socratic"
    COMPARISON = "comparison"
    VISUAL_DESC = "visual_desc"


class ResponseTone(str, Enum):
    ENCOURAGING = "encouraging"
    DIRECT = "direct"
    PATIENT = "patient"
    ENTHUSIASTIC = "enthusiastic"
    NEUTRAL = "neutral"


class ResponseLength(str, Enum):
    SHORT = "short"          # 1-2 sentences
    MEDIUM = "medium"        # 1-2 paragraphs
    LONG = "long"            # detailed explanation
    ADAPTIVE = "adaptive"    # match the user's message length


@dataclass(frozen=True)
class ResponseConfig:
    style: ResponseStyle = ResponseStyle.DETAILED
    tone: ResponseTone = ResponseTone.NEUTRAL
    length: ResponseLength = ResponseLength.MEDIUM
    include_question: bool = False
    include_example: bool = False
    include_visual_offer: bool = False
    max_tokens: int = 600


DEFAULT_RESPONSE_CONFIG = ResponseConfig()


# ─── Adaptive State ──────────────────────────────────────────────────────────

class EngagementLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PreferredLength(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


class SessionPhase(str, Enum):
    START = "START"
    WORKING = "WORKING"
    STUCK = "STUCK"
    PROGRESS_CHECK = "PROGRESS_CHECK"
    WRAP_UP = "WRAP_UP"


_INT_FIELDS = (
    "confusion_count", "short_reply_count", "disengagement_count",
    "questions_asked_by_ai", "questions_answered_by_user",
    "topic_depth", "topic_changes", "message_count",
)


@dataclass
class AdaptiveState:
    """
    Rolling per-session behaviour. Mutated by AdaptiveTracker only.

    Counters go back to zero only on explicit positive signals
    (confirmed understanding, clear engagement) or reset_counters().
    """
    # Counters
    confusion_count: int = 0
    short_reply_count: int = 0
    disengagement_count: int = 0

    # Positive signals
    engagement_level: EngagementLevel = EngagementLevel.MEDIUM
    understanding_confirmed: bool = False

    # Patterns
    preferred_response_length: PreferredLength = PreferredLength.MEDIUM
    questions_asked_by_ai: int = 0
    questions_answered_by_user: int = 0

    # Topic tracking
    current_topic: Optional[str] = None
    topic_depth: int = 0
    topic_changes: int = 0

    # Timing
    last_message_timestamp: float = 0.0
    message_count: int = 0

    def to_dict(self) -> dict:
        """Flat, JSON-safe snapshot."""
        data = asdict(self)
        data["engagement_level"] = self.engagement_level.value
        data["preferred_response_length"] = self.preferred_response_length.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AdaptiveState":
        """Strict inverse of to_dict. Raises ValueError/TypeError on bad input."""
        if not isinstance(data, dict):
            raise TypeError(f"expected dict, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        state = cls()
        for key, value in data.items():
            if key not in known:
                continue
            if key in _INT_FIELDS:
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise ValueError(f"{key} must be a non-negative int, got {value!r}")
            setattr(state, key, value)
        state.engagement_level = EngagementLevel(state.engagement_level)
        state.preferred_response_length = PreferredLength(state.preferred_response_length)
        if not isinstance(state.understanding_confirmed, bool):
            raise ValueError("understanding_confirmed must be a bool")
        if state.current_topic is not None and not isinstance(state.current_topic, str):
            raise ValueError("current_topic must be a string or null")
        if isinstance(state.last_message_timestamp, bool) or not isinstance(
            state.last_message_timestamp, (int, float)
        ):
            raise ValueError("last_message_timestamp must be a number")
        state.last_message_timestamp = float(state.last_message_timestamp)
        return state


# ─── Memory Context ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MemoryContext:
    """Long-term user preferences, read-only input to the memory overlay."""
    preferred_name: Optional[str] = None
    preferred_learning_style: Optional[str] = None   # visual | reading | hands-on
    preferred_difficulty: Optional[str] = None       # easy | medium | hard
    preferred_pace: Optional[str] = None             # slow | normal | fast
    communication_style: Optional[str] = None        # formal | casual
    current_subjects: tuple[str, ...] = ()
    struggling_topics: tuple[str, ...] = ()
    mastered_topics: tuple[str, ...] = ()
    total_sessions: int = 0
    streak_days: int = 0

    @classmethod
    def from_preferences(cls, prefs: Optional[dict]) -> "MemoryContext":
        """Build from a loosely-typed preferences row; unknown keys are ignored."""
        if not prefs:
            return cls()
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in prefs.items():
            if key not in known or value is None:
                continue
            if isinstance(value, list):
                value = tuple(value)
            values[key] = value
        return cls(**values)


DEFAULT_MEMORY_CONTEXT = MemoryContext()


# ─── Session Context ─────────────────────────────────────────────────────────

class SkillLevel(str, Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"
    EXPERT = "EXPERT"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionContext:
    session_id: str
    user_id: str
    subject: Optional[str] = None
    skill_level: Optional[SkillLevel] = None
    message_count: int = 0
    total_tokens_used: int = 0
    fallback_call_count: int = 0
    started_at: datetime = field(default_factory=_utc_now)
    recent_messages: list[dict] = field(default_factory=list)  # [{"role", "content"}]


# ─── Query Analysis ──────────────────────────────────────────────────────────

class QueryComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class AnswerLength(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    DETAILED = "detailed"


class ModelTier(str, Enum):
    FAST = "fast"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class QueryAnalysis:
    complexity: QueryComplexity
    response_length: AnswerLength
    model_tier: ModelTier
    confidence: float
    reason: str
    max_tokens: int
    temperature: float
    requires_reasoning: bool = False
    requires_calculation: bool = False
    requires_code_generation: bool = False
    is_factual_question: bool = False
    is_conceptual_question: bool = False
    is_procedural_question: bool = False


# ─── Decisions ───────────────────────────────────────────────────────────────

class AIAction(str, Enum):
    RESPOND = "respond"
    GENERATE_IMAGE = "generate_image"
    CREATE_QUIZ = "create_quiz"
    CREATE_FLASHCARDS = "create_flashcards"
    CLARIFY = "clarify"


@dataclass(frozen=True)
class PromptInjections:
    style_instruction: str = ""
    tone_instruction: str = ""
    length_instruction: str = ""
    special_instructions: tuple[str, ...] = ()


@dataclass(frozen=True)
class PostActions:
    extract_memories: bool = False
    update_signals: bool = True
    check_for_visual_offer: bool = False


@dataclass(frozen=True)
class DecisionMeta:
    intent: UserIntent
    confidence: Confidence
    used_fallback: bool
    processing_time_ms: int
    session_phase: Optional[SessionPhase] = None


@dataclass(frozen=True)
class AIDecision:
    action: AIAction
    response_config: ResponseConfig
    prompt_injections: PromptInjections
    post_actions: PostActions
    meta: DecisionMeta
