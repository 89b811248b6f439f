"""
StudyPartner Intelligence - Adaptive Tracker

Per-session behavioural state machine. One tracker per session, owned by a
single caller at a time (no internal locking; serialize access by session id).

Signal handling per user message:
    confused        → confusion += 1, understanding unconfirmed
    completed       → confusion = 0, understanding confirmed
    short/disengaged→ short_reply += 1, disengagement += 1
    engaged         → short_reply = 0, disengagement decays by 1
    bare question   → short_reply = 0, questions_answered_by_user += 1

Engagement level and preferred length are recomputed on every message.
"""

import json
import time
import logging
from dataclasses import replace
from typing import Callable, Optional

from studypartner.intelligence.types import (
    AdaptiveState, EngagementLevel, PreferredLength, SessionPhase, UserSignals,
)
from studypartner.intelligence.intent_classifier import detect_user_signals
from studypartner.intelligence.input_processor import count_words

logger = logging.getLogger("studypartner.adaptive")

PROGRESS_CHECK_INTERVAL_MINUTES = 10
PROGRESS_CHECK_MESSAGE_INTERVAL = 20
WRAP_UP_AFTER_MINUTES = 45
START_PHASE_MAX_MESSAGES = 4


class AdaptiveTracker:

    def __init__(
        self,
        state: Optional[AdaptiveState] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.state = replace(state) if state is not None else AdaptiveState()
        self._clock = clock

    # ─── Message Processing ──────────────────────────────────────────────────

    def process_user_message(self, content: str, timestamp: Optional[float] = None) -> UserSignals:
        """Fold one user message into the state. Returns the detected signals."""
        s = self.state
        signals = detect_user_signals(content)

        if signals.is_confused:
            s.confusion_count += 1
            s.understanding_confirmed = False
        elif signals.is_completed:
            s.confusion_count = 0
            s.understanding_confirmed = True

        if signals.is_short or signals.is_disengaged:
            s.short_reply_count += 1
            s.disengagement_count += 1
        elif signals.is_engaged:
            s.short_reply_count = 0
            s.disengagement_count = max(0, s.disengagement_count - 1)
        elif signals.is_question:
            s.short_reply_count = 0
            s.questions_answered_by_user += 1

        s.engagement_level = self._engagement_level()
        s.preferred_response_length = _infer_preferred_length(content)
        s.last_message_timestamp = float(timestamp if timestamp is not None else self._clock())
        s.message_count += 1

        if signals.is_confused:
            logger.debug(f"Confusion signal ({s.confusion_count} so far)")
        return signals

    def process_assistant_message(self, content: str) -> None:
        if (content or "").strip().endswith("?"):
            self.state.questions_asked_by_ai += 1

    def update_topic(self, topic: Optional[str]) -> None:
        s = self.state
        if topic and topic != s.current_topic:
            if s.current_topic:
                s.topic_changes += 1
            s.current_topic = topic
            s.topic_depth = 1
        elif topic and topic == s.current_topic:
            s.topic_depth += 1

    def reset_counters(self) -> None:
        s = self.state
        s.confusion_count = 0
        s.short_reply_count = 0
        s.disengagement_count = 0
        s.understanding_confirmed = False

    def get_state(self) -> AdaptiveState:
        """Copy of the current state."""
        return replace(self.state)

    # ─── Decision Helpers ────────────────────────────────────────────────────

    def is_over_asking(self) -> bool:
        s = self.state
        return s.questions_asked_by_ai > s.questions_answered_by_user + 1

    def should_ask_question(self) -> bool:
        s = self.state
        if self.is_over_asking():
            return False
        if s.engagement_level == EngagementLevel.LOW and s.short_reply_count >= 2:
            return True
        if s.engagement_level == EngagementLevel.HIGH and s.understanding_confirmed:
            return False
        return s.confusion_count >= 2

    def should_offer_visual(self) -> bool:
        s = self.state
        if s.confusion_count >= 1 and s.topic_depth >= 2:
            return True
        return s.topic_depth >= 3

    def is_user_stuck(self) -> bool:
        return is_stuck(self.state)

    def should_check_progress(self, session_minutes: float) -> bool:
        s = self.state
        if s.questions_asked_by_ai > s.questions_answered_by_user + 2:
            return False
        checks_due = int(session_minutes // PROGRESS_CHECK_INTERVAL_MINUTES)
        return checks_due > 0 and s.message_count % PROGRESS_CHECK_MESSAGE_INTERVAL == 0

    # ─── Serialization ───────────────────────────────────────────────────────

    def to_json(self) -> str:
        return json.dumps(self.state.to_dict())

    @classmethod
    def from_json(cls, blob: str) -> "AdaptiveTracker":
        """Restore from to_json() output. Malformed input gives a fresh tracker."""
        try:
            return cls(AdaptiveState.from_dict(json.loads(blob)))
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed adaptive state: {e}")
            return cls()

    def _engagement_level(self) -> EngagementLevel:
        s = self.state
        if s.disengagement_count >= 3 or s.short_reply_count >= 4:
            return EngagementLevel.LOW
        if s.short_reply_count >= 2 or s.disengagement_count >= 2:
            return EngagementLevel.MEDIUM
        return EngagementLevel.HIGH


def _infer_preferred_length(content: str) -> PreferredLength:
    words = count_words(content)
    if words <= 5:
        return PreferredLength.SHORT
    if words <= 20:
        return PreferredLength.MEDIUM
    return PreferredLength.LONG


def restore_tracker(blob: Optional[str]) -> AdaptiveTracker:
    if not blob:
        return AdaptiveTracker()
    return AdaptiveTracker.from_json(blob)


# ─── Session Phase ───────────────────────────────────────────────────────────

def is_stuck(state: AdaptiveState) -> bool:
    return state.confusion_count >= 2 or (
        state.short_reply_count >= 3 and state.engagement_level == EngagementLevel.LOW
    )


def determine_session_state(state: AdaptiveState, session_minutes: float) -> SessionPhase:
    """Pure function of (state, elapsed minutes)."""
    if state.message_count <= START_PHASE_MAX_MESSAGES:
        return SessionPhase.START
    if session_minutes >= WRAP_UP_AFTER_MINUTES:
        return SessionPhase.WRAP_UP
    if is_stuck(state):
        return SessionPhase.STUCK
    if (
        session_minutes >= PROGRESS_CHECK_INTERVAL_MINUTES
        and session_minutes % PROGRESS_CHECK_INTERVAL_MINUTES < 2
        and state.engagement_level != EngagementLevel.LOW
    ):
        return SessionPhase.PROGRESS_CHECK
    return SessionPhase.WORKING
