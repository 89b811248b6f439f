"""
StudyPartner Intelligence - Decision pipeline for a single chat turn.
"""
from studypartner.intelligence.intent_classifier import (
    IntentClassifier, classify_intent, detect_user_signals,
)
from studypartner.intelligence.adaptive_tracker import AdaptiveTracker, determine_session_state
from studypartner.intelligence.query_analyzer import analyze_query, analyze_query_fast
from studypartner.intelligence.model_router import route_query
from studypartner.intelligence.response_cache import ResponseCache, CacheScope
from studypartner.intelligence.response_mapper import build_response_config
from studypartner.intelligence.decision_controller import (
    DecisionController, make_decision, make_quick_decision,
    update_session_context, plan_freeform_response,
)

__all__ = [
    "IntentClassifier", "classify_intent", "detect_user_signals",
    "AdaptiveTracker", "determine_session_state",
    "analyze_query", "analyze_query_fast", "route_query",
    "ResponseCache", "CacheScope", "build_response_config",
    "DecisionController", "make_decision", "make_quick_decision",
    "update_session_context", "plan_freeform_response",
]
