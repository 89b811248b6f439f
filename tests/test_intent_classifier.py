"""
Tests for intent_classifier.py: fast path, LLM fallback, caching, signals.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from openai import OpenAIError

from studypartner.intelligence.intent_classifier import (
    IntentClassifier, classify_intent, classify_intent_fast, parse_intent_label,
    build_classification_prompt, detect_user_signals, is_image_generation_intent,
    is_study_related_intent, describe_intent,
)
from studypartner.intelligence.input_processor import process_input
from studypartner.intelligence.ttl_cache import TTLCache
from studypartner.llm import LLMResult
from studypartner.intelligence.types import UserIntent, Confidence

from conftest import llm_returning


def fast(text):
    return classify_intent_fast(process_input(text))


# ─── Fast Path ───────────────────────────────────────────────────────────────

class TestFastPath:
    def test_explain(self):
        r = fast("what is mitosis")
        assert r.intent == UserIntent.EXPLAIN
        assert r.confidence == Confidence.HIGH
        assert r.extracted.topic == "mitosis"

    def test_confusion_signal_wins(self):
        r = fast("I don't understand")
        assert r.intent == UserIntent.CONFUSED
        assert r.confidence == Confidence.HIGH

    def test_completion_is_casual(self):
        assert fast("got it").intent == UserIntent.CASUAL_CHAT

    def test_disengaged_short_reply(self):
        r = fast("ok")
        assert r.intent == UserIntent.CASUAL_CHAT
        assert r.confidence == Confidence.MEDIUM

    def test_quiz(self):
        assert fast("quiz me on photosynthesis").intent == UserIntent.QUIZ_ME

    def test_flashcards(self):
        assert fast("make flashcards for the krebs cycle").intent == UserIntent.FLASHCARDS

    def test_image(self):
        assert fast("draw a diagram of the water cycle").intent == UserIntent.GENERATE_IMAGE

    def test_greeting(self):
        assert fast("hello").intent == UserIntent.CASUAL_CHAT

    def test_short_unmatched_is_low_confidence(self):
        r = fast("photosynthesis stuff")
        assert r.intent == UserIntent.FOLLOW_UP
        assert r.confidence == Confidence.LOW

    def test_deterministic(self):
        assert fast("compare mitosis and meiosis") == fast("compare mitosis and meiosis")


class TestLabelParsing:
    def test_exact(self):
        assert parse_intent_label("SUMMARIZE") == UserIntent.SUMMARIZE

    def test_embedded(self):
        assert parse_intent_label("The intent is QUIZ_ME.") == UserIntent.QUIZ_ME

    def test_garbage_is_unclear(self):
        assert parse_intent_label("banana") == UserIntent.UNCLEAR
        assert parse_intent_label(None) == UserIntent.UNCLEAR

    def test_prompt_includes_message(self):
        prompt = build_classification_prompt(process_input("photosynthesis stuff"), ["earlier"])
        assert "photosynthesis stuff" in prompt


# ─── Fallback & Cache ────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestClassify:
    async def test_confident_fast_path_skips_llm(self):
        llm = llm_returning("EXPLAIN")
        r = await IntentClassifier(llm=llm).classify("what is mitosis")
        assert r.intent == UserIntent.EXPLAIN
        assert not r.used_fallback
        llm.complete.assert_not_awaited()

    async def test_fallback_used_on_low_confidence(self):
        llm = llm_returning("EXPLAIN")
        r = await IntentClassifier(llm=llm).classify("photosynthesis stuff")
        assert r.intent == UserIntent.EXPLAIN
        assert r.confidence == Confidence.MEDIUM
        assert r.used_fallback

    async def test_fallback_not_allowed(self):
        llm = llm_returning("EXPLAIN")
        r = await IntentClassifier(llm=llm).classify("photosynthesis stuff", allow_fallback=False)
        assert r.intent == UserIntent.FOLLOW_UP
        assert r.confidence == Confidence.LOW
        llm.complete.assert_not_awaited()

    async def test_timeout_degrades(self):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        llm = AsyncMock()
        llm.complete.side_effect = slow
        r = await IntentClassifier(llm=llm).classify("photosynthesis stuff", timeout=0.05)
        assert r.intent == UserIntent.FOLLOW_UP
        assert r.confidence == Confidence.LOW
        assert not r.used_fallback

    async def test_provider_error_degrades(self):
        llm = AsyncMock()
        llm.complete.side_effect = OpenAIError("boom")
        r = await IntentClassifier(llm=llm).classify("photosynthesis stuff")
        assert r.confidence == Confidence.LOW
        assert not r.used_fallback

    async def test_unexpected_client_error_degrades(self):
        llm = AsyncMock()
        llm.complete.side_effect = ConnectionError("connection reset")
        r = await IntentClassifier(llm=llm).classify("photosynthesis stuff")
        assert r.intent == UserIntent.FOLLOW_UP
        assert r.confidence == Confidence.LOW
        assert not r.used_fallback

    async def test_no_match_and_no_llm_is_unclear(self):
        r = await IntentClassifier(llm=None).classify("the mitochondria and the golgi body")
        assert r.intent == UserIntent.UNCLEAR
        assert r.confidence == Confidence.LOW

    async def test_fallback_result_cached_until_ttl(self, clock):
        llm = llm_returning("EXPLAIN", "SUMMARIZE")
        classifier = IntentClassifier(llm=llm, cache=TTLCache(10, 60, clock=clock))

        first = await classifier.classify("photosynthesis stuff")
        second = await classifier.classify("Photosynthesis   STUFF")
        assert first.intent == second.intent == UserIntent.EXPLAIN
        assert llm.complete.await_count == 1

        clock.advance(61)
        third = await classifier.classify("photosynthesis stuff")
        assert third.intent == UserIntent.SUMMARIZE
        assert llm.complete.await_count == 2

    async def test_degraded_result_not_cached(self, clock):
        llm = AsyncMock()
        llm.complete.side_effect = [OpenAIError("boom"), LLMResult(text="EXPLAIN", latency_ms=5, model="test-model")]
        classifier = IntentClassifier(llm=llm, cache=TTLCache(10, 60, clock=clock))

        degraded = await classifier.classify("photosynthesis stuff")
        retried = await classifier.classify("photosynthesis stuff")
        assert not degraded.used_fallback
        assert retried.used_fallback

    async def test_module_function_uses_given_classifier(self):
        r = await classify_intent("what is mitosis", classifier=IntentClassifier(llm=None))
        assert r.intent == UserIntent.EXPLAIN


# ─── Signals & Helpers ───────────────────────────────────────────────────────

class TestSignals:
    def test_confused(self):
        assert detect_user_signals("I'm so lost").is_confused

    def test_short_and_disengaged(self):
        s = detect_user_signals("idk")
        assert s.is_short and s.is_disengaged

    def test_engaged_long_message(self):
        s = detect_user_signals("I tried applying the formula to the second problem but the units did not match")
        assert s.is_engaged

    def test_engaged_question(self):
        assert detect_user_signals("why does the chain rule work here?").is_engaged

    def test_question(self):
        assert detect_user_signals("really?").is_question


class TestHelpers:
    def test_image_intent(self):
        assert is_image_generation_intent(UserIntent.GENERATE_IMAGE)
        assert not is_image_generation_intent(UserIntent.EXPLAIN)

    def test_study_related(self):
        assert is_study_related_intent(UserIntent.QUIZ_ME)
        assert not is_study_related_intent(UserIntent.CASUAL_CHAT)

    def test_every_intent_described(self):
        for intent in UserIntent:
            assert describe_intent(intent)
