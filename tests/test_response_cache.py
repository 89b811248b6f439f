"""
Tests for response_cache.py: normalization, scoping, TTLs and the SQL-backed service.
Uses an in-memory SQLite database and a fake clock.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from studypartner.errors import DecisionContractError
from studypartner.intelligence.response_cache import (
    ResponseCache, SQLCacheStore, CacheScope, CacheStatus,
    normalize_query, hash_query, calculate_similarity,
    determine_cache_scope, determine_ttl, should_cache_response,
)
from studypartner.intelligence.ttl_cache import TTLCache

ANSWER = "Mitosis is the process of cell division that produces two identical daughter cells."


@pytest.fixture
def cache(session_factory, fake_now):
    return ResponseCache(store=SQLCacheStore(session_factory), now=fake_now)


class BrokenStore(SQLCacheStore):
    def find_live(self, query_hash, now):
        raise SQLAlchemyError("database unavailable")

    def upsert(self, **kwargs):
        raise SQLAlchemyError("database unavailable")


# ─── Helpers ─────────────────────────────────────────────────────────────────

class TestNormalization:
    def test_strips_filler_and_canonicalizes(self):
        assert normalize_query("hey can you tell me what is the mitochondria?") == "what is mitochondria"

    def test_how_do_i(self):
        assert normalize_query("How do I balance equations") == "how to balance equations"

    @pytest.mark.parametrize("query", [
        "Hey, what is the mitochondria??",
        "please please tell me why is the sky blue",
        "  How   does  a rainbow form?! ",
        "",
    ])
    def test_idempotent(self, query):
        once = normalize_query(query)
        assert normalize_query(once) == once


class TestHashing:
    def test_scope_and_owner_separate_keys(self):
        n = "what is mitosis"
        keys = {
            hash_query(n, CacheScope.GLOBAL),
            hash_query(n, CacheScope.USER, "u1"),
            hash_query(n, CacheScope.USER, "u2"),
            hash_query(n, CacheScope.SESSION, "u1"),
        }
        assert len(keys) == 4

    def test_similarity(self):
        assert calculate_similarity("what is photosynthesis process", "what is the photosynthesis process") == 0.75
        assert calculate_similarity("", "anything") == 0.0


class TestScopeAndTTL:
    def test_personal_query_is_user_scope(self):
        assert determine_cache_scope("what is my grade in biology") == CacheScope.USER

    def test_factual_query_is_global(self):
        assert determine_cache_scope("what is mitosis", has_user_context=True) == CacheScope.GLOBAL

    def test_context_falls_back_to_user(self):
        assert determine_cache_scope("explain how rainbows form", has_user_context=True) == CacheScope.USER
        assert determine_cache_scope("explain how rainbows form") == CacheScope.GLOBAL

    def test_ttls(self):
        assert determine_ttl(CacheScope.GLOBAL, is_factual_question=True) == timedelta(hours=168)
        assert determine_ttl(CacheScope.GLOBAL, is_conceptual_question=True) == timedelta(hours=72)
        assert determine_ttl(CacheScope.USER, is_factual_question=True) == timedelta(hours=24)


class TestContentFilter:
    def test_educational_answer(self):
        assert should_cache_response("osmosis", "The definition of osmosis is the movement of water across a membrane.")

    def test_too_short(self):
        assert not should_cache_response("what is osmosis", "Water moving.")

    def test_time_sensitive(self):
        assert not should_cache_response("what should I study", "Today you should review the definition of osmosis and diffusion.")

    def test_personal(self):
        assert not should_cache_response("how am I doing", "Based on your progress, the concept of osmosis needs more review.")


# ─── Service ─────────────────────────────────────────────────────────────────

class TestLookupAndWrite:
    def test_round_trip(self, cache):
        assert cache.write("What is mitosis?", ANSWER).success
        hit = cache.lookup("what is mitosis")
        assert hit.status == CacheStatus.HIT
        assert hit.response == ANSWER
        assert hit.source == "exact"

    def test_second_lookup_served_hot(self, cache):
        cache.write("What is mitosis?", ANSWER)
        cache.lookup("what is mitosis")
        assert cache.lookup("What is mitosis").source == "hot"

    def test_overwrite_keeps_one_row(self, cache):
        cache.write("What is mitosis?", ANSWER)
        cache.write("What is mitosis?", ANSWER + " Updated.")
        assert cache.lookup("what is mitosis").response == ANSWER + " Updated."
        assert cache.stats()["total_entries"] == 1

    def test_short_query_never_cached(self, cache):
        assert not cache.write("hi", ANSWER).success
        assert cache.lookup("hi").status == CacheStatus.MISS

    def test_oversized_response_rejected(self, cache):
        assert not cache.write("What is mitosis?", "x" * 10001).success

    def test_user_scope_expires_after_a_day(self, cache, fake_now):
        query = "what is my current study goal"
        cache.write(query, ANSWER, user_id="u1")

        fake_now.advance(hours=23)
        assert cache.lookup(query, user_id="u1").hit
        assert not cache.lookup(query, user_id="u2").hit

        fake_now.advance(hours=2)
        assert not cache.lookup(query, user_id="u1").hit

    def test_expired_entry_never_served_from_hot_cache(self, session_factory, fake_now):
        cache = ResponseCache(
            store=SQLCacheStore(session_factory),
            hot=TTLCache(100, 10 ** 9, clock=lambda: 0.0),
            now=fake_now,
        )
        cache.write("What is mitosis?", ANSWER)
        assert cache.lookup("what is mitosis").hit
        fake_now.advance(hours=25)
        assert not cache.lookup("what is mitosis").hit

    def test_session_scope(self, cache):
        query = "explain the homework problem we just did"
        cache.write(query, ANSWER, session_id="s1", scope=CacheScope.SESSION)
        assert cache.lookup(query, session_id="s1", scope=CacheScope.SESSION).hit
        assert not cache.lookup(query, session_id="s2", scope=CacheScope.SESSION).hit

    def test_owned_scope_without_owner_is_a_miss(self, cache):
        assert not cache.lookup("what is my current study goal", scope=CacheScope.USER).hit

    def test_fuzzy_match_on_global_entries(self, cache):
        cache.write("what is the process of photosynthesis in green plants and algae cells", ANSWER)
        hit = cache.lookup("what is the process of photosynthesis in the green plants and algae cells")
        assert hit.hit
        assert hit.source == "fuzzy"

    def test_repeated_fuzzy_query_served_hot(self, cache):
        cache.write("what is the process of photosynthesis in green plants and algae cells", ANSWER)
        query = "what is the process of photosynthesis in the green plants and algae cells"
        assert cache.lookup(query).source == "fuzzy"
        assert cache.lookup(query).source == "hot"


class TestContracts:
    def test_user_scope_write_needs_user(self, cache):
        with pytest.raises(DecisionContractError):
            cache.write("what is my favourite topic", ANSWER, scope=CacheScope.USER)

    def test_session_scope_write_needs_session(self, cache):
        with pytest.raises(DecisionContractError):
            cache.write("what did we cover earlier", ANSWER, user_id="u1", scope=CacheScope.SESSION)

    def test_derived_user_scope_without_user_fails_softly(self, cache):
        result = cache.write("help me understand photosynthesis", ANSWER)
        assert not result.success
        assert "owner" in result.error
        assert cache.stats()["total_entries"] == 0

    def test_invalidate_needs_a_filter(self, cache):
        with pytest.raises(DecisionContractError):
            cache.invalidate()


class TestStoreFailures:
    def test_lookup_failure_is_a_miss(self, session_factory, fake_now):
        cache = ResponseCache(store=BrokenStore(session_factory), now=fake_now)
        assert cache.lookup("what is mitosis").status == CacheStatus.MISS

    def test_write_failure_reports_error(self, session_factory, fake_now):
        cache = ResponseCache(store=BrokenStore(session_factory), now=fake_now)
        result = cache.write("What is mitosis?", ANSWER)
        assert not result.success
        assert "unavailable" in result.error


class TestMaintenanceOps:
    def test_invalidate_by_user(self, cache):
        cache.write("what is my current study goal", ANSWER, user_id="u1")
        cache.write("What is mitosis?", ANSWER)
        assert cache.invalidate(user_id="u1") == 1
        assert not cache.lookup("what is my current study goal", user_id="u1").hit
        assert cache.lookup("what is mitosis").hit

    def test_invalidate_clears_hot_cache(self, cache):
        cache.write("What is mitosis?", ANSWER, subject="biology")
        cache.lookup("what is mitosis")
        cache.invalidate(subject="biology")
        assert not cache.lookup("what is mitosis").hit

    def test_cleanup_expired(self, cache, fake_now):
        cache.write("What is mitosis?", ANSWER)
        fake_now.advance(hours=25)
        assert cache.cleanup_expired() == 1
        assert cache.stats()["total_entries"] == 0

    def test_stats(self, cache):
        cache.write("What is mitosis?", ANSWER)
        cache.lookup("what is mitosis")
        cache.lookup("what is meiosis and why")
        stats = cache.stats()
        assert stats["global_entries"] == 1
        assert stats["total_hits"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
