"""
Tests for maintenance.py: cleanup pass and the background task lifecycle.
"""

import asyncio
import logging
import threading

import pytest

from studypartner.intelligence.guardrails import RateLimiter
from studypartner.intelligence.response_cache import ResponseCache, SQLCacheStore
from studypartner.intelligence.ttl_cache import TTLCache
from studypartner.maintenance import CacheMaintenance, configure_logging

ANSWER = "Mitosis is the process of cell division that produces two identical daughter cells."


@pytest.fixture
def cache(session_factory, fake_now):
    return ResponseCache(store=SQLCacheStore(session_factory), now=fake_now)


def test_run_once_removes_expired(cache, fake_now, clock):
    limiter = RateLimiter(max_calls=5, window_seconds=60, clock=clock)
    limiter.record("s1")
    intents = TTLCache(10, 30, clock=clock)
    intents.set("hello", "CASUAL_CHAT")

    cache.write("What is mitosis?", ANSWER)
    fake_now.advance(hours=25)
    clock.advance(120)

    removed = CacheMaintenance(cache, limiter, intents).run_once()
    assert removed == {"cache_entries": 1, "rate_limit_keys": 1, "intent_entries": 1}


def test_run_once_without_optional_parts(cache):
    assert CacheMaintenance(cache).run_once() == {"cache_entries": 0}


@pytest.mark.asyncio
async def test_start_and_stop(cache, fake_now):
    cache.write("What is mitosis?", ANSWER)
    fake_now.advance(hours=25)

    maintenance = CacheMaintenance(cache, interval=0.01)
    await maintenance.start()
    assert maintenance.running
    await asyncio.sleep(0.05)
    await maintenance.stop()

    assert not maintenance.running
    assert cache.stats()["total_entries"] == 0


@pytest.mark.asyncio
async def test_stop_without_start(cache):
    await CacheMaintenance(cache).stop()


def test_configure_logging_unknown_level_defaults_to_info(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.append(kw))
    configure_logging("chatty")
    assert calls[0]["level"] == logging.INFO
    configure_logging("debug")
    assert calls[1]["level"] == logging.DEBUG


@pytest.mark.asyncio
async def test_pass_runs_off_the_event_loop_thread(cache):
    threads = []
    maintenance = CacheMaintenance(cache, interval=0.01)
    maintenance.run_once = lambda: threads.append(threading.get_ident()) or {}
    await maintenance.start()
    await asyncio.sleep(0.05)
    await maintenance.stop()

    assert threads
    assert threading.get_ident() not in threads
