"""
StudyPartner - LLM Abstraction Layer
The intelligence core only talks to a chat-completion provider through this
protocol, and only for its two small fallback calls (intent label, query
complexity). Primary answer generation lives outside the core.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Protocol, Optional

from openai import AsyncOpenAI

from studypartner.config import (
    OPENAI_API_KEY, CLASSIFIER_MODEL,
    LLM_REQUEST_TIMEOUT_SECONDS, LLM_MAX_RETRIES,
)

logger = logging.getLogger("studypartner.llm")


@dataclass
class LLMResult:
    text: str
    latency_ms: int
    model: str
    usage: dict = field(default_factory=dict)


class LLMClient(Protocol):
    async def complete(
        self,
        messages: list[dict],
        *,
        model: str = CLASSIFIER_MODEL,
        max_tokens: int = 100,
        temperature: float = 0.0,
        json_mode: bool = False,
    ) -> LLMResult: ...

    async def moderate(self, text: str) -> bool: ...


# ─── OpenAI ──────────────────────────────────────────────────────────────────

class OpenAIChatClient:
    """Chat completions + moderation over the official async OpenAI SDK."""

    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        timeout: float = LLM_REQUEST_TIMEOUT_SECONDS,
        max_retries: int = LLM_MAX_RETRIES,
        client: Optional[AsyncOpenAI] = None,
    ):
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
        )

    async def complete(
        self,
        messages: list[dict],
        *,
        model: str = CLASSIFIER_MODEL,
        max_tokens: int = 100,
        temperature: float = 0.0,
        json_mode: bool = False,
    ) -> LLMResult:
        start = time.perf_counter()
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                **kwargs,
            )
        except Exception as e:
            elapsed = int((time.perf_counter() - start) * 1000)
            logger.error(f"LLM error after {elapsed}ms: {e}")
            raise

        elapsed = int((time.perf_counter() - start) * 1000)
        content = response.choices[0].message.content if response.choices else ""
        usage = {}
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        logger.debug(f"LLM response: {elapsed}ms, {usage.get('total_tokens', 0)} tokens")
        return LLMResult(text=(content or "").strip(), latency_ms=elapsed, model=model, usage=usage)

    async def moderate(self, text: str) -> bool:
        """True when the provider flags the text."""
        result = await self._client.moderations.create(input=text)
        return bool(result.results and result.results[0].flagged)


# ─── Provider Factory ────────────────────────────────────────────────────────

_instance: Optional[OpenAIChatClient] = None


def get_llm() -> OpenAIChatClient:
    """Get the configured LLM client (singleton)."""
    global _instance
    if _instance is None:
        _instance = OpenAIChatClient()
    return _instance
