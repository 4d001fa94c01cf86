"""Language-model provider adapters used by the fallback chain.

Every provider exposes ``provider_id`` and an ``agenerate`` coroutine.  The
chain bounds each call with ``asyncio.wait_for``, so adapters should be
plain awaitables with no retry or timeout logic of their own.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from agent_engine.config import require_secret
from agent_engine.errors import Unconfigured
from agent_engine.models import ProviderDescriptor

logger = logging.getLogger(__name__)


class ChatProvider(Protocol):
    provider_id: str

    async def agenerate(self, system_prompt: str, text: str) -> str: ...


def _content_text(content: Any) -> str:
    """Flatten an Anthropic message content (str or list of blocks)."""
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return " ".join(parts).strip()
    return str(content).strip()


class AnthropicProvider:
    """Claude via ``langchain_anthropic.ChatAnthropic``."""

    def __init__(self, descriptor: ProviderDescriptor, *, llm: Any | None = None) -> None:
        self.provider_id = descriptor.id
        self._descriptor = descriptor
        self._llm = llm

    def _build_llm(self) -> ChatAnthropic:
        if not self._descriptor.model:
            raise Unconfigured("?", "providers", f"provider {self.provider_id!r} has no model")
        return ChatAnthropic(
            model=self._descriptor.model,
            api_key=require_secret("ANTHROPIC_API_KEY"),
            temperature=self._descriptor.temperature,
            max_tokens=self._descriptor.max_tokens,
            max_retries=0,  # retries belong to the fallback chain
        )

    async def agenerate(self, system_prompt: str, text: str) -> str:
        if self._llm is None:
            self._llm = self._build_llm()
        response = await self._llm.ainvoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=text)]
        )
        answer = _content_text(getattr(response, "content", response))
        if not answer:
            raise ValueError("empty completion")
        return answer


class StaticProvider:
    """Returns a fixed reply; for offline development and smoke tests."""

    def __init__(self, descriptor: ProviderDescriptor) -> None:
        if not descriptor.reply:
            raise Unconfigured("?", "providers", f"static provider {descriptor.id!r} has no reply")
        self.provider_id = descriptor.id
        self._reply = descriptor.reply

    async def agenerate(self, system_prompt: str, text: str) -> str:
        del system_prompt, text
        return self._reply


ProviderFactory = Callable[[ProviderDescriptor], ChatProvider]

PROVIDER_KINDS: dict[str, ProviderFactory] = {
    "anthropic": AnthropicProvider,
    "static": StaticProvider,
}


def build_provider(descriptor: ProviderDescriptor) -> ChatProvider:
    factory = PROVIDER_KINDS.get(descriptor.kind.lower())
    if factory is None:
        raise Unconfigured(
            "?", "providers", f"unknown provider kind {descriptor.kind!r} for {descriptor.id!r}"
        )
    return factory(descriptor)
