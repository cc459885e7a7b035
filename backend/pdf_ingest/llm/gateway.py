"""
LLM Gateway — single call site for chat completions

Used by the metadata extractor. Wraps a LangChain ChatOpenAI model with a
per-call timeout and logs latency and token usage for every request.

Usage::

    gateway  = LLMGateway()
    response = await gateway.invoke(
        LLMGateway.build_messages(system_prompt, user_prompt)
    )
    response.content  # raw model text
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from pdf_ingest.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class GatewayResponse:
    """The result of a single non-streaming LLM gateway call."""
    content:       str
    model_used:    str
    input_tokens:  int
    output_tokens: int
    latency_ms:    float
    request_id:    str


def _build_openai() -> BaseChatModel:
    return ChatOpenAI(
        model=settings.llm_model,
        api_key=settings.openai_api_key,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )


class LLMGateway:
    """
    Instantiate once per worker process. All public methods are async and
    safe for concurrent use.
    """

    def __init__(self, llm: BaseChatModel | None = None, timeout: float | None = None) -> None:
        self._llm = llm
        self._timeout = timeout or settings.llm_timeout_seconds

    def _get_llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = _build_openai()
        return self._llm

    async def invoke(self, messages: list[BaseMessage]) -> GatewayResponse:
        """
        Raises asyncio.TimeoutError after `timeout` seconds; provider errors
        propagate unchanged.
        """
        t0 = time.perf_counter()
        result = await asyncio.wait_for(self._get_llm().ainvoke(messages), timeout=self._timeout)
        latency = (time.perf_counter() - t0) * 1000

        content = result.content if isinstance(result.content, str) else str(result.content)
        usage = getattr(result, "usage_metadata", None) or {}

        response = GatewayResponse(
            content=content,
            model_used=settings.llm_model,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            latency_ms=latency,
            request_id=str(uuid.uuid4()),
        )
        logger.info(
            "LLMGateway | model=%s tokens_in=%d tokens_out=%d latency_ms=%.1f",
            response.model_used, response.input_tokens,
            response.output_tokens, response.latency_ms,
        )
        return response

    async def complete(self, prompt: str, system_prompt: str | None = None) -> str:
        """Single-turn completion; returns the raw model text."""
        messages: list[BaseMessage] = [HumanMessage(content=prompt)]
        if system_prompt:
            messages = self.build_messages(system_prompt, prompt)
        response = await self.invoke(messages)
        return response.content

    @staticmethod
    def build_messages(system_prompt: str, user_prompt: str) -> list[BaseMessage]:
        return [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt),
        ]
