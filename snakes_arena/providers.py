"""Commentary providers — OpenAI-compatible vendors and Anthropic."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from snakes_arena.errors import ConfigurationError
from snakes_arena.prompts import (
    SYSTEM_PROMPT,
    GameContext,
    PostRollContext,
    post_roll_prompt,
    pre_roll_prompt,
    trash_talk_prompt,
)

log = logging.getLogger(__name__)


@dataclass
class LLMInvocation:
    """Snapshot of a single commentary call — request, response, and metadata."""

    kind: str = ""  # "pre_roll" | "post_roll" | "trash_talk"
    request_messages: list[dict] = field(default_factory=list)
    response_raw: dict = field(default_factory=dict)
    model_api_id: str = ""
    input_tokens: int | None = None
    output_tokens: int | None = None
    latency_ms: int | None = None


def _dump_response(response: Any) -> dict:
    """Plain-dict copy of an SDK response; empty if it can't be dumped."""
    if hasattr(response, "model_dump"):
        return response.model_dump()
    return {}


# ── Provider interface ───────────────────────────────────────────────

@runtime_checkable
class CommentaryProvider(Protocol):
    """Structural interface — one implementation per AI vendor."""

    @property
    def last_invocation(self) -> LLMInvocation | None: ...

    async def generate_pre_roll(self, context: GameContext) -> str: ...

    async def generate_post_roll(self, context: PostRollContext) -> str: ...

    async def generate_trash_talk(self, context: PostRollContext) -> str: ...

    async def validate_credential(self) -> bool: ...

    async def close(self) -> None: ...


# (max_tokens, temperature) per commentary kind
_SAMPLING = {
    "pre_roll": (100, 0.8),
    "post_roll": (100, 0.8),
    "trash_talk": (60, 0.9),
}


# ── OpenAI-compatible provider (OpenAI, Gemini, OpenRouter, Groq, Grok) ─

BASE_URLS: dict[str, str | None] = {
    "openai": None,
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "openrouter": "https://openrouter.ai/api/v1",
    "groq": "https://api.groq.com/openai/v1",
    "grok": "https://api.x.ai/v1",
}


@dataclass
class OpenAICompatibleProvider:
    """Provider backed by any OpenAI-compatible chat/completions API."""

    provider: str
    model: str
    api_key: str | None = field(default=None, repr=False)
    base_url: str | None = None
    timeout: float | None = None
    _client: object = field(default=None, repr=False)
    _last_invocation: LLMInvocation | None = field(default=None, repr=False)

    @property
    def last_invocation(self) -> LLMInvocation | None:
        return self._last_invocation

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def _complete(self, kind: str, user_prompt: str) -> str:
        max_tokens, temperature = _SAMPLING[kind]
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]

        client = self._get_client()
        t0 = time.monotonic()
        response = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        usage = getattr(response, "usage", None)
        self._last_invocation = LLMInvocation(
            kind=kind,
            request_messages=messages,
            response_raw=_dump_response(response),
            model_api_id=self.model,
            input_tokens=getattr(usage, "prompt_tokens", None),
            output_tokens=getattr(usage, "completion_tokens", None),
            latency_ms=latency_ms,
        )

        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()

    async def generate_pre_roll(self, context: GameContext) -> str:
        return await self._complete("pre_roll", pre_roll_prompt(context))

    async def generate_post_roll(self, context: PostRollContext) -> str:
        return await self._complete("post_roll", post_roll_prompt(context))

    async def generate_trash_talk(self, context: PostRollContext) -> str:
        return await self._complete("trash_talk", trash_talk_prompt(context, self.model))

    async def validate_credential(self) -> bool:
        try:
            await self._get_client().models.list()
        except Exception:
            log.debug("%s credential check failed", self.provider, exc_info=True)
            return False
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


# ── Anthropic provider ───────────────────────────────────────────────

@dataclass
class AnthropicProvider:
    """Provider backed by Anthropic's messages API."""

    model: str
    api_key: str | None = field(default=None, repr=False)
    timeout: float | None = None
    provider: str = "anthropic"
    _client: object = field(default=None, repr=False)
    _last_invocation: LLMInvocation | None = field(default=None, repr=False)

    @property
    def last_invocation(self) -> LLMInvocation | None:
        return self._last_invocation

    def _get_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def _complete(self, kind: str, user_prompt: str) -> str:
        max_tokens, _ = _SAMPLING[kind]
        messages = [{"role": "user", "content": user_prompt}]

        client = self._get_client()
        t0 = time.monotonic()
        response = await client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=SYSTEM_PROMPT,
            messages=messages,
        )
        latency_ms = int((time.monotonic() - t0) * 1000)

        usage = getattr(response, "usage", None)
        self._last_invocation = LLMInvocation(
            kind=kind,
            request_messages=[{"role": "system", "content": SYSTEM_PROMPT}, *messages],
            response_raw=_dump_response(response),
            model_api_id=self.model,
            input_tokens=getattr(usage, "input_tokens", None),
            output_tokens=getattr(usage, "output_tokens", None),
            latency_ms=latency_ms,
        )

        for block in response.content:
            if getattr(block, "type", None) == "text":
                return block.text.strip()
        return ""

    async def generate_pre_roll(self, context: GameContext) -> str:
        return await self._complete("pre_roll", pre_roll_prompt(context))

    async def generate_post_roll(self, context: PostRollContext) -> str:
        return await self._complete("post_roll", post_roll_prompt(context))

    async def generate_trash_talk(self, context: PostRollContext) -> str:
        return await self._complete("trash_talk", trash_talk_prompt(context, self.model))

    async def validate_credential(self) -> bool:
        try:
            await self._get_client().models.list(limit=1)
        except Exception:
            log.debug("anthropic credential check failed", exc_info=True)
            return False
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


# ── Factory ──────────────────────────────────────────────────────────

def create_provider(
    provider: str,
    api_key: str,
    model: str,
    timeout: float | None = None,
) -> OpenAICompatibleProvider | AnthropicProvider:
    """Pick the implementation for *provider*."""
    if provider == "anthropic":
        return AnthropicProvider(model=model, api_key=api_key, timeout=timeout)
    if provider in BASE_URLS:
        return OpenAICompatibleProvider(
            provider=provider,
            model=model,
            api_key=api_key,
            base_url=BASE_URLS[provider],
            timeout=timeout,
        )
    raise ConfigurationError(f"Unsupported AI provider: {provider}")


# ── Model registry ───────────────────────────────────────────────────

@dataclass(frozen=True)
class ModelSpec:
    id: str
    display_name: str
    provider: str
    description: str = ""


PROVIDER_INFO: dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "gemini": "Google Gemini",
    "openrouter": "OpenRouter",
    "groq": "Groq",
    "grok": "xAI Grok",
}

AVAILABLE_MODELS: list[ModelSpec] = [
    ModelSpec("gpt-4.1-mini", "GPT-4.1 Mini", "openai", "Fast, inexpensive"),
    ModelSpec("gpt-4o", "GPT-4o", "openai", "Multimodal flagship"),
    ModelSpec("o3-mini", "o3-mini", "openai", "Fast reasoning model"),
    ModelSpec("claude-haiku-4-5-20251001", "Claude Haiku 4.5", "anthropic", "Fast and light"),
    ModelSpec("claude-sonnet-4-5", "Claude Sonnet 4.5", "anthropic", "Best for coding & agents"),
    ModelSpec("gemini-2.5-flash", "Gemini 2.5 Flash", "gemini", "Fast responses"),
    ModelSpec("gemini-2.5-pro", "Gemini 2.5 Pro", "gemini", "Advanced reasoning"),
    ModelSpec("meta-llama/llama-3.3-70b-instruct", "Llama 3.3 70B", "openrouter", "Open model"),
    ModelSpec("deepseek/deepseek-r1", "DeepSeek R1", "openrouter", "Reasoning"),
    ModelSpec("llama-3.3-70b-versatile", "Llama 3.3 70B", "groq", "Fast inference"),
    ModelSpec("gemma2-9b-it", "Gemma 2 9B", "groq", "Efficient model"),
    ModelSpec("grok-3-mini", "Grok 3 Mini", "grok", "Cost-efficient"),
    ModelSpec("grok-4", "Grok 4", "grok", "Latest stable release"),
]


def models_for(provider: str) -> list[ModelSpec]:
    return [m for m in AVAILABLE_MODELS if m.provider == provider]


def default_model(provider: str) -> str:
    models = models_for(provider)
    if not models:
        raise ConfigurationError(f"Unsupported AI provider: {provider}")
    return models[0].id
