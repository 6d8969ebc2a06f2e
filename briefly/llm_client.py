"""OpenRouter-backed text generation used by the planner and synthesizer."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Protocol

from briefly.config import settings
from briefly.services.logger import log_llm_call


class TextGenerator(Protocol):
    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 1024,
        temperature: float | None = None,
        caller: str = "unknown",
    ) -> str: ...


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


class GenerationError(RuntimeError):
    pass


class OpenRouterGenerator:
    """Text in, text out over the OpenAI-compatible chat completions API."""

    def __init__(self, openai_client: Any, model: str):
        self._client = openai_client
        self.model = model

    @staticmethod
    def _temperature_for_model(model: str, requested: float | None) -> float:
        # Some OpenAI GPT-5-compatible gateways reject temperatures other than 1.
        lowered = (model or "").lower()
        if "gpt-5" in lowered:
            return 1
        return 0.2 if requested is None else requested

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 1024,
        temperature: float | None = None,
        caller: str = "unknown",
    ) -> str:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        started = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=self._temperature_for_model(self.model, temperature),
            )
        except Exception as exc:
            log_llm_call(
                model=self.model,
                caller=caller,
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=str(exc),
            )
            raise GenerationError(f"generation failed for {caller}: {exc}") from exc

        usage = getattr(response, "usage", None)
        mapped_usage = Usage(
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        log_llm_call(
            model=self.model,
            caller=caller,
            input_tokens=mapped_usage.input_tokens,
            output_tokens=mapped_usage.output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise GenerationError(f"no content generated for {caller}")
        text = getattr(choices[0].message, "content", None)
        if not isinstance(text, str) or not text.strip():
            raise GenerationError(f"empty content generated for {caller}")
        return text


def get_model(override: str | None = None) -> str:
    """Resolve the active model id: explicit override, then settings."""
    if override:
        return override
    return settings.default_model


def get_generator(model: str | None = None) -> OpenRouterGenerator:
    """Build an OpenRouter generator via the OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    if not settings.openrouter_api_key:
        raise GenerationError("OPENROUTER_API_KEY is not configured")
    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )
    return OpenRouterGenerator(openai_client, get_model(model))
