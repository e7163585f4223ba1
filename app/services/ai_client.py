"""Centralized AI client supporting OpenAI and Anthropic.

Usage:
    from app.services.ai_client import ai_chat, ai_stream

    result = await ai_chat(
        messages=[
            {"role": "system", "content": "You are a curriculum designer."},
            {"role": "user", "content": "Design a unit on fractions."},
        ],
        use_case="curriculum",   # "curriculum", "tutor", or None for default
        max_tokens=4096,
    )
    # result.text is the assistant text, result.input_tokens / output_tokens the usage

    async for fragment in ai_stream(messages, use_case="tutor"):
        ...

Provider is auto-detected per use case from the model name:
  - Models starting with "claude-" route to Anthropic
  - Everything else routes to the configured ai_provider (default: Anthropic)

Generation calls are never retried here. Failures surface as
UpstreamProviderError, deadlines as GenerationTimeoutError, and missing keys
as ConfigurationError; the caller decides whether to try again.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum

from app.config import settings
from app.services.errors import (
    ConfigurationError,
    GenerationTimeoutError,
    TutorAppError,
    UpstreamProviderError,
)

logger = logging.getLogger(__name__)


class AIProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


# Known Anthropic model prefixes for auto-detection
_ANTHROPIC_PREFIXES = ("claude-",)


@dataclass
class AIResult:
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


def _resolve_model(use_case: str | None) -> str:
    """Pick the model name based on the use case and config overrides."""
    if use_case == "curriculum" and settings.curriculum_model:
        return settings.curriculum_model
    if use_case == "tutor" and settings.tutor_model:
        return settings.tutor_model
    return settings.model_name


def _detect_provider(model: str) -> AIProvider:
    """Auto-detect the provider from the model name.

    Models starting with 'claude-' are routed to Anthropic.
    Everything else uses the global ai_provider setting.
    """
    model_lower = model.lower()
    for prefix in _ANTHROPIC_PREFIXES:
        if model_lower.startswith(prefix):
            return AIProvider.ANTHROPIC
    try:
        return AIProvider(settings.ai_provider.lower())
    except ValueError:
        return AIProvider.OPENAI


def _api_key_for(provider: AIProvider) -> str:
    if provider == AIProvider.ANTHROPIC:
        return settings.anthropic_api_key
    return settings.api_key


def ensure_configured(use_case: str | None = None) -> None:
    """Raise ConfigurationError when the provider for this use case has no key."""
    provider = _detect_provider(_resolve_model(use_case))
    if not _api_key_for(provider):
        env_name = "ANTHROPIC_API_KEY" if provider == AIProvider.ANTHROPIC else "API_KEY"
        raise ConfigurationError(
            f"AI service not configured. Please add {env_name} to environment."
        )


def _wrap_provider_error(exc: Exception) -> TutorAppError:
    if isinstance(exc, TutorAppError):
        return exc
    provider_status = getattr(exc, "status_code", None)
    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    return UpstreamProviderError(message, provider_status=provider_status)


def _openai_request(messages, model, temperature, max_tokens) -> dict:
    return {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }


def _anthropic_request(messages, model, temperature, max_tokens) -> dict:
    """Anthropic takes the system prompt as a parameter, not as a message."""
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    request = {
        "model": model,
        "messages": [
            {"role": m["role"], "content": m["content"]}
            for m in messages
            if m["role"] != "system"
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    system_text = "\n".join(system_parts).strip()
    if system_text:
        request["system"] = system_text
    return request


async def ai_chat(
    messages: list[dict],
    *,
    use_case: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4096,
) -> AIResult:
    """Send a chat completion and return the assistant text plus token usage.

    Works with both OpenAI and Anthropic APIs transparently. The call is
    bounded by settings.generation_timeout_seconds.
    """
    ensure_configured(use_case)
    model = _resolve_model(use_case)
    provider = _detect_provider(model)

    if provider == AIProvider.OPENAI:
        call = _openai_chat(messages, model, temperature, max_tokens)
    elif provider == AIProvider.ANTHROPIC:
        call = _anthropic_chat(messages, model, temperature, max_tokens)
    else:
        raise ValueError(f"Unknown AI provider: {provider}")

    timeout = settings.generation_timeout_seconds
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("%s call to %s timed out after %ss", provider.value, model, timeout)
        raise GenerationTimeoutError(timeout) from exc
    except Exception as exc:
        logger.error("%s call to %s failed: %s", provider.value, model, exc)
        raise _wrap_provider_error(exc) from exc


async def _openai_chat(messages, model, temperature, max_tokens) -> AIResult:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=settings.api_key)
    response = await client.chat.completions.create(
        **_openai_request(messages, model, temperature, max_tokens)
    )
    usage = response.usage
    return AIResult(
        text=response.choices[0].message.content or "",
        model=model,
        input_tokens=usage.prompt_tokens if usage else 0,
        output_tokens=usage.completion_tokens if usage else 0,
    )


async def _anthropic_chat(messages, model, temperature, max_tokens) -> AIResult:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    response = await client.messages.create(
        **_anthropic_request(messages, model, temperature, max_tokens)
    )
    text = "".join(block.text for block in response.content if block.type == "text")
    if not text:
        raise UpstreamProviderError("No text response from AI")
    return AIResult(
        text=text,
        model=model,
        input_tokens=response.usage.input_tokens,
        output_tokens=response.usage.output_tokens,
    )


async def ai_stream(
    messages: list[dict],
    *,
    use_case: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 1024,
) -> AsyncIterator[str]:
    """Yield assistant text fragments as the provider produces them.

    The whole stream shares one deadline of settings.generation_timeout_seconds.
    """
    ensure_configured(use_case)
    model = _resolve_model(use_case)
    provider = _detect_provider(model)

    if provider == AIProvider.OPENAI:
        fragments = _openai_stream(messages, model, temperature, max_tokens)
    else:
        fragments = _anthropic_stream(messages, model, temperature, max_tokens)

    timeout = settings.generation_timeout_seconds
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            try:
                fragment = await asyncio.wait_for(fragments.__anext__(), timeout=remaining)
            except StopAsyncIteration:
                return
            yield fragment
    except asyncio.TimeoutError as exc:
        logger.warning("%s stream from %s timed out after %ss", provider.value, model, timeout)
        raise GenerationTimeoutError(timeout) from exc
    except Exception as exc:
        raise _wrap_provider_error(exc) from exc
    finally:
        await fragments.aclose()


async def _openai_stream(messages, model, temperature, max_tokens) -> AsyncIterator[str]:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=settings.api_key)
    stream = await client.chat.completions.create(
        **_openai_request(messages, model, temperature, max_tokens),
        stream=True,
    )
    async for chunk in stream:
        # Usage-only chunks have no choices
        if chunk.choices and chunk.choices[0].delta.content:
            yield chunk.choices[0].delta.content


async def _anthropic_stream(messages, model, temperature, max_tokens) -> AsyncIterator[str]:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    request = _anthropic_request(messages, model, temperature, max_tokens)
    async with client.messages.stream(**request) as stream:
        async for text in stream.text_stream:
            if text:
                yield text
