"""Tests for provider routing, error wrapping and deadlines in the AI client."""

import asyncio

import pytest

from app.config import settings
from app.services import ai_client
from app.services.ai_client import AIProvider, ai_stream
from app.services.errors import (
    ConfigurationError,
    GenerationTimeoutError,
    UpstreamProviderError,
)


async def collect_until_error(stream):
    received = []
    with pytest.raises(GenerationTimeoutError) as exc_info:
        async for fragment in stream:
            received.append(fragment)
    return received, exc_info.value


class TestRouting:

    def test_claude_models_go_to_anthropic(self, ai_configured):
        assert ai_client._detect_provider("claude-sonnet-4-20250514") == AIProvider.ANTHROPIC

    def test_other_models_follow_setting(self, monkeypatch):
        monkeypatch.setattr(settings, "ai_provider", "openai")
        assert ai_client._detect_provider("gpt-4o") == AIProvider.OPENAI

    def test_system_prompt_moves_to_parameter(self):
        request = ai_client._anthropic_request(
            [{"role": "system", "content": "Be kind."}, {"role": "user", "content": "Hi"}],
            "claude-test", 0.7, 100,
        )
        assert request["system"] == "Be kind."
        assert request["messages"] == [{"role": "user", "content": "Hi"}]

    def test_missing_key(self, ai_unconfigured):
        with pytest.raises(ConfigurationError):
            ai_client.ensure_configured("tutor")


class TestProviderErrors:

    def test_status_in_range_is_kept(self):
        class Overloaded(Exception):
            status_code = 529

        error = ai_client._wrap_provider_error(Overloaded("overloaded"))
        assert isinstance(error, UpstreamProviderError)
        assert error.status_code == 529
        assert error.message == "AI API error: overloaded"

    def test_no_status_is_a_server_error(self):
        error = ai_client._wrap_provider_error(ConnectionError("reset by peer"))
        assert error.status_code == 500
        assert error.provider_status is None

    def test_app_errors_pass_unchanged(self):
        original = UpstreamProviderError("No text response from AI")
        assert ai_client._wrap_provider_error(original) is original


class TestStreamDeadline:

    def test_slow_second_fragment_times_out(self, ai_configured, monkeypatch):
        async def slow_stream(*args, **kwargs):
            yield "a"
            await asyncio.sleep(1)
            yield "b"

        monkeypatch.setattr(ai_client, "_anthropic_stream", slow_stream)
        monkeypatch.setattr(settings, "generation_timeout_seconds", 0.05)

        received, error = asyncio.run(
            collect_until_error(ai_stream([{"role": "user", "content": "Hi"}], use_case="tutor"))
        )
        assert received == ["a"]
        assert error.timeout == 0.05

    def test_fast_stream_completes(self, ai_configured, monkeypatch):
        async def quick_stream(*args, **kwargs):
            for part in ("one ", "two"):
                yield part

        monkeypatch.setattr(ai_client, "_anthropic_stream", quick_stream)

        async def main():
            return [f async for f in ai_stream([{"role": "user", "content": "Hi"}], use_case="tutor")]

        assert asyncio.run(main()) == ["one ", "two"]
