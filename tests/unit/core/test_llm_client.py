"""Tests for the OpenAI-compatible client using httpx.MockTransport."""

import json

import httpx
import pytest

from adlex.core.config import LLMSettings
from adlex.core.exceptions import APIClientError, APITimeoutError, ConfigurationError
from adlex.core.llm_client import OpenAICompatibleClient, create_llm_client_from_settings


@pytest.fixture(autouse=True)
def provider_env(monkeypatch):
    """Keep settings built in this module independent of the session environment."""
    for name in ("LLM_PROVIDER", "OPENAI_API_KEY", "OPENROUTER_API_KEY"):
        monkeypatch.delenv(name, raising=False)


def make_client(handler, api_key: str = "sk-test", max_retries: int = 3) -> OpenAICompatibleClient:
    return OpenAICompatibleClient(
        api_key=api_key,
        base_url="https://llm.example.com/v1/",
        chat_model="chat-model",
        embedding_model="embed-model",
        embedding_dimensions=1536,
        max_retries=max_retries,
        retry_delay=0,
        transport=httpx.MockTransport(handler),
    )


class TestChatCompletion:
    @pytest.mark.asyncio
    async def test_sends_model_messages_and_tools(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": []})

        client = make_client(handler)
        tools = [{"type": "function", "function": {"name": "f"}}]
        result = await client.chat_completion(
            [{"role": "user", "content": "hi"}],
            tools=tools,
            tool_choice={"type": "function", "function": {"name": "f"}},
            temperature=0.1,
            max_tokens=4000,
        )

        assert result == {"choices": []}
        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "chat-model"
        assert seen["body"]["tools"] == tools
        assert seen["body"]["max_tokens"] == 4000
        assert seen["body"]["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_no_authorization_header_without_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={})

        await make_client(handler, api_key="").chat_completion([])
        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"ok": True})

        assert await make_client(handler).chat_completion([]) == {"ok": True}
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500, text="boom")

        with pytest.raises(APIClientError):
            await make_client(handler, max_retries=2).chat_completion([])
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, text="bad request")

        with pytest.raises(APIClientError, match="400"):
            await make_client(handler).chat_completion([])
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, text="slow down")
            return httpx.Response(200, json={})

        await make_client(handler).chat_completion([])
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_timeouts_raise_api_timeout_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(APITimeoutError):
            await make_client(handler, max_retries=2).chat_completion([])


class TestCreateEmbedding:
    @pytest.mark.asyncio
    async def test_returns_vector(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

        vector = await make_client(handler).create_embedding("効果抜群")

        assert vector == [0.1, 0.2, 0.3]
        assert seen["url"].endswith("/embeddings")
        assert seen["body"] == {"model": "embed-model", "input": "効果抜群", "dimensions": 1536}

    @pytest.mark.parametrize("body", [{}, {"data": []}, {"data": [{"embedding": []}]}])
    @pytest.mark.asyncio
    async def test_malformed_response(self, body):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=body)

        with pytest.raises(APIClientError):
            await make_client(handler).create_embedding("x")


class TestFactory:
    def test_openai_requires_key(self):
        with pytest.raises(ConfigurationError):
            create_llm_client_from_settings(LLMSettings(provider="openai", openai_api_key=""))

    def test_openrouter_requires_key(self):
        with pytest.raises(ConfigurationError):
            create_llm_client_from_settings(LLMSettings(provider="openrouter", openrouter_api_key=""))

    def test_openrouter_client(self):
        client = create_llm_client_from_settings(
            LLMSettings(provider="openrouter", openrouter_api_key="or-key", openrouter_chat_model="vendor/model")
        )
        assert client.base_url == "https://openrouter.ai/api/v1"
        assert client.chat_model == "vendor/model"
        assert client.api_key == "or-key"

    def test_lmstudio_needs_no_key(self):
        client = create_llm_client_from_settings(LLMSettings(provider="lmstudio"))
        assert client.api_key == ""
        assert client.base_url == "http://localhost:1234/v1"
