"""HTTP clients for OpenAI-compatible chat-completion and embedding APIs."""

import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from httpx import HTTPStatusError, TimeoutException

from adlex.core.config import LLMSettings
from adlex.core.exceptions import APIClientError, APITimeoutError, ConfigurationError
from adlex.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BaseLLMClient:
    """Base client for LLM API interactions.

    Handles common logic for HTTP requests, retries, timeout management,
    and error logging.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 60,
        max_retries: int = 3,
        retry_delay: float = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the LLM client.

        Args:
            api_key: API key for authentication (may be empty for local servers)
            base_url: Base URL for the API
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts
            retry_delay: Base delay for exponential backoff
            transport: Optional httpx transport, used by tests
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.transport = transport
        self.logger = LOGGER

    async def call_api(
        self,
        endpoint: str = "",
        method: str = "POST",
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Call the API with retry logic.

        Raises:
            APIClientError: If the API call fails after retries
            APITimeoutError: If the API call times out after retries
        """
        url = f"{self.base_url}{endpoint}"

        default_headers = {"Content-Type": "application/json"}
        if self.api_key:
            default_headers["Authorization"] = f"Bearer {self.api_key}"
        if headers:
            default_headers.update(headers)

        self.logger.debug(f"Calling LLM API: {url}", extra={"method": method, "timeout": self.timeout})

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(self.max_retries):
                try:
                    if method.upper() == "GET":
                        response = await client.get(url, headers=default_headers, params=payload)
                    else:
                        response = await client.post(url, headers=default_headers, json=payload)
                    response.raise_for_status()
                    return response.json()

                except HTTPStatusError as e:
                    await self._handle_http_error(e, attempt, url)

                except TimeoutException as e:
                    await self._handle_timeout_error(e, attempt, url)

                except httpx.HTTPError as e:
                    await self._handle_generic_error(e, attempt, url)

        raise APIClientError(f"Failed to call API {url} after {self.max_retries} attempts")

    async def _handle_http_error(self, error: HTTPStatusError, attempt: int, url: str):
        status_code = error.response.status_code
        error_body = error.response.text

        self.logger.warning(
            f"API HTTP error (Attempt {attempt + 1}/{self.max_retries})",
            extra={"url": url, "status_code": status_code, "error_body": error_body[:500]},
        )

        # Don't retry on client errors (4xx) unless it's rate limiting (429)
        if 400 <= status_code < 500 and status_code != 429:
            raise APIClientError(f"API Client Error {status_code}: {error_body[:500]}") from error

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APIClientError(f"API HTTP Error {status_code} after retries") from error

    async def _handle_timeout_error(self, error: TimeoutException, attempt: int, url: str):
        self.logger.warning(f"API Timeout (Attempt {attempt + 1}/{self.max_retries})", extra={"url": url})

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APITimeoutError(f"API Timeout after {self.max_retries} attempts") from error

    async def _handle_generic_error(self, error: Exception, attempt: int, url: str):
        self.logger.warning(
            f"API Generic Error (Attempt {attempt + 1}/{self.max_retries})",
            extra={"url": url, "error": str(error)},
        )

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APIClientError(f"API Error: {str(error)}") from error

    async def _wait_before_retry(self, attempt: int):
        """Exponential backoff wait."""
        await asyncio.sleep(self.retry_delay * (2 ** attempt))


class LLMProvider(str, Enum):
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    LMSTUDIO = "lmstudio"


class OpenAICompatibleClient(BaseLLMClient):
    """Chat completions with tool calling, plus embeddings.

    Works against OpenAI, OpenRouter and LM Studio, which all expose the
    ``/chat/completions`` and ``/embeddings`` endpoints.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        chat_model: str,
        embedding_model: str,
        embedding_dimensions: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(api_key=api_key, base_url=base_url, **kwargs)
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self.embedding_dimensions = embedding_dimensions

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Any] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Return the raw chat-completion response body."""
        payload: Dict[str, Any] = {
            "model": self.chat_model,
            "messages": messages,
            "temperature": temperature,
        }
        if tools:
            payload["tools"] = tools
        if tool_choice is not None:
            payload["tool_choice"] = tool_choice
        if max_tokens:
            payload["max_tokens"] = max_tokens
        return await self.call_api("/chat/completions", payload=payload)

    async def create_embedding(self, text: str) -> List[float]:
        """Embed one text and return its vector."""
        payload: Dict[str, Any] = {"model": self.embedding_model, "input": text}
        if self.embedding_dimensions:
            payload["dimensions"] = self.embedding_dimensions

        response = await self.call_api("/embeddings", payload=payload)
        try:
            embedding = response["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise APIClientError("Embedding response has no vector", original_error=e) from e
        if not isinstance(embedding, list) or not embedding:
            raise APIClientError("Embedding response vector is empty")
        return [float(value) for value in embedding]


def create_llm_client_from_settings(llm_settings: LLMSettings) -> OpenAICompatibleClient:
    """Build the client for the configured provider."""
    provider = LLMProvider(llm_settings.provider)
    common = {
        "embedding_model": llm_settings.embedding_model,
        "embedding_dimensions": llm_settings.embedding_dimensions,
        "timeout": llm_settings.timeout_seconds,
        "max_retries": llm_settings.max_retries,
        "retry_delay": llm_settings.retry_delay,
    }

    if provider == LLMProvider.OPENAI:
        if not llm_settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the openai provider")
        client = OpenAICompatibleClient(
            api_key=llm_settings.openai_api_key,
            base_url=llm_settings.openai_base_url,
            chat_model=llm_settings.openai_chat_model,
            **common,
        )
    elif provider == LLMProvider.OPENROUTER:
        if not llm_settings.openrouter_api_key:
            raise ConfigurationError("OPENROUTER_API_KEY is required for the openrouter provider")
        client = OpenAICompatibleClient(
            api_key=llm_settings.openrouter_api_key,
            base_url=llm_settings.openrouter_base_url,
            chat_model=llm_settings.openrouter_chat_model,
            **common,
        )
    else:
        client = OpenAICompatibleClient(
            api_key="",
            base_url=llm_settings.lmstudio_base_url,
            chat_model=llm_settings.lmstudio_chat_model,
            **common,
        )

    LOGGER.info(
        "Initialized LLM client",
        extra={"provider": provider.value, "chat_model": client.chat_model},
    )
    return client
