# core/llm_interface.py
"""
Handles all direct interactions with OpenAI-compatible chat-completion
endpoints. Includes streaming and non-streaming request helpers and
token counting used for request logging.
"""

# Standard library imports
import functools
import json
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

# Third-party imports
import structlog
import tiktoken

# Local imports
from config import settings

logger = structlog.get_logger(__name__)


class CompletionError(RuntimeError):
    """Raised when a completion request fails or returns an unusable body."""


class GenerationAbortedError(CompletionError):
    """Raised when a generation is cancelled by its owner."""


# Token parameter handling
def _completion_token_param(api_base: str) -> str:
    """Return the token count parameter expected by the provider."""
    if "api.openai.com" in api_base:
        return "max_completion_tokens"
    return "max_tokens"


@functools.lru_cache(maxsize=8)
def _get_tokenizer(model_name: str) -> tiktoken.Encoding | None:
    """
    Gets a tiktoken encoder for the given model name, with caching.
    Tries model-specific encoding, then a default, then returns None.
    """
    try:
        try:
            return tiktoken.encoding_for_model(model_name)
        except KeyError:
            logger.debug(
                f"No direct tiktoken encoding for '{model_name}'. Using default '{settings.TIKTOKEN_DEFAULT_ENCODING}'."
            )
            return tiktoken.get_encoding(settings.TIKTOKEN_DEFAULT_ENCODING)
    except Exception as e:
        logger.error(
            f"Could not load a tokenizer for '{model_name}': {e}. Falling back to character heuristic."
        )
        return None


def count_tokens(text: str, model_name: str) -> int:
    """Counts the number of tokens in a string for a given model."""
    if not text:
        return 0

    encoder = _get_tokenizer(model_name)
    if encoder:
        return len(encoder.encode(text, allowed_special="all"))
    return int(len(text) / settings.FALLBACK_CHARS_PER_TOKEN)


class CompletionClient:
    """Async client for an OpenAI-compatible ``/chat/completions`` endpoint.

    The client performs no retries; callers own their retry policy.
    Cancelling the awaiting task aborts the in-flight HTTP request.
    """

    def __init__(
        self,
        base_url: str = settings.OPENAI_API_BASE,
        api_key: str = settings.OPENAI_API_KEY,
        timeout: float = settings.HTTPX_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self.request_count = 0

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @property
    def _url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def build_payload(
        self,
        model: str,
        messages: Sequence[dict[str, str]],
        *,
        stream: bool = False,
        temperature: float | None = None,
        top_p: float | None = None,
        top_k: int | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": list(messages),
            "stream": stream,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if top_p is not None:
            payload["top_p"] = top_p
        if top_k is not None:
            payload["top_k"] = top_k
        if max_tokens is not None:
            payload[_completion_token_param(self.base_url)] = max_tokens
        return payload

    def _log_request(self, payload: dict[str, Any]) -> None:
        prompt_text = "\n".join(m.get("content", "") for m in payload["messages"])
        logger.debug(
            "Calling LLM",
            model=payload["model"],
            stream=payload["stream"],
            temperature=payload.get("temperature"),
            top_p=payload.get("top_p"),
            top_k=payload.get("top_k"),
            prompt_tokens_est=count_tokens(prompt_text, payload["model"]),
        )

    async def complete(self, model: str, messages: Sequence[dict[str, str]], **params: Any) -> str:
        """Send a regular chat completion request and return the message text."""
        payload = self.build_payload(model, messages, stream=False, **params)
        self._log_request(payload)
        self.request_count += 1
        try:
            response = await self._client.post(self._url, json=payload, headers=self._headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise CompletionError(
                f"HTTP {exc.response.status_code} from '{model}': {exc.response.text[:200]}"
            ) from exc
        except (httpx.RequestError, json.JSONDecodeError) as exc:
            raise CompletionError(f"Request to '{model}' failed: {exc}") from exc

        choices = data.get("choices") or []
        if not choices:
            logger.error(
                f"LLM ('{model}') Invalid response structure - missing choices despite 200 OK: {str(data)[:300]}"
            )
            return ""
        message = choices[0].get("message") or {}
        return message.get("content") or ""

    async def stream_chat(
        self, model: str, messages: Sequence[dict[str, str]], **params: Any
    ) -> AsyncIterator[str]:
        """Send a streaming request and yield content deltas as they arrive."""
        payload = self.build_payload(model, messages, stream=True, **params)
        self._log_request(payload)
        self.request_count += 1
        try:
            async with self._client.stream(
                "POST", self._url, json=payload, headers=self._headers
            ) as response_stream:
                if response_stream.is_error:
                    await response_stream.aread()
                    raise CompletionError(
                        f"HTTP {response_stream.status_code} from '{model}': {response_stream.text[:200]}"
                    )
                async for line in response_stream.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    data_json_str = line[len("data: ") :].strip()
                    if data_json_str == "[DONE]":
                        break
                    try:
                        chunk_data = json.loads(data_json_str)
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping undecodable stream chunk: {data_json_str[:120]}")
                        continue
                    choices = chunk_data.get("choices") or []
                    if not choices:
                        continue
                    content_piece = (choices[0].get("delta") or {}).get("content")
                    if content_piece:
                        yield content_piece
        except httpx.RequestError as exc:
            raise CompletionError(f"Streaming request to '{model}' failed: {exc}") from exc

    async def call_llm(self, system: str, user: str, model: str | None = None) -> str:
        """Single-turn helper used by the director agent."""
        return await self.complete(
            model or settings.DIRECTOR_MODEL or settings.MAIN_GENERATION_MODEL,
            [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=settings.TEMPERATURE_PLANNING,
            top_p=settings.LLM_TOP_P,
        )
