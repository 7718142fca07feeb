"""
OpenAI executable-call builders.

Each builder returns a zero-argument callable that performs exactly one
network exchange, so the orchestrator can retry or replace it freely.
Failures are raised as ApiRequestError with messages shaped like
``"API request failed: <status> - <detail>"``.
"""

import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from ..config.loader import ApiSettings
from ..core.errors import ApiRequestError, StreamTransportError

logger = logging.getLogger(__name__)

Messages = List[Dict[str, str]]


class OpenAIChatClient:
    """Builds chat, streaming and transcription executables.

    Non-streaming chat and transcription go through the official SDK. Streams
    are read as raw bytes over httpx so the orchestrator's decoder sees the
    wire frames directly.
    """

    def __init__(
        self,
        settings: ApiSettings,
        timeout: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            settings: API key and base URL
            timeout: Per-request timeout in seconds
            client: Preconfigured AsyncOpenAI client (mainly for tests)
            http_client: Preconfigured httpx client for streaming

        Raises:
            ValueError: If the API key is missing or malformed
        """
        api_key = settings.validate_api_key()
        self.settings = settings
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=settings.base_url,
            timeout=timeout,
        )
        self.http = http_client or httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    def chat_call(
        self,
        model: str,
        messages: Messages,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        label: str = "API request",
    ) -> Callable[[], Awaitable[str]]:
        """Executable for one non-streaming chat completion.

        Args:
            model: Model identifier
            messages: Chat messages (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            label: Prefix used in failure messages

        Returns:
            Zero-argument coroutine function returning the completion text

        Raises:
            ValueError: If messages is empty
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")
        params = _completion_params(model, messages, temperature, max_tokens)

        async def call() -> str:
            try:
                response = await self.client.chat.completions.create(**params)
            except openai.APIStatusError as e:
                raise ApiRequestError(
                    f"{label} failed: {e.status_code} - {_sdk_error_detail(e)}",
                    status_code=e.status_code,
                ) from e
            except openai.APIConnectionError as e:
                raise ApiRequestError(f"{label} failed: connection error - {e}") from e

            if not response.choices:
                raise ApiRequestError(f"{label} failed: response contained no choices")
            return response.choices[0].message.content or ""

        return call

    def stream_call(
        self,
        model: str,
        messages: Messages,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        label: str = "API request",
    ) -> Callable[[], AsyncIterator[bytes]]:
        """Executable for one streaming chat completion.

        The returned callable produces an async iterator of raw body bytes.
        A non-success status raises StreamTransportError before any byte is
        yielded; transport errors mid-stream raise it as well.

        Raises:
            ValueError: If messages is empty
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")
        payload = _completion_params(model, messages, temperature, max_tokens)
        payload["stream"] = True

        async def open_stream() -> AsyncIterator[bytes]:
            try:
                async with self.http.stream("POST", "/chat/completions", json=payload) as response:
                    if not response.is_success:
                        body = await response.aread()
                        raise StreamTransportError(
                            f"{label} failed: {response.status_code} {response.reason_phrase} "
                            f"- {_body_error_detail(body)}",
                            status_code=response.status_code,
                        )
                    logger.debug("Stream connection established with %s", model)
                    async for chunk in response.aiter_bytes():
                        yield chunk
            except httpx.HTTPError as e:
                raise StreamTransportError(f"Stream transport failed: {e}") from e

        return open_stream

    def transcription_call(
        self,
        audio: bytes,
        filename: str,
        model: str,
        language: str = "en",
    ) -> Callable[[], Awaitable[str]]:
        """Executable for one audio transcription.

        The executable returns the stripped transcript, which may be empty;
        rejecting an empty transcript is left to the caller.

        Raises:
            ValueError: If audio is empty
        """
        if not audio:
            raise ValueError("audio is required and cannot be empty")

        async def call() -> str:
            try:
                result = await self.client.audio.transcriptions.create(
                    model=model,
                    file=(filename, audio),
                    language=language,
                    response_format="json",
                )
            except openai.APIStatusError as e:
                raise ApiRequestError(
                    f"Transcription request failed: {e.status_code} - {_sdk_error_detail(e)}",
                    status_code=e.status_code,
                ) from e
            except openai.APIConnectionError as e:
                raise ApiRequestError(f"Transcription request failed: connection error - {e}") from e

            return (getattr(result, "text", "") or "").strip()

        return call

    async def aclose(self) -> None:
        """Close both underlying HTTP clients."""
        await self.http.aclose()
        await self.client.close()

    async def __aenter__(self) -> "OpenAIChatClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def _completion_params(
    model: str,
    messages: Messages,
    temperature: Optional[float],
    max_tokens: Optional[int],
) -> Dict[str, Any]:
    params: Dict[str, Any] = {"model": model, "messages": messages}
    if temperature is not None:
        params["temperature"] = temperature
    if max_tokens is not None:
        params["max_tokens"] = max_tokens
    return params


def _sdk_error_detail(error: openai.APIStatusError) -> str:
    return getattr(error, "message", None) or str(error) or "Unknown error"


def _body_error_detail(body: bytes) -> str:
    try:
        data = json.loads(body)
    except (ValueError, TypeError):
        return "Unknown error"
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"].get("message") or "Unknown error"
    return "Unknown error"
