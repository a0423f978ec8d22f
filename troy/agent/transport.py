"""Chat-completions transport for the OpenRouter API.

One request per model turn: the caller supplies the full message list
(system message first) and the tool schemas to offer. Tool calls come
back in the order the model issued them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from troy.config import Settings
from troy.conversation.messages import ChatMessage, ToolCall

logger = logging.getLogger(__name__)

# Retried once, honouring retry-after (capped)
_RETRY_STATUS = frozenset({429, 500, 502, 503, 529})
_MAX_RETRY_AFTER = 30.0


class TransportError(RuntimeError):
    """The model API could not be reached or rejected the request."""


@dataclass
class ModelTurn:
    """One assistant turn: optional text plus tool calls in model order."""

    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: dict[str, int] | None = None


class ChatClient:
    """Sends chat-completion requests over a shared httpx client."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        settings = self._settings
        headers = {"content-type": "application/json"}
        if settings.openrouter_api_key:
            headers["authorization"] = f"Bearer {settings.openrouter_api_key}"
        else:
            logger.warning("OPENROUTER_API_KEY is not set -- API calls will fail")

        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=httpx.Timeout(
                connect=settings.api_timeout_connect,
                read=settings.api_timeout_read,
                write=10.0,
                pool=10.0,
            ),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )
        logger.info("Chat client initialized (model: %s)", settings.model)

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http:
            await self._http.aclose()
            self._http = None

    def _build_payload(
        self,
        messages: Iterable[ChatMessage],
        tools: list[dict[str, Any]],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._settings.model,
            "messages": [m.to_api() for m in messages],
        }
        if tools:
            payload["tools"] = tools
        return payload

    async def send(
        self,
        messages: Iterable[ChatMessage],
        tools: list[dict[str, Any]] | None = None,
    ) -> ModelTurn | None:
        """Request one model turn.

        Returns None when the API answers without a message (no choices).
        Raises TransportError on persistent HTTP or network errors.
        """
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")

        payload = self._build_payload(messages, tools or [])

        last_error: Exception | None = None
        for attempt in range(2):  # initial + 1 retry
            try:
                response = await self._http.post("/chat/completions", json=payload)

                if response.status_code == 200:
                    try:
                        return _parse_completion(response.json())
                    except (ValueError, AttributeError, TypeError) as e:
                        raise TransportError(f"Malformed API response: {e}") from e

                error_msg = _error_message(response)

                if response.status_code in _RETRY_STATUS and attempt == 0:
                    retry_after = _retry_after(response)
                    logger.warning(
                        "API error %d, retrying in %.1fs: %s",
                        response.status_code,
                        retry_after,
                        error_msg,
                    )
                    await asyncio.sleep(retry_after)
                    continue

                last_error = TransportError(f"OpenRouter API error ({response.status_code}): {error_msg}")
                break

            except httpx.TimeoutException as e:
                last_error = TransportError(f"API request timed out: {e}")
                if attempt == 0:
                    logger.warning("API timeout, retrying: %s", e)
                    await asyncio.sleep(1)
                    continue
            except httpx.HTTPError as e:
                last_error = TransportError(f"HTTP error: {e}")
                break  # Don't retry connection errors

        raise last_error or TransportError("API call failed with unknown error")


def _error_message(response: httpx.Response) -> str:
    """Best-effort error text from a non-200 body."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:500]}"
    error = body.get("error") if isinstance(body, dict) else body
    if isinstance(error, dict):
        return str(error.get("message", "unknown error"))
    return str(error) if error else "unknown error"


def _retry_after(response: httpx.Response) -> float:
    """Seconds to wait before the retry; non-numeric values (HTTP dates) fall back to 1s."""
    try:
        delay = float(response.headers.get("retry-after", "1"))
    except ValueError:
        delay = 1.0
    return min(max(delay, 0.0), _MAX_RETRY_AFTER)


def _parse_completion(data: dict[str, Any]) -> ModelTurn | None:
    """Extract the first choice's message from a chat-completion body."""
    choices = data.get("choices") or []
    if not choices:
        return None
    message = choices[0].get("message")
    if not message:
        return None

    content = message.get("content")
    if isinstance(content, list):
        # Content-part arrays: keep the text parts
        content = "".join(part.get("text", "") for part in content if isinstance(part, dict))

    tool_calls = [ToolCall.from_api(tc) for tc in message.get("tool_calls") or []]
    return ModelTurn(content=content, tool_calls=tool_calls, usage=data.get("usage"))
