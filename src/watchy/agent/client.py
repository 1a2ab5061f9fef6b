"""Chat-completion client for the Ollama ``/api/chat`` endpoint."""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

import httpx

from watchy.agent.errors import InferenceError, InferenceTimeout
from watchy.agent.messages import Message

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 120.0


class ChatClient(Protocol):
    """Protocol implemented by inference endpoints."""

    def chat(
        self,
        *,
        model: str,
        messages: list[Message],
        tools: list[dict[str, Any]],
        timeout: float | None = None,
    ) -> Message:
        """Send the history plus tool schema and return the model's reply."""


def resolve_ollama_host(host: str | None = None) -> str:
    """Explicit host, else ``OLLAMA_HOST``, else the local default.

    Accepts the ``host:port`` and ``:port`` forms that ``ollama`` itself accepts.
    """

    value = (host or os.getenv("OLLAMA_HOST") or DEFAULT_OLLAMA_HOST).strip()
    if "://" not in value:
        if value.startswith(":"):
            value = f"127.0.0.1{value}"
        value = f"http://{value}"
    return value.rstrip("/")


class OllamaChatClient:
    """Non-streaming ``/api/chat`` client built on httpx."""

    def __init__(
        self,
        *,
        host: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.host = resolve_ollama_host(host)
        headers = {"Content-Type": "application/json"}
        key = api_key if api_key is not None else os.getenv("OLLAMA_API_KEY")
        if key:
            headers["Authorization"] = f"Bearer {key}"
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._client = httpx.Client(
            base_url=self.host,
            timeout=self._timeout,
            headers=headers,
            transport=transport,
        )

    def chat(
        self,
        *,
        model: str,
        messages: list[Message],
        tools: list[dict[str, Any]],
        timeout: float | None = None,
    ) -> Message:
        payload = {
            "model": model,
            "messages": [message.to_payload() for message in messages],
            "tools": tools,
            "stream": False,
        }
        request_timeout = self._timeout if timeout is None else httpx.Timeout(timeout)
        try:
            response = self._client.post("/api/chat", json=payload, timeout=request_timeout)
        except httpx.TimeoutException as error:
            logger.warning("Chat request to %s timed out", self.host)
            raise InferenceTimeout(f"chat request timed out: {error}") from error
        except httpx.HTTPError as error:
            logger.warning("Chat request to %s failed: %s", self.host, error)
            raise InferenceError(f"chat request failed: {error}") from error

        if not response.is_success:
            detail = _error_detail(response)
            logger.warning("Chat request to %s returned HTTP %d", self.host, response.status_code)
            raise InferenceError(f"chat request failed: HTTP {response.status_code}: {detail}")

        try:
            body = response.json()
            if not isinstance(body, dict):
                raise ValueError("expected a JSON object")
            return Message.from_payload(body.get("message") or {})
        except ValueError as error:
            raise InferenceError(f"chat request failed: malformed response: {error}") from error

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OllamaChatClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()[:200]
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return response.text.strip()[:200]
