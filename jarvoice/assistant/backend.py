"""Async client for the Jarvoice backend REST API (voice command, images, summaries)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .config import BackendConfig

LOGGER = logging.getLogger("jarvoice-assistant.backend")


class BackendError(RuntimeError):
    """Generic backend API failure."""


class BackendConnectionError(BackendError):
    """Raised when the backend cannot be reached at all."""


class BackendResponseError(BackendError):
    """Raised when the backend answers with something other than a JSON object."""


@dataclass(slots=True)
class BackendClient:
    config: BackendConfig
    transport: httpx.AsyncBaseTransport | None = None
    _client: httpx.AsyncClient = field(init=False, repr=False)
    _closed: bool = field(init=False, default=True, repr=False)

    def __post_init__(self) -> None:
        if not self.config.base_url:
            raise ValueError("Backend base URL is not configured")
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/"),
            headers={"Content-Type": "application/json"},
            timeout=self.config.timeout,
            verify=self.config.verify_ssl,
            transport=self.transport,
        )
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def voice_command(self, command: str) -> dict[str, Any]:
        """POST the raw command; response carries ``text`` and optional ``action`` directives."""
        return await self._request("POST", "/api/voice/command", json={"command": command})

    async def generate_image(self, prompt: str) -> dict[str, Any]:
        return await self._request("POST", "/api/generate-image", json={"prompt": prompt})

    async def summarize(
        self,
        *,
        text: str | None = None,
        url: str | None = None,
        command: str | None = None,
    ) -> dict[str, Any]:
        """Summarize text, a URL, or a spoken summarize command; exactly one must be given."""
        supplied = {key: value for key, value in (("text", text), ("url", url), ("command", command)) if value}
        if len(supplied) != 1:
            raise ValueError("Exactly one of text, url or command must be supplied")
        return await self._request("POST", "/api/summarize", json=supplied)

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            raise BackendConnectionError(f"Failed to contact backend: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendResponseError(f"Backend error {response.status_code}: {response.text[:200]}") from exc
        if not isinstance(payload, dict):
            raise BackendResponseError(f"Backend returned {type(payload).__name__} instead of an object")
        if response.status_code >= 400:
            # Error bodies still carry {success: false, error: ...} for the caller to speak.
            LOGGER.warning("[backend] %s %s returned %s", method, path, response.status_code)
        return payload
