"""Client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

import httpx

from lifedigest.errors import VendorError, VendorNotConfigured
from lifedigest.utils.text import parse_json_from_response

LOGGER = logging.getLogger(__name__)

VENDOR = "openai"


class OpenAIClient:
    """Minimal async client for ``/chat/completions``.

    Works against OpenAI itself and any server exposing the same API. Structured
    output is requested through ``response_format`` with a JSON schema.
    """

    def __init__(
        self,
        base_url: str | None,
        *,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        json_schema: Dict[str, Any] | None = None,
        schema_name: str = "response",
        temperature: float = 0.7,
        model: str | None = None,
        images: Sequence[str] = (),
    ) -> str:
        """Return the assistant message content for a single-turn prompt.

        ``images`` are data URLs attached to the user message for vision models.
        """
        if not self.configured:
            raise VendorNotConfigured(VENDOR)

        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        if images:
            parts: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
            parts.extend({"type": "image_url", "image_url": {"url": url}} for url in images)
            messages.append({"role": "user", "content": parts})
        else:
            messages.append({"role": "user", "content": prompt})

        body: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
        }
        if json_schema is not None:
            body["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": json_schema, "strict": True},
            }

        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.post("/chat/completions", json=body, headers=self._headers())
            except httpx.HTTPError as exc:
                raise VendorError(VENDOR, str(exc)) from exc

        if response.status_code >= 400:
            raise VendorError(VENDOR, response.text[:500], status_code=response.status_code)

        data = response.json()
        choices = data.get("choices") or []
        if not choices:
            raise VendorError(VENDOR, "response contained no choices")
        choice = choices[0]
        if choice.get("finish_reason") == "length":
            LOGGER.warning("Completion was truncated by the max token limit")
        return (choice.get("message") or {}).get("content") or ""

    async def complete_json(self, prompt: str, **kwargs: Any) -> Any:
        """Like `complete`, parsing the reply as JSON."""
        content = await self.complete(prompt, **kwargs)
        try:
            return parse_json_from_response(content)
        except ValueError as exc:
            raise VendorError(VENDOR, f"invalid JSON in completion: {exc}") from exc
