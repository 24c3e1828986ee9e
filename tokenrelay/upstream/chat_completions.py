"""Token source backed by an OpenAI-compatible chat-completions API.

Groq is the default provider. The request is a single-turn completion
with ``stream=True``; the response is Server-Sent Events whose ``data:``
lines carry ``choices[0].delta.content`` fragments and end with
``data: [DONE]``.
"""

import json
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from tokenrelay.shared.config import DEFAULT_MODEL, DEFAULT_UPSTREAM_URL, RelaySettings
from tokenrelay.shared.errors import UpstreamError
from tokenrelay.shared.logger import create_logger

_DONE = "[DONE]"


class ChatCompletionsSource:
    """Streaming client for ``POST {base_url}/chat/completions``.

    Example:
        async with ChatCompletionsSource(api_key="gsk-...") as source:
            async for token in source.stream("Tell me a joke"):
                print(token, end="")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_UPSTREAM_URL,
        model: str = DEFAULT_MODEL,
        provider: str = "groq",
        timeout: float = 60.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.model = model
        self.provider = provider
        self.logger = create_logger("tokenrelay.upstream")

    @classmethod
    def from_settings(cls, settings: RelaySettings, **kwargs) -> "ChatCompletionsSource":
        return cls(
            api_key=str(settings.api_key) or None,
            base_url=settings.upstream_url,
            model=settings.model,
            timeout=settings.upstream_timeout,
            **kwargs,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._headers(),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
        }

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        """Stream text fragments for ``prompt``.

        Raises:
            UpstreamError: on transport failures, HTTP errors, error
                events or undecodable event data.
        """
        if self._client is None:
            raise RuntimeError("ChatCompletionsSource is not open; use 'async with'")

        try:
            async with self._client.stream(
                "POST", "/chat/completions", json=self._payload(prompt)
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise UpstreamError(
                        _error_message(response), status_code=response.status_code
                    )
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == _DONE:
                        return
                    token = _extract_token(data)
                    if token:
                        yield token
        except httpx.TimeoutException as exc:
            raise UpstreamError("The model provider timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError("Could not reach the model provider: %s" % exc) from exc


def _extract_token(data: str) -> str:
    try:
        event = json.loads(data)
    except ValueError as exc:
        raise UpstreamError("Malformed response from the model provider") from exc
    if not isinstance(event, dict):
        raise UpstreamError("Malformed response from the model provider")
    if event.get("error"):
        error = event["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise UpstreamError("Model provider error: %s" % (message or "unknown error"))
    choices = event.get("choices") or []
    if not choices:
        return ""
    delta = choices[0].get("delta") or {}
    return delta.get("content") or ""


def _error_message(response: httpx.Response) -> str:
    detail = ""
    try:
        body = response.json()
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            detail = error.get("message") or ""
        elif error:
            detail = str(error)
    except ValueError:
        detail = response.text[:200]
    message = "Model provider returned HTTP %d" % response.status_code
    return f"{message}: {detail}" if detail else message
