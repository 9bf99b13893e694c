"""Model client -- streams text deltas from the Anthropic Messages API.

Direct httpx calls with stream=true; the SSE body is reduced to plain text
deltas for the delivery engine. Anything that ends the stream early is
raised as UpstreamStreamError so the orchestrator never mistakes a broken
stream for a finished one.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx

from streamrelay.config import Settings
from streamrelay.streaming.errors import UpstreamStreamError

logger = logging.getLogger(__name__)

# Anthropic API version header
_API_VERSION = "2023-06-01"


@dataclass
class StreamEvent:
    """A single event from the streaming API response."""

    type: str  # text_delta, error, done, message_stop
    text: str = ""
    stop_reason: str = ""


def parse_sse_event(data: dict[str, Any]) -> StreamEvent | None:
    """Parse an Anthropic SSE event dict into a StreamEvent.

    Pings, block boundaries and unknown event types return None.
    stop_reason lives in message_delta.delta, not message_start.
    Errors can arrive in-stream with HTTP 200.
    """
    event_type = data.get("type")

    if event_type == "error":
        error = data.get("error", {})
        return StreamEvent(
            type="error",
            text=f"{error.get('type', 'unknown')}: {error.get('message', '')}",
        )

    if event_type == "content_block_delta":
        delta = data.get("delta", {})
        if delta.get("type") == "text_delta":
            return StreamEvent(type="text_delta", text=delta.get("text", ""))
        return None

    if event_type == "message_delta":
        return StreamEvent(
            type="done",
            stop_reason=data.get("delta", {}).get("stop_reason", ""),
        )

    if event_type == "message_stop":
        return StreamEvent(type="message_stop")

    return None


class ModelClient:
    """Produces the delta stream for one prompt."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http = http
        self._owns_http = http is None

    @property
    def model(self) -> str:
        return self._settings.model

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        if self._http is not None:
            return
        settings = self._settings
        if not settings.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY is not set -- model calls will fail")

        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers={
                "anthropic-version": _API_VERSION,
                "content-type": "application/json",
                "x-api-key": settings.anthropic_api_key,
            },
            timeout=httpx.Timeout(
                connect=settings.api_timeout_connect,
                read=settings.api_timeout_read,
                write=10.0,
                pool=10.0,
            ),
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http and self._owns_http:
            await self._http.aclose()
        self._http = None

    def build_payload(self, system_prompt: str, prompt: str) -> dict[str, Any]:
        return {
            "model": self._settings.model,
            "max_tokens": self._settings.max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
        }

    async def stream_text(self, system_prompt: str, prompt: str) -> AsyncIterator[str]:
        """Yield text deltas for prompt. Raises UpstreamStreamError on failure."""
        if not self._http:
            raise UpstreamStreamError("model client not started -- call start() first")

        payload = self.build_payload(system_prompt, prompt)
        stopped = False
        try:
            async with self._http.stream("POST", "/v1/messages", json=payload) as response:
                if response.status_code != 200:
                    body = await response.aread()
                    raise UpstreamStreamError(
                        f"model API error ({response.status_code}): {body.decode(errors='replace')[:500]}"
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    try:
                        data = json.loads(line[6:])
                    except json.JSONDecodeError as e:
                        raise UpstreamStreamError(f"malformed stream event: {line[:200]}") from e

                    event = parse_sse_event(data)
                    if event is None:
                        continue
                    if event.type == "error":
                        raise UpstreamStreamError(event.text)
                    if event.type == "text_delta" and event.text:
                        yield event.text
                    elif event.type == "done" and event.stop_reason == "max_tokens":
                        logger.info("Model response truncated at max_tokens=%d", self._settings.max_tokens)
                    elif event.type == "message_stop":
                        stopped = True
                        break
        except httpx.TimeoutException as e:
            raise UpstreamStreamError(f"model request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamStreamError(f"model HTTP error: {e}") from e

        # A connection closed mid-reply ends the body without message_stop
        if not stopped:
            raise UpstreamStreamError("model stream ended before message_stop")
