"""Anthropic messages provider - streaming HTTP calls to the messages API."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, TypeVar

import httpx

from turnkeeper.exceptions import ConfigurationError, LLMAPIError, LLMError
from turnkeeper.llm.frames import Frame, FrameDecoder, FrameKind, decode_frames
from turnkeeper.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"

_END_OF_STREAM = object()


async def _next_or_end(iterator: AsyncIterator[T]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END_OF_STREAM


async def iterate_until_abort(
    iterator: AsyncIterator[T],
    abort_event: asyncio.Event | None,
) -> AsyncIterator[T]:
    """Yield items of ``iterator`` until it ends or ``abort_event`` fires.

    Each read races the abort event; a read still pending when the event
    fires is cancelled instead of being waited for.
    """
    if abort_event is None:
        async for item in iterator:
            yield item
        return

    abort_task = asyncio.create_task(abort_event.wait())
    try:
        while not abort_event.is_set():
            read_task = asyncio.create_task(_next_or_end(iterator))
            done, _ = await asyncio.wait(
                {read_task, abort_task},
                return_when=asyncio.FIRST_COMPLETED,
            )

            if read_task not in done:
                log.info("Abort requested, cancelling pending stream read")
                read_task.cancel()
                try:
                    await read_task
                except asyncio.CancelledError:
                    pass
                return

            item = read_task.result()
            if item is _END_OF_STREAM:
                return
            yield item
    finally:
        if not abort_task.done():
            abort_task.cancel()


class StreamProvider(ABC):
    """Abstract base class for streaming model providers."""

    @abstractmethod
    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        system_prompt: str | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> AsyncIterator[Frame]:
        """Send the history and yield decoded frames of the response."""
        pass

    async def close(self) -> None:
        return None


class AnthropicProvider(StreamProvider):
    """Streaming provider for the Anthropic messages API."""

    def __init__(
        self,
        model: str = "claude-3-5-sonnet-20240620",
        api_key: str | None = None,
        base_url: str = ANTHROPIC_MESSAGES_URL,
        api_version: str = ANTHROPIC_API_VERSION,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the provider.

        Args:
            model: Model name
            api_key: API key sent as ``x-api-key``
            base_url: Full messages endpoint URL
            api_version: Value of the ``anthropic-version`` header
            max_tokens: Max tokens to generate
            timeout: HTTP timeout in seconds
            client: Optional preconfigured HTTP client (tests inject a mock transport)
        """
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.api_version = api_version
        self.max_tokens = max_tokens

        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
        )

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert tool definitions to the messages API format."""
        result = []
        for tool in tools:
            name = tool.get("name")
            if not name:
                continue
            result.append({
                "name": name,
                "description": tool.get("description", "") or "",
                "input_schema": tool.get("input_schema") or {"type": "object", "properties": {}},
            })
        return result

    def build_request_body(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        system_prompt: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if tools:
            body["tools"] = self._convert_tools(tools)
        if system_prompt:
            body["system"] = system_prompt
        return body

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        system_prompt: str | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> AsyncIterator[Frame]:
        """Stream a response as frames."""
        if not self.api_key:
            raise ConfigurationError(
                "API key not configured. Set model.api_key, TURNKEEPER_MODEL__API_KEY or ANTHROPIC_API_KEY."
            )
        if abort_event is not None and abort_event.is_set():
            log.info("Abort requested before remote call")
            return

        body = self.build_request_body(messages, tools, system_prompt)
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
        }

        try:
            log.debug("Calling messages API", model=self.model, url=self.base_url, msg_count=len(messages))
            async with self.client.stream("POST", self.base_url, json=body, headers=headers) as response:
                log.debug("Messages API response status", status=response.status_code)
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"Messages API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )

                decoder = FrameDecoder()
                async for chunk in iterate_until_abort(response.aiter_bytes(), abort_event):
                    for frame in decoder.feed(chunk):
                        yield frame
                        if abort_event is not None and abort_event.is_set():
                            break
                if abort_event is not None and abort_event.is_set():
                    log.info("Abort requested, closing response stream")
                    return
                for frame in decoder.finish():
                    yield frame

        except httpx.HTTPError as e:
            raise LLMAPIError(f"Messages API HTTP error: {e}")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    provider: str = "anthropic",
    model: str = "claude-3-5-sonnet-20240620",
    api_key: str | None = None,
    base_url: str | None = None,
    api_version: str = ANTHROPIC_API_VERSION,
    max_tokens: int = 4096,
    timeout: float = 120.0,
) -> StreamProvider:
    """Create a streaming provider.

    Args:
        provider: Provider name (only ``anthropic`` speaks this stream protocol)
        model: Model name
        api_key: Optional API key
        base_url: Optional messages endpoint URL
        api_version: API version header value
        max_tokens: Default max tokens
        timeout: HTTP timeout in seconds

    Returns:
        Configured StreamProvider instance
    """
    if provider == "anthropic":
        return AnthropicProvider(
            model=model,
            api_key=api_key,
            base_url=base_url or ANTHROPIC_MESSAGES_URL,
            api_version=api_version,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    raise LLMError(f"Provider '{provider}' not supported. Use 'anthropic'.")


# Global provider instance
_provider: StreamProvider | None = None


def get_provider() -> StreamProvider:
    """Get the global provider instance."""
    global _provider
    if _provider is None:
        from turnkeeper.config import get_config
        cfg = get_config()
        _provider = create_provider(
            provider=cfg.model.provider,
            model=cfg.model.model,
            api_key=cfg.model.api_key or None,
            base_url=cfg.model.base_url or None,
            api_version=cfg.model.api_version,
            max_tokens=cfg.model.max_tokens,
            timeout=cfg.model.timeout,
        )
    return _provider


def set_provider(provider: StreamProvider | None) -> None:
    """Set the global provider instance."""
    global _provider
    _provider = provider


__all__ = [
    "AnthropicProvider",
    "Frame",
    "FrameDecoder",
    "FrameKind",
    "StreamProvider",
    "create_provider",
    "decode_frames",
    "get_provider",
    "iterate_until_abort",
    "set_provider",
]
