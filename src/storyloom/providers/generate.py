"""Unified generation functions over resolved presets.

Every call resolves its preset afresh, then runs one of four shapes:
blocking text, blocking structured output, streamed text and streamed
structured output. Narrative variants use the main narrative profile.

Cancellation uses an ``asyncio.Event`` as the signal. Once it is set the
in-flight request task is cancelled, the LangChain stream is closed and
``GenerationCancelledError`` is raised. Cancelled calls are never retried.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from storyloom.observability.logging import get_logger
from storyloom.providers.base import (
    GenerationCancelledError,
    ProviderConnectionError,
    ProviderError,
)
from storyloom.providers.content import extract_text
from storyloom.providers.structured_output import (
    validate_structured_result,
    validate_text,
    with_structured_output,
)

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from storyloom.providers.resolver import ConfigResolver, ResolvedConfig

log = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)
R = TypeVar("R")

_END = object()


def is_connectivity_error(exc: BaseException) -> bool:
    """Check whether an exception (or its cause chain) is a network failure."""
    import httpx

    if isinstance(
        exc,
        (httpx.NetworkError, httpx.TimeoutException, ConnectionError, ProviderConnectionError),
    ):
        return True
    cause = exc.__cause__
    if cause is not None:
        return is_connectivity_error(cause)
    return False


def _wrap_transport_error(exc: Exception, provider: str) -> ProviderError:
    if is_connectivity_error(exc):
        return ProviderConnectionError(provider, f"Connection error: {exc}")
    return ProviderError(provider, f"Generation failed: {exc}")


async def run_cancellable(
    awaitable: Awaitable[R],
    signal: asyncio.Event | None,
    provider: str,
) -> R:
    """Await ``awaitable`` unless ``signal`` fires first.

    Args:
        awaitable: The request to run.
        signal: Cancellation signal, or None for an uncancellable call.
        provider: Provider name for error messages.

    Returns:
        The awaitable's result.

    Raises:
        GenerationCancelledError: If the signal was set before the result arrived.
    """
    if signal is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if signal.is_set():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise GenerationCancelledError(provider, "Generation cancelled")

    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    if task in done:
        return task.result()
    raise GenerationCancelledError(provider, "Generation cancelled")


async def _next_chunk(iterator: AsyncIterator[str]) -> Any:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return _END


async def _text_chunks(model: BaseChatModel, messages: list[BaseMessage]) -> AsyncIterator[str]:
    stream = model.astream(messages)
    try:
        async for chunk in stream:
            text = extract_text(chunk.content)
            if text:
                yield text
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()


class TextStream:
    """Lazy, single-pass stream of text chunks.

    Iterate with ``async for``. Nothing is requested from the provider until
    iteration starts, and the stream cannot be restarted. ``text`` holds
    everything received so far.
    """

    def __init__(
        self,
        chunks: AsyncIterator[str],
        *,
        provider: str,
        signal: asyncio.Event | None = None,
    ) -> None:
        self._chunks = chunks
        self._provider = provider
        self._signal = signal
        self._parts: list[str] = []
        self._started = False
        self._finished = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def finished(self) -> bool:
        return self._finished

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("Stream can only be consumed once")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        try:
            while True:
                try:
                    chunk = await run_cancellable(
                        _next_chunk(self._chunks), self._signal, self._provider
                    )
                except GenerationCancelledError:
                    log.info("stream_cancelled", provider=self._provider, received=len(self._parts))
                    raise
                except ProviderError:
                    raise
                except Exception as e:
                    raise _wrap_transport_error(e, self._provider) from e
                if chunk is _END:
                    self._finished = True
                    return
                self._parts.append(chunk)
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying provider stream."""
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()


class StructuredStream(TextStream, Generic[T]):
    """Text stream whose complete output is validated against a schema.

    Iterate for incremental text, then ``await stream.result()`` for the
    validated value. Calling ``result()`` without iterating drains the stream.
    """

    def __init__(
        self,
        chunks: AsyncIterator[str],
        schema: type[T],
        *,
        provider: str,
        signal: asyncio.Event | None = None,
    ) -> None:
        super().__init__(chunks, provider=provider, signal=signal)
        self._schema = schema
        self._result: T | None = None

    async def result(self) -> T:
        """Return the validated value once the stream is complete.

        Raises:
            RuntimeError: If iteration was started but abandoned.
            StructuredOutputError: If the output does not validate.
        """
        if self._result is not None:
            return self._result
        if not self._started:
            async for _ in self:
                pass
        if not self._finished:
            raise RuntimeError("Stream was not fully consumed")
        self._result = validate_text(self.text, self._schema, self._provider)
        return self._result


def _messages(system: str, prompt: str) -> list[BaseMessage]:
    return [SystemMessage(content=system), HumanMessage(content=prompt)]


class Generator:
    """Generation façade shared by every text-generation call site."""

    def __init__(self, resolver: ConfigResolver) -> None:
        self._resolver = resolver

    def _resolve(self, operation: str, preset_id: str) -> ResolvedConfig:
        config = self._resolver.resolve(preset_id)
        log.debug(
            operation,
            preset_id=preset_id,
            model=config.preset.model,
            provider=config.provider_kind.value,
        )
        return config

    def _resolve_narrative(self, operation: str) -> ResolvedConfig:
        config = self._resolver.resolve_narrative()
        log.debug(operation, model=config.preset.model, provider=config.provider_kind.value)
        return config

    async def _invoke_text(
        self,
        config: ResolvedConfig,
        system: str,
        prompt: str,
        signal: asyncio.Event | None,
    ) -> str:
        provider = config.provider_kind.value
        try:
            message = await run_cancellable(
                config.model.ainvoke(_messages(system, prompt)), signal, provider
            )
        except ProviderError:
            raise
        except Exception as e:
            log.warning("generation_failed", provider=provider, error=str(e))
            raise _wrap_transport_error(e, provider) from e
        return extract_text(message.content)

    async def generate_structured(
        self,
        preset_id: str,
        system: str,
        prompt: str,
        schema: type[T],
        signal: asyncio.Event | None = None,
    ) -> T:
        """Generate output validated against ``schema``.

        Raises:
            ProviderConfigError: If the preset cannot be resolved.
            StructuredOutputError: If the response does not validate.
            ProviderError: On transport failure.
            GenerationCancelledError: If ``signal`` fires.
        """
        config = self._resolve("generate_structured", preset_id)
        provider = config.provider_kind.value
        runnable = with_structured_output(config.model, schema, config.provider_kind)
        try:
            raw = await run_cancellable(
                runnable.ainvoke(_messages(system, prompt)), signal, provider
            )
        except ProviderError:
            raise
        except Exception as e:
            log.warning("generation_failed", provider=provider, error=str(e))
            raise _wrap_transport_error(e, provider) from e
        return validate_structured_result(raw, schema, provider)

    async def generate_plain_text(
        self,
        preset_id: str,
        system: str,
        prompt: str,
        signal: asyncio.Event | None = None,
    ) -> str:
        """Generate plain text with a preset."""
        config = self._resolve("generate_plain_text", preset_id)
        return await self._invoke_text(config, system, prompt, signal)

    def stream_plain_text(
        self,
        preset_id: str,
        system: str,
        prompt: str,
        signal: asyncio.Event | None = None,
    ) -> TextStream:
        """Stream plain text with a preset.

        Configuration errors are raised here; transport errors surface while
        iterating.
        """
        config = self._resolve("stream_plain_text", preset_id)
        return TextStream(
            _text_chunks(config.model, _messages(system, prompt)),
            provider=config.provider_kind.value,
            signal=signal,
        )

    def stream_structured(
        self,
        preset_id: str,
        system: str,
        prompt: str,
        schema: type[T],
        signal: asyncio.Event | None = None,
    ) -> StructuredStream[T]:
        """Stream text whose final value is validated against ``schema``."""
        config = self._resolve("stream_structured", preset_id)
        return StructuredStream(
            _text_chunks(config.model, _messages(system, prompt)),
            schema,
            provider=config.provider_kind.value,
            signal=signal,
        )

    async def generate_narrative(
        self,
        system: str,
        prompt: str,
        signal: asyncio.Event | None = None,
    ) -> str:
        """Generate narrative text with the main narrative profile."""
        config = self._resolve_narrative("generate_narrative")
        return await self._invoke_text(config, system, prompt, signal)

    def stream_narrative(
        self,
        system: str,
        prompt: str,
        signal: asyncio.Event | None = None,
    ) -> TextStream:
        """Stream narrative text with the main narrative profile."""
        config = self._resolve_narrative("stream_narrative")
        return TextStream(
            _text_chunks(config.model, _messages(system, prompt)),
            provider=config.provider_kind.value,
            signal=signal,
        )
