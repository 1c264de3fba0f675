"""Tests for the generation façade."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pydantic import BaseModel

from storyloom.providers.base import (
    GenerationCancelledError,
    ProviderConfigError,
    ProviderConnectionError,
    ProviderError,
    StructuredOutputError,
)
from storyloom.providers.generate import Generator, run_cancellable
from storyloom.providers.resolver import ResolvedConfig
from storyloom.settings.models import APIProfile, GenerationPreset, ProviderKind


class Verdict(BaseModel):
    label: str
    score: int = 0


def _config(model: Any, kind: ProviderKind = ProviderKind.OPENROUTER) -> ResolvedConfig:
    return ResolvedConfig(
        preset=GenerationPreset(id="p", model="m"),
        profile=APIProfile(id="main", provider_kind=kind, api_key="k"),
        provider_kind=kind,
        model=model,
        provider_options=None,
    )


def _generator(model: Any, kind: ProviderKind = ProviderKind.OPENROUTER) -> Generator:
    resolver = MagicMock()
    resolver.resolve.return_value = _config(model, kind)
    resolver.resolve_narrative.return_value = _config(model, kind)
    return Generator(resolver)


async def _slow(*_args: Any, **_kwargs: Any) -> Any:
    await asyncio.sleep(10)
    return MagicMock(content="too late")


class TestRunCancellable:
    @pytest.mark.asyncio()
    async def test_without_signal_returns_result(self) -> None:
        async def value() -> int:
            return 5

        assert await run_cancellable(value(), None, "test") == 5

    @pytest.mark.asyncio()
    async def test_pre_set_signal_cancels(self) -> None:
        signal = asyncio.Event()
        signal.set()
        with pytest.raises(GenerationCancelledError):
            await run_cancellable(_slow(), signal, "test")

    @pytest.mark.asyncio()
    async def test_signal_during_request_cancels(self) -> None:
        signal = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, signal.set)
        with pytest.raises(GenerationCancelledError):
            await run_cancellable(_slow(), signal, "test")

    @pytest.mark.asyncio()
    async def test_result_wins_when_signal_never_fires(self) -> None:
        async def value() -> str:
            return "done"

        assert await run_cancellable(value(), asyncio.Event(), "test") == "done"


class TestGeneratePlainText:
    @pytest.mark.asyncio()
    async def test_returns_text(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(content="Bonjour")
        result = await _generator(model).generate_plain_text("translation", "sys", "Hello")

        assert result == "Bonjour"
        messages = model.ainvoke.call_args.args[0]
        assert messages[0].content == "sys"
        assert messages[1].content == "Hello"

    @pytest.mark.asyncio()
    async def test_content_blocks_are_flattened(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(
            content=[
                {"type": "thinking", "thinking": "hmm"},
                {"type": "text", "text": "visible"},
            ]
        )
        assert await _generator(model).generate_plain_text("p", "s", "u") == "visible"

    @pytest.mark.asyncio()
    async def test_config_error_propagates(self) -> None:
        resolver = MagicMock()
        resolver.resolve.side_effect = ProviderConfigError("settings", "Profile not found: x")
        with pytest.raises(ProviderConfigError):
            await Generator(resolver).generate_plain_text("p", "s", "u")

    @pytest.mark.asyncio()
    async def test_network_failure_is_connection_error(self) -> None:
        model = MagicMock()
        model.ainvoke = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ProviderConnectionError):
            await _generator(model).generate_plain_text("p", "s", "u")

    @pytest.mark.asyncio()
    async def test_other_failure_is_provider_error(self) -> None:
        model = MagicMock()
        model.ainvoke = AsyncMock(side_effect=RuntimeError("HTTP 500"))
        with pytest.raises(ProviderError, match="HTTP 500") as exc_info:
            await _generator(model).generate_plain_text("p", "s", "u")
        assert not isinstance(exc_info.value, ProviderConnectionError)

    @pytest.mark.asyncio()
    async def test_cancellation(self) -> None:
        model = MagicMock()
        model.ainvoke = MagicMock(side_effect=_slow)
        signal = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, signal.set)

        with pytest.raises(GenerationCancelledError):
            await _generator(model).generate_plain_text("p", "s", "u", signal=signal)


class TestGenerateNarrative:
    @pytest.mark.asyncio()
    async def test_uses_main_profile(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(content="Once upon a time")
        generator = _generator(model)

        result = await generator.generate_narrative("sys", "go")

        assert result == "Once upon a time"
        generator._resolver.resolve_narrative.assert_called_once()
        generator._resolver.resolve.assert_not_called()

    @pytest.mark.asyncio()
    async def test_stream_narrative(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(chunks=["The ", "end."])
        stream = _generator(model).stream_narrative("sys", "go")
        parts = [chunk async for chunk in stream]
        assert parts == ["The ", "end."]


class TestGenerateStructured:
    @pytest.mark.asyncio()
    async def test_returns_validated_model(self) -> None:
        runnable = MagicMock()
        runnable.ainvoke = AsyncMock(
            return_value={"raw": MagicMock(), "parsed": {"label": "ok"}, "parsing_error": None}
        )
        model = MagicMock()
        model.with_structured_output.return_value = runnable

        result = await _generator(model).generate_structured("p", "s", "u", Verdict)

        assert result == Verdict(label="ok")
        kwargs = model.with_structured_output.call_args.kwargs
        assert kwargs["method"] == "json_schema"
        assert kwargs["include_raw"] is True
        assert kwargs["strict"] is True

    @pytest.mark.asyncio()
    async def test_non_strict_for_anthropic(self) -> None:
        runnable = MagicMock()
        runnable.ainvoke = AsyncMock(return_value={"parsed": {"label": "ok"}, "raw": None})
        model = MagicMock()
        model.with_structured_output.return_value = runnable

        await _generator(model, ProviderKind.ANTHROPIC).generate_structured(
            "p", "s", "u", Verdict
        )

        assert model.with_structured_output.call_args.kwargs["strict"] is None

    @pytest.mark.asyncio()
    async def test_falls_back_to_raw_text(self) -> None:
        raw = MagicMock(content='Sure!\n```json\n{"label": "fallback", "score": 2}\n```')
        runnable = MagicMock()
        runnable.ainvoke = AsyncMock(
            return_value={"raw": raw, "parsed": None, "parsing_error": ValueError("bad")}
        )
        model = MagicMock()
        model.with_structured_output.return_value = runnable

        result = await _generator(model).generate_structured("p", "s", "u", Verdict)
        assert result == Verdict(label="fallback", score=2)

    @pytest.mark.asyncio()
    async def test_invalid_output_raises(self) -> None:
        runnable = MagicMock()
        runnable.ainvoke = AsyncMock(
            return_value={"raw": None, "parsed": {"score": "many"}, "parsing_error": None}
        )
        model = MagicMock()
        model.with_structured_output.return_value = runnable

        with pytest.raises(StructuredOutputError):
            await _generator(model).generate_structured("p", "s", "u", Verdict)


class TestTextStream:
    @pytest.mark.asyncio()
    async def test_yields_chunks_and_accumulates(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(chunks=["Hel", "", "lo"])
        stream = _generator(model).stream_plain_text("p", "s", "u")

        parts = [chunk async for chunk in stream]

        assert parts == ["Hel", "lo"]
        assert stream.text == "Hello"
        assert stream.finished

    @pytest.mark.asyncio()
    async def test_nothing_requested_before_iteration(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(chunks=["x"])
        _generator(model).stream_plain_text("p", "s", "u")
        model.astream.assert_not_called()

    @pytest.mark.asyncio()
    async def test_single_pass(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(chunks=["a"])
        stream = _generator(model).stream_plain_text("p", "s", "u")
        async for _ in stream:
            pass

        with pytest.raises(RuntimeError, match="once"):
            async for _ in stream:
                pass

    @pytest.mark.asyncio()
    async def test_cancelled_stream_raises(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(chunks=["a", "b"])
        signal = asyncio.Event()
        signal.set()
        stream = _generator(model).stream_plain_text("p", "s", "u", signal=signal)

        with pytest.raises(GenerationCancelledError):
            async for _ in stream:
                pass
        assert not stream.finished

    @pytest.mark.asyncio()
    async def test_transport_error_while_iterating(self) -> None:
        async def _broken(_messages: Any) -> Any:
            yield MagicMock(content="partial")
            raise httpx.ReadTimeout("slow")

        model = MagicMock()
        model.astream = MagicMock(side_effect=_broken)
        stream = _generator(model).stream_plain_text("p", "s", "u")

        received: list[str] = []
        with pytest.raises(ProviderConnectionError):
            async for chunk in stream:
                received.append(chunk)
        assert received == ["partial"]


class TestStructuredStream:
    @pytest.mark.asyncio()
    async def test_result_after_iteration(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(chunks=['{"label": ', '"streamed"}'])
        stream = _generator(model).stream_structured("p", "s", "u", Verdict)

        parts = [chunk async for chunk in stream]

        assert "".join(parts) == '{"label": "streamed"}'
        assert await stream.result() == Verdict(label="streamed")

    @pytest.mark.asyncio()
    async def test_result_drains_unstarted_stream(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(chunks=['{"label": "x", "score": 3}'])
        stream = _generator(model).stream_structured("p", "s", "u", Verdict)
        assert await stream.result() == Verdict(label="x", score=3)

    @pytest.mark.asyncio()
    async def test_abandoned_stream_has_no_result(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(chunks=['{"label":', ' "x"}'])
        stream = _generator(model).stream_structured("p", "s", "u", Verdict)
        async for _ in stream:
            break

        with pytest.raises(RuntimeError, match="not fully consumed"):
            await stream.result()

    @pytest.mark.asyncio()
    async def test_invalid_json_raises(self, chat_model_factory: Any) -> None:
        model = chat_model_factory(chunks=["no json here"])
        stream = _generator(model).stream_structured("p", "s", "u", Verdict)
        with pytest.raises(StructuredOutputError):
            await stream.result()
