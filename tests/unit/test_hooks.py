"""Unit tests for command hooks."""

import logging
from collections.abc import Mapping
from typing import Any

import pytest

from payrelay.hooks import (
    CommandHook,
    LoggingCommandHook,
    RecordingCommandHook,
    hooked,
)
from payrelay.observability import MockTracer


class ExplodingHook:
    def on_start(self, command: str, context: Mapping[str, Any]) -> None:
        raise RuntimeError("hook broke")

    def on_success(
        self, command: str, context: Mapping[str, Any], result: Any, duration_ms: float
    ) -> None:
        raise RuntimeError("hook broke")

    def on_failure(
        self, command: str, context: Mapping[str, Any], error: BaseException, duration_ms: float
    ) -> None:
        raise RuntimeError("hook broke")


class Service:
    def __init__(self, hooks: list[CommandHook]) -> None:
        self._hooks = hooks
        self._tracer = MockTracer()

    @hooked("charge")
    async def charge(
        self, order_id: str, card_number: str, amount: int, note: object = None
    ) -> str:
        if amount < 0:
            raise ValueError("negative amount")
        return f"charged {order_id}"


class TestHooked:
    @pytest.mark.asyncio
    async def test_success_path(self) -> None:
        recorder = RecordingCommandHook()
        service = Service([recorder])

        result = await service.charge("order-1", "4111111111111111", 10)

        assert result == "charged order-1"
        assert recorder.calls == [
            ("start", "charge", {"order_id": "order-1", "amount": 10}),
            ("success", "charge", "charged order-1"),
        ]
        assert service._tracer.span_names == ["payrelay.command.charge"]

    @pytest.mark.asyncio
    async def test_failure_path_reraises(self) -> None:
        recorder = RecordingCommandHook()

        with pytest.raises(ValueError):
            await Service([recorder]).charge("order-1", "4111111111111111", -1)

        kind, command, error = recorder.calls[-1]
        assert (kind, command) == ("failure", "charge")
        assert isinstance(error, ValueError)

    @pytest.mark.asyncio
    async def test_card_data_and_objects_never_reach_hooks(self) -> None:
        recorder = RecordingCommandHook()

        await Service([recorder]).charge("order-1", "4111111111111111", 10, note=object())

        context = recorder.calls[0][2]
        assert "card_number" not in context
        assert "note" not in context

    @pytest.mark.asyncio
    async def test_broken_hook_does_not_change_outcome(self) -> None:
        recorder = RecordingCommandHook()

        result = await Service([ExplodingHook(), recorder]).charge("order-1", "4111", 10)

        assert result == "charged order-1"
        assert [kind for kind, _, _ in recorder.calls] == ["start", "success"]


class TestLoggingCommandHook:
    def test_implements_protocol(self) -> None:
        assert isinstance(LoggingCommandHook(), CommandHook)

    @pytest.mark.asyncio
    async def test_logs_success_and_failure(self, caplog: pytest.LogCaptureFixture) -> None:
        service = Service([LoggingCommandHook()])

        with caplog.at_level(logging.DEBUG, logger="payrelay.commands"):
            await service.charge("order-1", "4111", 10)
            with pytest.raises(ValueError):
                await service.charge("order-1", "4111", -1)

        levels = [r.levelname for r in caplog.records if r.name == "payrelay.commands"]
        assert levels == ["DEBUG", "INFO", "DEBUG", "WARNING"]
        assert "negative amount" in caplog.text
