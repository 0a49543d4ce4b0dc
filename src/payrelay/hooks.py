"""
Command hooks.

Application service methods decorated with :func:`hooked` notify every
:class:`CommandHook` on the instance's ``_hooks`` list when a command
starts, succeeds or fails, and run inside a span from the instance's
``_tracer``. Hooks observe only; an exception raised by a hook is logged
and never changes the command's outcome.

Example:
    >>> class OrderService:
    ...     def __init__(self, hooks=None):
    ...         self._hooks = list(hooks or [LoggingCommandHook()])
    ...         self._tracer = NullTracer()
    ...
    ...     @hooked("request_payment")
    ...     async def request_payment(self, order_id: str) -> Order:
    ...         ...
"""

from __future__ import annotations

import functools
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from contextlib import nullcontext
from typing import Any, ParamSpec, Protocol, TypeVar, runtime_checkable

from payrelay.observability.attributes import ATTR_COMMAND, ATTR_ERROR_TYPE

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

# Arguments never copied into hook context.
SENSITIVE_ARGUMENTS = frozenset({"credit_card", "card", "cvv", "card_number"})


@runtime_checkable
class CommandHook(Protocol):
    def on_start(self, command: str, context: Mapping[str, Any]) -> None: ...

    def on_success(
        self, command: str, context: Mapping[str, Any], result: Any, duration_ms: float
    ) -> None: ...

    def on_failure(
        self,
        command: str,
        context: Mapping[str, Any],
        error: BaseException,
        duration_ms: float,
    ) -> None: ...


class LoggingCommandHook:
    """Logs command start at DEBUG, success at INFO and failure at WARNING."""

    def __init__(self, logger_name: str = "payrelay.commands") -> None:
        self._logger = logging.getLogger(logger_name)

    def on_start(self, command: str, context: Mapping[str, Any]) -> None:
        self._logger.debug(
            "Command %s started",
            command,
            extra={"command": command, "command_context": dict(context)},
        )

    def on_success(
        self, command: str, context: Mapping[str, Any], result: Any, duration_ms: float
    ) -> None:
        self._logger.info(
            "Command %s succeeded in %.1fms",
            command,
            duration_ms,
            extra={
                "command": command,
                "duration_ms": duration_ms,
                "command_context": dict(context),
            },
        )

    def on_failure(
        self,
        command: str,
        context: Mapping[str, Any],
        error: BaseException,
        duration_ms: float,
    ) -> None:
        self._logger.warning(
            "Command %s failed after %.1fms: %s",
            command,
            duration_ms,
            error,
            extra={
                "command": command,
                "duration_ms": duration_ms,
                "error": str(error),
                "error_type": type(error).__name__,
                "command_context": dict(context),
            },
        )


class RecordingCommandHook:
    """Keeps every notification in ``calls``; used by tests."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Any]] = []

    def on_start(self, command: str, context: Mapping[str, Any]) -> None:
        self.calls.append(("start", command, dict(context)))

    def on_success(
        self, command: str, context: Mapping[str, Any], result: Any, duration_ms: float
    ) -> None:
        self.calls.append(("success", command, result))

    def on_failure(
        self,
        command: str,
        context: Mapping[str, Any],
        error: BaseException,
        duration_ms: float,
    ) -> None:
        self.calls.append(("failure", command, error))


def _context(bound: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: value
        for key, value in bound.items()
        if key not in SENSITIVE_ARGUMENTS and isinstance(value, str | int | float | bool)
    }


def _notify(hook: CommandHook, method: str, *args: Any) -> None:
    try:
        getattr(hook, method)(*args)
    except Exception as e:
        logger.error(
            "Command hook %s.%s raised: %s", type(hook).__name__, method, e, exc_info=True
        )


def hooked(
    command: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Decorate an async service method as the command ``command``.

    Scalar arguments (ids, reasons) become the hook context; card data and
    other structured arguments are left out.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            instance = args[0]
            hooks: list[CommandHook] = getattr(instance, "_hooks", None) or []
            tracer = getattr(instance, "_tracer", None)
            arguments = signature.bind_partial(*args, **kwargs).arguments
            context = _context({k: v for k, v in arguments.items() if k != "self"})

            for hook in hooks:
                _notify(hook, "on_start", command, context)
            started = time.perf_counter()

            span_cm = (
                tracer.span(f"payrelay.command.{command}", {ATTR_COMMAND: command})
                if tracer is not None
                else nullcontext()
            )
            with span_cm as span:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    duration_ms = (time.perf_counter() - started) * 1000
                    if span:
                        span.set_attribute(ATTR_ERROR_TYPE, type(e).__name__)
                    for hook in hooks:
                        _notify(hook, "on_failure", command, context, e, duration_ms)
                    raise

            duration_ms = (time.perf_counter() - started) * 1000
            for hook in hooks:
                _notify(hook, "on_success", command, context, result, duration_ms)
            return result

        return wrapper

    return decorator


__all__ = [
    "CommandHook",
    "LoggingCommandHook",
    "RecordingCommandHook",
    "hooked",
]
