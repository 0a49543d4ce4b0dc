"""
Test doubles for the collaborators payrelay talks to.

- FakeClock: a controllable ``clock`` callable
- SequentialIds: deterministic transaction ids
- FakeGateway: a scripted payment gateway
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from payrelay.aggregates.values import Money


class FakeClock:
    """Callable returning a fixed instant until advanced."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now

    def set(self, instant: datetime) -> None:
        self.now = instant


class SequentialIds:
    """Produces ``TXN-1``, ``TXN-2``, ... and remembers what it issued."""

    def __init__(self, prefix: str = "TXN") -> None:
        self._prefix = prefix
        self.issued: list[str] = []

    def __call__(self) -> str:
        value = f"{self._prefix}-{len(self.issued) + 1}"
        self.issued.append(value)
        return value


@dataclass
class GatewayCall:
    transaction_id: str
    amount: Money
    credit_card_ref: str | None
    merchant_id: str


@dataclass
class FakeGateway:
    """
    Payment gateway answering from a script.

    Scripted responses are consumed in order; once the script is empty
    every call answers ``default_response``. A scripted exception is raised
    instead of answering.
    """

    default_response: str = "SUCCESS"
    delay: float = 0.0
    script: deque[str | BaseException] = field(default_factory=deque)
    calls: list[GatewayCall] = field(default_factory=list)

    def respond_with(self, *responses: str | BaseException) -> None:
        self.script.extend(responses)

    async def process(
        self,
        transaction_id: str,
        amount: Money,
        credit_card_ref: str | None,
        merchant_id: str,
    ) -> str:
        self.calls.append(GatewayCall(transaction_id, amount, credit_card_ref, merchant_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.script:
            response = self.script.popleft()
            if isinstance(response, BaseException):
                raise response
            return response
        return self.default_response

    def calls_for(self, transaction_id: str) -> list[GatewayCall]:
        return [call for call in self.calls if call.transaction_id == transaction_id]
