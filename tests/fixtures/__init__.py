"""
Shared test doubles and builders for the payrelay tests.

Usage:
    from tests.fixtures import FakeClock, FakeGateway, SequentialIds, payment_request
"""

from tests.fixtures.builders import payment_request
from tests.fixtures.fakes import FakeClock, FakeGateway, GatewayCall, SequentialIds

__all__ = [
    "FakeClock",
    "FakeGateway",
    "GatewayCall",
    "SequentialIds",
    "payment_request",
]
