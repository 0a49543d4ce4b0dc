"""Serialization utilities for payrelay."""

from payrelay.serialization.json import (
    PayRelayJSONEncoder,
    json_dumps,
    json_loads,
)

__all__ = [
    "PayRelayJSONEncoder",
    "json_dumps",
    "json_loads",
]
