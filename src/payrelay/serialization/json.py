"""
JSON serialization helpers for payrelay payloads.

Outbox payloads, message headers and log context routinely contain values
the standard encoder rejects: UUIDs, timezone-aware datetimes, Decimal
amounts and str-based enums. These helpers handle all of them.

Example:
    >>> from decimal import Decimal
    >>> from payrelay.serialization import json_dumps, json_loads
    >>> json_loads(json_dumps({"amount": Decimal("100.00")}))
    {'amount': '100.00'}
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class PayRelayJSONEncoder(json.JSONEncoder):
    """
    JSON encoder supporting UUID, datetime, Decimal and Enum values.

    Decimals are written as strings so monetary amounts never pass through
    binary floating point.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """Serialize ``obj`` to a compact JSON string using PayRelayJSONEncoder."""
    return json.dumps(obj, cls=PayRelayJSONEncoder, separators=(",", ":"))


def json_loads(s: str | bytes) -> Any:
    """Deserialize a JSON string or UTF-8 bytes."""
    return json.loads(s)
