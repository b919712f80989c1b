"""
Idempotency helpers.

Callers retrying a money- or stock-moving request after a timeout pass the
same idempotency key.  The core stores a fingerprint of the request payload
next to the key: a retry with the same payload returns the original result,
while a different payload under the same key is a conflict.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _canonical(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (UUID, datetime, date)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def payload_fingerprint(payload: dict[str, Any]) -> str:
    """
    Deterministic SHA-256 hex digest of a request payload.

    Decimal values are normalized, so ``Decimal("400")`` and
    ``Decimal("400.00")`` fingerprint identically.
    """
    canonical = json.dumps(_canonical(payload), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
