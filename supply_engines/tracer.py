"""
supply_engines.tracer -- Engine invocation tracer emitting SUPPLY_ENGINE_TRACE.

Responsibility:
    A lightweight decorator (``@traced_engine``) that wraps pure engine
    invocations with structured trace logging: engine name, engine
    version, a deterministic fingerprint of selected inputs, and duration.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only; never mutates inputs.

Invariants enforced:
    - Fingerprints are deterministic: arguments are bound to parameter
      names (positional or keyword alike), canonicalized with sorted dict
      keys, and hashed with SHA-256 truncated to 16 hex chars.

Failure modes:
    - Fields not present in the call are recorded as "null".
    - Unknown types fall back to ``str(value)``.

Usage:
    @traced_engine("pricing.line", "1.0", fingerprint_fields=("quantity", "unit_price"))
    def compute_line(quantity, unit_price, tax_percentage, discount_amount):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any

_logger = logging.getLogger("supply_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    """Produce a stable string representation of a value for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        items = sorted(value.items())
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """Deterministic 16-hex-char SHA-256 prefix over the selected fields."""
    parts = [f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields]
    canonical = "|".join(parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits SUPPLY_ENGINE_TRACE for pure engine invocations."""

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            t0 = time.monotonic()
            result = func(*args, **kwargs)
            if not _logger.isEnabledFor(logging.DEBUG):
                return result

            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fp = compute_input_fingerprint(fingerprint_fields, bound.arguments)
            _logger.debug(
                "SUPPLY_ENGINE_TRACE",
                extra={
                    "trace_type": "SUPPLY_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 3),
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
