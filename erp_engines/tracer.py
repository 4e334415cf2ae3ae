"""
erp_engines.tracer -- invocation tracer for pure calculators.

Responsibility:
    ``@traced_engine`` logs one ``engine_traced`` record per calculator
    call: the engine name and version, a fingerprint of the selected
    inputs, how long the call took and whether it returned or raised.
    Two quotes for the same basket carry the same fingerprint, which is
    how a disputed total is matched to the inputs that produced it.

Invariants enforced:
    - Inputs are bound by name through the function signature, defaults
      included, so ``calculate(lines)`` and ``calculate(lines, discount=0)``
      fingerprint alike.
    - The fingerprint is SHA-256 over a canonical rendering (sorted dict
      keys, dataclasses as dicts, Decimal via ``str``), cut to 16 hex chars.
    - The decorator never changes a result or swallows an error.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping
from dataclasses import asdict, is_dataclass
from typing import Any

from erp_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

FINGERPRINT_LENGTH = 16


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if is_dataclass(value) and not isinstance(value, type):
        return _canonical(asdict(value))
    if isinstance(value, Mapping):
        return "{" + ",".join(f"{k}:{_canonical(value[k])}" for k in sorted(value)) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return str(value)


def input_fingerprint(fields: tuple[str, ...], arguments: Mapping[str, Any]) -> str:
    """Fingerprint of ``arguments`` restricted to ``fields``; absent ones count as null."""
    rendered = "|".join(f"{name}={_canonical(arguments.get(name))}" for name in fields)
    return hashlib.sha256(rendered.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                bound.apply_defaults()
                fingerprint = input_fingerprint(fingerprint_fields, bound.arguments)

            record = {
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fingerprint,
                "function": func.__qualname__,
            }
            started = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                record["outcome"] = getattr(exc, "code", type(exc).__name__)
                raise
            else:
                record["outcome"] = "ok"
                return result
            finally:
                record["duration_ms"] = round((time.monotonic() - started) * 1000, 2)
                _logger.info("engine_traced", extra=record)

        return wrapper

    return decorator
