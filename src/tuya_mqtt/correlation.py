"""
Correlation IDs for the bridge's three units of work.

- ``msg-...``: one inbound MQTT message and the device dispatch it spawns
- ``evt-...``: one device property report and the publishes it causes
- ``run-...``: the process lifetime (startup and shutdown lines)

The ID lives in a context variable, so tasks created inside a scope keep it
after the scope exits.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from enum import StrEnum

__all__ = [
    "CorrelationKind",
    "correlation_scope",
    "get_correlation_id",
    "new_correlation_id",
    "process_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tuya_mqtt_correlation_id",
    default=None,
)


class CorrelationKind(StrEnum):
    MESSAGE = "msg"
    DEVICE_EVENT = "evt"
    PROCESS = "run"


def new_correlation_id(kind: CorrelationKind) -> str:
    """Return ``<kind>-<12 hex chars>``."""
    return f"{kind}-{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_scope(kind: CorrelationKind, correlation_id: str | None = None) -> Generator[str]:
    """Bind a correlation ID for the block; the previous one is restored on exit.

    Example:
        with correlation_scope(CorrelationKind.MESSAGE) as corr_id:
            logger.info("Handling message")  # tagged msg-...

    """
    corr_id = correlation_id or new_correlation_id(kind)
    token = _correlation_id.set(corr_id)
    try:
        yield corr_id
    finally:
        _correlation_id.reset(token)


def process_correlation_id() -> str:
    """Return the bound ID, binding a new ``run-...`` ID if there is none."""
    current_id = _correlation_id.get()
    if current_id is None:
        current_id = new_correlation_id(CorrelationKind.PROCESS)
        _ = _correlation_id.set(current_id)
    return current_id
