"""Unit tests for correlation ID tracking."""

from __future__ import annotations

import asyncio
import contextvars
import re

import pytest

from tuya_mqtt.correlation import (
    CorrelationKind,
    correlation_scope,
    get_correlation_id,
    new_correlation_id,
    process_correlation_id,
)


@pytest.mark.parametrize(
    ("kind", "prefix"),
    [(CorrelationKind.MESSAGE, "msg"), (CorrelationKind.DEVICE_EVENT, "evt"), (CorrelationKind.PROCESS, "run")],
)
def test_new_id_format(kind: CorrelationKind, prefix: str):
    assert re.fullmatch(rf"{prefix}-[0-9a-f]{{12}}", new_correlation_id(kind))


def test_new_ids_are_unique():
    assert new_correlation_id(CorrelationKind.MESSAGE) != new_correlation_id(CorrelationKind.MESSAGE)


def test_scope_restores_previous():
    with correlation_scope(CorrelationKind.PROCESS) as outer:
        with correlation_scope(CorrelationKind.MESSAGE) as inner:
            assert get_correlation_id() == inner
            assert inner.startswith("msg-")
        assert get_correlation_id() == outer

    assert get_correlation_id() is None


def test_explicit_id():
    with correlation_scope(CorrelationKind.MESSAGE, "msg-fixed") as corr_id:
        assert corr_id == "msg-fixed"
        assert get_correlation_id() == "msg-fixed"


def test_process_id_binds_once():
    def run() -> tuple[str, str]:
        return process_correlation_id(), process_correlation_id()

    first, second = contextvars.copy_context().run(run)

    assert first == second
    assert first.startswith("run-")


def test_process_id_keeps_existing_scope():
    with correlation_scope(CorrelationKind.MESSAGE, "msg-abc") as corr_id:
        assert process_correlation_id() == corr_id


@pytest.mark.asyncio
async def test_task_keeps_id_after_scope_exit():
    """A dispatch task spawned inside a message scope keeps that message's ID."""

    async def read_id() -> str | None:
        await asyncio.sleep(0)
        return get_correlation_id()

    with correlation_scope(CorrelationKind.MESSAGE, "msg-000000000001"):
        task = asyncio.create_task(read_id())

    assert await task == "msg-000000000001"
