"""
Unit tests for smartwake.services.cancellation.

These tests validate token semantics and that the registry only releases
the handle owned by the releasing token.
"""

from __future__ import annotations

import uuid
from concurrent.futures import Future

import pytest

from smartwake.domain.errors import CalculationCancelled
from smartwake.services.cancellation import CancellationRegistry, CancellationToken, TaskHandle


def test_token_raises_once_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    assert token.is_cancelled
    with pytest.raises(CalculationCancelled):
        token.raise_if_cancelled()


def test_cancel_cancels_token_and_future() -> None:
    registry = CancellationRegistry()
    alarm_id = uuid.uuid4()
    future: Future = Future()
    handle = TaskHandle(token=CancellationToken(), future=future)
    registry.register(alarm_id, handle)

    assert registry.cancel(alarm_id)
    assert handle.token.is_cancelled
    assert future.cancelled()
    assert alarm_id not in registry
    assert registry.cancel(alarm_id) is False


def test_release_ignores_foreign_token() -> None:
    registry = CancellationRegistry()
    alarm_id = uuid.uuid4()
    old, new = CancellationToken(), CancellationToken()
    registry.register(alarm_id, TaskHandle(token=new))

    registry.release(alarm_id, old)
    assert alarm_id in registry

    registry.release(alarm_id, new)
    assert len(registry) == 0


def test_cancel_all() -> None:
    registry = CancellationRegistry()
    tokens = [CancellationToken() for _ in range(3)]
    for t in tokens:
        registry.register(uuid.uuid4(), TaskHandle(token=t))

    registry.cancel_all()

    assert len(registry) == 0
    assert all(t.is_cancelled for t in tokens)
