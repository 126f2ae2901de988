"""Tests for the in-process event broadcaster."""

from __future__ import annotations

import logging

import pytest

from mailmirror.notifications import NEW_EMAIL_EVENT, EventBroadcaster, LocalBroadcaster


def test_local_broadcaster_satisfies_protocol():
    assert isinstance(LocalBroadcaster(), EventBroadcaster)


def test_emit_delivers_payload_copy_to_subscribers():
    broadcaster = LocalBroadcaster()
    received = []
    broadcaster.subscribe(NEW_EMAIL_EVENT, received.append)

    payload = {"accountId": "me@example.com"}
    broadcaster.emit(NEW_EMAIL_EVENT, payload)
    received[0]["accountId"] = "mutated"

    assert payload == {"accountId": "me@example.com"}
    assert broadcaster.recent(NEW_EMAIL_EVENT)[0].payload == {"accountId": "me@example.com"}


def test_unsubscribe_stops_delivery():
    broadcaster = LocalBroadcaster()
    received = []
    unsubscribe = broadcaster.subscribe(NEW_EMAIL_EVENT, received.append)

    unsubscribe()
    unsubscribe()
    broadcaster.emit(NEW_EMAIL_EVENT, {"accountId": "a"})

    assert received == []


def test_failing_handler_does_not_reach_emitter(caplog):
    broadcaster = LocalBroadcaster()
    received = []

    def explode(payload):
        raise RuntimeError("socket gone")

    broadcaster.subscribe(NEW_EMAIL_EVENT, explode)
    broadcaster.subscribe(NEW_EMAIL_EVENT, received.append)

    with caplog.at_level(logging.ERROR):
        broadcaster.emit(NEW_EMAIL_EVENT, {"accountId": "a"})

    assert received == [{"accountId": "a"}]
    assert "Event handler failed" in caplog.text


def test_history_is_bounded_and_filterable():
    broadcaster = LocalBroadcaster(history_size=3)
    for n in range(5):
        broadcaster.emit(NEW_EMAIL_EVENT, {"accountId": str(n)})
    broadcaster.emit("other", {})

    assert [event.payload["accountId"] for event in broadcaster.recent(NEW_EMAIL_EVENT)] == ["3", "4"]
    assert [event.name for event in broadcaster.recent()] == [NEW_EMAIL_EVENT, NEW_EMAIL_EVENT, "other"]
    assert broadcaster.recent()[0].to_dict()["name"] == NEW_EMAIL_EVENT


@pytest.mark.asyncio
async def test_coroutine_handlers_are_scheduled(caplog):
    broadcaster = LocalBroadcaster()
    received = []

    async def record(payload):
        received.append(payload)

    async def explode(payload):
        raise RuntimeError("async failure")

    broadcaster.subscribe(NEW_EMAIL_EVENT, record)
    broadcaster.subscribe(NEW_EMAIL_EVENT, explode)

    with caplog.at_level(logging.ERROR):
        broadcaster.emit(NEW_EMAIL_EVENT, {"accountId": "a"})
        await broadcaster.drain()

    assert received == [{"accountId": "a"}]
    assert "Async event handler failed" in caplog.text
