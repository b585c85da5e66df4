"""Tests for the publish/subscribe signal."""

from __future__ import annotations

import logging

from taskdown.events import Signal


def test_subscribers_receive_values_in_order():
    signal = Signal("demo")
    received = []
    signal.subscribe(lambda value: received.append(("first", value)))
    signal.subscribe(lambda value: received.append(("second", value)))

    signal.publish(1)

    assert received == [("first", 1), ("second", 1)]


def test_unsubscribe_stops_delivery_and_is_idempotent():
    signal = Signal("demo")
    received = []
    unsubscribe = signal.subscribe(received.append)

    unsubscribe()
    unsubscribe()
    signal.publish("ignored")

    assert received == []
    assert len(signal) == 0


def test_failing_subscriber_does_not_block_others(caplog):
    signal = Signal("demo")
    received = []

    def broken(_value):
        raise ValueError("boom")

    signal.subscribe(broken)
    signal.subscribe(received.append)

    with caplog.at_level(logging.ERROR, logger="taskdown.events"):
        signal.publish("value")

    assert received == ["value"]
    assert "boom" in caplog.text
