from __future__ import annotations

from dataclasses import dataclass

from papertrade.bus import EventBus


@dataclass(frozen=True)
class E:
    x: int


def test_bus_publish_subscribe() -> None:
    bus = EventBus()
    seen: list[int] = []

    def h(e: E) -> None:
        seen.append(e.x)

    bus.subscribe(E, h)
    bus.publish(E(1))
    bus.publish(E(2))

    assert seen == [1, 2]


def test_bus_topics_and_unsubscribe() -> None:
    bus = EventBus()
    alice: list[int] = []
    everyone: list[int] = []

    unsub = bus.subscribe(E, lambda e: alice.append(e.x), topic="alice")
    bus.subscribe(E, lambda e: everyone.append(e.x))

    bus.publish(E(1), topic="alice")
    bus.publish(E(2), topic="bob")
    unsub()
    bus.publish(E(3), topic="alice")

    assert alice == [1]
    assert everyone == [1, 2, 3]


def test_bus_failing_handler_does_not_stop_others() -> None:
    bus = EventBus()
    seen: list[int] = []

    def boom(e: E) -> None:
        raise RuntimeError("listener bug")

    bus.subscribe(E, boom)
    bus.subscribe(E, lambda e: seen.append(e.x))
    bus.publish(E(7))

    assert seen == [7]
