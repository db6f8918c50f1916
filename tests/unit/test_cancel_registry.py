from __future__ import annotations

import threading

from transfer.registry import CancelRegistry


def test_cancel_invokes_registered_handle() -> None:
    registry = CancelRegistry()
    calls: list[str] = []
    registry.register("session-1", lambda: calls.append("one"))

    assert registry.cancel("session-1") is True
    assert calls == ["one"]


def test_cancel_unknown_session_returns_false() -> None:
    registry = CancelRegistry()
    assert registry.cancel("session-404") is False


def test_unregistered_handle_is_not_invoked() -> None:
    registry = CancelRegistry()
    calls: list[str] = []
    registry.register("session-1", lambda: calls.append("one"))
    registry.unregister("session-1")
    registry.unregister("session-1")

    assert "session-1" not in registry
    assert registry.cancel("session-1") is False
    assert calls == []


def test_cancel_all() -> None:
    registry = CancelRegistry()
    calls: list[str] = []
    registry.register("session-1", lambda: calls.append("one"))
    registry.register("session-2", lambda: calls.append("two"))

    assert registry.cancel_all() is True
    assert sorted(calls) == ["one", "two"]
    assert CancelRegistry().cancel_all() is False


def test_concurrent_register_cancel_unregister() -> None:
    registry = CancelRegistry()
    fired = threading.Event()
    counter = {"hits": 0}
    lock = threading.Lock()

    def hit() -> None:
        with lock:
            counter["hits"] += 1
        fired.set()

    def churn(index: int) -> None:
        for n in range(200):
            session_id = f"session-{index}-{n}"
            registry.register(session_id, hit)
            registry.cancel(session_id)
            registry.unregister(session_id)

    threads = [threading.Thread(target=churn, args=(i,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert fired.is_set()
    assert counter["hits"] == 6 * 200
    assert registry.cancel_all() is False
