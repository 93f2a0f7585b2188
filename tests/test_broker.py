# tests/test_broker.py

from __future__ import annotations

from wizard_tasks.messaging.broker import MessageBroker
from wizard_tasks.messaging.messages import CancelTask, TaskProgress

from .fakes import RecordingClient


def test_clients_receive_events_before_any_context_claims_them() -> None:
    broker = MessageBroker()
    early = RecordingClient()
    handle = broker.connect(early)
    assert handle.controlled is False

    assert broker.broadcast(TaskProgress(task_id="t1", progress=10)) == 1
    assert early.types() == ["task_progress"]

    assert broker.claim("ctx-1") == 1
    assert handle.controlled is True
    assert broker.broadcast(TaskProgress(task_id="t1", progress=20)) == 1
    assert early.types() == ["task_progress", "task_progress"]


def test_clients_connecting_after_claim_are_controlled() -> None:
    broker = MessageBroker()
    broker.claim("ctx-1")
    late = RecordingClient()
    assert broker.connect(late).controlled is True


def test_release_clears_control_but_not_delivery() -> None:
    broker = MessageBroker()
    broker.claim("ctx-1")
    broker.release("other")
    assert broker.controller == "ctx-1"

    broker.release("ctx-1")
    assert broker.controller is None
    late = RecordingClient()
    assert broker.connect(late).controlled is False
    assert broker.broadcast(TaskProgress(task_id="t1", progress=5)) == 1
    assert late.types() == ["task_progress"]


def test_disconnect_is_idempotent_and_stops_delivery() -> None:
    broker = MessageBroker()
    broker.claim("ctx-1")
    client = RecordingClient()
    handle = broker.connect(client)

    handle()
    handle.disconnect()
    assert broker.clients() == []
    assert broker.broadcast(TaskProgress(task_id="t1", progress=5)) == 0
    assert client.received == []


def test_failing_callback_does_not_block_others() -> None:
    broker = MessageBroker()
    broker.claim("ctx-1")

    def explode(_message) -> None:
        raise RuntimeError("ui gone")

    ok = RecordingClient()
    broker.connect(explode)
    broker.connect(ok)

    assert broker.broadcast(TaskProgress(task_id="t1", progress=5)) == 1
    assert ok.types() == ["task_progress"]


def test_callback_may_disconnect_during_broadcast() -> None:
    broker = MessageBroker()
    broker.claim("ctx-1")
    seen: list[str] = []
    handles = []

    def first(message) -> None:
        seen.append("first")
        handles[1].disconnect()

    def second(message) -> None:
        seen.append("second")

    handles.append(broker.connect(first))
    handles.append(broker.connect(second))

    broker.broadcast(TaskProgress(task_id="t1", progress=5))
    assert seen == ["first"]


def test_post_without_a_bound_context_is_dropped() -> None:
    broker = MessageBroker()
    assert broker.post(CancelTask(task_id="t1")) is False

    inbox: list = []
    broker.bind_context(inbox.append)
    assert broker.post(CancelTask(task_id="t1")) is True
    assert inbox == [CancelTask(task_id="t1")]
