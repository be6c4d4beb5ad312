from __future__ import annotations

import asyncio

import pytest
from conftest import FakeChatClient, sse

from chatline.config import DeliveryMode, PartialReplyPolicy
from chatline.conversation import StoreChange
from chatline.errors import ServiceError
from chatline.session import AssistantReply, Dispatcher, RequestOptions, SessionController


def _controller(client: FakeChatClient, **kwargs) -> SessionController:
    return SessionController(Dispatcher(client), **kwargs)


def _contents(controller: SessionController) -> list[tuple[str, str]]:
    return [(turn.role, turn.content) for turn in controller.store]


class _GatedDispatcher:
    """Ignores the stop signal and replies once released, like a transport that cannot abort."""

    def __init__(self) -> None:
        self.gates: list[asyncio.Event] = []
        self.sinks = []

    async def dispatch(self, mode, message, history, sink, stop) -> None:
        gate = asyncio.Event()
        self.gates.append(gate)
        self.sinks.append(sink)
        await gate.wait()
        sink.complete(AssistantReply(content=f"reply to {message}"))


@pytest.mark.asyncio
async def test_streamed_deltas_accumulate_into_one_turn() -> None:
    client = FakeChatClient(fragments=sse("Hel", "lo, ", "world"))
    controller = _controller(client)

    assert await controller.send("  greet me  ")

    assert _contents(controller) == [("user", "greet me"), ("assistant", "Hello, world")]
    assert controller.store.turns()[-1].finalized
    assert controller.busy is False
    assert controller.pending_turn_id is None
    assert controller.error is None


@pytest.mark.asyncio
async def test_streamed_updates_are_cumulative() -> None:
    client = FakeChatClient(fragments=sse("Hel", "lo, ", "world"))
    controller = _controller(client)
    updates: list[str] = []
    controller.store.subscribe(lambda change: change.kind == "update" and updates.append(change.turn.content))

    await controller.send("hi")

    assert updates == ["Hel", "Hello, ", "Hello, world"]


@pytest.mark.asyncio
async def test_malformed_stream_line_is_skipped() -> None:
    body = 'data: {"content":"a"}\n\ndata: {broken\n\ndata: {"content":"b"}\n\ndata: [DONE]\n\n'
    controller = _controller(FakeChatClient(fragments=[body]))

    await controller.send("hi")

    assert _contents(controller)[-1] == ("assistant", "ab")
    assert controller.error is None


@pytest.mark.asyncio
async def test_stream_request_carries_system_prompt_history_and_message() -> None:
    client = FakeChatClient(fragments=sse("one"))
    options = RequestOptions(system_prompt="be brief", model="m")
    controller = SessionController(Dispatcher(client, options), mode=DeliveryMode.STREAM)

    await controller.send("first")
    await controller.send("second")

    request = client.requests[-1]
    assert [(m.role, m.content) for m in request.messages] == [
        ("system", "be brief"),
        ("user", "first"),
        ("assistant", "one"),
        ("user", "second"),
    ]
    assert request.model == "m"
    assert request.stream is True


@pytest.mark.asyncio
async def test_direct_mode_appends_finalized_reply_with_service_id() -> None:
    client = FakeChatClient(reply="hello there")
    controller = _controller(client, mode=DeliveryMode.DIRECT)

    await controller.send("hi")

    reply = controller.store.turns()[-1]
    assert (reply.role, reply.content, reply.id) == ("assistant", "hello there", "reply-1")
    assert reply.finalized
    assert [(m.role, m.content) for m in client.requests[0].conversation] == []


@pytest.mark.asyncio
async def test_agent_mode_appends_answer_with_steps_in_one_change() -> None:
    client = FakeChatClient(
        agent={
            "id": "run-7",
            "final_answer": "It is sunny.",
            "steps": [
                {"step_type": "thinking", "content": "need weather"},
                {"step_type": "tool_call", "content": "", "tool_name": "weather", "tool_input": "{\"city\":\"Oslo\"}"},
                {"step_type": "tool_result", "content": "", "tool_name": "weather", "tool_output": "sunny"},
                {"step_type": "final_answer", "content": "It is sunny."},
            ],
            "iterations": 2,
        }
    )
    controller = _controller(client, mode=DeliveryMode.AGENT)
    changes: list[StoreChange] = []
    controller.store.subscribe(changes.append)

    await controller.send("weather in Oslo?")

    answer = controller.store.turns()[-1]
    assert answer.content == "It is sunny."
    assert [step.step_type for step in answer.steps] == ["thinking", "tool_call", "tool_result", "final_answer"]
    assert answer.steps[1].tool_name == "weather"
    assert [change.kind for change in changes] == ["append", "append"]
    assert all(change.turn.finalized for change in changes)


@pytest.mark.asyncio
async def test_mode_override_on_submit() -> None:
    client = FakeChatClient(reply="direct")
    controller = _controller(client, mode=DeliveryMode.STREAM)

    await controller.send("hi", mode=DeliveryMode.DIRECT)

    assert _contents(controller)[-1] == ("assistant", "direct")


@pytest.mark.asyncio
async def test_blank_text_is_rejected() -> None:
    controller = _controller(FakeChatClient())

    assert controller.submit("   \n ") is None
    assert len(controller.store) == 0
    assert controller.busy is False


@pytest.mark.asyncio
async def test_submissions_while_busy_are_ignored() -> None:
    client = FakeChatClient(reply="first answer")
    client.gate = asyncio.Event()
    controller = _controller(client, mode=DeliveryMode.DIRECT)

    task = controller.submit("one")
    assert task is not None
    assert controller.busy
    assert controller.submit("two") is None
    assert controller.submit("three") is None
    client.gate.set()
    await task

    assert _contents(controller) == [("user", "one"), ("assistant", "first answer")]
    assert len(client.requests) == 1
    assert controller.busy is False


@pytest.mark.asyncio
async def test_superseded_operation_never_touches_store() -> None:
    dispatcher = _GatedDispatcher()
    controller = SessionController(dispatcher)

    first = controller.submit("one")
    await asyncio.sleep(0)
    controller.reset()
    second = controller.submit("two")
    await asyncio.sleep(0)
    dispatcher.gates[1].set()
    await second
    dispatcher.gates[0].set()
    await first

    assert _contents(controller) == [("user", "two"), ("assistant", "reply to two")]
    assert controller.error is None


@pytest.mark.asyncio
async def test_late_delta_after_cancel_is_discarded() -> None:
    dispatcher = _GatedDispatcher()
    controller = SessionController(dispatcher)
    task = controller.submit("one")
    await asyncio.sleep(0)
    sink = dispatcher.sinks[0]

    sink.begin_stream()
    controller.cancel()
    sink.push_delta("late")
    sink.finish_stream()
    dispatcher.gates[0].set()
    await task

    assert _contents(controller) == [("user", "one")]
    assert controller.busy is False


@pytest.mark.asyncio
async def test_cancel_before_content_is_silent_and_removes_pending_turn() -> None:
    client = FakeChatClient(fragments=sse("never"))
    client.gate = asyncio.Event()
    controller = _controller(client)

    task = controller.submit("hi")
    await asyncio.sleep(0)
    controller.cancel()
    await task

    assert _contents(controller) == [("user", "hi")]
    assert controller.error is None
    assert controller.busy is False
    assert controller.active_token is None


@pytest.mark.asyncio
async def test_cancel_mid_stream_discards_partial_reply_by_default() -> None:
    client = FakeChatClient(fragments=sse("Hel", "lo"))
    controller = _controller(client)
    seen = asyncio.Event()
    controller.store.subscribe(lambda change: change.kind == "update" and seen.set())

    task = controller.submit("hi")
    await seen.wait()
    controller.cancel()
    await task

    assert _contents(controller) == [("user", "hi")]
    assert controller.error is None


@pytest.mark.asyncio
async def test_transport_error_surfaces_message_and_drops_pending_turn() -> None:
    client = FakeChatClient(error=ServiceError("HTTP error: 500", status_code=500))
    controller = _controller(client)

    await controller.send("hi")

    assert controller.error == "HTTP error: 500"
    assert _contents(controller) == [("user", "hi")]
    assert controller.busy is False


@pytest.mark.asyncio
async def test_partial_reply_is_discarded_on_error_by_default() -> None:
    client = FakeChatClient(fragments=sse("Hel", "lo"), stream_error_after=5)
    controller = _controller(client)

    await controller.send("hi")

    assert controller.error == "Stream interrupted: connection reset"
    assert _contents(controller) == [("user", "hi")]


@pytest.mark.asyncio
async def test_partial_reply_is_kept_on_error_when_configured() -> None:
    client = FakeChatClient(fragments=sse("Hel", "lo"), stream_error_after=5)
    controller = _controller(client, partial_policy=PartialReplyPolicy.KEEP)

    await controller.send("hi")

    assert controller.error == "Stream interrupted: connection reset"
    assert _contents(controller) == [("user", "hi"), ("assistant", "Hel")]
    assert controller.store.turns()[-1].finalized


@pytest.mark.asyncio
async def test_empty_pending_turn_is_removed_on_error_even_when_keeping_partials() -> None:
    client = FakeChatClient(fragments=sse("Hel"), stream_error_after=0)
    controller = _controller(client, partial_policy=PartialReplyPolicy.KEEP)

    await controller.send("hi")

    assert _contents(controller) == [("user", "hi")]
    assert controller.error is not None


@pytest.mark.asyncio
async def test_error_payload_in_stream_fails_operation() -> None:
    body = 'data: {"content":"par"}\n\nevent: error\ndata: {"error":"rate limited"}\n\n'
    controller = _controller(FakeChatClient(fragments=[body]))

    await controller.send("hi")

    assert controller.error == "rate limited"
    assert _contents(controller) == [("user", "hi")]


@pytest.mark.asyncio
async def test_unexpected_exception_is_surfaced_not_raised() -> None:
    controller = _controller(FakeChatClient(error=RuntimeError("kaboom")), mode=DeliveryMode.DIRECT)

    await controller.send("hi")

    assert controller.error == "kaboom"


@pytest.mark.asyncio
async def test_error_stays_until_dismissed_or_next_submission() -> None:
    client = FakeChatClient(error=ServiceError("down"), reply="back")
    controller = _controller(client, mode=DeliveryMode.DIRECT)
    await controller.send("one")
    assert controller.error == "down"

    controller.dismiss_error()
    assert controller.error is None
    assert len(controller.store) == 1

    await controller.send("two")
    assert controller.error == "down"
    client.error = None
    task = controller.submit("three")
    assert controller.error is None
    await task
    assert _contents(controller)[-1] == ("assistant", "back")


@pytest.mark.asyncio
async def test_reset_clears_store_error_and_busy() -> None:
    controller = _controller(FakeChatClient(error=ServiceError("down")), mode=DeliveryMode.DIRECT)
    await controller.send("one")

    controller.reset()

    assert len(controller.store) == 0
    assert controller.error is None
    assert controller.busy is False


@pytest.mark.asyncio
async def test_close_cancels_outstanding_operation_and_rejects_submissions() -> None:
    client = FakeChatClient(fragments=sse("late"))
    client.gate = asyncio.Event()
    controller = _controller(client)
    controller.submit("hi")
    await asyncio.sleep(0)
    token = controller.active_token

    await controller.aclose()
    client.gate.set()
    await asyncio.sleep(0)

    assert token is not None and token.cancelled
    assert controller.closed
    assert controller.submit("again") is None
    assert _contents(controller) == [("user", "hi")]


@pytest.mark.asyncio
async def test_operation_cancelled_from_outside_settles_pending_turn() -> None:
    client = FakeChatClient(fragments=sse("late"))
    client.gate = asyncio.Event()
    controller = _controller(client)

    sending = asyncio.ensure_future(controller.send("hi"))
    await asyncio.sleep(0.01)
    token = controller.active_token
    assert controller.pending_turn_id is not None

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(sending, 0.05)

    assert _contents(controller) == [("user", "hi")]
    assert controller.pending_turn_id is None
    assert controller.busy is False
    assert controller.error is None
    assert token is not None and token.cancelled


@pytest.mark.asyncio
async def test_operation_cancelled_before_it_starts_releases_controller() -> None:
    controller = _controller(FakeChatClient(fragments=sse("never")))

    task = controller.submit("hi")
    token = controller.active_token
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0)

    assert controller.busy is False
    assert controller.active_token is None
    assert token is not None and token.cancelled
    assert _contents(controller) == [("user", "hi")]
