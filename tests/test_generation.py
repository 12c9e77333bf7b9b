from __future__ import annotations

import asyncio

import pytest
from tree_chat.errors import GenerationError, NodeNotFoundError
from tree_chat.generation import GenerationController, GenerationState, GenerationUpdate
from tree_chat.registry import ModelRegistry
from tree_chat.storage import InMemoryRecordStore
from tree_chat.store import ConversationTreeStore

from factories import ScriptedTransport, StreamScript, make_model, make_node, make_session, wait_for


async def _services(
    transport: ScriptedTransport, *nodes, records: InMemoryRecordStore | None = None
) -> tuple[GenerationController, ConversationTreeStore]:
    records = records if records is not None else InMemoryRecordStore()
    registry = ModelRegistry(records)
    await registry.create_model(make_model("m1"))
    store = ConversationTreeStore(records)
    await store.create_session(
        make_session(
            [
                make_node("S", None, kind="system", user="Be brief."),
                make_node("n1", "S", user="hello", assistant="previous"),
                *nodes,
            ]
        )
    )
    return GenerationController(store, registry, transport), store


@pytest.mark.asyncio
async def test_completed_generation_writes_reply() -> None:
    transport = ScriptedTransport(StreamScript(["Hi", " there"]))
    controller, store = await _services(transport)

    generation = await controller.start("s1", "n1")
    assert store.get_node("s1", "n1").is_streaming is True
    assert await generation.wait() is GenerationState.COMPLETED

    node = store.get_node("s1", "n1")
    assert node.assistant_message == "Hi there"
    assert node.is_streaming is False
    assert node.error is None
    assert controller.partial_text("n1") is None
    assert controller.active_node_ids() == set()


@pytest.mark.asyncio
async def test_request_carries_context_and_node_settings() -> None:
    transport = ScriptedTransport(StreamScript(["ok"]))
    controller, _ = await _services(
        transport, make_node("n2", "n1", user="follow-up", temperature=0.1, max_tokens=99)
    )

    await (await controller.start("s1", "n2")).wait()

    request = transport.requests[0]
    assert [(m.role, m.content) for m in request.messages] == [
        ("system", "Be brief."),
        ("user", "hello"),
        ("assistant", "previous"),
        ("user", "follow-up"),
    ]
    assert request.model_name == "m1-remote"
    assert request.temperature == 0.1
    assert request.max_tokens == 99


@pytest.mark.asyncio
async def test_partial_text_is_a_side_channel() -> None:
    hold = asyncio.Event()
    transport = ScriptedTransport(StreamScript(["par", "tial"], hold=hold))
    controller, store = await _services(transport)

    generation = await controller.start("s1", "n1")
    await wait_for(lambda: controller.partial_text("n1") == "partial")

    assert controller.buffers() == {"n1": "partial"}
    assert store.get_node("s1", "n1").assistant_message == "previous"
    assert controller.state("n1") is GenerationState.STREAMING

    hold.set()
    await generation.wait()
    assert store.get_node("s1", "n1").assistant_message == "partial"


@pytest.mark.asyncio
async def test_superseded_generation_never_lands() -> None:
    stale_hold = asyncio.Event()
    transport = ScriptedTransport(
        StreamScript(["stale"], hold=stale_hold),
        StreamScript(["fresh"]),
    )
    controller, store = await _services(transport)

    first = await controller.start("s1", "n1")
    await wait_for(lambda: controller.partial_text("n1") == "stale")

    second = await controller.start("s1", "n1")
    assert first.state is GenerationState.CANCELLED
    assert first.cancel_event.is_set()

    assert await second.wait() is GenerationState.COMPLETED
    stale_hold.set()
    await first.wait()
    await asyncio.sleep(0)

    node = store.get_node("s1", "n1")
    assert node.assistant_message == "fresh"
    assert node.is_streaming is False
    assert controller.state("n1") is GenerationState.COMPLETED


@pytest.mark.asyncio
async def test_cancel_keeps_previous_reply() -> None:
    transport = ScriptedTransport(StreamScript(["draft"], hold=asyncio.Event()))
    controller, store = await _services(transport)

    generation = await controller.start("s1", "n1")
    await wait_for(lambda: controller.partial_text("n1") == "draft")

    assert await controller.cancel("n1") is True
    assert generation.state is GenerationState.CANCELLED
    node = store.get_node("s1", "n1")
    assert node.assistant_message == "previous"
    assert node.is_streaming is False
    assert controller.partial_text("n1") is None
    assert await controller.cancel("n1") is False


@pytest.mark.asyncio
async def test_failure_records_error_and_keeps_reply() -> None:
    transport = ScriptedTransport(
        StreamScript(["half"], error=GenerationError("API request failed: 500 boom"))
    )
    controller, store = await _services(transport)

    generation = await controller.start("s1", "n1")
    assert await generation.wait() is GenerationState.FAILED

    node = store.get_node("s1", "n1")
    assert node.error == "API request failed: 500 boom"
    assert node.assistant_message == "previous"
    assert node.is_streaming is False
    assert controller.partial_text("n1") is None


@pytest.mark.asyncio
async def test_unexpected_transport_exception_fails_attempt() -> None:
    transport = ScriptedTransport(StreamScript(error=RuntimeError("socket closed")))
    controller, store = await _services(transport)

    generation = await controller.start("s1", "n1")
    assert await generation.wait() is GenerationState.FAILED
    assert "socket closed" in store.get_node("s1", "n1").error


@pytest.mark.asyncio
async def test_retry_clears_previous_error() -> None:
    transport = ScriptedTransport(
        StreamScript(error=GenerationError("API request failed: 503")),
        StreamScript(["recovered"]),
    )
    controller, store = await _services(transport)

    await (await controller.start("s1", "n1")).wait()
    assert store.get_node("s1", "n1").error is not None

    await (await controller.start("s1", "n1")).wait()
    node = store.get_node("s1", "n1")
    assert node.error is None
    assert node.assistant_message == "recovered"


@pytest.mark.asyncio
async def test_missing_model_fails_without_request() -> None:
    transport = ScriptedTransport(StreamScript(["never"]))
    controller, store = await _services(transport, make_node("n2", "n1", model_id="deleted"))

    generation = await controller.start("s1", "n2")

    assert generation.state is GenerationState.FAILED
    assert await generation.wait() is GenerationState.FAILED
    assert transport.requests == []
    node = store.get_node("s1", "n2")
    assert node.error == "Model 'deleted' is not configured"
    assert node.is_streaming is False


@pytest.mark.asyncio
async def test_system_node_cannot_generate() -> None:
    controller, _ = await _services(ScriptedTransport())
    with pytest.raises(ValueError, match="System nodes"):
        await controller.start("s1", "S")


@pytest.mark.asyncio
async def test_unknown_node_raises() -> None:
    controller, _ = await _services(ScriptedTransport())
    with pytest.raises(NodeNotFoundError):
        await controller.start("s1", "ghost")


@pytest.mark.asyncio
async def test_different_nodes_stream_concurrently() -> None:
    hold = asyncio.Event()
    transport = ScriptedTransport(
        StreamScript(["a"], hold=hold),
        StreamScript(["b"], hold=hold),
    )
    controller, store = await _services(transport, make_node("n2", "S", user="second"))

    first = await controller.start("s1", "n1")
    second = await controller.start("s1", "n2")
    await wait_for(lambda: controller.buffers() == {"n1": "a", "n2": "b"})
    assert controller.active_node_ids() == {"n1", "n2"}

    hold.set()
    await asyncio.gather(first.wait(), second.wait())
    assert store.get_node("s1", "n1").assistant_message == "a"
    assert store.get_node("s1", "n2").assistant_message == "b"


@pytest.mark.asyncio
async def test_node_deleted_mid_stream_is_discarded() -> None:
    hold = asyncio.Event()
    transport = ScriptedTransport(StreamScript(["x"], hold=hold))
    controller, store = await _services(transport)

    generation = await controller.start("s1", "n1")
    await wait_for(lambda: controller.partial_text("n1") == "x")
    await store.delete_node("s1", "n1")
    hold.set()

    assert await generation.wait() is GenerationState.CANCELLED
    assert store.get_session("s1").find_node("n1") is None


@pytest.mark.asyncio
async def test_listeners_receive_chunks_and_final_state() -> None:
    transport = ScriptedTransport(StreamScript(["one", "two"]))
    controller, _ = await _services(transport)
    updates: list[GenerationUpdate] = []
    unsubscribe = controller.subscribe(updates.append)

    await (await controller.start("s1", "n1")).wait()
    unsubscribe()

    assert [u.chunk for u in updates if u.chunk] == ["one", "two"]
    assert updates[-1].state is GenerationState.COMPLETED
    assert updates[-1].text == "onetwo"


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_generation() -> None:
    transport = ScriptedTransport(StreamScript(["ok"]))
    controller, store = await _services(transport)

    def explode(update: GenerationUpdate) -> None:
        msg = "listener bug"
        raise RuntimeError(msg)

    controller.subscribe(explode)
    await (await controller.start("s1", "n1")).wait()
    assert store.get_node("s1", "n1").assistant_message == "ok"


@pytest.mark.asyncio
async def test_shutdown_cancels_everything() -> None:
    transport = ScriptedTransport(
        StreamScript(hold=asyncio.Event()),
        StreamScript(hold=asyncio.Event()),
    )
    controller, store = await _services(transport, make_node("n2", "S"))
    first = await controller.start("s1", "n1")
    second = await controller.start("s1", "n2")

    await controller.shutdown()

    assert first.state is GenerationState.CANCELLED
    assert second.state is GenerationState.CANCELLED
    assert controller.active_node_ids() == set()
    assert not any(node.is_streaming for node in store.get_session("s1").nodes)


class SuspendingRecordStore(InMemoryRecordStore):
    """Record store whose session writes yield to the event loop."""

    def __init__(self) -> None:
        super().__init__()
        self.session_writes = 0

    async def put_session(self, session) -> None:
        self.session_writes += 1
        await asyncio.sleep(0)
        await super().put_session(session)


@pytest.mark.asyncio
async def test_edit_during_write_back_keeps_reply() -> None:
    hold = asyncio.Event()
    records = SuspendingRecordStore()
    transport = ScriptedTransport(StreamScript(["fresh"], hold=hold))
    controller, store = await _services(transport, records=records)

    generation = await controller.start("s1", "n1")
    await wait_for(lambda: controller.partial_text("n1") == "fresh")
    writes = records.session_writes
    hold.set()
    await wait_for(lambda: records.session_writes > writes)
    await store.modify_node("s1", "n1", user_message="edited")

    assert await generation.wait() is GenerationState.COMPLETED
    node = store.get_node("s1", "n1")
    assert node.user_message == "edited"
    assert node.assistant_message == "fresh"
    assert node.is_streaming is False


@pytest.mark.asyncio
async def test_reply_lands_while_edit_is_being_saved() -> None:
    hold = asyncio.Event()
    records = SuspendingRecordStore()
    transport = ScriptedTransport(StreamScript(["fresh"], hold=hold))
    controller, store = await _services(transport, records=records)

    generation = await controller.start("s1", "n1")
    await wait_for(lambda: controller.partial_text("n1") == "fresh")
    writes = records.session_writes
    editing = asyncio.create_task(store.modify_node("s1", "n1", user_message="edited"))
    await wait_for(lambda: records.session_writes > writes)
    hold.set()

    await editing
    assert await generation.wait() is GenerationState.COMPLETED
    node = store.get_node("s1", "n1")
    assert node.user_message == "edited"
    assert node.assistant_message == "fresh"
    assert node.is_streaming is False


@pytest.mark.asyncio
async def test_node_deleted_during_write_back_ends_cancelled() -> None:
    hold = asyncio.Event()
    records = SuspendingRecordStore()
    transport = ScriptedTransport(StreamScript(["late"], hold=hold))
    controller, store = await _services(transport, records=records)

    generation = await controller.start("s1", "n1")
    await wait_for(lambda: controller.partial_text("n1") == "late")
    deleting = asyncio.create_task(store.delete_node("s1", "n1"))
    await wait_for(lambda: records.session_writes > 2)
    hold.set()

    assert await generation.wait() is GenerationState.CANCELLED
    assert await deleting == {"n1"}
    assert store.get_session("s1").find_node("n1") is None


@pytest.mark.asyncio
async def test_forget_drops_finished_attempts() -> None:
    hold = asyncio.Event()
    transport = ScriptedTransport(StreamScript(["done"]), StreamScript(hold=hold))
    controller, _ = await _services(transport, make_node("n2", "S"))
    await (await controller.start("s1", "n1")).wait()
    running = await controller.start("s1", "n2")

    controller.forget(["n1", "n2", "unknown"])

    assert controller.get("n1") is None
    assert controller.state("n1") is GenerationState.IDLE
    assert controller.get("n2") is running
    assert set(controller._generations) == {"n2"}
    assert set(controller._locks) == {"n2"}

    await controller.cancel("n2")
    controller.forget(["n2"])
    assert controller._generations == {}
    assert controller._locks == {}
    assert controller.buffers() == {}
