import pytest

from arborflow import Workflow, create_checkpoint, restore_checkpoint
from arborflow.errors import (
    CheckpointNotFoundError,
    DuplicateCheckpointError,
    RestoreLimitExceededError,
)
from arborflow.persistence import InMemoryCheckpointStore
from arborflow.restore import rewind_checkpoint


@pytest.mark.asyncio
async def test_restore_checkpoint_calls_hook_once_with_marker_node():
    calls = []

    def on_restore(node, feedback):
        calls.append((node, feedback))

    async def flow():
        marker = await create_checkpoint(label="L")
        await restore_checkpoint("L", {"x": 1})
        return marker

    marker = await Workflow("wf", flow).run(sink=None, on_restore_checkpoint=on_restore)

    assert marker.label == "L"
    assert marker.feedback is None
    assert len(calls) == 1
    node, feedback = calls[0]
    assert node is marker.node
    assert node.component_name == "CheckpointMarker"
    assert node.metadata == {"label": "L", "max_restores": 3}
    assert feedback == {"x": 1}


@pytest.mark.asyncio
async def test_marker_restore_uses_its_node():
    calls = []

    async def on_restore(node, feedback):
        calls.append((node.id, feedback))

    async def flow():
        marker = await create_checkpoint()
        await marker.restore("again")
        return marker

    marker = await Workflow("wf", flow).run(sink=None, on_restore_checkpoint=on_restore)
    assert marker.label == "checkpoint-marker-1"
    assert calls == [(marker.node.id, "again")]


@pytest.mark.asyncio
async def test_unknown_label_raises_without_calling_hook():
    calls = []

    async def flow():
        await restore_checkpoint("unknown", {})

    with pytest.raises(CheckpointNotFoundError):
        await Workflow("wf", flow).run(
            sink=None, on_restore_checkpoint=lambda node, feedback: calls.append(node)
        )
    assert calls == []


@pytest.mark.asyncio
async def test_duplicate_label_raises():
    async def flow():
        await create_checkpoint(label="same")
        await create_checkpoint(label="same")

    with pytest.raises(DuplicateCheckpointError):
        await Workflow("wf", flow).run(sink=None)


@pytest.mark.asyncio
async def test_default_restore_hook_warns(caplog):
    async def flow():
        marker = await create_checkpoint(label="L")
        await marker.restore(None)

    await Workflow("wf", flow).run(sink=None)
    assert "not supported without a restore handler" in caplog.text


@pytest.mark.asyncio
async def test_rewind_and_replay_delivers_feedback():
    store = InMemoryCheckpointStore()
    drafts = []
    restores = []

    async def draft(topic):
        drafts.append(topic)
        return f"draft about {topic}"

    async def flow(topic):
        from arborflow import component

        text = await component(draft)(topic=topic)
        marker = await create_checkpoint(label="review", max_restores=2)
        if marker.feedback is None:
            await marker.restore({"approved": True})
            return "paused"
        return f"{text} (approved={marker.feedback['approved']}, restores={marker.restore_count})"

    wf = Workflow("wf", flow)
    first = await wf.run(
        {"topic": "tides"},
        sink=store,
        execution_id="run-1",
        on_restore_checkpoint=lambda node, feedback: restores.append((node.id, feedback)),
    )
    assert first == "paused"

    snapshot = await store.get_execution("run-1")
    node_id, feedback = restores[0]
    checkpoint = rewind_checkpoint(snapshot, node_id, feedback)

    second = await wf.run(
        {"topic": "tides"}, sink=store, execution_id="run-2", checkpoint=checkpoint
    )
    assert second == "draft about tides (approved=True, restores=1)"
    assert drafts == ["tides"]

    checkpoint = rewind_checkpoint(await store.get_execution("run-2"), node_id, "more")
    with pytest.raises(RestoreLimitExceededError):
        await wf.run({"topic": "tides"}, sink=store, checkpoint=checkpoint)
