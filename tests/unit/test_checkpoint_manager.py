import asyncio

import pytest

from arborflow.checkpoint import CheckpointManager
from arborflow.contracts import ComponentOptions


class RecordingSink:
    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.writes = []

    async def write(self, snapshot) -> None:
        await asyncio.sleep(self.delay)
        self.writes.append(snapshot)


class FailingSink:
    def __init__(self) -> None:
        self.calls = 0

    async def write(self, snapshot) -> None:
        self.calls += 1
        raise RuntimeError("sink down")


def test_call_index_counts_per_parent_name_and_content():
    manager = CheckpointManager()
    assert manager.get_next_call_index("Root", "Leaf", {"n": 1}) == 0
    assert manager.get_next_call_index("Root", "Leaf", {"n": 1}) == 1
    assert manager.get_next_call_index("Root", "Leaf", {"n": 2}) == 0
    assert manager.get_next_call_index("Other", "Leaf", {"n": 1}) == 0


def test_tree_structure_and_sequence():
    manager = CheckpointManager()
    root = manager.add_node("wf:00000000:0", "wf", {})
    child = manager.add_node("wf-leaf:11111111:0", "leaf", {"n": 1}, parent=root)

    assert manager.root is root
    assert root.child_ids == [child.id]
    assert child.parent_id == root.id
    assert (root.sequence, child.sequence) == (1, 2)
    assert manager.node_sequence_number == 2
    assert manager.get_node(child.id) is child


@pytest.mark.asyncio
async def test_writes_are_coalesced_and_flushed():
    sink = RecordingSink(delay=0.01)
    manager = CheckpointManager(sink, workflow_name="wf", execution_id="exec-1")
    root = manager.add_node("wf:00000000:0", "wf", {})
    child = manager.add_node("wf-leaf:11111111:0", "leaf", {}, parent=root)
    manager.complete_node(child, "done")
    manager.complete_node(root, ["done"])

    await manager.wait_for_pending_updates()

    assert len(sink.writes) == 1
    snapshot = sink.writes[-1]
    assert snapshot.execution_id == "exec-1"
    assert snapshot.workflow_name == "wf"
    assert snapshot.steps == 2
    assert snapshot.root["completed"] is True
    assert snapshot.root["children"][0]["output"] == "done"


@pytest.mark.asyncio
async def test_wait_covers_updates_made_during_a_write():
    sink = RecordingSink(delay=0.02)
    manager = CheckpointManager(sink)
    root = manager.add_node("wf:00000000:0", "wf", {})
    await asyncio.sleep(0.005)  # first write is now in flight
    manager.complete_node(root, "late")

    await manager.wait_for_pending_updates()

    assert [s.version for s in sink.writes] == [1, 2]
    assert sink.writes[0].root["completed"] is False
    assert sink.writes[-1].root["output"] == "late"


@pytest.mark.asyncio
async def test_sink_failures_are_logged_not_raised(caplog):
    sink = FailingSink()
    manager = CheckpointManager(sink, execution_id="exec-2")
    manager.add_node("wf:00000000:0", "wf", {})

    await manager.wait_for_pending_updates()

    assert sink.calls == 1
    assert "Failed to save checkpoint version 1 for exec-2" in caplog.text
    assert manager.version == 2


@pytest.mark.asyncio
async def test_disabled_manager_never_writes():
    sink = RecordingSink()
    manager = CheckpointManager(sink, enabled=False)
    manager.add_node("wf:00000000:0", "wf", {})
    manager.write()
    await manager.wait_for_pending_updates()
    assert sink.writes == []


def test_secret_props_are_masked_only_in_snapshots():
    manager = CheckpointManager()
    options = ComponentOptions(secret_props=["credentials.api_key"])
    props = {"credentials": {"api_key": "sk-1234567890"}, "query": "hi"}
    root = manager.add_node("wf:00000000:0", "wf", props, options=options)
    manager.complete_node(root, "used sk-1234567890 to fetch")

    snapshot = manager.snapshot()

    assert snapshot.root["props"] == {
        "credentials": {"api_key": "[secret]"},
        "query": "hi",
    }
    assert snapshot.root["output"] == "used [secret] to fetch"
    assert "sk-1234567890" not in snapshot.to_json()
    assert root.props["credentials"]["api_key"] == "sk-1234567890"
    assert root.output == "used sk-1234567890 to fetch"


def test_secret_outputs_redact_output_and_scrub_descendants():
    manager = CheckpointManager()
    root = manager.add_node("wf:00000000:0", "wf", {})
    token_node = manager.add_node(
        "wf-token:11111111:0",
        "token",
        {},
        parent=root,
        options=ComponentOptions(secret_outputs=True),
    )
    manager.complete_node(token_node, {"token": "tok-abcdefgh"})
    user = manager.add_node(
        "wf-use:22222222:0", "use", {"auth": "Bearer tok-abcdefgh"}, parent=root
    )
    manager.complete_node(user, "ok")

    snapshot = manager.snapshot()
    token_data, user_data = snapshot.root["children"]
    assert token_data["output"] == "[secret]"
    assert user_data["props"] == {"auth": "Bearer [secret]"}


def test_short_secrets_only_match_exactly():
    manager = CheckpointManager()
    root = manager.add_node(
        "wf:00000000:0",
        "wf",
        {"pin": "4321", "note": "code 4321"},
        options=ComponentOptions(secret_props=["pin"]),
    )
    manager.complete_node(root, "4321")

    snapshot = manager.snapshot()
    assert snapshot.root["props"] == {"pin": "[secret]", "note": "code 4321"}
    assert snapshot.root["output"] == "[secret]"


def test_failed_node_records_error():
    manager = CheckpointManager()
    root = manager.add_node("wf:00000000:0", "wf", {})
    try:
        raise ValueError("bad input")
    except ValueError as error:
        manager.fail_node(root, error)

    assert root.error["name"] == "ValueError"
    assert root.error["message"] == "bad input"
    assert "Traceback" in root.error["stack"]
    assert root.completed is False
    assert root.completed_at is not None


def test_add_metadata_merges():
    manager = CheckpointManager()
    root = manager.add_node(
        "wf:00000000:0", "wf", {}, options=ComponentOptions(metadata={"a": 1})
    )
    manager.add_metadata(root, {"b": 2})
    assert root.metadata == {"a": 1, "b": 2}


def _previous_run() -> CheckpointManager:
    previous = CheckpointManager()
    root = previous.add_node("wf:aaaa0000:0", "wf", {})
    child = previous.add_node("wf-leaf:bbbb1111:0", "leaf", {"n": 1}, parent=root)
    grandchild = previous.add_node(
        "wf-leaf-sub:cccc2222:0", "sub", {}, parent=child
    )
    previous.complete_node(grandchild, "sub")
    previous.complete_node(child, "leaf")
    previous.complete_node(root, "root")
    return previous


def test_replay_lookup_prefers_exact_id_and_consumes_nodes():
    manager = CheckpointManager(checkpoint=_previous_run().snapshot())

    node = manager.get_node_from_checkpoint("wf-leaf:bbbb1111:0")
    assert node is not None and node.output == "leaf"
    assert manager.get_node_from_checkpoint("wf-leaf:bbbb1111:0") is None


def test_replay_lookup_falls_back_to_path_and_content():
    manager = CheckpointManager(checkpoint=_previous_run().snapshot())
    node = manager.get_node_from_checkpoint("wf-leaf:bbbb1111:4")
    assert node is not None and node.id == "wf-leaf:bbbb1111:0"


def test_replay_lookup_falls_back_to_name_and_content():
    manager = CheckpointManager(checkpoint=_previous_run().root)
    node = manager.get_node_from_checkpoint("other-leaf:bbbb1111:0")
    assert node is not None and node.id == "wf-leaf:bbbb1111:0"
    assert manager.get_node_from_checkpoint("wf-leaf:ffffffff:0") is None


def test_add_cached_subtree_copies_completed_nodes():
    previous = _previous_run()
    manager = CheckpointManager(checkpoint=previous.snapshot())
    root = manager.add_node("wf:aaaa0000:0", "wf", {})
    cached = manager.get_node_from_checkpoint("wf-leaf:bbbb1111:0")

    copy = manager.add_cached_subtree(cached, "wf-leaf:bbbb1111:0", parent=root)

    assert copy is not None
    assert root.children == [copy]
    assert copy.output == "leaf" and copy.completed
    assert [child.component_name for child in copy.children] == ["sub"]
    assert copy.children[0].parent_id == copy.id
    assert manager.node_sequence_number == 3
