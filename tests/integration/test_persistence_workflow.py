import asyncio

import pytest

from arborflow import Workflow, component
from arborflow.persistence import InMemoryCheckpointStore, SQLiteCheckpointStore


@component
async def leaf(n: int) -> int:
    await asyncio.sleep(0.01 * n)
    return n * 2


async def tree():
    return [leaf(n=1), leaf(n=2), {"x": leaf(n=3)}]


@pytest.mark.asyncio
async def test_tree_is_complete_after_successful_run():
    store = InMemoryCheckpointStore(keep_history=True)

    result = await Workflow("Tree", tree, metadata={"team": "core"}).run(
        sink=store, execution_id="exec-1", metadata={"user": "u1"}
    )
    assert result == [2, 4, {"x": 6}]

    snapshot = await store.get_execution("exec-1")
    assert snapshot.workflow_name == "Tree"
    assert snapshot.steps == 4
    assert snapshot.completed_at is not None
    assert snapshot.root["metadata"] == {"team": "core", "user": "u1"}

    nodes = list(snapshot.root_node().walk())
    by_id = {node.id: node for node in nodes}
    assert len(by_id) == 4
    for node in nodes:
        assert node.started_at is not None
        assert node.completed_at is not None
        assert node.completed
    for node in nodes[1:]:
        parent = by_id[node.parent_id]
        assert parent.sequence < node.sequence
        assert parent.started_at <= node.started_at

    versions = [s.version for s in store.history]
    assert versions == sorted(versions)


@pytest.mark.asyncio
async def test_failed_run_is_still_flushed(tmp_path):
    store = SQLiteCheckpointStore(tmp_path / "checkpoints.db")

    @component
    async def explode():
        await asyncio.sleep(0)
        raise RuntimeError("kaboom")

    async def flow():
        await leaf(n=1)
        return await explode()

    with pytest.raises(RuntimeError):
        await Workflow("Failing", flow).run(sink=store, execution_id="exec-fail")

    snapshot = await store.get_execution("exec-fail")
    assert snapshot is not None
    assert snapshot.root["error"]["name"] == "RuntimeError"
    leaf_node, explode_node = snapshot.root["children"]
    assert leaf_node["completed"] is True
    assert explode_node["error"]["message"] == "kaboom"
    assert explode_node["completed_at"] is not None


@pytest.mark.asyncio
async def test_secret_props_never_reach_the_sink():
    store = InMemoryCheckpointStore(keep_history=True)
    secret = "sk-live-abcdef123456"

    @component(secret_props=["api_key"])
    async def call_api(api_key: str, query: str) -> str:
        await asyncio.sleep(0.01)
        return f"{query} answered with key {api_key}"

    async def flow():
        return await call_api(api_key=secret, query="q")

    result = await Workflow("Secrets", flow).run(sink=store, execution_id="exec-s")

    assert result == f"q answered with key {secret}"
    assert store.history
    for snapshot in store.history:
        assert secret not in snapshot.to_json()
    final = await store.get_execution("exec-s")
    call = final.root["children"][0]
    assert call["props"] == {"api_key": "[secret]", "query": "q"}
    assert call["output"] == "q answered with key [secret]"


@pytest.mark.asyncio
async def test_broken_sink_does_not_fail_the_run(caplog):
    class BrokenSink:
        async def write(self, snapshot):
            raise ConnectionError("unreachable")

    result = await Workflow("Tree", tree).run(sink=BrokenSink())
    assert result == [2, 4, {"x": 6}]
    assert "Failed to save checkpoint" in caplog.text
