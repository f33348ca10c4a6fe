import asyncio

import pytest

from arborflow.context import (
    ExecutionContext,
    get_current_context,
    has_current_context,
    use_context,
    with_context,
)
from arborflow.errors import MissingContextError


def test_extend_shadows_parent_without_mutating_it():
    parent = ExecutionContext({"a": 1})
    child = parent.extend({"a": 2, "b": 3})

    assert child.get("a") == 2
    assert child.get("b") == 3
    assert parent.get("a") == 1
    assert parent.get("b") is None
    assert "b" in child and "b" not in parent
    assert child.parent is parent
    assert parent.extend({}) is parent


def test_require_raises_for_missing_key():
    with pytest.raises(MissingContextError):
        ExecutionContext().require("client")


def test_with_context_sync_functions_compose():
    result = with_context(
        {"a": 1},
        lambda: with_context({"b": 2}, lambda: (use_context("a"), use_context("b"))),
    )
    assert result == (1, 2)
    assert not has_current_context()
    assert use_context("a", None) is None


@pytest.mark.asyncio
async def test_with_context_awaits_inside_extension():
    async def read():
        await asyncio.sleep(0)
        return use_context("client")

    assert await with_context({"client": "c"}, read) == "c"
    with pytest.raises(MissingContextError):
        use_context("client")


@pytest.mark.asyncio
async def test_concurrent_branches_see_their_own_context():
    async def worker(delay):
        await asyncio.sleep(delay)
        return use_context("key")

    async def branch(value, delay):
        return await with_context({"key": value}, worker, delay)

    results = await asyncio.gather(branch("a", 0.02), branch("b", 0), branch("c", 0.01))
    assert results == ["a", "b", "c"]


def test_get_current_context_defaults_to_empty():
    context = get_current_context()
    assert context.workflow_context is None
    assert context.current_node is None
