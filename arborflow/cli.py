"""Command line interface for inspecting persisted checkpoints."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import typer

from arborflow.config import load_config
from arborflow.persistence import CheckpointStore, get_sink

app = typer.Typer(help="CLI for arborflow workflow executions")

checkpoints_app = typer.Typer(help="Commands for inspecting checkpoints")
app.add_typer(checkpoints_app, name="checkpoints")


@app.callback()
def main(
    database_url: Optional[str] = typer.Option(
        None, "--database-url", help="Checkpoint store URL, overrides configuration"
    ),
) -> None:
    """arborflow CLI entry point."""
    config = load_config()
    logging.basicConfig(level=config.log_level.upper())
    if database_url:
        get_sink(database_url)


def _get_store() -> CheckpointStore:
    sink = get_sink()
    if sink is None or not isinstance(sink, CheckpointStore):
        typer.secho(
            "The configured checkpoint backend cannot be read back",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    return sink


def _print_node(node: Dict[str, Any], depth: int = 0) -> None:
    if node.get("error"):
        status = "FAILED"
    elif node.get("completed"):
        status = "COMPLETED"
    else:
        status = "RUNNING"
    typer.echo(f"{'  ' * depth}- {node['component_name']} [{node['id']}]: {status}")
    for child in node.get("children", []):
        _print_node(child, depth + 1)


@checkpoints_app.command("list")
def checkpoints_list() -> None:
    """
    List persisted workflow executions.

    Shows execution ids, workflow names, checkpoint versions and step counts
    from the configured checkpoint store.

    Example:
        arborflow checkpoints list
        # Output: 3f2c...    Research    v4    5 steps
    """
    store = _get_store()
    executions = asyncio.run(store.list_executions())
    if not executions:
        typer.echo("No executions found")
        return
    for snapshot in executions:
        typer.echo(
            f"{snapshot.execution_id}\t{snapshot.workflow_name}\tv{snapshot.version}\t{snapshot.steps} steps"
        )


@checkpoints_app.command("show")
def checkpoints_show(
    execution_id: str,
    as_json: bool = typer.Option(False, "--json", help="Print the raw snapshot"),
) -> None:
    """
    Show the checkpoint tree of one execution.

    Args:
        execution_id: Execution to inspect (get from 'checkpoints list')
        as_json: Print the masked snapshot as JSON instead of a tree

    Example:
        arborflow checkpoints show 3f2c...
        # Output: Execution 3f2c... (Research) v4
        #         - Research [Research:1a2b3c4d:0]: COMPLETED
        #           - Search [Research-Search:5e6f7a8b:0]: COMPLETED
    """
    store = _get_store()
    snapshot = asyncio.run(store.get_execution(execution_id))
    if snapshot is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(json.dumps(snapshot.model_dump(mode="json"), indent=2))
        return
    typer.echo(
        f"Execution {snapshot.execution_id} ({snapshot.workflow_name}) v{snapshot.version}"
    )
    if snapshot.root:
        _print_node(snapshot.root)


if __name__ == "__main__":  # pragma: no cover
    app()
