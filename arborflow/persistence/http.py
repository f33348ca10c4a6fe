"""Checkpoint sink that uploads snapshots to a remote trace API."""

from __future__ import annotations

import base64
import gzip
import json
import logging
from typing import Any, Dict, Optional

import httpx

from .. import __version__
from ..config import ApiConfig
from .models import CheckpointSnapshot
from .repository import CheckpointSink

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


class HttpCheckpointSink(CheckpointSink):
    """Send gzip-compressed snapshots to ``{base_url}/org/{org}/traces``.

    The first snapshot of a run creates a trace with ``POST``; later snapshots
    of the same run update it with ``PUT /traces/{trace_id}``.
    """

    def __init__(
        self,
        config: ApiConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not config.org:
            raise ValueError("Organization is required for the HTTP checkpoint sink")
        self.config = config
        self._client = client
        self._trace_ids: Dict[str, str] = {}

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Content-Encoding": "gzip",
            "Accept-Encoding": "gzip",
            "User-Agent": f"arborflow/{__version__}",
        }
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    @staticmethod
    def _payload(snapshot: CheckpointSnapshot) -> Dict[str, Any]:
        raw = json.dumps(
            {**snapshot.root, "updatedAt": snapshot.updated_at.isoformat()}
        ).encode("utf-8")
        return {
            "executionId": snapshot.execution_id,
            "version": snapshot.version,
            "schemaVersion": SCHEMA_VERSION,
            "workflowName": snapshot.workflow_name,
            "startedAt": snapshot.started_at.isoformat() if snapshot.started_at else None,
            "completedAt": snapshot.completed_at.isoformat() if snapshot.completed_at else None,
            "rawExecution": base64.b64encode(gzip.compress(raw)).decode("ascii"),
            "steps": snapshot.steps,
        }

    def _url(self, execution_id: str) -> str:
        base = f"{self.config.base_url.rstrip('/')}/org/{self.config.org}/traces"
        trace_id = self._trace_ids.get(execution_id)
        return f"{base}/{trace_id}" if trace_id else base

    async def write(self, snapshot: CheckpointSnapshot) -> None:
        body = gzip.compress(json.dumps(self._payload(snapshot)).encode("utf-8"))
        method = "PUT" if snapshot.execution_id in self._trace_ids else "POST"
        url = self._url(snapshot.execution_id)

        client = self._client or httpx.AsyncClient(timeout=self.config.timeout)
        try:
            response = await client.request(
                method, url, content=body, headers=self._headers()
            )
        finally:
            if self._client is None:
                await client.aclose()

        response.raise_for_status()
        data = response.json()
        trace_id = data.get("traceId")
        if trace_id:
            self._trace_ids[snapshot.execution_id] = trace_id
        logger.debug(
            f"Saved checkpoint version {snapshot.version} for {snapshot.execution_id} via {method}"
        )
