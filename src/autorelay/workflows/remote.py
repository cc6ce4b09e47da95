"""Remote workflow store — JSON over HTTP, mirrored from local saves."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from autorelay.models import ExecutionRecord, Workflow
from autorelay.workflows.records import workflow_from_record, workflow_to_record

logger = logging.getLogger(__name__)


class RemoteWorkflowStore:
    """Client for the per-user remote workflow collection.

    Endpoints::

        GET  {base_url}/workflows?userId=<id>&active=true
        POST {base_url}/workflows
        POST {base_url}/workflow_logs

    Read failures raise :class:`httpx.HTTPError`; callers decide how to
    degrade.  Writes are best-effort and return ``False`` on failure.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        api_key: str = "",
        timeout: float = 15.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._user_id = user_id
        self._api_key = api_key
        self._timeout = timeout

    @property
    def user_id(self) -> str:
        return self._user_id

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self._api_key:
            headers["authorization"] = f"Bearer {self._api_key}"
        return headers

    async def list_workflows(self) -> list[Workflow]:
        """Fetch this user's active workflows."""
        if not self._user_id:
            return []

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.get(
                f"{self._base_url}/workflows",
                params={"userId": self._user_id, "active": "true"},
                headers=self._headers(),
            )
            resp.raise_for_status()
            data = resp.json()

        documents: Any = data.get("workflows", []) if isinstance(data, dict) else data
        if not isinstance(documents, list):
            raise ValueError(f"Unexpected workflow listing: {type(documents).__name__}")
        workflows: list[Workflow] = []
        for doc in documents:
            if not isinstance(doc, dict):
                logger.warning("Skipping non-object remote workflow: %r", doc)
                continue
            if not doc.get("source") or not doc.get("destination"):
                continue
            workflow = workflow_from_record(doc, workflow_id=str(doc.get("id", "")))
            if workflow is not None:
                workflows.append(workflow)
        return workflows

    async def save_workflow(self, workflow: Workflow) -> bool:
        """Mirror a locally saved workflow. Returns ``True`` on success."""
        if not self._user_id:
            return False
        payload = {"userId": self._user_id, "id": workflow.id, **workflow_to_record(workflow)}
        return await self._post("workflows", payload)

    async def log_execution(self, record: ExecutionRecord) -> bool:
        """Append an execution record to the remote audit trail."""
        if not self._user_id:
            return False
        payload = {
            "userId": self._user_id,
            "workflowRef": record.workflow_ref,
            "workflow": record.workflow,
            "success": record.success,
            "message": record.message,
            "timestamp": record.timestamp.isoformat(),
        }
        return await self._post("workflow_logs", payload)

    async def _post(self, collection: str, payload: dict[str, Any]) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    f"{self._base_url}/{collection}",
                    json=payload,
                    headers=self._headers(),
                )
                resp.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            logger.warning("Remote write to %s failed (non-critical): %s", collection, exc)
            return False
