"""Workflow store — local JSON files merged with the remote mirror."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from autorelay.models import SourceApp, Workflow, now_ms
from autorelay.workflows.records import workflow_from_record, workflow_to_record
from autorelay.workflows.remote import RemoteWorkflowStore

logger = logging.getLogger(__name__)

_FILE_PREFIX = "workflow_"
_FILE_SUFFIX = ".json"


class WorkflowStore:
    """Owns workflow definitions.

    Local workflows live as ``workflow_<ms>.json`` files in *workflows_dir*;
    the file stem is the workflow ``id``.  When a :class:`RemoteWorkflowStore`
    is supplied, reads merge its copies in and saves are mirrored to it.
    """

    def __init__(
        self,
        workflows_dir: Path | str,
        remote: RemoteWorkflowStore | None = None,
    ) -> None:
        self._dir = Path(workflows_dir)
        self._remote = remote
        self._lock = threading.Lock()

    @property
    def workflows_dir(self) -> Path:
        return self._dir

    @property
    def remote(self) -> RemoteWorkflowStore | None:
        return self._remote

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load_local(self) -> list[Workflow]:
        """Parse every local workflow file. Malformed files are skipped."""
        if not self._dir.is_dir():
            return []

        workflows: list[Workflow] = []
        for path in sorted(self._dir.glob(f"{_FILE_PREFIX}*{_FILE_SUFFIX}")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.error("Error parsing workflow file %s: %s", path.name, exc)
                continue
            workflow = workflow_from_record(data, workflow_id=path.stem)
            if workflow is None:
                continue
            logger.debug(
                "Loaded workflow file=%s src=%s dest=%s",
                path.name,
                workflow.source,
                workflow.destination,
            )
            workflows.append(workflow)
        return workflows

    async def load_remote(self) -> list[Workflow]:
        """Fetch remote workflows, degrading to an empty list on failure."""
        if self._remote is None:
            return []
        try:
            return await self._remote.list_workflows()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Error loading remote workflows (continuing with local only): %s", exc)
            return []

    async def load_all(self) -> list[Workflow]:
        """Merge local and remote workflows, dedupe, and keep active ones."""
        merged = self.load_local() + await self.load_remote()
        seen: set[tuple[str, str, str]] = set()
        result: list[Workflow] = []
        for workflow in merged:
            key = workflow.dedupe_key
            if key in seen:
                continue
            seen.add(key)
            if workflow.active:
                result.append(workflow)
        return result

    async def load_matching(self, app: SourceApp | str) -> list[Workflow]:
        """Active workflows whose source is *app*.

        String tags are normalized first, so ``"Gmail"`` also matches
        workflows stored with the ``"Google"`` alias.
        """
        wanted = app if isinstance(app, SourceApp) else SourceApp.parse(app)
        if wanted is None:
            return []
        return [wf for wf in await self.load_all() if wf.source is wanted]

    def get(self, workflow_id: str) -> Workflow | None:
        """Load a single local workflow by id."""
        path = self._path_for(workflow_id)
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Error parsing workflow file %s: %s", path.name, exc)
            return None
        return workflow_from_record(data, workflow_id=workflow_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save(self, workflow: Workflow) -> Workflow:
        """Persist a new workflow locally and mirror it remotely.

        Assigns ``id`` (and a Photos baseline when missing).  Maps workflows
        with a geofence get ``geofence_id`` equal to their id.
        """
        self._dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            stamp = now_ms()
            while self._path_for(f"{_FILE_PREFIX}{stamp}").exists():
                stamp += 1
            workflow.id = f"{_FILE_PREFIX}{stamp}"
            workflow.timestamp = stamp
            if workflow.source is SourceApp.PHOTOS and not workflow.photo_baseline_ts:
                workflow.photo_baseline_ts = stamp
            if workflow.source is SourceApp.MAPS and workflow.has_geofence:
                workflow.geofence_id = workflow.geofence_id or workflow.id
            self._write(workflow.id, workflow_to_record(workflow))

        logger.info(
            "Saved workflow %s: %s -> %s",
            workflow.id,
            workflow.source,
            workflow.destination,
        )
        if self._remote is not None:
            await self._remote.save_workflow(workflow)
        return workflow

    def update_photo_progress(self, workflow_id: str, processed_ts: int) -> int | None:
        """Advance ``photoLastProcessedTs`` to ``max(old, processed_ts)``.

        Returns the stored value, or ``None`` if the workflow is gone.
        """

        def _apply(data: dict[str, Any]) -> None:
            old = int(data.get("photoLastProcessedTs") or 0)
            data["photoLastProcessedTs"] = max(old, int(processed_ts))

        data = self._mutate(workflow_id, _apply)
        return None if data is None else int(data["photoLastProcessedTs"])

    def set_active(self, workflow_id: str, active: bool) -> bool:
        """Enable or disable a workflow. Returns ``True`` if found."""
        return self._mutate(workflow_id, lambda d: d.update(active=active)) is not None

    def set_person(self, workflow_id: str, name: str, embeddings: list[list[float]]) -> bool:
        """Store an enrolled person on a Photos workflow."""

        def _apply(data: dict[str, Any]) -> None:
            data["photoPersonName"] = name
            data["photoPersonEmbeddings"] = [[float(x) for x in vec] for vec in embeddings]

        return self._mutate(workflow_id, _apply) is not None

    def set_geofence_id(self, workflow_id: str, geofence_id: str) -> bool:
        """Record the identifier a region was registered under."""
        return self._mutate(workflow_id, lambda d: d.update(geofenceId=geofence_id)) is not None

    def clear(self) -> int:
        """Delete all local workflow files. Returns the number removed."""
        if not self._dir.is_dir():
            return 0
        count = 0
        with self._lock:
            for path in self._dir.glob(f"{_FILE_PREFIX}*{_FILE_SUFFIX}"):
                try:
                    path.unlink()
                    count += 1
                except OSError as exc:
                    logger.warning("Could not delete %s: %s", path.name, exc)
        logger.info("Cleared %d local workflows", count)
        return count

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _path_for(self, workflow_id: str) -> Path:
        return self._dir / f"{workflow_id}{_FILE_SUFFIX}"

    def _write(self, workflow_id: str, data: dict[str, Any]) -> None:
        path = self._path_for(workflow_id)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        tmp.replace(path)

    def _mutate(
        self, workflow_id: str, apply: Callable[[dict[str, Any]], None]
    ) -> dict[str, Any] | None:
        path = self._path_for(workflow_id)
        with self._lock:
            if not path.is_file():
                logger.warning("Workflow %s not found", workflow_id)
                return None
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.error("Error reading workflow %s: %s", workflow_id, exc)
                return None
            apply(data)
            self._write(workflow_id, data)
        return data
