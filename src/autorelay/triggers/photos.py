"""Photo trigger — watches a directory and feeds new photos to Photos workflows."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Awaitable, Callable
from pathlib import Path

from watchfiles import Change, awatch

from autorelay.models import SourceApp, Workflow
from autorelay.workflows.store import WorkflowStore

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".jpg", ".jpeg", ".png", ".heic", ".webp")

PhotoRunner = Callable[[Workflow, Path, int], Awaitable[object]]


def photo_timestamp(path: Path) -> int:
    """Epoch ms of a photo: the later of its modification and change times."""
    st = path.stat()
    return int(max(st.st_mtime, st.st_ctime) * 1000)


class PhotoTrigger:
    """Observes *watch_dir* and processes each new photo exactly once per workflow.

    Changed paths go into an unbounded FIFO.  One drain at a time empties it;
    paths queued while a drain runs are picked up by that same drain.  A
    photo is handed to a workflow only when its timestamp is newer than the
    workflow's gate, and the workflow's progress is advanced afterwards
    whether or not the photo was forwarded.
    """

    def __init__(
        self,
        store: WorkflowStore,
        run_photo: PhotoRunner,
        watch_dir: Path | str,
        extensions: tuple[str, ...] | list[str] = DEFAULT_EXTENSIONS,
    ) -> None:
        self._store = store
        self._run_photo = run_photo
        self._watch_dir = Path(watch_dir).expanduser()
        self._extensions = {ext.lower() for ext in extensions}
        self._pending: deque[Path] = deque()
        self._lock = threading.Lock()
        self._drain_task: asyncio.Task[None] | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def is_running(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        if self.is_running:
            return True
        if not self._watch_dir.is_dir():
            logger.warning("Photo directory %s does not exist", self._watch_dir)
            return False
        self._stop_event = asyncio.Event()
        self._watch_task = asyncio.create_task(self._watch())
        logger.info("Photo observer started on %s", self._watch_dir)
        return True

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        for task in (self._watch_task, self._drain_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    logger.debug("Photo task cancelled")
        self._watch_task = None
        self._drain_task = None
        logger.info("Photo observer stopped")

    async def refresh(self) -> bool:
        """Run the observer only while active Photos workflows exist."""
        wanted = any(self._photo_workflows())
        if wanted and not self.is_running:
            return self.start()
        if not wanted and self.is_running:
            await self.stop()
        return self.is_running

    async def _watch(self) -> None:
        async for changes in awatch(self._watch_dir, stop_event=self._stop_event):
            for change, raw_path in changes:
                if change not in (Change.added, Change.modified):
                    continue
                self.enqueue(Path(raw_path))

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, path: Path) -> bool:
        if path.suffix.lower() not in self._extensions:
            return False
        with self._lock:
            self._pending.append(path)
        self._schedule_drain()
        return True

    def _schedule_drain(self) -> asyncio.Task[None]:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())
        return self._drain_task

    async def drain(self) -> None:
        """Process everything queued so far (joins a drain already running)."""
        await self._schedule_drain()

    async def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._pending:
                    return
                path = self._pending.popleft()
            try:
                await self.process_photo(path)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error processing photo %s", path)

    # ------------------------------------------------------------------
    # Per-photo processing
    # ------------------------------------------------------------------

    async def process_photo(self, path: Path) -> int:
        """Hand *path* to every workflow whose gate it passes. Returns that count."""
        try:
            stamp = await asyncio.to_thread(photo_timestamp, path)
        except OSError as exc:
            logger.debug("Photo %s vanished before processing: %s", path, exc)
            return 0

        handled = 0
        for workflow in self._photo_workflows():
            if stamp <= workflow.photo_gate_ts:
                logger.debug("Photo %s already covered for workflow %s", path.name, workflow.ref)
                continue
            try:
                await self._run_photo(workflow, path, stamp)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Photo workflow %s failed on %s", workflow.ref, path.name)
            self._store.update_photo_progress(workflow.id, stamp)
            handled += 1
        return handled

    def _photo_workflows(self) -> list[Workflow]:
        return [
            wf for wf in self._store.load_local() if wf.source is SourceApp.PHOTOS and wf.active
        ]
