"""Pipeline orchestrator — the per-event match/fetch/transform/dispatch state machine."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from autorelay.delivery.dispatcher import DestinationDispatcher
from autorelay.executions import ExecutionLog
from autorelay.intelligence.decision import Decision, PhotoMatcher
from autorelay.intelligence.transform import MessageTransformer, arrival_message, fallback_message
from autorelay.models import (
    Attachment,
    ProcessedMessage,
    ProcessingResult,
    SourceApp,
    TriggerEvent,
    Workflow,
    now_ms,
)
from autorelay.sources.fetchers import ContentFetcher, photos_content
from autorelay.workflows.store import WorkflowStore

logger = logging.getLogger(__name__)


class PipelineState(StrEnum):
    IDLE = "idle"
    MATCHING = "matching"
    FETCHING = "fetching"
    TRANSFORMING = "transforming"
    DISPATCHING = "dispatching"
    LOGGED = "logged"
    ABORTED = "aborted"
    DECLINED = "declined"


TERMINAL_STATES = frozenset({PipelineState.LOGGED, PipelineState.ABORTED, PipelineState.DECLINED})


@dataclass
class PipelineRun:
    """State history and outcome of one workflow execution."""

    workflow_ref: str = ""
    states: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    result: ProcessingResult | None = None

    @property
    def state(self) -> PipelineState:
        return self.states[-1]

    def advance(self, state: PipelineState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Run {self.workflow_ref} already finished in {self.state}")
        logger.debug("Run %s: %s -> %s", self.workflow_ref or "-", self.state, state)
        self.states.append(state)


def photo_message(
    workflow: Workflow,
    decision: Decision,
    image: bytes,
    stamp: int,
) -> ProcessedMessage:
    """Forwarded message for a photo the matcher accepted."""
    if decision.matched_person:
        name = workflow.photo_person_name or "enrolled person"
        subject = f"Photo matched: {name}"
        body = f"Automatically forwarding a photo matched to {name}."
    else:
        subject = "Photo matched"
        body = f"Auto-forwarded based on instruction. Reason: {decision.reason or ''}"
        if decision.parse:
            body += f"\n{decision.parse}"
    return ProcessedMessage(
        original=photos_content(),
        processed_subject=subject,
        processed_body=body,
        instructions=workflow.instructions,
        attachment=Attachment(
            filename=f"photo_{stamp}.jpg",
            content_type="image/jpeg",
            data=image,
        ),
    )


class PipelineOrchestrator:
    """Runs trigger events through the workflow pipeline.

    Each run is strictly sequential.  Stage failures are handled where they
    occur: a failed rewrite falls back to a fixed message, a missing payload
    aborts the run, and every completed or aborted run is written to the
    execution log.  Nothing is retried.
    """

    def __init__(
        self,
        store: WorkflowStore,
        fetcher: ContentFetcher,
        transformer: MessageTransformer,
        dispatcher: DestinationDispatcher,
        executions: ExecutionLog,
        matcher: PhotoMatcher | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._transformer = transformer
        self._dispatcher = dispatcher
        self._executions = executions
        self._matcher = matcher
        self._tasks: set[asyncio.Task[list[PipelineRun]]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def submit(self, event: TriggerEvent) -> asyncio.Task[list[PipelineRun]]:
        """Schedule :meth:`handle` as a tracked background task."""
        task = asyncio.create_task(self._guarded(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle(self, event: TriggerEvent) -> list[PipelineRun]:
        """Match *event* to workflows and run each one in turn."""
        if event.workflow is not None:
            return [await self.run_workflow(event.workflow, event)]

        matching = PipelineRun()
        matching.advance(PipelineState.MATCHING)
        workflows = await self._store.load_matching(event.source_app)
        if not workflows:
            logger.debug("No workflows configured for %s", event.source_app)
            matching.advance(PipelineState.ABORTED)
            return [matching]

        logger.info("Found %d workflows for %s", len(workflows), event.source_app)
        runs: list[PipelineRun] = []
        for workflow in workflows:
            runs.append(await self.run_workflow(workflow, event))
        return runs

    async def shutdown(self) -> None:
        """Cancel in-flight runs and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Pipeline stopped (%d runs cancelled)", len(tasks))

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def run_workflow(self, workflow: Workflow, event: TriggerEvent) -> PipelineRun:
        """Run one workflow. Unexpected errors abort the run and are logged."""
        run = PipelineRun(workflow_ref=workflow.ref)
        try:
            await self._run_workflow(run, workflow, event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Workflow %s failed while %s", workflow.ref, run.state)
            await self._fail(run, workflow, exc)
        return run

    async def _run_workflow(
        self,
        run: PipelineRun,
        workflow: Workflow,
        event: TriggerEvent,
    ) -> None:
        run.advance(PipelineState.MATCHING)

        run.advance(PipelineState.FETCHING)
        content = await self._fetcher.fetch(
            workflow.source,
            workflow.source_account,
            event.hint,
        )
        if content is None:
            logger.warning("No content fetched for workflow %s", workflow.ref)
            await self._finish(
                run,
                workflow,
                ProcessingResult(success=False, error=f"No content from {workflow.source}"),
                PipelineState.ABORTED,
            )
            return

        run.advance(PipelineState.TRANSFORMING)
        if workflow.source is SourceApp.MAPS and not workflow.instructions.strip():
            processed = arrival_message(content, workflow.instructions)
        else:
            processed = await self._transformer.transform(content, workflow.instructions)
            if processed is None:
                logger.warning("Rewrite failed for %s; using fallback message", workflow.ref)
                processed = fallback_message(content, workflow.instructions)

        run.advance(PipelineState.DISPATCHING)
        result = await self._dispatcher.dispatch(
            workflow.destination,
            workflow.destination_account,
            processed,
        )
        await self._finish(run, workflow, result, PipelineState.LOGGED)

    async def run_photo(
        self,
        workflow: Workflow,
        photo_path: Path | str,
        stamp: int,
    ) -> PipelineRun:
        """Evaluate one new photo against one Photos workflow."""
        run = PipelineRun(workflow_ref=workflow.ref)
        try:
            await self._run_photo(run, workflow, Path(photo_path), stamp)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Photo workflow %s failed while %s", workflow.ref, run.state)
            await self._fail(run, workflow, exc)
        return run

    async def _run_photo(
        self,
        run: PipelineRun,
        workflow: Workflow,
        photo_path: Path,
        stamp: int,
    ) -> None:
        run.advance(PipelineState.MATCHING)

        if self._matcher is None:
            logger.warning("Photo workflow %s skipped: no matcher configured", workflow.ref)
            run.advance(PipelineState.ABORTED)
            return

        run.advance(PipelineState.FETCHING)
        try:
            image = await asyncio.to_thread(photo_path.read_bytes)
        except OSError as exc:
            logger.warning("Could not read photo %s: %s", photo_path, exc)
            await self._finish(
                run,
                workflow,
                ProcessingResult(success=False, error=f"Unreadable photo: {exc}"),
                PipelineState.ABORTED,
            )
            return

        run.advance(PipelineState.TRANSFORMING)
        decision = await self._matcher.evaluate(
            image,
            workflow.instructions,
            workflow.photo_person_embeddings,
        )
        if not decision.should_forward:
            logger.debug("Photo %s declined for workflow %s", photo_path, workflow.ref)
            run.advance(PipelineState.DECLINED)
            return

        run.advance(PipelineState.DISPATCHING)
        processed = photo_message(workflow, decision, image, stamp or now_ms())
        result = await self._dispatcher.dispatch(
            workflow.destination,
            workflow.destination_account,
            processed,
        )
        await self._finish(run, workflow, result, PipelineState.LOGGED)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _finish(
        self,
        run: PipelineRun,
        workflow: Workflow,
        result: ProcessingResult,
        state: PipelineState,
    ) -> None:
        run.result = result
        await self._executions.record(workflow, result)
        logger.info(
            "Workflow %s finished: success=%s %s",
            workflow.ref,
            result.success,
            result.summary,
        )
        run.advance(state)

    async def _fail(self, run: PipelineRun, workflow: Workflow, exc: Exception) -> None:
        if run.state in TERMINAL_STATES:
            return
        result = ProcessingResult(success=False, error=str(exc) or type(exc).__name__)
        run.result = result
        try:
            await self._executions.record(workflow, result)
        except Exception:
            logger.exception("Could not record failure of workflow %s", workflow.ref)
        run.advance(PipelineState.ABORTED)

    async def _guarded(self, event: TriggerEvent) -> list[PipelineRun]:
        try:
            return await self.handle(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Pipeline run for %s failed", event.source_app)
            return []
