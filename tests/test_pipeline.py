"""End-to-end tests for the pipeline orchestrator."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_content, write_workflow

from autorelay.delivery import DestinationDispatcher, TelegramSender
from autorelay.executions import ExecutionLog
from autorelay.intelligence import InferenceSession, MessageTransformer, SessionMode
from autorelay.intelligence.decision import Decision, PhotoMatcher
from autorelay.models import ProcessingResult, SourceApp, TriggerEvent, Workflow
from autorelay.pipeline import PipelineOrchestrator, PipelineRun, PipelineState
from autorelay.sources import ContentFetcher
from autorelay.workflows.store import WorkflowStore


class ScriptedBackend:
    """Backend that answers every prompt with a fixed reply (or raises)."""

    def __init__(self, reply: str = "", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def load(self, mode: SessionMode) -> None:
        pass

    async def generate(self, mode: SessionMode, prompt: str, image: bytes | None = None) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply

    async def unload(self, mode: SessionMode) -> None:
        pass


def _bot() -> MagicMock:
    bot = MagicMock()
    bot.__aenter__ = AsyncMock(return_value=bot)
    bot.__aexit__ = AsyncMock(return_value=False)
    bot.send_message = AsyncMock()
    bot.send_photo = AsyncMock()
    return bot


class Harness:
    """Orchestrator wired to in-memory collaborators."""

    def __init__(
        self,
        tmp_path: Path,
        store: WorkflowStore,
        backend: ScriptedBackend,
        matcher: PhotoMatcher | None = None,
        dispatcher: DestinationDispatcher | None = None,
    ) -> None:
        self.mail = AsyncMock()
        self.mail.initialize.return_value = True
        self.mail.fetch_latest.return_value = [make_content()]
        self.mail.send.return_value = True
        self.mail.mark_consumed.return_value = True
        self.bot = _bot()
        self.backend = backend
        self.executions = ExecutionLog(tmp_path / "executions.db")
        self.orchestrator = PipelineOrchestrator(
            store=store,
            fetcher=ContentFetcher(self.mail),
            transformer=MessageTransformer(InferenceSession(backend)),
            dispatcher=dispatcher
            or DestinationDispatcher(self.mail, TelegramSender("t", bot=self.bot)),
            executions=self.executions,
            matcher=matcher,
        )


@pytest.fixture()
def harness(tmp_path: Path, store: WorkflowStore) -> Harness:
    h = Harness(tmp_path, store, ScriptedBackend("BEGIN\nSubject: Hi\nBody: Hello\nEND"))
    yield h
    h.executions.close()


# ------------------------------------------------------------------
# PipelineRun
# ------------------------------------------------------------------


class TestPipelineRun:
    def test_starts_idle(self) -> None:
        assert PipelineRun().state is PipelineState.IDLE

    def test_terminal_state_is_final(self) -> None:
        run = PipelineRun(workflow_ref="w")
        run.advance(PipelineState.ABORTED)
        with pytest.raises(RuntimeError):
            run.advance(PipelineState.FETCHING)


# ------------------------------------------------------------------
# Notification-driven runs
# ------------------------------------------------------------------


class TestNotificationRuns:
    @pytest.mark.asyncio()
    async def test_gmail_to_telegram(self, harness: Harness, workflows_dir: Path) -> None:
        write_workflow(workflows_dir, "workflow_1", destinationAccount="99", instructions="tidy")

        runs = await harness.orchestrator.handle(TriggerEvent(source_app=SourceApp.GMAIL))

        assert [r.state for r in runs] == [PipelineState.LOGGED]
        assert runs[0].states == [
            PipelineState.IDLE,
            PipelineState.MATCHING,
            PipelineState.FETCHING,
            PipelineState.TRANSFORMING,
            PipelineState.DISPATCHING,
            PipelineState.LOGGED,
        ]
        text = harness.bot.send_message.await_args.kwargs["text"]
        assert "Hi" in text
        assert "Hello" in text
        assert harness.bot.send_message.await_args.kwargs["chat_id"] == "99"
        assert "User Instructions: tidy" in harness.backend.prompts[0]
        harness.mail.mark_consumed.assert_awaited_once_with("m1")

        history = harness.executions.history()
        assert len(history) == 1
        assert history[0]["success"] is True
        assert history[0]["workflowRef"] == "workflow_1"

    @pytest.mark.asyncio()
    async def test_no_workflows_is_not_logged(self, harness: Harness) -> None:
        runs = await harness.orchestrator.handle(TriggerEvent(source_app=SourceApp.GMAIL))
        assert [r.state for r in runs] == [PipelineState.ABORTED]
        assert harness.executions.history() == []
        harness.mail.fetch_latest.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_no_content_aborts_and_logs(self, harness: Harness, workflows_dir: Path) -> None:
        write_workflow(workflows_dir, "workflow_1")
        harness.mail.fetch_latest.return_value = []

        runs = await harness.orchestrator.handle(TriggerEvent(source_app=SourceApp.GMAIL))

        assert runs[0].state is PipelineState.ABORTED
        harness.bot.send_message.assert_not_awaited()
        history = harness.executions.history()
        assert history[0]["success"] is False
        assert history[0]["message"] == "No content from Gmail"

    @pytest.mark.asyncio()
    async def test_rewrite_failure_uses_fallback(
        self, tmp_path: Path, store: WorkflowStore, workflows_dir: Path
    ) -> None:
        write_workflow(workflows_dir, "workflow_1", destinationAccount="99")
        h = Harness(tmp_path, store, ScriptedBackend(error=RuntimeError("model down")))

        runs = await h.orchestrator.handle(TriggerEvent(source_app=SourceApp.GMAIL))

        assert runs[0].state is PipelineState.LOGGED
        text = h.bot.send_message.await_args.kwargs["text"]
        assert "Subject: Fwd: Hi" in text
        assert text.endswith("Hello")
        h.executions.close()

    @pytest.mark.asyncio()
    async def test_backend_error_falls_back_for_every_workflow(
        self, tmp_path: Path, store: WorkflowStore, workflows_dir: Path
    ) -> None:
        write_workflow(workflows_dir, "workflow_1", destinationAccount="1", instructions="a")
        write_workflow(workflows_dir, "workflow_2", destinationAccount="2", instructions="b")
        h = Harness(tmp_path, store, ScriptedBackend(error=KeyError("response")))

        runs = await h.orchestrator._guarded(TriggerEvent(source_app=SourceApp.GMAIL))

        assert [r.state for r in runs] == [PipelineState.LOGGED, PipelineState.LOGGED]
        assert h.bot.send_message.await_count == 2
        assert len(h.executions.history()) == 2
        h.executions.close()

    @pytest.mark.asyncio()
    async def test_stage_error_aborts_only_that_workflow(
        self, tmp_path: Path, store: WorkflowStore, workflows_dir: Path
    ) -> None:
        write_workflow(workflows_dir, "workflow_1", destinationAccount="1", instructions="a")
        write_workflow(workflows_dir, "workflow_2", destinationAccount="2", instructions="b")
        dispatcher = AsyncMock(spec=DestinationDispatcher)
        dispatcher.dispatch.side_effect = [
            KeyError("chat"),
            ProcessingResult(success=True, message="Message sent via Telegram"),
        ]
        h = Harness(
            tmp_path,
            store,
            ScriptedBackend("BEGIN\nSubject: Hi\nBody: Hello\nEND"),
            dispatcher=dispatcher,
        )

        runs = await h.orchestrator.handle(TriggerEvent(source_app=SourceApp.GMAIL))

        assert [r.state for r in runs] == [PipelineState.ABORTED, PipelineState.LOGGED]
        assert runs[0].states[-2] is PipelineState.DISPATCHING
        assert runs[0].result.success is False
        assert runs[0].result.error == "'chat'"
        outcomes = {e["workflowRef"]: e["success"] for e in h.executions.history()}
        assert outcomes == {"workflow_1": False, "workflow_2": True}
        h.executions.close()

    @pytest.mark.asyncio()
    async def test_each_matching_workflow_runs(
        self, harness: Harness, workflows_dir: Path
    ) -> None:
        write_workflow(workflows_dir, "workflow_1", destinationAccount="1", instructions="a")
        write_workflow(workflows_dir, "workflow_2", destinationAccount="2", instructions="b")
        write_workflow(workflows_dir, "workflow_3", source="Maps", instructions="c")

        runs = await harness.orchestrator.handle(TriggerEvent(source_app=SourceApp.GMAIL))

        assert sorted(r.workflow_ref for r in runs) == ["workflow_1", "workflow_2"]
        assert harness.bot.send_message.await_count == 2

    @pytest.mark.asyncio()
    async def test_submit_tracks_task(self, harness: Harness, workflows_dir: Path) -> None:
        write_workflow(workflows_dir, "workflow_1", destinationAccount="99")
        task = harness.orchestrator.submit(TriggerEvent(source_app=SourceApp.GMAIL))
        assert harness.orchestrator.pending == 1
        runs = await task
        await asyncio.sleep(0)
        assert runs[0].state is PipelineState.LOGGED
        assert harness.orchestrator.pending == 0

    @pytest.mark.asyncio()
    async def test_shutdown_cancels_in_flight(self, harness: Harness) -> None:
        started = asyncio.Event()

        async def stall(event: TriggerEvent) -> list[PipelineRun]:
            started.set()
            await asyncio.Event().wait()
            return []

        harness.orchestrator.handle = stall  # type: ignore[method-assign]
        task = harness.orchestrator.submit(TriggerEvent(source_app=SourceApp.GMAIL))
        await started.wait()
        await harness.orchestrator.shutdown()
        assert task.cancelled()


# ------------------------------------------------------------------
# Geofence-driven runs
# ------------------------------------------------------------------


class TestGeofenceRuns:
    @pytest.mark.asyncio()
    async def test_blank_instructions_send_arrival(self, harness: Harness) -> None:
        workflow = Workflow(
            source=SourceApp.MAPS,
            destination=SourceApp.GMAIL,
            destination_account="me@x.com",
            id="workflow_5",
            geo_latitude=1.0,
            geo_longitude=2.0,
            geo_radius_meters=100.0,
        )
        event = TriggerEvent(
            source_app=SourceApp.MAPS, hint="Geofence DWELL", workflow=workflow
        )

        runs = await harness.orchestrator.handle(event)

        assert runs[0].state is PipelineState.LOGGED
        harness.mail.send.assert_awaited_once_with(
            "me@x.com", "Arrival Update", "I'm coming home.", None
        )
        harness.mail.mark_consumed.assert_not_awaited()
        assert harness.backend.prompts == []

    @pytest.mark.asyncio()
    async def test_instructions_go_through_rewrite(self, harness: Harness) -> None:
        workflow = Workflow(
            source=SourceApp.MAPS,
            destination=SourceApp.GMAIL,
            destination_account="me@x.com",
            instructions="tell mom",
            id="workflow_6",
        )
        event = TriggerEvent(source_app=SourceApp.MAPS, hint="Geofence ENTER", workflow=workflow)

        await harness.orchestrator.handle(event)

        assert "Content: Geofence ENTER" in harness.backend.prompts[0]
        harness.mail.send.assert_awaited_once_with("me@x.com", "Hi", "Hello", None)


# ------------------------------------------------------------------
# Photo runs
# ------------------------------------------------------------------


def _photo_workflow(**overrides) -> Workflow:
    fields = {
        "source": SourceApp.PHOTOS,
        "destination": SourceApp.TELEGRAM,
        "destination_account": "99",
        "instructions": "receipts",
        "id": "workflow_7",
    }
    fields.update(overrides)
    return Workflow(**fields)


class TestPhotoRuns:
    @pytest.fixture()
    def photo(self, tmp_path: Path) -> Path:
        path = tmp_path / "IMG_1.jpg"
        path.write_bytes(b"\xff\xd8jpeg")
        return path

    def _harness(
        self, tmp_path: Path, store: WorkflowStore, decision: Decision
    ) -> tuple[Harness, AsyncMock]:
        matcher = AsyncMock(spec=PhotoMatcher)
        matcher.evaluate.return_value = decision
        return Harness(tmp_path, store, ScriptedBackend(), matcher=matcher), matcher

    @pytest.mark.asyncio()
    async def test_declined_photo_is_not_logged(
        self, tmp_path: Path, store: WorkflowStore, photo: Path
    ) -> None:
        h, matcher = self._harness(tmp_path, store, Decision(should_forward=False))

        run = await h.orchestrator.run_photo(_photo_workflow(), photo, 123)

        assert run.state is PipelineState.DECLINED
        matcher.evaluate.assert_awaited_once_with(b"\xff\xd8jpeg", "receipts", [])
        h.bot.send_photo.assert_not_awaited()
        assert h.executions.history() == []
        h.executions.close()

    @pytest.mark.asyncio()
    async def test_forwarded_photo(
        self, tmp_path: Path, store: WorkflowStore, photo: Path
    ) -> None:
        decision = Decision(should_forward=True, reason="a receipt", parse="PARSE: total=12")
        h, _ = self._harness(tmp_path, store, decision)

        run = await h.orchestrator.run_photo(_photo_workflow(), photo, 123)

        assert run.state is PipelineState.LOGGED
        kwargs = h.bot.send_photo.await_args.kwargs
        assert kwargs["chat_id"] == "99"
        assert kwargs["photo"] == b"\xff\xd8jpeg"
        assert "Photo matched" in kwargs["caption"]
        assert "Reason: a receipt" in kwargs["caption"]
        assert h.executions.history()[0]["success"] is True
        h.executions.close()

    @pytest.mark.asyncio()
    async def test_person_match_subject(
        self, tmp_path: Path, store: WorkflowStore, photo: Path
    ) -> None:
        h, _ = self._harness(
            tmp_path, store, Decision(should_forward=True, matched_person=True)
        )
        workflow = _photo_workflow(photo_person_name="Sam", photo_person_embeddings=[[1.0]])

        await h.orchestrator.run_photo(workflow, photo, 123)

        assert "Photo matched: Sam" in h.bot.send_photo.await_args.kwargs["caption"]
        h.executions.close()

    @pytest.mark.asyncio()
    async def test_unreadable_photo_aborts(self, tmp_path: Path, store: WorkflowStore) -> None:
        h, matcher = self._harness(tmp_path, store, Decision(should_forward=True))

        run = await h.orchestrator.run_photo(_photo_workflow(), tmp_path / "gone.jpg", 1)

        assert run.state is PipelineState.ABORTED
        matcher.evaluate.assert_not_awaited()
        assert h.executions.history()[0]["success"] is False
        h.executions.close()

    @pytest.mark.asyncio()
    async def test_no_matcher(self, harness: Harness, photo: Path) -> None:
        run = await harness.orchestrator.run_photo(_photo_workflow(), photo, 1)
        assert run.state is PipelineState.ABORTED
