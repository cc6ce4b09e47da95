"""Central runtime — boots and holds all live components."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from autorelay.config import ConfigManager
from autorelay.config.schema import RelayConfig
from autorelay.models import SourceApp, Workflow

if TYPE_CHECKING:
    from autorelay.delivery.telegram import TelegramSender
    from autorelay.executions import ExecutionLog
    from autorelay.intelligence.backends import InferenceBackend, OllamaBackend
    from autorelay.intelligence.faces import FaceAnalyzer
    from autorelay.intelligence.session import InferenceSession
    from autorelay.pipeline import PipelineOrchestrator
    from autorelay.sources.base import MailClient
    from autorelay.triggers.geofence import GeofenceTrigger
    from autorelay.triggers.monitor import LocalGeofenceMonitor
    from autorelay.triggers.notifications import NotificationTrigger
    from autorelay.triggers.photos import PhotoTrigger
    from autorelay.workflows.store import WorkflowStore

logger = logging.getLogger(__name__)


def build_store(config: RelayConfig) -> WorkflowStore:
    """Workflow store for *config*, with the remote mirror when enabled."""
    from autorelay.workflows.remote import RemoteWorkflowStore
    from autorelay.workflows.store import WorkflowStore

    remote = None
    if config.remote.enabled and config.remote.base_url:
        remote = RemoteWorkflowStore(
            base_url=config.remote.base_url,
            user_id=config.remote.user_id,
            api_key=config.remote.api_key,
            timeout=config.remote.timeout_seconds,
        )
    return WorkflowStore(config.get_workflows_path(), remote=remote)


def build_backend(config: RelayConfig) -> OllamaBackend:
    from autorelay.intelligence.backends import OllamaBackend

    llm = config.llm
    return OllamaBackend(
        host=llm.host,
        text_model=llm.text_model,
        vision_model=llm.vision_model,
        max_tokens=llm.max_tokens,
        text_options={
            "temperature": llm.text_temperature,
            "top_k": llm.top_k,
            "top_p": llm.text_top_p,
        },
        vision_options={
            "temperature": llm.vision_temperature,
            "top_k": llm.top_k,
            "top_p": llm.vision_top_p,
        },
        timeout=llm.timeout_seconds,
    )


def build_face_analyzer(config: RelayConfig) -> FaceAnalyzer | None:
    if not config.photos.face_service_url:
        return None
    from autorelay.intelligence.faces import HttpFaceAnalyzer

    return HttpFaceAnalyzer(config.photos.face_service_url)


class RelayRuntime:
    """Central runtime — wires config to the pipeline and its triggers.

    The HTTP ingress and the CLI both use it to get live references.
    Collaborators can be injected; anything left as ``None`` is built
    from config on :meth:`start`.
    """

    def __init__(
        self,
        config: RelayConfig | None = None,
        *,
        mail: MailClient | None = None,
        telegram: TelegramSender | None = None,
        backend: InferenceBackend | None = None,
        faces: FaceAnalyzer | None = None,
    ) -> None:
        self._config = config or ConfigManager().load()
        self._started = False

        self.mail = mail
        self.telegram = telegram
        self.backend = backend
        self.faces = faces

        # Component references (populated by start())
        self.store: WorkflowStore | None = None
        self.session: InferenceSession | None = None
        self.executions: ExecutionLog | None = None
        self.orchestrator: PipelineOrchestrator | None = None
        self.notifications: NotificationTrigger | None = None
        self.monitor: LocalGeofenceMonitor | None = None
        self.geofence: GeofenceTrigger | None = None
        self.photos: PhotoTrigger | None = None

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, *, watch_photos: bool = True) -> None:
        """Build every component and arm the trigger sources."""
        if self._started:
            logger.warning("Runtime already started")
            return

        from autorelay.delivery.dispatcher import DestinationDispatcher
        from autorelay.delivery.telegram import TelegramSender
        from autorelay.executions import ExecutionLog
        from autorelay.intelligence.decision import PhotoMatcher
        from autorelay.intelligence.session import InferenceSession
        from autorelay.intelligence.transform import MessageTransformer
        from autorelay.pipeline import PipelineOrchestrator
        from autorelay.sources.fetchers import ContentFetcher
        from autorelay.triggers.geofence import GeofenceTrigger
        from autorelay.triggers.monitor import LocalGeofenceMonitor
        from autorelay.triggers.notifications import NotificationTrigger
        from autorelay.triggers.photos import PhotoTrigger

        cfg = self._config
        logger.info("autorelay runtime starting...")
        data_dir = cfg.get_data_path()
        data_dir.mkdir(parents=True, exist_ok=True)
        cfg.get_workflows_path().mkdir(parents=True, exist_ok=True)

        # 1. Workflow store
        self.store = build_store(cfg)

        # 2. Inference
        if self.backend is None:
            self.backend = build_backend(cfg)
        self.session = InferenceSession(self.backend)
        if self.faces is None:
            self.faces = build_face_analyzer(cfg)
        matcher = PhotoMatcher(
            self.session,
            faces=self.faces,
            threshold=cfg.photos.match_threshold,
            decision_timeout=cfg.photos.decision_timeout_seconds,
        )

        # 3. Channels
        if self.mail is None:
            from autorelay.sources.gmail import GmailClient

            self.mail = GmailClient(
                cfg.gmail.credentials_path,
                cfg.gmail.token_path,
                max_results=cfg.gmail.max_results,
                query=cfg.gmail.query,
            )
        if self.telegram is None and cfg.telegram.bot_token:
            self.telegram = TelegramSender(cfg.telegram.bot_token, cfg.telegram.chat_ids)

        # 4. Pipeline
        self.executions = ExecutionLog(data_dir / "executions.db", remote=self.store.remote)
        self.orchestrator = PipelineOrchestrator(
            store=self.store,
            fetcher=ContentFetcher(self.mail),
            transformer=MessageTransformer(self.session),
            dispatcher=DestinationDispatcher(self.mail, self.telegram),
            executions=self.executions,
            matcher=matcher,
        )

        # 5. Triggers
        self.notifications = NotificationTrigger(
            self.orchestrator.submit,
            packages=cfg.notifications.packages,
            debounce_ms=cfg.notifications.debounce_ms,
        )
        self.monitor = LocalGeofenceMonitor()
        self.geofence = GeofenceTrigger(
            self.store,
            self.orchestrator.submit,
            self.monitor,
            loitering_delay_seconds=cfg.geofence.loitering_delay_seconds,
            debounce_ms=cfg.geofence.debounce_ms,
        )
        self.monitor.set_listener(self.geofence.on_event)
        self.geofence.register_all()

        self.photos = PhotoTrigger(
            self.store,
            self.orchestrator.run_photo,
            cfg.photos.watch_dir,
            extensions=cfg.photos.extensions,
        )
        if watch_photos and cfg.photos.enabled:
            await self.photos.refresh()

        self._started = True
        logger.info("autorelay runtime started")

    async def stop(self) -> None:
        """Stop triggers, cancel in-flight runs, and release resources."""
        if not self._started:
            return
        logger.info("autorelay runtime stopping...")
        if self.photos is not None:
            await self.photos.stop()
        if self.orchestrator is not None:
            await self.orchestrator.shutdown()
        if self.session is not None:
            await self.session.close()
        if self.executions is not None:
            self.executions.close()
        self._started = False
        logger.info("autorelay runtime stopped")

    async def add_workflow(self, workflow: Workflow) -> Workflow:
        """Persist *workflow* and arm whatever trigger it needs."""
        if self.store is None:
            raise RuntimeError("Runtime not started")
        saved = await self.store.save(workflow)
        if saved.source is SourceApp.MAPS and self.geofence is not None:
            self.geofence.register(saved)
        if saved.source is SourceApp.PHOTOS and self.photos is not None:
            if self._config.photos.enabled:
                await self.photos.refresh()
        return saved


# ------------------------------------------------------------------
# Singleton accessor
# ------------------------------------------------------------------

_runtime: RelayRuntime | None = None


def get_runtime() -> RelayRuntime:
    """Get or create the global runtime singleton."""
    global _runtime  # noqa: PLW0603
    if _runtime is None:
        _runtime = RelayRuntime()
    return _runtime


def set_runtime(runtime: RelayRuntime) -> None:
    """Set the global runtime singleton (for testing)."""
    global _runtime  # noqa: PLW0603
    _runtime = runtime


def reset_runtime() -> None:
    """Reset the global runtime singleton (for testing)."""
    global _runtime  # noqa: PLW0603
    _runtime = None
