"""HTTP ingress — FastAPI application feeding the trigger sources."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

import autorelay
from autorelay.models import ANY_ACCOUNT, Transition
from autorelay.runtime import RelayRuntime, get_runtime
from autorelay.triggers.monitor import GeofenceEvent
from autorelay.workflows import new_workflow, workflow_to_record

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class NotificationIn(BaseModel):
    package: str
    hint: str | None = None


class GeofenceEventIn(BaseModel):
    transition: Transition
    triggering_ids: list[str] = Field(default_factory=list)
    latitude: float | None = None
    longitude: float | None = None


class LocationIn(BaseModel):
    latitude: float
    longitude: float


class EvaluateIn(LocationIn):
    transition: Transition = Transition.DWELL


class WorkflowIn(BaseModel):
    source: str
    destination: str
    destination_account: str
    source_account: str = ANY_ACCOUNT
    instructions: str = ""
    latitude: float | None = None
    longitude: float | None = None
    radius_meters: float | None = None


# ------------------------------------------------------------------
# App factory
# ------------------------------------------------------------------


def create_app(runtime: RelayRuntime | None = None) -> FastAPI:
    """Build the ingress app around *runtime* (the global one by default)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Start runtime on boot, stop on shutdown."""
        rt = runtime or get_runtime()
        await rt.start()
        app.state.runtime = rt
        yield
        await rt.stop()

    app = FastAPI(title="autorelay", version=autorelay.__version__, lifespan=lifespan)

    def _runtime(request: Request) -> RelayRuntime:
        rt: RelayRuntime | None = getattr(request.app.state, "runtime", None)
        if rt is None or not rt.started:
            raise HTTPException(status_code=503, detail="Runtime not started")
        return rt

    @app.get("/health")
    async def health(request: Request) -> dict:
        rt: RelayRuntime | None = getattr(request.app.state, "runtime", None)
        return {
            "status": "ok",
            "version": autorelay.__version__,
            "started": bool(rt and rt.started),
            "pending_runs": rt.orchestrator.pending if rt and rt.orchestrator else 0,
        }

    @app.post("/notifications")
    async def post_notification(body: NotificationIn, request: Request) -> dict:
        rt = _runtime(request)
        app_tag = rt.notifications.resolve(body.package)
        event = rt.notifications.on_notification(body.package, body.hint)
        return {
            "recognized": app_tag is not None,
            "accepted": event is not None,
            "source": str(app_tag) if app_tag is not None else None,
        }

    @app.post("/geofence/events")
    async def post_geofence_event(body: GeofenceEventIn, request: Request) -> dict:
        rt = _runtime(request)
        location = None
        if body.latitude is not None and body.longitude is not None:
            location = (body.latitude, body.longitude)
        events = await rt.geofence.on_event(
            GeofenceEvent(
                transition=body.transition,
                triggering_ids=body.triggering_ids,
                location=location,
            )
        )
        return {"matched": [ev.workflow.ref for ev in events if ev.workflow is not None]}

    @app.post("/location")
    async def post_location(body: LocationIn, request: Request) -> dict:
        rt = _runtime(request)
        events = await rt.monitor.update_location(body.latitude, body.longitude)
        return {
            "transitions": [
                {"transition": str(ev.transition), "ids": ev.triggering_ids} for ev in events
            ]
        }

    @app.post("/geofence/evaluate")
    async def post_evaluate(body: EvaluateIn, request: Request) -> dict:
        rt = _runtime(request)
        events = await rt.geofence.evaluate_now(body.latitude, body.longitude, body.transition)
        return {"matched": [ev.workflow.ref for ev in events if ev.workflow is not None]}

    @app.post("/workflows", status_code=201)
    async def post_workflow(body: WorkflowIn, request: Request) -> dict:
        rt = _runtime(request)
        try:
            workflow = new_workflow(**body.model_dump())
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        saved = await rt.add_workflow(workflow)
        return {"id": saved.id, **workflow_to_record(saved)}

    @app.get("/executions")
    async def get_executions(request: Request, limit: int = 50) -> list[dict]:
        rt = _runtime(request)
        return rt.executions.history(limit=limit)

    return app
