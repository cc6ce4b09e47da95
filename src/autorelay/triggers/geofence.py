"""Geofence trigger — maps region transitions to Maps workflows."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from autorelay.models import SourceApp, Transition, TriggerEvent, Workflow
from autorelay.triggers.debounce import Debouncer
from autorelay.triggers.monitor import (
    GeofenceEvent,
    GeofenceRegion,
    GeofenceRegistrar,
    haversine_meters,
)
from autorelay.workflows.store import WorkflowStore

logger = logging.getLogger(__name__)


def geofence_hint(transition: Transition) -> str:
    return f"Geofence {transition}"


class GeofenceTrigger:
    """Resolves geofence deliveries to workflows and submits one event each.

    Deliveries carrying region ids are matched against each workflow's
    persisted ``geofence_id``.  Only when no ids are present does a
    location fix fall back to a radius check over every Maps workflow.
    """

    def __init__(
        self,
        store: WorkflowStore,
        submit: Callable[[TriggerEvent], Any],
        registrar: GeofenceRegistrar | None = None,
        *,
        loitering_delay_seconds: int = 60,
        debounce_ms: int = 3000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._submit = submit
        self._registrar = registrar
        self._loitering_delay = loitering_delay_seconds
        self._debouncer = Debouncer(debounce_ms, clock=clock)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, workflow: Workflow) -> str | None:
        """Arm a region for *workflow*. Returns the region id used."""
        if self._registrar is None or not workflow.has_geofence:
            return None
        region_id = workflow.geofence_id or workflow.id
        if not region_id:
            logger.warning("Cannot register geofence for unsaved workflow %s", workflow.ref)
            return None
        self._registrar.register(
            GeofenceRegion(
                id=region_id,
                latitude=float(workflow.geo_latitude),
                longitude=float(workflow.geo_longitude),
                radius_meters=float(workflow.geo_radius_meters),
                loitering_delay_seconds=self._loitering_delay,
            )
        )
        if workflow.geofence_id != region_id:
            workflow.geofence_id = region_id
            self._store.set_geofence_id(workflow.id, region_id)
        return region_id

    def unregister(self, region_id: str) -> None:
        if self._registrar is not None:
            self._registrar.unregister(region_id)

    def register_all(self) -> int:
        """Re-register every persisted Maps workflow with a valid region."""
        count = 0
        for workflow in self._store.load_local():
            if workflow.source is not SourceApp.MAPS or not workflow.active:
                continue
            if self.register(workflow) is not None:
                count += 1
        logger.info("Re-registered %d geofences", count)
        return count

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    async def on_event(self, event: GeofenceEvent) -> list[TriggerEvent]:
        if event.triggering_ids:
            return await self.process_ids(event.triggering_ids, event.transition)
        if event.location is not None:
            lat, lng = event.location
            return await self.process_location(lat, lng, event.transition)
        logger.warning("Geofence event without ids or location ignored")
        return []

    async def process_ids(
        self,
        region_ids: list[str],
        transition: Transition,
    ) -> list[TriggerEvent]:
        wanted = set(region_ids)
        matched = [
            wf
            for wf in await self._store.load_matching(SourceApp.MAPS)
            if wf.geofence_id and wf.geofence_id in wanted
        ]
        if not matched:
            logger.debug("No workflows for geofence ids %s", sorted(wanted))
        return self._emit(matched, transition)

    async def process_location(
        self,
        latitude: float,
        longitude: float,
        transition: Transition,
    ) -> list[TriggerEvent]:
        matched = []
        for wf in await self._store.load_matching(SourceApp.MAPS):
            if not wf.has_geofence:
                continue
            distance = haversine_meters(wf.geo_latitude, wf.geo_longitude, latitude, longitude)
            if distance <= wf.geo_radius_meters:
                matched.append(wf)
        return self._emit(matched, transition)

    async def evaluate_now(
        self,
        latitude: float,
        longitude: float,
        transition: Transition = Transition.DWELL,
    ) -> list[TriggerEvent]:
        """Run the proximity path at a given fix, as if *transition* fired."""
        return await self.process_location(latitude, longitude, transition)

    def _emit(self, workflows: list[Workflow], transition: Transition) -> list[TriggerEvent]:
        events: list[TriggerEvent] = []
        for wf in workflows:
            if not self._debouncer.should_fire((wf.ref, transition)):
                logger.debug("Debounced duplicate %s for workflow %s", transition, wf.ref)
                continue
            event = TriggerEvent(
                source_app=SourceApp.MAPS,
                hint=geofence_hint(transition),
                transition=transition,
                workflow=wf,
            )
            logger.info("Geofence %s matched workflow %s", transition, wf.ref)
            self._submit(event)
            events.append(event)
        return events
