"""Geofence registration contract and an in-process monitor fed by location fixes."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from autorelay.models import Transition

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6_371_000.0
ALL_TRANSITIONS = frozenset({Transition.ENTER, Transition.EXIT, Transition.DWELL})
INITIAL_TRIGGERS = frozenset({Transition.ENTER, Transition.DWELL})


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two WGS84 points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


@dataclass(frozen=True)
class GeofenceRegion:
    """A circular region armed for transitions. Never expires."""

    id: str
    latitude: float
    longitude: float
    radius_meters: float
    transitions: frozenset[Transition] = ALL_TRANSITIONS
    initial_triggers: frozenset[Transition] = INITIAL_TRIGGERS
    loitering_delay_seconds: int = 60

    def contains(self, latitude: float, longitude: float) -> bool:
        distance = haversine_meters(self.latitude, self.longitude, latitude, longitude)
        return distance <= self.radius_meters


@dataclass
class GeofenceEvent:
    """One transition delivery, possibly covering several regions."""

    transition: Transition
    triggering_ids: list[str] = field(default_factory=list)
    location: tuple[float, float] | None = None


class GeofenceRegistrar(Protocol):
    """OS-level region registration."""

    def register(self, region: GeofenceRegion) -> None: ...

    def unregister(self, region_id: str) -> None: ...


@dataclass
class _RegionState:
    inside: bool | None = None
    entered_at: float | None = None
    dwell_sent: bool = False


class LocalGeofenceMonitor:
    """Registrar that evaluates regions against reported location fixes.

    The first fix after registration applies the region's initial triggers:
    being inside emits ``ENTER``.  ``DWELL`` fires once per stay, on the
    first fix at least ``loitering_delay_seconds`` after entering.
    """

    def __init__(
        self,
        on_event: Callable[[GeofenceEvent], Awaitable[object]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_event = on_event
        self._clock = clock
        self._regions: dict[str, GeofenceRegion] = {}
        self._states: dict[str, _RegionState] = {}

    @property
    def regions(self) -> dict[str, GeofenceRegion]:
        return dict(self._regions)

    def set_listener(self, on_event: Callable[[GeofenceEvent], Awaitable[object]]) -> None:
        self._on_event = on_event

    def register(self, region: GeofenceRegion) -> None:
        self._regions[region.id] = region
        self._states[region.id] = _RegionState()
        logger.info(
            "Registered geofence %s at (%.5f, %.5f) r=%.0fm",
            region.id,
            region.latitude,
            region.longitude,
            region.radius_meters,
        )

    def unregister(self, region_id: str) -> None:
        self._regions.pop(region_id, None)
        self._states.pop(region_id, None)

    async def update_location(self, latitude: float, longitude: float) -> list[GeofenceEvent]:
        """Feed one location fix; deliver and return the resulting events."""
        now = self._clock()
        fired: dict[Transition, list[str]] = {}

        for region in self._regions.values():
            state = self._states.setdefault(region.id, _RegionState())
            inside = region.contains(latitude, longitude)
            for transition in self._transitions_for(region, state, inside, now):
                fired.setdefault(transition, []).append(region.id)

        events = [
            GeofenceEvent(transition=t, triggering_ids=ids, location=(latitude, longitude))
            for t, ids in fired.items()
        ]
        if self._on_event is not None:
            for event in events:
                await self._on_event(event)
        return events

    @staticmethod
    def _transitions_for(
        region: GeofenceRegion,
        state: _RegionState,
        inside: bool,
        now: float,
    ) -> list[Transition]:
        out: list[Transition] = []
        first_fix = state.inside is None
        armed = region.initial_triggers if first_fix else region.transitions

        if inside and not state.inside:
            state.entered_at = now
            state.dwell_sent = False
            if Transition.ENTER in armed:
                out.append(Transition.ENTER)
        elif not inside and state.inside:
            state.entered_at = None
            if Transition.EXIT in region.transitions:
                out.append(Transition.EXIT)

        if (
            inside
            and not state.dwell_sent
            and state.entered_at is not None
            and now - state.entered_at >= region.loitering_delay_seconds
            and Transition.DWELL in region.transitions | region.initial_triggers
        ):
            state.dwell_sent = True
            out.append(Transition.DWELL)

        state.inside = inside
        return out
