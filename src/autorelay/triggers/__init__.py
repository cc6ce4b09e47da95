"""Trigger sources — notifications, geofence transitions, and new photos."""

from __future__ import annotations

from autorelay.triggers.debounce import Debouncer
from autorelay.triggers.geofence import GeofenceTrigger
from autorelay.triggers.monitor import GeofenceEvent, GeofenceRegion, LocalGeofenceMonitor
from autorelay.triggers.notifications import NotificationTrigger
from autorelay.triggers.photos import PhotoTrigger

__all__ = [
    "Debouncer",
    "GeofenceEvent",
    "GeofenceRegion",
    "GeofenceTrigger",
    "LocalGeofenceMonitor",
    "NotificationTrigger",
    "PhotoTrigger",
]
