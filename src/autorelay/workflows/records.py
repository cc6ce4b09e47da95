"""Conversion between :class:`Workflow` objects and their JSON persistence records."""

from __future__ import annotations

import logging
import math
from typing import Any

from autorelay.models import ANY_ACCOUNT, SourceApp, Workflow

logger = logging.getLogger(__name__)


def workflow_to_record(workflow: Workflow) -> dict[str, Any]:
    """Serialize a workflow using the camelCase record layout."""
    record: dict[str, Any] = {
        "source": workflow.source.value,
        "sourceAccount": workflow.source_account,
        "destination": workflow.destination.value,
        "destinationAccount": workflow.destination_account,
        "instructions": workflow.instructions,
        "active": workflow.active,
        "timestamp": workflow.timestamp,
    }
    if workflow.has_geofence:
        record["geoLatitude"] = workflow.geo_latitude
        record["geoLongitude"] = workflow.geo_longitude
        record["geoRadiusMeters"] = workflow.geo_radius_meters
    if workflow.geofence_id:
        record["geofenceId"] = workflow.geofence_id
    if workflow.source is SourceApp.PHOTOS:
        record["photoBaselineTs"] = workflow.photo_baseline_ts
        record["photoLastProcessedTs"] = workflow.photo_last_processed_ts
        record["photoBootstrapCount"] = workflow.photo_bootstrap_count
        if workflow.photo_person_name:
            record["photoPersonName"] = workflow.photo_person_name
        if workflow.photo_person_embeddings:
            record["photoPersonEmbeddings"] = [list(v) for v in workflow.photo_person_embeddings]
    return record


DESTINATIONS = (SourceApp.GMAIL, SourceApp.TELEGRAM)
PHOTO_BOOTSTRAP_COUNT = 10


def new_workflow(
    source: str,
    destination: str,
    destination_account: str,
    source_account: str = ANY_ACCOUNT,
    instructions: str = "",
    latitude: float | None = None,
    longitude: float | None = None,
    radius_meters: float | None = None,
) -> Workflow:
    """Validate user input for a new workflow and build it (not yet saved).

    Raises ``ValueError`` with a user-facing message when the tags are
    unknown, the destination cannot send, or a Maps workflow lacks its
    geofence.
    """
    src = _parse_tag(source, "source")
    dest = _parse_tag(destination, "destination")
    if dest not in DESTINATIONS:
        raise ValueError(f"{dest} cannot be a destination")
    if not destination_account.strip():
        raise ValueError("A destination account is required")

    workflow = Workflow(
        source=src,
        destination=dest,
        source_account=source_account.strip() or ANY_ACCOUNT,
        destination_account=destination_account.strip(),
        instructions=instructions,
        geo_latitude=latitude,
        geo_longitude=longitude,
        geo_radius_meters=radius_meters,
    )
    if src is SourceApp.MAPS and not workflow.has_geofence:
        raise ValueError("Maps workflows need a latitude, longitude, and radius")
    if src is SourceApp.PHOTOS:
        workflow.photo_bootstrap_count = PHOTO_BOOTSTRAP_COUNT
    return workflow


def _parse_tag(tag: str, role: str) -> SourceApp:
    parsed = SourceApp.parse(tag)
    if parsed is None:
        choices = ", ".join(a.value for a in SourceApp)
        raise ValueError(f"Unknown {role} '{tag}'. Choose one of: {choices}")
    return parsed


def workflow_from_record(data: Any, workflow_id: str = "") -> Workflow | None:
    """Build a workflow from a persistence record.

    Returns ``None`` when the record is not an object, names an unknown
    source or destination, or carries a field of the wrong shape.
    """
    if not isinstance(data, dict):
        logger.warning(
            "Skipping workflow %s: record is %s, not an object",
            workflow_id or "<remote>",
            type(data).__name__,
        )
        return None

    source = SourceApp.parse(data.get("source"))
    destination = SourceApp.parse(data.get("destination"))
    if source is None or destination is None:
        logger.warning(
            "Skipping workflow %s with unknown source/destination: %r -> %r",
            workflow_id or "<remote>",
            data.get("source"),
            data.get("destination"),
        )
        return None

    try:
        return _build(data, workflow_id, source, destination)
    except (TypeError, ValueError) as exc:
        logger.warning("Skipping malformed workflow %s: %s", workflow_id or "<remote>", exc)
        return None


def _build(
    data: dict[str, Any],
    workflow_id: str,
    source: SourceApp,
    destination: SourceApp,
) -> Workflow:
    return Workflow(
        id=workflow_id or str(data.get("id", "")),
        source=source,
        source_account=str(data.get("sourceAccount") or ANY_ACCOUNT),
        destination=destination,
        destination_account=str(data.get("destinationAccount") or ""),
        instructions=str(data.get("instructions") or ""),
        geo_latitude=_opt_float(data.get("geoLatitude")),
        geo_longitude=_opt_float(data.get("geoLongitude")),
        geo_radius_meters=_opt_float(data.get("geoRadiusMeters")),
        geofence_id=str(data["geofenceId"]) if data.get("geofenceId") else None,
        active=bool(data.get("active", True)),
        timestamp=int(data.get("timestamp") or 0),
        photo_baseline_ts=int(data.get("photoBaselineTs") or 0),
        photo_last_processed_ts=int(data.get("photoLastProcessedTs") or 0),
        photo_bootstrap_count=int(data.get("photoBootstrapCount") or 0),
        photo_person_name=str(data.get("photoPersonName") or ""),
        photo_person_embeddings=[
            [float(x) for x in vec] for vec in data.get("photoPersonEmbeddings") or []
        ],
    )


def _opt_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) else result
