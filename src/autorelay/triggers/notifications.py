"""Notification trigger — debounced per source app."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from autorelay.models import SourceApp, TriggerEvent
from autorelay.triggers.debounce import Debouncer

logger = logging.getLogger(__name__)

DEFAULT_PACKAGES = {
    "com.google.android.gm": "Gmail",
    "org.telegram.messenger": "Telegram",
}


class NotificationTrigger:
    """Turns posted notifications into :class:`TriggerEvent` submissions.

    Only packages in *packages* are recognized.  A recognized app fires at
    most once per debounce window; unrecognized packages never touch the
    debounce state.
    """

    def __init__(
        self,
        submit: Callable[[TriggerEvent], Any],
        packages: dict[str, str] | None = None,
        debounce_ms: int = 3000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._submit = submit
        self._apps: dict[str, SourceApp] = {}
        for package, tag in (packages or DEFAULT_PACKAGES).items():
            app = SourceApp.parse(tag)
            if app is None:
                logger.warning("Ignoring notification mapping %s -> %s", package, tag)
                continue
            self._apps[package] = app
        self._debouncer = Debouncer(debounce_ms, clock=clock)

    def resolve(self, package: str) -> SourceApp | None:
        return self._apps.get(package)

    def on_notification(self, package: str, hint: str | None = None) -> TriggerEvent | None:
        """Handle one posted notification. Returns the submitted event, if any."""
        app = self.resolve(package)
        if app is None:
            return None

        if not self._debouncer.should_fire(app):
            logger.debug("Debounced duplicate notification for %s", app)
            return None

        event = TriggerEvent(source_app=app, hint=hint)
        logger.info("Notification trigger fired for %s", app)
        self._submit(event)
        return event
