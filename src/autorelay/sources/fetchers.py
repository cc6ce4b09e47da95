"""Content fetchers — retrieve (or synthesize) the payload for a fired trigger."""

from __future__ import annotations

import logging

from autorelay.models import MessageContent, SourceApp, now_ms
from autorelay.sources.base import MailClient, matches_account

logger = logging.getLogger(__name__)

PHOTOS_SUBJECT = "Photos Trigger"
PHOTOS_BODY = "New photos detected"


def select_message(messages: list[MessageContent], hint: str | None) -> MessageContent | None:
    """First message whose subject contains *hint*, else the first message."""
    if not messages:
        return None
    if hint:
        needle = hint.lower()
        for message in messages:
            if needle in message.subject.lower():
                return message
    return messages[0]


def geofence_content(hint: str) -> MessageContent:
    stamp = now_ms()
    return MessageContent(
        id=f"geofence-{stamp}",
        sender="Geofence",
        recipient="",
        subject=hint,
        body=hint,
        timestamp=stamp,
        source=SourceApp.MAPS,
    )


def photos_content() -> MessageContent:
    stamp = now_ms()
    return MessageContent(
        id=f"photos-{stamp}",
        sender="Photos",
        recipient="",
        subject=PHOTOS_SUBJECT,
        body=PHOTOS_BODY,
        timestamp=stamp,
        source=SourceApp.PHOTOS,
    )


class ContentFetcher:
    """Dispatches ``fetch`` to the adapter for each source app.

    Never raises: collaborator failures are logged and reported as ``None``.
    """

    def __init__(self, mail: MailClient | None = None) -> None:
        self._mail = mail

    async def fetch(
        self,
        source: SourceApp,
        account: str,
        hint: str | None = None,
    ) -> MessageContent | None:
        try:
            if source is SourceApp.GMAIL:
                return await self._fetch_gmail(account, hint)
            if source is SourceApp.MAPS:
                return geofence_content(hint) if hint else None
            if source is SourceApp.PHOTOS:
                return photos_content()
            if source is SourceApp.TELEGRAM:
                logger.warning("Telegram content fetching is not supported")
                return None
        except Exception:
            logger.exception("Error fetching content from %s", source)
            return None
        logger.warning("Unknown source app: %s", source)
        return None

    async def _fetch_gmail(self, account: str, hint: str | None) -> MessageContent | None:
        if self._mail is None:
            logger.warning("Gmail source requested but no mail client is configured")
            return None
        if not await self._mail.initialize():
            logger.warning("Gmail client not initialized")
            return None
        messages = [
            m for m in await self._mail.fetch_latest(account) if matches_account(m, account)
        ]
        message = select_message(messages, hint)
        if message is None:
            logger.debug("No unread Gmail messages for account=%s", account or "Any")
        return message
