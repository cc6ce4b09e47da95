"""Telegram Bot API sender."""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

from autorelay.models import ANY_ACCOUNT, ProcessedMessage

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 4096
MAX_CAPTION_LENGTH = 1024


def format_envelope(processed: ProcessedMessage) -> str:
    """Fixed Telegram envelope around a processed message."""
    subject = processed.processed_subject or processed.original.subject
    return (
        "📧 Processed Message\n"
        f"From: {processed.original.sender}\n"
        f"Subject: {subject}\n\n"
        f"{processed.processed_body}"
    )


class TelegramSender:
    """Outbound-only Telegram adapter.

    Destination accounts are resolved through *chat_ids* (e.g. a phone
    number mapped to the chat id of its Telegram user); anything not in the
    map is used as a chat id directly.
    """

    def __init__(
        self,
        bot_token: str,
        chat_ids: dict[str, str] | None = None,
        *,
        bot: Bot | None = None,
    ) -> None:
        self._chat_ids = dict(chat_ids or {})
        self._bot = bot if bot is not None else Bot(bot_token)

    def resolve_chat_id(self, account: str) -> str | None:
        account = (account or "").strip()
        if not account or account == ANY_ACCOUNT:
            return None
        return self._chat_ids.get(account, account)

    async def send_text(self, account: str, text: str) -> bool:
        chat_id = self.resolve_chat_id(account)
        if chat_id is None:
            logger.error("No Telegram chat id for account %r", account)
            return False
        try:
            async with self._bot:
                await self._bot.send_message(chat_id=chat_id, text=text[:MAX_TEXT_LENGTH])
        except TelegramError as exc:
            logger.error("Error sending Telegram message: %s", exc)
            return False
        return True

    async def send_photo(self, account: str, image: bytes, caption: str) -> bool:
        chat_id = self.resolve_chat_id(account)
        if chat_id is None:
            logger.error("No Telegram chat id for account %r", account)
            return False
        try:
            async with self._bot:
                await self._bot.send_photo(
                    chat_id=chat_id,
                    photo=image,
                    caption=caption[:MAX_CAPTION_LENGTH],
                )
        except TelegramError as exc:
            logger.error("Error sending Telegram photo: %s", exc)
            return False
        return True
