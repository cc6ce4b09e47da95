"""Destination dispatcher — routes processed messages to their channel."""

from __future__ import annotations

import logging

from autorelay.delivery.telegram import TelegramSender, format_envelope
from autorelay.models import ProcessedMessage, ProcessingResult, SourceApp
from autorelay.sources.base import MailClient

logger = logging.getLogger(__name__)


class DestinationDispatcher:
    """Sends a :class:`ProcessedMessage` and reports a :class:`ProcessingResult`.

    After a successful send, a message fetched from Gmail is marked read.
    That side effect is best-effort and never changes the result.
    """

    def __init__(
        self,
        mail: MailClient | None = None,
        telegram: TelegramSender | None = None,
    ) -> None:
        self._mail = mail
        self._telegram = telegram

    async def dispatch(
        self,
        destination: SourceApp,
        account: str,
        processed: ProcessedMessage,
    ) -> ProcessingResult:
        try:
            if destination is SourceApp.GMAIL:
                result = await self._send_gmail(account, processed)
            elif destination is SourceApp.TELEGRAM:
                result = await self._send_telegram(account, processed)
            else:
                return ProcessingResult(
                    success=False,
                    error=f"Unsupported destination app: {destination}",
                )
        except Exception as exc:
            logger.exception("Error dispatching to %s", destination)
            return ProcessingResult(success=False, error=f"Dispatch failed: {exc}")

        if result.success:
            await self._mark_source_consumed(processed)
        return result

    async def _send_gmail(self, account: str, processed: ProcessedMessage) -> ProcessingResult:
        if self._mail is None:
            return ProcessingResult(success=False, error="Gmail destination is not configured")
        if not await self._mail.initialize():
            return ProcessingResult(success=False, error="Gmail client not initialized")

        subject = processed.processed_subject.strip() or (
            f"Processed: {processed.original.subject}"
        )
        sent = await self._mail.send(
            account,
            subject,
            processed.processed_body,
            processed.attachment,
        )
        if not sent:
            return ProcessingResult(success=False, error="Failed to send email")
        return ProcessingResult(success=True, message=f"Email sent to {account}")

    async def _send_telegram(self, account: str, processed: ProcessedMessage) -> ProcessingResult:
        if self._telegram is None:
            return ProcessingResult(success=False, error="Telegram destination is not configured")

        text = format_envelope(processed)
        if processed.attachment is not None:
            sent = await self._telegram.send_photo(account, processed.attachment.data, text)
        else:
            sent = await self._telegram.send_text(account, text)
        if not sent:
            return ProcessingResult(success=False, error="Failed to send Telegram message")
        return ProcessingResult(success=True, message="Message sent via Telegram")

    async def _mark_source_consumed(self, processed: ProcessedMessage) -> None:
        original = processed.original
        if original.source is not SourceApp.GMAIL or self._mail is None or not original.id:
            return
        try:
            await self._mail.mark_consumed(original.id)
        except Exception as exc:
            logger.warning("Failed to mark %s as read: %s", original.id, exc)
