"""Mail collaborator protocol — defines what fetchers and dispatchers need."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from autorelay.models import ANY_ACCOUNT, Attachment, MessageContent


@runtime_checkable
class MailClient(Protocol):
    """Interface for a mailbox the pipeline can read from and send through."""

    async def initialize(self) -> bool:
        """Load credentials and build the client. Returns ``True`` when usable."""
        ...

    async def fetch_latest(self, account_filter: str = "") -> list[MessageContent]:
        """Return unread inbox messages, newest first."""
        ...

    async def send(
        self,
        account: str,
        subject: str,
        body: str,
        attachment: Attachment | None = None,
    ) -> bool:
        """Send a message to *account*."""
        ...

    async def mark_consumed(self, message_id: str) -> bool:
        """Mark a fetched message as read."""
        ...


def matches_account(message: MessageContent, account: str | None) -> bool:
    """True when *account* is a wildcard or appears in the To/From headers."""
    if not account or account == ANY_ACCOUNT:
        return True
    return account in message.recipient or account in message.sender
