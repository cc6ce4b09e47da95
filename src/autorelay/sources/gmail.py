"""Gmail API mail client."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
from email.message import EmailMessage
from pathlib import Path
from typing import Any

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from autorelay.models import Attachment, MessageContent, SourceApp
from autorelay.sources.base import matches_account

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
]

_CALL_ERRORS = (HttpError, GoogleAuthError, OSError, ValueError)


class GmailClient:
    """Gmail adapter built on ``google-api-python-client``.

    The runtime only loads (and refreshes) a stored OAuth token; the
    interactive consent flow is :meth:`authorize`, run from the CLI.
    All API calls are blocking and are pushed onto a worker thread.
    """

    def __init__(
        self,
        credentials_path: Path | str,
        token_path: Path | str,
        *,
        max_results: int = 10,
        query: str = "is:unread in:inbox",
    ) -> None:
        self._credentials_path = Path(credentials_path).expanduser()
        self._token_path = Path(token_path).expanduser()
        self._max_results = max_results
        self._query = query
        self._service: Any = None

    @property
    def is_initialized(self) -> bool:
        return self._service is not None

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        if self._service is not None:
            return True
        try:
            self._service = await asyncio.to_thread(self._build_service)
        except _CALL_ERRORS as exc:
            logger.error("Error initializing Gmail: %s", exc)
            return False
        return self._service is not None

    def _build_service(self) -> Any:
        if not self._token_path.is_file():
            logger.warning("No Gmail token at %s; run 'autorelay gmail-auth'", self._token_path)
            return None
        creds = Credentials.from_authorized_user_file(str(self._token_path), SCOPES)
        if not creds.valid:
            if creds.expired and creds.refresh_token:
                creds.refresh(Request())
                self._store_token(creds)
            else:
                logger.warning("Stored Gmail token is invalid; run 'autorelay gmail-auth'")
                return None
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    def authorize(self) -> Path:
        """Run the installed-app consent flow and store the token."""
        flow = InstalledAppFlow.from_client_secrets_file(str(self._credentials_path), SCOPES)
        creds = flow.run_local_server(port=0)
        self._store_token(creds)
        return self._token_path

    def _store_token(self, creds: Credentials) -> None:
        self._token_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._token_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as token:
            token.write(creds.to_json())

    # ------------------------------------------------------------------
    # Mail operations
    # ------------------------------------------------------------------

    async def fetch_latest(self, account_filter: str = "") -> list[MessageContent]:
        if self._service is None:
            return []
        try:
            messages = await asyncio.to_thread(self._fetch_sync)
        except _CALL_ERRORS as exc:
            logger.error("Error fetching Gmail messages: %s", exc)
            return []
        return [m for m in messages if matches_account(m, account_filter)]

    def _fetch_sync(self) -> list[MessageContent]:
        listing = (
            self._service.users()
            .messages()
            .list(userId="me", q=self._query, maxResults=self._max_results)
            .execute()
        )
        result: list[MessageContent] = []
        for ref in listing.get("messages", []):
            full = (
                self._service.users()
                .messages()
                .get(userId="me", id=ref["id"], format="full")
                .execute()
            )
            result.append(message_from_api(full))
        return result

    async def send(
        self,
        account: str,
        subject: str,
        body: str,
        attachment: Attachment | None = None,
    ) -> bool:
        if self._service is None:
            return False
        raw = encode_message(account, subject, body, attachment)
        try:
            await asyncio.to_thread(
                lambda: self._service.users()
                .messages()
                .send(userId="me", body={"raw": raw})
                .execute()
            )
        except _CALL_ERRORS as exc:
            logger.error("Error sending email to %s: %s", account, exc)
            return False
        logger.info("Email sent to %s", account)
        return True

    async def mark_consumed(self, message_id: str) -> bool:
        if self._service is None:
            return False
        try:
            await asyncio.to_thread(
                lambda: self._service.users()
                .messages()
                .modify(userId="me", id=message_id, body={"removeLabelIds": ["UNREAD"]})
                .execute()
            )
        except _CALL_ERRORS as exc:
            logger.warning("Could not mark %s as read: %s", message_id, exc)
            return False
        return True


# ------------------------------------------------------------------
# Wire helpers
# ------------------------------------------------------------------


def message_from_api(message: dict[str, Any]) -> MessageContent:
    """Convert a ``format=full`` Gmail API message into :class:`MessageContent`."""
    payload = message.get("payload", {})
    headers = {h.get("name", "").lower(): h.get("value", "") for h in payload.get("headers", [])}
    return MessageContent(
        id=message.get("id", ""),
        sender=headers.get("from", ""),
        recipient=headers.get("to", ""),
        subject=headers.get("subject", ""),
        body=extract_body(payload) or message.get("snippet", ""),
        timestamp=int(message.get("internalDate") or 0),
        source=SourceApp.GMAIL,
    )


def extract_body(payload: dict[str, Any]) -> str:
    """Return the first ``text/plain`` part, searching nested multiparts."""
    if payload.get("mimeType", "").startswith("multipart/"):
        for part in payload.get("parts", []):
            text = extract_body(part)
            if text:
                return text
        return ""
    if payload.get("mimeType", "text/plain") != "text/plain":
        return ""
    data = payload.get("body", {}).get("data", "")
    if not data:
        return ""
    return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")


def encode_message(
    to: str,
    subject: str,
    body: str,
    attachment: Attachment | None = None,
) -> str:
    """Build an RFC 2822 message and return it base64url-encoded."""
    msg = EmailMessage()
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)
    if attachment is not None:
        maintype, _, subtype = attachment.content_type.partition("/")
        msg.add_attachment(
            attachment.data,
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
