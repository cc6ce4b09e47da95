"""Tests for content fetchers and the Gmail adapter."""

from __future__ import annotations

import base64
import email
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_content

from autorelay.models import Attachment, SourceApp
from autorelay.sources import ContentFetcher, matches_account, select_message
from autorelay.sources.gmail import GmailClient, encode_message, extract_body, message_from_api


def _mail(messages=None, initialized: bool = True) -> AsyncMock:
    mail = AsyncMock()
    mail.initialize.return_value = initialized
    mail.fetch_latest.return_value = messages or []
    return mail


# ------------------------------------------------------------------
# Selection policy
# ------------------------------------------------------------------


class TestSelection:
    def test_hint_matches_subject_case_insensitive(self) -> None:
        msgs = [make_content(id="1", subject="Lunch"), make_content(id="2", subject="INVOICE 7")]
        assert select_message(msgs, "invoice").id == "2"

    def test_hint_miss_falls_back_to_first(self) -> None:
        msgs = [make_content(id="1"), make_content(id="2")]
        assert select_message(msgs, "zzz").id == "1"

    def test_empty(self) -> None:
        assert select_message([], "x") is None

    def test_account_filter(self) -> None:
        msg = make_content(sender="Bob <bob@x.com>", recipient="team@x.com")
        assert matches_account(msg, "Any")
        assert matches_account(msg, "")
        assert matches_account(msg, "bob@x.com")
        assert matches_account(msg, "team@x.com")
        assert not matches_account(msg, "carol@x.com")

    def test_account_filter_is_case_sensitive(self) -> None:
        msg = make_content(sender="Bob <bob@x.com>", recipient="team@x.com")
        assert not matches_account(msg, "BOB@X.COM")
        assert matches_account(msg, "Bob")


# ------------------------------------------------------------------
# ContentFetcher
# ------------------------------------------------------------------


class TestContentFetcher:
    @pytest.mark.asyncio()
    async def test_gmail_filters_and_selects(self) -> None:
        mail = _mail(
            [
                make_content(id="1", recipient="other@x.com", subject="Invoice"),
                make_content(id="2", recipient="me@x.com", subject="Hello"),
                make_content(id="3", recipient="me@x.com", subject="Invoice 9"),
            ]
        )
        fetched = await ContentFetcher(mail).fetch(SourceApp.GMAIL, "me@x.com", "invoice")
        assert fetched.id == "3"
        mail.fetch_latest.assert_awaited_once_with("me@x.com")

    @pytest.mark.asyncio()
    async def test_gmail_not_initialized(self) -> None:
        mail = _mail(initialized=False)
        assert await ContentFetcher(mail).fetch(SourceApp.GMAIL, "Any") is None
        mail.fetch_latest.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_gmail_no_unread(self) -> None:
        assert await ContentFetcher(_mail([])).fetch(SourceApp.GMAIL, "Any") is None

    @pytest.mark.asyncio()
    async def test_collaborator_error_is_none(self) -> None:
        mail = _mail()
        mail.fetch_latest.side_effect = ConnectionError("offline")
        assert await ContentFetcher(mail).fetch(SourceApp.GMAIL, "Any") is None

    @pytest.mark.asyncio()
    async def test_maps_synthesized_from_hint(self) -> None:
        content = await ContentFetcher().fetch(SourceApp.MAPS, "Any", "Geofence ENTER")
        assert content.id.startswith("geofence-")
        assert content.sender == "Geofence"
        assert content.subject == content.body == "Geofence ENTER"
        assert content.source is SourceApp.MAPS

    @pytest.mark.asyncio()
    async def test_maps_without_hint(self) -> None:
        assert await ContentFetcher().fetch(SourceApp.MAPS, "Any", None) is None

    @pytest.mark.asyncio()
    async def test_photos_synthesized(self) -> None:
        content = await ContentFetcher().fetch(SourceApp.PHOTOS, "Any")
        assert content.id.startswith("photos-")
        assert (content.subject, content.body) == ("Photos Trigger", "New photos detected")

    @pytest.mark.asyncio()
    async def test_telegram_unsupported(self) -> None:
        mail = _mail()
        assert await ContentFetcher(mail).fetch(SourceApp.TELEGRAM, "Any") is None
        mail.initialize.assert_not_awaited()


# ------------------------------------------------------------------
# Gmail wire helpers
# ------------------------------------------------------------------


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode()


class TestGmailWire:
    def test_message_from_api(self) -> None:
        msg = message_from_api(
            {
                "id": "abc",
                "internalDate": "1700000000000",
                "payload": {
                    "mimeType": "multipart/alternative",
                    "headers": [
                        {"name": "From", "value": "a@x.com"},
                        {"name": "To", "value": "b@x.com"},
                        {"name": "Subject", "value": "Hi"},
                    ],
                    "parts": [
                        {"mimeType": "text/html", "body": {"data": _b64("<p>no</p>")}},
                        {"mimeType": "text/plain", "body": {"data": _b64("Hello")}},
                    ],
                },
            }
        )
        assert (msg.id, msg.sender, msg.recipient) == ("abc", "a@x.com", "b@x.com")
        assert msg.subject == "Hi"
        assert msg.body == "Hello"
        assert msg.timestamp == 1700000000000
        assert msg.source is SourceApp.GMAIL

    def test_extract_body_falls_back_to_snippet(self) -> None:
        msg = message_from_api(
            {"id": "x", "snippet": "snip", "payload": {"mimeType": "text/html"}}
        )
        assert msg.body == "snip"

    def test_nested_multipart(self) -> None:
        payload = {
            "mimeType": "multipart/mixed",
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [{"mimeType": "text/plain", "body": {"data": _b64("deep")}}],
                }
            ],
        }
        assert extract_body(payload) == "deep"

    def test_encode_with_attachment(self) -> None:
        raw = encode_message(
            "b@x.com",
            "Photo matched",
            "see attached",
            Attachment("photo_1.jpg", "image/jpeg", b"\xff\xd8"),
        )
        parsed = email.message_from_bytes(base64.urlsafe_b64decode(raw))
        assert parsed["To"] == "b@x.com"
        assert parsed["Subject"] == "Photo matched"
        filenames = [part.get_filename() for part in parsed.walk() if part.get_filename()]
        assert filenames == ["photo_1.jpg"]


# ------------------------------------------------------------------
# GmailClient
# ------------------------------------------------------------------


class TestGmailClient:
    @pytest.mark.asyncio()
    async def test_initialize_without_token(self, tmp_path: Path) -> None:
        client = GmailClient(tmp_path / "creds.json", tmp_path / "token.json")
        assert await client.initialize() is False
        assert client.is_initialized is False

    @pytest.mark.asyncio()
    async def test_uninitialized_operations_are_noops(self, tmp_path: Path) -> None:
        client = GmailClient(tmp_path / "c.json", tmp_path / "t.json")
        assert await client.fetch_latest() == []
        assert await client.send("a@x.com", "s", "b") is False
        assert await client.mark_consumed("id") is False

    @pytest.mark.asyncio()
    async def test_fetch_send_and_mark(self, tmp_path: Path) -> None:
        service = MagicMock()
        messages = service.users.return_value.messages.return_value
        messages.list.return_value.execute.return_value = {"messages": [{"id": "m1"}]}
        messages.get.return_value.execute.return_value = {
            "id": "m1",
            "payload": {
                "mimeType": "text/plain",
                "headers": [{"name": "To", "value": "me@x.com"}],
                "body": {"data": _b64("body")},
            },
        }
        client = GmailClient(tmp_path / "c.json", tmp_path / "t.json", max_results=5)
        client._service = service

        fetched = await client.fetch_latest("me@x.com")
        assert [m.id for m in fetched] == ["m1"]
        messages.list.assert_called_once_with(userId="me", q="is:unread in:inbox", maxResults=5)
        assert await client.fetch_latest("nobody@x.com") == []

        assert await client.send("you@x.com", "S", "B") is True
        assert "raw" in messages.send.call_args.kwargs["body"]

        assert await client.mark_consumed("m1") is True
        messages.modify.assert_called_once_with(
            userId="me", id="m1", body={"removeLabelIds": ["UNREAD"]}
        )

    @pytest.mark.asyncio()
    async def test_send_failure_returns_false(self, tmp_path: Path) -> None:
        service = MagicMock()
        service.users.return_value.messages.return_value.send.return_value.execute.side_effect = (
            OSError("network")
        )
        client = GmailClient(tmp_path / "c.json", tmp_path / "t.json")
        client._service = service
        assert await client.send("you@x.com", "S", "B") is False
