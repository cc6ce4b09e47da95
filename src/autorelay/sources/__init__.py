"""Source adapters — mail clients and content fetchers."""

from __future__ import annotations

from autorelay.sources.base import MailClient, matches_account
from autorelay.sources.fetchers import ContentFetcher, select_message

__all__ = ["ContentFetcher", "MailClient", "matches_account", "select_message"]
