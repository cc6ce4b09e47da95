"""Delivery — destination channels and the dispatcher that routes to them."""

from __future__ import annotations

from autorelay.delivery.dispatcher import DestinationDispatcher
from autorelay.delivery.telegram import TelegramSender, format_envelope

__all__ = ["DestinationDispatcher", "TelegramSender", "format_envelope"]
