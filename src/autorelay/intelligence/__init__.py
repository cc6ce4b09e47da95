"""Inference session, rewrite step, and photo decisions."""

from __future__ import annotations

from autorelay.intelligence.backends import InferenceBackend, OllamaBackend, SessionMode
from autorelay.intelligence.decision import Decision, PhotoMatcher, parse_decision
from autorelay.intelligence.session import InferenceSession
from autorelay.intelligence.transform import MessageTransformer

__all__ = [
    "Decision",
    "InferenceBackend",
    "InferenceSession",
    "MessageTransformer",
    "OllamaBackend",
    "PhotoMatcher",
    "SessionMode",
    "parse_decision",
]
