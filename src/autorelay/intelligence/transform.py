"""Rewrite step — turn fetched content into a subject/body pair via the LLM."""

from __future__ import annotations

import logging
import re

from autorelay.intelligence.session import InferenceSession
from autorelay.models import MessageContent, ProcessedMessage, SourceApp

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """\
You are an assistant that converts an incoming message into a concise email according to the user's instructions.

Output format (STRICT):
- Return EXACTLY two lines wrapped between the markers BEGIN and END (uppercase), like this:
BEGIN
Subject: <short, specific subject you write>
Body: <final email body only; no preface, no extra commentary>
END
- No other text before BEGIN or after END; no markdown, no quotes, no code fences.

User Instructions: {instructions}

Original Message:
From: {sender}
Subject/Title: {subject}
Content: {body}
"""

_SUBJECT_RE = re.compile(r"^[ \t]*Subject:[ \t]*(.*)$", re.IGNORECASE | re.MULTILINE)
_BODY_RE = re.compile(r"^[ \t]*Body:[ \t]*", re.IGNORECASE | re.MULTILINE)

ARRIVAL_SUBJECT = "Arrival Update"
ARRIVAL_BODY = "I'm coming home."
LOCATION_FALLBACK_SUBJECT = "Location Update"
LOCATION_FALLBACK_BODY = "I'm within the specified area."


def build_prompt(content: MessageContent, instructions: str) -> str:
    """Fill the fixed rewrite template."""
    return PROMPT_TEMPLATE.format(
        instructions=instructions,
        sender=content.sender,
        subject=content.subject,
        body=content.body,
    )


def extract_between_markers(raw: str) -> str:
    """Return the text between the last ``BEGIN`` preceding the last ``END``.

    Falls back to the whole (stripped) response when markers are missing.
    """
    end = raw.rfind("END")
    start = raw.rfind("BEGIN", 0, end) if end != -1 else -1
    if start != -1 and end > start:
        return raw[start + len("BEGIN") : end].strip()
    return raw.strip()


def parse_email_response(text: str) -> tuple[str, str] | None:
    """Parse ``Subject:``/``Body:`` lines. Body runs to the end of *text*.

    Returns ``None`` when neither label is present.
    """
    subject_match = _SUBJECT_RE.search(text)
    body_match = _BODY_RE.search(text)
    if subject_match is None and body_match is None:
        return None

    subject = subject_match.group(1).strip() if subject_match else ""
    body = text[body_match.end() :].strip() if body_match else ""
    return subject, body


class MessageTransformer:
    """Runs the rewrite prompt through the shared inference session."""

    def __init__(self, session: InferenceSession) -> None:
        self._session = session

    async def transform(
        self,
        content: MessageContent,
        instructions: str,
    ) -> ProcessedMessage | None:
        """Rewrite *content*. Returns ``None`` on inference or parse failure."""
        prompt = build_prompt(content, instructions)
        try:
            response = await self._session.generate(prompt)
        except Exception as exc:
            logger.error("Error processing with LLM: %r", exc)
            return None

        parsed = parse_email_response(extract_between_markers(response))
        if parsed is None:
            logger.warning("Unparsable LLM response (%d chars)", len(response))
            return None

        subject, body = parsed
        return ProcessedMessage(
            original=content,
            processed_subject=subject,
            processed_body=body,
            instructions=instructions,
        )


def arrival_message(content: MessageContent, instructions: str) -> ProcessedMessage:
    """Fixed message for Maps workflows without instructions."""
    return ProcessedMessage(
        original=content,
        processed_subject=ARRIVAL_SUBJECT,
        processed_body=ARRIVAL_BODY,
        instructions=instructions,
    )


def fallback_message(content: MessageContent, instructions: str) -> ProcessedMessage:
    """Deterministic substitute used when the rewrite step fails."""
    if content.source is SourceApp.MAPS:
        subject, body = LOCATION_FALLBACK_SUBJECT, LOCATION_FALLBACK_BODY
    else:
        subject, body = f"Fwd: {content.subject}".strip(), content.body
    return ProcessedMessage(
        original=content,
        processed_subject=subject,
        processed_body=body,
        instructions=instructions,
    )
