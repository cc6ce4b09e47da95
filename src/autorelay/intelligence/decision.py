"""Photo forwarding decisions — person matching and the YES/NO grammar."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from autorelay.intelligence.faces import FaceAnalyzer, cosine_similarity
from autorelay.intelligence.session import InferenceSession

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.65
DEFAULT_DECISION_TIMEOUT = 7.0

DECISION_SUFFIX = """

SYSTEM: The image is already provided. Decide if it satisfies the user's instruction below. Use high recall.
Output EXACTLY these lines (if not applicable, leave empty after the colon, but still print the key):
DECISION: YES|NO
REASON: <short phrase why>
PARSE: <optional single-line key=value pairs>

User instruction: {instructions}
"""


@dataclass
class Decision:
    """Outcome of evaluating one photo against one workflow."""

    should_forward: bool
    reason: str | None = None
    parse: str | None = None
    matched_person: bool = False


def build_decision_prompt(instructions: str) -> str:
    return DECISION_SUFFIX.format(instructions=instructions).strip()


def parse_decision(text: str | None) -> Decision:
    """Parse ``DECISION/REASON/PARSE`` lines. Anything but ``YES`` is a no."""
    if not text or not text.strip():
        return Decision(should_forward=False)

    decision: str | None = None
    reason: str | None = None
    parse: str | None = None
    for line in text.splitlines():
        stripped = line.strip()
        upper = stripped.upper()
        if upper.startswith("DECISION:"):
            decision = stripped.split(":", 1)[1].strip()
        elif upper.startswith("REASON:"):
            reason = stripped.split(":", 1)[1].strip()
        elif upper.startswith("PARSE:"):
            parse = stripped
    return Decision(
        should_forward=(decision or "").upper() == "YES",
        reason=reason,
        parse=parse,
    )


class PhotoMatcher:
    """Decides whether a photo should be forwarded for a Photos workflow.

    Workflows with enrolled embeddings use face similarity; others ask the
    multimodal model.  Every failure path answers "no".
    """

    def __init__(
        self,
        session: InferenceSession,
        faces: FaceAnalyzer | None = None,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        decision_timeout: float = DEFAULT_DECISION_TIMEOUT,
    ) -> None:
        self._session = session
        self._faces = faces
        self._threshold = threshold
        self._decision_timeout = decision_timeout

    async def evaluate(
        self,
        image: bytes,
        instructions: str,
        enrolled: list[list[float]] | None = None,
    ) -> Decision:
        if enrolled:
            matched = await self.matches_person(image, enrolled)
            return Decision(should_forward=matched, matched_person=matched)
        return await self.decide(image, instructions)

    async def matches_person(self, image: bytes, enrolled: list[list[float]]) -> bool:
        """True if any detected face is within threshold of any enrolled vector."""
        if self._faces is None:
            logger.warning("Person match requested but no face analyzer is configured")
            return False

        for box in await self._faces.detect(image):
            vector = await self._faces.embed(image, box)
            if vector is None:
                continue
            for reference in enrolled:
                similarity = cosine_similarity(vector, reference)
                if similarity >= self._threshold:
                    logger.debug("Face matched with similarity %.3f", similarity)
                    return True
        return False

    async def decide(self, image: bytes, instructions: str) -> Decision:
        """Ask the multimodal model, bounded by the decision timeout."""
        prompt = build_decision_prompt(instructions)
        try:
            raw = await self._session.generate_multimodal(
                prompt,
                image,
                timeout=self._decision_timeout,
            )
        except TimeoutError:
            logger.warning("Photo decision timed out after %.1fs", self._decision_timeout)
            return Decision(should_forward=False)
        except Exception as exc:
            logger.warning("Photo decision failed: %r", exc)
            return Decision(should_forward=False)
        return parse_decision(raw)

    async def enroll(self, images: list[bytes]) -> list[list[float]]:
        """Embed the largest face of each enrollment image."""
        if self._faces is None:
            raise RuntimeError("No face analyzer configured")

        embeddings: list[list[float]] = []
        for image in images:
            boxes = await self._faces.detect(image)
            if not boxes:
                continue
            best = max(boxes, key=lambda b: b.area)
            vector = await self._faces.embed(image, best)
            if vector is not None:
                embeddings.append(vector)
        return embeddings
