"""Face detection/embedding contract and similarity helpers."""

from __future__ import annotations

import base64
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    """Pixel rectangle of a detected face."""

    left: int
    top: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return max(self.width, 0) * max(self.height, 0)


class FaceAnalyzer(Protocol):
    """Face detector + embedder consumed by the photo matcher."""

    async def detect(self, image: bytes) -> list[BoundingBox]:
        """Return bounding boxes of faces found in *image*."""

    async def embed(self, image: bytes, box: BoundingBox) -> list[float] | None:
        """Return an embedding for the face in *box*, or ``None``."""


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity over the common prefix of *a* and *b*.

    Returns ``0.0`` when either vector has zero norm.
    """
    n = min(len(a), len(b))
    dot = na = nb = 0.0
    for i in range(n):
        dot += a[i] * b[i]
        na += a[i] * a[i]
        nb += b[i] * b[i]
    denom = math.sqrt(na) * math.sqrt(nb)
    return dot / denom if denom > 0 else 0.0


def l2_normalize(vec: Sequence[float]) -> list[float]:
    norm = math.sqrt(sum(v * v for v in vec))
    if norm <= 0:
        return list(vec)
    return [v / norm for v in vec]


class HttpFaceAnalyzer:
    """Face service reached over HTTP.

    Endpoints::

        POST {base_url}/detect  {"image": <b64>} -> {"faces": [{"left", "top", "width", "height"}]}
        POST {base_url}/embed   {"image": <b64>, "box": {...}} -> {"embedding": [float, ...]}

    Detection failures yield no faces; embedding failures yield ``None``.
    """

    def __init__(self, base_url: str, timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def detect(self, image: bytes) -> list[BoundingBox]:
        try:
            data = await self._post("detect", {"image": _b64(image)})
            return [
                BoundingBox(
                    left=int(face.get("left", 0)),
                    top=int(face.get("top", 0)),
                    width=int(face.get("width", 0)),
                    height=int(face.get("height", 0)),
                )
                for face in data.get("faces") or []
            ]
        except (httpx.HTTPError, AttributeError, TypeError, ValueError) as exc:
            logger.warning("Face detection failed: %s", exc)
            return []

    async def embed(self, image: bytes, box: BoundingBox) -> list[float] | None:
        payload = {
            "image": _b64(image),
            "box": {"left": box.left, "top": box.top, "width": box.width, "height": box.height},
        }
        try:
            data = await self._post("embed", payload)
            vector = [float(v) for v in data.get("embedding") or []]
        except (httpx.HTTPError, TypeError, ValueError) as exc:
            logger.error("Embedding failed: %s", exc)
            return None
        return l2_normalize(vector) if vector else None

    async def _post(self, endpoint: str, payload: dict) -> dict:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(f"{self._base_url}/{endpoint}", json=payload)
            resp.raise_for_status()
            data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected face service payload: {type(data).__name__}")
        return data


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
