"""Inference backend protocol and the Ollama implementation."""

from __future__ import annotations

import base64
import logging
from enum import StrEnum
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class SessionMode(StrEnum):
    """Which model the shared session currently holds."""

    NONE = "none"
    TEXT = "text"
    MULTIMODAL = "multimodal"


class InferenceBackend(Protocol):
    """Protocol that all inference engines must satisfy."""

    async def load(self, mode: SessionMode) -> None:
        """Load the model for *mode*. Raises on failure."""

    async def generate(self, mode: SessionMode, prompt: str, image: bytes | None = None) -> str:
        """Run one generation against the loaded model."""

    async def unload(self, mode: SessionMode) -> None:
        """Release the model for *mode*."""


class OllamaBackend:
    """Ollama local LLM backend.

    Text and multimodal modes map to two configured models; the vision
    model receives the image base64-encoded in the ``images`` field.
    """

    def __init__(
        self,
        host: str = "http://localhost:11434",
        text_model: str = "gemma3:1b",
        vision_model: str = "gemma3:4b",
        max_tokens: int = 512,
        text_options: dict[str, float] | None = None,
        vision_options: dict[str, float] | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._host = host.rstrip("/")
        self._models = {SessionMode.TEXT: text_model, SessionMode.MULTIMODAL: vision_model}
        self._max_tokens = max_tokens
        self._options = {
            SessionMode.TEXT: text_options or {"temperature": 0.7, "top_k": 40, "top_p": 0.95},
            SessionMode.MULTIMODAL: vision_options
            or {"temperature": 0.3, "top_k": 40, "top_p": 0.9},
        }
        self._timeout = timeout

    def model_for(self, mode: SessionMode) -> str:
        if mode is SessionMode.NONE:
            raise ValueError("No model for session mode 'none'")
        return self._models[mode]

    async def load(self, mode: SessionMode) -> None:
        """Preload the model; an empty generate request loads it into memory."""
        await self._post({"model": self.model_for(mode), "keep_alive": "5m"})
        logger.debug("Loaded %s model %s", mode, self.model_for(mode))

    async def generate(self, mode: SessionMode, prompt: str, image: bytes | None = None) -> str:
        """Call Ollama generate API and return the response text."""
        payload: dict = {
            "model": self.model_for(mode),
            "prompt": prompt,
            "stream": False,
            "options": {**self._options[mode], "num_predict": self._max_tokens},
        }
        if image is not None:
            payload["images"] = [base64.b64encode(image).decode("ascii")]
        data = await self._post(payload)
        response = data.get("response", "")
        if not isinstance(response, str):
            raise ValueError(f"Unexpected Ollama response field: {type(response).__name__}")
        return response

    async def unload(self, mode: SessionMode) -> None:
        """Ask Ollama to evict the model immediately."""
        await self._post({"model": self.model_for(mode), "keep_alive": 0})
        logger.debug("Unloaded %s model %s", mode, self.model_for(mode))

    async def _post(self, payload: dict) -> dict:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                f"{self._host}/api/generate",
                json=payload,
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Ollama payload: {type(data).__name__}")
        return data
