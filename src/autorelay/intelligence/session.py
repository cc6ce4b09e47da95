"""Shared inference session — one model resident at a time, one call at a time."""

from __future__ import annotations

import asyncio
import logging

import httpx

from autorelay.intelligence.backends import InferenceBackend, SessionMode

logger = logging.getLogger(__name__)

_INIT_ERRORS = (httpx.HTTPError, OSError, RuntimeError, ValueError)


class InferenceSession:
    """Mutually exclusive access to a single inference backend.

    The session tracks which mode is loaded (``NONE -> TEXT -> MULTIMODAL``).
    Switching modes tears the current model down before loading the next,
    and every multimodal call starts from a fresh load so image context from
    one request never bleeds into the next.  Initialization failures are not
    remembered; the next call simply tries again.

    A generation that is cancelled (superseded, timed out, or shut down)
    tears the session down before the cancellation propagates.
    """

    def __init__(self, backend: InferenceBackend) -> None:
        self._backend = backend
        self._lock = asyncio.Lock()
        self._mode = SessionMode.NONE
        self._current: asyncio.Task[str] | None = None

    @property
    def mode(self) -> SessionMode:
        return self._mode

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(self, prompt: str) -> str:
        """Text generation. Raises ``RuntimeError`` if the model cannot load."""
        async with self._lock:
            if not await self._ensure(SessionMode.TEXT):
                raise RuntimeError("Text model not initialized")
            return await self._run(SessionMode.TEXT, prompt, None)

    async def generate_multimodal(
        self,
        prompt: str,
        image: bytes,
        timeout: float | None = None,
    ) -> str:
        """Image + prompt generation, always on a freshly loaded session.

        *timeout* bounds the generation call only; waiting for the session
        and reloading the model are not counted.  Raises ``TimeoutError``
        when it expires.
        """
        async with self._lock:
            await self._teardown()
            if not await self._ensure(SessionMode.MULTIMODAL):
                raise RuntimeError("Multimodal model not initialized")
            return await asyncio.wait_for(
                self._run(SessionMode.MULTIMODAL, prompt, image),
                timeout=timeout,
            )

    async def submit(self, prompt: str) -> str:
        """Text generation that supersedes any previous :meth:`submit` still running."""
        previous = self._current
        if previous is not None and not previous.done():
            previous.cancel()
            try:
                await previous
            except asyncio.CancelledError:
                logger.debug("Superseded previous generation")
            except Exception:
                logger.debug("Previous generation failed while being superseded")

        task = asyncio.create_task(self.generate(prompt))
        self._current = task
        try:
            return await task
        finally:
            if self._current is task:
                self._current = None

    async def reset(self) -> None:
        """Drop the loaded model; the next call re-initializes."""
        async with self._lock:
            await self._teardown()

    async def close(self) -> None:
        """Cancel any in-flight submission and release the backend."""
        if self._current is not None and not self._current.done():
            self._current.cancel()
            try:
                await self._current
            except (asyncio.CancelledError, Exception):
                logger.debug("In-flight generation stopped during close")
        await self.reset()
        logger.info("Inference session closed")

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    async def _ensure(self, mode: SessionMode) -> bool:
        if self._mode is mode:
            return True
        await self._teardown()
        logger.debug("Starting %s model initialization...", mode)
        try:
            await self._backend.load(mode)
        except _INIT_ERRORS as exc:
            logger.error("Failed to initialize %s model: %s", mode, exc)
            return False
        self._mode = mode
        return True

    async def _run(self, mode: SessionMode, prompt: str, image: bytes | None) -> str:
        try:
            return await self._backend.generate(mode, prompt, image)
        except asyncio.CancelledError:
            await self._teardown()
            raise

    async def _teardown(self) -> None:
        if self._mode is SessionMode.NONE:
            return
        mode, self._mode = self._mode, SessionMode.NONE
        try:
            await self._backend.unload(mode)
        except _INIT_ERRORS as exc:
            logger.debug("Ignoring error while unloading %s model: %s", mode, exc)
