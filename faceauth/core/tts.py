"""Text-to-speech notification of verification results."""
from __future__ import annotations

import queue
import threading
import time
from typing import Optional

import pyttsx3

from faceauth.core.logger import get_logger
from faceauth.core.types import AuthDecision

logger = get_logger("tts")


class Speaker:
    """Decision sink announcing authorized faces out loud.

    Announcements are rate limited so a person standing in front of the
    camera is not greeted on every frame. Speech runs on a worker thread
    that owns the pyttsx3 engine; at most one message waits behind the one
    being spoken, later ones are dropped.
    """

    def __init__(self, cooldown_seconds: float = 5.0, announce_rejected: bool = False) -> None:
        """Start the TTS worker.

        Args:
            cooldown_seconds: Minimum time between two announcements.
            announce_rejected: Also announce rejected faces.
        """
        self.cooldown_seconds = cooldown_seconds
        self.announce_rejected = announce_rejected
        self._last_spoken = float("-inf")
        self._pending: queue.Queue[Optional[str]] = queue.Queue(maxsize=1)
        self._stop = threading.Event()
        self._worker = threading.Thread(
            target=self._speak_loop, name="faceauth-tts", daemon=True
        )
        self._worker.start()

    def __call__(self, decision: AuthDecision) -> None:
        if not decision.authorized and not self.announce_rejected:
            return
        now = time.monotonic()
        if now - self._last_spoken < self.cooldown_seconds:
            return
        if self.say(decision.label.lower()):
            self._last_spoken = now

    def say(self, text: str) -> bool:
        """Queue a short message without waiting for it to be spoken.

        Returns:
            False if the message was dropped because speech is backed up.
        """
        if self._stop.is_set():
            return False
        try:
            self._pending.put_nowait(text)
        except queue.Full:
            logger.debug(f"Speech busy, dropping {text!r}")
            return False
        return True

    def _speak_loop(self) -> None:
        try:
            engine = pyttsx3.init()
        except Exception:
            logger.exception("Failed to initialize text-to-speech engine")
            return

        while True:
            text = self._pending.get()
            if text is None:
                break
            try:
                engine.say(text)
                engine.runAndWait()
            except Exception:
                logger.exception(f"Failed to speak {text!r}")

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the worker once the speech already queued has been said."""
        self._stop.set()
        if not self._worker.is_alive():
            return
        try:
            self._pending.put(None, timeout=timeout)
        except queue.Full:
            logger.warning("Text-to-speech worker did not stop in time")
            return
        self._worker.join(timeout)
