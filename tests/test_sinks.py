"""Tests for decision sinks: preview overlay and spoken announcements."""
from __future__ import annotations

import logging
import threading
import time

import numpy as np

from faceauth.core import tts
from faceauth.core.types import AuthDecision, AuthState
from faceauth.core.video_render import DecisionOverlay

AUTHORIZED = AuthDecision(distance=0.1, authorized=True, threshold=0.4)
REJECTED = AuthDecision(distance=0.9, authorized=False, threshold=0.4)


class FakeTTSEngine:
    """pyttsx3 engine recording what it was asked to say.

    When ``gate`` is given, ``runAndWait`` blocks until it is set.
    """

    def __init__(self, gate=None):
        self.spoken = []
        self.gate = gate

    def say(self, text):
        self.spoken.append(text)

    def runAndWait(self):
        if self.gate is not None:
            self.gate.wait(5)


class TestDecisionOverlay:
    """Tests for DecisionOverlay."""

    def test_draws_latest_decision(self):
        """Test the banner shows the latest decision."""
        overlay = DecisionOverlay()
        frame = np.zeros((120, 320, 3), dtype=np.uint8)

        overlay(AUTHORIZED)
        overlay.on_state(AuthState.AUTHORIZED)
        drawn = overlay.draw(frame)

        assert overlay.current() is AUTHORIZED
        # banner background in the authorized color (BGR)
        assert tuple(drawn[2, 2]) == (0, 200, 0)

    def test_decision_expires(self):
        """Test a decision stops showing after the hold time."""
        overlay = DecisionOverlay(hold_seconds=0.0)
        overlay(REJECTED)
        time.sleep(0.01)

        assert overlay.current() is None

    def test_nothing_to_draw(self):
        """Test the frame is untouched without a decision."""
        frame = np.zeros((60, 200, 3), dtype=np.uint8)
        drawn = DecisionOverlay().draw(frame)

        assert tuple(drawn[2, 2]) == (0, 0, 0)


class TestSpeaker:
    """Tests for the text-to-speech sink."""

    def test_announces_authorized_with_cooldown(self, monkeypatch):
        """Test authorized faces are announced once per cooldown."""
        engine = FakeTTSEngine()
        monkeypatch.setattr(tts.pyttsx3, "init", lambda: engine)
        speaker = tts.Speaker(cooldown_seconds=60)

        speaker(AUTHORIZED)
        speaker(AUTHORIZED)
        speaker.close()

        assert engine.spoken == ["authorized"]

    def test_rejected_is_silent_by_default(self, monkeypatch):
        """Test rejected faces are only announced when enabled."""
        engine = FakeTTSEngine()
        monkeypatch.setattr(tts.pyttsx3, "init", lambda: engine)
        quiet = tts.Speaker()
        loud = tts.Speaker(cooldown_seconds=0, announce_rejected=True)

        quiet(REJECTED)
        loud(REJECTED)
        quiet.close()
        loud.close()

        assert engine.spoken == ["not authorized"]

    def test_slow_speech_does_not_block_caller(self, monkeypatch):
        """Test announcing returns while the engine is still speaking."""
        gate = threading.Event()
        engine = FakeTTSEngine(gate=gate)
        monkeypatch.setattr(tts.pyttsx3, "init", lambda: engine)
        speaker = tts.Speaker(cooldown_seconds=0)

        try:
            start = time.monotonic()
            for _ in range(3):
                speaker(AUTHORIZED)
            elapsed = time.monotonic() - start

            assert elapsed < 1.0
        finally:
            gate.set()
            speaker.close()

        assert 1 <= len(engine.spoken) <= 2
        assert not speaker._worker.is_alive()

    def test_closed_speaker_drops_messages(self, monkeypatch):
        """Test nothing is queued after close."""
        engine = FakeTTSEngine()
        monkeypatch.setattr(tts.pyttsx3, "init", lambda: engine)
        speaker = tts.Speaker()
        speaker.close()

        assert speaker.say("hello") is False
        assert engine.spoken == []

    def test_engine_init_failure_is_logged(self, monkeypatch, caplog):
        """Test a missing speech backend leaves the sink harmless."""
        def broken_init():
            raise RuntimeError("no audio device")

        monkeypatch.setattr(tts.pyttsx3, "init", broken_init)
        with caplog.at_level(logging.ERROR, logger="faceauth"):
            speaker = tts.Speaker()
            speaker._worker.join(5)

        speaker(AUTHORIZED)
        speaker.close()

        assert "Failed to initialize text-to-speech engine" in caplog.text
