"""Preview rendering: camera frame with the latest verification result."""
from __future__ import annotations

import threading
import time
from typing import Optional

import cv2
import numpy as np

from faceauth.core.types import AuthDecision, AuthState


class DecisionOverlay:
    """Decision sink that remembers the latest result and draws it on frames.

    Register the instance as a sink and as a state listener of a
    StreamController, then call :meth:`draw` on each preview frame.
    """

    def __init__(
        self,
        authorized_color: tuple[int, int, int] = (0, 200, 0),
        rejected_color: tuple[int, int, int] = (0, 0, 255),
        text_color: tuple[int, int, int] = (255, 255, 255),
        hold_seconds: float = 2.0,
        font_scale: float = 0.8,
        font_thickness: int = 2,
    ) -> None:
        """Initialize the overlay.

        Args:
            authorized_color: BGR banner color for authorized decisions.
            rejected_color: BGR banner color for rejected decisions.
            text_color: BGR color of banner text.
            hold_seconds: How long a decision stays on screen.
            font_scale: Scale factor for text font.
            font_thickness: Thickness of text font.
        """
        self.authorized_color = authorized_color
        self.rejected_color = rejected_color
        self.text_color = text_color
        self.hold_seconds = hold_seconds
        self.font_scale = font_scale
        self.font_thickness = font_thickness
        self.font = cv2.FONT_HERSHEY_SIMPLEX

        self._lock = threading.Lock()
        self._decision: Optional[AuthDecision] = None
        self._decided_at = 0.0
        self._state = AuthState.IDLE

    def __call__(self, decision: AuthDecision) -> None:
        with self._lock:
            self._decision = decision
            self._decided_at = time.monotonic()

    def on_state(self, state: AuthState) -> None:
        self._state = state

    def current(self) -> Optional[AuthDecision]:
        """Return the decision still within its hold time, if any."""
        with self._lock:
            if self._decision is None:
                return None
            if time.monotonic() - self._decided_at > self.hold_seconds:
                return None
            return self._decision

    def draw(self, frame_bgr: np.ndarray) -> np.ndarray:
        """Draw the banner and the controller state on a BGR frame in place."""
        decision = self.current()
        if decision is not None:
            color = self.authorized_color if decision.authorized else self.rejected_color
            text = f"{decision.label} ({decision.distance:.3f})"
            (text_width, text_height), baseline = cv2.getTextSize(
                text, self.font, self.font_scale, self.font_thickness
            )
            cv2.rectangle(
                frame_bgr,
                (0, 0),
                (text_width + 20, text_height + baseline + 20),
                color,
                -1,
            )
            cv2.putText(
                frame_bgr,
                text,
                (10, text_height + 10),
                self.font,
                self.font_scale,
                self.text_color,
                self.font_thickness,
            )

        cv2.putText(
            frame_bgr,
            self._state.value,
            (10, frame_bgr.shape[0] - 10),
            self.font,
            0.5,
            self.text_color,
            1,
        )
        return frame_bgr
