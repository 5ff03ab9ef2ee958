"""Live verification pipeline: camera frames pushed through a StreamController."""
from __future__ import annotations

import threading
from typing import Iterable, Optional

import cv2

from faceauth.core.frame_convert import frame_to_rgb
from faceauth.core.logger import get_logger
from faceauth.core.stream import StreamController
from faceauth.core.types import RawFrame
from faceauth.core.video_capture import VideoCapture
from faceauth.core.video_render import DecisionOverlay
from faceauth.pipelines.enroll import AuthSession

logger = get_logger("live_verify")

PREVIEW_WINDOW = "faceauth"


def run_camera_loop(
    frames: Iterable[RawFrame],
    controller: StreamController,
    stop_event: Optional[threading.Event] = None,
    max_frames: Optional[int] = None,
    overlay: Optional[DecisionOverlay] = None,
) -> int:
    """Push frames into the controller until the source or ``stop_event`` ends.

    Frames are offered without blocking; the controller drops those that
    arrive while a run is in flight.

    Args:
        frames: Frame producer, e.g. ``VideoCapture.frames()``.
        controller: Controller receiving the frames.
        stop_event: Set from another thread to stop the loop.
        max_frames: Stop after this many frames.
        overlay: If given, show a preview window with the latest decision;
            pressing ``q`` stops the loop.

    Returns:
        Number of frames read from the source.
    """
    count = 0
    for frame in frames:
        if stop_event is not None and stop_event.is_set():
            break
        count += 1
        controller.submit(frame)

        if overlay is not None:
            preview = cv2.cvtColor(frame_to_rgb(frame), cv2.COLOR_RGB2BGR)
            cv2.imshow(PREVIEW_WINDOW, overlay.draw(preview))
            if (cv2.waitKey(1) & 0xFF) == ord("q"):
                break

        if max_frames is not None and count >= max_frames:
            break
    return count


class LiveVerificationPipeline:
    """Pipeline for real-time face verification on a camera stream."""

    def __init__(
        self,
        session: AuthSession,
        *,
        camera_index: int = 0,
        width: int = 640,
        height: int = 480,
        rotation: int = 0,
        preview: bool = False,
        say: bool = False,
    ) -> None:
        """Initialize the live pipeline.

        Args:
            session: Started verification session.
            camera_index: Index of camera device.
            width: Desired frame width.
            height: Desired frame height.
            rotation: Clockwise rotation applied to camera frames.
            preview: Show a preview window with decisions.
            say: Announce authorized faces with text-to-speech.
        """
        self.session = session
        self.capture = VideoCapture(
            camera_index=camera_index, width=width, height=height, rotation=rotation
        )
        self.overlay = DecisionOverlay() if preview else None

        self.speaker = None
        sinks = []
        if self.overlay is not None:
            sinks.append(self.overlay)
        if say:
            from faceauth.core.tts import Speaker

            self.speaker = Speaker()
            sinks.append(self.speaker)

        self.controller = session.controller(sinks=sinks)
        if self.overlay is not None:
            self.controller.add_state_listener(self.overlay.on_state)

    def run(
        self,
        stop_event: Optional[threading.Event] = None,
        max_frames: Optional[int] = None,
    ) -> dict[str, int]:
        """Capture and verify frames until the camera stops or ``stop_event`` is set.

        Returns:
            Controller statistics plus the number of frames read.
        """
        try:
            with self.capture as capture:
                frames_read = run_camera_loop(
                    capture.frames(),
                    self.controller,
                    stop_event=stop_event,
                    max_frames=max_frames,
                    overlay=self.overlay,
                )
            self.controller.wait_idle(self.session.config.run_timeout_s)
        finally:
            self.controller.close()
            if self.speaker is not None:
                self.speaker.close()
            if self.overlay is not None:
                cv2.destroyWindow(PREVIEW_WINDOW)

        stats = self.controller.stats
        stats["frames"] = frames_read
        logger.info(f"Camera loop finished: {stats}")
        return stats
