"""Frame recorder - captures rendered frames during playback into an animated GIF."""

import io
import logging
import time
from typing import Callable, Protocol

import numpy as np
from PIL import Image

from shotcaller import config

logger = logging.getLogger(__name__)

FrameSource = Callable[[], np.ndarray]


class RecordingSink(Protocol):
    def start(self, now: float | None = None) -> None: ...

    def capture(self, now: float | None = None) -> None: ...

    def stop(self, now: float | None = None) -> bytes: ...


class FrameRecorder:
    """Collects HxWx3 uint8 frames from ``source`` and encodes them on stop.

    Every frame is stamped with the time it was captured. On stop the frames
    are laid onto a fixed ``fps`` grid running from start to stop, so the GIF
    plays for as long as the recording lasted no matter how often ``capture``
    was called.
    """

    def __init__(self, source: FrameSource, fps: int = config.RECORDING_FPS,
                 clock: Callable[[], float] = time.perf_counter):
        self.source = source
        self.fps = fps
        self.clock = clock
        self.frames: list[Image.Image] = []
        self.timestamps: list[float] = []
        self.recording = False
        self._started_at = 0.0

    def start(self, now: float | None = None) -> None:
        self.frames = []
        self.timestamps = []
        self._started_at = self.clock() if now is None else now
        self.recording = True
        logger.info(f"Recording started at {self.fps} fps")

    def capture(self, now: float | None = None) -> None:
        if not self.recording:
            return
        frame = np.asarray(self.source())
        if frame.ndim == 2:
            frame = np.stack([frame] * 3, axis=-1)
        self.frames.append(Image.fromarray(frame.astype(np.uint8)[..., :3]))
        self.timestamps.append(self.clock() if now is None else now)

    def stop(self, now: float | None = None) -> bytes:
        """Encode everything captured so far. Always returns a non-empty GIF."""
        if not self.recording:
            raise RuntimeError("Recorder is not running")
        now = self.clock() if now is None else now
        if not self.frames:
            self.capture(now)
        self.recording = False

        images, durations = self._resample(now)
        buffer = io.BytesIO()
        first, *rest = images
        first.save(
            buffer,
            format="GIF",
            save_all=True,
            append_images=rest,
            duration=durations,
            loop=0,
        )
        data = buffer.getvalue()
        logger.info(
            f"Recording stopped: {len(self.frames)} frames captured, "
            f"{sum(durations)} ms encoded, {len(data)} bytes"
        )
        return data

    def _resample(self, end: float) -> tuple[list[Image.Image], list[int]]:
        """Frames and per-frame delays (ms) on the ``fps`` grid.

        Each slot shows the newest frame captured by the end of that slot.
        GIF delays are stored in centiseconds, so slot boundaries are rounded
        on the running total to keep the overall length exact.
        """
        times = np.asarray(self.timestamps) - self._started_at
        span = max(end - self._started_at, float(times[-1]), 0.0)
        total_ms = max(10, int(round(span * 100)) * 10)
        slots = max(1, int(round(span * self.fps)))

        slot_ends = np.arange(1, slots + 1) / self.fps
        boundaries = [min(int(round(t * 100)) * 10, total_ms) for t in slot_ends]
        boundaries[-1] = total_ms
        picks = np.clip(np.searchsorted(times, slot_ends, side="right") - 1, 0, len(self.frames) - 1)

        images: list[Image.Image] = []
        durations: list[int] = []
        previous = 0
        for boundary, index in zip(boundaries, picks):
            if boundary <= previous:
                continue
            images.append(self.frames[int(index)])
            durations.append(boundary - previous)
            previous = boundary
        return images, durations
