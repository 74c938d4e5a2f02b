"""Playback controller - drives camera commands over wall-clock time.

The controller owns the session status (through ``state.transition``), the
camera writes on each frame tick, the controls lock, and the optional
recording sink. Observers subscribe to a ProgressChannel instead of passing
callbacks into each operation.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Literal

from shotcaller import config, state
from shotcaller.engine import CameraHandle, ControlsHandle, apply_pose
from shotcaller.errors import AnimationError
from shotcaller.models import CameraCommand, CameraPose, PlaybackState, SessionStatus
from shotcaller.services.recorder import RecordingSink

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
EventKind = Literal["status", "progress", "complete", "recording", "error"]


@dataclass(frozen=True)
class PlaybackEvent:
    kind: EventKind
    status: SessionStatus
    progress: float
    message: str | None = None
    data: bytes | None = None


Listener = Callable[[PlaybackEvent], None]


class ProgressChannel:
    """Fan-out of playback events. Progress events are throttled to ``interval`` unless forced."""

    def __init__(self, interval: float = config.PROGRESS_INTERVAL_SECONDS):
        self.interval = interval
        self._listeners: list[Listener] = []
        self._last_progress_at: float | None = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: PlaybackEvent, now: float, force: bool = False) -> bool:
        if event.kind == "progress" and not force:
            if self._last_progress_at is not None and now - self._last_progress_at < self.interval:
                return False
            self._last_progress_at = now
        for listener in list(self._listeners):
            listener(event)
        return True

    def reset(self) -> None:
        self._last_progress_at = None


class PlaybackController:
    def __init__(
        self,
        camera: CameraHandle,
        controls: ControlsHandle | None = None,
        channel: ProgressChannel | None = None,
        clock: Clock = time.perf_counter,
    ):
        self.camera = camera
        self.controls = controls
        self.channel = channel or ProgressChannel()
        self.clock = clock
        self.state = PlaybackState()
        self.commands: list[CameraCommand] = []
        self._start_time = 0.0
        self._sink: RecordingSink | None = None
        self._sink_started = False

    # ── Properties ──────────────────────────────────────────────

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def progress(self) -> float:
        return self.state.progress

    @property
    def total_duration(self) -> float:
        return sum(cmd.duration for cmd in self.commands)

    # ── Status plumbing ─────────────────────────────────────────

    def _apply(self, event: state.Event, now: float | None = None) -> None:
        self.state.status = state.transition(self.status, event, has_commands=bool(self.commands))
        if self.controls is not None:
            self.controls.enabled = self.status != state.PLAYING
        self._publish("status", now)

    def _publish(self, kind: EventKind, now: float | None = None, message: str | None = None,
                 data: bytes | None = None, force: bool = False) -> None:
        event = PlaybackEvent(kind=kind, status=self.status, progress=self.progress, message=message, data=data)
        self.channel.publish(event, self.clock() if now is None else now, force=force)

    # ── Generation lifecycle ────────────────────────────────────

    def begin_generation(self) -> None:
        """Enter ``generating`` and drop the previous path."""
        self._stop_sink()
        if self.status == state.PLAYING:
            self._apply("stop")
        self.commands = []
        self.state.progress = 0.0
        self._apply("generate")

    def fail_generation(self, message: str) -> None:
        if self.status == state.GENERATING:
            self._apply("fail")
        self._publish("error", message=message)

    def load(self, commands: list[CameraCommand]) -> None:
        """Atomically replace the command list."""
        if not commands:
            raise AnimationError("Cannot load an empty command list")
        event = "generated" if self.status == state.GENERATING else "load"
        if not state.can(self.status, event):
            raise AnimationError(f"Cannot load commands while {self.status}")
        self.commands = list(commands)
        self.state.progress = 0.0
        self.channel.reset()
        self._apply(event)
        logger.info(f"Loaded {len(commands)} commands ({self.total_duration:.2f}s)")

    # ── Transport ───────────────────────────────────────────────

    def play(self, now: float | None = None) -> None:
        now = self.clock() if now is None else now
        if self.progress >= 100.0:
            self.state.progress = 0.0
            self.channel.reset()
        self._apply("play", now)
        elapsed = self.progress / 100.0 * self.total_duration
        self._start_time = now - elapsed / self.state.playback_speed
        if self._sink is not None and not self._sink_started:
            self._sink.start(now)
            self._sink_started = True

    def pause(self, now: float | None = None) -> None:
        now = self.clock() if now is None else now
        self.tick(now)
        if self.status == state.PLAYING:
            self._apply("pause", now)

    def stop(self) -> None:
        self._stop_sink()
        self.state.progress = 0.0
        self._apply("stop")

    def reset(self) -> None:
        """Stop and forget the loaded path."""
        self._stop_sink()
        self.commands = []
        self.state.progress = 0.0
        self._apply("reset")

    def seek(self, progress: float) -> CameraPose:
        if self.status == state.PLAYING:
            raise AnimationError("Cannot seek while playing")
        if not self.commands:
            raise AnimationError("No commands loaded")
        self.state.progress = min(max(progress, 0.0), 100.0)
        if self.status == state.COMPLETE and self.progress < 100.0:
            self._apply("seek")
        pose = self.pose_at_progress(self.progress)
        apply_pose(self.camera, pose, self.controls)
        self._publish("progress", force=True)
        return pose

    def set_speed(self, multiplier: float, now: float | None = None) -> None:
        if multiplier <= 0:
            raise AnimationError(f"Playback speed must be positive, got {multiplier}")
        now = self.clock() if now is None else now
        if self.status == state.PLAYING:
            elapsed = (now - self._start_time) * self.state.playback_speed
            self._start_time = now - elapsed / multiplier
        self.state.playback_speed = multiplier

    # ── Frame callback ──────────────────────────────────────────

    def tick(self, now: float | None = None) -> None:
        if self.status != state.PLAYING:
            return
        now = self.clock() if now is None else now
        try:
            self._advance(now)
        except Exception as e:
            logger.error(f"Playback failed: {e}")
            self._stop_sink()
            self.state.progress = 0.0
            self._apply("reset", now)
            self._publish("error", now, message=str(e))
            if isinstance(e, AnimationError):
                raise
            raise AnimationError(f"Playback failed: {e}") from e

    def _advance(self, now: float) -> None:
        total = self.total_duration
        elapsed = max(0.0, (now - self._start_time) * self.state.playback_speed)

        if elapsed >= total:
            apply_pose(self.camera, self.commands[-1].end, self.controls)
            self.state.progress = 100.0
            if self._sink is not None:
                self._sink.capture(now)
            self._apply("finish", now)
            self._publish("complete", now)
            self._stop_sink(now)
            logger.info("Playback complete")
            return

        apply_pose(self.camera, self.pose_at_time(elapsed), self.controls)
        self.state.progress = max(self.progress, min(100.0, elapsed / total * 100.0))
        if self._sink is not None:
            self._sink.capture(now)
        self._publish("progress", now)

    # ── Interpolation ───────────────────────────────────────────

    def pose_at_time(self, elapsed: float) -> CameraPose:
        if not self.commands:
            raise AnimationError("No commands loaded")
        segment_start = 0.0
        for cmd in self.commands:
            if elapsed <= segment_start + cmd.duration:
                return cmd.pose_at((elapsed - segment_start) / cmd.duration)
            segment_start += cmd.duration
        return self.commands[-1].pose_at(1.0)

    def pose_at_progress(self, progress: float) -> CameraPose:
        return self.pose_at_time(progress / 100.0 * self.total_duration)

    # ── Recording ───────────────────────────────────────────────

    def start_recording(self, sink: RecordingSink) -> None:
        if self._sink is not None:
            raise AnimationError("Already recording")
        self._sink = sink
        self._sink_started = False
        self.state.recording = True
        if self.status == state.PLAYING:
            sink.start(self.clock())
            self._sink_started = True

    def stop_recording(self, now: float | None = None) -> bytes:
        if self._sink is None:
            raise AnimationError("Not recording")
        return self._stop_sink(now)

    def _stop_sink(self, now: float | None = None) -> bytes | None:
        sink = self._sink
        if sink is None:
            return None
        now = self.clock() if now is None else now
        if not self._sink_started:
            sink.start(now)
        self._sink = None
        self._sink_started = False
        self.state.recording = False
        data = sink.stop(now)
        self._publish("recording", now, data=data)
        return data
