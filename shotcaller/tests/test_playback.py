"""Tests for the playback controller, driven by a fake clock."""

import io

import numpy as np
import pytest
from PIL import Image, ImageSequence

from shotcaller import state
from shotcaller.engine import SimpleCamera, SimpleControls
from shotcaller.errors import AnimationError
from shotcaller.models import CameraCommand, CameraPose, Vector3
from shotcaller.playback import PlaybackController, ProgressChannel
from shotcaller.services.recorder import FrameRecorder


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class BrokenCamera:
    target = np.zeros(3)
    fov = 50.0

    @property
    def position(self):
        return np.zeros(3)

    @position.setter
    def position(self, value):
        raise RuntimeError("render context lost")


def command(start=(0.0, 0.0, 5.0), end=(5.0, 0.0, 0.0), duration=4.0):
    return CameraCommand(
        start=CameraPose(position=Vector3.from_array(start), target=Vector3()),
        end=CameraPose(position=Vector3.from_array(end), target=Vector3()),
        duration=duration,
    )


def make_controller(interval=0.0, camera=None):
    camera = camera or SimpleCamera()
    controls = SimpleControls(camera)
    clock = FakeClock()
    controller = PlaybackController(camera, controls, ProgressChannel(interval), clock=clock)
    events = []
    controller.channel.subscribe(events.append)
    return controller, controls, clock, events


class TestTransport:
    def test_load_then_play(self):
        controller, controls, _, _ = make_controller()
        controller.load([command()])
        assert controller.status == state.READY
        assert controls.enabled
        controller.play(now=0.0)
        assert controller.status == state.PLAYING
        assert not controls.enabled

    def test_tick_moves_camera(self):
        controller, _, _, _ = make_controller()
        controller.load([command()])
        controller.play(now=0.0)
        controller.tick(1.0)
        assert controller.progress == pytest.approx(25.0)
        assert np.allclose(controller.camera.position, [1.25, 0.0, 3.75])

    def test_progress_is_monotonic(self):
        controller, _, _, events = make_controller()
        controller.load([command()])
        controller.play(now=0.0)
        for t in np.arange(0.25, 4.01, 0.25):
            controller.tick(float(t))
        values = [e.progress for e in events if e.kind == "progress"]
        assert values == sorted(values)
        assert controller.progress == 100.0

    def test_pause_and_resume(self):
        controller, controls, _, _ = make_controller()
        controller.load([command()])
        controller.play(now=0.0)
        controller.pause(now=2.0)
        assert controller.status == state.PAUSED
        assert controller.progress == pytest.approx(50.0)
        assert controls.enabled

        controller.tick(3.0)
        controller.pause(now=3.0)
        assert controller.progress == pytest.approx(50.0)

        controller.play(now=10.0)
        controller.tick(11.0)
        assert controller.progress == pytest.approx(75.0)

    def test_seek(self):
        controller, _, _, _ = make_controller()
        controller.load([command()])
        pose = controller.seek(50.0)
        assert np.allclose(pose.position.to_array(), [2.5, 0.0, 2.5])
        assert np.allclose(controller.camera.position, [2.5, 0.0, 2.5])

    def test_seek_while_playing(self):
        controller, _, _, _ = make_controller()
        controller.load([command()])
        controller.play(now=0.0)
        with pytest.raises(AnimationError):
            controller.seek(10.0)

    def test_seek_after_complete_resumes_from_seek_point(self):
        controller, _, _, _ = make_controller()
        controller.load([command()])
        controller.play(now=0.0)
        controller.tick(5.0)
        assert controller.status == state.COMPLETE
        controller.seek(50.0)
        assert controller.status == state.PAUSED
        controller.play(now=10.0)
        controller.tick(10.0)
        assert controller.progress == pytest.approx(50.0)
        controller.tick(11.0)
        assert controller.progress == pytest.approx(75.0)

    def test_seek_event_not_throttled(self):
        controller, _, _, events = make_controller(interval=10.0)
        controller.load([command()])
        controller.seek(10.0)
        controller.seek(60.0)
        seeks = [e.progress for e in events if e.kind == "progress"]
        assert seeks == [10.0, 60.0]

    def test_pause_resume_matches_uninterrupted_pose(self):
        eased = command().model_copy(update={"easing": "easeInOutCubic"})
        interrupted, _, _, _ = make_controller()
        interrupted.load([eased])
        interrupted.play(now=0.0)
        interrupted.tick(0.7)
        interrupted.pause(now=1.0)
        interrupted.play(now=30.0)
        interrupted.tick(31.5)

        straight, _, _, _ = make_controller()
        straight.load([eased])
        straight.play(now=0.0)
        straight.tick(2.5)

        assert np.allclose(interrupted.camera.position, straight.camera.position, atol=1e-9)
        assert np.allclose(interrupted.camera.target, straight.camera.target, atol=1e-9)
        assert interrupted.camera.fov == pytest.approx(straight.camera.fov)

    def test_play_without_commands(self):
        controller, _, _, _ = make_controller()
        with pytest.raises(AnimationError, match="No commands"):
            controller.play(now=0.0)

    def test_stop(self):
        controller, controls, _, _ = make_controller()
        controller.load([command()])
        controller.play(now=0.0)
        controller.tick(1.0)
        controller.stop()
        assert controller.status == state.IDLE
        assert controller.progress == 0.0
        assert controls.enabled

    def test_load_rejected_while_playing(self):
        controller, _, _, _ = make_controller()
        controller.load([command()])
        controller.play(now=0.0)
        with pytest.raises(AnimationError):
            controller.load([command()])


class TestCompletion:
    def test_complete_fires_once(self):
        controller, _, _, events = make_controller()
        controller.load([command()])
        controller.play(now=0.0)
        controller.tick(5.0)
        controller.tick(6.0)
        assert [e.kind for e in events].count("complete") == 1
        assert controller.status == state.COMPLETE
        assert controller.progress == 100.0
        assert np.allclose(controller.camera.position, [5.0, 0.0, 0.0])

    def test_replay_after_complete(self):
        controller, _, _, _ = make_controller()
        controller.load([command()])
        controller.play(now=0.0)
        controller.tick(4.0)
        controller.play(now=10.0)
        controller.tick(11.0)
        assert controller.progress == pytest.approx(25.0)

    def test_multi_segment(self):
        controller, _, _, _ = make_controller()
        controller.load([command(duration=2.0), command((5.0, 0.0, 0.0), (0.0, 0.0, -5.0), 2.0)])
        assert controller.total_duration == 4.0
        pose = controller.pose_at_time(3.0)
        assert np.allclose(pose.position.to_array(), [2.5, 0.0, -2.5])


class TestSpeed:
    def test_double_speed(self):
        controller, _, _, _ = make_controller()
        controller.load([command()])
        controller.set_speed(2.0, now=0.0)
        controller.play(now=0.0)
        controller.tick(1.0)
        assert controller.progress == pytest.approx(50.0)

    def test_change_mid_play_keeps_position(self):
        controller, _, _, _ = make_controller()
        controller.load([command()])
        controller.play(now=0.0)
        controller.tick(1.0)
        controller.set_speed(2.0, now=1.0)
        controller.tick(2.0)
        assert controller.progress == pytest.approx(75.0)

    def test_invalid_speed(self):
        controller, _, _, _ = make_controller()
        with pytest.raises(AnimationError):
            controller.set_speed(0.0)


class TestChannel:
    def test_progress_throttled(self):
        controller, _, _, events = make_controller(interval=0.1)
        controller.load([command()])
        controller.play(now=0.0)
        ticks = [round(0.02 * i, 2) for i in range(1, 50)]
        for t in ticks:
            controller.tick(t)
        progress_events = [e for e in events if e.kind == "progress"]
        assert 0 < len(progress_events) < len(ticks) / 3

    def test_complete_not_throttled(self):
        controller, _, _, events = make_controller(interval=10.0)
        controller.load([command()])
        controller.play(now=0.0)
        controller.tick(0.1)
        controller.tick(4.0)
        assert events[-1].kind in ("complete", "status")
        assert any(e.kind == "complete" for e in events)

    def test_unsubscribe(self):
        channel = ProgressChannel(0.0)
        seen = []
        unsubscribe = channel.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        controller = PlaybackController(SimpleCamera(), channel=channel, clock=FakeClock())
        controller.load([command()])
        assert seen == []


class TestFailures:
    def test_error_during_tick_resets(self):
        controller, controls, _, events = make_controller(camera=BrokenCamera())
        controller.load([command()])
        controller.play(now=0.0)
        with pytest.raises(AnimationError, match="render context lost"):
            controller.tick(1.0)
        assert controller.status == state.IDLE
        assert controls.enabled
        errors = [e for e in events if e.kind == "error"]
        assert errors and "render context lost" in errors[0].message

    def test_generation_lifecycle(self):
        controller, _, _, events = make_controller()
        controller.load([command()])
        controller.begin_generation()
        assert controller.status == state.GENERATING
        assert controller.commands == []
        controller.fail_generation("provider down")
        assert controller.status == state.IDLE
        assert events[-1].kind == "error"
        assert events[-1].message == "provider down"

    def test_generated_commands_ready(self):
        controller, _, _, _ = make_controller()
        controller.begin_generation()
        controller.load([command()])
        assert controller.status == state.READY


class TestRecording:
    def test_recording_produces_gif(self):
        controller, _, _, events = make_controller()
        frames = iter(range(1000))

        def source():
            return np.full((8, 8, 3), next(frames) % 256, dtype=np.uint8)

        controller.load([command()])
        controller.start_recording(FrameRecorder(source, fps=10))
        assert controller.state.recording
        controller.play(now=0.0)
        for t in (1.0, 2.0, 3.0, 4.0):
            controller.tick(t)
        recordings = [e for e in events if e.kind == "recording"]
        assert len(recordings) == 1
        assert recordings[0].data.startswith(b"GIF8")
        assert not controller.state.recording

    def test_stop_recording_before_play(self):
        controller, _, _, _ = make_controller()
        controller.start_recording(FrameRecorder(lambda: np.zeros((4, 4, 3), dtype=np.uint8)))
        data = controller.stop_recording()
        assert data.startswith(b"GIF8")

    def test_not_recording(self):
        controller, _, _, _ = make_controller()
        with pytest.raises(AnimationError):
            controller.stop_recording()

    def test_stop_recording_mid_playback(self):
        controller, _, _, events = make_controller()
        frames = iter(range(1000))
        recorder = FrameRecorder(lambda: np.full((8, 8, 3), next(frames) * 50 % 256, dtype=np.uint8), fps=10)
        controller.load([command()])
        controller.start_recording(recorder)
        controller.play(now=0.0)
        controller.tick(1.0)
        controller.tick(2.0)
        data = controller.stop_recording(now=2.0)

        assert controller.status == state.PLAYING
        assert not controller.state.recording
        assert len(recorder.frames) == 2
        image = Image.open(io.BytesIO(data))
        assert image.n_frames == 2
        assert sum(f.info["duration"] for f in ImageSequence.Iterator(image)) == 2000
        assert [e.kind for e in events].count("recording") == 1

    def test_recording_covers_one_pass_at_playback_speed(self):
        controller, _, _, events = make_controller()
        frames = iter(range(1000))
        controller.load([command()])
        controller.set_speed(2.0, now=0.0)
        controller.start_recording(FrameRecorder(lambda: np.full((8, 8, 3), next(frames) % 256, dtype=np.uint8), fps=30))
        controller.play(now=0.0)
        for i in range(1, 121):
            controller.tick(i / 60)

        assert controller.status == state.COMPLETE
        data = [e for e in events if e.kind == "recording"][0].data
        length_ms = sum(f.info["duration"] for f in ImageSequence.Iterator(Image.open(io.BytesIO(data))))
        expected_ms = controller.total_duration / controller.state.playback_speed * 1000
        assert length_ms == pytest.approx(expected_ms, abs=10)
