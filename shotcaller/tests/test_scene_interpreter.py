"""Tests for keyframe-to-command interpretation."""

import numpy as np
import pytest

from shotcaller.engine import SimpleCamera, SimpleControls
from shotcaller.errors import AnimationError
from shotcaller.models import (
    BoundingBox,
    CameraCommand,
    CameraKeyframe,
    CameraPath,
    CameraPose,
    PathMetadata,
    Vector3,
)
from shotcaller.services.scene_interpreter import SceneInterpreter


def kf(x, y, z, duration=2.0, easing=None, target=(0.0, 0.0, 0.0)):
    return CameraKeyframe(
        position=Vector3(x=x, y=y, z=z),
        target=Vector3.from_array(target),
        duration=duration,
        easing=easing,
    )


def path_of(*keyframes, constraints=None):
    return CameraPath(
        keyframes=list(keyframes),
        duration=sum(k.duration for k in keyframes),
        metadata=PathMetadata(safety_constraints=constraints),
    )


class TestInterpretPath:
    def test_one_command_per_keyframe(self, scene, environment, pose):
        path = path_of(kf(4, 1, 0), kf(0, 1, -4), kf(-4, 1, 0))
        commands = SceneInterpreter().interpret_path(path, scene, environment, pose)
        assert len(commands) == 3
        assert commands[0].start.position == pose.position
        assert commands[1].start == commands[0].end
        assert [c.duration for c in commands] == [2.0, 2.0, 2.0]

    def test_unknown_easing_falls_back_to_linear(self, scene, environment, pose):
        path = path_of(kf(4, 1, 0, easing="wobbly"))
        (command,) = SceneInterpreter().interpret_path(path, scene, environment, pose)
        assert command.easing == "linear"
        mid = command.pose_at(0.5).position.to_array()
        assert np.allclose(mid, [2.0, 1.0, 2.0])

    def test_easing_names_canonicalized(self, scene, environment, pose):
        path = path_of(kf(4, 1, 0, easing="ease-in-out-cubic"))
        (command,) = SceneInterpreter().interpret_path(path, scene, environment, pose)
        assert command.easing == "easeInOutCubic"

    def test_keyframe_below_envelope_clamped(self, scene, environment, pose):
        path = path_of(kf(0, -5, 4))
        (command,) = SceneInterpreter().interpret_path(path, scene, environment, pose)
        assert command.end.position.y == pytest.approx(-1.0)
        assert command.end.position.z == pytest.approx(4.0)

    def test_target_clamped_to_environment(self, scene, environment, pose):
        path = path_of(kf(0, 1, 4, target=(50.0, 0.0, 0.0)))
        (command,) = SceneInterpreter().interpret_path(path, scene, environment, pose)
        assert command.end.target.x == pytest.approx(10.0)

    def test_interpolation_through_target_is_pushed_out(self, scene, environment):
        start = CameraPose(position=Vector3(x=0, y=0, z=4), target=Vector3())
        path = path_of(kf(0, 0, -4, duration=4.0))
        (command,) = SceneInterpreter().interpret_path(path, scene, environment, start)
        mid = command.pose_at(0.5)
        c = environment.camera_constraints
        assert np.linalg.norm(mid.position.to_array()) == pytest.approx(c.min_distance)

    def test_path_constraints_take_precedence(self, scene, environment, pose):
        tight = environment.camera_constraints.model_copy(update={"max_height": 1.5})
        path = path_of(kf(0, 2.5, 4), constraints=tight)
        (command,) = SceneInterpreter().interpret_path(path, scene, environment, pose)
        assert command.end.position.y == pytest.approx(1.5)
        assert command.constraints == tight

    def test_fov_carried_from_current_pose(self, scene, environment):
        start = CameraPose(position=Vector3(x=0, y=1, z=4), target=Vector3(), fov=35.0)
        (command,) = SceneInterpreter().interpret_path(path_of(kf(4, 1, 0)), scene, environment, start)
        assert command.end.fov == 35.0

    def test_empty_path(self, scene, environment, pose):
        with pytest.raises(AnimationError):
            SceneInterpreter().interpret_path(CameraPath(keyframes=[], duration=1.0), scene, environment, pose)


class TestValidateCommands:
    def test_interpreted_orbit_is_valid(self, scene, environment, pose, orbit_response, prompt):
        from shotcaller.services.llm_service import parse_path
        interpreter = SceneInterpreter()
        commands = interpreter.interpret_path(parse_path(orbit_response, prompt), scene, environment, pose)
        result = interpreter.validate_commands(commands, environment.object_bounds)
        assert result.is_valid, result.errors

    def test_unconstrained_command_through_object(self, environment):
        command = CameraCommand(
            start=CameraPose(position=Vector3(x=-3, y=0, z=0), target=Vector3(z=-5)),
            end=CameraPose(position=Vector3(x=3, y=0, z=0), target=Vector3(z=-5)),
            duration=1.0,
        )
        result = SceneInterpreter().validate_commands([command], environment.object_bounds)
        assert not result.is_valid
        assert "enters object bounds" in result.errors[0]

    def test_no_commands(self):
        box = BoundingBox(min=Vector3(), max=Vector3(x=1, y=1, z=1))
        assert not SceneInterpreter().validate_commands([], box).is_valid


class TestExecute:
    def test_execute_commands_lands_on_last_pose(self, scene, environment, pose):
        interpreter = SceneInterpreter()
        commands = interpreter.interpret_path(path_of(kf(4, 1, 0), kf(0, 1, -4)), scene, environment, pose)
        camera = SimpleCamera()
        controls = SimpleControls(camera)
        interpreter.execute_commands(camera, commands, controls)
        assert np.allclose(camera.position, [0.0, 1.0, -4.0])
        assert np.allclose(controls.target, [0.0, 0.0, 0.0])
        assert controls.updates == 2

    def test_execute_nothing(self):
        with pytest.raises(AnimationError):
            SceneInterpreter().execute_commands(SimpleCamera(), [])
