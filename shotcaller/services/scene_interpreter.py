"""Scene Interpreter - converts validated keyframes into executable camera commands."""

import logging
from dataclasses import dataclass

import numpy as np

from shotcaller import config
from shotcaller.easing import resolve_easing_name
from shotcaller.engine import CameraHandle, ControlsHandle, apply_pose
from shotcaller.errors import AnimationError
from shotcaller.geometry import clamp_to_box, clamp_to_envelope, distance, inside_box, is_finite
from shotcaller.models import (
    BoundingBox,
    CameraCommand,
    CameraConstraints,
    CameraPath,
    CameraPose,
    EnvironmentalAnalysis,
    SceneAnalysis,
    ValidationResult,
    Vector3,
)

logger = logging.getLogger(__name__)


@dataclass
class SceneInterpreterConfig:
    samples_per_segment: int = config.SAMPLES_PER_SEGMENT
    containment_tolerance: float = 1e-6


class SceneInterpreter:
    """Stateless keyframe-to-command transform plus one-shot execution."""

    def __init__(self, interpreter_config: SceneInterpreterConfig | None = None):
        self.config = interpreter_config or SceneInterpreterConfig()

    def initialize(self, interpreter_config: SceneInterpreterConfig) -> None:
        self.config = interpreter_config
        logger.info(f"Scene interpreter initialized (samples={interpreter_config.samples_per_segment})")

    def interpret_path(
        self,
        path: CameraPath,
        scene: SceneAnalysis,
        environment: EnvironmentalAnalysis,
        current_pose: CameraPose,
    ) -> list[CameraCommand]:
        """One command per keyframe.

        Command i runs from keyframe i-1 (the current pose for i == 0) to
        keyframe i over keyframe i's duration. Endpoints are clamped into
        the envelope; ``pose_at`` clamps every interpolated point.
        """
        if not path.keyframes:
            raise AnimationError("Path has no keyframes")
        constraints = path.metadata.safety_constraints or environment.camera_constraints
        env_min = environment.environment.min.to_array()
        env_max = environment.environment.max.to_array()

        clamped = 0
        start = self._clamp_pose(current_pose, constraints, env_min, env_max)
        commands = []
        for kf in path.keyframes:
            raw = CameraPose(position=kf.position, target=kf.target, fov=current_pose.fov)
            end = self._clamp_pose(raw, constraints, env_min, env_max)
            if not np.allclose(end.position.to_array(), raw.position.to_array()):
                clamped += 1
            commands.append(CameraCommand(
                start=start,
                end=end,
                duration=kf.duration,
                easing=resolve_easing_name(kf.easing),
                constraints=constraints,
            ))
            start = end

        if clamped:
            logger.info(f"Clamped {clamped} of {len(commands)} keyframe positions into the envelope")
        logger.info(f"Interpreted {len(commands)} commands for model {path.model_id} ({scene.complexity} scene)")
        return commands

    @staticmethod
    def _clamp_pose(
        pose: CameraPose,
        constraints: CameraConstraints,
        env_min: np.ndarray,
        env_max: np.ndarray,
    ) -> CameraPose:
        target = clamp_to_box(pose.target.to_array(), env_min, env_max)
        position = clamp_to_envelope(
            pose.position.to_array(), target,
            constraints.min_distance, constraints.max_distance,
            constraints.min_height, constraints.max_height,
        )
        return CameraPose(
            position=Vector3.from_array(position),
            target=Vector3.from_array(target),
            fov=pose.fov,
        )

    def validate_commands(
        self, commands: list[CameraCommand], object_bounds: BoundingBox
    ) -> ValidationResult:
        """Sample every command and check envelope containment and object clearance."""
        if not commands:
            return ValidationResult(is_valid=False, errors=["No commands to validate"])

        tol = self.config.containment_tolerance
        box_min = object_bounds.min.to_array()
        box_max = object_bounds.max.to_array()
        samples = np.linspace(0.0, 1.0, max(2, self.config.samples_per_segment))
        errors = []

        for i, cmd in enumerate(commands):
            if not cmd.duration > 0:
                errors.append(f"Command {i}: duration must be greater than 0")
                continue
            c = cmd.constraints
            for t in samples:
                pose = cmd.pose_at(float(t))
                position = pose.position.to_array()
                target = pose.target.to_array()
                if not is_finite(position) or not is_finite(target):
                    errors.append(f"Command {i}: non-finite pose at t={t:.2f}")
                    break
                if inside_box(position, box_min, box_max):
                    errors.append(f"Command {i}: camera enters object bounds at t={t:.2f}")
                    break
                if c is None:
                    continue
                if not (c.min_height - tol <= position[1] <= c.max_height + tol):
                    errors.append(f"Command {i}: height {position[1]:.3f} outside envelope at t={t:.2f}")
                    break
                dist = distance(position, target)
                if not (c.min_distance - tol <= dist <= c.max_distance + tol):
                    errors.append(f"Command {i}: distance {dist:.3f} outside envelope at t={t:.2f}")
                    break

        return ValidationResult(is_valid=not errors, errors=errors)

    @staticmethod
    def execute_command(
        camera: CameraHandle, command: CameraCommand, controls: ControlsHandle | None = None
    ) -> None:
        apply_pose(camera, command.end, controls)

    def execute_commands(
        self,
        camera: CameraHandle,
        commands: list[CameraCommand],
        controls: ControlsHandle | None = None,
    ) -> None:
        if not commands:
            raise AnimationError("No commands to execute")
        for command in commands:
            self.execute_command(camera, command, controls)
        logger.debug(f"Executed {len(commands)} commands")
