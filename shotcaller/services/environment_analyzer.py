"""Environmental Analyzer - derives the camera safety envelope for a scene."""

import logging
import math
from dataclasses import dataclass

import numpy as np

from shotcaller import config
from shotcaller.errors import EnvironmentAnalysisError
from shotcaller.geometry import distance, inside_box
from shotcaller.models import (
    BoundaryDistances,
    CameraConstraints,
    CameraPose,
    EnvironmentalAnalysis,
    EnvironmentBounds,
    SceneAnalysis,
    ValidationResult,
    Vector3,
)

logger = logging.getLogger(__name__)


@dataclass
class EnvironmentAnalyzerConfig:
    environment_size: tuple[float, float, float] = config.ENVIRONMENT_SIZE
    distance_margin: float = config.DISTANCE_MARGIN
    max_distance_ratio: float = config.MAX_DISTANCE_RATIO
    height_headroom_ratio: float = config.HEIGHT_HEADROOM_RATIO
    max_speed: float = config.MAX_SPEED
    max_angle_change: float = config.MAX_ANGLE_CHANGE_DEG
    framing_margin_ratio: float = config.FRAMING_MARGIN_RATIO


class EnvironmentAnalyzer:
    def __init__(self, analyzer_config: EnvironmentAnalyzerConfig | None = None):
        self.config = analyzer_config or EnvironmentAnalyzerConfig()

    def initialize(self, analyzer_config: EnvironmentAnalyzerConfig) -> None:
        self.config = analyzer_config
        logger.info(f"Environment analyzer initialized (size={analyzer_config.environment_size})")

    def analyze(self, scene: SceneAnalysis, camera: CameraPose | None = None) -> EnvironmentalAnalysis:
        """Build environment bounds and camera constraints around the model.

        Raises EnvironmentAnalysisError when the object does not fit the
        configured environment or the derived envelope is empty.
        """
        obj_min = scene.bounding_box.min.to_array()
        obj_max = scene.bounding_box.max.to_array()
        dims = obj_max - obj_min
        if not np.all(np.isfinite(dims)) or np.any(dims < 0):
            raise EnvironmentAnalysisError("Object bounding box is degenerate")

        size = np.asarray(self.config.environment_size, dtype=float)
        if np.any(size <= 0):
            raise EnvironmentAnalysisError(f"Invalid environment size: {tuple(size)}")
        if np.any(dims > size):
            raise EnvironmentAnalysisError(
                f"Object dimensions {tuple(np.round(dims, 3))} exceed environment size {tuple(size)}"
            )

        center = (obj_min + obj_max) / 2
        env_min = center - size / 2
        env_max = center + size / 2
        environment = EnvironmentBounds(
            min=Vector3.from_array(env_min),
            max=Vector3.from_array(env_max),
            center=Vector3.from_array(center),
            dimensions=Vector3.from_array(size),
        )

        distances = BoundaryDistances(
            left=float(obj_min[0] - env_min[0]),
            right=float(env_max[0] - obj_max[0]),
            bottom=float(obj_min[1] - env_min[1]),
            top=float(env_max[1] - obj_max[1]),
            back=float(obj_min[2] - env_min[2]),
            front=float(env_max[2] - obj_max[2]),
        )

        constraints = self._constraints(obj_min, obj_max, size)
        if constraints.min_distance > constraints.max_distance:
            raise EnvironmentAnalysisError(
                f"Empty camera envelope: min distance {constraints.min_distance:.3f} "
                f"exceeds max distance {constraints.max_distance:.3f}"
            )

        if camera is not None and not inside_box(camera.position.to_array(), env_min, env_max):
            logger.warning("Current camera is outside the environment bounds")

        logger.info(
            f"Environment analyzed: distance [{constraints.min_distance:.2f}, {constraints.max_distance:.2f}], "
            f"height [{constraints.min_height:.2f}, {constraints.max_height:.2f}]"
        )
        return EnvironmentalAnalysis(
            environment=environment,
            object_bounds=scene.bounding_box,
            distances=distances,
            camera_constraints=constraints,
        )

    def _constraints(self, obj_min: np.ndarray, obj_max: np.ndarray, size: np.ndarray) -> CameraConstraints:
        cfg = self.config
        dims = obj_max - obj_min
        radius = float(np.linalg.norm(dims)) / 2
        object_height = float(dims[1])
        return CameraConstraints(
            min_distance=radius * (1 + cfg.distance_margin),
            max_distance=min(radius * cfg.max_distance_ratio, float(size.min()) / 2),
            min_height=float(obj_min[1]),
            max_height=float(obj_max[1]) + object_height * cfg.height_headroom_ratio,
            max_speed=cfg.max_speed,
            max_angle_change=cfg.max_angle_change,
            min_framing_margin=cfg.framing_margin_ratio * float(dims.max()),
        )

    @staticmethod
    def validate_camera_position(analysis: EnvironmentalAnalysis, pose: CameraPose) -> ValidationResult:
        c = analysis.camera_constraints
        position = pose.position.to_array()
        errors = []

        if not np.all(np.isfinite(position)) or not np.all(np.isfinite(pose.target.to_array())):
            return ValidationResult(is_valid=False, errors=["Camera pose contains non-finite values"])

        height = float(position[1])
        if height < c.min_height or height > c.max_height:
            errors.append(
                f"Camera height {height:.2f} outside allowed range [{c.min_height:.2f}, {c.max_height:.2f}]"
            )
        dist = distance(position, pose.target.to_array())
        if dist < c.min_distance or dist > c.max_distance:
            errors.append(
                f"Camera distance {dist:.2f} outside allowed range [{c.min_distance:.2f}, {c.max_distance:.2f}]"
            )
        return ValidationResult(is_valid=not errors, errors=errors)

    @staticmethod
    def camera_ranges(analysis: EnvironmentalAnalysis) -> dict:
        c = analysis.camera_constraints
        return {
            "height": {"min": c.min_height, "max": c.max_height},
            "distance": {"min": c.min_distance, "max": c.max_distance},
        }


def default_camera_pose(analysis: EnvironmentalAnalysis) -> CameraPose:
    """A pose in front of the object, inside the envelope, looking at its center."""
    c = analysis.camera_constraints
    center = analysis.object_bounds.center.to_array()
    dist = (c.min_distance + c.max_distance) / 2
    height = min(max(center[1], c.min_height), c.max_height)
    dy = height - center[1]
    horizontal = math.sqrt(max(dist * dist - dy * dy, 0.0))
    position = np.array([center[0], height, center[2] + horizontal])
    return CameraPose(position=Vector3.from_array(position), target=Vector3.from_array(center))
