"""Scene Analyzer - static geometric facts about a loaded model."""

import io
import logging
import time
from dataclasses import dataclass, field
from typing import Iterator, Union

import numpy as np
import trimesh
from scipy.spatial import cKDTree

from shotcaller import config
from shotcaller.errors import AnalysisError
from shotcaller.models import (
    BoundingBox,
    CameraSnapshot,
    FeaturePoint,
    ModelOrientation,
    ReferencePoints,
    SceneAnalysis,
    SceneAnalysisSummary,
    Symmetry,
    Vector3,
)

logger = logging.getLogger(__name__)

LoadedModel = Union[trimesh.Scene, trimesh.Trimesh]

_UP = np.array([0.0, 1.0, 0.0])
_SYMMETRY_SAMPLE = 2000
_SYMMETRY_MATCH_RATIO = 0.95
_AXES = ("x", "y", "z")


@dataclass
class SceneAnalyzerConfig:
    max_feature_points: int = config.MAX_FEATURE_POINTS
    symmetry_tolerance: float = config.SYMMETRY_TOLERANCE
    max_file_size: int = 100 * 1024 * 1024
    supported_formats: tuple[str, ...] = field(default_factory=lambda: ("glb", "gltf", "obj", "stl", "ply"))


@dataclass
class _MeshPart:
    vertices: np.ndarray
    faces: np.ndarray
    normals: np.ndarray
    defects: np.ndarray


def complexity_for(vertex_count: int, face_count: int) -> str:
    total = vertex_count + face_count
    if total < 1000:
        return "simple"
    if total < 10000:
        return "moderate"
    return "complex"


def reference_points(bbox_min: np.ndarray, bbox_max: np.ndarray) -> ReferencePoints:
    c = (bbox_min + bbox_max) / 2
    return ReferencePoints(
        center=Vector3.from_array(c),
        highest=Vector3(x=c[0], y=bbox_max[1], z=c[2]),
        lowest=Vector3(x=c[0], y=bbox_min[1], z=c[2]),
        leftmost=Vector3(x=bbox_min[0], y=c[1], z=c[2]),
        rightmost=Vector3(x=bbox_max[0], y=c[1], z=c[2]),
        frontmost=Vector3(x=c[0], y=c[1], z=bbox_max[2]),
        backmost=Vector3(x=c[0], y=c[1], z=bbox_min[2]),
    )


class SceneAnalyzer:
    """Computes a SceneAnalysis from a trimesh scene graph."""

    def __init__(self, analyzer_config: SceneAnalyzerConfig | None = None):
        self.config = analyzer_config or SceneAnalyzerConfig()

    def initialize(self, analyzer_config: SceneAnalyzerConfig) -> None:
        self.config = analyzer_config
        logger.info(f"Scene analyzer initialized (max_feature_points={analyzer_config.max_feature_points})")

    def load(self, data: bytes, file_type: str = "glb") -> LoadedModel:
        """Parse model bytes into a trimesh scene."""
        if len(data) > self.config.max_file_size:
            raise AnalysisError("File size exceeds maximum allowed size")
        if file_type.lower() not in self.config.supported_formats:
            raise AnalysisError(f"Unsupported file format: {file_type}")
        try:
            return trimesh.load(io.BytesIO(data), file_type=file_type.lower())
        except (ValueError, KeyError, IndexError) as e:
            raise AnalysisError(f"Failed to load model: {e}") from e

    def analyze(self, model: LoadedModel) -> SceneAnalysis:
        """Analyze every drawable mesh in the model.

        Raises AnalysisError when the model has no drawable geometry.
        """
        t0 = time.perf_counter()
        parts = list(self._iter_parts(model))
        if not parts:
            raise AnalysisError("Model has no drawable geometry")

        vertices = np.vstack([p.vertices for p in parts])
        vertex_count = int(sum(len(p.vertices) for p in parts))
        face_count = int(sum(len(p.faces) for p in parts))

        bbox_min = vertices.min(axis=0)
        bbox_max = vertices.max(axis=0)
        center = (bbox_min + bbox_max) / 2
        dimensions = bbox_max - bbox_min

        analysis = SceneAnalysis(
            vertex_count=vertex_count,
            face_count=face_count,
            bounding_box=BoundingBox(
                min=Vector3.from_array(bbox_min), max=Vector3.from_array(bbox_max)
            ),
            center=Vector3.from_array(center),
            dimensions=Vector3.from_array(dimensions),
            feature_points=self._extract_features(parts, vertices),
            symmetry=self._detect_symmetry(vertices, center, dimensions),
            complexity=complexity_for(vertex_count, face_count),
            reference_points=reference_points(bbox_min, bbox_max),
            orientation=self._orientation(model),
        )
        elapsed_ms = round((time.perf_counter() - t0) * 1000, 2)
        logger.info(
            f"Analyzed scene: {vertex_count} vertices, {face_count} faces, "
            f"{len(analysis.feature_points)} features in {elapsed_ms}ms"
        )
        return analysis

    @staticmethod
    def attach_camera(analysis: SceneAnalysis, camera: CameraSnapshot) -> SceneAnalysis:
        return analysis.model_copy(update={"current_camera": camera})

    def from_summary(self, summary: SceneAnalysisSummary) -> SceneAnalysis:
        """Rebuild an analysis from the geometry summary a client sent."""
        bbox_min = summary.bounding_box.min.to_array()
        bbox_max = summary.bounding_box.max.to_array()
        if np.any(bbox_max < bbox_min):
            raise AnalysisError("Bounding box max is below min")
        if not np.all(np.isfinite(bbox_min)) or not np.all(np.isfinite(bbox_max)):
            raise AnalysisError("Bounding box contains non-finite values")
        return SceneAnalysis(
            vertex_count=summary.vertex_count,
            face_count=summary.face_count,
            bounding_box=summary.bounding_box,
            center=summary.center or summary.bounding_box.center,
            dimensions=summary.dimensions or summary.bounding_box.dimensions,
            feature_points=summary.feature_points[: self.config.max_feature_points],
            complexity=complexity_for(summary.vertex_count, summary.face_count),
            reference_points=reference_points(bbox_min, bbox_max),
            orientation=summary.orientation or ModelOrientation(),
            current_camera=summary.current_camera,
        )

    # ── Traversal ───────────────────────────────────────────────

    def _iter_parts(self, model: LoadedModel) -> Iterator[_MeshPart]:
        if isinstance(model, trimesh.Trimesh):
            part = self._to_part(model, np.eye(4))
            if part is not None:
                yield part
            return
        if not isinstance(model, trimesh.Scene):
            raise AnalysisError(f"Unsupported model type: {type(model).__name__}")

        graph = model.graph
        for node_name in graph.nodes_geometry:
            transform, geometry_name = graph.get(node_name)
            geometry = model.geometry.get(geometry_name)
            # Skip non-mesh geometry (point clouds, paths)
            if not isinstance(geometry, trimesh.Trimesh):
                continue
            part = self._to_part(geometry, transform)
            if part is not None:
                yield part

    @staticmethod
    def _to_part(mesh: trimesh.Trimesh, transform: np.ndarray) -> _MeshPart | None:
        if len(mesh.vertices) == 0 or len(mesh.faces) == 0:
            return None
        vertices = trimesh.transformations.transform_points(mesh.vertices, transform)

        try:
            normals = np.asarray(mesh.vertex_normals, dtype=float)
            if normals.shape != mesh.vertices.shape:
                raise ValueError("normal count mismatch")
            normals = normals @ np.asarray(transform)[:3, :3].T
            lengths = np.linalg.norm(normals, axis=1, keepdims=True)
            normals = np.where(lengths > 0, normals / np.maximum(lengths, 1e-12), _UP)
        except (ValueError, IndexError) as e:
            logger.debug(f"Falling back to default normals: {e}")
            normals = np.tile(_UP, (len(vertices), 1))

        try:
            defects = np.abs(np.asarray(mesh.vertex_defects, dtype=float))
            if defects.shape != (len(vertices),):
                raise ValueError("defect count mismatch")
        except (ValueError, IndexError) as e:
            logger.debug(f"Curvature unavailable for mesh: {e}")
            defects = np.zeros(len(vertices))

        return _MeshPart(
            vertices=np.asarray(vertices, dtype=float),
            faces=np.asarray(mesh.faces),
            normals=normals,
            defects=np.nan_to_num(defects),
        )

    # ── Features ────────────────────────────────────────────────

    def _extract_features(self, parts: list[_MeshPart], vertices: np.ndarray) -> list[FeaturePoint]:
        limit = self.config.max_feature_points
        if limit <= 0:
            return []

        features: list[FeaturePoint] = []
        seen: set[tuple] = set()

        def add(point: np.ndarray, kind: str, description: str) -> None:
            key = tuple(np.round(point, 6))
            if key in seen or len(features) >= limit:
                return
            seen.add(key)
            features.append(
                FeaturePoint(kind=kind, position=Vector3.from_array(point), description=description)
            )

        for axis, name in enumerate(_AXES):
            add(vertices[int(np.argmin(vertices[:, axis]))], "extreme", f"min {name}")
            add(vertices[int(np.argmax(vertices[:, axis]))], "extreme", f"max {name}")

        defects = np.concatenate([p.defects for p in parts])
        order = np.argsort(-defects, kind="stable")
        for index in order:
            if len(features) >= limit or defects[index] <= 1e-6:
                break
            add(vertices[index], "curvature", f"angular defect {defects[index]:.3f}")

        return features

    def _detect_symmetry(self, vertices: np.ndarray, center: np.ndarray, dimensions: np.ndarray) -> Symmetry:
        scale = float(np.max(dimensions))
        if scale <= 0:
            return Symmetry()

        stride = max(1, len(vertices) // _SYMMETRY_SAMPLE)
        sample = vertices[::stride]
        tree = cKDTree(vertices)
        tolerance = self.config.symmetry_tolerance * scale

        planes = []
        for axis, name in enumerate(_AXES):
            mirrored = sample.copy()
            mirrored[:, axis] = 2 * center[axis] - mirrored[:, axis]
            distances, _ = tree.query(mirrored, k=1)
            if np.mean(distances <= tolerance) >= _SYMMETRY_MATCH_RATIO:
                planes.append(name)
        return Symmetry(has_symmetry=bool(planes), planes=planes)

    @staticmethod
    def _orientation(model: LoadedModel) -> ModelOrientation:
        if not isinstance(model, trimesh.Scene):
            return ModelOrientation()
        nodes = list(model.graph.nodes_geometry)
        if not nodes:
            return ModelOrientation()
        transform, _ = model.graph.get(nodes[0])
        try:
            scale, _, angles, translate, _ = trimesh.transformations.decompose_matrix(transform)
        except ValueError:
            return ModelOrientation()
        return ModelOrientation(
            position=Vector3.from_array(translate),
            rotation=Vector3.from_array(angles),
            scale=Vector3.from_array(scale),
        )
