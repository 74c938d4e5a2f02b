"""Shared fixtures: a 2x2x2 cube centered at the origin."""

import pytest
import trimesh

from shotcaller.models import BoundingBox, CameraPose, ModelMetadata, SceneAnalysisSummary, Vector3
from shotcaller.prompts.examples import EXAMPLES
from shotcaller.services.environment_analyzer import EnvironmentAnalyzer
from shotcaller.services.prompt_compiler import PromptCompiler
from shotcaller.services.scene_analyzer import SceneAnalyzer


@pytest.fixture
def orbit_response():
    """A valid 8-keyframe, 10 second orbit at radius 4."""
    return EXAMPLES[0]["path_json"]


@pytest.fixture
def summary():
    return SceneAnalysisSummary(
        bounding_box=BoundingBox(min=Vector3(x=-1, y=-1, z=-1), max=Vector3(x=1, y=1, z=1)),
        vertex_count=8,
        face_count=12,
    )


@pytest.fixture
def pose():
    return CameraPose(position=Vector3(x=0, y=1, z=4), target=Vector3())


@pytest.fixture
def cube_mesh():
    return trimesh.creation.box(extents=(2.0, 2.0, 2.0))


@pytest.fixture
def scene(cube_mesh):
    return SceneAnalyzer().analyze(cube_mesh)


@pytest.fixture
def environment(scene):
    return EnvironmentAnalyzer().analyze(scene)


@pytest.fixture
def prompt(scene, environment, pose):
    return PromptCompiler().compile(
        "orbit the model", scene, environment, ModelMetadata(model_id="cube"), pose, 10.0
    )
