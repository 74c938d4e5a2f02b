"""Narrow capability surface of the rendering engine.

The pipeline only ever reads and writes a camera (position, target, fov)
and toggles orbit controls. Any renderer can be driven by adapting these
two protocols.
"""

from dataclasses import dataclass, field
from typing import Protocol

import numpy as np

from shotcaller.models import CameraPose, CameraSnapshot, Vector3


class CameraHandle(Protocol):
    position: np.ndarray
    target: np.ndarray
    fov: float


class ControlsHandle(Protocol):
    target: np.ndarray
    enabled: bool

    @property
    def distance(self) -> float: ...

    def update(self) -> None: ...


@dataclass
class SimpleCamera:
    """In-memory camera used by the server and tests."""

    position: np.ndarray = field(default_factory=lambda: np.array([0.0, 1.0, 5.0]))
    target: np.ndarray = field(default_factory=lambda: np.zeros(3))
    fov: float = 50.0


@dataclass
class SimpleControls:
    camera: SimpleCamera
    target: np.ndarray = field(default_factory=lambda: np.zeros(3))
    enabled: bool = True
    updates: int = 0

    @property
    def distance(self) -> float:
        return float(np.linalg.norm(self.camera.position - self.target))

    def update(self) -> None:
        self.updates += 1


def apply_pose(camera: CameraHandle, pose: CameraPose, controls: ControlsHandle | None = None) -> None:
    camera.position = pose.position.to_array()
    camera.target = pose.target.to_array()
    camera.fov = pose.fov
    if controls is not None:
        controls.target = pose.target.to_array()
        controls.update()


def read_pose(camera: CameraHandle) -> CameraPose:
    return CameraPose(
        position=Vector3.from_array(camera.position),
        target=Vector3.from_array(camera.target),
        fov=camera.fov,
    )


def snapshot(camera: CameraHandle) -> CameraSnapshot:
    position = np.asarray(camera.position, dtype=float)
    offset = np.asarray(camera.target, dtype=float) - position
    length = float(np.linalg.norm(offset))
    front = offset / length if length > 0 else np.array([0.0, 0.0, -1.0])
    return CameraSnapshot(
        position=Vector3.from_array(position),
        target=Vector3.from_array(camera.target),
        fov=camera.fov,
        front=Vector3.from_array(front),
    )
