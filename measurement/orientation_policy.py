# measurement/orientation_policy.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class OrientationCandidate:
    """A yaw (radians, in [0, pi/2)) and the ground-plane rectangle area it yields."""
    yaw: float
    area: float

    @property
    def x_axis(self) -> np.ndarray:
        return np.array([np.cos(self.yaw), 0.0, -np.sin(self.yaw)])

    @property
    def z_axis(self) -> np.ndarray:
        return np.array([np.sin(self.yaw), 0.0, np.cos(self.yaw)])

    def alignment(self, direction: np.ndarray) -> float:
        """How well a vertical face of this orientation faces `direction` (0..1)."""
        return max(abs(float(self.x_axis @ direction)), abs(float(self.z_axis @ direction)))


class OrientationPolicy(ABC):
    """Breaks ties between near-equal-area orientations."""

    @abstractmethod
    def choose_orientation(self, candidates: Sequence[OrientationCandidate]) -> int:
        raise NotImplementedError


class MinimumAreaPolicy(OrientationPolicy):
    def choose_orientation(self, candidates: Sequence[OrientationCandidate]) -> int:
        return int(np.argmin([c.area for c in candidates]))


def _horizontal_unit(v) -> Optional[np.ndarray]:
    v = np.asarray(v, dtype=np.float64).reshape(3)
    h = np.array([v[0], 0.0, v[2]])
    n = float(np.linalg.norm(h))
    if n < 1e-6:
        return None
    return h / n


class _AlignmentPolicy(OrientationPolicy):
    direction: Optional[np.ndarray] = None

    def choose_orientation(self, candidates: Sequence[OrientationCandidate]) -> int:
        if self.direction is None:
            return MinimumAreaPolicy().choose_orientation(candidates)
        scores = [c.alignment(self.direction) for c in candidates]
        return int(np.argmax(scores))


class SurfaceNormalPolicy(_AlignmentPolicy):
    """Prefer a box face parallel to the surface tapped by the user."""

    def __init__(self, normal):
        # A horizontal surface (box top) carries no yaw information.
        self.direction = _horizontal_unit(normal)


class PrincipalAxisPolicy(_AlignmentPolicy):
    """Prefer alignment with the dominant ground-plane direction of the cloud."""

    def __init__(self, points):
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        self.direction = None
        if pts.shape[0] >= 3:
            xz = pts[:, [0, 2]] - pts[:, [0, 2]].mean(axis=0)
            evals, evecs = np.linalg.eigh(np.cov(xz.T))
            if evals[-1] - evals[0] > 1e-12:
                ex, ez = evecs[:, -1]
                self.direction = _horizontal_unit((ex, 0.0, ez))


class MeasurementMode(str, Enum):
    BOX_PRIORITY = "box"
    FREE_OBJECT = "free"


def policy_for_mode(mode: MeasurementMode, points=None, surface_normal=None) -> OrientationPolicy:
    mode = MeasurementMode(mode)
    if surface_normal is not None and _horizontal_unit(surface_normal) is not None:
        return SurfaceNormalPolicy(surface_normal)
    if mode == MeasurementMode.FREE_OBJECT and points is not None:
        return PrincipalAxisPolicy(points)
    return MinimumAreaPolicy()
