# geometry/oriented_box.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

import numpy as np

# Half-extent floor: no box dimension collapses below 1 cm.
MIN_EXTENT = 0.005

# Corner i sits at local (sx*ex, sy*ey, sz*ez) with these signs.
CORNER_SIGNS = np.array([
    [-1, -1, -1],
    [1, -1, -1],
    [1, 1, -1],
    [-1, 1, -1],
    [-1, -1, 1],
    [1, -1, 1],
    [1, 1, 1],
    [-1, 1, 1],
], dtype=np.float64)

EDGE_INDICES: Tuple[Tuple[int, int], ...] = (
    (0, 1), (1, 2), (2, 3), (3, 0),  # back face (z-)
    (4, 5), (5, 6), (6, 7), (7, 4),  # front face (z+)
    (0, 4), (1, 5), (2, 6), (3, 7),  # connecting
)

WORLD_UP = np.array([0.0, 1.0, 0.0])


def yaw_rotation(angle: float) -> np.ndarray:
    """Rotation matrix about world +Y (right-handed)."""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([
        [c, 0.0, s],
        [0.0, 1.0, 0.0],
        [-s, 0.0, c],
    ])


def _readonly(a) -> np.ndarray:
    arr = np.array(a, dtype=np.float64)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class OrientedBox:
    """
    Box defined by a center, three half-extents along its local axes and a
    rotation (columns are the local axes in world space).

    Instances are values: every mutator returns a new box. Corners and edges
    are derived on demand so they can never drift from center/extents.
    """
    center: np.ndarray
    extents: np.ndarray
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self):
        center = np.asarray(self.center, dtype=np.float64).reshape(3)
        extents = np.asarray(self.extents, dtype=np.float64).reshape(3)
        rotation = np.asarray(self.rotation, dtype=np.float64).reshape(3, 3)
        if not (np.all(np.isfinite(center)) and np.all(np.isfinite(extents)) and np.all(np.isfinite(rotation))):
            raise ValueError("OrientedBox requires finite center, extents and rotation.")
        object.__setattr__(self, "center", _readonly(center))
        object.__setattr__(self, "extents", _readonly(np.maximum(np.abs(extents), MIN_EXTENT)))
        object.__setattr__(self, "rotation", _readonly(rotation))

    @classmethod
    def axis_aligned(cls, min_corner, max_corner) -> "OrientedBox":
        lo = np.asarray(min_corner, dtype=np.float64)
        hi = np.asarray(max_corner, dtype=np.float64)
        return cls(center=(lo + hi) / 2.0, extents=(hi - lo) / 2.0)

    # ---- Derived geometry ----
    @property
    def dimensions(self) -> np.ndarray:
        """Full side lengths along the local axes."""
        return self.extents * 2.0

    @property
    def volume(self) -> float:
        return float(np.prod(self.dimensions))

    @property
    def local_axes(self) -> np.ndarray:
        """(3, 3) array whose rows are the local X, Y, Z axes in world space."""
        return self.rotation.T.copy()

    @property
    def yaw(self) -> float:
        x_axis = self.rotation[:, 0]
        return float(np.arctan2(-x_axis[2], x_axis[0]))

    @property
    def bottom_y(self) -> float:
        return float(self.center[1] - self.extents[1])

    @property
    def top_y(self) -> float:
        return float(self.center[1] + self.extents[1])

    def corners(self) -> np.ndarray:
        return self.local_to_world(CORNER_SIGNS * self.extents)

    def edges(self):
        c = self.corners()
        return [(c[i].copy(), c[j].copy()) for i, j in EDGE_INDICES]

    def local_to_world(self, p) -> np.ndarray:
        p = np.asarray(p, dtype=np.float64)
        return p @ self.rotation.T + self.center

    def world_to_local(self, p) -> np.ndarray:
        p = np.asarray(p, dtype=np.float64)
        return (p - self.center) @ self.rotation

    def contains(self, points, margin: float = 0.0) -> np.ndarray:
        """Boolean mask (or bool for a single point) of points inside the box."""
        local = self.world_to_local(points)
        inside = np.all(np.abs(local) <= self.extents + margin, axis=-1)
        return inside

    # ---- Mutators (return new boxes) ----
    def with_center(self, center) -> "OrientedBox":
        return OrientedBox(center=center, extents=self.extents, rotation=self.rotation)

    def with_extents(self, extents) -> "OrientedBox":
        return OrientedBox(center=self.center, extents=extents, rotation=self.rotation)

    def translate(self, delta) -> "OrientedBox":
        return self.with_center(self.center + np.asarray(delta, dtype=np.float64))

    def scale(self, axis: int, factor: float) -> "OrientedBox":
        if axis not in (0, 1, 2):
            raise ValueError(f"axis must be 0, 1 or 2, got {axis}")
        ext = self.extents.copy()
        ext[axis] = max(ext[axis] * float(factor), MIN_EXTENT)
        return self.with_extents(ext)

    def rotate_around_y(self, angle: float) -> "OrientedBox":
        # Yaw only: device "up" is trusted, so pitch/roll are never edited.
        return OrientedBox(
            center=self.center,
            extents=self.extents,
            rotation=yaw_rotation(angle) @ self.rotation,
        )

    def extend_bottom_to_floor(self, floor_y: float, threshold: float = 0.05) -> "OrientedBox":
        """
        Snap the bottom face onto the floor when it hovers within `threshold`
        above it. The top face stays where it is; otherwise returns self.
        """
        gap = self.bottom_y - float(floor_y)
        if gap <= 0.0 or gap > threshold:
            return self
        top = self.top_y
        half = (top - float(floor_y)) / 2.0
        center = self.center.copy()
        center[1] = float(floor_y) + half
        ext = self.extents.copy()
        ext[1] = half
        return OrientedBox(center=center, extents=ext, rotation=self.rotation)

    # ---- Comparison helpers ----
    def allclose(self, other: "OrientedBox", atol: float = 1e-9) -> bool:
        return (
            np.allclose(self.center, other.center, atol=atol)
            and np.allclose(self.extents, other.extents, atol=atol)
            and np.allclose(self.rotation, other.rotation, atol=atol)
        )

    def __repr__(self) -> str:
        c = np.round(self.center, 4).tolist()
        d = np.round(self.dimensions, 4).tolist()
        return f"OrientedBox(center={c}, dims={d}, yaw={np.degrees(self.yaw):.1f}deg)"
