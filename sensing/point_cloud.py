from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np


def _frozen(a: np.ndarray) -> np.ndarray:
    arr = np.array(a, dtype=np.float64, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class PointCloud:
    """
    Read-only world-space points. `origins` optionally holds, per point, the
    camera position it was observed from (used for multi-view carving).
    """
    points: np.ndarray
    origins: Optional[np.ndarray] = None

    def __post_init__(self):
        pts = np.asarray(self.points, dtype=np.float64).reshape(-1, 3)
        object.__setattr__(self, "points", _frozen(pts))
        if self.origins is not None:
            org = np.asarray(self.origins, dtype=np.float64)
            if org.ndim == 1:
                org = np.broadcast_to(org.reshape(1, 3), pts.shape)
            if org.shape != pts.shape:
                raise ValueError(f"origins shape {org.shape} does not match points {pts.shape}")
            object.__setattr__(self, "origins", _frozen(org))

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @property
    def centroid(self) -> np.ndarray:
        return self.points.mean(axis=0)

    def view_count(self, decimals: int = 3) -> int:
        """Number of distinct observation origins (0 when unknown)."""
        if self.origins is None or len(self) == 0:
            return 0
        return int(np.unique(np.round(self.origins, decimals), axis=0).shape[0])

    def subset(self, mask) -> "PointCloud":
        mask = np.asarray(mask)
        org = self.origins[mask] if self.origins is not None else None
        return PointCloud(self.points[mask], org)

    def merged(self, other: "PointCloud") -> "PointCloud":
        pts = np.vstack([self.points, other.points])
        if self.origins is not None and other.origins is not None:
            return PointCloud(pts, np.vstack([self.origins, other.origins]))
        return PointCloud(pts)
