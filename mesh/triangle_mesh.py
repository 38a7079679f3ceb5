from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import trimesh


@dataclass
class TriangleMesh:
    vertices: np.ndarray   # (V, 3) float
    triangles: np.ndarray  # (F, 3) int
    method: str = ""

    def __post_init__(self):
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        self.triangles = np.asarray(self.triangles, dtype=np.int64).reshape(-1, 3)

    @property
    def is_empty(self) -> bool:
        return self.vertices.shape[0] == 0 or self.triangles.shape[0] == 0

    def to_trimesh(self) -> trimesh.Trimesh:
        # process=False keeps vertex/face indices exactly as reconstructed
        return trimesh.Trimesh(vertices=self.vertices, faces=self.triangles, process=False)

    def edge_use_counts(self) -> np.ndarray:
        """How many triangles share each undirected edge."""
        if self.triangles.shape[0] == 0:
            return np.zeros(0, dtype=np.int64)
        _, counts = np.unique(self.to_trimesh().edges_sorted, axis=0, return_counts=True)
        return counts

    def closed_fraction(self) -> float:
        """Fraction of edges shared by exactly two triangles (1.0 == watertight)."""
        counts = self.edge_use_counts()
        if counts.size == 0:
            return 0.0
        return float(np.count_nonzero(counts == 2)) / counts.size

    def signed_volume(self) -> float:
        if self.is_empty:
            return 0.0
        return float(self.to_trimesh().volume)

    def volume(self) -> float:
        return abs(self.signed_volume())
