# mesh/surface_reconstructor.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from mesh.triangle_mesh import TriangleMesh

logger = logging.getLogger(__name__)


class SurfaceReconstructor(ABC):
    """
    Contract:
    - can_reconstruct(n_points) selects a strategy
    - reconstruct(points) -> TriangleMesh, or None when no surface comes out
    """
    name: str = "surface"

    def can_reconstruct(self, n_points: int) -> bool:
        return n_points >= 4

    @abstractmethod
    def reconstruct(self, points: np.ndarray) -> Optional[TriangleMesh]:
        raise NotImplementedError


def to_o3d_point_cloud(points: np.ndarray):
    try:
        import open3d as o3d
    except ImportError as e:
        raise RuntimeError("Surface reconstruction requires open3d.") from e

    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(np.asarray(points, dtype=np.float64))
    return pcd


def mean_spacing(pcd) -> float:
    d = np.asarray(pcd.compute_nearest_neighbor_distance())
    d = d[np.isfinite(d) & (d > 0)]
    return float(d.mean()) if d.size else 0.0


def from_o3d_mesh(mesh, method: str) -> Optional[TriangleMesh]:
    mesh.remove_duplicated_vertices()
    mesh.remove_degenerate_triangles()
    mesh.remove_duplicated_triangles()
    mesh.remove_unreferenced_vertices()
    out = TriangleMesh(
        vertices=np.asarray(mesh.vertices),
        triangles=np.asarray(mesh.triangles),
        method=method,
    )
    return None if out.is_empty else out


class ReconstructorChain(SurfaceReconstructor):
    """
    Tries each strategy able to handle the point count. With a closure
    threshold, an open mesh passes the turn to the next strategy and is only
    returned (the most closed one) when no strategy produces a closed mesh.
    """
    name = "chain"

    def __init__(self, reconstructors: List[SurfaceReconstructor], min_closed_fraction: Optional[float] = None):
        if not reconstructors:
            raise ValueError("ReconstructorChain requires at least one reconstructor.")
        self.reconstructors = reconstructors
        self.min_closed_fraction = min_closed_fraction

    def can_reconstruct(self, n_points: int) -> bool:
        return bool(self._pick(n_points))

    def _pick(self, n_points: int) -> List[SurfaceReconstructor]:
        return [r for r in self.reconstructors if r.can_reconstruct(n_points)]

    def reconstruct(self, points: np.ndarray) -> Optional[TriangleMesh]:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        best_open: Optional[TriangleMesh] = None
        best_closed = -1.0
        for r in self._pick(pts.shape[0]):
            try:
                mesh = r.reconstruct(pts)
            except RuntimeError as e:
                logger.warning(f"[Surface] {r.name} failed: {e}")
                continue
            if mesh is None:
                logger.debug(f"[Surface] {r.name} produced no surface")
                continue
            logger.info(f"[Surface] {r.name}: {mesh.vertices.shape[0]} vertices, {mesh.triangles.shape[0]} faces")
            if self.min_closed_fraction is None:
                return mesh
            closed = mesh.closed_fraction()
            if closed >= self.min_closed_fraction:
                return mesh
            logger.info(f"[Surface] {r.name} mesh open (closed={closed:.2f}), trying next strategy")
            if closed > best_closed:
                best_open, best_closed = mesh, closed
        return best_open
