from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from mesh.surface_reconstructor import SurfaceReconstructor, from_o3d_mesh, mean_spacing, to_o3d_point_cloud
from mesh.triangle_mesh import TriangleMesh

logger = logging.getLogger(__name__)


class BallPivotingReconstructor(SurfaceReconstructor):
    """
    Ball pivoting over radii (r, 2r, 4r), r = multiplier x mean spacing.
    Needs normals, so it wants a few more points than the alpha shape.
    """
    name = "ball_pivoting"

    def __init__(self, multiplier: float = 3.0, min_radius: float = 0.005, max_radius: float = 0.2,
                 normal_neighbors: int = 15):
        self.multiplier = multiplier
        self.min_radius = min_radius
        self.max_radius = max_radius
        self.normal_neighbors = normal_neighbors

    def can_reconstruct(self, n_points: int) -> bool:
        return n_points > self.normal_neighbors

    def reconstruct(self, points: np.ndarray) -> Optional[TriangleMesh]:
        pcd = to_o3d_point_cloud(points)
        import open3d as o3d

        r = float(np.clip(mean_spacing(pcd) * self.multiplier, self.min_radius, self.max_radius))

        pcd.estimate_normals(o3d.geometry.KDTreeSearchParamHybrid(radius=2.0 * r, max_nn=30))
        pcd.orient_normals_consistent_tangent_plane(self.normal_neighbors)

        radii = o3d.utility.DoubleVector([r, 2.0 * r, 4.0 * r])
        logger.debug(f"[BallPivot] {len(pcd.points)} points, radius={r:.4f}")
        mesh = o3d.geometry.TriangleMesh.create_from_point_cloud_ball_pivoting(pcd, radii)
        return from_o3d_mesh(mesh, self.name)
