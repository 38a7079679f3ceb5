from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from mesh.surface_reconstructor import SurfaceReconstructor, from_o3d_mesh, mean_spacing, to_o3d_point_cloud
from mesh.triangle_mesh import TriangleMesh

logger = logging.getLogger(__name__)


class AlphaShapeReconstructor(SurfaceReconstructor):
    """Alpha shape with alpha = multiplier x mean point spacing (clamped)."""
    name = "alpha_shape"

    def __init__(self, multiplier: float = 2.5, min_alpha: float = 0.005, max_alpha: float = 0.5,
                 alpha: Optional[float] = None):
        self.multiplier = multiplier
        self.min_alpha = min_alpha
        self.max_alpha = max_alpha
        self.alpha = alpha

    def choose_alpha(self, spacing: float) -> float:
        if self.alpha is not None:
            return float(self.alpha)
        return float(np.clip(spacing * self.multiplier, self.min_alpha, self.max_alpha))

    def reconstruct(self, points: np.ndarray) -> Optional[TriangleMesh]:
        pcd = to_o3d_point_cloud(points)
        import open3d as o3d

        alpha = self.choose_alpha(mean_spacing(pcd))
        logger.debug(f"[AlphaShape] {len(pcd.points)} points, alpha={alpha:.4f}")
        mesh = o3d.geometry.TriangleMesh.create_from_point_cloud_alpha_shape(pcd, alpha)
        return from_o3d_mesh(mesh, self.name)
