# refinement/volume_refiner.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from core.config import RefinementConfig
from geometry.oriented_box import OrientedBox
from mesh.alpha_shape import AlphaShapeReconstructor
from mesh.ball_pivoting import BallPivotingReconstructor
from mesh.surface_reconstructor import ReconstructorChain, SurfaceReconstructor
from refinement.voxel_carver import VoxelCarver
from sensing.point_cloud import PointCloud

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class RefinedVolumeResult:
    volume: float
    voxel_size: float
    grid_origin: np.ndarray
    grid_rotation: np.ndarray
    grid_shape: Tuple[int, int, int]
    occupied_count: int
    surface_voxels: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.int64))
    multi_view: bool = False
    surface_volume: Optional[float] = None
    surface_method: Optional[str] = None
    surface_closed_fraction: Optional[float] = None
    processing_time: float = 0.0

    @property
    def surface_available(self) -> bool:
        return self.surface_volume is not None


def default_reconstructor(config: RefinementConfig) -> SurfaceReconstructor:
    return ReconstructorChain([
        AlphaShapeReconstructor(multiplier=config.alpha_multiplier),
        BallPivotingReconstructor(multiplier=config.ball_radius_multiplier),
    ], min_closed_fraction=config.min_closed_fraction)


class VolumeRefiner:
    """Voxel carving volume plus an optional closed-surface volume estimate."""

    def __init__(
        self,
        config: Optional[RefinementConfig] = None,
        reconstructor: Optional[SurfaceReconstructor] = None,
    ):
        self.config = config or RefinementConfig()
        self.carver = VoxelCarver(self.config)
        self.reconstructor = reconstructor
        if self.reconstructor is None and self.config.surface_reconstruction:
            self.reconstructor = default_reconstructor(self.config)

    def _surface_volume(self, box: OrientedBox, cloud: PointCloud):
        if self.reconstructor is None:
            return None, None, None
        pts = cloud.points[box.contains(cloud.points, margin=self.config.box_margin)]
        if not self.reconstructor.can_reconstruct(pts.shape[0]):
            return None, None, None
        try:
            mesh = self.reconstructor.reconstruct(pts)
        except RuntimeError as e:
            logger.warning(f"[Refine] surface reconstruction failed: {e}")
            return None, None, None
        if mesh is None:
            return None, None, None
        closed = mesh.closed_fraction()
        if closed < self.config.min_closed_fraction:
            logger.info(f"[Refine] {mesh.method} mesh too open (closed={closed:.2f}), surface volume unavailable")
            return None, mesh.method, closed
        return mesh.volume(), mesh.method, closed

    def refine(self, box: OrientedBox, cloud: PointCloud) -> Optional[RefinedVolumeResult]:
        t0 = time.perf_counter()
        grid = self.carver.carve(box, cloud)
        if grid is None:
            return None

        surface_volume, method, closed = self._surface_volume(box, cloud)
        elapsed = time.perf_counter() - t0
        result = RefinedVolumeResult(
            volume=grid.volume,
            voxel_size=grid.voxel_size,
            grid_origin=grid.origin_world,
            grid_rotation=box.rotation.copy(),
            grid_shape=grid.shape,
            occupied_count=grid.occupied_count,
            surface_voxels=grid.surface_indices(self.config.max_surface_voxels),
            multi_view=grid.multi_view,
            surface_volume=surface_volume,
            surface_method=method,
            surface_closed_fraction=closed,
            processing_time=elapsed,
        )
        logger.info(
            f"[Refine] voxel volume={result.volume * 1e6:.1f}cm3 "
            f"surface={'n/a' if surface_volume is None else f'{surface_volume * 1e6:.1f}cm3'} "
            f"in {elapsed * 1000:.0f}ms"
        )
        return result
