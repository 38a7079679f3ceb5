# refinement/voxel_carver.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import ndimage

from core.config import RefinementConfig
from geometry.oriented_box import OrientedBox
from sensing.point_cloud import PointCloud

logger = logging.getLogger(__name__)

_FACE_NEIGHBORS = ndimage.generate_binary_structure(3, 1)
_RAY_BATCH = 2048


@dataclass(frozen=True, eq=False)
class VoxelGrid:
    """Occupancy grid laid out along the box's local axes."""
    occupied: np.ndarray       # (nx, ny, nz) bool
    voxel_size: float
    origin_local: np.ndarray   # local coords of the grid's min corner
    box: OrientedBox
    multi_view: bool = False

    @property
    def shape(self):
        return tuple(int(s) for s in self.occupied.shape)

    @property
    def origin_world(self) -> np.ndarray:
        return self.box.local_to_world(self.origin_local)

    @property
    def occupied_count(self) -> int:
        return int(np.count_nonzero(self.occupied))

    @property
    def volume(self) -> float:
        return self.occupied_count * self.voxel_size ** 3

    def surface_mask(self) -> np.ndarray:
        """Occupied voxels with at least one empty 6-neighbour (grid border counts as empty)."""
        interior = ndimage.binary_erosion(self.occupied, structure=_FACE_NEIGHBORS, border_value=0)
        return self.occupied & ~interior

    def surface_indices(self, limit: Optional[int] = None) -> np.ndarray:
        idx = np.argwhere(self.surface_mask())
        if limit is not None and idx.shape[0] > limit:
            stride = int(np.ceil(idx.shape[0] / float(limit)))
            idx = idx[::stride]
        return idx

    def voxel_centers_world(self, indices: np.ndarray) -> np.ndarray:
        local = self.origin_local + (np.asarray(indices, dtype=np.float64) + 0.5) * self.voxel_size
        return self.box.local_to_world(local)


class VoxelCarver:
    def __init__(self, config: Optional[RefinementConfig] = None):
        self.config = config or RefinementConfig()

    def voxel_size_for(self, box: OrientedBox) -> float:
        cfg = self.config
        span = float(np.max(2.0 * (box.extents + cfg.box_margin)))
        size = max(cfg.voxel_size, span / cfg.max_grid_cells)
        return float(np.clip(size, cfg.min_voxel_size, cfg.max_voxel_size))

    def _carve_rays(self, grid: np.ndarray, pts_g: np.ndarray, org_g: np.ndarray) -> int:
        """Clear voxels crossed by origin->point rays, stopping one voxel short of the hit."""
        shape = np.array(grid.shape)
        diag = float(np.linalg.norm(shape))
        steps = np.arange(1.0, diag + 1.0, 0.5)
        carved = 0
        for start in range(0, pts_g.shape[0], _RAY_BATCH):
            p = pts_g[start:start + _RAY_BATCH]
            o = org_g[start:start + _RAY_BATCH]
            ray = o - p
            length = np.linalg.norm(ray, axis=1)
            ok = length > 1.0
            if not np.any(ok):
                continue
            p, ray, length = p[ok], ray[ok] / length[ok, None], length[ok]
            samples = p[:, None, :] + ray[:, None, :] * steps[None, :, None]
            within = steps[None, :] < length[:, None]
            cells = np.floor(samples).astype(np.int64)
            inside = within & np.all((cells >= 0) & (cells < shape), axis=2)
            cells = cells[inside]
            before = np.count_nonzero(grid)
            grid[cells[:, 0], cells[:, 1], cells[:, 2]] = False
            carved += before - int(np.count_nonzero(grid))
        return carved

    def carve(self, box: OrientedBox, cloud: PointCloud) -> Optional[VoxelGrid]:
        cfg = self.config
        if len(cloud) < cfg.min_points:
            logger.info(f"[Voxel] not enough points ({len(cloud)}) for carving")
            return None

        voxel = self.voxel_size_for(box)
        half = box.extents + cfg.box_margin
        origin_local = -half
        dims = np.maximum(np.ceil(2.0 * half / voxel).astype(np.int64), 1)

        local = box.world_to_local(cloud.points)
        # Points on the box faces land on the grid boundary; keep them within half a voxel.
        inside = np.all(np.abs(local) <= half + voxel / 2.0, axis=1)
        cells = np.floor((local[inside] - origin_local) / voxel).astype(np.int64)
        cells = np.clip(cells, 0, dims - 1)
        if cells.shape[0] < cfg.min_points:
            logger.info(f"[Voxel] only {cells.shape[0]} points inside the box")
            return None

        multi_view = cloud.view_count() >= 2
        if multi_view:
            grid = np.ones(tuple(dims), dtype=bool)
            pts_g = (local[inside] - origin_local) / voxel
            org_g = (box.world_to_local(cloud.origins[inside]) - origin_local) / voxel
            carved = self._carve_rays(grid, pts_g, org_g)
            logger.debug(f"[Voxel] carved {carved} free-space voxels from {cloud.view_count()} views")
        else:
            grid = np.zeros(tuple(dims), dtype=bool)
        grid[cells[:, 0], cells[:, 1], cells[:, 2]] = True

        if not multi_view and cfg.fill_interior:
            grid = ndimage.binary_fill_holes(grid)

        result = VoxelGrid(
            occupied=grid, voxel_size=voxel, origin_local=origin_local,
            box=box, multi_view=multi_view,
        )
        logger.info(
            f"[Voxel] grid={result.shape} voxel={voxel * 1000:.1f}mm occupied={result.occupied_count} "
            f"volume={result.volume * 1e6:.1f}cm3 multi_view={multi_view}"
        )
        return result
