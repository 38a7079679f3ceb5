# editing/box_editing_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from core.config import EditingConfig
from geometry.handles import FaceHandle
from geometry.oriented_box import OrientedBox
from measurement.box_fitter import box_with_rotation
from sensing.point_cloud import PointCloud

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EditResult:
    box: OrientedBox
    did_change: bool


def _vec2(v: Sequence[float]) -> np.ndarray:
    a = np.asarray(v, dtype=np.float64).reshape(-1)
    if a.shape[0] != 2:
        raise ValueError(f"Expected a 2D screen vector, got {v!r}")
    return a


def _finite(*vectors: np.ndarray) -> bool:
    # points behind the camera project to nan
    return all(bool(np.all(np.isfinite(v))) for v in vectors)


class BoxEditingService:
    """
    Turns screen-space drags into box edits. Holds no state: the caller owns the
    box and calls again on every pointer move. Screen coordinates are pixels,
    y pointing down; face/box centre positions come from the caller's camera
    projection.
    """
    def __init__(self, config: Optional[EditingConfig] = None):
        self.config = config or EditingConfig()

    def apply_face_drag(
        self,
        box: OrientedBox,
        handle: FaceHandle,
        screen_delta,
        face_center_screen,
        box_center_screen,
    ) -> EditResult:
        delta = _vec2(screen_delta)
        outward = _vec2(face_center_screen) - _vec2(box_center_screen)
        if not _finite(delta, outward):
            return EditResult(box, False)
        face_dist = float(np.linalg.norm(outward))
        if face_dist < self.config.min_face_distance_px:
            return EditResult(box, False)

        projected_px = float(delta @ (outward / face_dist))
        if abs(projected_px) < self.config.noise_threshold_px:
            return EditResult(box, False)

        axis = handle.axis_index
        meters_per_px = box.extents[axis] / face_dist
        face_shift = projected_px * meters_per_px

        ext = box.extents.copy()
        new_half = max(ext[axis] + face_shift / 2.0, 0.0)
        resized = box.with_extents(np.where(np.arange(3) == axis, new_half, ext))
        half_change = resized.extents[axis] - ext[axis]
        if abs(half_change) < 1e-12:
            return EditResult(box, False)

        world_normal = box.rotation @ handle.local_normal()
        new_box = resized.translate(world_normal * half_change)
        return EditResult(new_box, True)

    def apply_rotation_drag(
        self,
        box: OrientedBox,
        screen_delta,
        touch_point,
        box_center_screen,
    ) -> EditResult:
        delta = _vec2(screen_delta)
        radial = _vec2(touch_point) - _vec2(box_center_screen)
        if not _finite(delta, radial):
            return EditResult(box, False)
        radius = float(np.linalg.norm(radial))
        if radius <= self.config.min_rotation_radius_px:
            return EditResult(box, False)

        # Clockwise tangent in a y-down screen frame.
        tangent = np.array([radial[1], -radial[0]]) / radius
        tangential_px = float(delta @ tangent)
        if abs(tangential_px) < self.config.noise_threshold_px:
            return EditResult(box, False)

        angle = tangential_px / radius
        return EditResult(box.rotate_around_y(angle), True)

    def fit_to_points(
        self,
        box: OrientedBox,
        point_cloud: PointCloud,
        margin: Optional[float] = None,
    ) -> Optional[OrientedBox]:
        """Tight box around the points inside `box`, keeping its rotation."""
        margin = self.config.refit_margin if margin is None else margin
        pts = point_cloud.points
        inside = box.contains(pts, margin=margin) if pts.shape[0] else np.zeros(0, dtype=bool)
        n_inside = int(np.count_nonzero(inside))
        if n_inside < self.config.min_refit_points:
            logger.info(f"[Editing] not enough points in box ({n_inside} < {self.config.min_refit_points})")
            return None
        return box_with_rotation(pts[inside], box.rotation)

    def extend_to_floor(self, box: OrientedBox, floor_y: float, threshold: Optional[float] = None) -> EditResult:
        threshold = self.config.floor_threshold if threshold is None else threshold
        snapped = box.extend_bottom_to_floor(floor_y, threshold)
        return EditResult(snapped, snapped is not box)
