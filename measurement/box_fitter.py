# measurement/box_fitter.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np

from core.config import FitterConfig
from geometry.handles import AxisMapping
from geometry.oriented_box import OrientedBox, yaw_rotation
from measurement.orientation_policy import (
    MeasurementMode,
    MinimumAreaPolicy,
    OrientationCandidate,
    OrientationPolicy,
)
from measurement.quality import MeasurementQuality
from measurement.result import MeasurementResult, recalculate
from sensing.point_cloud import PointCloud

logger = logging.getLogger(__name__)

_QUARTER_TURN = np.pi / 2.0


@dataclass(frozen=True)
class FitResult:
    box: OrientedBox
    axis_mapping: AxisMapping
    result: MeasurementResult


def _normalize_yaw(yaw: float) -> float:
    # A rectangle is symmetric under quarter turns.
    y = float(np.mod(yaw, _QUARTER_TURN))
    if _QUARTER_TURN - y < 1e-9:
        y = 0.0
    return y


def box_with_rotation(points: np.ndarray, rotation: np.ndarray) -> OrientedBox:
    """Tightest box with the given rotation enclosing `points` (min/max projections)."""
    local = points @ rotation
    lo = local.min(axis=0)
    hi = local.max(axis=0)
    center = rotation @ ((lo + hi) / 2.0)
    return OrientedBox(center=center, extents=(hi - lo) / 2.0, rotation=rotation)


class BoxFitter:
    """
    Yaw-only oriented box fit: minimise the ground-plane (XZ) bounding-rectangle
    area over the hull edge directions (rotating calipers), let the
    orientation policy pick among near-equal areas, then take extents from
    min/max projections on the box's own axes.
    """
    def __init__(self, config: Optional[FitterConfig] = None):
        self.config = config or FitterConfig()

    @staticmethod
    def _rect_area(xz: np.ndarray, yaw: float) -> float:
        c, s = np.cos(yaw), np.sin(yaw)
        # local x = x*c - z*s ; local z = x*s + z*c
        u = xz[:, 0] * c - xz[:, 1] * s
        w = xz[:, 0] * s + xz[:, 1] * c
        return float((u.max() - u.min()) * (w.max() - w.min()))

    def candidates(self, points: np.ndarray) -> List[OrientationCandidate]:
        xz = points[:, [0, 2]]
        xz = xz - xz.mean(axis=0)
        hull = cv2.convexHull(xz.astype(np.float32)).reshape(-1, 2).astype(np.float64)
        if hull.shape[0] < 3:
            yaw = self._principal_yaw(xz)
            logger.debug("[Fitter] degenerate hull, using principal axis")
            return [OrientationCandidate(yaw=yaw, area=self._rect_area(xz, yaw))]

        out: List[OrientationCandidate] = []
        seen = set()
        for i in range(hull.shape[0]):
            d = hull[(i + 1) % hull.shape[0]] - hull[i]
            if float(np.hypot(d[0], d[1])) < 1e-9:
                continue
            # Box x axis (cos a, 0, sin a) along the edge <=> yaw = -a
            yaw = _normalize_yaw(-np.arctan2(d[1], d[0]))
            key = round(yaw, 6)
            if key in seen:
                continue
            seen.add(key)
            out.append(OrientationCandidate(yaw=yaw, area=self._rect_area(hull, yaw)))
        return out

    @staticmethod
    def _principal_yaw(xz: np.ndarray) -> float:
        if xz.shape[0] < 2:
            return 0.0
        evals, evecs = np.linalg.eigh(np.cov(xz.T))
        ex, ez = evecs[:, -1]
        return _normalize_yaw(-np.arctan2(ez, ex))

    def choose_yaw(self, points: np.ndarray, policy: OrientationPolicy) -> float:
        cands = self.candidates(points)
        best = min(c.area for c in cands)
        near = [c for c in cands if c.area <= best * (1.0 + self.config.tie_tolerance) + 1e-12]
        idx = policy.choose_orientation(near)
        if not 0 <= idx < len(near):
            raise ValueError(f"Orientation policy returned index {idx} for {len(near)} candidates")
        chosen = near[idx]
        logger.debug(
            f"[Fitter] {len(cands)} candidates, {len(near)} near-minimal, "
            f"chose yaw={np.degrees(chosen.yaw):.1f}deg area={chosen.area:.5f}"
        )
        return chosen.yaw

    def fit(
        self,
        cloud: PointCloud,
        quality: MeasurementQuality,
        policy: Optional[OrientationPolicy] = None,
        mode: MeasurementMode = MeasurementMode.BOX_PRIORITY,
        keep_point_cloud: bool = True,
        debug_images=None,
    ) -> Optional[FitResult]:
        pts = cloud.points
        if pts.shape[0] < self.config.min_points:
            logger.info(f"[Fitter] not enough points ({pts.shape[0]}) to fit a box")
            return None

        yaw = self.choose_yaw(pts, policy or MinimumAreaPolicy())
        box = box_with_rotation(pts, yaw_rotation(yaw))
        mapping = AxisMapping.from_extents(box.extents)
        result = recalculate(
            box, quality, mapping, mode=mode,
            point_cloud=cloud if keep_point_cloud else None,
            debug_images=debug_images,
        )
        logger.info(f"[Fitter] fitted {box}")
        return FitResult(box=box, axis_mapping=mapping, result=result)
