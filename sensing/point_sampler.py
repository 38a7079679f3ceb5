# sensing/point_sampler.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy import ndimage

from core.config import CONFIDENCE_HIGH, CONFIDENCE_MEDIUM, SamplerConfig
from measurement.quality import MeasurementQuality
from sensing.mask_utils import binarize_mask, clean_mask, clip_roi, roi_to_mask, scale_roi
from sensing.observation import DepthFrame
from sensing.point_cloud import PointCloud

logger = logging.getLogger(__name__)

_CONFIDENCE_WEIGHTS = {CONFIDENCE_HIGH: 1.0, CONFIDENCE_MEDIUM: 0.5}
_LOW_CONFIDENCE_WEIGHT = 0.25


@dataclass
class SampleResult:
    """Outcome of sampling one observation; `point_cloud` is None on InsufficientData."""
    point_cloud: Optional[PointCloud]
    quality: Optional[MeasurementQuality]
    kept_pixels: Optional[np.ndarray] = None
    reason: str = ""

    @property
    def insufficient_data(self) -> bool:
        return self.point_cloud is None

    @property
    def ok(self) -> bool:
        return self.point_cloud is not None


class PointSampler:
    """
    Depth map + mask/ROI (+ optional raycast hit) -> filtered world point cloud
    and a quality record.
    """
    def __init__(self, config: Optional[SamplerConfig] = None):
        self.config = config or SamplerConfig()

    # ---- Mask ----
    def _build_mask(self, frame: DepthFrame, mask, roi) -> np.ndarray:
        h, w = frame.shape
        sel = None
        if mask is not None:
            sel = clean_mask(binarize_mask(mask, (h, w)), self.config.morph_kernel)
        if roi is not None:
            cam = frame.camera
            roi_d = scale_roi(roi, (cam.width, cam.height), (w, h))
            roi_mask = roi_to_mask(clip_roi(roi_d, w, h), (h, w))
            sel = roi_mask if sel is None else np.minimum(sel, roi_mask)
        if sel is None:
            sel = np.full((h, w), 255, dtype=np.uint8)
        return sel > 0

    def _insufficient(self, reason: str, quality=None, kept=None) -> SampleResult:
        logger.info(f"[Sampler] insufficient data: {reason}")
        return SampleResult(point_cloud=None, quality=quality, kept_pixels=kept, reason=reason)

    # ---- Filters ----
    def _depth_outliers(self, d: np.ndarray) -> np.ndarray:
        keep = np.ones(d.shape[0], dtype=bool)
        if d.size <= 10:
            return keep
        sd = float(d.std())
        if sd <= 1e-9:
            return keep
        return np.abs(d - float(d.mean())) <= self.config.outlier_std * sd

    def hit_radius(self, hit: np.ndarray, camera_position: np.ndarray) -> float:
        cfg = self.config
        if cfg.hit_tolerance is not None:
            return float(cfg.hit_tolerance)
        dist = float(np.linalg.norm(hit - camera_position))
        return float(np.clip(cfg.hit_radius_fraction * dist, cfg.hit_radius_min, cfg.hit_radius_max))

    def _main_cluster(self, pts: np.ndarray, hit: np.ndarray) -> np.ndarray:
        """Mask of the connected blob (link-size grid, 26-connected) nearest the hit."""
        link = self.config.cluster_link
        keys = np.floor((pts - pts.min(axis=0)) / link).astype(np.int64)
        grid = np.zeros(tuple(keys.max(axis=0) + 1), dtype=bool)
        grid[keys[:, 0], keys[:, 1], keys[:, 2]] = True
        labels, n = ndimage.label(grid, structure=np.ones((3, 3, 3), dtype=bool))
        if n <= 1:
            return np.ones(pts.shape[0], dtype=bool)
        seed = int(np.argmin(np.linalg.norm(pts - hit, axis=1)))
        point_labels = labels[keys[:, 0], keys[:, 1], keys[:, 2]]
        return point_labels == point_labels[seed]

    def _statistical_outliers(self, pts: np.ndarray) -> np.ndarray:
        centroid = pts.mean(axis=0)
        sd = pts.std(axis=0)
        sd = np.where(sd > 1e-9, sd, np.inf)
        return np.all(np.abs(pts - centroid) <= self.config.outlier_std * sd, axis=1)

    def _downsample(self, pts: np.ndarray, conf: np.ndarray, median_depth: float) -> np.ndarray:
        """Confidence-weighted voxel-grid average with an adaptive cell size."""
        cell = float(np.clip(median_depth * 0.005, 0.003, 0.02))
        weights = np.full(conf.shape[0], _LOW_CONFIDENCE_WEIGHT)
        for level, w in _CONFIDENCE_WEIGHTS.items():
            weights[conf == level] = w
        keys = np.floor(pts / cell).astype(np.int64)
        _, inverse = np.unique(keys, axis=0, return_inverse=True)
        inverse = inverse.reshape(-1)
        wsum = np.bincount(inverse, weights=weights)
        out = np.stack(
            [np.bincount(inverse, weights=pts[:, k] * weights) / wsum for k in range(3)],
            axis=1,
        )
        logger.debug(f"[Sampler] downsample cell={cell * 1000:.1f}mm {pts.shape[0]} -> {out.shape[0]}")
        return out

    # ---- Main entry ----
    def sample(
        self,
        frame: DepthFrame,
        mask=None,
        roi: Optional[Sequence[float]] = None,
        hit_position=None,
    ) -> SampleResult:
        cfg = self.config
        sel = self._build_mask(frame, mask, roi)
        n_masked = int(sel.sum())
        if n_masked == 0:
            return self._insufficient("empty mask")

        depth = frame.depth
        valid = sel & np.isfinite(depth) & (depth >= cfg.min_depth) & (depth <= cfg.max_depth)
        if frame.confidence is not None:
            valid &= frame.confidence >= cfg.min_confidence
        n_valid = int(valid.sum())
        coverage = n_valid / float(n_masked)

        vs, us = np.nonzero(valid)
        d = depth[vs, us].astype(np.float64)
        keep = self._depth_outliers(d)
        vs, us, d = vs[keep], us[keep], d[keep]

        if frame.confidence is not None:
            conf = frame.confidence[vs, us].astype(np.int64)
        else:
            conf = np.full(d.shape[0], CONFIDENCE_HIGH, dtype=np.int64)

        cam = frame.depth_camera()
        pts = cam.unproject(us, vs, d)

        if hit_position is not None and pts.shape[0] > 0:
            hit = np.asarray(hit_position, dtype=np.float64).reshape(3)
            radius = self.hit_radius(hit, cam.position)
            near = np.linalg.norm(pts - hit, axis=1) <= radius
            logger.debug(f"[Sampler] hit prior radius={radius:.3f}m kept {int(near.sum())}/{near.size}")
            pts, vs, us, d, conf = pts[near], vs[near], us[near], d[near], conf[near]
            if pts.shape[0] >= cfg.min_points:
                cluster = self._main_cluster(pts, hit)
                if int(cluster.sum()) >= cfg.min_points:
                    pts, vs, us, d, conf = pts[cluster], vs[cluster], us[cluster], d[cluster], conf[cluster]

        if pts.shape[0] >= 3:
            keep = self._statistical_outliers(pts)
            pts, vs, us, d, conf = pts[keep], vs[keep], us[keep], d[keep], conf[keep]

        kept = np.zeros(frame.shape, dtype=bool)
        kept[vs, us] = True
        mean_conf = float(conf.mean()) / CONFIDENCE_HIGH if conf.size else 0.0

        if pts.shape[0] < cfg.min_points:
            quality = MeasurementQuality(coverage, mean_conf, int(pts.shape[0]), frame.tracking_state)
            return self._insufficient(
                f"{pts.shape[0]} points < minimum {cfg.min_points}", quality=quality, kept=kept
            )

        if cfg.downsample:
            reduced = self._downsample(pts, conf, float(np.median(d)))
            if reduced.shape[0] >= cfg.min_points:
                pts = reduced
        if pts.shape[0] > cfg.max_points:
            rng = np.random.default_rng(0)
            pts = pts[rng.choice(pts.shape[0], cfg.max_points, replace=False)]

        quality = MeasurementQuality(
            depth_coverage=coverage,
            depth_confidence=mean_conf,
            point_count=int(pts.shape[0]),
            tracking_state=frame.tracking_state,
        )
        logger.info(
            f"[Sampler] masked={n_masked} valid={n_valid} kept={pts.shape[0]} "
            f"quality={quality.overall_quality.value}"
        )
        return SampleResult(
            point_cloud=PointCloud(pts, origins=cam.position),
            quality=quality,
            kept_pixels=kept,
        )
