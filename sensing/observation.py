# sensing/observation.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from core.errors import InvalidObservationError


@dataclass(frozen=True)
class CameraModel:
    """
    Pinhole intrinsics for an image of (width, height) pixels plus the
    camera-to-world pose.

    Camera frame: +X right, +Y up, looking down -Z. Pixel rows grow downwards.
    """
    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int
    pose: np.ndarray = field(default_factory=lambda: np.eye(4))

    def __post_init__(self):
        pose = np.asarray(self.pose, dtype=np.float64)
        if pose.shape != (4, 4):
            raise InvalidObservationError(f"Camera pose must be 4x4, got {pose.shape}")
        object.__setattr__(self, "pose", pose)

    @property
    def rotation(self) -> np.ndarray:
        return self.pose[:3, :3]

    @property
    def position(self) -> np.ndarray:
        return self.pose[:3, 3].copy()

    def scaled_to(self, width: int, height: int) -> "CameraModel":
        """Intrinsics for the same camera at another image resolution."""
        sx = width / float(self.width)
        sy = height / float(self.height)
        return CameraModel(
            fx=self.fx * sx, fy=self.fy * sy,
            cx=self.cx * sx, cy=self.cy * sy,
            width=int(width), height=int(height),
            pose=self.pose,
        )

    def unproject(self, us, vs, depths) -> np.ndarray:
        """Pixel coordinates + metric depth -> (N, 3) world points."""
        us = np.asarray(us, dtype=np.float64)
        vs = np.asarray(vs, dtype=np.float64)
        d = np.asarray(depths, dtype=np.float64)
        x = (us - self.cx) / self.fx * d
        y = -(vs - self.cy) / self.fy * d
        z = -d
        pts_cam = np.stack([x, y, z], axis=-1)
        return pts_cam @ self.rotation.T + self.pose[:3, 3]

    def project(self, world_points) -> np.ndarray:
        """World points -> (N, 2) pixel coordinates (NaN behind the camera)."""
        w = np.atleast_2d(np.asarray(world_points, dtype=np.float64))
        cam = (w - self.pose[:3, 3]) @ self.rotation
        depth = -cam[:, 2]
        out = np.full((w.shape[0], 2), np.nan)
        ok = depth > 1e-9
        out[ok, 0] = self.fx * cam[ok, 0] / depth[ok] + self.cx
        out[ok, 1] = self.cy - self.fy * cam[ok, 1] / depth[ok]
        return out

    def project_point(self, world_point) -> Tuple[float, float]:
        uv = self.project(world_point)[0]
        return float(uv[0]), float(uv[1])

    @classmethod
    def looking_down(cls, height_above: float, target_xz=(0.0, 0.0), fx: float = 500.0,
                     width: int = 256, height: int = 192) -> "CameraModel":
        """Camera straight above `target_xz`, image up == world -Z."""
        pose = np.eye(4)
        pose[:3, 0] = (1.0, 0.0, 0.0)
        pose[:3, 1] = (0.0, 0.0, -1.0)
        pose[:3, 2] = (0.0, 1.0, 0.0)
        pose[:3, 3] = (target_xz[0], height_above, target_xz[1])
        return cls(fx=fx, fy=fx, cx=width / 2.0, cy=height / 2.0,
                   width=width, height=height, pose=pose)


@dataclass
class DepthFrame:
    """One depth observation: metric depth, optional confidence (0/1/2) and camera."""
    depth: np.ndarray
    camera: CameraModel
    confidence: Optional[np.ndarray] = None
    tracking_state: str = "normal"

    def __post_init__(self):
        depth = np.asarray(self.depth, dtype=np.float32)
        if depth.ndim != 2 or depth.size == 0:
            raise InvalidObservationError(f"Depth map must be a non-empty 2D array, got shape {depth.shape}")
        self.depth = depth
        if self.confidence is not None:
            conf = np.asarray(self.confidence)
            if conf.shape != depth.shape:
                raise InvalidObservationError(
                    f"Confidence shape {conf.shape} does not match depth shape {depth.shape}"
                )
            self.confidence = conf.astype(np.uint8)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.depth.shape[:2]

    @property
    def tracking_normal(self) -> bool:
        return self.tracking_state.lower() == "normal"

    def depth_camera(self) -> CameraModel:
        h, w = self.shape
        if (self.camera.width, self.camera.height) == (w, h):
            return self.camera
        return self.camera.scaled_to(w, h)
