from typing import Dict, Optional, Tuple

import cv2
import numpy as np


def depth_colormap(depth: np.ndarray, near: Optional[float] = None, far: Optional[float] = None) -> np.ndarray:
    """Metric depth -> BGR turbo image; invalid pixels are black."""
    d = np.asarray(depth, dtype=np.float32)
    valid = np.isfinite(d) & (d > 0)
    if not np.any(valid):
        return np.zeros(d.shape + (3,), dtype=np.uint8)
    lo = float(np.min(d[valid])) if near is None else near
    hi = float(np.max(d[valid])) if far is None else far
    scale = 255.0 / max(hi - lo, 1e-6)
    norm = np.zeros(d.shape, dtype=np.uint8)
    norm[valid] = np.clip((d[valid] - lo) * scale, 0, 255).astype(np.uint8)
    img = cv2.applyColorMap(255 - norm, cv2.COLORMAP_TURBO)
    img[~valid] = 0
    return img


def mask_overlay(base_bgr: np.ndarray, mask: np.ndarray, color: Tuple[int, int, int] = (0, 255, 0),
                 alpha: float = 0.5) -> np.ndarray:
    out = base_bgr.copy()
    m = np.asarray(mask, dtype=bool)
    if m.shape != out.shape[:2]:
        m = cv2.resize(m.astype(np.uint8), (out.shape[1], out.shape[0]), interpolation=cv2.INTER_NEAREST) > 0
    tint = np.zeros_like(out)
    tint[:] = color
    blended = cv2.addWeighted(out, 1.0 - alpha, tint, alpha, 0)
    out[m] = blended[m]
    return out


def build_debug_images(depth: np.ndarray, kept_pixels: Optional[np.ndarray]) -> Dict[str, np.ndarray]:
    depth_img = depth_colormap(depth)
    images = {"depth": depth_img}
    if kept_pixels is not None:
        images["kept_pixels"] = mask_overlay(depth_img, kept_pixels)
    return images
