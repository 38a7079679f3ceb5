from typing import Any, Tuple

import cv2
import numpy as np

from core.errors import InvalidObservationError


def binarize_mask(mask: Any, shape_hw: Tuple[int, int]) -> np.ndarray:
    """Object mask of any dtype and resolution -> 0/255 uint8 on the depth grid."""
    m = np.squeeze(np.asarray(mask))
    if m.ndim != 2 or m.size == 0:
        raise InvalidObservationError(f"Mask must be 2D, got shape {np.asarray(mask).shape}")
    # bool and [0, 1] masks split at 0.5, 8-bit masks at mid-grey
    cut = 0.5 if m.dtype == bool or float(m.max()) <= 1.0 else 127.0
    m = np.where(m.astype(np.float32) > cut, 255, 0).astype(np.uint8)
    h, w = shape_hw
    if m.shape != (h, w):
        m = cv2.resize(m, (w, h), interpolation=cv2.INTER_NEAREST)
    return m


def clip_roi(roi: Any, w: int, h: int) -> Tuple[int, int, int, int]:
    """(x1, y1, x2, y2) clipped to the image; x2/y2 exclusive."""
    if roi is None or len(roi) != 4:
        raise InvalidObservationError(f"ROI must be (x1, y1, x2, y2), got {roi!r}")
    x1, y1, x2, y2 = map(float, roi)
    x1 = int(np.clip(np.floor(x1), 0, w))
    y1 = int(np.clip(np.floor(y1), 0, h))
    x2 = int(np.clip(np.ceil(x2), 0, w))
    y2 = int(np.clip(np.ceil(y2), 0, h))
    if x2 <= x1 or y2 <= y1:
        raise InvalidObservationError(f"ROI {roi!r} is empty inside a {w}x{h} image")
    return x1, y1, x2, y2


def scale_roi(roi, src_wh: Tuple[int, int], dst_wh: Tuple[int, int]):
    sx = dst_wh[0] / float(src_wh[0])
    sy = dst_wh[1] / float(src_wh[1])
    x1, y1, x2, y2 = map(float, roi)
    return x1 * sx, y1 * sy, x2 * sx, y2 * sy


def roi_to_mask(roi: Tuple[int, int, int, int], shape_hw: Tuple[int, int]) -> np.ndarray:
    m = np.zeros(shape_hw, dtype=np.uint8)
    x1, y1, x2, y2 = roi
    m[y1:y2, x1:x2] = 255
    return m


def clean_mask(mask_u8: np.ndarray, kernel: int = 3) -> np.ndarray:
    """Close small holes then drop speckles; returns the input if cleaning empties it."""
    if kernel <= 1:
        return mask_u8
    k = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (kernel, kernel))
    m = cv2.morphologyEx(mask_u8, cv2.MORPH_CLOSE, k, iterations=1)
    m = cv2.morphologyEx(m, cv2.MORPH_OPEN, k, iterations=1)
    if cv2.countNonZero(m) == 0:
        return mask_u8
    return m
