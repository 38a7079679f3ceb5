"""Measure an object from a recorded depth observation (.npz)."""

import logging
import os
from typing import Dict, Optional, Sequence

import cv2
import numpy as np

from core.config import MeasureConfig
from core.measurement_engine import MeasurementEngine, MeasurementState
from measurement.orientation_policy import MeasurementMode
from measurement.result import MeasurementResult
from measurement.units import MeasurementUnit
from sensing.observation import CameraModel, DepthFrame

logger = logging.getLogger(__name__)


def load_observation(path: str) -> Dict[str, object]:
    """
    Observation archive keys:
        depth (H, W) metres, intrinsics [fx, fy, cx, cy], image_size [w, h],
        pose (4, 4) camera-to-world; optional confidence, mask, roi, hit,
        floor_y, tracking_state.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Observation file not found: {path}")
    with np.load(path, allow_pickle=False) as data:
        keys = set(data.files)
        missing = {"depth", "intrinsics", "pose"} - keys
        if missing:
            raise ValueError(f"{path} is missing {sorted(missing)}")
        depth = data["depth"]
        fx, fy, cx, cy = map(float, data["intrinsics"])
        if "image_size" in keys:
            w, h = map(int, data["image_size"])
        else:
            h, w = depth.shape[:2]
        camera = CameraModel(fx=fx, fy=fy, cx=cx, cy=cy, width=w, height=h, pose=data["pose"])
        frame = DepthFrame(
            depth=depth,
            camera=camera,
            confidence=data["confidence"] if "confidence" in keys else None,
            tracking_state=str(data["tracking_state"]) if "tracking_state" in keys else "normal",
        )
        return {
            "frame": frame,
            "mask": data["mask"] if "mask" in keys else None,
            "roi": tuple(data["roi"].tolist()) if "roi" in keys else None,
            "hit": data["hit"] if "hit" in keys else None,
            "floor_y": float(data["floor_y"]) if "floor_y" in keys else None,
        }


def save_observation(path: str, frame: DepthFrame, mask=None, roi=None, hit=None, floor_y=None) -> None:
    cam = frame.camera
    payload = {
        "depth": frame.depth,
        "intrinsics": np.array([cam.fx, cam.fy, cam.cx, cam.cy]),
        "image_size": np.array([cam.width, cam.height]),
        "pose": cam.pose,
        "tracking_state": np.array(frame.tracking_state),
    }
    if frame.confidence is not None:
        payload["confidence"] = frame.confidence
    if mask is not None:
        payload["mask"] = np.asarray(mask)
    if roi is not None:
        payload["roi"] = np.asarray(roi, dtype=np.float64)
    if hit is not None:
        payload["hit"] = np.asarray(hit, dtype=np.float64)
    if floor_y is not None:
        payload["floor_y"] = np.array(floor_y)
    np.savez_compressed(path, **payload)


def write_debug_images(result: MeasurementResult, out_dir: str) -> None:
    os.makedirs(out_dir, exist_ok=True)
    for name, img in result.debug_images.items():
        out = os.path.join(out_dir, f"{name}.png")
        cv2.imwrite(out, img)
        logger.info(f"[Measure] wrote {out}")


def run_measurement(
    engine: MeasurementEngine,
    observation: Dict[str, object],
    mode: MeasurementMode = MeasurementMode.BOX_PRIORITY,
    refine: bool = True,
    timeout: float = 60.0,
    extra_views: Sequence[Dict[str, object]] = (),
) -> Optional[MeasurementResult]:
    future = engine.begin_measurement(
        observation["frame"],
        mask=observation.get("mask"),
        roi=observation.get("roi"),
        hit_position=observation.get("hit"),
        mode=mode,
        floor_y=observation.get("floor_y"),
    )
    if future is None:
        return None
    result = future.result(timeout=timeout)
    if result is None:
        logger.warning("[Measure] not enough depth data to measure the object")
        return None
    for view in extra_views:
        if not engine.add_observation(
            view["frame"], mask=view.get("mask"), roi=view.get("roi"), hit_position=view.get("hit"),
        ):
            logger.warning("[Measure] extra view had no usable depth, skipped")
    if refine:
        pending = engine.settle()
        if pending is not None:
            pending.result(timeout=timeout)
    return engine.result


def report(result: MeasurementResult, unit: MeasurementUnit) -> str:
    lines = [
        f"Dimensions : {result.describe(unit)}",
        f"Quality    : {result.quality.summary()}",
        f"Box        : {result.box!r}",
    ]
    refined = result.refined
    if refined is not None:
        lines.append(
            f"Voxel      : {unit.format_volume(refined.volume)} "
            f"({refined.occupied_count} voxels of {refined.voxel_size * 1000:.1f}mm, "
            f"{refined.processing_time * 1000:.0f}ms, multi_view={refined.multi_view})"
        )
        surface = "unavailable" if refined.surface_volume is None else unit.format_volume(refined.surface_volume)
        lines.append(f"Surface    : {surface}")
    return "\n".join(lines)


def main(
    path: str,
    config: Optional[MeasureConfig] = None,
    mode: str = "box",
    unit: str = "cm",
    refine: bool = True,
    debug_dir: Optional[str] = None,
    extra_paths: Sequence[str] = (),
) -> int:
    observation = load_observation(path)
    extra_views = [load_observation(p) for p in extra_paths]
    engine = MeasurementEngine(config=config, keep_debug_images=debug_dir is not None)
    try:
        result = run_measurement(
            engine, observation, mode=MeasurementMode(mode), refine=refine, extra_views=extra_views,
        )
        if result is None or engine.state == MeasurementState.FAILED:
            print("Measurement failed: insufficient depth data.")
            return 2
        print(report(result, MeasurementUnit(unit)))
        if debug_dir:
            write_debug_images(result, debug_dir)
        return 0
    finally:
        engine.shutdown()
