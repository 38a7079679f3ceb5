"""Synthetic end-to-end demo: render a box, measure it, edit it, refine it."""

import logging
from typing import Optional

import numpy as np

from core.config import MeasureConfig
from core.measurement_engine import MeasurementEngine
from geometry.handles import FaceHandle
from helpers.synthetic import box_observation
from measurement.units import MeasurementUnit
from pipelines.measure_pipeline import report, run_measurement, save_observation

logger = logging.getLogger(__name__)


def main(
    dims=(0.3, 0.15, 0.2),
    yaw_deg: float = 20.0,
    noise: float = 0.002,
    config: Optional[MeasureConfig] = None,
    unit: str = "cm",
    save_path: Optional[str] = None,
) -> int:
    frame, mask, hit, truth = box_observation(dims=dims, yaw=np.radians(yaw_deg), noise=noise)
    logger.info(f"[Demo] ground truth {truth!r}")
    if save_path:
        save_observation(save_path, frame, mask=mask, hit=hit, floor_y=0.0)
        logger.info(f"[Demo] observation saved to {save_path}")

    u = MeasurementUnit(unit)
    engine = MeasurementEngine(config=config)
    try:
        observation = {"frame": frame, "mask": mask, "hit": hit, "floor_y": 0.0}
        result = run_measurement(engine, observation, refine=True)
        if result is None:
            print("Demo measurement failed.")
            return 2
        print("== fitted ==")
        print(report(result, u))

        # Pull the +Y face up by 20 px on screen, as a user would.
        cam = frame.camera
        box = result.box
        top = box.local_to_world(FaceHandle.POS_Y.face_center_local(box.extents))
        edit = engine.drag_face(
            FaceHandle.POS_Y,
            screen_delta=(0.0, -20.0),
            face_center_screen=cam.project_point(top),
            box_center_screen=cam.project_point(box.center),
        )
        if edit.did_change:
            pending = engine.settle()
            if pending is not None:
                pending.result(timeout=60.0)
            print("== after top-face drag ==")
            print(report(engine.result, u))
        return 0
    finally:
        engine.shutdown()
