# core/config.py
"""Tunable parameters of the measurement engine, grouped per stage."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Depth confidence levels as delivered by the sensor.
CONFIDENCE_LOW = 0
CONFIDENCE_MEDIUM = 1
CONFIDENCE_HIGH = 2

MIN_SAMPLE_POINTS = 20
MIN_FIT_POINTS = 4
MIN_REFIT_POINTS = 10
FLOOR_SNAP_THRESHOLD = 0.05


@dataclass
class SamplerConfig:
    min_points: int = MIN_SAMPLE_POINTS
    min_depth: float = 0.1
    max_depth: float = 5.0
    min_confidence: int = CONFIDENCE_MEDIUM
    outlier_std: float = 2.0
    # None -> adaptive radius derived from camera-to-hit distance
    hit_tolerance: Optional[float] = None
    hit_radius_fraction: float = 0.2
    hit_radius_min: float = 0.15
    hit_radius_max: float = 0.4
    cluster_link: float = 0.05
    downsample: bool = True
    max_points: int = 20000
    morph_kernel: int = 3


@dataclass
class FitterConfig:
    tie_tolerance: float = 0.02
    min_points: int = MIN_FIT_POINTS


@dataclass
class EditingConfig:
    noise_threshold_px: float = 0.5
    # below this on-screen centre-to-face distance the face is seen edge-on
    min_face_distance_px: float = 8.0
    min_rotation_radius_px: float = 10.0
    min_refit_points: int = MIN_REFIT_POINTS
    refit_margin: float = 0.0
    floor_threshold: float = FLOOR_SNAP_THRESHOLD


@dataclass
class RefinementConfig:
    voxel_size: float = 0.01
    min_voxel_size: float = 0.005
    max_voxel_size: float = 0.05
    max_grid_cells: int = 256
    min_points: int = 10
    fill_interior: bool = True
    box_margin: float = 0.0
    surface_reconstruction: bool = True
    min_closed_fraction: float = 0.98
    alpha_multiplier: float = 2.5
    ball_radius_multiplier: float = 3.0
    max_surface_voxels: int = 5000


@dataclass
class MeasureConfig:
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    fitter: FitterConfig = field(default_factory=FitterConfig)
    editing: EditingConfig = field(default_factory=EditingConfig)
    refinement: RefinementConfig = field(default_factory=RefinementConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeasureConfig":
        sections = {}
        for f in fields(cls):
            section_cls = type(f.default_factory())
            raw = data.get(f.name) or {}
            known = {sf.name for sf in fields(section_cls)}
            unknown = set(raw) - known
            if unknown:
                raise ValueError(f"Unknown keys in [{f.name}] config: {sorted(unknown)}")
            sections[f.name] = section_cls(**raw)
        extra = set(data) - set(sections)
        if extra:
            raise ValueError(f"Unknown config sections: {sorted(extra)}")
        return cls(**sections)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(path: Optional[str]) -> MeasureConfig:
    """Load a JSON config file; missing path -> defaults."""
    if not path:
        return MeasureConfig()
    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    logger.info(f"[Config] loaded {path}")
    return MeasureConfig.from_dict(data)
