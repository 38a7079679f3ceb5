# measurement/result.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Dict, Optional

import numpy as np

from geometry.handles import AxisMapping
from geometry.oriented_box import OrientedBox
from measurement.orientation_policy import MeasurementMode
from measurement.quality import MeasurementQuality
from measurement.units import MeasurementUnit, RoundingPrecision, SizeClass, volumetric_weight_kg
from sensing.point_cloud import PointCloud

if TYPE_CHECKING:
    from refinement.volume_refiner import RefinedVolumeResult


@dataclass(frozen=True, eq=False)
class MeasurementResult:
    """
    Snapshot of one measurement. Never mutated: edits produce a new result via
    `recalculate`, so length/width/height/volume always agree with `box`.
    """
    box: OrientedBox
    quality: MeasurementQuality
    axis_mapping: AxisMapping
    length: float
    width: float
    height: float
    volume: float
    mode: MeasurementMode = MeasurementMode.BOX_PRIORITY
    refined: Optional["RefinedVolumeResult"] = None
    point_cloud: Optional[PointCloud] = None
    debug_images: Dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def dimensions(self):
        return self.length, self.width, self.height

    @property
    def refined_volume(self) -> Optional[float]:
        return self.refined.volume if self.refined is not None else None

    @property
    def best_volume(self) -> float:
        return self.refined.volume if self.refined is not None else self.volume

    def with_refined(self, refined: Optional["RefinedVolumeResult"]) -> "MeasurementResult":
        return replace(self, refined=refined)

    # ---- Presentation helpers ----
    def rounded_dimensions(self, precision: RoundingPrecision = RoundingPrecision.ONE_MM):
        return tuple(precision.round(v) for v in self.dimensions)

    @property
    def size_class(self) -> SizeClass:
        return SizeClass.from_volume(self.volume)

    @property
    def volumetric_weight_kg(self) -> float:
        return volumetric_weight_kg(self.volume)

    def describe(self, unit: MeasurementUnit = MeasurementUnit.CENTIMETERS) -> str:
        l, w, h = self.dimensions
        text = (
            f"L={unit.format_length(l)} W={unit.format_length(w)} H={unit.format_length(h)} "
            f"V={unit.format_volume(self.volume)} [{self.size_class.value}]"
        )
        if self.refined is not None:
            text += f" refined={unit.format_volume(self.refined.volume)}"
        return text


def recalculate(
    box: OrientedBox,
    quality: MeasurementQuality,
    axis_mapping: AxisMapping,
    mode: MeasurementMode = MeasurementMode.BOX_PRIORITY,
    point_cloud: Optional[PointCloud] = None,
    debug_images: Optional[Dict[str, np.ndarray]] = None,
) -> MeasurementResult:
    """Derive the scalar fields of a result from a (possibly edited) box."""
    length, width, height = axis_mapping.dimensions(box.extents)
    return MeasurementResult(
        box=box,
        quality=quality,
        axis_mapping=axis_mapping,
        length=length,
        width=width,
        height=height,
        volume=length * width * height,
        mode=mode,
        point_cloud=point_cloud,
        debug_images=dict(debug_images or {}),
    )
