from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class QualityLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class MeasurementQuality:
    depth_coverage: float
    depth_confidence: float
    point_count: int
    tracking_state: str = "normal"

    @property
    def tracking_normal(self) -> bool:
        return self.tracking_state.lower() == "normal"

    @property
    def overall_quality(self) -> QualityLevel:
        if self.tracking_normal and self.depth_coverage > 0.8 and self.depth_confidence > 0.7:
            return QualityLevel.HIGH
        if self.depth_coverage > 0.5 and self.depth_confidence > 0.4:
            return QualityLevel.MEDIUM
        return QualityLevel.LOW

    @classmethod
    def merged(cls, qualities: Iterable["MeasurementQuality"]) -> "MeasurementQuality":
        """Combine per-observation qualities of one object."""
        qs = list(qualities)
        if not qs:
            raise ValueError("merged() needs at least one quality record")
        total = sum(q.point_count for q in qs)
        if total > 0:
            conf = sum(q.depth_confidence * q.point_count for q in qs) / total
        else:
            conf = sum(q.depth_confidence for q in qs) / len(qs)
        state = "normal" if all(q.tracking_normal for q in qs) else "mixed"
        return cls(
            depth_coverage=max(q.depth_coverage for q in qs),
            depth_confidence=conf,
            point_count=total,
            tracking_state=state,
        )

    def summary(self) -> str:
        return (
            f"{self.overall_quality.value} (coverage={self.depth_coverage:.0%}, "
            f"confidence={self.depth_confidence:.0%}, points={self.point_count}, "
            f"tracking={self.tracking_state})"
        )
