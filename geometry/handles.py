from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np


class FaceHandle(Enum):
    """Draggable face handles; value is (local axis index, outward sign)."""
    NEG_X = (0, -1)
    POS_X = (0, 1)
    NEG_Y = (1, -1)
    POS_Y = (1, 1)
    NEG_Z = (2, -1)
    POS_Z = (2, 1)

    @property
    def axis_index(self) -> int:
        return self.value[0]

    @property
    def direction(self) -> int:
        return self.value[1]

    @property
    def opposite(self) -> "FaceHandle":
        return FaceHandle((self.axis_index, -self.direction))

    def local_normal(self) -> np.ndarray:
        n = np.zeros(3)
        n[self.axis_index] = float(self.direction)
        return n

    def face_center_local(self, extents) -> np.ndarray:
        return self.local_normal() * np.asarray(extents, dtype=np.float64)[self.axis_index]

    @classmethod
    def from_name(cls, name: str) -> "FaceHandle":
        key = name.strip().upper().replace("-", "NEG_").replace("+", "POS_")
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Unknown face handle '{name}'") from None


@dataclass(frozen=True)
class AxisMapping:
    """Which local axis is reported as length, width and height."""
    length: int = 0
    width: int = 2
    height: int = 1

    def __post_init__(self):
        if sorted((self.length, self.width, self.height)) != [0, 1, 2]:
            raise ValueError(f"AxisMapping must be a permutation of 0,1,2: {self}")

    @classmethod
    def from_extents(cls, extents) -> "AxisMapping":
        """Longest horizontal local axis becomes length; local Y is height."""
        ext = np.asarray(extents, dtype=np.float64)
        if ext[0] >= ext[2]:
            return cls(length=0, width=2, height=1)
        return cls(length=2, width=0, height=1)

    def dimensions(self, extents):
        """(length, width, height) in metres from half-extents."""
        ext = np.asarray(extents, dtype=np.float64) * 2.0
        return float(ext[self.length]), float(ext[self.width]), float(ext[self.height])
