from __future__ import annotations

from enum import Enum

# Volumetric (dimensional) weight divisor, cm^3 per kg.
VOLUMETRIC_DIVISOR_CM3 = 5000.0
CUBIC_INCHES_PER_M3 = 61023.7


class MeasurementUnit(str, Enum):
    MILLIMETERS = "mm"
    CENTIMETERS = "cm"
    INCHES = "in"

    @property
    def length_factor(self) -> float:
        return {"mm": 1000.0, "cm": 100.0, "in": 39.3701}[self.value]

    @property
    def volume_factor(self) -> float:
        return {"mm": 1e9, "cm": 1e6, "in": CUBIC_INCHES_PER_M3}[self.value]

    def convert(self, meters: float) -> float:
        return meters * self.length_factor

    def convert_volume(self, cubic_meters: float) -> float:
        return cubic_meters * self.volume_factor

    def format_length(self, meters: float, decimals: int = 1) -> str:
        return f"{self.convert(meters):.{decimals}f} {self.value}"

    def format_volume(self, cubic_meters: float, decimals: int = 1) -> str:
        return f"{self.convert_volume(cubic_meters):.{decimals}f} {self.value}^3"


class RoundingPrecision(str, Enum):
    ONE_MM = "1mm"
    FIVE_MM = "5mm"
    TENTH_CM = "0.1cm"
    ONE_CM = "1cm"

    @property
    def step(self) -> float:
        return {"1mm": 0.001, "5mm": 0.005, "0.1cm": 0.001, "1cm": 0.01}[self.value]

    def round(self, meters: float) -> float:
        return round(meters / self.step) * self.step


class SizeClass(str, Enum):
    XS = "XS"
    SMALL = "S"
    MEDIUM = "M"
    LARGE = "L"
    XL = "XL"
    XXL = "XXL"

    @classmethod
    def from_volume(cls, cubic_meters: float) -> "SizeClass":
        cubic_inches = cubic_meters * CUBIC_INCHES_PER_M3
        for limit, size in ((100, cls.XS), (250, cls.SMALL), (650, cls.MEDIUM),
                            (1050, cls.LARGE), (1728, cls.XL)):
            if cubic_inches <= limit:
                return size
        return cls.XXL


def volumetric_weight_kg(cubic_meters: float) -> float:
    return cubic_meters * 1e6 / VOLUMETRIC_DIVISOR_CM3
