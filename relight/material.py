"""Per-plane quantization parameters of a relightable image."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Plane:
    """Scale and bias mapping a coefficient plane to bytes."""

    range: float = 0.0
    min: float = 1e20
    max: float = -1e20
    scale: float = 0.0
    bias: float = 0.0

    def quantize(self, value: float) -> int:
        """Map a value in [0, 255] to a byte in [0, 255]."""
        value /= 255.0
        v = int(255 * (value / self.scale + self.bias))
        return max(0, min(255, v))

    def dequantize(self, value: int) -> float:
        return 255.0 * ((value / 255.0) - self.bias) * self.scale


@dataclass
class Material:
    planes: list[Plane] = field(default_factory=list)


@dataclass
class MaterialBuilder:
    proj: list[float] = field(default_factory=list)
    mean: list[float] = field(default_factory=list)