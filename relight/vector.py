"""Small 3D vectors, colours and per-pixel light samples."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator


class Vector3:
    """A mutable three component vector."""

    __slots__ = ("v",)

    def __init__(self, x: float = 0.0, y: float = 0.0, z: float = 0.0) -> None:
        self.v = [float(x), float(y), float(z)]

    def __getitem__(self, i: int) -> float:
        return self.v[i]

    def __setitem__(self, i: int, value: float) -> None:
        self.v[i] = float(value)

    def __iter__(self) -> Iterator[float]:
        return iter(self.v)

    def __len__(self) -> int:
        return 3

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Vector3):
            return NotImplemented
        return self.v == other.v

    def __repr__(self) -> str:
        return f"Vector3({self.v[0]!r}, {self.v[1]!r}, {self.v[2]!r})"

    def __add__(self, other: Vector3) -> Vector3:
        return Vector3(*(a + b for a, b in zip(self.v, other.v)))

    def __sub__(self, other: Vector3) -> Vector3:
        return Vector3(*(a - b for a, b in zip(self.v, other.v)))

    def __neg__(self) -> Vector3:
        return Vector3(*(-a for a in self.v))

    def __mul__(self, d: float) -> Vector3:
        return Vector3(*(a * d for a in self.v))

    __rmul__ = __mul__

    def __truediv__(self, d: float) -> Vector3:
        return Vector3(*(a / d for a in self.v))

    def dot(self, other: Vector3) -> float:
        return sum(a * b for a, b in zip(self.v, other.v))

    def cross(self, other: Vector3) -> Vector3:
        a, b = self.v, other.v
        return Vector3(
            a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0],
        )

    def squared_norm(self) -> float:
        return sum(a * a for a in self.v)

    def norm(self) -> float:
        return math.sqrt(self.squared_norm())

    def normalized(self) -> Vector3:
        """Return the vector scaled to unit length."""
        return self / self.norm()

    def is_zero(self) -> bool:
        return all(a == 0 for a in self.v)

    def rotate(self, axis: Vector3, angle: float) -> Vector3:
        """Rotate around a unit axis by angle radians (Rodrigues' formula)."""
        c = math.cos(angle)
        s = math.sin(angle)
        return self * c + axis.cross(self) * s + axis * (axis.dot(self) * (1 - c))

    def angle(self, other: Vector3) -> float:
        return math.acos(self.dot(other) / (other.norm() * self.norm()))


@dataclass
class Color3:
    """An RGB (or other three channel) colour."""

    r: float = 0.0
    g: float = 0.0
    b: float = 0.0

    _NAMES = ("r", "g", "b")

    def __getitem__(self, i: int) -> float:
        return getattr(self, self._NAMES[i])

    def __setitem__(self, i: int, value: float) -> None:
        setattr(self, self._NAMES[i], value)

    def __iter__(self) -> Iterator[float]:
        return iter((self.r, self.g, self.b))

    def scaled(self, factor: float) -> Color3:
        return Color3(self.r * factor, self.g * factor, self.b * factor)

    def rgb_to_ycbcr(self) -> Color3:
        r, g, b = self.r, self.g, self.b
        return Color3(
            0.299 * r + 0.587 * g + 0.114 * b,
            0.5 - 0.16874 * r - 0.33126 * g + 0.5 * b,
            0.5 + 0.50000 * r - 0.41869 * g - 0.08131 * b,
        )

    def ycbcr_to_rgb(self) -> Color3:
        cb = self.g - 0.5
        cr = self.b - 0.5
        return Color3(
            self.r + 1.402 * cr,
            self.r - 0.344136 * cb - 0.714136 * cr,
            self.r + 1.772 * cb,
        )

    def to_ycc(self) -> Color3:
        """Convert RGB to the reversible luma/chroma form (Y, Co, Cg)."""
        co = self.r - self.b
        tmp = self.b + co / 2
        cg = self.g - tmp
        return Color3(tmp + cg / 2, co, cg)

    def to_rgb(self) -> Color3:
        """Inverse of :meth:`to_ycc`."""
        tmp = self.r - self.b / 2
        green = self.b + tmp
        blue = tmp - self.g / 2
        return Color3(blue + self.g, green, blue)

    def mean(self) -> float:
        return (self.r + self.g + self.b) / 3


class Pixel:
    """The colours of one pixel under each light."""

    def __init__(self, nlights: int = 0, x: int = 0, y: int = 0) -> None:
        self.x = x
        self.y = y
        self.intensity = 0.0
        self._colors = [Color3() for _ in range(nlights)]

    def _resize(self, nlights: int) -> None:
        if nlights < len(self._colors):
            del self._colors[nlights:]
        else:
            self._colors.extend(Color3() for _ in range(nlights - len(self._colors)))

    def __len__(self) -> int:
        return len(self._colors)

    def __getitem__(self, i: int) -> Color3:
        return self._colors[i]

    def __setitem__(self, i: int, value: Color3) -> None:
        self._colors[i] = value

    def __iter__(self) -> Iterator[Color3]:
        return iter(self._colors)


class PixelArray:
    """A sequence of pixels, each holding one colour per light."""

    def __init__(self, npixels: int = 0, nlights: int = 0) -> None:
        self.nlights = nlights
        self._pixels: list[Pixel] = []
        self.resize(npixels, nlights)

    def resize(self, npixels: int, nlights: int) -> None:
        """Change the number of pixels and lights, keeping existing values."""
        self.nlights = nlights
        if npixels < len(self._pixels):
            del self._pixels[npixels:]
        else:
            self._pixels.extend(Pixel() for _ in range(npixels - len(self._pixels)))
        for pixel in self._pixels:
            pixel._resize(nlights)

    def components(self) -> int:
        return self.nlights

    def npixels(self) -> int:
        return len(self._pixels)

    def __len__(self) -> int:
        return len(self._pixels)

    def __getitem__(self, i: int) -> Pixel:
        return self._pixels[i]

    def __iter__(self) -> Iterator[Pixel]:
        return iter(self._pixels)