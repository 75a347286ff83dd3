"""Relightable images: loading, relighting and reconstruction error."""

from __future__ import annotations

import copy
import json
import math
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Optional

import numpy as np
from PIL import Image

from .jpeg import ColorSpace, JpegDecoder, JpegError
from .material import Material, Plane
from .vector import Vector3


class BasisType(IntEnum):
    PTM = 0
    HSH = 1
    RBF = 2
    BILINEAR = 3
    DMD = 4
    SH = 5
    H = 6


class RtiColorSpace(IntEnum):
    """How planes combine into colour.

    RGB: every plane is processed on its own.
    LRGB: the first three planes are rgb, the rest luminance.
    YCC: like RGB, with a different number of planes for luma.
    MRGB: every plane coefficient weights an RGB basis.
    MYCC: as MRGB, with planes in the reversible luma/chroma space.
    """

    RGB = 0
    LRGB = 1
    YCC = 2
    MRGB = 3
    MYCC = 4


class RtiError(Exception):
    """Raised when a relightable image cannot be loaded or used."""


_TYPES = {
    "ptm": BasisType.PTM,
    "hsh": BasisType.HSH,
    "sh": BasisType.SH,
    "h": BasisType.H,
    "dmd": BasisType.DMD,
    "rbf": BasisType.RBF,
    "bilinear": BasisType.BILINEAR,
}

_SPACES = {
    "rgb": RtiColorSpace.RGB,
    "lrgb": RtiColorSpace.LRGB,
    "ycc": RtiColorSpace.YCC,
    "mrgb": RtiColorSpace.MRGB,
    "mycc": RtiColorSpace.MYCC,
}


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def _integer(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not value.is_integer():
        return 0
    return int(value)


def _array(value: Any) -> list:
    return value if isinstance(value, list) else []


def _item(values: list, i: int) -> Any:
    return values[i] if 0 <= i < len(values) else None


def _lz(lx: float, ly: float) -> float:
    return math.sqrt(max(0.0, 1.0 - lx * lx - ly * ly))


def _to_bytes(values: np.ndarray) -> np.ndarray:
    values = np.nan_to_num(np.trunc(values), nan=0.0, posinf=255.0, neginf=0.0)
    return np.clip(values, 0, 255).astype(np.uint8)


def ramp(t: int) -> tuple[int, int, int]:
    """Map a byte to a blue-green-red false colour."""
    if t < 128:
        r, g, b = 0, 2 * t, 255 - 2 * t
    else:
        r, g, b = 2 * t, 255 - 2 * t, 0
    return r & 0xFF, g & 0xFF, b & 0xFF


def ramp_range(v: float, vmin: float, vmax: float) -> tuple[int, int, int]:
    """False colour of v within [vmin, vmax]."""
    v = (v - vmin) / (vmax - vmin)
    v = max(0.0, min(1.0, v))
    return ramp(int(255 * v) & 0xFF)


def _ramp_array(values: np.ndarray, vmin: float, vmax: float) -> np.ndarray:
    v = np.clip((values - vmin) / (vmax - vmin), 0.0, 1.0)
    t = (255 * v).astype(np.int64) & 0xFF
    low = t < 128
    r = np.where(low, 0, 2 * t)
    g = np.where(low, 2 * t, 255 - 2 * t)
    b = np.where(low, 255 - 2 * t, 0)
    return (np.stack([r, g, b], axis=-1) & 0xFF).astype(np.uint8)


@dataclass(eq=False)
class Rti:
    """A relightable image in the folder format: info.json plus plane JPEGs."""

    exif: dict = field(default_factory=dict)
    type: BasisType = BasisType.RBF
    colorspace: RtiColorSpace = RtiColorSpace.MRGB
    width: int = 0
    height: int = 0
    nplanes: int = 9
    yccplanes: list = field(default_factory=lambda: [0, 0, 0])
    sigma: float = 0.125
    regularization: float = 0.1
    chromasubsampling: bool = False
    gamma_fix: bool = False
    planes: list = field(default_factory=list)
    scale: list = field(default_factory=list)
    bias: list = field(default_factory=list)
    ranges: list = field(default_factory=list)
    material: Material = field(default_factory=Material)
    # For each material the mean first, then each plane; rbf ordered by
    # lights, bilinear as a grid x + y*resolution.
    basis: Any = field(default_factory=list)
    lights: list = field(default_factory=list)
    resolution: int = 8
    ndimensions: int = 0
    filesize: int = 0
    headersize: int = 0
    planesize: list = field(default_factory=list)

    # Loading

    def load(self, filename, load_planes: bool = True) -> None:
        """Read info.json (and the plane images) from a folder or a file in it."""
        path = Path(filename)
        folder = path if path.is_dir() else path.parent
        info = folder / "info.json"
        try:
            raw = info.read_bytes()
        except OSError as exc:
            raise RtiError(f"Could not open file: {info}") from exc
        try:
            obj = json.loads(raw)
        except ValueError as exc:
            raise RtiError("Invalid json.") from exc
        if not isinstance(obj, dict):
            raise RtiError("Invalid json.")

        self.width = _integer(obj.get("width"))
        self.height = _integer(obj.get("height"))

        t = obj.get("type")
        t = t if isinstance(t, str) else ""
        if t not in _TYPES:
            raise RtiError(f"Unknown basis type: {t}")
        self.type = _TYPES[t]

        if self.type == BasisType.BILINEAR:
            self.resolution = _integer(obj.get("resolution"))
            self.ndimensions = self.resolution * self.resolution

        if self.type == BasisType.RBF:
            self.sigma = _number(obj.get("sigma"))
            jlights = _array(obj.get("lights"))
            self.lights = [
                Vector3(*(_number(v) for v in jlights[i:i + 3]))
                for i in range(0, len(jlights) - len(jlights) % 3, 3)
            ]
            self.ndimensions = len(self.lights)

        c = obj.get("colorspace")
        c = c if isinstance(c, str) else ""
        if c not in _SPACES:
            raise RtiError(f"Unknown color space: {c}")
        self.colorspace = _SPACES[c]

        if self.colorspace == RtiColorSpace.MYCC:
            ycc = _array(obj.get("yccplanes"))
            if len(ycc) != 3:
                raise RtiError("Expecting 3 numbers for yccplanes")
            self.yccplanes = [_integer(v) for v in ycc]
            self.nplanes = sum(self.yccplanes)
        else:
            self.nplanes = _integer(obj.get("nplanes"))

        mats = _array(obj.get("materials"))
        if len(mats) != 1:
            raise RtiError(f"Expecting one material, found {len(mats)}")
        jm = mats[0] if isinstance(mats[0], dict) else {}
        jrange = _array(jm.get("range"))
        jbias = _array(jm.get("bias"))
        jscale = _array(jm.get("scale"))
        self.material = Material([
            Plane(
                range=_number(_item(jrange, p)),
                scale=_number(_item(jscale, p)),
                bias=_number(_item(jbias, p)),
            )
            for p in range(self.nplanes)
        ])

        if self.colorspace in (RtiColorSpace.MRGB, RtiColorSpace.MYCC):
            jbasis = _array(obj.get("basis"))
            size = (self.nplanes + 1) * 3 * self.ndimensions
            basis = np.array([_number(_item(jbasis, o)) for o in range(size)], dtype=np.float64)
            rows = basis.reshape(self.nplanes + 1, 3 * self.ndimensions)
            ranges = np.array([p.range for p in self.material.planes], dtype=np.float64)
            with np.errstate(divide="ignore", invalid="ignore"):
                rows[1:] = (rows[1:] - 127.0) / ranges[:, None]
            self.basis = rows.ravel()

        if load_planes:
            self.load_data(folder)

    def load_data(self, folder) -> None:
        """Read the plane_N.jpg images and record file sizes."""
        folder = Path(folder)
        njpegs = (self.nplanes - 1) // 3 + 1
        n = self.width * self.height
        self.planes = [np.zeros(n, dtype=np.uint8) for _ in range(self.nplanes)]
        for i in range(njpegs):
            path = folder / f"plane_{i}.jpg"
            decoder = JpegDecoder(ColorSpace.RGB)
            try:
                pixels, w, h = decoder.decode_file(path)
            except JpegError as exc:
                raise RtiError(f"Failed decoding: {path}") from exc
            if w != self.width or h != self.height:
                raise RtiError(f"Inconsistent image size for {path}")
            rgb = np.frombuffer(pixels, dtype=np.uint8).reshape(n, 3)
            for k in range(3):
                if i * 3 + k < self.nplanes:
                    self.planes[i * 3 + k] = rgb[:, k].copy()

        def size_of(p: Path) -> int:
            return p.stat().st_size if p.is_file() else 0

        self.headersize = size_of(folder / "info.json") + size_of(folder / "materials.bin")
        self.filesize = self.headersize
        self.planesize = []
        for i in range(njpegs):
            psize = size_of(folder / f"plane_{i}.jpg")
            self.filesize += psize
            self.planesize.extend([psize // 3] * 3)

    # Clipping

    def _check_window(self, left: int, bottom: int, right: int, top: int) -> None:
        if not (0 <= left < right <= self.width and 0 <= bottom < top <= self.height):
            raise ValueError(
                f"Invalid clip window: left {left} bottom {bottom} right {right} top {top}"
            )

    def clip(self, left: int, bottom: int, right: int, top: int) -> None:
        """Keep only the window; right and top are excluded."""
        self._check_window(left, bottom, right, top)
        self.planes = [
            np.asarray(p, dtype=np.uint8).reshape(self.height, self.width)[bottom:top, left:right].ravel().copy()
            for p in self.planes
        ]
        self.width = right - left
        self.height = top - bottom

    def clipped(self, left: int, bottom: int, right: int, top: int) -> Rti:
        """Return a copy holding only the window."""
        self._check_window(left, bottom, right, top)
        result = copy.deepcopy(self)
        result.clip(left, bottom, right, top)
        return result

    # Rendering

    def _dequantized(self, p: int) -> np.ndarray:
        plane = self.material.planes[p]
        values = np.asarray(self.planes[p], dtype=np.float64)
        return 255.0 * ((values / 255.0) - plane.bias) * plane.scale

    def render(self, lx: float, ly: float, stride: int = 3, renderplanes: int = 0) -> bytes:
        """Relight with light direction (lx, ly); return packed pixels."""
        if stride < 3:
            raise ValueError("stride must be at least 3")
        n = self.width * self.height
        out = np.zeros((n, stride), dtype=np.uint8)
        if stride == 4:
            out[:, 3] = 255
        if renderplanes == 0:
            renderplanes = self.nplanes
        w = np.asarray(self.light_weights(lx, ly), dtype=np.float64)
        color = np.zeros((n, 3), dtype=np.float64)
        space = self.colorspace

        if space == RtiColorSpace.LRGB:
            lum = np.zeros(n)
            for p in range(3, self.nplanes):
                lum += w[p - 3] * self._dequantized(p)
            lum /= 255.0
            for c in range(3):
                color[:, c] = lum * np.asarray(self.planes[c], dtype=np.float64)
        elif space == RtiColorSpace.RGB:
            for c in range(3):
                for p in range(c, self.nplanes, 3):
                    color[:, c] += w[p // 3] * self._dequantized(p)
        elif space == RtiColorSpace.YCC:
            y = np.zeros(n)
            for p in range(0, self.nplanes, 3):
                y += w[p // 3] * self._dequantized(p)
            y /= 255.0
            cb = self._dequantized(1) / 255.0 - 0.5
            cr = self._dequantized(2) / 255.0 - 0.5
            color[:, 0] = y + 1.402 * cr
            color[:, 1] = y - 0.344136 * cb - 0.714136 * cr
            color[:, 2] = y + 1.772 * cb
            color *= 255.0
        else:
            # The mean comes first, then one RGB weight per plane.
            color[:] = w[0:3]
            if space == RtiColorSpace.MRGB:
                for p in range(renderplanes):
                    val = self._dequantized(p)
                    color += val[:, None] * w[3 * (p + 1):3 * (p + 2)]
            else:
                for p in range(self.yccplanes[1]):
                    for k in range(3):
                        q = p * 3 + k
                        color[:, k] += self._dequantized(q) * w[3 * (q + 1) + k]
                for p in range(self.yccplanes[1] * 3, renderplanes):
                    color[:, 0] += self._dequantized(p) * w[3 * (p + 1)]
                y, co, cg = color[:, 0].copy(), color[:, 1].copy(), color[:, 2].copy()
                tmp = y - cg / 2
                color[:, 1] = cg + tmp
                color[:, 2] = tmp - co / 2
                color[:, 0] = color[:, 2] + co
            if self.gamma_fix:
                color /= math.sqrt(255.0)
                color *= color

        out[:, :3] = _to_bytes(color)
        return out.tobytes()

    # Light weights

    def light_weights(self, lx: float, ly: float) -> list[float]:
        method = {
            BasisType.PTM: self.light_weights_ptm,
            BasisType.HSH: self.light_weights_hsh,
            BasisType.SH: self.light_weights_sh,
            BasisType.H: self.light_weights_h,
            BasisType.DMD: self.light_weights_dmd,
            BasisType.RBF: self.light_weights_rbf,
            BasisType.BILINEAR: self.light_weights_bilinear,
        }.get(self.type)
        return method(lx, ly) if method else []

    def _nweights(self) -> int:
        if self.colorspace == RtiColorSpace.RGB and self.nplanes % 3:
            raise RtiError("RGB planes must be a multiple of 3")
        if self.colorspace == RtiColorSpace.LRGB:
            return self.nplanes - 3
        return self.nplanes // 3

    def light_weights_ptm(self, lx: float, ly: float) -> list[float]:
        """Polynomial terms ordered by degree: 1, lx, ly, lx^2, lx*ly, ly^2..."""
        nweights = self._nweights()
        coeffs: list[float] = []
        degree = 0
        while len(coeffs) < nweights:
            for k in range(degree + 1):
                coeffs.append(ly ** k * lx ** (degree - k))
                if len(coeffs) == nweights:
                    break
            degree += 1
        return coeffs

    def light_weights_dmd(self, lx: float, ly: float) -> list[float]:
        """Discrete modal decomposition has no weights yet: all zero."""
        return [0.0] * self._nweights()

    def light_weights_hsh(self, lx: float, ly: float) -> list[float]:
        lz = _lz(lx, ly)
        phi = math.atan2(ly, lx)
        if phi < 0.0:
            phi += 2.0 * math.pi
        theta = min(math.acos(lz), math.pi / 2.0 - 0.01)
        cos_p = math.cos(phi)
        sin_p = math.sin(phi)
        cos_t = math.cos(theta)
        cos_t2 = cos_t * cos_t
        root = math.sqrt(max(0.0, cos_t - cos_t2))
        s6 = math.sqrt(6.0 / math.pi)
        s30 = math.sqrt(30.0 / math.pi)
        return [
            1.0 / math.sqrt(2.0 * math.pi),
            s6 * cos_p * root,
            math.sqrt(3.0 / (2.0 * math.pi)) * (-1.0 + 2.0 * cos_t),
            s6 * root * sin_p,
            s30 * math.cos(2.0 * phi) * (-cos_t + cos_t2),
            s30 * cos_p * (-1.0 + 2.0 * cos_t) * root,
            math.sqrt(5.0 / (2.0 * math.pi)) * (1.0 - 6.0 * cos_t + 6.0 * cos_t2),
            s30 * (-1.0 + 2.0 * cos_t) * root * sin_p,
            s30 * (-cos_t + cos_t2) * math.sin(2.0 * phi),
        ]

    def light_weights_sh(self, lx: float, ly: float) -> list[float]:
        lz = _lz(lx, ly)
        phi = math.atan2(ly, lx)
        if phi < 0.0:
            phi += 2.0 * math.pi
        theta = min(math.acos(lz), math.pi / 2.0 - 0.01)
        sin_p, cos_p = math.sin(phi), math.cos(phi)
        sin_t, cos_t = math.sin(theta), math.cos(theta)
        s3 = 0.5 * math.sqrt(3.0 / math.pi)
        s15 = math.sqrt(15.0 / math.pi)
        return [
            0.5 / math.sqrt(math.pi),
            s3 * sin_p * sin_t,
            s3 * cos_t,
            s3 * cos_p * sin_t,
            0.25 * s15 * math.sin(2 * phi) * sin_t * sin_t,
            0.5 * s15 * sin_t * cos_t * sin_p,
            0.25 * math.sqrt(5.0 / math.pi) * (3 * cos_t * cos_t - 1),
            0.5 * s15 * sin_t * cos_t * cos_p,
            0.25 * s15 * sin_t * sin_t * math.cos(2 * phi),
        ]

    def light_weights_h(self, lx: float, ly: float) -> list[float]:
        """The H basis has no weights defined: always raises RtiError."""
        lz = _lz(lx, ly)
        direction = Vector3(lx, ly, lz)
        raise RtiError(
            "The H basis is not supported "
            f"(light {direction[0]:.3f}, {direction[1]:.3f}, {direction[2]:.3f}, "
            f"{self.nplanes} planes)"
        )

    def _basis_grid(self) -> np.ndarray:
        size = (self.nplanes + 1) * self.ndimensions * 3
        basis = np.asarray(self.basis, dtype=np.float64).ravel()
        if basis.size < size:
            raise RtiError(f"Basis has {basis.size} values, expected {size}")
        return basis[:size].reshape(self.nplanes + 1, self.ndimensions, 3)

    def light_weights_rbf(self, lx: float, ly: float) -> list[float]:
        """Interpolate the basis over the sampled lights with gaussian weights."""
        radius = 1.0 / (self.sigma * self.sigma)
        n = np.array([lx, ly, _lz(lx, ly)])
        lights = np.array([list(light) for light in self.lights], dtype=np.float64).reshape(-1, 3)
        d2 = ((lights - n) ** 2).sum(axis=1)
        weights = np.exp(-radius * d2)
        weights /= weights.sum()
        # Keep only the most significant and renormalize.
        keep = np.nonzero(weights > 0.001)[0]
        selected = weights[keep] / weights[keep].sum()
        grid = self._basis_grid()
        return np.einsum("l,plk->pk", selected, grid[:, keep, :]).ravel().tolist()

    def light_weights_bilinear(self, lx: float, ly: float) -> list[float]:
        """Bilinear interpolation on a grid of the light octahedral map."""
        res = self.resolution
        lz = _lz(lx, ly)
        s = abs(lx) + abs(ly) + abs(lz)
        # rotate 45 degrees
        x = (lx + ly) / s
        y = (ly - lx) / s
        x = (x + 1.0) / 2.0 * (res - 1.0)
        y = (y + 1.0) / 2.0 * (res - 1.0)
        sx = min(res - 2, max(0, math.floor(x)))
        sy = min(res - 2, max(0, math.floor(y)))
        dx = x - sx
        dy = y - sy
        grid = self._basis_grid()

        def at(px: int, py: int) -> np.ndarray:
            return grid[:, px + py * res, :]

        w = (
            (1 - dx) * (1 - dy) * at(sx, sy)
            + dx * (1 - dy) * at(sx + 1, sy)
            + (1 - dx) * dy * at(sx, sy + 1)
            + dx * dy * at(sx + 1, sy + 1)
        )
        return w.ravel().tolist()


def evaluate_error(imageset, rti: Rti, output: Optional[str] = None, reference: int = -1) -> float:
    """Mean square error between the photographs and their relit reconstruction.

    When output is given, a false colour map of the per-pixel error is saved.
    """
    n = rti.width * rti.height
    size = n * 3
    nlights = len(imageset.lights)
    errors = np.zeros(n, dtype=np.float64)
    total = 0.0
    count = 0
    for nl, light in enumerate(imageset.lights):
        if reference >= 0 and nl != reference:
            continue
        count += 1
        rendered = np.frombuffer(rti.render(light[0], light[1]), dtype=np.uint8).astype(np.float64)
        original = np.frombuffer(bytes(imageset.decode(nl)), dtype=np.uint8)
        if original.size < size:
            raise RtiError(f"Image {nl} is smaller than the relightable image")
        diff2 = (original[:size].astype(np.float64) - rendered) ** 2
        total += diff2.sum() / size
        errors += diff2.reshape(n, 3).sum(axis=1)
    if count == 0:
        raise RtiError("No image to compare with")
    total /= count

    if output:
        rms = np.sqrt(errors / (nlights * 3))
        colors = _ramp_array(rms, 0.0, 25.0).reshape(rti.height, rti.width, 3)
        Image.fromarray(colors, "RGB").save(output)
    return total