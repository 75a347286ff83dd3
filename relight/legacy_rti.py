"""Reading and writing of PTM and HSH (.rti) relightable images."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from itertools import accumulate
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from .jpeg import ColorSpace, JpegDecoder, JpegEncoder, JpegError


class LegacyType(IntEnum):
    UNKNOWN = 0
    PTM_LRGB = 1
    PTM_RGB = 2
    HSH = 3


class PTMFormat(IntEnum):
    RAW = 0
    JPEG = 1
    JPEGLS = 2


class LRtiError(Exception):
    """Raised when a PTM or HSH file cannot be read or written."""


_PTM_FORMATS = {
    "PTM_FORMAT_RGB": (LegacyType.PTM_RGB, False, 18),
    "PTM_FORMAT_LRGB": (LegacyType.PTM_LRGB, False, 9),
    "PTM_FORMAT_JPEG_RGB": (LegacyType.PTM_RGB, True, 18),
    "PTM_FORMAT_JPEG_LRGB": (LegacyType.PTM_LRGB, True, 9),
}

_FORMAT_NAMES = {
    (PTMFormat.RAW, LegacyType.PTM_LRGB): "PTM_FORMAT_LRGB",
    (PTMFormat.RAW, LegacyType.PTM_RGB): "PTM_FORMAT_RGB",
    (PTMFormat.JPEG, LegacyType.PTM_LRGB): "PTM_FORMAT_JPEG_LRGB",
    (PTMFormat.JPEG, LegacyType.PTM_RGB): "PTM_FORMAT_JPEG_RGB",
}

_PLANE_COUNT = {LegacyType.PTM_LRGB: 9, LegacyType.PTM_RGB: 18}

# PTM LRGB stores x^2, y^2, xy, x, y, 1, r, g, b while relight planes are
# r, g, b, 1, x, y, x^2, xy, y^2.
_LRGB_ORDER = (6, 7, 8, 5, 3, 4, 0, 2, 1)
_RGB_ORDER = (5, 3, 4, 0, 2, 1)
_RGB_INVORDER = (5, 11, 17, 3, 9, 15, 4, 10, 16, 0, 6, 12, 2, 8, 14, 1, 7, 13)


class _Reader:
    """Sequential reader over the bytes of a file, line or block wise."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def line(self) -> Optional[str]:
        if self.pos >= len(self.data):
            return None
        end = self.data.find(b"\n", self.pos)
        end = len(self.data) if end < 0 else end + 1
        text = self.data[self.pos:end]
        self.pos = end
        return text.decode("latin-1")

    def text_line(self) -> str:
        line = self.line()
        if line is None:
            raise LRtiError("File format invalid")
        return line.rstrip("\r\n")

    def read(self, size: int) -> bytes:
        chunk = self.data[self.pos:self.pos + size]
        self.pos += len(chunk)
        return chunk

    def block(self, size: int, message: str = "File is truncated.") -> np.ndarray:
        chunk = self.read(size)
        if len(chunk) != size:
            raise LRtiError(message)
        return np.frombuffer(chunk, dtype=np.uint8)

    def numbers(self, conv: Callable[[str], float], expected: int = 0) -> list:
        values = []
        for token in self.text_line().split():
            try:
                values.append(conv(token))
            except ValueError:
                break
        if (expected and len(values) != expected) or not values:
            raise LRtiError("File format invalid")
        return values

    def integer(self) -> int:
        return self.numbers(int)[0]


def _join(values) -> str:
    return " ".join(f"{v:g}" for v in values)


@dataclass(eq=False)
class LRti:
    """A PTM or HSH image held as planes of bytes, one per coefficient.

    The image is stored flipped vertically in the coefficient planes.
    """

    type: LegacyType = LegacyType.UNKNOWN
    width: int = 0
    height: int = 0
    data: list = field(default_factory=list)
    scale: list = field(default_factory=list)
    bias: list = field(default_factory=list)
    chromasubsampled: bool = False

    # Loading

    def load(self, filename) -> None:
        """Load a .ptm or HSH .rti file."""
        try:
            raw = Path(filename).read_bytes()
        except OSError as exc:
            raise LRtiError("Could not open file") from exc
        version = _Reader(raw).line() or ""
        if version.startswith("PTM"):
            self._load_ptm(_Reader(raw))
        elif version.startswith("#HSH1.2"):
            self._load_hsh(_Reader(raw))
        else:
            raise LRtiError("Not a PTM or HSH file.")

    def _load_ptm(self, reader: _Reader) -> None:
        version = reader.text_line()
        fmt = reader.text_line()
        try:
            ptype, compressed, nplanes = _PTM_FORMATS[fmt]
        except KeyError:
            self.type = LegacyType.UNKNOWN
            raise LRtiError(f"Unsupported format: {fmt}") from None
        self.type = ptype

        width = reader.integer()
        height = reader.integer()
        scale = reader.numbers(float, 6)
        bias = reader.numbers(float, 6)
        if width <= 0 or height <= 0:
            raise LRtiError("File format invalid")
        self.width, self.height = width, height
        self.scale = scale
        self.bias = [b / 255.0 for b in bias]
        self.data = [np.zeros(width * height, dtype=np.uint8) for _ in range(nplanes)]

        if compressed:
            self._decode_jpeg(reader)
        else:
            self._decode_raw(version, reader)

    def _decode_raw(self, version: str, reader: _Reader) -> None:
        n = self.width * self.height
        if self.type == LegacyType.PTM_LRGB:
            # Before 1.2 stored as interleaved abcdefRGB, then abcdef and RGB apart.
            ptm12 = version == "PTM_1.2"
            mux = 6 if ptm12 else 9
            block = reader.block(n * mux).reshape(n, mux)
            for k in range(mux):
                self.data[k] = block[:, k].copy()
            if ptm12:
                block = reader.block(n * 3).reshape(n, 3)
                for k in range(3):
                    self.data[6 + k] = block[:, k].copy()
        else:
            for k in range(3):
                block = reader.block(n * 6).reshape(n, 6)
                for j in range(6):
                    self.data[j * 3 + k] = block[:, j].copy()

    def _decode_jpeg(self, reader: _Reader) -> None:
        ncoeffs = 9 if self.type == LegacyType.PTM_LRGB else 18
        reader.integer()  # quality
        transform, motionx, motiony, order, reference, sizes, overflows = [
            reader.numbers(int, ncoeffs) for _ in range(7)
        ]
        if any(transform) or any(motionx) or any(motiony):
            raise LRtiError("Transform and motion array unsupported.")
        if sorted(order) != list(range(ncoeffs)):
            raise LRtiError("File format invalid")
        sequence = [0] * ncoeffs
        for i, o in enumerate(order):
            sequence[o] = i

        steps = [s + o for s, o in zip(sizes, overflows)]
        pos = list(accumulate(steps, initial=reader.pos))
        if len(reader.data) < pos[ncoeffs]:
            raise LRtiError("File is truncated.")

        n = self.width * self.height
        for s in sequence:
            start = pos[s]
            self._decode_plane(reader.data[start:start + sizes[s]], s)
            r = reference[s]
            if r != -1:
                mixed = self.data[s].astype(np.int16) - 128 + self.data[r]
                self.data[s] = (mixed & 0xFF).astype(np.uint8)
            if overflows[s] > 0:
                overs = reader.data[start + sizes[s]:start + sizes[s] + overflows[s]]
                if len(overs) % 5:
                    raise LRtiError("Failed reading jpeg")
                for i in range(0, len(overs), 5):
                    p = int.from_bytes(overs[i:i + 4], "big")
                    if p >= n:
                        raise LRtiError("Failed reading jpeg")
                    self.data[s][p] = overs[i + 4]

    def _decode_plane(self, buffer: bytes, plane: int) -> None:
        decoder = JpegDecoder(ColorSpace.GRAYSCALE)
        try:
            pixels, w, h = decoder.decode_bytes(buffer)
        except JpegError as exc:
            raise LRtiError("Failed decoding jpeg or different size.") from exc
        if w != self.width or h != self.height:
            raise LRtiError("Failed decoding jpeg or different size.")
        self.chromasubsampled = decoder.chroma_subsampled()
        self.data[plane] = np.frombuffer(pixels, dtype=np.uint8).copy()

    def _load_hsh(self, reader: _Reader) -> None:
        while True:
            mark = reader.pos
            line = reader.line()
            if line is None:
                raise LRtiError("File format invalid")
            if not line.startswith("#"):
                reader.pos = mark
                break

        rti_type = reader.integer()
        width, height, ncomponents = reader.numbers(int, 3)
        if ncomponents != 3:
            raise LRtiError("Unsupported components != 3")
        terms = reader.numbers(int, 3)[0]
        if rti_type != 3:
            raise LRtiError("Unsupported .rti if not HSH (for the moment)")
        if width <= 0 or height <= 0 or terms <= 0:
            raise LRtiError("File format invalid")
        self.type = LegacyType.HSH
        self.width, self.height = width, height

        floats = f"<{terms}f"
        size = struct.calcsize(floats)
        scale_bytes = reader.read(size)
        if len(scale_bytes) != size:
            raise LRtiError("Failed reading scale.")
        bias_bytes = reader.read(size)
        if len(bias_bytes) != size:
            raise LRtiError("Failed reading bias.")
        scale = np.array(struct.unpack(floats, scale_bytes), dtype=np.float32)
        bias = np.array(struct.unpack(floats, bias_bytes), dtype=np.float32)
        # The file computes c*scale + bias; here planes are (c - bias)*scale.
        with np.errstate(divide="ignore", invalid="ignore"):
            bias = -bias / scale
        self.scale = [float(s) for s in scale]
        self.bias = [float(b) for b in bias]

        block = reader.block(width * height * terms * 3, "File format invalid")
        block = block.reshape(height, width, 3, terms)[::-1]
        self.data = [np.zeros(0, dtype=np.uint8)] * (terms * 3)
        for k in range(3):
            for j in range(terms):
                self.data[j * 3 + k] = block[:, :, k, j].ravel().copy()

    # Clipping

    def _check_window(self, left: int, bottom: int, right: int, top: int) -> None:
        if not (0 <= left < right <= self.width and 0 <= bottom < top <= self.height):
            raise ValueError(
                f"Invalid clip window: left {left} bottom {bottom} right {right} top {top}"
            )

    def _window(self, plane: np.ndarray, left: int, bottom: int, right: int, top: int) -> np.ndarray:
        grid = np.asarray(plane, dtype=np.uint8).reshape(self.height, self.width)
        return grid[bottom:top, left:right].ravel().copy()

    def clip(self, left: int, bottom: int, right: int, top: int) -> None:
        """Keep only the window; right and top are excluded."""
        self._check_window(left, bottom, right, top)
        self.data = [self._window(p, left, bottom, right, top) for p in self.data]
        self.width = right - left
        self.height = top - bottom

    def clipped(self, left: int, bottom: int, right: int, top: int) -> LRti:
        """Return a copy holding only the window."""
        self._check_window(left, bottom, right, top)
        return LRti(
            type=self.type,
            width=right - left,
            height=top - bottom,
            data=[self._window(p, left, bottom, right, top) for p in self.data],
            scale=list(self.scale),
            bias=list(self.bias),
            chromasubsampled=self.chromasubsampled,
        )

    # Writing

    def encode(self, format: PTMFormat = PTMFormat.RAW, quality: int = 90) -> bytes:
        """Return the image as a PTM 1.2 file."""
        name = _FORMAT_NAMES.get((PTMFormat(format), self.type))
        if name is None:
            raise LRtiError("Unsupported or incompatible save format")
        nplanes = _PLANE_COUNT[self.type]
        if len(self.data) < nplanes:
            raise LRtiError(f"Expected {nplanes} planes, got {len(self.data)}")
        planes = [np.asarray(p, dtype=np.uint8) for p in self.data[:nplanes]]

        lines = [
            "PTM_1.2",
            name,
            str(self.width),
            str(self.height),
            _join(self.scale),
            _join(np.floor(np.asarray(self.bias, dtype=float) * 255.0 + 0.5)),
        ]

        if format == PTMFormat.JPEG:
            encoder = JpegEncoder(ColorSpace.GRAYSCALE, quality=quality)
            try:
                jpegs = [encoder.encode(p.tobytes(), self.width, self.height) for p in planes]
            except JpegError as exc:
                raise LRtiError("Failed encoding jpeg") from exc
            zeros = " ".join(["0"] * nplanes)
            lines += [
                str(quality),
                zeros,
                zeros,
                zeros,
                " ".join(str(i) for i in range(nplanes)),
                " ".join(["-1"] * nplanes),
                " ".join(str(len(j)) for j in jpegs),
                zeros,
            ]
            body = b"".join(jpegs)
        elif self.type == LegacyType.PTM_LRGB:
            body = np.stack(planes[:6], axis=1).tobytes() + np.stack(planes[6:9], axis=1).tobytes()
        else:
            # One block per colour, the six coefficients interleaved per pixel.
            body = b"".join(
                np.stack([planes[j * 3 + k] for j in range(6)], axis=1).tobytes()
                for k in range(3)
            )

        header = "".join(line + "\n" for line in lines).encode("latin-1")
        return header + body

    def save(self, format: PTMFormat, filename, quality: int = 90) -> None:
        data = self.encode(format, quality)
        try:
            Path(filename).write_bytes(data)
        except OSError as exc:
            raise LRtiError(f"Could not open file: {filename}") from exc

    def encode_jpeg_to_file(self, startplane: int, quality: int, filename) -> int:
        """Write three relight planes as one RGB JPEG, rows flipped; return its size."""
        if self.type == LegacyType.PTM_LRGB:
            channels = [self.data[_LRGB_ORDER[startplane + c]] for c in range(3)]
        else:
            order = _RGB_ORDER if self.type == LegacyType.PTM_RGB else tuple(range(9))
            base = order[startplane // 3] * 3
            channels = [self.data[base + c] for c in range(3)]
        image = np.stack([np.asarray(c, dtype=np.uint8) for c in channels], axis=1)
        image = image.reshape(self.height, self.width, 3)[::-1]
        encoder = JpegEncoder(ColorSpace.RGB, quality=quality)
        try:
            return encoder.encode_to_file(image.tobytes(), self.width, self.height, filename)
        except JpegError as exc:
            raise LRtiError(f"Could not write: {filename}") from exc

    def decode_jpeg_from_file(self, buffer: bytes, plane0: int, plane1: int, plane2: int) -> None:
        """Load an RGB JPEG of relight planes into three coefficient planes."""
        if self.type == LegacyType.PTM_LRGB:
            invorder = _LRGB_ORDER
        elif self.type == LegacyType.PTM_RGB:
            invorder = _RGB_INVORDER
        else:
            invorder = tuple(range(9))

        decoder = JpegDecoder(ColorSpace.RGB)
        try:
            pixels, w, h = decoder.decode_bytes(bytes(buffer))
        except JpegError as exc:
            raise LRtiError("Failed decoding jpeg or different size.") from exc
        if w != self.width or h != self.height:
            raise LRtiError("Failed decoding jpeg or different size.")
        targets = [invorder[p] for p in (plane0, plane1, plane2)]
        self.chromasubsampled = decoder.chroma_subsampled()

        missing = max(targets) + 1 - len(self.data)
        if missing > 0:
            self.data.extend(np.zeros(w * h, dtype=np.uint8) for _ in range(missing))
        image = np.frombuffer(pixels, dtype=np.uint8).reshape(h, w, 3)[::-1]
        for c, target in enumerate(targets):
            self.data[target] = image[:, :, c].ravel().copy()