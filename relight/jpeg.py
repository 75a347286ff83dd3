"""JPEG decoding and encoding, whole images or row by row."""

from __future__ import annotations

import io
from enum import IntEnum
from pathlib import Path

from PIL import Image, UnidentifiedImageError


class ColorSpace(IntEnum):
    GRAYSCALE = 1
    RGB = 2
    YCBCR = 3
    CMYK = 4

    @property
    def mode(self) -> str:
        return _MODES[self]

    @property
    def components(self) -> int:
        return _COMPONENTS[self]


_MODES = {
    ColorSpace.GRAYSCALE: "L",
    ColorSpace.RGB: "RGB",
    ColorSpace.YCBCR: "YCbCr",
    ColorSpace.CMYK: "CMYK",
}
_COMPONENTS = {
    ColorSpace.GRAYSCALE: 1,
    ColorSpace.RGB: 3,
    ColorSpace.YCBCR: 3,
    ColorSpace.CMYK: 4,
}


class JpegError(Exception):
    """Raised when a JPEG cannot be read or written."""


def _open_image(source, name: str) -> Image.Image:
    try:
        image = Image.open(source)
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as exc:
        raise JpegError(f"Failed decoding jpeg: {name}") from exc
    if image.format != "JPEG":
        raise JpegError(f"Not a jpeg: {name}")
    return image


class JpegDecoder:
    """Decodes JPEG images to packed pixels in the requested colour space."""

    def __init__(self, color_space: ColorSpace = ColorSpace.RGB) -> None:
        self.color_space = ColorSpace(color_space)
        self.width = 0
        self.height = 0
        self._subsampled = False
        self._pixels = b""
        self._line = 0
        self._opened = False

    def _convert(self, image: Image.Image) -> bytes:
        layers = getattr(image, "layer", None) or []
        self._subsampled = len(layers) > 1 and layers[1][1] != 1
        mode = self.color_space.mode
        if image.mode != mode:
            image = image.convert(mode)
        self.width, self.height = image.size
        return image.tobytes()

    def decode_bytes(self, data: bytes) -> tuple[bytes, int, int]:
        """Return (pixels, width, height) for an in-memory JPEG."""
        pixels = self._convert(_open_image(io.BytesIO(data), "<memory>"))
        return pixels, self.width, self.height

    def decode_file(self, path) -> tuple[bytes, int, int]:
        """Return (pixels, width, height) for a JPEG file."""
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise JpegError(f"Could not open: {path}") from exc
        pixels = self._convert(_open_image(io.BytesIO(data), str(path)))
        return pixels, self.width, self.height

    def open(self, path) -> tuple[int, int]:
        """Prepare a file for reading row by row; return (width, height)."""
        self._pixels, width, height = self.decode_file(path)
        self._line = 0
        self._opened = True
        return width, height

    def row_size(self) -> int:
        return self.width * self.color_space.components

    def read_rows(self, nrows: int) -> bytes:
        """Read up to nrows rows; starts over once the image was fully read."""
        if not self._opened:
            raise JpegError("Decoder is not open")
        if self._line == self.height:
            self.restart()
        count = max(0, min(nrows, self.height - self._line))
        size = self.row_size()
        start = self._line * size
        self._line += count
        return self._pixels[start:start + count * size]

    def restart(self) -> None:
        if not self._opened:
            raise JpegError("Decoder is not open")
        self._line = 0

    def finish(self) -> None:
        self._pixels = b""
        self._line = 0
        self._opened = False

    def chroma_subsampled(self) -> bool:
        return self._subsampled

    def __enter__(self) -> JpegDecoder:
        return self

    def __exit__(self, *args) -> None:
        self.finish()


class JpegEncoder:
    """Encodes packed pixels to JPEG, whole images or row by row."""

    def __init__(
        self,
        color_space: ColorSpace = ColorSpace.RGB,
        quality: int = 90,
        optimize: bool = True,
        subsample: bool = False,
    ) -> None:
        self.color_space = ColorSpace(color_space)
        self.quality = quality
        self.optimize = optimize
        self.subsample = subsample
        self._file = None
        self._rows = bytearray()
        self._width = 0
        self._height = 0
        self._written = 0

    def _image(self, img, width: int, height: int) -> Image.Image:
        if width <= 0 or height <= 0:
            raise JpegError(f"Invalid image size: {width}x{height}")
        needed = width * height * self.color_space.components
        data = bytes(img)
        if len(data) < needed:
            raise JpegError(f"Expected {needed} bytes of pixels, got {len(data)}")
        return Image.frombytes(self.color_space.mode, (width, height), data[:needed])

    def _save(self, image: Image.Image, target) -> None:
        options = {"quality": self.quality, "optimize": self.optimize}
        if not self.subsample:
            options["subsampling"] = 0
        try:
            image.save(target, format="JPEG", **options)
        except (OSError, ValueError) as exc:
            raise JpegError("Failed encoding jpeg") from exc

    def encode(self, img, width: int, height: int) -> bytes:
        buffer = io.BytesIO()
        self._save(self._image(img, width, height), buffer)
        return buffer.getvalue()

    def encode_to_file(self, img, width: int, height: int, path) -> int:
        """Write the image to path and return the file size."""
        data = self.encode(img, width, height)
        try:
            Path(path).write_bytes(data)
        except OSError as exc:
            raise JpegError(f"Could not open: {path}") from exc
        return len(data)

    def open(self, path, width: int, height: int) -> None:
        """Start writing an image of the given size to path row by row."""
        if width <= 0 or height <= 0:
            raise JpegError(f"Invalid image size: {width}x{height}")
        try:
            self._file = open(path, "wb")
        except OSError as exc:
            raise JpegError(f"Could not open: {path}") from exc
        self._width = width
        self._height = height
        self._written = 0
        self._rows = bytearray()

    def write_rows(self, rows, n: int) -> int:
        """Append up to n rows; rows beyond the image height are ignored."""
        if self._file is None:
            raise JpegError("Encoder is not open")
        size = self._width * self.color_space.components
        count = max(0, min(n, self._height - self._written))
        data = bytes(rows)[:count * size]
        if len(data) < count * size:
            raise JpegError("Not enough pixel data for the requested rows")
        self._rows += data
        self._written += count
        return count

    def finish(self) -> int:
        """Compress the collected rows, close the file and return its size."""
        if self._file is None:
            raise JpegError("Encoder is not open")
        file, self._file = self._file, None
        with file:
            if self._written != self._height:
                raise JpegError(
                    f"Only {self._written} of {self._height} rows were written"
                )
            self._save(self._image(self._rows, self._width, self._height), file)
            size = file.tell()
        self._rows = bytearray()
        return size