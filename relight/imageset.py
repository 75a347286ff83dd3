"""A set of photographs of one subject, each lit from a known direction."""

from __future__ import annotations

import json
import random
from pathlib import Path
from typing import Callable, Optional

import numpy as np
from PIL import Image

from .jpeg import JpegDecoder, JpegError
from .lp import LpError, parse_lp
from .vector import Color3, Pixel, PixelArray, Vector3

ProgressCallback = Callable[[str, int], bool]


class ImageSetError(Exception):
    """Raised when an image set cannot be built or read."""


class Cancelled(Exception):
    """Raised when a progress callback asks to stop."""


def _name_key(name: str) -> tuple[str, str]:
    return (name.lower(), name)


def _entries_with_suffix(folder: Path, suffix: str) -> list[str]:
    if not folder.is_dir():
        return []
    names = [p.name for p in folder.iterdir() if p.is_file() and p.suffix.lower() == suffix]
    return sorted(names, key=_name_key)


def _percent(done: int, total: int) -> int:
    return 100 * done // max(1, total)


class ImageSet:
    """Streams rows of pixels from a folder of JPEG images sharing one size."""

    def __init__(self, path=None) -> None:
        self.width = 0
        self.height = 0
        self.image_width = 0
        self.image_height = 0
        # left, top is pixel [0, 0]
        self.left = 0
        self.top = 0
        self.right = 0
        self.bottom = 0
        self.current_line = 0
        self.images: list[str] = []
        self.lights: list[Vector3] = []
        self.lights3d: list[Vector3] = []
        self.dome_radius = 4.0
        self.vertical_offset = 0.0
        self.light3d = False
        self.callback: Optional[ProgressCallback] = None
        self.decoders: list[JpegDecoder] = []
        if path:
            self.init_from_folder(path)

    @staticmethod
    def parse_lp(path, skip_image: int = -1) -> tuple[list[Vector3], list[str]]:
        """Read an .lp file, normalize its lights and drop the skipped image."""
        lights, filenames = parse_lp(path)
        lights = [light.normalized() for light in lights]
        if 0 <= skip_image < len(lights):
            del lights[skip_image]
            del filenames[skip_image]
        return lights, filenames

    def init_from_folder(self, path, ignore_filenames: bool = True, skip_image: int = -1) -> None:
        """Load the .lp file and the JPEG images found in a folder."""
        folder = Path(path)
        lps = _entries_with_suffix(folder, ".lp")
        if not lps:
            raise ImageSetError("Could not find .lp file")
        sphere_path = folder / lps[0]

        images = _entries_with_suffix(folder, ".jpg")
        if 0 <= skip_image < len(images):
            del images[skip_image]

        try:
            lights, filenames = self.parse_lp(sphere_path, skip_image)
        except LpError as exc:
            raise ImageSetError(str(exc)) from exc

        if ignore_filenames:
            if len(images) != len(filenames):
                raise ImageSetError(
                    f"Lp number of lights ({len(filenames)}) different from "
                    f"the number of images found ({len(images)})"
                )
        else:
            images = []
            for filename in filenames:
                name = Path(filename.replace("\\", "/")).name
                if not (folder / name).is_file():
                    raise ImageSetError(f"Could not find image: {name}")
                images.append(name)

        self.images = images
        self.lights = lights
        self.init_lights()
        self.init_images(folder)

    def init_from_project(self, filename) -> None:
        """Load images, light directions and crop from a project JSON file."""
        project = Path(filename)
        try:
            text = project.read_text(encoding="utf-8")
        except OSError as exc:
            raise ImageSetError(f"Failed opening: {filename}") from exc
        try:
            obj = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ImageSetError(f"Invalid json: {filename}") from exc
        if not isinstance(obj, dict):
            obj = {}

        folder = project.parent
        sub = obj.get("folder")
        if isinstance(sub, str) and sub and (folder / sub).is_dir():
            folder = folder / sub

        for image in obj.get("images") or []:
            if not isinstance(image, dict) or image.get("skip") is True:
                continue
            name = image.get("filename")
            name = name if isinstance(name, str) else ""
            direction = image.get("direction") or {}
            light = Vector3(*(float(direction.get(k, 0.0) or 0.0) for k in ("x", "y", "z")))
            if light.is_zero():
                continue
            if not (folder / name).exists():
                raise ImageSetError(
                    f"Could not find the image: {name} in folder: {folder.resolve()}"
                )
            self.images.append(name)
            self.lights.append(light)

        self.init_images(folder)

        crop = obj.get("crop")
        if isinstance(crop, dict):
            self.crop(*(int(crop.get(k, 0) or 0) for k in ("left", "top", "width", "height")))

    def init_lights(self) -> None:
        """Derive directional or positional lights and normalize directions."""
        if self.light3d:
            if self.dome_radius:
                # Directional lights placed on a dome of the given radius.
                self.lights3d = []
                for light in self.lights:
                    position = light * self.dome_radius
                    position[2] += self.vertical_offset
                    self.lights3d.append(position)
            else:
                # Positional lights: use the mean distance as reference radius.
                self.lights = []
                total = 0.0
                for position in self.lights3d:
                    r = position.norm()
                    total += r
                    self.lights.append(position / r)
                self.dome_radius = total / len(self.lights3d)
        self.lights = [light.normalized() for light in self.lights]

    def init_images(self, path) -> None:
        """Open a decoder for every image; all images must share one size."""
        folder = Path(path)
        for name in self.images:
            filepath = folder / name
            decoder = JpegDecoder()
            try:
                w, h = decoder.open(filepath)
            except JpegError as exc:
                raise ImageSetError(f"Failed decoding image: {filepath}") from exc
            if self.width and (self.width != w or self.height != h):
                raise ImageSetError(f"Inconsistent image size for {filepath}")
            self.right = self.image_width = self.width = w
            self.bottom = self.image_height = self.height = h
            self.decoders.append(decoder)

    def max_image(self, callback: Optional[ProgressCallback] = None) -> Image.Image:
        """Return the per-channel maximum over all images."""
        w, h = self.image_width, self.image_height
        result = np.zeros((h, w, 3), dtype=np.uint8)
        self.restart()
        for y in range(h):
            if callback is not None and not callback(
                "Sampling images", _percent(y - self.top, self.height - 1)
            ):
                raise Cancelled("Sampling images")
            for decoder in self.decoders:
                row = np.frombuffer(decoder.read_rows(1), dtype=np.uint8).reshape(w, 3)
                np.maximum(result[y], row, out=result[y])
        return Image.fromarray(result, "RGB")

    def crop(self, left: int, top: int, width: int, height: int) -> None:
        """Restrict reading to a rectangle; a non positive width keeps the size."""
        self.left = left
        self.top = top
        if width > 0:
            self.width = width
            self.height = height
        self.right = self.left + self.width
        self.bottom = self.top + self.height
        if (
            self.left < 0
            or self.left >= self.right
            or self.top < 0
            or self.top >= self.bottom
            or self.right > self.image_width
            or self.bottom > self.image_height
        ):
            raise ImageSetError(
                "Invalid crop parameters: "
                f"left: {self.left} top: {self.top} right: {self.right} "
                f"bottom: {self.bottom} width: {self.width} height: {self.height}"
            )

    def set_callback(self, callback: Optional[ProgressCallback] = None) -> None:
        self.callback = callback

    def _report(self, stage: str, percent: int) -> None:
        if self.callback is not None and not self.callback(stage, percent):
            raise Cancelled(stage)

    def decode(self, img: int) -> bytes:
        """Return the whole RGB image with the given index."""
        if self.width != self.image_width or self.height != self.image_height:
            raise ImageSetError("Cannot decode whole images of a cropped image set")
        return self.decoders[img].read_rows(self.height)

    def _compensate(self, pixels) -> None:
        radius2 = self.dome_radius * self.dome_radius
        for pixel in pixels:
            for i, light in enumerate(self.lights3d):
                rel = self.relative_light(light, pixel.x, pixel.y)
                pixel[i] = pixel[i].scaled(rel.squared_norm() / radius2)

    def read_line(self) -> PixelArray:
        """Read the next row of the cropped area, one colour per light."""
        if self.current_line == 0:
            self.skip_to_top()
        pixels = PixelArray(self.width, len(self.lights))
        y = self.image_height - 1 - self.current_line
        for x, pixel in enumerate(pixels):
            pixel.x = x + self.left
            pixel.y = y

        offsets = range(self.left * 3, self.right * 3, 3)
        for i, decoder in enumerate(self.decoders):
            row = decoder.read_rows(1)
            for pixel, o in zip(pixels, offsets):
                pixel[i] = Color3(float(row[o]), float(row[o + 1]), float(row[o + 2]))

        if self.light3d:
            self._compensate(pixels)
        self.current_line += 1
        return pixels

    @staticmethod
    def _select(rng: random.Random, k: int, n: int) -> list[int]:
        chosen: set[int] = set()
        while len(chosen) < k:
            chosen.add(rng.randrange(n))
        return sorted(chosen)

    def sample(
        self,
        ndimensions: int,
        resampler: Callable[[Pixel, Pixel], None],
        samplingram: int,
    ) -> PixelArray:
        """Pick random pixels of every row and resample them into a new array.

        The number of samples is bounded by samplingram megabytes and by a
        quarter of each row; the length of the result is that number.
        """
        if ndimensions <= 0:
            raise ValueError("ndimensions must be positive")
        if self.current_line == 0:
            self.skip_to_top()

        bytes_per_sample = ndimensions * 12
        nsamples = samplingram * ((1 << 20) // bytes_per_sample)
        nsamples = min(nsamples, self.width * self.height)
        samplexrow = min(nsamples // self.height, self.width // 4)
        nsamples = samplexrow * self.height
        resample = PixelArray(nsamples, ndimensions)

        rng = random.Random(0)
        sample = PixelArray(samplexrow, len(self.lights))

        offset = 0
        for y in range(self.top, self.bottom):
            self._report("Sampling images:", _percent(y - self.top, self.height - 1))
            selection = self._select(rng, samplexrow, self.width)

            for i, decoder in enumerate(self.decoders):
                row = decoder.read_rows(1)
                for pixel, k in zip(sample, selection):
                    o = (k + self.left) * 3
                    pixel[i] = Color3(float(row[o]), float(row[o + 1]), float(row[o + 2]))

            if self.light3d:
                for pixel, k in zip(sample, selection):
                    pixel.x = k + self.left
                    pixel.y = self.image_height - 1 - y
                self._compensate(sample)

            for j, pixel in enumerate(sample):
                resampler(pixel, resample[offset + j])
            offset += samplexrow
        return resample

    def restart(self) -> None:
        for decoder in self.decoders:
            decoder.restart()
        self.current_line = 0

    def skip_to_top(self) -> None:
        """Skip the rows above the cropped area in every image."""
        count = len(self.decoders)
        for i, decoder in enumerate(self.decoders):
            if self.top:
                decoder.read_rows(self.top)
            self._report("Skipping cropped lines...", _percent(i, count - 1))
        self.current_line += self.top

    def relative_light(self, light: Vector3, x: int, y: int) -> Vector3:
        """Shift a positional light (in image units) to be relative to a pixel."""
        rel = Vector3(*light)
        rel[0] -= (x - self.width / 2.0) / self.width
        rel[1] -= (y - self.height / 2.0) / self.width
        return rel