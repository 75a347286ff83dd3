"""Measure how well a relightable image reproduces its source photographs."""

from __future__ import annotations

import getopt
import math
import os
import sys
from pathlib import Path

from PIL import Image

from .imageset import ImageSet, ImageSetError
from .rti import Rti, RtiError, evaluate_error

USAGE = """Usage: rti-quality <img folder> <rti file> [OPTIONS]
Report the reconstruction error of a relightable image.

	<img folder>: folder holding the source images and the .lp file
	<rti file>: relightable image folder (or a file inside it)

	-s: output csv columns
	-e <type>: error measure, mse: rgb mean square error (default)
	-i <request>: images to render: a number, all, or :n for one every n
	-p <dir>: directory where rendered images are saved
	-E: skip error evaluation
"""


def select_images(request: str, nlights: int) -> list[int]:
    """Return the image indices named by an -i request."""
    if not request:
        return []
    if request == "all":
        return list(range(nlights))
    if request.startswith(":"):
        try:
            period = int(request[1:])
        except ValueError as exc:
            raise ValueError(f"Invalid period: {request}") from exc
        if period <= 0:
            raise ValueError(f"Invalid period: {request}")
        return list(range(0, nlights, period))
    try:
        index = int(request)
    except ValueError as exc:
        raise ValueError(f"Invalid image number: {request}") from exc
    if not 0 <= index < nlights:
        raise ValueError(f"Image number out of range: {index}")
    return [index]


def psnr(mse: float) -> float:
    """Peak signal to noise ratio in dB of 8 bit data with the given error."""
    if mse <= 0:
        return math.inf
    return 20 * math.log10(255.0) - 10 * math.log10(mse)


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        opts, rest = getopt.gnu_getopt(args, "hse:i:Ep:")
    except getopt.GetoptError as exc:
        print(f"{exc}\n", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return 1

    request = ""
    prefix = ""
    error_measure = "mse"
    skip_error = False
    for opt, value in opts:
        if opt == "-e":
            error_measure = value
        elif opt == "-i":
            request = value
        elif opt == "-p":
            prefix = value
        elif opt == "-E":
            skip_error = True
        elif opt == "-h":
            print(USAGE)
            return 0

    if error_measure != "mse":
        print(f"Unknown error measure: {error_measure}\n", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return 1
    if len(rest) < 2:
        print("expecting img folder and rti file\n", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return 1
    imgs_path, rti_path = rest[0], rest[1]

    rti = Rti()
    try:
        rti.load(rti_path)
    except RtiError as exc:
        print(f"Failed loading rti: {rti_path} ({exc})", file=sys.stderr)
        return 1

    imageset = ImageSet()
    try:
        imageset.init_from_folder(imgs_path)
    except ImageSetError as exc:
        print(exc, file=sys.stderr)
        return 1

    try:
        images = select_images(request, len(imageset.lights))
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1

    if images:
        folder = Path(prefix) if prefix else Path.cwd()
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError:
            print(f"Failed to create directory: {prefix}", file=sys.stderr)
            return 1
        for index in images:
            light = imageset.lights[index]
            pixels = rti.render(light[0], light[1])
            image = Image.frombytes("RGB", (rti.width, rti.height), pixels)
            image.save(folder / f"{index}.png")

    if not skip_error:
        mse = evaluate_error(imageset, rti, os.path.join(rti_path, "error.png"))
        print(f"Psnr: {psnr(mse):g}")
    return 0


if __name__ == "__main__":
    sys.exit(main())