"""Reader for .lp light position files."""

from __future__ import annotations

from pathlib import Path

from .vector import Vector3

MAX_LIGHTS = 1000


class LpError(ValueError):
    """Raised when an .lp file cannot be read or is malformed."""


def parse_lp(path) -> tuple[list[Vector3], list[str]]:
    """Return the light directions and image filenames listed in an .lp file."""
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise LpError(f"Could not open: {path}") from exc

    lines = iter(text.splitlines())
    header = next(lines, "")
    try:
        count = int(header.strip())
    except ValueError:
        count = 0
    if count <= 0 or count > MAX_LIGHTS:
        raise LpError("Invalid format or number of lights in .lp.")

    lights: list[Vector3] = []
    filenames: list[str] = []
    for _ in range(count):
        line = next(lines, "")
        tokens = line.split()
        if len(tokens) != 4:
            raise LpError(f"Invalid line in .lp: {line}")
        try:
            light = Vector3(*(float(t) for t in tokens[1:]))
        except ValueError as exc:
            raise LpError(f"Failed reading light direction in: {line}") from exc
        if light.norm() < 0.0001:
            raise LpError(f"Light direction too close to the origin! {line}")
        lights.append(light)
        filenames.append(tokens[0])
    return lights, filenames