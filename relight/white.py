"""White balance reference: a sampled rectangle and channel gains."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def _to_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not value.is_integer():
        return 0
    return int(value)


def _to_float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


@dataclass
class Rect:
    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = 0.0


@dataclass
class White:
    rect: Rect = field(default_factory=Rect)
    red: float = 1.0
    green: float = 1.0
    blue: float = 1.0

    def to_json(self) -> dict:
        return {
            "rect": {
                "left": self.rect.left,
                "top": self.rect.top,
                "width": self.rect.width,
                "height": self.rect.height,
            },
            "red": self.red,
            "green": self.green,
            "blue": self.blue,
        }

    @classmethod
    def from_json(cls, obj: dict) -> White:
        """Build from a JSON object; missing or invalid fields read as zero."""
        jrect = obj.get("rect")
        if not isinstance(jrect, dict):
            jrect = {}
        rect = Rect(*(_to_int(jrect.get(k)) for k in ("left", "top", "width", "height")))
        return cls(
            rect=rect,
            red=_to_float(obj.get("red")),
            green=_to_float(obj.get("green")),
            blue=_to_float(obj.get("blue")),
        )