import json

from relight.white import Rect, White


def test_default_to_json():
    assert White().to_json() == {
        "rect": {"left": 0.0, "top": 0.0, "width": 0.0, "height": 0.0},
        "red": 1.0,
        "green": 1.0,
        "blue": 1.0,
    }


def test_roundtrip_through_json_text():
    w = White(Rect(10, 20, 30, 40), red=0.9, green=1.1, blue=1.25)
    back = White.from_json(json.loads(json.dumps(w.to_json())))
    assert back == w


def test_missing_fields_read_as_zero():
    w = White.from_json({})
    assert w.rect == Rect(0, 0, 0, 0)
    assert (w.red, w.green, w.blue) == (0.0, 0.0, 0.0)


def test_non_numeric_values_read_as_zero():
    w = White.from_json({"rect": {"left": "5", "top": 3}, "red": "x", "green": 0.5})
    assert w.rect.left == 0
    assert w.rect.top == 3
    assert w.red == 0.0
    assert w.green == 0.5