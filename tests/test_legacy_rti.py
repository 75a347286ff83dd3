import struct

import numpy as np
import pytest

from relight.legacy_rti import LegacyType, LRti, LRtiError, PTMFormat


def random_planes(count, width, height, seed=0):
    rng = np.random.default_rng(seed)
    return [rng.integers(0, 256, width * height, dtype=np.uint8) for _ in range(count)]


def blocky_planes(count, width=16, height=16):
    planes = []
    for k in range(count):
        plane = np.full((height, width), 20 * k + 10, dtype=np.uint8)
        plane[: height // 2] = 200 - 15 * k
        planes.append(plane.ravel())
    return planes


def make_lrti(ptype, planes, width, height):
    return LRti(
        type=ptype,
        width=width,
        height=height,
        data=planes,
        scale=[1.5, 2.0, 0.5, 1.0, 3.0, 0.25],
        bias=[k / 255.0 for k in (0, 10, 20, 30, 40, 50)],
    )


def test_raw_lrgb_round_trip(tmp_path):
    src = make_lrti(LegacyType.PTM_LRGB, random_planes(9, 5, 4), 5, 4)
    path = tmp_path / "a.ptm"
    src.save(PTMFormat.RAW, path)
    out = LRti()
    out.load(path)
    assert out.type == LegacyType.PTM_LRGB
    assert (out.width, out.height) == (5, 4)
    assert out.scale == src.scale
    assert out.bias == pytest.approx(src.bias)
    for a, b in zip(src.data, out.data):
        assert np.array_equal(a, b)


def test_raw_rgb_round_trip(tmp_path):
    src = make_lrti(LegacyType.PTM_RGB, random_planes(18, 3, 3, seed=1), 3, 3)
    path = tmp_path / "b.ptm"
    src.save(PTMFormat.RAW, path)
    out = LRti()
    out.load(path)
    assert out.type == LegacyType.PTM_RGB
    assert len(out.data) == 18
    for a, b in zip(src.data, out.data):
        assert np.array_equal(a, b)


def test_raw_header_and_size():
    src = make_lrti(LegacyType.PTM_LRGB, random_planes(9, 16, 16), 16, 16)
    data = src.encode(PTMFormat.RAW)
    assert data.startswith(b"PTM_1.2\nPTM_FORMAT_LRGB\n16\n16\n")
    header_end = data.index(b"\n", data.index(b"\n", len(b"PTM_1.2\nPTM_FORMAT_LRGB\n16\n16\n")) + 1) + 1
    assert len(data) - header_end == 9 * 16 * 16


def test_encode_does_not_change_bias():
    src = make_lrti(LegacyType.PTM_LRGB, random_planes(9, 2, 2), 2, 2)
    before = list(src.bias)
    src.encode(PTMFormat.RAW)
    assert src.bias == before


def test_load_ptm_11_interleaved(tmp_path):
    header = b"PTM_1.1\nPTM_FORMAT_LRGB\n2\n1\n1 1 1 1 1 1\n0 0 0 0 0 0\n"
    path = tmp_path / "old.ptm"
    path.write_bytes(header + bytes(range(18)))
    out = LRti()
    out.load(path)
    for k in range(9):
        assert list(out.data[k]) == [k, 9 + k]


def test_jpeg_round_trip(tmp_path):
    src = make_lrti(LegacyType.PTM_LRGB, blocky_planes(9), 16, 16)
    path = tmp_path / "c.ptm"
    src.save(PTMFormat.JPEG, path, quality=100)
    out = LRti()
    out.load(path)
    assert out.type == LegacyType.PTM_LRGB
    assert (out.width, out.height) == (16, 16)
    for a, b in zip(src.data, out.data):
        diff = np.abs(a.astype(int) - b.astype(int))
        assert diff.max() <= 2


def test_jpeg_header_lines():
    src = make_lrti(LegacyType.PTM_LRGB, blocky_planes(9), 16, 16)
    data = src.encode(PTMFormat.JPEG, quality=75)
    lines = data.split(b"\n")
    assert lines[1] == b"PTM_FORMAT_JPEG_LRGB"
    assert lines[6] == b"75"
    assert lines[10] == b"0 1 2 3 4 5 6 7 8"
    assert lines[11] == b"-1 -1 -1 -1 -1 -1 -1 -1 -1"


def test_load_hsh(tmp_path):
    width, height, terms = 2, 2, 9
    scale = [2.0] * terms
    bias = [1.0] * terms
    pixels = bytes((i * 7) % 256 for i in range(width * height * 3 * terms))
    head = b"#HSH1.2\n#a comment\n3\n2 2 3\n9 2 3\n"
    body = struct.pack("<9f", *scale) + struct.pack("<9f", *bias) + pixels
    path = tmp_path / "h.rti"
    path.write_bytes(head + body)
    out = LRti()
    out.load(path)
    assert out.type == LegacyType.HSH
    assert len(out.data) == 27
    assert out.bias == pytest.approx([-0.5] * terms)
    block = np.frombuffer(pixels, dtype=np.uint8).reshape(height, width, 3, terms)
    for k in range(3):
        for j in range(terms):
            assert np.array_equal(out.data[j * 3 + k], block[::-1, :, k, j].ravel())


def test_hsh_requires_three_components(tmp_path):
    path = tmp_path / "h.rti"
    path.write_bytes(b"#HSH1.2\n3\n2 2 4\n9 2 3\n")
    with pytest.raises(LRtiError):
        LRti().load(path)


def test_rti_type_must_be_hsh(tmp_path):
    path = tmp_path / "h.rti"
    path.write_bytes(b"#HSH1.2\n2\n2 2 3\n9 2 3\n")
    with pytest.raises(LRtiError):
        LRti().load(path)


def test_not_ptm_or_hsh(tmp_path):
    path = tmp_path / "x.ptm"
    path.write_bytes(b"hello\n")
    with pytest.raises(LRtiError, match="Not a PTM or HSH"):
        LRti().load(path)


def test_missing_file(tmp_path):
    with pytest.raises(LRtiError):
        LRti().load(tmp_path / "missing.ptm")


def test_unsupported_ptm_format(tmp_path):
    path = tmp_path / "x.ptm"
    path.write_bytes(b"PTM_1.2\nPTM_FORMAT_LUM\n1\n1\n")
    with pytest.raises(LRtiError, match="Unsupported format"):
        LRti().load(path)


def test_truncated_raw(tmp_path):
    header = b"PTM_1.2\nPTM_FORMAT_LRGB\n4\n4\n1 1 1 1 1 1\n0 0 0 0 0 0\n"
    path = tmp_path / "t.ptm"
    path.write_bytes(header + bytes(10))
    with pytest.raises(LRtiError):
        LRti().load(path)


def test_encode_unsupported_format():
    src = make_lrti(LegacyType.PTM_LRGB, random_planes(9, 2, 2), 2, 2)
    with pytest.raises(LRtiError):
        src.encode(PTMFormat.JPEGLS)
    hsh = LRti(type=LegacyType.HSH, width=2, height=2, data=random_planes(27, 2, 2))
    with pytest.raises(LRtiError):
        hsh.encode(PTMFormat.RAW)


def test_clip():
    planes = [np.arange(16, dtype=np.uint8) for _ in range(9)]
    lrti = make_lrti(LegacyType.PTM_LRGB, planes, 4, 4)
    lrti.clip(1, 1, 3, 3)
    assert (lrti.width, lrti.height) == (2, 2)
    assert list(lrti.data[0]) == [5, 6, 9, 10]


def test_clipped_leaves_original():
    planes = random_planes(9, 4, 3)
    lrti = make_lrti(LegacyType.PTM_LRGB, planes, 4, 3)
    part = lrti.clipped(0, 1, 2, 3)
    assert (part.width, part.height) == (2, 2)
    assert (lrti.width, lrti.height) == (4, 3)
    grid = planes[4].reshape(3, 4)
    assert np.array_equal(part.data[4], grid[1:3, 0:2].ravel())
    assert part.scale == lrti.scale


def test_clip_invalid_window():
    lrti = make_lrti(LegacyType.PTM_LRGB, random_planes(9, 4, 4), 4, 4)
    with pytest.raises(ValueError):
        lrti.clip(2, 0, 2, 4)
    with pytest.raises(ValueError):
        lrti.clipped(0, 0, 5, 4)


def test_relight_planes_round_trip(tmp_path):
    src = make_lrti(LegacyType.PTM_LRGB, blocky_planes(9), 16, 16)
    path = tmp_path / "plane_0.jpg"
    size = src.encode_jpeg_to_file(0, 100, path)
    assert size == path.stat().st_size

    out = LRti(type=LegacyType.PTM_LRGB, width=16, height=16,
               data=[np.zeros(256, dtype=np.uint8) for _ in range(9)])
    out.decode_jpeg_from_file(path.read_bytes(), 0, 1, 2)
    for plane in (6, 7, 8):
        diff = np.abs(src.data[plane].astype(int) - out.data[plane].astype(int))
        assert diff.max() <= 3


def test_decode_jpeg_wrong_size(tmp_path):
    src = make_lrti(LegacyType.PTM_LRGB, blocky_planes(9), 16, 16)
    path = tmp_path / "plane.jpg"
    src.encode_jpeg_to_file(0, 90, path)
    out = LRti(type=LegacyType.PTM_LRGB, width=8, height=8)
    with pytest.raises(LRtiError):
        out.decode_jpeg_from_file(path.read_bytes(), 0, 1, 2)