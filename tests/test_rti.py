import json
import math

import numpy as np
import pytest
from PIL import Image

from relight.jpeg import ColorSpace, JpegEncoder
from relight.material import Material, Plane
from relight.rti import (
    BasisType,
    Rti,
    RtiColorSpace,
    RtiError,
    evaluate_error,
    ramp,
    ramp_range,
)
from relight.vector import Vector3


def _plane(scale=1.0001, bias=0.0):
    return Plane(range=1.0, scale=scale, bias=bias)


def _ptm_rgb(width, height, colors):
    rti = Rti(
        type=BasisType.PTM,
        colorspace=RtiColorSpace.RGB,
        width=width,
        height=height,
        nplanes=3,
    )
    rti.material = Material([_plane() for _ in range(3)])
    rti.planes = [np.full(width * height, c, dtype=np.uint8) for c in colors]
    return rti


def _pixels(data, stride=3):
    return np.frombuffer(data, dtype=np.uint8).reshape(-1, stride)


class _Images:
    def __init__(self, lights, images):
        self.lights = lights
        self.images = images

    def decode(self, i):
        return self.images[i]


def test_ptm_weights_follow_polynomial_order():
    rti = Rti(type=BasisType.PTM, colorspace=RtiColorSpace.RGB, nplanes=18)
    lx, ly = 0.5, 0.25
    w = rti.light_weights(lx, ly)
    assert len(w) == 6
    assert w[0] == 1.0
    assert w[1] == pytest.approx(lx)
    assert w[2] == pytest.approx(ly)
    assert w[3] == pytest.approx(lx * lx)
    assert w[4] == pytest.approx(lx * ly)
    assert w[5] == pytest.approx(ly * ly)


def test_ptm_lrgb_weight_count():
    rti = Rti(type=BasisType.PTM, colorspace=RtiColorSpace.LRGB, nplanes=9)
    assert len(rti.light_weights_ptm(0.1, 0.2)) == 6


def test_ptm_rgb_requires_multiple_of_three():
    rti = Rti(type=BasisType.PTM, colorspace=RtiColorSpace.RGB, nplanes=4)
    with pytest.raises(RtiError):
        rti.light_weights_ptm(0.0, 0.0)


def test_hsh_weights_at_zenith():
    rti = Rti(type=BasisType.HSH, colorspace=RtiColorSpace.RGB, nplanes=27)
    w = rti.light_weights(0.0, 0.0)
    assert len(w) == 9
    assert w[0] == pytest.approx(1.0 / math.sqrt(2.0 * math.pi))
    assert w[1] == pytest.approx(0.0, abs=1e-12)


def test_sh_weights_at_zenith():
    rti = Rti(type=BasisType.SH, colorspace=RtiColorSpace.RGB, nplanes=27)
    w = rti.light_weights(0.0, 0.0)
    assert w[0] == pytest.approx(0.5 / math.sqrt(math.pi))
    assert w[2] == pytest.approx(0.5 * math.sqrt(3.0 / math.pi), rel=1e-3)


def test_dmd_weights_are_zero():
    rti = Rti(type=BasisType.DMD, colorspace=RtiColorSpace.RGB, nplanes=9)
    assert rti.light_weights(0.3, 0.1) == [0.0, 0.0, 0.0]


def test_h_basis_raises():
    rti = Rti(type=BasisType.H, colorspace=RtiColorSpace.RGB, nplanes=9)
    with pytest.raises(RtiError):
        rti.light_weights(0.0, 0.0)


def test_rbf_weights_pick_nearest_light():
    rti = Rti(type=BasisType.RBF, colorspace=RtiColorSpace.MRGB, nplanes=1, ndimensions=2)
    rti.lights = [Vector3(0, 0, 1), Vector3(1, 0, 0)]
    rti.basis = np.arange(1, 13, dtype=float)
    w = rti.light_weights(0.0, 0.0)
    assert w == pytest.approx([1, 2, 3, 7, 8, 9])


def test_bilinear_weights_of_constant_basis_are_constant():
    rti = Rti(type=BasisType.BILINEAR, colorspace=RtiColorSpace.MRGB, nplanes=1,
              resolution=3, ndimensions=9)
    rti.basis = np.concatenate([np.full(27, 5.0), np.full(27, 2.0)])
    for lx, ly in [(0.0, 0.0), (0.4, -0.3), (-0.6, 0.5)]:
        assert rti.light_weights(lx, ly) == pytest.approx([5, 5, 5, 2, 2, 2])


def test_bilinear_short_basis_raises():
    rti = Rti(type=BasisType.BILINEAR, colorspace=RtiColorSpace.MRGB, nplanes=1,
              resolution=3, ndimensions=9)
    rti.basis = np.zeros(5)
    with pytest.raises(RtiError):
        rti.light_weights(0.0, 0.0)


def test_render_rgb_reproduces_planes():
    rti = _ptm_rgb(2, 3, (10, 20, 30))
    pixels = _pixels(rti.render(0.2, 0.1))
    assert pixels.shape == (6, 3)
    assert (pixels == [10, 20, 30]).all()


def test_render_stride_four_sets_alpha():
    rti = _ptm_rgb(2, 2, (10, 20, 30))
    pixels = _pixels(rti.render(0.0, 0.0, stride=4), stride=4)
    assert (pixels[:, 3] == 255).all()
    assert (pixels[:, :3] == [10, 20, 30]).all()


def test_render_lrgb_scales_colour_by_luminance():
    rti = Rti(type=BasisType.PTM, colorspace=RtiColorSpace.LRGB, width=2, height=2, nplanes=4)
    rti.material = Material([_plane() for _ in range(4)])
    rti.planes = [np.full(4, c, dtype=np.uint8) for c in (40, 80, 200, 255)]
    pixels = _pixels(rti.render(0.0, 0.0))
    assert (pixels == [40, 80, 200]).all()


def test_render_ycc_neutral_chroma_gives_grey():
    rti = Rti(type=BasisType.PTM, colorspace=RtiColorSpace.YCC, width=2, height=1, nplanes=3)
    rti.material = Material([_plane(1.0, 0.0), _plane(1.0, 0.5 / 255), _plane(1.0, 0.5 / 255)])
    rti.planes = [np.full(2, 100, dtype=np.uint8), np.full(2, 128, dtype=np.uint8),
                  np.full(2, 128, dtype=np.uint8)]
    pixels = _pixels(rti.render(0.0, 0.0)).astype(int)
    assert np.all(np.abs(pixels - 100) <= 1)


def test_render_mrgb_adds_plane_basis_to_mean():
    rti = Rti(type=BasisType.RBF, colorspace=RtiColorSpace.MRGB, width=2, height=1,
              nplanes=1, ndimensions=1)
    rti.lights = [Vector3(0, 0, 1)]
    rti.basis = np.array([10.0, 20.0, 30.0, 1.0, 1.0, 1.0])
    rti.material = Material([_plane()])
    rti.planes = [np.array([0, 5], dtype=np.uint8)]
    pixels = _pixels(rti.render(0.0, 0.0))
    assert pixels[0].tolist() == [10, 20, 30]
    assert (pixels[1].astype(int) - pixels[0].astype(int)).tolist() == [5, 5, 5]


def test_ramp_endpoints():
    assert ramp(0) == (0, 0, 255)
    assert ramp_range(-5.0, 0.0, 25.0) == ramp(0)
    assert ramp_range(100.0, 0.0, 25.0) == ramp(255)


def test_clip_keeps_window():
    rti = _ptm_rgb(4, 3, (0, 0, 0))
    rti.planes = [np.arange(12, dtype=np.uint8) for _ in range(3)]
    rti.clip(1, 0, 3, 2)
    assert (rti.width, rti.height) == (2, 2)
    assert rti.planes[0].tolist() == [1, 2, 5, 6]


def test_clipped_leaves_original():
    rti = _ptm_rgb(4, 3, (0, 0, 0))
    rti.planes = [np.arange(12, dtype=np.uint8) for _ in range(3)]
    part = rti.clipped(2, 1, 4, 3)
    assert (part.width, part.height) == (2, 2)
    assert part.planes[1].tolist() == [6, 7, 10, 11]
    assert rti.width == 4 and rti.planes[0].size == 12


def test_clip_invalid_window_raises():
    rti = _ptm_rgb(4, 3, (0, 0, 0))
    with pytest.raises(ValueError):
        rti.clip(2, 0, 2, 3)


def _write_info(folder, **overrides):
    info = {
        "width": 8,
        "height": 8,
        "type": "ptm",
        "colorspace": "rgb",
        "nplanes": 3,
        "materials": [{"range": [1, 1, 1], "bias": [0, 0, 0], "scale": [1.0001] * 3}],
    }
    info.update(overrides)
    (folder / "info.json").write_text(json.dumps(info))


def test_load_folder_with_planes(tmp_path):
    _write_info(tmp_path)
    image = bytes([100, 150, 200]) * 64
    JpegEncoder(ColorSpace.RGB, quality=100).encode_to_file(image, 8, 8, tmp_path / "plane_0.jpg")
    rti = Rti()
    rti.load(tmp_path / "info.json")
    assert rti.type == BasisType.PTM
    assert rti.colorspace == RtiColorSpace.RGB
    assert (rti.width, rti.height, rti.nplanes) == (8, 8, 3)
    pixels = _pixels(rti.render(0.0, 0.0)).astype(int)
    assert np.all(np.abs(pixels - [100, 150, 200]) <= 3)
    jpeg_size = (tmp_path / "plane_0.jpg").stat().st_size
    assert rti.headersize == (tmp_path / "info.json").stat().st_size
    assert rti.filesize == rti.headersize + jpeg_size
    assert rti.planesize == [jpeg_size // 3] * 3


def test_load_rbf_basis_without_planes(tmp_path):
    _write_info(
        tmp_path,
        type="rbf",
        colorspace="mrgb",
        nplanes=1,
        sigma=0.25,
        lights=[0, 0, 1],
        materials=[{"range": [2], "bias": [0], "scale": [1]}],
        basis=[10, 20, 30, 131, 127, 123],
    )
    rti = Rti()
    rti.load(tmp_path, load_planes=False)
    assert rti.ndimensions == 1
    assert rti.sigma == 0.25
    assert list(rti.lights[0]) == [0.0, 0.0, 1.0]
    assert rti.planes == []
    assert list(rti.basis[:3]) == [10.0, 20.0, 30.0]
    assert rti.basis[3] == -rti.basis[5]
    assert rti.basis[4] == 0.0


def test_load_mycc_plane_count(tmp_path):
    _write_info(tmp_path, type="rbf", colorspace="mycc", yccplanes=[2, 1, 1], lights=[],
                materials=[{"range": [1] * 4, "bias": [0] * 4, "scale": [1] * 4}])
    rti = Rti()
    rti.load(tmp_path, load_planes=False)
    assert rti.nplanes == 4
    assert len(rti.material.planes) == 4


def test_load_errors(tmp_path):
    with pytest.raises(RtiError):
        Rti().load(tmp_path)
    (tmp_path / "info.json").write_text("{ not json")
    with pytest.raises(RtiError):
        Rti().load(tmp_path)
    _write_info(tmp_path, type="unknown")
    with pytest.raises(RtiError):
        Rti().load(tmp_path, load_planes=False)
    _write_info(tmp_path, colorspace="mycc", yccplanes=[1, 2])
    with pytest.raises(RtiError):
        Rti().load(tmp_path, load_planes=False)
    _write_info(tmp_path, materials=[])
    with pytest.raises(RtiError):
        Rti().load(tmp_path, load_planes=False)


def test_load_missing_plane_raises(tmp_path):
    _write_info(tmp_path)
    with pytest.raises(RtiError):
        Rti().load(tmp_path)


def test_evaluate_error_exact_and_reference(tmp_path):
    rti = _ptm_rgb(2, 2, (10, 20, 30))
    exact = bytes([10, 20, 30]) * 4
    off = bytes([12, 22, 32]) * 4
    lights = [Vector3(0, 0, 1), Vector3(0.1, 0, 0.99)]
    images = _Images(lights, [exact, off])
    assert evaluate_error(images, rti, None, 0) == 0.0
    assert evaluate_error(images, rti, None, 1) == pytest.approx(4.0)
    assert evaluate_error(images, rti, None) == pytest.approx(2.0)


def test_evaluate_error_writes_map(tmp_path):
    rti = _ptm_rgb(2, 2, (10, 20, 30))
    images = _Images([Vector3(0, 0, 1)], [bytes([10, 20, 30]) * 4])
    out = tmp_path / "error.png"
    assert evaluate_error(images, rti, str(out)) == 0.0
    with Image.open(out) as img:
        assert img.size == (2, 2)
        assert img.convert("RGB").getpixel((1, 1)) == ramp(0)


def test_evaluate_error_without_images_raises():
    rti = _ptm_rgb(2, 2, (10, 20, 30))
    with pytest.raises(RtiError):
        evaluate_error(_Images([], []), rti)