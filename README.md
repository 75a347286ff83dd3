# relight

Tools for Reflectance Transformation Imaging (RTI). The package reads light
direction files (`.lp`) and folders of JPEG photographs taken under
different lights. It loads PTM and HSH files and the folder RTI format
(`info.json` plus `plane_N.jpg` images). It renders a relit image for a
light direction and measures how well an RTI reproduces the photographs.

## Installation

```
pip install .
```

To run the tests, install the `test` extra and run pytest:

```
pip install ".[test]"
pytest
```

## Command line

`rti-quality` renders an RTI under the lights of an image set, compares the
result with the photographs and prints the PSNR:

```
rti-quality <img folder> <rti folder> [-i all|N|:N] [-p <output dir>] [-E]
```

- `<img folder>`: a folder holding the `.jpg` photographs and one `.lp`
  file. The number of images must match the number of lights in the `.lp` file.
- `<rti folder>`: a folder (or a file inside it) holding `info.json` and the
  `plane_N.jpg` images.
- `-i`: relit images to save as `<index>.png`. Use `all` for every light,
  `N` for one image, or `:N` for one image every N.
- `-p`: the directory for those images. It is created if missing. The
  default is the current directory.
- `-E`: skip the error evaluation. Without it, a false colour map of the
  per-pixel error is written as `error.png` inside the RTI folder.
- `-e`: the error measure. Only `mse` is accepted, and it is the default.
- `-h`: print the usage.

The exit status is 0 on success and 1 on error.

## Library

```python
from relight.lp import parse_lp
from relight.rti import Rti
from relight.legacy_rti import LRti, PTMFormat

lights, filenames = parse_lp("photos/sphere.lp")

rti = Rti()
rti.load("output/rti")
pixels = rti.render(0.3, 0.2)          # RGB bytes, width * height * 3

legacy = LRti()
legacy.load("object.ptm")              # PTM or HSH (.rti)
legacy.save(PTMFormat.JPEG, "copy.ptm", quality=90)
```

The modules are:

- `relight.vector`: `Vector3`, `Color3`, `Pixel` and `PixelArray`.
- `relight.lp`: `parse_lp` reads `.lp` files and raises `LpError` on
  malformed input.
- `relight.imageset`: `ImageSet` streams rows from a set of photographs. It
  supports cropping, random sampling, a per-channel maximum image and
  positional-light intensity compensation. It can be loaded from a folder
  or from a project JSON file.
- `relight.rti`: `Rti` loads the folder format. It supports the `ptm`,
  `hsh`, `sh`, `dmd`, `rbf` and `bilinear` bases and the `rgb`, `lrgb`,
  `ycc`, `mrgb` and `mycc` colour spaces. It relights, clips, and computes
  the light weights of each basis. The module also has `evaluate_error`,
  `ramp` and `ramp_range`. The `h` basis raises `RtiError` when it is used
  to render.
- `relight.legacy_rti`: `LRti` reads PTM (RGB and LRGB, raw or JPEG) and
  HSH files. It writes PTM 1.2 as raw or JPEG and can clip.
- `relight.material`: `Plane`, the quantization parameters of each
  coefficient plane.
- `relight.jpeg`: `JpegDecoder` and `JpegEncoder` for whole images or row
  by row.
- `relight.eigenpca`: `PCA`, a principal component basis by eigen
  decomposition or SVD.
- `relight.exif`: `Exif` reads the main, extended and GPS EXIF directories
  of a JPEG file.
- `relight.white`: `White` holds white-balance records and converts them
  to and from JSON.
- `relight.quality`: the `rti-quality` command, with `select_images` and
  `psnr`.

## What it does not do

The package reads, renders and evaluates RTIs, but it does not fit new RTIs
from a set of photographs. It has no graphical interface and no tool for
sphere or dome light calibration.