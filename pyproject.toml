[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "relight"
version = "0.1.0"
description = "Reflectance Transformation Imaging tools: light files, image sets, RTI and PTM/HSH loading, rendering and quality evaluation"
requires-python = ">=3.10"
keywords = ["rti", "ptm", "hsh", "reflectance", "relighting", "imaging", "exif"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
rti-quality = "relight.quality:main"

[tool.hatch.build.targets.wheel]
packages = ["relight"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
