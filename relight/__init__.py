"""Reflectance Transformation Imaging: light files, image sets, RTI and PTM/HSH formats, rendering and error evaluation."""

__version__ = "0.1.0"