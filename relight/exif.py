"""Reader for the EXIF metadata block of JPEG files."""

from __future__ import annotations

import math
import struct
from enum import IntEnum
from pathlib import Path
from typing import Any, Optional


class IfdType(IntEnum):
    """Value types of an image file directory entry."""

    BYTE = 1
    ASCII = 2
    SHORT = 3
    LONG = 4
    RATIONAL = 5
    UNDEFINED = 7
    SIGNED_LONG = 9
    SIGNED_RATIONAL = 10


class ExifTag(IntEnum):
    """EXIF tag numbers, named as in the EXIF specification."""

    ExifIfdPointer = 0x8769
    GpsInfoIfdPointer = 0x8825

    # standard tags
    ImageWidth = 0x0100
    ImageLength = 0x0101
    BitsPerSample = 0x0102
    Compression = 0x0103
    PhotometricInterpretation = 0x0106
    Orientation = 0x0112
    SamplesPerPixel = 0x0115
    PlanarConfiguration = 0x011C
    YCbCrSubSampling = 0x0212
    XResolution = 0x011A
    YResolution = 0x011B
    ResolutionUnit = 0x0128
    StripOffsets = 0x0111
    RowsPerStrip = 0x0116
    StripByteCounts = 0x0117
    TransferFunction = 0x012D
    WhitePoint = 0x013E
    PrimaryChromaciticies = 0x013F
    YCbCrCoefficients = 0x0211
    YCbCrPositioning = 0x0213
    ReferenceBlackWhite = 0x0214
    DateTime = 0x0132
    ImageDescription = 0x010E
    Make = 0x010F
    Model = 0x0110
    Software = 0x0131
    Artist = 0x013B
    Copyright = 0x8298

    # extended tags
    ExifVersion = 0x9000
    FlashPixVersion = 0xA000
    ColorSpace = 0xA001
    ComponentsConfiguration = 0x9101
    CompressedBitsPerPixel = 0x9102
    PixelXDimension = 0xA002
    PixelYDimension = 0xA003
    MakerNote = 0x927C
    UserComment = 0x9286
    RelatedSoundFile = 0xA004
    DateTimeOriginal = 0x9003
    DateTimeDigitized = 0x9004
    SubSecTime = 0x9290
    SubSecTimeOriginal = 0x9291
    SubSecTimeDigitized = 0x9292
    ImageUniqueId = 0xA420
    ExposureTime = 0x829A
    FNumber = 0x829D
    ExposureProgram = 0x8822
    SpectralSensitivity = 0x8824
    ISOSpeedRatings = 0x8827
    Oecf = 0x8828
    ShutterSpeedValue = 0x9201
    ApertureValue = 0x9202
    BrightnessValue = 0x9203
    ExposureBiasValue = 0x9204
    MaxApertureValue = 0x9205
    SubjectDistance = 0x9206
    MeteringMode = 0x9207
    LightSource = 0x9208
    Flash = 0x9209
    FocalLength = 0x920A
    SubjectArea = 0x9214
    FlashEnergy = 0xA20B
    SpatialFrequencyResponse = 0xA20C
    FocalPlaneXResolution = 0xA20E
    FocalPlaneYResolution = 0xA20F
    FocalPlaneResolutionUnit = 0xA210
    SubjectLocation = 0xA214
    ExposureIndex = 0xA215
    SensingMethod = 0xA217
    FileSource = 0xA300
    SceneType = 0xA301
    CfaPattern = 0xA302
    CustomRendered = 0xA401
    ExposureMode = 0xA402
    WhiteBalance = 0xA403
    DigitalZoomRatio = 0xA404
    FocalLengthIn35mmFilm = 0xA405
    SceneCaptureType = 0xA406
    GainControl = 0xA407
    Contrast = 0xA408
    Saturation = 0xA409
    Sharpness = 0xA40A
    DeviceSettingDescription = 0xA40B
    SubjectDistanceRange = 0x40C

    # gps tags
    GpsVersionId = 0x0000
    GpsLatitudeRef = 0x0001
    GpsLatitude = 0x0002
    GpsLongitudeRef = 0x0003
    GpsLongitude = 0x0004
    GpsAltitudeRef = 0x0005
    GpsAltitude = 0x0006
    GpsTimeStamp = 0x0007
    GpsSatellites = 0x0008
    GpsStatus = 0x0009
    GpsMeasureMode = 0x000A
    GpsDop = 0x000B
    GpsSpeedRef = 0x000C
    GpsSpeed = 0x000D
    GpsTrackRef = 0x000E
    GpsTrack = 0x000F
    GpsImageDirectionRef = 0x0010
    GpsImageDirection = 0x0011
    GpsMapDatum = 0x0012
    GpsDestLatitudeRef = 0x0013
    GpsDestLatitude = 0x0014
    GpsDestLongitudeRef = 0x0015
    GpsDestLongitude = 0x0016
    GpsDestBearingRef = 0x0017
    GpsDestBearing = 0x0018
    GpsDestDistanceRef = 0x0019
    GpsDestDistance = 0x001A
    GpsProcessingMethod = 0x001B
    GpsAreaInformation = 0x001C
    GpsDateStamp = 0x001D
    GpsDifferential = 0x001E


# GPS tags share numbers with nothing else but have no names in the table.
_LAST_GPS_TAG = ExifTag.GpsDifferential
_TAG_NAMES = {tag.value: tag.name for tag in ExifTag if tag.value > _LAST_GPS_TAG}

_SIZES = {
    IfdType.BYTE: 1,
    IfdType.ASCII: 1,
    IfdType.UNDEFINED: 1,
    IfdType.SHORT: 2,
    IfdType.LONG: 4,
    IfdType.SIGNED_LONG: 4,
    IfdType.RATIONAL: 8,
    IfdType.SIGNED_RATIONAL: 8,
}

_CODES = {
    IfdType.SHORT: "H",
    IfdType.LONG: "I",
    IfdType.SIGNED_LONG: "i",
    IfdType.RATIONAL: "II",
    IfdType.SIGNED_RATIONAL: "ii",
}


class ExifError(Exception):
    """Raised when a file cannot be read or its EXIF block is malformed."""


class _Malformed(Exception):
    pass


def _ratio(num: int, den: int) -> float:
    if den:
        return num / den
    return math.nan if num == 0 else math.copysign(math.inf, num)


def _find_exif(data: bytes) -> Optional[int]:
    """Return the offset of the TIFF header inside the Exif APP1 segment."""
    pos = 2
    while pos + 4 <= len(data):
        if data[pos] != 0xFF:
            return None
        marker = data[pos + 1]
        if marker == 0xFF:
            pos += 1
            continue
        if marker in (0xD9, 0xDA):
            return None
        if marker == 0x01 or 0xD0 <= marker <= 0xD7:
            pos += 2
            continue
        length = int.from_bytes(data[pos + 2:pos + 4], "big")
        if marker == 0xE1 and data[pos + 4:pos + 8] == b"Exif":
            return pos + 10
        pos += 2 + length
    return None


def _read_entry(data: bytes, order: str, start: int, entry: int) -> tuple[int, Any]:
    tag, typ, count = struct.unpack_from(order + "HHI", data, entry)
    try:
        kind = IfdType(typ)
    except ValueError:
        return tag, None
    size = count * _SIZES[kind]
    if size > 4:
        vpos = start + struct.unpack_from(order + "I", data, entry + 8)[0]
    else:
        vpos = entry + 8
    if vpos + size > len(data):
        raise _Malformed()

    if kind in (IfdType.BYTE, IfdType.ASCII, IfdType.UNDEFINED):
        raw = data[vpos:vpos + count]
        if kind == IfdType.BYTE:
            return tag, bytes(raw)
        return tag, raw[:-1].decode("latin-1")

    code = _CODES[kind]
    numbers = struct.unpack_from(order + code * count, data, vpos)
    if kind in (IfdType.RATIONAL, IfdType.SIGNED_RATIONAL):
        values: list = [_ratio(a, b) for a, b in zip(numbers[0::2], numbers[1::2])]
    else:
        values = list(numbers)
    return tag, values[0] if count == 1 else values


class Exif(dict):
    """EXIF values of a JPEG file, keyed by tag number."""

    def parse(self, filename) -> None:
        """Read the main, extended and GPS directories of a JPEG file.

        A JPEG without an EXIF block leaves the mapping unchanged.
        """
        try:
            data = Path(filename).read_bytes()
        except OSError as exc:
            raise ExifError(f"Could not open file: {filename}") from exc
        if data[:2] != b"\xff\xd8":
            raise ExifError(f"Not a jpeg file: {filename}")

        start = _find_exif(data)
        if start is None:
            return
        try:
            self._parse_tiff(data, start)
        except (struct.error, _Malformed) as exc:
            raise ExifError(f"Failed parsing file: {filename}") from exc

    def _parse_tiff(self, data: bytes, start: int) -> None:
        byte_order = data[start:start + 2]
        if byte_order == b"II":
            order = "<"
        elif byte_order == b"MM":
            order = ">"
        else:
            raise _Malformed()
        ident, offset = struct.unpack_from(order + "HI", data, start + 2)
        if ident != 0x002A:
            raise _Malformed()

        self._read_directory(data, order, start, start + offset)
        for pointer in (ExifTag.ExifIfdPointer, ExifTag.GpsInfoIfdPointer):
            value = self.get(pointer.value)
            if isinstance(value, int) and value > 0:
                self._read_directory(data, order, start, start + value)

    def _read_directory(self, data: bytes, order: str, start: int, pos: int) -> None:
        (count,) = struct.unpack_from(order + "H", data, pos)
        for i in range(count):
            tag, value = _read_entry(data, order, start, pos + 2 + 12 * i)
            if value is not None:
                self[tag] = value

    def tag_name(self, tag: int) -> Optional[str]:
        """Return the name of a standard or extended tag, None if unknown."""
        return _TAG_NAMES.get(int(tag))