"""
Photo metadata: reading EXIF tags from image bytes and normalizing them.

`ExifMetadataReader` turns image bytes into a loosely typed tag mapping
(exiftool-style names, GPS already converted to signed decimal degrees).
`normalize` turns that mapping into a typed `PhotoMetadata`; nothing
downstream of it handles raw tag values.
"""

import io
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from numbers import Real
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from PIL import ExifTags, Image

from .errors import MetadataReadError

logger = logging.getLogger(__name__)

LATITUDE_FIELD = "GPSLatitude"
LONGITUDE_FIELD = "GPSLongitude"
# Capture time candidates, most trustworthy first, each with its EXIF offset tag
TIMESTAMP_FIELDS = (
    ("DateTimeOriginal", "OffsetTimeOriginal"),
    ("CreateDate", "OffsetTimeDigitized"),
    ("ModifyDate", "OffsetTime"),
)

_EXIF_DATE_PREFIX = re.compile(r"^(\d{4}):(\d{2}):(\d{2})")
_UTC_OFFSET = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


@dataclass(frozen=True)
class PhotoMetadata:
    """Location and capture time extracted from a photo."""

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    captured_at: Optional[datetime] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class MetadataReader(Protocol):
    def read(self, image_bytes: bytes) -> Dict[str, Any]:
        """Return a tag name -> value mapping or raise MetadataReadError."""
        ...


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _parse_coordinates(raw: Mapping[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    lat = _to_float(raw.get(LATITUDE_FIELD))
    lng = _to_float(raw.get(LONGITUDE_FIELD))
    if lat is None or lng is None:
        return None, None
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
        return None, None
    return lat, lng


def parse_utc_offset(value: Any) -> Optional[timezone]:
    """Parse an EXIF OffsetTime* value such as "+05:30", "-0800" or "Z"."""
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if not isinstance(value, str):
        return None
    text = value.strip().rstrip("\x00")
    if text.upper() == "Z":
        return timezone.utc
    match = _UTC_OFFSET.match(text)
    if match is None:
        return None
    sign, hours, minutes = match.groups()
    if int(hours) > 23 or int(minutes) > 59:
        return None
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return timezone(-delta if sign == "-" else delta)


def parse_capture_time(
    value: Any, tz: Optional[tzinfo] = None, offset: Optional[tzinfo] = None
) -> Optional[datetime]:
    """
    Parse a capture timestamp from an ISO-8601 or EXIF formatted value.

    EXIF stores dates as "YYYY:MM:DD hh:mm:ss"; those are rewritten to
    "YYYY-MM-DDThh:mm:ss" when the direct ISO parse fails. Naive results
    take `offset` (from the matching EXIF OffsetTime* tag) when given,
    otherwise `tz`, otherwise the server's local timezone.

    Args:
        value: Raw tag value (string or datetime)
        tz: Timezone for timestamps that carry no offset
        offset: Offset recorded by the camera for this timestamp

    Returns:
        Timezone-aware datetime, or None if the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            rewritten = _EXIF_DATE_PREFIX.sub(r"\1-\2-\3", text).replace(" ", "T", 1)
            try:
                parsed = datetime.fromisoformat(rewritten)
            except ValueError:
                return None
    else:
        return None

    if parsed.tzinfo is None:
        zone = offset or tz
        return parsed.replace(tzinfo=zone) if zone is not None else parsed.astimezone()
    return parsed


def normalize(raw: Mapping[str, Any], tz: Optional[tzinfo] = None) -> PhotoMetadata:
    """
    Build a PhotoMetadata from a raw tag mapping.

    Never raises: anything missing or malformed is left as None so the
    pipeline can report the specific reason.
    """
    latitude, longitude = _parse_coordinates(raw)

    captured_at = None
    for field, offset_field in TIMESTAMP_FIELDS:
        offset = parse_utc_offset(raw.get(offset_field))
        captured_at = parse_capture_time(raw.get(field), tz, offset)
        if captured_at is not None:
            break

    return PhotoMetadata(latitude=latitude, longitude=longitude, captured_at=captured_at)


def dms_to_decimal(dms: Any, ref: Any) -> Optional[float]:
    """
    Convert an EXIF degrees/minutes/seconds value to signed decimal degrees.

    Args:
        dms: (degrees, minutes, seconds) rationals, or a single number
        ref: Hemisphere reference ('N', 'S', 'E', 'W'), str or bytes

    Returns:
        Decimal degrees, negative for the southern/western hemispheres
    """
    try:
        if isinstance(dms, (tuple, list)):
            parts = [float(part) for part in dms] + [0.0, 0.0]
            degrees = parts[0] + parts[1] / 60 + parts[2] / 3600
        elif isinstance(dms, Real):
            degrees = float(dms)
        else:
            return None
    except (TypeError, ValueError, IndexError, ZeroDivisionError):
        return None

    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    if isinstance(ref, str) and ref.strip().upper() in ("S", "W"):
        degrees = -degrees
    return degrees


class ExifMetadataReader:
    """Reads EXIF tags with Pillow and exposes them under exiftool-style names."""

    def read(self, image_bytes: bytes) -> Dict[str, Any]:
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                exif = image.getexif()
                base_tags = dict(exif)
                exif_tags = dict(exif.get_ifd(ExifTags.IFD.Exif))
                gps_tags = dict(exif.get_ifd(ExifTags.IFD.GPSInfo))
        except Exception as e:
            raise MetadataReadError(f"Unable to read image metadata: {e}") from e

        tags: Dict[str, Any] = {}
        for tag_id, value in {**base_tags, **exif_tags}.items():
            tags[ExifTags.TAGS.get(tag_id, str(tag_id))] = value

        if "DateTimeDigitized" in tags:
            tags["CreateDate"] = tags["DateTimeDigitized"]
        if "DateTime" in tags:
            tags["ModifyDate"] = tags["DateTime"]

        latitude = dms_to_decimal(
            gps_tags.get(ExifTags.GPS.GPSLatitude), gps_tags.get(ExifTags.GPS.GPSLatitudeRef)
        )
        longitude = dms_to_decimal(
            gps_tags.get(ExifTags.GPS.GPSLongitude), gps_tags.get(ExifTags.GPS.GPSLongitudeRef)
        )
        if latitude is not None:
            tags[LATITUDE_FIELD] = latitude
        if longitude is not None:
            tags[LONGITUDE_FIELD] = longitude

        logger.debug(f"Read {len(tags)} EXIF tag(s), GPS present: {latitude is not None and longitude is not None}")
        return tags
