"""
Selfie verification pipeline.

Runs the checks in a fixed order and stops at the first failure:

1. Read metadata (a reader failure counts as empty metadata)
2. GPS location present
3. Capture timestamp present
4. Photo recent enough
5. Distance to the claimed location (advisory unless enforced)
6. At least one face detected
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

import numpy as np

from .config import Settings
from .errors import FaceDetectionError, MetadataReadError
from .faces import FaceDetector, load_image_from_bytes
from .geo import distance_meters
from .metadata import MetadataReader, PhotoMetadata, normalize

logger = logging.getLogger(__name__)


class VerificationOutcome(str, Enum):
    ACCEPTED = "Accepted"
    REJECTED_MISSING_LOCATION = "RejectedMissingLocation"
    REJECTED_MISSING_TIMESTAMP = "RejectedMissingTimestamp"
    REJECTED_STALE = "RejectedStale"
    REJECTED_GEO_MISMATCH = "RejectedGeoMismatch"
    REJECTED_NO_FACE = "RejectedNoFace"
    REJECTED_DETECTOR_FAILURE = "RejectedDetectorFailure"


@dataclass(frozen=True)
class ClaimedLocation:
    """Coordinates reported by the client at upload time."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class VerificationVerdict:
    outcome: VerificationOutcome
    metadata: PhotoMetadata
    geo_matched: bool = False
    distance_meters: Optional[float] = None
    photo_age_minutes: Optional[float] = None
    face_count: Optional[int] = None
    error: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.outcome is VerificationOutcome.ACCEPTED

    @property
    def captured_at(self) -> Optional[datetime]:
        return self.metadata.captured_at


class VerificationPipeline:
    """
    Decides whether an uploaded selfie is fresh, geotagged and shows a face.

    Holds only read-only configuration and collaborators, so one instance
    can serve concurrent requests.

    Args:
        settings: Thresholds and policy
        reader: Extracts the raw metadata mapping from image bytes
        detector: Finds faces in a decoded RGB image
        image_decoder: Turns image bytes into the array given to the detector
    """

    def __init__(
        self,
        settings: Settings,
        reader: MetadataReader,
        detector: FaceDetector,
        image_decoder: Callable[[bytes], np.ndarray] = load_image_from_bytes,
    ):
        self.max_photo_age_minutes = settings.max_photo_age_minutes
        self.distance_threshold_meters = settings.distance_threshold_meters
        self.enforce_geo_match = settings.enforce_geo_match
        self.exif_timezone = ZoneInfo(settings.exif_timezone) if settings.exif_timezone else None
        self.reader = reader
        self.detector = detector
        self.image_decoder = image_decoder

    def read_metadata(self, image_bytes: bytes) -> PhotoMetadata:
        raw: Dict[str, Any]
        try:
            raw = self.reader.read(image_bytes)
        except MetadataReadError as e:
            # Indistinguishable for the client from a camera that never tagged GPS
            logger.warning(f"Metadata read failed, treating as empty: {e}")
            raw = {}
        return normalize(raw, self.exif_timezone)

    def verify(
        self,
        image_bytes: bytes,
        claimed: ClaimedLocation,
        now: Optional[datetime] = None,
    ) -> VerificationVerdict:
        """
        Run every check against one uploaded photo.

        Args:
            image_bytes: The uploaded image
            claimed: Location the client says the photo was taken at
            now: Verification time (defaults to the current UTC time)

        Returns:
            The verdict; rejections are returned, never raised
        """
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.astimezone()

        metadata = self.read_metadata(image_bytes)

        if not metadata.has_location:
            logger.warning("Rejected: no GPS location in photo metadata")
            return VerificationVerdict(VerificationOutcome.REJECTED_MISSING_LOCATION, metadata)

        if metadata.captured_at is None:
            logger.warning("Rejected: no parseable capture timestamp in photo metadata")
            return VerificationVerdict(VerificationOutcome.REJECTED_MISSING_TIMESTAMP, metadata)

        age_minutes = abs((now - metadata.captured_at).total_seconds()) / 60
        if age_minutes > self.max_photo_age_minutes:
            logger.warning(
                f"Rejected: photo taken {age_minutes:.1f} min from now "
                f"(limit {self.max_photo_age_minutes} min)"
            )
            return VerificationVerdict(
                VerificationOutcome.REJECTED_STALE,
                metadata,
                photo_age_minutes=age_minutes,
            )

        distance = distance_meters(
            claimed.latitude, claimed.longitude, metadata.latitude, metadata.longitude
        )
        geo_matched = distance <= self.distance_threshold_meters
        distance = round(distance, 2)
        logger.info(
            f"Distance to claimed location: {distance}m "
            f"({'within' if geo_matched else 'outside'} {self.distance_threshold_meters}m)"
        )

        if self.enforce_geo_match and not geo_matched:
            logger.warning(f"Rejected: photo location {distance}m away from claimed location")
            return VerificationVerdict(
                VerificationOutcome.REJECTED_GEO_MISMATCH,
                metadata,
                geo_matched=False,
                distance_meters=distance,
                photo_age_minutes=age_minutes,
            )

        try:
            image = self.image_decoder(image_bytes)
            faces = self.detector.detect(image)
        except (ValueError, FaceDetectionError) as e:
            logger.error(f"Face detection error: {e}", exc_info=True)
            return VerificationVerdict(
                VerificationOutcome.REJECTED_DETECTOR_FAILURE,
                metadata,
                geo_matched=geo_matched,
                distance_meters=distance,
                photo_age_minutes=age_minutes,
                error=str(e),
            )

        if not faces:
            logger.warning("Rejected: no face detected")
            return VerificationVerdict(
                VerificationOutcome.REJECTED_NO_FACE,
                metadata,
                geo_matched=geo_matched,
                distance_meters=distance,
                photo_age_minutes=age_minutes,
                face_count=0,
            )

        logger.info(
            f"✓ Accepted - faces: {len(faces)}, distance: {distance}m, "
            f"geo match: {geo_matched}, age: {age_minutes:.2f} min"
        )
        return VerificationVerdict(
            VerificationOutcome.ACCEPTED,
            metadata,
            geo_matched=geo_matched,
            distance_meters=distance,
            photo_age_minutes=age_minutes,
            face_count=len(faces),
        )
