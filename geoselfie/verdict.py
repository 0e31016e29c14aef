"""Turn pipeline verdicts into API payloads and records to persist."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .config import Settings
from .pipeline import ClaimedLocation, VerificationOutcome, VerificationVerdict

SUCCESS_MESSAGE = "Uploaded Successfully"

REJECTION_MESSAGES = {
    VerificationOutcome.REJECTED_MISSING_LOCATION: (
        "No GPS data found in image. Turn ON location for camera and retry."
    ),
    VerificationOutcome.REJECTED_MISSING_TIMESTAMP: (
        "No valid photo timestamp found in EXIF. Ensure camera saved DateTimeOriginal metadata."
    ),
    VerificationOutcome.REJECTED_NO_FACE: "No face detected. Please upload a clear selfie.",
    VerificationOutcome.REJECTED_DETECTOR_FAILURE: (
        "Face detection failed on server. Check face detection model files and environment."
    ),
}

ERROR_CODES = {
    VerificationOutcome.REJECTED_MISSING_LOCATION: "MISSING_LOCATION",
    VerificationOutcome.REJECTED_MISSING_TIMESTAMP: "MISSING_TIMESTAMP",
    VerificationOutcome.REJECTED_STALE: "PHOTO_TOO_OLD",
    VerificationOutcome.REJECTED_GEO_MISMATCH: "LOCATION_MISMATCH",
    VerificationOutcome.REJECTED_NO_FACE: "NO_FACE_DETECTED",
    VerificationOutcome.REJECTED_DETECTOR_FAILURE: "FACE_DETECTION_FAILED",
}


@dataclass(frozen=True)
class VerificationRecord:
    """Snapshot of one accepted upload, handed to the record store."""

    image_url: str
    app_latitude: float
    app_longitude: float
    exif_latitude: float
    exif_longitude: float
    matched: bool
    distance_meters: Optional[float] = None
    photo_taken_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "imageUrl": self.image_url,
            "appLatitude": self.app_latitude,
            "appLongitude": self.app_longitude,
            "exifLatitude": self.exif_latitude,
            "exifLongitude": self.exif_longitude,
            "matched": self.matched,
            "distanceMeters": self.distance_meters,
            "photoTakenAt": self.photo_taken_at,
        }


def format_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with milliseconds and a trailing Z."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _serialize(document: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: format_timestamp(value) if isinstance(value, datetime) else value
        for key, value in document.items()
    }


def build_record(
    verdict: VerificationVerdict, claimed: ClaimedLocation, image_url: str
) -> VerificationRecord:
    """
    Build the record to persist for an accepted verdict.

    Raises:
        ValueError: If the verdict is not Accepted
    """
    if not verdict.accepted:
        raise ValueError(f"Only accepted verdicts are persisted, got {verdict.outcome.value}")

    return VerificationRecord(
        image_url=image_url,
        app_latitude=claimed.latitude,
        app_longitude=claimed.longitude,
        exif_latitude=verdict.metadata.latitude,
        exif_longitude=verdict.metadata.longitude,
        matched=verdict.geo_matched,
        distance_meters=verdict.distance_meters,
        photo_taken_at=verdict.captured_at,
    )


def build_rejection(verdict: VerificationVerdict, settings: Settings) -> Tuple[int, Dict[str, Any]]:
    """
    Build the status code and error body for a rejected verdict.

    Returns:
        (status_code, payload); 500 for detector failures, 400 otherwise
    """
    outcome = verdict.outcome
    if outcome is VerificationOutcome.ACCEPTED:
        raise ValueError("Accepted verdicts are not rejections")

    payload: Dict[str, Any] = {"success": False, "error_code": ERROR_CODES[outcome]}

    if outcome is VerificationOutcome.REJECTED_STALE:
        payload["message"] = (
            f"Photo must be taken within last {settings.max_photo_age_minutes:g} minutes."
        )
        payload["photoTakenAt"] = format_timestamp(verdict.captured_at)
        payload["diffMinutes"] = verdict.photo_age_minutes
    elif outcome is VerificationOutcome.REJECTED_GEO_MISMATCH:
        payload["message"] = (
            f"Photo was taken {verdict.distance_meters}m from your location. "
            f"It must be within {settings.distance_threshold_meters:g}m."
        )
        payload["distance_meters"] = verdict.distance_meters
    else:
        payload["message"] = REJECTION_MESSAGES[outcome]

    if outcome is VerificationOutcome.REJECTED_DETECTOR_FAILURE:
        payload["error"] = verdict.error
        return 500, payload
    return 400, payload


def build_success(verdict: VerificationVerdict, stored: Dict[str, Any]) -> Dict[str, Any]:
    """Build the success body from an accepted verdict and the stored record."""
    return {
        "success": True,
        "message": SUCCESS_MESSAGE,
        "match_status": verdict.geo_matched,
        "distance_meters": verdict.distance_meters,
        "photoTakenAt": format_timestamp(verdict.captured_at),
        "data": _serialize(stored),
    }
