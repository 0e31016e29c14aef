from datetime import datetime, timedelta, timezone

import pytest

from geoselfie.config import Settings
from geoselfie.metadata import PhotoMetadata
from geoselfie.pipeline import ClaimedLocation, VerificationOutcome, VerificationVerdict
from geoselfie.verdict import (
    build_record,
    build_rejection,
    build_success,
    format_timestamp,
)

TAKEN = datetime(2025, 11, 11, 18, 30, 2, tzinfo=timezone.utc)
METADATA = PhotoMetadata(latitude=12.9716, longitude=77.5946, captured_at=TAKEN)
SETTINGS = Settings(_env_file=None)


def _verdict(outcome, **kwargs):
    return VerificationVerdict(outcome, METADATA, **kwargs)


def test_format_timestamp_is_utc_with_milliseconds():
    assert format_timestamp(TAKEN) == "2025-11-11T18:30:02.000Z"
    ist = timezone(timedelta(hours=5, minutes=30))
    assert format_timestamp(datetime(2025, 11, 12, 0, 0, 2, tzinfo=ist)) == "2025-11-11T18:30:02.000Z"


def test_build_record_for_accepted_verdict():
    verdict = _verdict(VerificationOutcome.ACCEPTED, geo_matched=True, distance_meters=3.5, face_count=1)

    record = build_record(verdict, ClaimedLocation(12.97, 77.59), "1731349802000-selfie.jpg")

    assert record.to_document() == {
        "imageUrl": "1731349802000-selfie.jpg",
        "appLatitude": 12.97,
        "appLongitude": 77.59,
        "exifLatitude": 12.9716,
        "exifLongitude": 77.5946,
        "matched": True,
        "distanceMeters": 3.5,
        "photoTakenAt": TAKEN,
    }


@pytest.mark.parametrize(
    "outcome", [o for o in VerificationOutcome if o is not VerificationOutcome.ACCEPTED]
)
def test_build_record_refuses_rejections(outcome):
    with pytest.raises(ValueError):
        build_record(_verdict(outcome), ClaimedLocation(0.0, 0.0), "photo.jpg")


@pytest.mark.parametrize(
    "outcome, error_code",
    [
        (VerificationOutcome.REJECTED_MISSING_LOCATION, "MISSING_LOCATION"),
        (VerificationOutcome.REJECTED_MISSING_TIMESTAMP, "MISSING_TIMESTAMP"),
        (VerificationOutcome.REJECTED_NO_FACE, "NO_FACE_DETECTED"),
    ],
)
def test_client_rejections(outcome, error_code):
    status_code, payload = build_rejection(_verdict(outcome), SETTINGS)

    assert status_code == 400
    assert payload["success"] is False
    assert payload["error_code"] == error_code
    assert payload["message"]
    assert "error" not in payload


def test_stale_rejection_includes_age():
    verdict = _verdict(VerificationOutcome.REJECTED_STALE, photo_age_minutes=10.0)

    status_code, payload = build_rejection(verdict, SETTINGS)

    assert status_code == 400
    assert payload["message"] == "Photo must be taken within last 5 minutes."
    assert payload["photoTakenAt"] == "2025-11-11T18:30:02.000Z"
    assert payload["diffMinutes"] == 10.0


def test_geo_mismatch_rejection_includes_distance():
    verdict = _verdict(VerificationOutcome.REJECTED_GEO_MISMATCH, distance_meters=1234.56)

    status_code, payload = build_rejection(verdict, SETTINGS)

    assert status_code == 400
    assert payload["error_code"] == "LOCATION_MISMATCH"
    assert payload["distance_meters"] == 1234.56
    assert "1234.56m" in payload["message"]


def test_detector_failure_is_server_error():
    verdict = _verdict(VerificationOutcome.REJECTED_DETECTOR_FAILURE, error="dlib crashed")

    status_code, payload = build_rejection(verdict, SETTINGS)

    assert status_code == 500
    assert payload["error"] == "dlib crashed"
    assert payload["error_code"] == "FACE_DETECTION_FAILED"


def test_accepted_verdict_is_not_a_rejection():
    with pytest.raises(ValueError):
        build_rejection(_verdict(VerificationOutcome.ACCEPTED), SETTINGS)


def test_build_success_payload():
    verdict = _verdict(VerificationOutcome.ACCEPTED, geo_matched=False, distance_meters=1000.0, face_count=2)
    created = datetime(2025, 11, 11, 18, 31, 0, tzinfo=timezone.utc)
    stored = {"_id": "abc123", "imageUrl": "x.jpg", "photoTakenAt": TAKEN, "createdAt": created}

    payload = build_success(verdict, stored)

    assert payload == {
        "success": True,
        "message": "Uploaded Successfully",
        "match_status": False,
        "distance_meters": 1000.0,
        "photoTakenAt": "2025-11-11T18:30:02.000Z",
        "data": {
            "_id": "abc123",
            "imageUrl": "x.jpg",
            "photoTakenAt": "2025-11-11T18:30:02.000Z",
            "createdAt": "2025-11-11T18:31:00.000Z",
        },
    }
