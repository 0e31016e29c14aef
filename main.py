"""
Geo-Tagged Selfie Verification API
A FastAPI service that checks uploaded selfies were taken recently, near the
claimed location, and show a face.
"""

import logging
import math
import re
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from geoselfie import __version__
from geoselfie.config import Settings, get_settings
from geoselfie.errors import StorageError
from geoselfie.faces import FaceDetector, FaceRecognitionDetector
from geoselfie.metadata import ExifMetadataReader, MetadataReader
from geoselfie.pipeline import ClaimedLocation, VerificationPipeline, VerificationVerdict
from geoselfie.storage import MongoRecordStore, RecordStore
from geoselfie.verdict import build_record, build_rejection, build_success

logger = logging.getLogger(__name__)

SERVICE_NAME = "Geo-Tagged Selfie Verification API"
BASE_DIR = Path(__file__).resolve().parent


# Response models
class UploadResponse(BaseModel):
    success: bool
    message: str
    match_status: bool
    distance_meters: float
    photoTakenAt: str
    data: Dict[str, Any]


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    error_code: Optional[str] = None
    error: Optional[str] = None


router = APIRouter()


def _bad_request(message: str, error_code: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"success": False, "message": message, "error_code": error_code},
    )


def parse_claimed_location(lat: Optional[str], lng: Optional[str]) -> ClaimedLocation:
    """
    Validate the coordinates sent alongside the photo.

    Raises:
        HTTPException: 400 if either value is missing, non-numeric or not finite
    """
    if not lat or not lng:
        raise _bad_request("lat and lng are required", "MISSING_COORDINATES")
    try:
        latitude = float(lat)
        longitude = float(lng)
    except ValueError:
        raise _bad_request("Invalid lat or lng", "INVALID_COORDINATES")
    # float() happily accepts "nan" and "inf"
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise _bad_request("Invalid lat or lng", "INVALID_COORDINATES")
    return ClaimedLocation(latitude=latitude, longitude=longitude)


def resolve_upload_dir(upload_dir: str) -> Path:
    """Relative upload directories live next to this file, not the working directory."""
    path = Path(upload_dir).expanduser()
    return path if path.is_absolute() else BASE_DIR / path


def upload_filename(original_name: Optional[str]) -> str:
    """Timestamped, filesystem-safe name for a stored photo."""
    name = Path(original_name or "").name or "photo.jpg"
    name = re.sub(r"[^A-Za-z0-9._-]", "_", name)
    return f"{int(time.time() * 1000)}-{name}"


def persist_upload(
    store: RecordStore,
    upload_dir: Path,
    original_name: Optional[str],
    photo_bytes: bytes,
    verdict: VerificationVerdict,
    claimed: ClaimedLocation,
) -> Dict[str, Any]:
    """
    Save the accepted photo and create its verification record.

    The photo file is removed again if the record cannot be stored.
    """
    filename = upload_filename(original_name)
    upload_dir.mkdir(parents=True, exist_ok=True)
    path = upload_dir / filename
    path.write_bytes(photo_bytes)
    logger.info(f"Saved photo to {path}")

    record = build_record(verdict, claimed, filename)
    try:
        return store.create(record)
    except StorageError:
        path.unlink(missing_ok=True)
        raise


@router.get("/", response_class=PlainTextResponse)
async def root():
    """Liveness check."""
    return f"✅ {SERVICE_NAME}"


@router.get("/health")
async def health_check(request: Request):
    """Detailed health check endpoint."""
    settings: Settings = request.app.state.settings
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": __version__,
        "max_photo_age_minutes": settings.max_photo_age_minutes,
        "distance_threshold_meters": settings.distance_threshold_meters,
        "enforce_geo_match": settings.enforce_geo_match,
    }


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def upload_photo(
    request: Request,
    photo: Optional[UploadFile] = File(None, description="Selfie taken with location enabled"),
    lat: Optional[str] = Form(None, description="Latitude reported by the device"),
    lng: Optional[str] = Form(None, description="Longitude reported by the device"),
):
    """
    Verify a geotagged selfie and store it when it passes.

    **Checks, in order:**
    1. Photo EXIF has GPS coordinates
    2. Photo EXIF has a capture timestamp
    3. Photo was taken within the allowed age window
    4. Distance between EXIF and claimed location (reported as `match_status`)
    5. At least one face is visible

    **Error Codes:**
    - MISSING_PHOTO / MISSING_COORDINATES / INVALID_COORDINATES / FILE_TOO_LARGE
    - MISSING_LOCATION: No GPS data in the photo
    - MISSING_TIMESTAMP: No usable capture time in the photo
    - PHOTO_TOO_OLD: Photo taken outside the allowed window
    - LOCATION_MISMATCH: Too far from the claimed location (only when enforced)
    - NO_FACE_DETECTED: No face in the photo
    - FACE_DETECTION_FAILED: Face detector failed on the server (500)
    """
    settings: Settings = request.app.state.settings
    pipeline: VerificationPipeline = request.app.state.pipeline
    store: RecordStore = request.app.state.store

    try:
        if photo is None:
            raise _bad_request("Photo is required", "MISSING_PHOTO")
        claimed = parse_claimed_location(lat, lng)

        photo_bytes = await photo.read()
        logger.info(f"Received photo: {len(photo_bytes)} bytes, claimed location: ({claimed.latitude}, {claimed.longitude})")
        if not photo_bytes:
            raise _bad_request("Photo is required", "MISSING_PHOTO")
        if len(photo_bytes) > settings.max_upload_bytes:
            raise _bad_request(
                f"Photo must be less than {settings.max_upload_bytes // (1024 * 1024)}MB",
                "FILE_TOO_LARGE",
            )

        verdict = await run_in_threadpool(pipeline.verify, photo_bytes, claimed)
        if not verdict.accepted:
            status_code, payload = build_rejection(verdict, settings)
            raise HTTPException(status_code=status_code, detail=payload)

        stored = await run_in_threadpool(
            persist_upload,
            store,
            request.app.state.upload_dir,
            photo.filename,
            photo_bytes,
            verdict,
            claimed,
        )
        return build_success(verdict, stored)

    except HTTPException:
        # Re-raise HTTP exceptions (these are handled errors)
        raise

    except Exception as e:
        logger.error(f"❌ Upload Error: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={"success": False, "message": "Internal Server Error", "error": str(e)},
        )


async def http_exception_handler(request, exc):
    """Custom exception handler for consistent error responses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.detail if isinstance(exc.detail, dict) else {
            "success": False,
            "message": str(exc.detail),
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    reader: Optional[MetadataReader] = None,
    detector: Optional[FaceDetector] = None,
    store: Optional[RecordStore] = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators left as None get their production implementations; the
    MongoDB store is opened at startup and closed at shutdown.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    upload_dir = resolve_upload_dir(settings.upload_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        upload_dir.mkdir(parents=True, exist_ok=True)
        owns_store = app.state.store is None
        if owns_store:
            app.state.store = MongoRecordStore(settings.mongo_uri, settings.mongo_collection)
        logger.info(
            f"✅ {SERVICE_NAME} started (max age {settings.max_photo_age_minutes} min, "
            f"distance threshold {settings.distance_threshold_meters}m)"
        )
        try:
            yield
        finally:
            if owns_store:
                app.state.store.close()
                app.state.store = None

    app = FastAPI(title=SERVICE_NAME, version=__version__, lifespan=lifespan)

    # Configure CORS for the mobile client
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.upload_dir = upload_dir
    app.state.store = store
    app.state.pipeline = VerificationPipeline(
        settings,
        reader=reader or ExifMetadataReader(),
        detector=detector or FaceRecognitionDetector(settings.face_detection_model),
    )

    app.include_router(router)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.mount("/uploads", StaticFiles(directory=upload_dir, check_dir=False), name="uploads")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
