"""
Face presence detection for uploaded selfies.

Only checks that at least one face is visible; no identity matching.
"""

import io
import logging
from typing import List, Protocol, Tuple

import cv2
import numpy as np
from PIL import Image

from .errors import FaceDetectionError

logger = logging.getLogger(__name__)

TARGET_IMAGE_SIZE = 800  # Maximum dimension before detection
ORIENTATION_TAG = 274

# (top, right, bottom, left) as returned by face_recognition
FaceLocation = Tuple[int, int, int, int]


class FaceDetector(Protocol):
    def detect(self, image: np.ndarray) -> List[FaceLocation]:
        """Return the faces found in an RGB image or raise FaceDetectionError."""
        ...


def load_image_from_bytes(image_bytes: bytes) -> np.ndarray:
    """
    Load image from bytes into numpy array with auto-rotation based on EXIF.

    Args:
        image_bytes: Raw image bytes

    Returns:
        numpy array in RGB format

    Raises:
        ValueError: If image cannot be loaded
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))

        # Phone cameras store portrait shots rotated and rely on this tag
        orientation = image.getexif().get(ORIENTATION_TAG)
        if orientation == 3:
            image = image.rotate(180, expand=True)
            logger.info("Rotated image 180° based on EXIF")
        elif orientation == 6:
            image = image.rotate(270, expand=True)
            logger.info("Rotated image 270° based on EXIF")
        elif orientation == 8:
            image = image.rotate(90, expand=True)
            logger.info("Rotated image 90° based on EXIF")

        if image.mode != 'RGB':
            logger.info(f"Converting image from {image.mode} to RGB")
            image = image.convert('RGB')

        return np.array(image)
    except Exception as e:
        logger.error(f"Failed to load image: {str(e)}")
        raise ValueError(f"Invalid image format: {str(e)}")


def preprocess_image(image_array: np.ndarray, target_size: int = TARGET_IMAGE_SIZE) -> np.ndarray:
    """
    Shrink large images and even out lighting before detection.

    Lighting is normalized with CLAHE on the L channel of LAB space; if that
    fails the resized image is returned unchanged.
    """
    height, width = image_array.shape[:2]
    if max(height, width) > target_size:
        scale = target_size / max(height, width)
        new_width = int(width * scale)
        new_height = int(height * scale)
        image_array = cv2.resize(image_array, (new_width, new_height), interpolation=cv2.INTER_AREA)
        logger.info(f"Resized image from {width}x{height} to {new_width}x{new_height}")

    try:
        lab = cv2.cvtColor(image_array, cv2.COLOR_RGB2LAB)
        l, a, b = cv2.split(lab)
        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        l = clahe.apply(l)
        image_array = cv2.cvtColor(cv2.merge((l, a, b)), cv2.COLOR_LAB2RGB)
        logger.debug("Applied CLAHE lighting normalization")
    except cv2.error as e:
        logger.warning(f"CLAHE failed, using original image: {e}")

    return image_array


class FaceRecognitionDetector:
    """Face detector backed by the face_recognition (dlib) HOG or CNN model."""

    def __init__(self, model: str = "hog"):
        self.model = model

    def detect(self, image: np.ndarray) -> List[FaceLocation]:
        try:
            # dlib loads its models on import; defer until the first detection
            import face_recognition

            processed = preprocess_image(image)

            face_locations = face_recognition.face_locations(
                processed, model=self.model, number_of_times_to_upsample=1
            )
            if not face_locations:
                # Small or distant faces often need another upsampling pass
                logger.info("No face found, retrying with upsampling...")
                face_locations = face_recognition.face_locations(
                    processed, model=self.model, number_of_times_to_upsample=2
                )
        except Exception as e:
            raise FaceDetectionError(f"Face detection failed: {e}") from e

        logger.info(f"Detected {len(face_locations)} face(s) using {self.model.upper()}")
        return list(face_locations)
