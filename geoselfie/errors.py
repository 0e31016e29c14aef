"""Error types raised by the external collaborators.

Each collaborator gets its own exception so the pipeline can treat a
metadata read failure as benign while a face detector failure is fatal.
"""


class CollaboratorError(Exception):
    """Base class for failures in metadata reading, face detection or storage."""


class MetadataReadError(CollaboratorError):
    """The image metadata could not be read."""


class FaceDetectionError(CollaboratorError):
    """The image could not be decoded or the face detector failed."""


class StorageError(CollaboratorError):
    """The verification record could not be persisted."""
