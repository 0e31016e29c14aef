"""MongoDB-backed storage for accepted verification records."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Protocol

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from .errors import StorageError
from .verdict import VerificationRecord

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "geotag"


class RecordStore(Protocol):
    def create(self, record: VerificationRecord) -> Dict[str, Any]:
        """Persist a record and return it with its id and timestamps."""
        ...

    def close(self) -> None:
        ...


class MongoRecordStore:
    """
    Stores verification records in a MongoDB collection.

    The client is opened when the store is created and must be closed once
    with `close()` when the application shuts down.
    """

    def __init__(self, uri: str, collection: str = "photos"):
        self.client = MongoClient(uri)
        self.collection = self.client.get_default_database(DEFAULT_DATABASE)[collection]
        logger.info(f"Record store ready: {self.collection.full_name}")

    def create(self, record: VerificationRecord) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        document = record.to_document()
        document["createdAt"] = now
        document["updatedAt"] = now
        try:
            result = self.collection.insert_one(document)
        except PyMongoError as e:
            raise StorageError(f"Failed to save verification record: {e}") from e

        document["_id"] = str(result.inserted_id)
        logger.info(f"Saved verification record {document['_id']}")
        return document

    def close(self) -> None:
        self.client.close()
        logger.info("Record store connection closed")
