"""
Prediction records and the stores that persist them.
"""

import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import firestore

from .decision import SUGGESTIONS, suggestion_for
from .errors import StoreError
from .logger import get_logger

logger = get_logger(__name__)


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """UTC ISO-8601 with milliseconds and a Z suffix, e.g. 2024-05-01T08:30:12.345Z."""
    now = now or datetime.now(timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.strftime('%Y-%m-%dT%H:%M:%S.') + f"{now.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class PredictionRecord:
    """One persisted prediction outcome."""
    id: str
    result: str
    suggestion: str
    createdAt: str

    def __post_init__(self):
        if self.result not in SUGGESTIONS:
            raise ValueError(f"Unknown result: {self.result!r}")
        if self.suggestion != SUGGESTIONS[self.result]:
            raise ValueError(
                f"Suggestion {self.suggestion!r} does not match result {self.result!r}"
            )

    @classmethod
    def create(cls, result: str) -> 'PredictionRecord':
        """Build a new record with a fresh id and the current time."""
        return cls(
            id=str(uuid.uuid4()),
            result=result,
            suggestion=suggestion_for(result),
            createdAt=utc_timestamp(),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            'id': self.id,
            'result': self.result,
            'suggestion': self.suggestion,
            'createdAt': self.createdAt,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], record_id: Optional[str] = None) -> 'PredictionRecord':
        """
        Rebuild a record from a stored document.

        Documents written as {"history": {...}} are unwrapped first.
        """
        if isinstance(data.get('history'), dict):
            data = data['history']
        return cls(
            id=data.get('id') or record_id,
            result=data['result'],
            suggestion=data['suggestion'],
            createdAt=data['createdAt'],
        )


class RecordStore:
    """Base interface: write one record, read them all back."""

    def put(self, record: PredictionRecord) -> None:
        raise NotImplementedError

    def list_all(self) -> List[PredictionRecord]:
        raise NotImplementedError


class InMemoryRecordStore(RecordStore):
    """Process-local store, insertion ordered. For development and tests."""

    def __init__(self):
        self._records: Dict[str, PredictionRecord] = {}
        self._lock = threading.Lock()

    def put(self, record: PredictionRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def list_all(self) -> List[PredictionRecord]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)


class FirestoreRecordStore(RecordStore):
    """
    Google Cloud Firestore collection, one document per record keyed by id.

    The client is created on first use so the service can start before
    credentials are checked.
    """

    def __init__(self,
                 collection: str = 'prediction_histories',
                 project: Optional[str] = None,
                 client: Optional[firestore.Client] = None):
        self.collection = collection
        self.project = project
        self._client = client
        self._client_lock = threading.Lock()

    def _get_client(self) -> firestore.Client:
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    try:
                        self._client = firestore.Client(project=self.project)
                    except (GoogleAPIError, GoogleAuthError) as e:
                        raise StoreError(f"Could not create Firestore client: {e}") from e
        return self._client

    def put(self, record: PredictionRecord) -> None:
        client = self._get_client()
        try:
            client.collection(self.collection).document(record.id).set(record.to_dict())
        except (GoogleAPIError, GoogleAuthError) as e:
            raise StoreError(f"Failed to store record {record.id}: {e}") from e
        logger.debug(f"Stored record in {self.collection}", extra={'record_id': record.id})

    def list_all(self) -> List[PredictionRecord]:
        client = self._get_client()
        records = []
        try:
            for doc in client.collection(self.collection).stream():
                data = doc.to_dict() or {}
                try:
                    records.append(PredictionRecord.from_dict(data, record_id=doc.id))
                except (KeyError, ValueError) as e:
                    raise StoreError(f"Malformed record {doc.id}: {e}") from e
        except (GoogleAPIError, GoogleAuthError) as e:
            raise StoreError(f"Failed to read {self.collection}: {e}") from e
        return records


def build_record_store(settings) -> RecordStore:
    """Create the store selected by settings.RECORD_STORE."""
    if settings.RECORD_STORE == 'memory':
        logger.info("Using in-memory record store")
        return InMemoryRecordStore()
    if settings.RECORD_STORE == 'firestore':
        logger.info(f"Using Firestore collection '{settings.FIRESTORE_COLLECTION}'")
        return FirestoreRecordStore(
            collection=settings.FIRESTORE_COLLECTION,
            project=settings.FIRESTORE_PROJECT,
        )
    raise ValueError(f"Unsupported RECORD_STORE: {settings.RECORD_STORE}")
