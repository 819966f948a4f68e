"""
Track catalog boundary: which album a track belongs to and where its
encrypted audio lives.
"""
import threading
from typing import Dict, Optional, Protocol

from ..models import EncryptedContentRecord


class ContentCatalog(Protocol):
    """Protocol for catalog lookups"""

    def get_album_for_track(self, track_id: str) -> Optional[str]:
        ...

    def get_encrypted_record(self, track_id: str) -> Optional[EncryptedContentRecord]:
        ...

    def count_encrypted_tracks(self) -> int:
        ...


class InMemoryCatalog:
    """Thread-safe catalog held in process memory."""

    def __init__(self):
        self._records: Dict[str, EncryptedContentRecord] = {}
        self._lock = threading.RLock()

    def add(self, record: EncryptedContentRecord) -> None:
        with self._lock:
            self._records[record.track_id] = record

    def get_album_for_track(self, track_id: str) -> Optional[str]:
        record = self.get_encrypted_record(track_id)
        return record.album_id if record else None

    def get_encrypted_record(self, track_id: str) -> Optional[EncryptedContentRecord]:
        with self._lock:
            return self._records.get(track_id)

    def count_encrypted_tracks(self) -> int:
        with self._lock:
            return len(self._records)
