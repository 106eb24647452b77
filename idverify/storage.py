"""
Verification record storage.

The orchestrator only talks to the VerificationStore interface, so a durable
backend can replace the in-memory one without touching the pipeline.
"""
import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .models import VerificationRecord, VerificationStatus

logger = logging.getLogger(__name__)


class VerificationStore(ABC):
    """Create/read/update/list access to verification records."""

    @abstractmethod
    async def create(self, **fields: Any) -> VerificationRecord:
        """Persist a new record and return it with its assigned id."""

    @abstractmethod
    async def get(self, record_id: int) -> Optional[VerificationRecord]:
        """Return the record or None if it does not exist."""

    @abstractmethod
    async def update(self, record_id: int, updates: Dict[str, Any]) -> Optional[VerificationRecord]:
        """Apply updates and return the new record, or None if it does not exist."""

    @abstractmethod
    async def list(self) -> List[VerificationRecord]:
        """Return all records in id order."""


class InMemoryVerificationStore(VerificationStore):
    """Process-lifetime store keyed by an auto-incrementing integer id."""

    def __init__(self):
        self._records: Dict[int, VerificationRecord] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def create(self, **fields: Any) -> VerificationRecord:
        fields.pop("id", None)
        fields.setdefault("status", VerificationStatus.PENDING)
        async with self._lock:
            record = VerificationRecord(id=next(self._ids), **fields)
            self._records[record.id] = record
        logger.info(f"Created verification record {record.id} ({record.status.value})")
        return record

    async def get(self, record_id: int) -> Optional[VerificationRecord]:
        return self._records.get(record_id)

    async def update(self, record_id: int, updates: Dict[str, Any]) -> Optional[VerificationRecord]:
        updates = {k: v for k, v in updates.items() if k not in ("id", "created_at")}
        async with self._lock:
            existing = self._records.get(record_id)
            if existing is None:
                return None
            # Validate through the model so bad field values never land in the store
            updated = VerificationRecord(**{**existing.model_dump(), **updates})
            self._records[record_id] = updated
        return updated

    async def list(self) -> List[VerificationRecord]:
        return [self._records[key] for key in sorted(self._records)]
