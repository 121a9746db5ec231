"""
Delegation log.

Records every delegation the gateway issues so operators can see which keys
exist, how often they are used, and revoke them in bulk by URI. Revocation
status is never stored here; it is read from the revocation registry each
time a record is returned.
"""

import base64
import logging
import time
from dataclasses import asdict, dataclass, replace
from typing import Dict, List, Optional

from hibe_revocation.locks import ReadWriteLock
from hibe_revocation.revocation import RevocationRegistry

logger = logging.getLogger(__name__)


@dataclass
class DelegationRecord:
    """Information about an issued delegation."""

    fingerprint: str
    uri: str
    hierarchy: bytes
    window_start: int
    window_end: int
    created_at: int
    last_used_at: Optional[int] = None
    use_count: int = 0
    is_revoked: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        try:
            data["hierarchy"] = self.hierarchy.decode("utf-8")
        except UnicodeDecodeError:
            del data["hierarchy"]
            data["hierarchy_b64"] = base64.b64encode(self.hierarchy).decode("ascii")
        return data


class DelegationRegistry:
    """
    Thread-safe mapping from fingerprint to delegation record.

    Example:
        >>> delegations = DelegationRegistry(revocations)
        >>> delegations.record(fp, "facility/bin123/record", b"testHierarchy", start, end)
        >>> delegations.get(fp).is_revoked
        False
    """

    def __init__(self, revocations: RevocationRegistry, clock=time.time):
        self._revocations = revocations
        self._clock = clock
        self._records: Dict[str, DelegationRecord] = {}
        self._lock = ReadWriteLock()

    def record(
        self,
        fingerprint: str,
        uri: str,
        hierarchy: bytes,
        window_start: int,
        window_end: int,
    ) -> DelegationRecord:
        """
        Record a successful delegation.

        Delegating the same tuple again keeps the original creation time and
        usage counters.
        """
        now = int(self._clock())
        with self._lock.write():
            existing = self._records.get(fingerprint)
            if existing is None:
                existing = DelegationRecord(
                    fingerprint=fingerprint,
                    uri=uri,
                    hierarchy=bytes(hierarchy),
                    window_start=window_start,
                    window_end=window_end,
                    created_at=now,
                )
                self._records[fingerprint] = existing
            snapshot = replace(existing)
        logger.debug(f"Recorded delegation {fingerprint} for {uri}")
        return self._overlay(snapshot, self._revocations.now())

    def touch_usage(self, fingerprint: str) -> bool:
        """Advance usage counters. Returns False for unknown fingerprints."""
        now = int(self._clock())
        with self._lock.write():
            record = self._records.get(fingerprint)
            if record is None:
                return False
            record.last_used_at = now
            record.use_count += 1
        return True

    def get(self, fingerprint: str) -> Optional[DelegationRecord]:
        with self._lock.read():
            record = self._records.get(fingerprint)
            snapshot = replace(record) if record is not None else None
        if snapshot is None:
            return None
        return self._overlay(snapshot, self._revocations.now())

    def list(self) -> List[DelegationRecord]:
        with self._lock.read():
            snapshots = [replace(r) for r in self._records.values()]
        snapshots.sort(key=lambda r: (r.created_at, r.fingerprint))
        now = self._revocations.now()
        return [self._overlay(r, now) for r in snapshots]

    def by_uri(self, uri: str) -> List[DelegationRecord]:
        """Records whose URI equals ``uri``, without the revocation overlay."""
        with self._lock.read():
            return [replace(r) for r in self._records.values() if r.uri == uri]

    def _overlay(self, record: DelegationRecord, now: float) -> DelegationRecord:
        record.is_revoked = self._revocations.check(record.fingerprint, now)[0]
        return record

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._records)
