"""
Key Revocation Registry.

Tracks revoked delegation keys by fingerprint, with a secondary index by URI.
Each revocation has an effective window; whether a key is currently revoked
is derived from that window and the clock at the time of the check:

    pending   now < effective_from
    active    effective_from <= now < effective_until (or no upper bound)
    expired   effective_until <= now

Entries are single-assignment: a fingerprint that is already present cannot
be revoked again until it is cleared.
"""

import base64
import binascii
import enum
import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple, Union

from hibe_revocation.errors import AlreadyRevoked, InvalidArgument, NotFound
from hibe_revocation.fingerprint import (
    fingerprint_hex,
    normalize_fingerprint,
    utf8_bytes,
    validate_epoch,
)
from hibe_revocation.locks import ReadWriteLock

logger = logging.getLogger(__name__)

# effective_until value meaning "never expires"
UNBOUNDED = None

Clock = Callable[[], float]


class RevocationState(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"


def _hierarchy_bytes(value: Union[bytes, str, None]) -> bytes:
    if value is None:
        return b""
    return utf8_bytes(value, "hierarchy")


@dataclass(frozen=True)
class RevocationEntry:
    """
    A single revocation.

    Attributes:
        fingerprint: Fingerprint of the revoked key (primary key).
        uri: URI pattern of the delegation, empty if unknown.
        hierarchy: Authority scope of the delegation.
        revoked_at: Unix timestamp at which the entry was created.
        revoked_by: Free-form label of the revoking principal.
        reason: Reason for revocation.
        effective_from: Unix timestamp from which the revocation applies.
        effective_until: Unix timestamp at which the revocation lapses, or
            None for a permanent revocation.
    """

    fingerprint: str
    uri: str
    hierarchy: bytes
    revoked_at: int
    revoked_by: str
    reason: str
    effective_from: int
    effective_until: Optional[int] = UNBOUNDED

    @property
    def is_bounded(self) -> bool:
        return self.effective_until is not None

    def state(self, now: float) -> RevocationState:
        """Lifecycle state of this entry at ``now``."""
        if now < self.effective_from:
            return RevocationState.PENDING
        if self.effective_until is not None and now >= self.effective_until:
            return RevocationState.EXPIRED
        return RevocationState.ACTIVE

    def is_active(self, now: float) -> bool:
        return self.state(now) is RevocationState.ACTIVE

    def to_dict(self) -> dict:
        """Convert to a JSON-compatible dictionary."""
        data = asdict(self)
        try:
            data["hierarchy"] = self.hierarchy.decode("utf-8")
        except UnicodeDecodeError:
            del data["hierarchy"]
            data["hierarchy_b64"] = base64.b64encode(self.hierarchy).decode("ascii")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RevocationEntry":
        """Create from a dictionary produced by ``to_dict``."""
        if "hierarchy_b64" in data:
            try:
                hierarchy = base64.b64decode(data["hierarchy_b64"], validate=True)
            except (binascii.Error, ValueError) as e:
                raise InvalidArgument(f"invalid hierarchy_b64: {e}")
        else:
            hierarchy = _hierarchy_bytes(data.get("hierarchy"))
        until = data.get("effective_until")
        return cls(
            fingerprint=normalize_fingerprint(data["fingerprint"]),
            uri=data.get("uri") or "",
            hierarchy=hierarchy,
            revoked_at=int(data["revoked_at"]),
            revoked_by=data.get("revoked_by") or "",
            reason=data["reason"],
            effective_from=int(data["effective_from"]),
            effective_until=None if until is None else int(until),
        )


@dataclass
class RevocationRequest:
    """
    Caller input for a single revocation.

    Either ``fingerprint`` or the full delegation tuple (``hierarchy``,
    ``uri``, ``start``, ``end``) must be supplied. When both are given they
    must agree.
    """

    reason: str
    fingerprint: Optional[str] = None
    hierarchy: Union[bytes, str, None] = None
    uri: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None
    revoked_by: str = ""
    effective_from: Optional[int] = None
    effective_for_seconds: Optional[int] = None

    @property
    def has_tuple(self) -> bool:
        return (
            self.hierarchy is not None
            and self.uri is not None
            and self.start is not None
            and self.end is not None
        )

    def build_entry(self, now: float) -> RevocationEntry:
        """
        Validate and normalize this request into an entry created at ``now``.

        Raises:
            InvalidArgument: On missing identity, empty reason or a bad window.
        """
        reason = (self.reason or "").strip()
        if not reason:
            raise InvalidArgument("reason is required")

        fp = None
        if self.has_tuple:
            fp = fingerprint_hex(self.hierarchy, self.uri, self.start, self.end)
        if self.fingerprint:
            given = normalize_fingerprint(self.fingerprint)
            if fp is not None and given != fp:
                raise InvalidArgument("fingerprint does not match the supplied delegation tuple")
            fp = given
        if fp is None:
            raise InvalidArgument(
                "either fingerprint or hierarchy, uri, start and end must be provided"
            )

        if self.uri:
            utf8_bytes(self.uri, "uri")
        utf8_bytes(reason, "reason")
        utf8_bytes(self.revoked_by or "", "revoked_by")

        effective_from = int(now)
        if self.effective_from is not None:
            effective_from = validate_epoch(self.effective_from, "effective_from")
        effective_until = UNBOUNDED
        if self.effective_for_seconds:
            duration = validate_epoch(self.effective_for_seconds, "effective_for_seconds")
            if duration < 0:
                raise InvalidArgument("effective_for_seconds must not be negative")
            effective_until = validate_epoch(effective_from + duration, "effective_until")

        return RevocationEntry(
            fingerprint=fp,
            uri=self.uri or "",
            hierarchy=_hierarchy_bytes(self.hierarchy),
            revoked_at=int(now),
            revoked_by=self.revoked_by or "",
            reason=reason,
            effective_from=effective_from,
            effective_until=effective_until,
        )


@dataclass
class RevocationStats:
    """Counts over the registry, computed in a single pass."""

    total: int = 0
    active: int = 0
    pending: int = 0
    expired: int = 0
    unique_uris: int = 0
    generated_at: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _sorted(entries: Iterable[RevocationEntry]) -> List[RevocationEntry]:
    return sorted(entries, key=lambda e: (e.revoked_at, e.fingerprint))


class RevocationRegistry:
    """
    Authoritative, thread-safe set of revocation entries.

    Writes take the lock exclusively and update the fingerprint map and the
    URI index in one critical section; reads share the lock. Mirroring to the
    sink happens after the write lock is released, in the order the writes
    were made, so slow sinks never hold up readers. Every operation samples
    the clock once.

    Example:
        >>> registry = RevocationRegistry()
        >>> entry = registry.revoke(RevocationRequest(
        ...     fingerprint=fp, reason="Key compromised", revoked_by="ops"
        ... ))
        >>> registry.is_revoked(fp)
        True
    """

    def __init__(self, sink=None, clock: Clock = time.time):
        """
        Initialize the registry.

        Args:
            sink: Optional ``RevocationSink`` mirroring every write.
            clock: Wall-clock source returning Unix seconds.
        """
        self._entries: Dict[str, RevocationEntry] = {}
        self._uri_index: Dict[str, Set[str]] = {}
        self._lock = ReadWriteLock()
        self._sink = sink
        self._clock = clock
        # Sink writes queued under the write lock, applied in order after it is released.
        self._outbox: Deque[Tuple[str, object]] = deque()
        self._sink_lock = threading.Lock()

    @classmethod
    def from_sink(cls, sink, clock: Clock = time.time) -> "RevocationRegistry":
        """Create a registry and replay the entries held by ``sink``."""
        registry = cls(sink=sink, clock=clock)
        replayed = 0
        with registry._lock.write():
            for entry in sink.replay():
                if entry.fingerprint in registry._entries:
                    continue
                registry._index(entry)
                replayed += 1
        logger.info(f"Replayed {replayed} revocation(s) from {type(sink).__name__}")
        return registry

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Internal helpers; callers hold the write lock.
    # ------------------------------------------------------------------

    def _index(self, entry: RevocationEntry) -> None:
        self._entries[entry.fingerprint] = entry
        self._uri_index.setdefault(entry.uri, set()).add(entry.fingerprint)

    def _deindex(self, entry: RevocationEntry) -> None:
        del self._entries[entry.fingerprint]
        fps = self._uri_index.get(entry.uri)
        if fps is not None:
            fps.discard(entry.fingerprint)
            if not fps:
                del self._uri_index[entry.uri]

    def _mirror_upsert(self, entry: RevocationEntry) -> None:
        if self._sink is not None:
            self._outbox.append(("upsert", entry))

    def _mirror_delete(self, fingerprint: str) -> None:
        if self._sink is not None:
            self._outbox.append(("delete", fingerprint))

    def _flush_sink(self) -> None:
        """Apply queued writes to the sink. Must be called without the registry lock."""
        if self._sink is None:
            return
        with self._sink_lock:
            while self._outbox:
                op, item = self._outbox.popleft()
                try:
                    if op == "upsert":
                        self._sink.upsert(item)
                    else:
                        self._sink.delete(item)
                except Exception as e:
                    key = item.fingerprint if op == "upsert" else item
                    logger.error(f"Revocation sink {op} failed for {key}: {e}")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def revoke(self, request: RevocationRequest) -> RevocationEntry:
        """
        Create a revocation entry.

        Raises:
            InvalidArgument: If the request fails validation.
            AlreadyRevoked: If an entry already exists for the fingerprint.
        """
        entry = request.build_entry(self._clock())
        with self._lock.write():
            if entry.fingerprint in self._entries:
                raise AlreadyRevoked(entry.fingerprint)
            self._index(entry)
            self._mirror_upsert(entry)
        self._flush_sink()
        logger.info(f"Revoked key {entry.fingerprint} - Reason: {entry.reason}")
        return entry

    def revoke_by_uri(
        self,
        uri: str,
        reason: str,
        revoked_by: str = "",
        candidates: Iterable[Tuple[str, bytes]] = (),
    ) -> int:
        """
        Revoke every known key under ``uri``.

        Known keys are those already indexed under the URI plus ``candidates``,
        (fingerprint, hierarchy) pairs supplied by the caller, typically from
        the delegation log. Fingerprints that already have an entry are left
        untouched. New entries are permanent and effective immediately.

        Returns:
            Number of entries newly inserted.

        Raises:
            InvalidArgument: On empty uri or reason.
            NotFound: If no key is known under the URI.
        """
        if not uri:
            raise InvalidArgument("uri is required")
        utf8_bytes(uri, "uri")
        reason = (reason or "").strip()
        if not reason:
            raise InvalidArgument("reason is required")

        candidates = list(candidates)
        now = self._clock()
        inserted = 0
        with self._lock.write():
            known = set(self._uri_index.get(uri, ()))
            if not known and not candidates:
                raise NotFound(f"no keys found for URI: {uri}")
            for fp, hierarchy in candidates:
                if fp in self._entries or fp in known:
                    continue
                known.add(fp)
                entry = RevocationEntry(
                    fingerprint=fp,
                    uri=uri,
                    hierarchy=_hierarchy_bytes(hierarchy),
                    revoked_at=int(now),
                    revoked_by=revoked_by or "",
                    reason=reason,
                    effective_from=int(now),
                    effective_until=UNBOUNDED,
                )
                self._index(entry)
                self._mirror_upsert(entry)
                inserted += 1
        self._flush_sink()
        logger.info(f"Revoked {inserted} key(s) for URI: {uri}")
        return inserted

    def clear(self, fingerprint: str) -> RevocationEntry:
        """
        Remove the entry for ``fingerprint``, reinstating the key.

        Raises:
            NotFound: If no entry exists.
        """
        fp = normalize_fingerprint(fingerprint)
        with self._lock.write():
            entry = self._entries.get(fp)
            if entry is None:
                raise NotFound(f"revocation not found for key: {fp}")
            self._deindex(entry)
            self._mirror_delete(fp)
        self._flush_sink()
        logger.info(f"Reinstated key {fp}")
        return entry

    def remove_expired(self) -> int:
        """Remove bounded entries whose window has passed. Returns count removed."""
        now = self._clock()
        with self._lock.write():
            expired = [
                e for e in self._entries.values() if e.state(now) is RevocationState.EXPIRED
            ]
            for entry in expired:
                self._deindex(entry)
                self._mirror_delete(entry.fingerprint)
        self._flush_sink()
        if expired:
            logger.info(f"Removed {len(expired)} expired revocation(s)")
        return len(expired)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def is_revoked(self, fingerprint: str) -> bool:
        """True iff an entry exists for ``fingerprint`` and it is active now."""
        return self.check(fingerprint)[0]

    def check(
        self, fingerprint: str, now: Optional[float] = None
    ) -> Tuple[bool, Optional[RevocationEntry]]:
        """
        Resolve the revocation state of a key.

        Args:
            fingerprint: Key fingerprint.
            now: Instant to evaluate at; the registry clock when omitted.

        Returns:
            (True, entry) when actively revoked, otherwise (False, None).
        """
        if now is None:
            now = self._clock()
        with self._lock.read():
            entry = self._entries.get(fingerprint)
        if entry is not None and entry.is_active(now):
            return True, entry
        return False, None

    def check_by_tuple(
        self, hierarchy: Union[bytes, str], uri: str, start: int, end: int
    ) -> Tuple[bool, Optional[RevocationEntry]]:
        """Like ``check`` for the key identified by a delegation tuple."""
        return self.check(fingerprint_hex(hierarchy, uri, start, end))

    def get(self, fingerprint: str) -> Optional[RevocationEntry]:
        """Return the entry for ``fingerprint`` regardless of its state."""
        with self._lock.read():
            return self._entries.get(fingerprint)

    def list_all(self) -> List[RevocationEntry]:
        with self._lock.read():
            entries = list(self._entries.values())
        return _sorted(entries)

    def list_by_state(
        self, state: RevocationState, now: Optional[float] = None
    ) -> List[RevocationEntry]:
        if now is None:
            now = self._clock()
        with self._lock.read():
            entries = [e for e in self._entries.values() if e.state(now) is state]
        return _sorted(entries)

    def list_active(self, now: Optional[float] = None) -> List[RevocationEntry]:
        return self.list_by_state(RevocationState.ACTIVE, now)

    def list_by_uri(self, uri: str) -> List[RevocationEntry]:
        """Entries indexed under ``uri``; empty when the URI is unknown."""
        with self._lock.read():
            entries = [self._entries[fp] for fp in self._uri_index.get(uri, ())]
        return _sorted(entries)

    def stats(self) -> RevocationStats:
        now = self._clock()
        stats = RevocationStats(generated_at=int(now))
        with self._lock.read():
            stats.total = len(self._entries)
            stats.unique_uris = len(self._uri_index)
            for entry in self._entries.values():
                state = entry.state(now)
                if state is RevocationState.PENDING:
                    stats.pending += 1
                elif state is RevocationState.EXPIRED:
                    stats.expired += 1
                else:
                    stats.active += 1
        return stats

    def consistency_violations(self) -> List[str]:
        """
        Fingerprints present in one index but not the other.

        Always empty for a healthy registry; used by tests and diagnostics.
        """
        with self._lock.read():
            indexed = set()
            problems = []
            for uri, fps in self._uri_index.items():
                for fp in fps:
                    indexed.add(fp)
                    entry = self._entries.get(fp)
                    if entry is None or entry.uri != uri:
                        problems.append(fp)
            problems.extend(fp for fp in self._entries if fp not in indexed)
        return problems

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def __contains__(self, fingerprint: str) -> bool:
        with self._lock.read():
            return fingerprint in self._entries
