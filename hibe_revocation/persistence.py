"""
Durability adapters for the revocation registry.

The in-memory registry is authoritative. A sink mirrors each write and, on
startup, replays its contents into a fresh registry:

    >>> sink = JSONFileRevocationSink("/var/lib/hibe/revocations.json")
    >>> registry = RevocationRegistry.from_sink(sink)
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Union

from hibe_revocation.revocation import RevocationEntry

logger = logging.getLogger(__name__)


class RevocationSink(ABC):
    """Abstract write-through sink for revocation entries."""

    @abstractmethod
    def upsert(self, entry: RevocationEntry) -> None:
        """Store or replace an entry."""
        pass

    @abstractmethod
    def delete(self, fingerprint: str) -> None:
        """Remove an entry if present."""
        pass

    @abstractmethod
    def replay(self) -> List[RevocationEntry]:
        """Return every stored entry."""
        pass


class MemoryRevocationSink(RevocationSink):
    """Sink holding entries in a dict. Useful for tests and as a warm spare."""

    def __init__(self):
        self._entries: Dict[str, RevocationEntry] = {}
        self._lock = threading.Lock()

    def upsert(self, entry: RevocationEntry) -> None:
        with self._lock:
            self._entries[entry.fingerprint] = entry

    def delete(self, fingerprint: str) -> None:
        with self._lock:
            self._entries.pop(fingerprint, None)

    def replay(self) -> List[RevocationEntry]:
        with self._lock:
            return list(self._entries.values())


class JSONFileRevocationSink(RevocationSink):
    """
    Sink that keeps the full entry set in a JSON file.

    Each write rewrites the file through a temporary file and ``os.replace``,
    so readers never see a partial document.

    File format:
        {"revocations": [{...entry...}, ...]}
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._entries: Dict[str, RevocationEntry] = {
            e.fingerprint: e for e in self._load()
        }

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> List[RevocationEntry]:
        if not self._path.exists():
            return []
        with open(self._path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return [RevocationEntry.from_dict(item) for item in data.get("revocations", [])]

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        document = {"revocations": [e.to_dict() for e in self._entries.values()]}
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".revocations-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        except Exception:
            os.unlink(tmp)
            raise

    def upsert(self, entry: RevocationEntry) -> None:
        with self._lock:
            self._entries[entry.fingerprint] = entry
            self._flush()

    def delete(self, fingerprint: str) -> None:
        with self._lock:
            if self._entries.pop(fingerprint, None) is not None:
                self._flush()

    def replay(self) -> List[RevocationEntry]:
        with self._lock:
            return list(self._entries.values())


class RedisRevocationSink(RevocationSink):
    """
    Redis-backed sink for deployments sharing a Redis instance.

    Each entry is stored as JSON under ``prefix + fingerprint`` and its
    fingerprint is added to a membership set.

    Example:
        >>> import redis
        >>> client = redis.Redis(host='localhost', port=6379)
        >>> sink = RedisRevocationSink(client)
    """

    def __init__(self, redis_client, key_prefix: str = "hibe:revoked:"):
        self._redis = redis_client
        self._prefix = key_prefix
        self._list_key = f"{key_prefix}:list"

    def _key(self, fingerprint: str) -> str:
        return f"{self._prefix}{fingerprint}"

    def upsert(self, entry: RevocationEntry) -> None:
        try:
            self._redis.set(self._key(entry.fingerprint), json.dumps(entry.to_dict()))
            self._redis.sadd(self._list_key, entry.fingerprint)
        except Exception as e:
            logger.error(f"Redis revocation write error: {e}")
            raise

    def delete(self, fingerprint: str) -> None:
        try:
            self._redis.delete(self._key(fingerprint))
            self._redis.srem(self._list_key, fingerprint)
        except Exception as e:
            logger.error(f"Redis revocation delete error: {e}")
            raise

    def replay(self) -> List[RevocationEntry]:
        entries = []
        for fp in self._redis.smembers(self._list_key):
            fp_str = fp.decode() if isinstance(fp, bytes) else fp
            data = self._redis.get(self._key(fp_str))
            if data:
                entries.append(RevocationEntry.from_dict(json.loads(data)))
            else:
                logger.warning(f"Redis revocation set lists {fp_str} but no entry is stored")
        return entries
