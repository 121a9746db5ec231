"""
Tests for the revocation sinks and registry replay.
"""

import json
import threading
from unittest.mock import MagicMock

import pytest

from hibe_revocation.fingerprint import fingerprint_hex
from hibe_revocation.persistence import (
    JSONFileRevocationSink,
    MemoryRevocationSink,
    RedisRevocationSink,
)
from hibe_revocation.revocation import RevocationRegistry, RevocationRequest

from conftest import END, HIERARCHY, START, URI


def tuple_request(**overrides) -> RevocationRequest:
    fields = dict(reason="compromised", hierarchy=HIERARCHY, uri=URI, start=START, end=END)
    fields.update(overrides)
    return RevocationRequest(**fields)


class FakeRedis:
    """Minimal in-memory stand-in for the redis-py calls the sink makes."""

    def __init__(self):
        self.values = {}
        self.sets = {}

    def set(self, key, value):
        self.values[key] = value.encode() if isinstance(value, str) else value

    def get(self, key):
        return self.values.get(key)

    def delete(self, key):
        self.values.pop(key, None)

    def sadd(self, key, member):
        self.sets.setdefault(key, set()).add(member.encode())

    def srem(self, key, member):
        self.sets.get(key, set()).discard(member.encode())

    def smembers(self, key):
        return set(self.sets.get(key, set()))


class BlockingSink(MemoryRevocationSink):
    """Memory sink whose writes stall until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def upsert(self, entry):
        self.entered.set()
        self.release.wait(timeout=5)
        super().upsert(entry)


class TestMemorySink:
    def test_writes_are_mirrored(self, clock, sample_fp):
        sink = MemoryRevocationSink()
        registry = RevocationRegistry(sink=sink, clock=clock)

        registry.revoke(tuple_request())
        assert [e.fingerprint for e in sink.replay()] == [sample_fp]

        registry.clear(sample_fp)
        assert sink.replay() == []

    def test_replay_restores_registry(self, clock, sample_fp):
        sink = MemoryRevocationSink()
        RevocationRegistry(sink=sink, clock=clock).revoke(tuple_request())

        restored = RevocationRegistry.from_sink(sink, clock=clock)
        assert restored.is_revoked(sample_fp)
        assert [e.fingerprint for e in restored.list_by_uri(URI)] == [sample_fp]

    def test_cleanup_is_mirrored(self, clock):
        sink = MemoryRevocationSink()
        registry = RevocationRegistry(sink=sink, clock=clock)
        registry.revoke(tuple_request(effective_for_seconds=10))
        clock.advance(20)

        assert registry.remove_expired() == 1
        assert sink.replay() == []


class TestJSONFileSink:
    def test_survives_restart(self, tmp_path, clock, sample_fp):
        path = tmp_path / "state" / "revocations.json"
        registry = RevocationRegistry(sink=JSONFileRevocationSink(path), clock=clock)
        registry.revoke(tuple_request(revoked_by="ops", effective_for_seconds=3600))

        document = json.loads(path.read_text())
        assert document["revocations"][0]["fingerprint"] == sample_fp

        restored = RevocationRegistry.from_sink(JSONFileRevocationSink(path), clock=clock)
        entry = restored.get(sample_fp)
        assert entry.revoked_by == "ops"
        assert entry.hierarchy == HIERARCHY.encode()
        assert entry.effective_until == entry.effective_from + 3600

    def test_delete_rewrites_file(self, tmp_path, clock, sample_fp):
        path = tmp_path / "revocations.json"
        registry = RevocationRegistry(sink=JSONFileRevocationSink(path), clock=clock)
        registry.revoke(tuple_request())
        registry.clear(sample_fp)

        assert json.loads(path.read_text()) == {"revocations": []}
        assert list(tmp_path.glob(".revocations-*")) == []

    def test_missing_file_replays_nothing(self, tmp_path):
        sink = JSONFileRevocationSink(tmp_path / "absent.json")
        assert sink.replay() == []


class TestRedisSink:
    def test_round_trip(self, clock, sample_fp):
        client = FakeRedis()
        registry = RevocationRegistry(sink=RedisRevocationSink(client), clock=clock)
        registry.revoke(tuple_request())

        assert f"hibe:revoked:{sample_fp}" in client.values

        restored = RevocationRegistry.from_sink(RedisRevocationSink(client), clock=clock)
        assert restored.get(sample_fp).reason == "compromised"

        restored.clear(sample_fp)
        assert RedisRevocationSink(client).replay() == []

    def test_custom_prefix(self, clock, sample_fp):
        client = FakeRedis()
        registry = RevocationRegistry(
            sink=RedisRevocationSink(client, key_prefix="gw:"), clock=clock
        )
        registry.revoke(tuple_request())
        assert f"gw:{sample_fp}" in client.values

    def test_dangling_member_is_skipped(self):
        client = FakeRedis()
        client.sadd("hibe:revoked::list", "ab" * 32)
        assert RedisRevocationSink(client).replay() == []

    def test_write_error_propagates_from_sink(self, clock):
        client = MagicMock()
        client.set.side_effect = ConnectionError("redis down")
        sink = RedisRevocationSink(client)
        entry = tuple_request().build_entry(clock.now)

        with pytest.raises(ConnectionError):
            sink.upsert(entry)

    def test_registry_stays_authoritative_when_sink_fails(self, clock, sample_fp):
        client = MagicMock()
        client.set.side_effect = ConnectionError("redis down")
        registry = RevocationRegistry(sink=RedisRevocationSink(client), clock=clock)

        registry.revoke(tuple_request())
        assert registry.is_revoked(sample_fp)


class TestSinkOutsideLock:
    def test_slow_sink_does_not_block_readers(self, clock, sample_fp):
        sink = BlockingSink()
        registry = RevocationRegistry(sink=sink, clock=clock)
        writer = threading.Thread(
            target=registry.revoke, args=(RevocationRequest(reason="r", fingerprint=sample_fp),)
        )
        writer.start()
        try:
            assert sink.entered.wait(timeout=5)

            results = []
            reader = threading.Thread(
                target=lambda: results.append(
                    (registry.is_revoked("cd" * 32), registry.is_revoked(sample_fp))
                )
            )
            reader.start()
            reader.join(timeout=1)
            assert not reader.is_alive()
            assert results == [(False, True)]
        finally:
            sink.release.set()
            writer.join(timeout=5)

        assert [e.fingerprint for e in sink.replay()] == [sample_fp]

    def test_sink_sees_writes_in_order(self, clock, sample_fp):
        calls = []

        class RecordingSink(MemoryRevocationSink):
            def upsert(self, entry):
                calls.append(("upsert", entry.fingerprint))
                super().upsert(entry)

            def delete(self, fingerprint):
                calls.append(("delete", fingerprint))
                super().delete(fingerprint)

        sink = RecordingSink()
        registry = RevocationRegistry(sink=sink, clock=clock)
        other = fingerprint_hex(HIERARCHY, URI, START, END + 1)
        registry.revoke(RevocationRequest(reason="a", fingerprint=sample_fp))
        registry.clear(sample_fp)
        registry.revoke(RevocationRequest(reason="b", fingerprint=sample_fp))
        registry.revoke(RevocationRequest(reason="c", fingerprint=other))

        assert calls == [
            ("upsert", sample_fp),
            ("delete", sample_fp),
            ("upsert", sample_fp),
            ("upsert", other),
        ]
        assert {e.fingerprint for e in sink.replay()} == {sample_fp, other}
