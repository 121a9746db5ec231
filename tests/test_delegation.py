"""
Tests for the delegation log.
"""

from hibe_revocation.delegation import DelegationRegistry
from hibe_revocation.fingerprint import fingerprint_hex
from hibe_revocation.revocation import RevocationRegistry, RevocationRequest

from conftest import END, HIERARCHY, START, URI


class TestDelegationRegistry:
    def test_record_and_get(self, delegations, sample_fp, clock):
        record = delegations.record(sample_fp, URI, HIERARCHY.encode(), START, END)
        assert record.created_at == int(clock.now)
        assert record.use_count == 0
        assert record.last_used_at is None
        assert record.is_revoked is False

        fetched = delegations.get(sample_fp)
        assert fetched.uri == URI
        assert fetched.window_start == START
        assert fetched.window_end == END

    def test_get_unknown(self, delegations, sample_fp):
        assert delegations.get(sample_fp) is None

    def test_touch_usage(self, delegations, sample_fp, clock):
        delegations.record(sample_fp, URI, HIERARCHY.encode(), START, END)
        clock.advance(30)
        assert delegations.touch_usage(sample_fp) is True
        assert delegations.touch_usage(sample_fp) is True
        record = delegations.get(sample_fp)
        assert record.use_count == 2
        assert record.last_used_at == int(clock.now)

    def test_touch_unknown(self, delegations, sample_fp):
        assert delegations.touch_usage(sample_fp) is False

    def test_rerecord_keeps_history(self, delegations, sample_fp, clock):
        delegations.record(sample_fp, URI, HIERARCHY.encode(), START, END)
        created = int(clock.now)
        delegations.touch_usage(sample_fp)
        clock.advance(100)
        record = delegations.record(sample_fp, URI, HIERARCHY.encode(), START, END)
        assert record.created_at == created
        assert record.use_count == 1

    def test_is_revoked_is_derived(self, delegations, revocations, sample_fp):
        delegations.record(sample_fp, URI, HIERARCHY.encode(), START, END)
        revocations.revoke(RevocationRequest(reason="r", fingerprint=sample_fp))
        assert delegations.get(sample_fp).is_revoked is True
        assert delegations.list()[0].is_revoked is True

        revocations.clear(sample_fp)
        assert delegations.get(sample_fp).is_revoked is False

    def test_returned_records_are_snapshots(self, delegations, sample_fp):
        delegations.record(sample_fp, URI, HIERARCHY.encode(), START, END)
        snapshot = delegations.get(sample_fp)
        snapshot.use_count = 99
        assert delegations.get(sample_fp).use_count == 0

    def test_by_uri(self, delegations):
        for start in (0, 10, 20):
            fp = fingerprint_hex(HIERARCHY, URI, start, start + 5)
            delegations.record(fp, URI, HIERARCHY.encode(), start, start + 5)
        other = fingerprint_hex(HIERARCHY, "other/uri", 0, 5)
        delegations.record(other, "other/uri", HIERARCHY.encode(), 0, 5)

        assert len(delegations.by_uri(URI)) == 3
        assert len(delegations) == 4

    def test_to_dict(self, delegations, sample_fp):
        record = delegations.record(sample_fp, URI, HIERARCHY.encode(), START, END)
        data = record.to_dict()
        assert data["hierarchy"] == HIERARCHY
        assert data["fingerprint"] == sample_fp
        assert data["is_revoked"] is False

    def test_non_utf8_hierarchy_is_preserved(self, delegations, sample_fp):
        record = delegations.record(sample_fp, URI, b"\xff\xfe", START, END)
        data = record.to_dict()
        assert "hierarchy" not in data
        assert data["hierarchy_b64"] == "//4="

    def test_list_samples_clock_once(self, clock):
        calls = []

        def counting_clock():
            calls.append(1)
            return clock()

        revocations = RevocationRegistry(clock=counting_clock)
        delegations = DelegationRegistry(revocations, clock=clock)
        for start in (0, 10, 20):
            fp = fingerprint_hex(HIERARCHY, URI, start, start + 5)
            delegations.record(fp, URI, HIERARCHY.encode(), start, start + 5)

        calls.clear()
        assert len(delegations.list()) == 3
        assert len(calls) == 1
