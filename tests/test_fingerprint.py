"""
Unit tests for key fingerprints.
"""

import hashlib

import pytest

from hibe_revocation.errors import InvalidArgument
from hibe_revocation.fingerprint import (
    DelegationTuple,
    canonical_bytes,
    fingerprint,
    fingerprint_hex,
    normalize_fingerprint,
)


class TestFingerprint:
    """Tests for fingerprint derivation."""

    def test_deterministic(self):
        """Same tuple always yields the same fingerprint."""
        a = fingerprint_hex(b"testHierarchy", "facility/bin123/record", 1565119330, 1565219330)
        b = fingerprint_hex(b"testHierarchy", "facility/bin123/record", 1565119330, 1565219330)
        assert a == b

    def test_str_and_bytes_hierarchy_agree(self):
        assert fingerprint_hex("testHierarchy", "a/b", 1, 2) == fingerprint_hex(
            b"testHierarchy", "a/b", 1, 2
        )

    def test_hex_format(self):
        fp = fingerprint_hex(b"h", "u", 0, 1)
        assert len(fp) == 64
        assert fp == fp.lower()
        int(fp, 16)

    def test_digest_is_32_bytes(self):
        assert len(fingerprint(b"h", "u", 0, 1)) == 32

    def test_matches_sha256_of_canonical_bytes(self):
        data = canonical_bytes(b"h", "u", 10, 20)
        assert fingerprint(b"h", "u", 10, 20) == hashlib.sha256(data).digest()

    def test_separator_ambiguity_does_not_collide(self):
        """Moving characters between hierarchy and uri changes the fingerprint."""
        assert fingerprint_hex(b"a:b", "c", 1, 2) != fingerprint_hex(b"a", "b:c", 1, 2)
        assert fingerprint_hex(b"ab", "c", 1, 2) != fingerprint_hex(b"a", "bc", 1, 2)

    def test_window_changes_fingerprint(self):
        base = fingerprint_hex(b"h", "u", 100, 200)
        assert base != fingerprint_hex(b"h", "u", 100, 201)
        assert base != fingerprint_hex(b"h", "u", 101, 200)

    def test_negative_timestamps_allowed(self):
        assert len(fingerprint_hex(b"h", "u", -5, 5)) == 64

    def test_out_of_range_timestamp_rejected(self):
        with pytest.raises(InvalidArgument):
            fingerprint_hex(b"h", "u", 0, 2**63)

    def test_non_integer_timestamp_rejected(self):
        with pytest.raises(InvalidArgument):
            fingerprint_hex(b"h", "u", 1.5, 2)
        with pytest.raises(InvalidArgument):
            fingerprint_hex(b"h", "u", True, 2)


class TestNormalizeFingerprint:
    def test_lowercases(self):
        fp = "AB" * 32
        assert normalize_fingerprint(fp) == "ab" * 32

    @pytest.mark.parametrize("value", ["", "abc", "g" * 64, "a" * 63, "a" * 65])
    def test_rejects_malformed(self, value):
        with pytest.raises(InvalidArgument):
            normalize_fingerprint(value)


class TestDelegationTuple:
    def test_fingerprint_property(self):
        key = DelegationTuple("testHierarchy", "x/y", 1, 2)
        assert key.hierarchy == b"testHierarchy"
        assert key.fingerprint == fingerprint_hex(b"testHierarchy", "x/y", 1, 2)

    def test_frozen(self):
        key = DelegationTuple(b"h", "u", 1, 2)
        with pytest.raises(Exception):
            key.uri = "other"


class TestTupleValidation:
    def test_inverted_window_rejected(self):
        with pytest.raises(InvalidArgument, match="window"):
            fingerprint_hex(b"h", "u", 20, 10)
        with pytest.raises(InvalidArgument):
            DelegationTuple(b"h", "u", 20, 10)

    def test_empty_window_allowed(self):
        assert len(fingerprint_hex(b"h", "u", 10, 10)) == 64

    @pytest.mark.parametrize(
        "hierarchy,uri",
        [("h", "bad\ud800uri"), ("bad\udfffhierarchy", "u")],
    )
    def test_unencodable_text_rejected(self, hierarchy, uri):
        with pytest.raises(InvalidArgument, match="UTF-8"):
            fingerprint_hex(hierarchy, uri, 1, 2)
        with pytest.raises(InvalidArgument):
            DelegationTuple(hierarchy, uri, 1, 2)
