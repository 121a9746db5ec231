"""
Deterministic key fingerprints.

A delegated key is identified by the tuple (hierarchy, uri, window start,
window end). The tuple is serialized into a length-prefixed byte string and
hashed with SHA-256, so any two services computing the fingerprint of the same
delegation agree without sharing state.

Example:
    >>> fingerprint_hex(b"testHierarchy", "facility/bin123/record", 1565119330, 1565219330)
    '...'  # 64 lowercase hex characters
"""

import hashlib
import logging
import struct
from dataclasses import dataclass
from typing import Union

from hibe_revocation.errors import InvalidArgument

logger = logging.getLogger(__name__)

FINGERPRINT_SIZE = 32
FINGERPRINT_HEX_LENGTH = FINGERPRINT_SIZE * 2

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_HEX_DIGITS = frozenset("0123456789abcdef")


def utf8_bytes(value: Union[bytes, str], name: str) -> bytes:
    """
    Encode text as UTF-8, passing bytes through.

    Raises:
        InvalidArgument: If the text holds code points UTF-8 cannot encode,
            such as lone surrogates.
    """
    if isinstance(value, str):
        try:
            return value.encode("utf-8")
        except UnicodeEncodeError:
            raise InvalidArgument(f"{name} is not valid UTF-8 text")
    return bytes(value)


def validate_epoch(value: int, name: str) -> int:
    """Check that ``value`` is an integer Unix timestamp in the signed 64-bit range."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{name} must be an integer epoch timestamp")
    if not INT64_MIN <= value <= INT64_MAX:
        raise InvalidArgument(f"{name} is outside the signed 64-bit range")
    return value


def validate_window(start: int, end: int) -> None:
    """Check both bounds of a delegation window and that it is not inverted."""
    validate_epoch(start, "start")
    validate_epoch(end, "end")
    if end < start:
        raise InvalidArgument("delegation window end must not precede start")


def canonical_bytes(hierarchy: Union[bytes, str], uri: str, start: int, end: int) -> bytes:
    """
    Serialize a delegation tuple.

    Variable-length fields are prefixed with their length as an unsigned
    64-bit big-endian integer; timestamps follow as signed 64-bit big-endian
    integers. The encoding is injective over the tuple space.

    Raises:
        InvalidArgument: On non-UTF-8 text, out-of-range timestamps or an
            inverted window.
    """
    validate_window(start, end)
    h = utf8_bytes(hierarchy, "hierarchy")
    u = utf8_bytes(uri, "uri")
    return b"".join(
        (
            struct.pack(">Q", len(h)),
            h,
            struct.pack(">Q", len(u)),
            u,
            struct.pack(">qq", start, end),
        )
    )


def fingerprint(hierarchy: Union[bytes, str], uri: str, start: int, end: int) -> bytes:
    """Return the 32-byte fingerprint of a delegation tuple."""
    return hashlib.sha256(canonical_bytes(hierarchy, uri, start, end)).digest()


def fingerprint_hex(hierarchy: Union[bytes, str], uri: str, start: int, end: int) -> str:
    """Return the fingerprint rendered as 64 lowercase hex characters."""
    fp = fingerprint(hierarchy, uri, start, end).hex()
    logger.debug(f"Fingerprint for {uri!r} [{start}, {end}]: {fp}")
    return fp


def normalize_fingerprint(value: str) -> str:
    """
    Validate an externally supplied fingerprint and return it in lowercase.

    Raises:
        InvalidArgument: If the value is not 64 hex characters.
    """
    if not isinstance(value, str):
        raise InvalidArgument("fingerprint must be a string")
    fp = value.strip().lower()
    if len(fp) != FINGERPRINT_HEX_LENGTH or not set(fp) <= _HEX_DIGITS:
        raise InvalidArgument(
            f"fingerprint must be {FINGERPRINT_HEX_LENGTH} hexadecimal characters"
        )
    return fp


@dataclass(frozen=True)
class DelegationTuple:
    """The identity of a delegated key."""

    hierarchy: bytes
    uri: str
    start: int
    end: int

    def __post_init__(self):
        object.__setattr__(self, "hierarchy", utf8_bytes(self.hierarchy, "hierarchy"))
        utf8_bytes(self.uri, "uri")
        validate_window(self.start, self.end)

    @property
    def fingerprint(self) -> str:
        return fingerprint_hex(self.hierarchy, self.uri, self.start, self.end)
