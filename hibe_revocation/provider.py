"""
Cryptographic provider interface.

The gateway does not implement HIBE itself. A provider wraps the actual
primitives (key store, pattern encoder, Delegate, Decrypt) and is consumed
through the narrow async interface below. Providers may block and must honour
the operation context.

``LocalCryptoProvider`` is a development stand-in built on the
``cryptography`` package. It derives one symmetric key per (hierarchy, uri)
and is NOT hierarchical identity-based encryption; use it for local runs and
tests only.
"""

import base64
import enum
import json
import logging
import os
import struct
from abc import ABC, abstractmethod
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from hibe_revocation.context import OperationContext
from hibe_revocation.fingerprint import utf8_bytes

logger = logging.getLogger(__name__)


class Permission(enum.IntFlag):
    DECRYPT = 1
    SIGN = 2


DEFAULT_PERMISSIONS = Permission.DECRYPT | Permission.SIGN


class CryptoProvider(ABC):
    """Abstract interface to the HIBE primitives."""

    @abstractmethod
    async def delegate(
        self,
        ctx: OperationContext,
        hierarchy: bytes,
        uri: str,
        start: int,
        end: int,
        permissions: Permission,
    ) -> bytes:
        """Delegate a key for ``uri`` valid over [start, end]. Returns serialized bytes."""
        pass

    @abstractmethod
    async def decrypt(
        self,
        ctx: OperationContext,
        hierarchy: bytes,
        uri: str,
        now: int,
        ciphertext: bytes,
    ) -> bytes:
        """Decrypt a ciphertext addressed to ``uri`` at time ``now``."""
        pass


def _scope(hierarchy: bytes, uri: str) -> bytes:
    u = utf8_bytes(uri, "uri")
    return struct.pack(">Q", len(hierarchy)) + hierarchy + struct.pack(">Q", len(u)) + u


class LocalCryptoProvider(CryptoProvider):
    """
    Development provider: HKDF-SHA256 key derivation and AES-256-GCM.

    Example:
        >>> provider = LocalCryptoProvider()
        >>> ct = provider.encrypt(b"testHierarchy", "facility/bin123/record", b"hello")
        >>> await provider.decrypt(ctx, b"testHierarchy", "facility/bin123/record", now, ct)
        b'hello'
    """

    NONCE_SIZE = 12

    def __init__(self, master_secret: Optional[bytes] = None):
        """
        Args:
            master_secret: Root secret for key derivation. A random secret is
                generated when omitted, so ciphertexts do not survive restarts.
        """
        if master_secret is None:
            master_secret = os.urandom(32)
            logger.warning("LocalCryptoProvider using an ephemeral master secret")
        if len(master_secret) < 16:
            raise ValueError("master secret must be at least 16 bytes")
        self._master = master_secret

    def _derive_key(self, hierarchy: bytes, uri: str) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=b"hibe-revocation/uri-key/" + _scope(hierarchy, uri),
        )
        return hkdf.derive(self._master)

    def encrypt(self, hierarchy: bytes, uri: str, plaintext: bytes) -> bytes:
        """Encrypt ``plaintext`` to ``uri``. Returns nonce || ciphertext."""
        nonce = os.urandom(self.NONCE_SIZE)
        key = self._derive_key(hierarchy, uri)
        return nonce + AESGCM(key).encrypt(nonce, plaintext, _scope(hierarchy, uri))

    async def delegate(
        self,
        ctx: OperationContext,
        hierarchy: bytes,
        uri: str,
        start: int,
        end: int,
        permissions: Permission,
    ) -> bytes:
        ctx.raise_if_cancelled()
        delegation = {
            "hierarchy": hierarchy.decode("utf-8", errors="replace"),
            "uri": uri,
            "start": start,
            "end": end,
            "permissions": int(permissions),
            "key": base64.b64encode(self._derive_key(hierarchy, uri)).decode("ascii"),
        }
        data = json.dumps(delegation, sort_keys=True, separators=(",", ":")).encode("utf-8")
        ctx.raise_if_cancelled()
        return data

    async def decrypt(
        self,
        ctx: OperationContext,
        hierarchy: bytes,
        uri: str,
        now: int,
        ciphertext: bytes,
    ) -> bytes:
        ctx.raise_if_cancelled()
        if len(ciphertext) <= self.NONCE_SIZE:
            raise ValueError("ciphertext too short")
        nonce, body = ciphertext[: self.NONCE_SIZE], ciphertext[self.NONCE_SIZE :]
        key = self._derive_key(hierarchy, uri)
        try:
            plaintext = AESGCM(key).decrypt(nonce, body, _scope(hierarchy, uri))
        except InvalidTag:
            raise ValueError("ciphertext authentication failed")
        ctx.raise_if_cancelled()
        return plaintext
