"""
Revocation gate in front of the cryptographic provider.

Every delegation and decryption goes through ``KeyGate``: the key's
fingerprint is computed, the revocation registry is consulted, and only then
is the provider invoked. A revoked key never reaches the provider. The
delegation log is written only after the provider succeeds, so failures and
cancellations leave no trace in either registry.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar, Union

from hibe_revocation.context import OperationContext
from hibe_revocation.delegation import DelegationRecord, DelegationRegistry
from hibe_revocation.errors import Cancelled, CryptoFailure, Denied, InvalidArgument
from hibe_revocation.fingerprint import DelegationTuple
from hibe_revocation.provider import DEFAULT_PERMISSIONS, CryptoProvider, Permission
from hibe_revocation.revocation import RevocationRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class DelegationResult:
    """Outcome of an allowed delegation."""

    fingerprint: str
    data: bytes
    start: int
    end: int
    duration_us: int
    record: DelegationRecord


@dataclass
class DecryptionResult:
    """Outcome of an allowed decryption."""

    fingerprint: str
    plaintext: bytes
    duration_us: int


class KeyGate:
    """
    Guards provider calls with revocation checks.

    Example:
        >>> gate = KeyGate(provider, revocations, delegations)
        >>> result = await gate.delegate(b"testHierarchy", "facility/bin123/record",
        ...                              1565119330, 1565219330)
        >>> result.fingerprint
        '...'
    """

    def __init__(
        self,
        provider: CryptoProvider,
        revocations: RevocationRegistry,
        delegations: DelegationRegistry,
        default_timeout: Optional[float] = None,
    ):
        """
        Args:
            provider: Cryptographic provider performing the actual work.
            revocations: Registry consulted before every provider call.
            delegations: Log receiving successful delegations and usage.
            default_timeout: Deadline in seconds applied when the caller
                does not pass a context.
        """
        self._provider = provider
        self._revocations = revocations
        self._delegations = delegations
        self._default_timeout = default_timeout

    @property
    def revocations(self) -> RevocationRegistry:
        return self._revocations

    @property
    def delegations(self) -> DelegationRegistry:
        return self._delegations

    def _identify(self, hierarchy: Union[bytes, str], uri: str, start: int, end: int) -> DelegationTuple:
        if not uri:
            raise InvalidArgument("uri is required")
        return DelegationTuple(hierarchy, uri, start, end)

    def _enforce(self, fingerprint: str, operation: str) -> None:
        revoked, entry = self._revocations.check(fingerprint)
        if revoked:
            logger.warning(
                f"Denied {operation} for revoked key {fingerprint} (reason: {entry.reason})"
            )
            raise Denied(fingerprint, entry.reason, entry)

    async def _invoke(
        self, ctx: OperationContext, operation: str, call: Callable[[], Awaitable[T]]
    ) -> T:
        try:
            ctx.raise_if_cancelled()
            result = await asyncio.wait_for(call(), timeout=ctx.remaining())
        except Cancelled:
            logger.warning(f"{operation} cancelled")
            raise
        except asyncio.TimeoutError:
            logger.warning(f"{operation} exceeded its deadline")
            raise Cancelled("deadline exceeded")
        except Exception as e:
            logger.error(f"{operation} failed in crypto provider: {e}")
            raise CryptoFailure(f"{operation} failed: {e}") from e

        if ctx.cancelled:
            logger.warning(f"{operation} cancelled after provider returned; result discarded")
            raise Cancelled("operation cancelled")
        return result

    async def delegate(
        self,
        hierarchy: Union[bytes, str],
        uri: str,
        start: int,
        end: int,
        permissions: Permission = DEFAULT_PERMISSIONS,
        ctx: Optional[OperationContext] = None,
    ) -> DelegationResult:
        """
        Delegate a key unless it is revoked.

        Raises:
            InvalidArgument: On a malformed tuple.
            Denied: If the key is actively revoked.
            Cancelled: If the context is cancelled or times out.
            CryptoFailure: If the provider fails.
        """
        key = self._identify(hierarchy, uri, start, end)
        fp = key.fingerprint
        self._enforce(fp, "delegation")

        ctx = ctx or OperationContext.with_timeout(self._default_timeout)
        began = time.perf_counter()
        data = await self._invoke(
            ctx,
            "delegation",
            lambda: self._provider.delegate(
                ctx, key.hierarchy, key.uri, key.start, key.end, permissions
            ),
        )
        duration_us = int((time.perf_counter() - began) * 1_000_000)

        record = self._delegations.record(fp, key.uri, key.hierarchy, key.start, key.end)
        logger.info(f"Delegated key {fp} for {key.uri}")
        return DelegationResult(
            fingerprint=fp,
            data=data,
            start=key.start,
            end=key.end,
            duration_us=duration_us,
            record=record,
        )

    async def decrypt(
        self,
        hierarchy: Union[bytes, str],
        uri: str,
        start: int,
        end: int,
        ciphertext: bytes,
        now: Optional[int] = None,
        ctx: Optional[OperationContext] = None,
    ) -> DecryptionResult:
        """
        Decrypt with the key identified by the tuple unless it is revoked.

        Raises:
            InvalidArgument: On a malformed tuple.
            Denied: If the key is actively revoked.
            Cancelled: If the context is cancelled or times out.
            CryptoFailure: If the provider fails.
        """
        key = self._identify(hierarchy, uri, start, end)
        fp = key.fingerprint
        self._enforce(fp, "decryption")

        if now is None:
            now = int(self._revocations.now())
        ctx = ctx or OperationContext.with_timeout(self._default_timeout)
        began = time.perf_counter()
        plaintext = await self._invoke(
            ctx,
            "decryption",
            lambda: self._provider.decrypt(ctx, key.hierarchy, key.uri, now, ciphertext),
        )
        duration_us = int((time.perf_counter() - began) * 1_000_000)

        self._delegations.touch_usage(fp)
        return DecryptionResult(fingerprint=fp, plaintext=plaintext, duration_us=duration_us)
