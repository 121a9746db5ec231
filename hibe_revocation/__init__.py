"""
HIBE Revocation Gateway.

Revocation registry and gate for hierarchical identity-based encryption key
delegation: delegated keys are identified by a deterministic fingerprint,
revoked immediately, on a schedule or for a bounded window, and every
delegation and decryption is checked against the live revocation set.
"""

__version__ = "1.0.0"

from .errors import (
    RevocationError,
    InvalidArgument,
    AlreadyRevoked,
    NotFound,
    Denied,
    Cancelled,
    CryptoFailure,
)
from .fingerprint import fingerprint, fingerprint_hex, normalize_fingerprint, DelegationTuple
from .revocation import (
    RevocationEntry,
    RevocationRequest,
    RevocationRegistry,
    RevocationState,
    RevocationStats,
    UNBOUNDED,
)
from .delegation import DelegationRecord, DelegationRegistry
from .context import OperationContext
from .provider import CryptoProvider, LocalCryptoProvider, Permission
from .gate import KeyGate, DelegationResult, DecryptionResult


# HTTP surface and adapters are loaded lazily so the core does not pull in
# FastAPI or httpx.
def __getattr__(name):
    if name in ("create_app", "app"):
        from . import server

        return getattr(server, name)
    elif name in (
        "RevocationSink",
        "MemoryRevocationSink",
        "JSONFileRevocationSink",
        "RedisRevocationSink",
    ):
        from . import persistence

        return getattr(persistence, name)
    elif name == "RevocationClient":
        from .client import RevocationClient

        return RevocationClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    "RevocationError",
    "InvalidArgument",
    "AlreadyRevoked",
    "NotFound",
    "Denied",
    "Cancelled",
    "CryptoFailure",
    "fingerprint",
    "fingerprint_hex",
    "normalize_fingerprint",
    "DelegationTuple",
    "RevocationEntry",
    "RevocationRequest",
    "RevocationRegistry",
    "RevocationState",
    "RevocationStats",
    "UNBOUNDED",
    "DelegationRecord",
    "DelegationRegistry",
    "OperationContext",
    "CryptoProvider",
    "LocalCryptoProvider",
    "Permission",
    "KeyGate",
    "DelegationResult",
    "DecryptionResult",
]
