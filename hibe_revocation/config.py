# hibe_revocation/config.py
"""
Centralized configuration for the revocation gateway.

All configurable values are read from environment variables with sensible
defaults, so each deployment can be tuned without code changes.

Usage:
    from hibe_revocation.config import PORT, DEFAULT_HIERARCHY

Environment Variables:
    HIBE_REVOCATION_HOST: Bind host (default: 127.0.0.1)
    HIBE_REVOCATION_PORT: Bind port (default: 8080)
    HIBE_REVOCATION_LOG_LEVEL: Logging level (default: INFO)
    HIBE_DEFAULT_HIERARCHY: Hierarchy for crypto requests that omit one
    HIBE_CRYPTO_TIMEOUT_SECONDS: Deadline for provider calls, 0 disables
    HIBE_REVOCATION_STATE_FILE: Enables the JSON file sink at this path
    HIBE_REVOCATION_SWEEP_INTERVAL: Seconds between expired-entry sweeps, 0 disables
    HIBE_MASTER_SECRET: Hex master secret for the local development provider
    HIBE_REVOCATION_URL: Server URL used by the client and CLI
"""

import os
from typing import Final, Optional

# =============================================================================
# Server
# =============================================================================

HOST: Final[str] = os.getenv("HIBE_REVOCATION_HOST", "127.0.0.1")

PORT: Final[int] = int(os.getenv("HIBE_REVOCATION_PORT", "8080"))

LOG_LEVEL: Final[str] = os.getenv("HIBE_REVOCATION_LOG_LEVEL", "INFO").upper()

# =============================================================================
# Gateway behaviour
# =============================================================================

DEFAULT_HIERARCHY: Final[str] = os.getenv("HIBE_DEFAULT_HIERARCHY", "testHierarchy")

CRYPTO_TIMEOUT_SECONDS: Final[float] = float(os.getenv("HIBE_CRYPTO_TIMEOUT_SECONDS", "30"))

STATE_FILE: Final[Optional[str]] = os.getenv("HIBE_REVOCATION_STATE_FILE") or None

SWEEP_INTERVAL_SECONDS: Final[float] = float(os.getenv("HIBE_REVOCATION_SWEEP_INTERVAL", "0"))

MASTER_SECRET_HEX: Final[Optional[str]] = os.getenv("HIBE_MASTER_SECRET") or None

# =============================================================================
# Client
# =============================================================================

SERVER_URL: Final[str] = os.getenv("HIBE_REVOCATION_URL", f"http://127.0.0.1:{PORT}")


def master_secret() -> Optional[bytes]:
    """Decode HIBE_MASTER_SECRET, or None when unset."""
    if MASTER_SECRET_HEX is None:
        return None
    return bytes.fromhex(MASTER_SECRET_HEX)


def as_dict() -> dict:
    """Current configuration, with the master secret masked."""
    return {
        "HOST": HOST,
        "PORT": PORT,
        "LOG_LEVEL": LOG_LEVEL,
        "DEFAULT_HIERARCHY": DEFAULT_HIERARCHY,
        "CRYPTO_TIMEOUT_SECONDS": CRYPTO_TIMEOUT_SECONDS,
        "STATE_FILE": STATE_FILE,
        "SWEEP_INTERVAL_SECONDS": SWEEP_INTERVAL_SECONDS,
        "MASTER_SECRET": "set" if MASTER_SECRET_HEX else "ephemeral",
        "SERVER_URL": SERVER_URL,
    }


def print_config() -> None:
    """Print current configuration (useful for debugging)."""
    print("HIBE Revocation Gateway Configuration:")
    for name, value in as_dict().items():
        print(f"  {name + ':':<24}{value}")


if __name__ == "__main__":
    print_config()
