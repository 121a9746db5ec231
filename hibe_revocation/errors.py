"""
Error taxonomy for the revocation gateway.

Every error carries a ``kind`` (stable name shown to API callers) and the HTTP
status the control API maps it to.
"""

from typing import Any, Dict, Optional


class RevocationError(Exception):
    """Base exception for revocation gateway errors."""

    kind = "Error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Render as a JSON error body."""
        return {"success": False, "error": self.kind, "detail": self.message}


class InvalidArgument(RevocationError):
    """Missing or malformed input. No state was changed."""

    kind = "InvalidArgument"
    status_code = 400


class AlreadyRevoked(RevocationError):
    """A revocation entry already exists for the fingerprint."""

    kind = "AlreadyRevoked"
    status_code = 409

    def __init__(self, fingerprint: str):
        super().__init__(f"key {fingerprint} is already revoked")
        self.fingerprint = fingerprint

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["fingerprint"] = self.fingerprint
        return body


class NotFound(RevocationError):
    kind = "NotFound"
    status_code = 404


class Denied(RevocationError):
    """
    The requested key is under an active revocation.

    This is a policy outcome rather than a fault: it always carries the
    reason recorded on the revocation entry.
    """

    kind = "Denied"
    status_code = 403

    def __init__(self, fingerprint: str, reason: str, entry: Optional[Any] = None):
        super().__init__(f"key is revoked (reason: {reason})")
        self.fingerprint = fingerprint
        self.reason = reason
        self.entry = entry

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["fingerprint"] = self.fingerprint
        body["reason"] = self.reason
        if self.entry is not None:
            body["entry"] = self.entry.to_dict()
        return body


class Cancelled(RevocationError):
    """The operation context was cancelled or its deadline passed."""

    kind = "Cancelled"
    status_code = 499


class CryptoFailure(RevocationError):
    """The cryptographic provider failed."""

    kind = "CryptoFailure"
    status_code = 500
