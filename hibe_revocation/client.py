"""
Client for the revocation gateway HTTP API.

Wraps every control-plane and crypto-plane endpoint with ``httpx`` and maps
error responses back onto the gateway's exception types.

Example:
    ```python
    from hibe_revocation.client import RevocationClient

    with RevocationClient("http://127.0.0.1:8080") as client:
        fp = client.generate_fingerprint("testHierarchy", "facility/bin123/record",
                                         1565119330, 1565219330)["fingerprint"]
        client.revoke(fingerprint=fp, reason="Device decommissioned")
        assert client.check(fp)["is_revoked"]
    ```
"""

from __future__ import annotations

import base64
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from hibe_revocation import config
from hibe_revocation.errors import (
    AlreadyRevoked,
    Cancelled,
    CryptoFailure,
    Denied,
    InvalidArgument,
    NotFound,
    RevocationError,
)

DEFAULT_TIMEOUT = 10.0  # seconds

_ERROR_KINDS = {
    cls.kind: cls for cls in (InvalidArgument, NotFound, Cancelled, CryptoFailure)
}


class GatewayConnectionError(RevocationError):
    """Raised when the gateway is not reachable."""

    kind = "ConnectionError"
    status_code = 503

    def __init__(self, message: str = "Revocation gateway is not available"):
        super().__init__(message)


def _error_from_response(response: httpx.Response) -> RevocationError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    kind = body.get("error")
    detail = body.get("detail") or response.text or f"HTTP {response.status_code}"

    if kind == Denied.kind or response.status_code == 403:
        return Denied(body.get("fingerprint", ""), body.get("reason", detail))
    if kind == AlreadyRevoked.kind or response.status_code == 409:
        return AlreadyRevoked(body.get("fingerprint", ""))
    cls = _ERROR_KINDS.get(kind)
    if cls is None:
        cls = {400: InvalidArgument, 404: NotFound, 499: Cancelled}.get(
            response.status_code, CryptoFailure if response.status_code >= 500 else RevocationError
        )
    return cls(str(detail))


class RevocationClient:
    """
    Synchronous client for the revocation gateway.

    Args:
        base_url: Gateway URL (default: HIBE_REVOCATION_URL).
        timeout: Request timeout in seconds.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        base_url: str = config.SERVER_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(
            base_url=self.base_url, timeout=httpx.Timeout(timeout), transport=transport
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "RevocationClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            raise GatewayConnectionError(f"Connection failed: {e}")
        if response.status_code >= 400:
            raise _error_from_response(response)
        return response.json()

    # -------------------------------------------------------------------------
    # Control plane
    # -------------------------------------------------------------------------

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    def revoke(
        self,
        reason: str,
        fingerprint: Optional[str] = None,
        hierarchy: Optional[str] = None,
        uri: Optional[str] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
        revoked_by: str = "",
        effective_from: Optional[int] = None,
        effective_for_seconds: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Revoke a key by fingerprint or by delegation tuple.

        Raises:
            InvalidArgument: If the gateway rejects the request.
            AlreadyRevoked: If the key already has an entry.
        """
        body = {
            "reason": reason,
            "fingerprint": fingerprint,
            "hierarchy": hierarchy,
            "uri": uri,
            "start": start,
            "end": end,
            "revoked_by": revoked_by,
            "effective_from": effective_from,
            "effective_for_seconds": effective_for_seconds,
        }
        return self._request(
            "POST", "/revoke", json={k: v for k, v in body.items() if v is not None}
        )

    def revoke_by_uri(self, uri: str, reason: str, revoked_by: str = "") -> Dict[str, Any]:
        return self._request(
            "POST",
            "/revoke-by-uri",
            json={"uri": uri, "reason": reason, "revoked_by": revoked_by},
        )

    def check(self, fingerprint: str) -> Dict[str, Any]:
        return self._request("GET", f"/revoke/check/{fingerprint}")

    def check_tuple(self, hierarchy: str, uri: str, start: int, end: int) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/revoke/check",
            json={"hierarchy": hierarchy, "uri": uri, "start": start, "end": end},
        )

    def generate_fingerprint(
        self, hierarchy: str, uri: str, start: int, end: int
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/revoke/generate-fingerprint",
            json={"hierarchy": hierarchy, "uri": uri, "start": start, "end": end},
        )

    def reinstate(self, fingerprint: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/revoke/{fingerprint}")

    def list_revocations(self, status: str = "all") -> Dict[str, Any]:
        return self._request("GET", "/revocations", params={"status": status})

    def list_by_uri(self, uri: str) -> Dict[str, Any]:
        return self._request("GET", f"/revocations/uri/{quote(uri, safe='/')}")

    def stats(self) -> Dict[str, Any]:
        return self._request("GET", "/revocations/stats")

    def cleanup(self) -> Dict[str, Any]:
        return self._request("POST", "/revocations/cleanup")

    # -------------------------------------------------------------------------
    # Crypto plane
    # -------------------------------------------------------------------------

    def delegate(
        self, uri: str, start: int, end: int, hierarchy: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Request a delegation.

        Raises:
            Denied: If the key is revoked.
            CryptoFailure: If the provider fails.
        """
        body = {"uri": uri, "start": start, "end": end}
        if hierarchy is not None:
            body["hierarchy"] = hierarchy
        return self._request("POST", "/delegate", json=body)

    def decrypt(
        self,
        uri: str,
        start: int,
        end: int,
        ciphertext: bytes,
        hierarchy: Optional[str] = None,
    ) -> bytes:
        """Decrypt through the gate and return the plaintext bytes."""
        body = {
            "uri": uri,
            "start": start,
            "end": end,
            "ciphertext_b64": base64.b64encode(ciphertext).decode("ascii"),
        }
        if hierarchy is not None:
            body["hierarchy"] = hierarchy
        data = self._request("POST", "/decrypt-gated", json=body)
        return base64.b64decode(data["plaintext_b64"])

    def delegations(self) -> Dict[str, Any]:
        return self._request("GET", "/delegations")

    def delegation(self, fingerprint: str) -> Dict[str, Any]:
        return self._request("GET", f"/delegations/{fingerprint}")
