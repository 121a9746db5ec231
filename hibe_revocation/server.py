#!/usr/bin/env python3
"""
HIBE Revocation Gateway - HTTP surface.

Exposes the revocation control plane and the gated crypto plane over JSON.
Every handler is a thin adapter: parse, validate, call one registry or gate
operation, render. Registries are created per application by ``create_app``
and reached through FastAPI dependencies, so tests can build isolated apps.

Usage:
    # Start the gateway
    hibe-revocation serve

    # Or with uvicorn
    uvicorn hibe_revocation.server:app --host 127.0.0.1 --port 8080

Endpoints:
    POST   /revoke                        - Revoke one key
    POST   /revoke-by-uri                 - Revoke every known key under a URI
    GET    /revoke/check/{fingerprint}    - Is a key revoked?
    POST   /revoke/check                  - Is the key for a tuple revoked?
    DELETE /revoke/{fingerprint}          - Reinstate a key
    POST   /revoke/generate-fingerprint   - Compute a fingerprint
    GET    /revocations                   - List entries (?status=all|active|pending|expired)
    GET    /revocations/uri/{uri}         - List entries for a URI
    GET    /revocations/stats             - Counts
    POST   /revocations/cleanup           - Remove expired entries
    POST   /delegate                      - Gated delegation
    POST   /decrypt-gated                 - Gated decryption
    GET    /delegations[/{fingerprint}]   - Delegation log
    GET    /hibe-delegate-info/{fingerprint}
    GET    /health
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

from hibe_revocation import __version__, config
from hibe_revocation.delegation import DelegationRegistry
from hibe_revocation.errors import InvalidArgument, NotFound, RevocationError
from hibe_revocation.fingerprint import fingerprint_hex, normalize_fingerprint
from hibe_revocation.gate import KeyGate
from hibe_revocation.persistence import JSONFileRevocationSink, RevocationSink
from hibe_revocation.provider import CryptoProvider, LocalCryptoProvider
from hibe_revocation.revocation import (
    RevocationEntry,
    RevocationRegistry,
    RevocationRequest,
    RevocationState,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger("hibe-revocation")


# =============================================================================
# Pydantic Models
# =============================================================================


class GatewayModel(BaseModel):
    """Request body base: every text field must be encodable as UTF-8."""

    @field_validator("*")
    @classmethod
    def _utf8_text(cls, value):
        if isinstance(value, str):
            try:
                value.encode("utf-8")
            except UnicodeEncodeError:
                raise ValueError("must be valid UTF-8 text")
        return value


class KeyTuple(GatewayModel):
    """Identity of a delegated key."""

    hierarchy: str
    uri: str
    start: int  # Unix seconds
    end: int  # Unix seconds


class RevokeRequest(GatewayModel):
    """Single revocation. Supply fingerprint or the full tuple."""

    reason: str
    fingerprint: Optional[str] = None
    hierarchy: Optional[str] = None
    uri: Optional[str] = None
    start: Optional[int] = None
    end: Optional[int] = None
    revoked_by: str = ""
    effective_from: Optional[int] = None
    effective_for_seconds: Optional[int] = None


class RevokeResponse(BaseModel):
    success: bool = True
    message: str
    fingerprint: str
    revoked_at: int
    effective_from: int
    effective_until: Optional[int] = None


class RevokeByUriRequest(GatewayModel):
    uri: str
    reason: str
    revoked_by: str = ""


class RevokeByUriResponse(BaseModel):
    success: bool = True
    message: str
    revoked_count: int
    uri: str


class CheckResponse(BaseModel):
    fingerprint: str
    is_revoked: bool
    entry: Optional[Dict[str, Any]] = None


class TupleCheckResponse(CheckResponse):
    hierarchy: str
    uri: str
    start: int
    end: int


class EntryListResponse(BaseModel):
    count: int
    entries: List[Dict[str, Any]]
    status: Optional[str] = None
    uri: Optional[str] = None


class ClearResponse(BaseModel):
    success: bool = True
    message: str
    fingerprint: str


class StatsResponse(BaseModel):
    total: int
    active: int
    pending: int
    expired: int
    unique_uris: int
    generated_at: int


class CleanupResponse(BaseModel):
    success: bool = True
    message: str
    removed_count: int
    remaining_count: int


class FingerprintResponse(BaseModel):
    fingerprint: str
    hierarchy: str
    uri: str
    start: int
    end: int


class DelegateRequest(GatewayModel):
    uri: str
    start: int
    end: int
    hierarchy: Optional[str] = None  # server default when omitted


class DelegateResponse(BaseModel):
    success: bool = True
    message: str
    fingerprint: str
    data_b64: str
    uri: str
    hierarchy: str
    start: int
    end: int
    duration_us: int


class DecryptRequest(GatewayModel):
    uri: str
    start: int
    end: int
    ciphertext_b64: str
    hierarchy: Optional[str] = None
    now: Optional[int] = None  # server clock when omitted


class DecryptResponse(BaseModel):
    success: bool = True
    fingerprint: str
    plaintext_b64: str
    duration_us: int


class DelegationListResponse(BaseModel):
    count: int
    delegations: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    version: str
    revocations: int
    delegations: int


# =============================================================================
# Dependencies
# =============================================================================


def get_revocations(request: Request) -> RevocationRegistry:
    return request.app.state.revocations


def get_delegations(request: Request) -> DelegationRegistry:
    return request.app.state.delegations


def get_gate(request: Request) -> KeyGate:
    return request.app.state.gate


def get_default_hierarchy(request: Request) -> str:
    return request.app.state.default_hierarchy


def entry_payload(entry: RevocationEntry, now: float) -> Dict[str, Any]:
    """Entry as JSON with its derived lifecycle state."""
    data = entry.to_dict()
    data["status"] = entry.state(now).value
    return data


def _decode_b64(value: str, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidArgument(f"{field} is not valid base64: {e}")


# =============================================================================
# Revocation Control Plane
# =============================================================================

router = APIRouter()

# Write handlers are plain functions so FastAPI runs them in its threadpool;
# mirroring to a file or Redis sink then never blocks the event loop.


@router.post("/revoke", response_model=RevokeResponse)
def revoke(
    req: RevokeRequest,
    revocations: RevocationRegistry = Depends(get_revocations),
    delegations: DelegationRegistry = Depends(get_delegations),
):
    """Revoke a delegated key."""
    uri, hierarchy = req.uri, req.hierarchy
    if req.fingerprint and (uri is None or hierarchy is None):
        record = delegations.get(normalize_fingerprint(req.fingerprint))
        if record is not None:
            uri = uri if uri is not None else record.uri
            hierarchy = hierarchy if hierarchy is not None else record.hierarchy

    entry = revocations.revoke(
        RevocationRequest(
            reason=req.reason,
            fingerprint=req.fingerprint,
            hierarchy=hierarchy,
            uri=uri,
            start=req.start,
            end=req.end,
            revoked_by=req.revoked_by,
            effective_from=req.effective_from,
            effective_for_seconds=req.effective_for_seconds,
        )
    )
    return RevokeResponse(
        message="Key revoked successfully",
        fingerprint=entry.fingerprint,
        revoked_at=entry.revoked_at,
        effective_from=entry.effective_from,
        effective_until=entry.effective_until,
    )


@router.post("/revoke-by-uri", response_model=RevokeByUriResponse)
def revoke_by_uri(
    req: RevokeByUriRequest,
    revocations: RevocationRegistry = Depends(get_revocations),
    delegations: DelegationRegistry = Depends(get_delegations),
):
    """Revoke every key known under a URI."""
    candidates = [(r.fingerprint, r.hierarchy) for r in delegations.by_uri(req.uri)]
    count = revocations.revoke_by_uri(
        req.uri, req.reason, revoked_by=req.revoked_by, candidates=candidates
    )
    return RevokeByUriResponse(
        message=f"Revoked {count} key(s) for URI: {req.uri}",
        revoked_count=count,
        uri=req.uri,
    )


@router.get(
    "/revoke/check/{fingerprint}",
    response_model=CheckResponse,
    response_model_exclude_none=True,
)
async def check_fingerprint(
    fingerprint: str, revocations: RevocationRegistry = Depends(get_revocations)
):
    """Check whether a key is currently revoked."""
    fp = normalize_fingerprint(fingerprint)
    now = revocations.now()
    revoked, entry = revocations.check(fp, now)
    return CheckResponse(
        fingerprint=fp,
        is_revoked=revoked,
        entry=entry_payload(entry, now) if entry is not None else None,
    )


@router.post(
    "/revoke/check",
    response_model=TupleCheckResponse,
    response_model_exclude_none=True,
)
async def check_tuple(req: KeyTuple, revocations: RevocationRegistry = Depends(get_revocations)):
    """Check whether the key for a delegation tuple is currently revoked."""
    fp = fingerprint_hex(req.hierarchy, req.uri, req.start, req.end)
    now = revocations.now()
    revoked, entry = revocations.check(fp, now)
    return TupleCheckResponse(
        fingerprint=fp,
        is_revoked=revoked,
        entry=entry_payload(entry, now) if entry is not None else None,
        hierarchy=req.hierarchy,
        uri=req.uri,
        start=req.start,
        end=req.end,
    )


@router.post("/revoke/generate-fingerprint", response_model=FingerprintResponse)
async def generate_fingerprint(req: KeyTuple):
    """Compute the fingerprint of a delegation tuple."""
    return FingerprintResponse(
        fingerprint=fingerprint_hex(req.hierarchy, req.uri, req.start, req.end),
        hierarchy=req.hierarchy,
        uri=req.uri,
        start=req.start,
        end=req.end,
    )


@router.delete("/revoke/{fingerprint}", response_model=ClearResponse)
def clear_revocation(
    fingerprint: str, revocations: RevocationRegistry = Depends(get_revocations)
):
    """Clear a revocation, reinstating the key."""
    entry = revocations.clear(fingerprint)
    return ClearResponse(
        message=f"Revocation cleared for key: {entry.fingerprint}",
        fingerprint=entry.fingerprint,
    )


@router.get("/revocations", response_model=EntryListResponse, response_model_exclude_none=True)
async def list_revocations(
    status: str = "all", revocations: RevocationRegistry = Depends(get_revocations)
):
    """List revocations, optionally filtered by lifecycle state."""
    now = revocations.now()
    if status == "all":
        entries = revocations.list_all()
    else:
        try:
            state = RevocationState(status)
        except ValueError:
            raise InvalidArgument("status must be one of: all, active, pending, expired")
        entries = revocations.list_by_state(state, now)
    return EntryListResponse(
        count=len(entries),
        status=status,
        entries=[entry_payload(e, now) for e in entries],
    )


@router.get("/revocations/stats", response_model=StatsResponse)
async def revocation_stats(revocations: RevocationRegistry = Depends(get_revocations)):
    return StatsResponse(**revocations.stats().to_dict())


@router.get(
    "/revocations/uri/{uri:path}",
    response_model=EntryListResponse,
    response_model_exclude_none=True,
)
async def list_revocations_by_uri(
    uri: str, revocations: RevocationRegistry = Depends(get_revocations)
):
    now = revocations.now()
    entries = revocations.list_by_uri(uri)
    return EntryListResponse(
        uri=uri,
        count=len(entries),
        entries=[entry_payload(e, now) for e in entries],
    )


@router.post("/revocations/cleanup", response_model=CleanupResponse)
def cleanup_revocations(revocations: RevocationRegistry = Depends(get_revocations)):
    """Remove revocations whose effective window has passed."""
    removed = revocations.remove_expired()
    return CleanupResponse(
        message="Cleanup completed",
        removed_count=removed,
        remaining_count=len(revocations),
    )


# =============================================================================
# Gated Crypto Plane
# =============================================================================


@router.post("/delegate", response_model=DelegateResponse)
async def delegate(
    req: DelegateRequest,
    gate: KeyGate = Depends(get_gate),
    default_hierarchy: str = Depends(get_default_hierarchy),
):
    """Delegate a key, refusing keys under an active revocation."""
    hierarchy = req.hierarchy or default_hierarchy
    result = await gate.delegate(hierarchy, req.uri, req.start, req.end)
    return DelegateResponse(
        message="Key delegated successfully",
        fingerprint=result.fingerprint,
        data_b64=base64.b64encode(result.data).decode("ascii"),
        uri=req.uri,
        hierarchy=hierarchy,
        start=result.start,
        end=result.end,
        duration_us=result.duration_us,
    )


@router.post("/decrypt-gated", response_model=DecryptResponse)
async def decrypt_gated(
    req: DecryptRequest,
    gate: KeyGate = Depends(get_gate),
    default_hierarchy: str = Depends(get_default_hierarchy),
):
    """Decrypt, refusing keys under an active revocation."""
    hierarchy = req.hierarchy or default_hierarchy
    ciphertext = _decode_b64(req.ciphertext_b64, "ciphertext_b64")
    result = await gate.decrypt(
        hierarchy, req.uri, req.start, req.end, ciphertext, now=req.now
    )
    return DecryptResponse(
        fingerprint=result.fingerprint,
        plaintext_b64=base64.b64encode(result.plaintext).decode("ascii"),
        duration_us=result.duration_us,
    )


@router.get("/delegations", response_model=DelegationListResponse)
async def list_delegations(delegations: DelegationRegistry = Depends(get_delegations)):
    records = delegations.list()
    return DelegationListResponse(
        count=len(records), delegations=[r.to_dict() for r in records]
    )


@router.get("/delegations/{fingerprint}")
async def get_delegation(
    fingerprint: str, delegations: DelegationRegistry = Depends(get_delegations)
):
    record = delegations.get(normalize_fingerprint(fingerprint))
    if record is None:
        raise NotFound("delegation not found")
    return record.to_dict()


@router.get("/hibe-delegate-info/{fingerprint}")
async def delegate_info(
    fingerprint: str, revocations: RevocationRegistry = Depends(get_revocations)
):
    """Revocation status of a key in delegation terms."""
    fp = normalize_fingerprint(fingerprint)
    now = revocations.now()
    revoked, entry = revocations.check(fp, now)
    info: Dict[str, Any] = {
        "fingerprint": fp,
        "is_revoked": revoked,
        "status": "revoked" if revoked else "active",
    }
    if entry is not None:
        info["entry"] = entry_payload(entry, now)
    return info


@router.get("/health", response_model=HealthResponse)
async def health(
    revocations: RevocationRegistry = Depends(get_revocations),
    delegations: DelegationRegistry = Depends(get_delegations),
):
    return HealthResponse(
        status="ok",
        version=__version__,
        revocations=len(revocations),
        delegations=len(delegations),
    )


# =============================================================================
# Application Factory
# =============================================================================


async def sweep_expired(revocations: RevocationRegistry, interval: float) -> None:
    """Periodically remove expired revocations until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(revocations.remove_expired)
        except Exception as e:
            logger.error(f"Expired revocation sweep failed: {e}")


async def _revocation_error(request: Request, exc: RevocationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "InternalError", "detail": "internal server error"},
    )


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=InvalidArgument.status_code,
        content=InvalidArgument(f"Invalid request: {problems}").to_dict(),
    )


def create_app(
    revocations: Optional[RevocationRegistry] = None,
    delegations: Optional[DelegationRegistry] = None,
    provider: Optional[CryptoProvider] = None,
    sink: Optional[RevocationSink] = None,
    default_hierarchy: str = config.DEFAULT_HIERARCHY,
    crypto_timeout: Optional[float] = config.CRYPTO_TIMEOUT_SECONDS,
    sweep_interval: float = config.SWEEP_INTERVAL_SECONDS,
) -> FastAPI:
    """
    Build a gateway application with its own registries.

    Args:
        revocations: Revocation registry; built from ``sink`` (or the
            configured state file) when omitted.
        delegations: Delegation log; created over ``revocations`` when omitted.
        provider: Cryptographic provider; ``LocalCryptoProvider`` when omitted.
        sink: Durability sink used when ``revocations`` is not given.
        default_hierarchy: Hierarchy for crypto requests that omit one.
        crypto_timeout: Deadline in seconds for provider calls.
        sweep_interval: Seconds between expired-entry sweeps; 0 disables.
    """
    if revocations is None:
        if sink is None and config.STATE_FILE:
            sink = JSONFileRevocationSink(config.STATE_FILE)
        revocations = RevocationRegistry.from_sink(sink) if sink else RevocationRegistry()
    if delegations is None:
        delegations = DelegationRegistry(revocations)
    if provider is None:
        provider = LocalCryptoProvider(config.master_secret())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = None
        if sweep_interval > 0:
            logger.info(f"Sweeping expired revocations every {sweep_interval}s")
            sweeper = asyncio.create_task(sweep_expired(revocations, sweep_interval))
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with suppress(asyncio.CancelledError):
                    await sweeper

    app = FastAPI(
        title="HIBE Revocation Gateway",
        description="Revocation registry and gate for HIBE key delegation",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.revocations = revocations
    app.state.delegations = delegations
    app.state.gate = KeyGate(provider, revocations, delegations, default_timeout=crypto_timeout)
    app.state.default_hierarchy = default_hierarchy
    app.add_exception_handler(RevocationError, _revocation_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _unexpected_error)
    app.include_router(router)
    return app


app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================


def main(host: Optional[str] = None, port: Optional[int] = None):
    """Run the gateway."""
    import uvicorn

    host = host or config.HOST
    port = port or config.PORT
    logger.info(f"HIBE Revocation Gateway listening on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
