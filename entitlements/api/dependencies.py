"""
FastAPI Dependencies - Caller authentication and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

import asyncio
import hashlib
import time
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.config import settings
from entitlements.db.session import get_write_db
from entitlements.exceptions import UnauthenticatedError
from entitlements.models.domain import CallerIdentity
from entitlements.services.audit_log import SqlAuditLog
from entitlements.services.billing_gateway import BillingGateway
from entitlements.services.entitlement_store import SqlEntitlementStore
from entitlements.services.google_play_provider import GooglePlayProvider
from entitlements.services.reconciliation import ReconciliationService

logger = get_logger(__name__)

# ============================================================================
# Caller Authentication (Google ID tokens from the mobile client)
# ============================================================================

# Bearer token scheme; a missing header is rejected by get_authenticated_caller
bearer_scheme = HTTPBearer(auto_error=False)

# Verified ID tokens keyed by SHA-256: digest -> (user_id, email, expiry_timestamp)
_google_token_cache: dict[str, tuple[str, str | None, float]] = {}
_MAX_CACHE_SIZE = 10000


def _cleanup_google_token_cache() -> None:
    """Remove expired entries once the cache is full."""
    if len(_google_token_cache) < _MAX_CACHE_SIZE:
        return

    now = time.time()
    expired = [k for k, (_, _, exp) in _google_token_cache.items() if exp < now]
    for k in expired:
        del _google_token_cache[k]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_google_id_token(token: str, client_ids: list[str]) -> CallerIdentity:
    """
    Verify a Google ID token against each accepted client ID.

    Android tokens carry the web client ID as audience, so every configured
    ID is tried until one matches.

    Raises:
        HTTPException: 401 if the token is invalid for every client ID
    """
    last_error: str | None = None

    for client_id in client_ids:
        try:
            idinfo = id_token.verify_oauth2_token(  # type: ignore[no-untyped-call]
                token,
                google_requests.Request(),  # type: ignore[no-untyped-call]
                client_id,
            )
        except ValueError as e:
            last_error = str(e)
            # Audience mismatch: try the next client ID
            if "audience" in last_error.lower():
                continue
            break

        user_id = idinfo.get("sub")
        if not user_id:
            raise _unauthorized("Invalid token: missing user ID")

        return CallerIdentity(user_id=user_id, email=idinfo.get("email"))

    logger.warning(
        "google_token_validation_failed",
        client_ids_count=len(client_ids),
        error=last_error,
    )
    if last_error and "audience" in last_error.lower():
        raise _unauthorized("Invalid token audience. Token not issued for this application.")
    raise _unauthorized("Invalid Google ID token")


async def get_optional_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CallerIdentity | None:
    """
    FastAPI dependency resolving the caller from a Google ID token.

    Accepts: Authorization: Bearer {google_id_token}

    Returns:
        CallerIdentity (user_id is the token's sub claim), or None when no
        credentials were sent so the flow can reject it as unauthenticated

    Raises:
        HTTPException 401 if a token was sent and is invalid
        HTTPException 500 if no client IDs are configured
    """
    if credentials is None:
        return None

    token = credentials.credentials
    cache_key = hashlib.sha256(token.encode()).hexdigest()

    cached = _google_token_cache.get(cache_key)
    if cached is not None:
        user_id, email, expiry = cached
        if time.time() < expiry:
            return CallerIdentity(user_id=user_id, email=email)
        del _google_token_cache[cache_key]

    valid_client_ids = settings.valid_google_client_ids
    if not valid_client_ids:
        logger.error("google_client_ids_not_configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server misconfiguration: no Google client IDs configured",
        )

    # Certificate fetch inside verify_oauth2_token is blocking
    caller = await asyncio.to_thread(verify_google_id_token, token, valid_client_ids)

    _cleanup_google_token_cache()
    _google_token_cache[cache_key] = (caller.user_id, caller.email, time.time() + 300)

    return caller


async def get_authenticated_caller(
    caller: CallerIdentity | None = Depends(get_optional_caller),
) -> CallerIdentity:
    """
    FastAPI dependency requiring a caller.

    Declared ahead of the service dependency so an anonymous request is
    rejected before any billing or database wiring is resolved.

    Raises:
        HTTPException 401 if no credentials were sent
    """
    if caller is None:
        logger.warning("caller_not_authenticated")
        raise _unauthorized(UnauthenticatedError().message)
    return caller


# ============================================================================
# Service Wiring
# ============================================================================


@lru_cache
def _build_google_play_provider(service_account_json: str) -> GooglePlayProvider:
    return GooglePlayProvider(service_account_json=service_account_json)


def get_billing_gateway() -> BillingGateway:
    """
    FastAPI dependency returning the process-wide Google Play client.

    Raises:
        HTTPException 503 if no service account is configured
    """
    if not settings.google_play_service_account_json:
        logger.error("google_play_not_configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google Play provider not configured",
        )
    return _build_google_play_provider(settings.google_play_service_account_json)


async def get_reconciliation_service(
    db: AsyncSession = Depends(get_write_db),
    gateway: BillingGateway = Depends(get_billing_gateway),
) -> ReconciliationService:
    """
    FastAPI dependency building a request-scoped reconciliation service.

    Store, audit log and transaction share the request's session.
    """
    return ReconciliationService(
        gateway=gateway,
        store=SqlEntitlementStore(db),
        audit_log=SqlAuditLog(db),
        transaction=db,
        settings=settings,
    )
