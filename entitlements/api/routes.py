"""
API Routes - FastAPI endpoints for subscription entitlements.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

import hmac
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.api.dependencies import get_authenticated_caller, get_reconciliation_service
from entitlements.config import settings
from entitlements.db.session import get_write_db
from entitlements.exceptions import (
    InternalError,
    InvalidArgumentError,
    NotificationDecodeError,
    UnauthenticatedError,
)
from entitlements.models.api import (
    HealthResponse,
    NotificationAckResponse,
    RestorePurchaseRequest,
    SubscriptionStatusResponse,
    VerifyPurchaseRequest,
)
from entitlements.models.domain import CallerIdentity, VerificationResult
from entitlements.services.reconciliation import ReconciliationService

logger = get_logger(__name__)

router = APIRouter()


def _status_response(result: VerificationResult) -> SubscriptionStatusResponse:
    return SubscriptionStatusResponse(
        success=True,
        state=result.state,
        has_premium_access=result.has_premium_access,
        expiry_date=result.expiry_date.isoformat() if result.expiry_date else None,
    )


def _http_error(exc: UnauthenticatedError | InvalidArgumentError | InternalError) -> HTTPException:
    """Map a caller-facing flow error to its HTTP status."""
    if isinstance(exc, UnauthenticatedError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, InvalidArgumentError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)


# =============================================================================
# Subscription Endpoints (Google ID token auth)
# =============================================================================


@router.post(
    "/v1/subscriptions/verify",
    response_model=SubscriptionStatusResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
)
async def verify_subscription(
    request: VerifyPurchaseRequest,
    caller: CallerIdentity = Depends(get_authenticated_caller),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> SubscriptionStatusResponse:
    """
    Verify a Google Play subscription purchase for the signed-in user.

    Flow:
    1. App completes the purchase via Google Play Billing Library
    2. App calls this endpoint with the product ID and purchase token
    3. Backend fetches the subscription from the Google Play Developer API
    4. Backend derives the entitlement and stores it for the caller

    Idempotent: repeating the call re-derives and rewrites the same state.

    Auth: Bearer {google_id_token}
    """
    try:
        result = await service.verify_purchase(
            caller,
            product_id=request.product_id,
            purchase_token=request.purchase_token,
            package_name=request.package_name,
        )
    except (UnauthenticatedError, InvalidArgumentError, InternalError) as exc:
        raise _http_error(exc) from exc

    return _status_response(result)


@router.post(
    "/v1/subscriptions/restore",
    response_model=SubscriptionStatusResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
)
async def restore_subscription(
    request: RestorePurchaseRequest,
    caller: CallerIdentity = Depends(get_authenticated_caller),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> SubscriptionStatusResponse:
    """
    Restore a previously purchased subscription onto the signed-in user.

    Used after reinstall or on a new device, with a token from the Play
    Billing Library's purchase history.

    Auth: Bearer {google_id_token}
    """
    try:
        result = await service.restore_purchase(
            caller,
            product_id=request.product_id,
            purchase_token=request.purchase_token,
        )
    except (UnauthenticatedError, InvalidArgumentError, InternalError) as exc:
        raise _http_error(exc) from exc

    return _status_response(result)


# =============================================================================
# Google Play Real-Time Developer Notifications
# =============================================================================


@router.post("/v1/webhooks/google-play", response_model=NotificationAckResponse)
async def google_play_webhook(
    request: Request,
    token: str | None = None,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> NotificationAckResponse:
    """
    Handle Google Play Real-Time Developer Notifications (Pub/Sub push).

    The notification only signals a change; the subscription is always
    re-fetched from Google Play before the entitlement is updated.

    Pub/Sub redelivers on any non-2xx response, so failures surface as
    errors instead of being acknowledged.

    Auth: ?token= shared secret when RTDN_PUSH_TOKEN is configured
    """
    if settings.rtdn_push_token and not hmac.compare_digest(
        (token or "").encode(), settings.rtdn_push_token.encode()
    ):
        logger.warning("rtdn_push_token_mismatch")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid push token",
        )

    payload = await request.body()

    try:
        outcome = await service.handle_notification(payload)

    except NotificationDecodeError as exc:
        logger.error("rtdn_payload_rejected", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid notification payload",
        ) from exc

    except Exception as exc:
        logger.exception("rtdn_handling_failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Notification processing failed",
        ) from exc

    return NotificationAckResponse(status=outcome)


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_write_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        logger.error("health_check_failed", error_type=type(exc).__name__, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
