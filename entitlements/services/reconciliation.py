"""
Reconciliation Service - Keeps stored entitlements in line with Google Play.

NO DICTIONARIES - All operations use strongly typed domain models.

Three flows share one pipeline:
1. Fetch the authoritative record from the billing gateway
2. Derive the canonical state (pure)
3. Write the entitlement document
4. Append an audit event
5. Commit both writes together

Verify and restore run on behalf of an authenticated caller and turn any
pipeline failure into a caller-safe InternalError. The notification flow has
no caller; it re-raises so the push channel redelivers.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from structlog import get_logger

from entitlements.config import Settings
from entitlements.exceptions import (
    EntitlementError,
    InternalError,
    InvalidArgumentError,
    UnauthenticatedError,
)
from entitlements.models.api import AuditEventType, NotificationOutcome
from entitlements.models.domain import CallerIdentity, DerivedEntitlement, VerificationResult
from entitlements.observability.metrics import metrics
from entitlements.observability.tracing import add_span_attributes, trace_operation
from entitlements.services.audit_log import AuditLog
from entitlements.services.billing_gateway import BillingGateway
from entitlements.services.entitlement_store import EntitlementStore
from entitlements.services.state_deriver import derive

logger = get_logger(__name__)

VERIFY_FAILED_MESSAGE = "Failed to verify purchase. Please try again."
RESTORE_FAILED_MESSAGE = "Failed to restore purchases"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Transaction(Protocol):
    """Unit of work spanning the entitlement write and the audit append."""

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class ReconciliationService:
    """
    Orchestrates verify, restore and push-notification reconciliation.

    All collaborators are injected; nothing here reaches for module-level
    state except metrics.
    """

    def __init__(
        self,
        gateway: BillingGateway,
        store: EntitlementStore,
        audit_log: AuditLog,
        transaction: Transaction,
        settings: Settings,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize reconciliation service with its collaborators."""
        self.gateway = gateway
        self.store = store
        self.audit_log = audit_log
        self.transaction = transaction
        self.settings = settings
        self.clock = clock

    # ========================================================================
    # Caller-initiated flows
    # ========================================================================

    async def verify_purchase(
        self,
        caller: CallerIdentity | None,
        product_id: str,
        purchase_token: str,
        package_name: str | None = None,
    ) -> VerificationResult:
        """
        Verify a new purchase and establish the caller's entitlement.

        Args:
            caller: Authenticated caller; the write target is always its user_id
            product_id: Subscription product ID from the client
            purchase_token: Purchase token from the client
            package_name: Optional package override; defaults to the configured one

        Returns:
            Minimized verification result

        Raises:
            UnauthenticatedError: If there is no caller
            InvalidArgumentError: If a field is empty or the product is not allowed
            InternalError: If fetching, deriving or persisting fails
        """
        return await self._reconcile_for_caller(
            flow="verify",
            event_type=AuditEventType.VERIFIED,
            failure_message=VERIFY_FAILED_MESSAGE,
            caller=caller,
            product_id=product_id,
            purchase_token=purchase_token,
            package_name=package_name or self.settings.default_package_name,
        )

    async def restore_purchase(
        self,
        caller: CallerIdentity | None,
        product_id: str,
        purchase_token: str,
    ) -> VerificationResult:
        """
        Re-establish an entitlement from a previously made purchase.

        Same contract as verify_purchase, always against the configured
        default package name.
        """
        return await self._reconcile_for_caller(
            flow="restore",
            event_type=AuditEventType.RESTORED,
            failure_message=RESTORE_FAILED_MESSAGE,
            caller=caller,
            product_id=product_id,
            purchase_token=purchase_token,
            package_name=self.settings.default_package_name,
        )

    def _validate_request(
        self, caller: CallerIdentity | None, product_id: str, purchase_token: str
    ) -> CallerIdentity:
        """Authorization and argument checks; nothing external is touched."""
        if caller is None:
            raise UnauthenticatedError()

        if not product_id.strip() or not purchase_token.strip():
            raise InvalidArgumentError("productId and purchaseToken are required")

        if product_id not in self.settings.allowed_products:
            raise InvalidArgumentError("Invalid product ID")

        return caller

    async def _reconcile_for_caller(
        self,
        flow: str,
        event_type: AuditEventType,
        failure_message: str,
        caller: CallerIdentity | None,
        product_id: str,
        purchase_token: str,
        package_name: str,
    ) -> VerificationResult:
        start = time.perf_counter()

        try:
            identity = self._validate_request(caller, product_id, purchase_token)
        except (UnauthenticatedError, InvalidArgumentError) as exc:
            logger.warning(
                f"{flow}_rejected",
                reason=exc.message,
                user_id=caller.user_id if caller else None,
                product_id=product_id or None,
            )
            metrics.record_reconciliation(flow, "rejected", time.perf_counter() - start)
            raise

        with trace_operation(
            f"{flow}_purchase", user_id=identity.user_id, product_id=product_id
        ) as span:
            try:
                entitlement = await self._fetch_and_derive(package_name, product_id, purchase_token)
                await self.store.upsert_merge(identity.user_id, entitlement, purchase_token)
                await self.audit_log.append(
                    identity.user_id,
                    event_type,
                    {"product_id": product_id, "state": entitlement.state.value},
                )
                await self.transaction.commit()

            except Exception as exc:
                await self.transaction.rollback()
                logger.error(
                    f"{flow}_failed",
                    user_id=identity.user_id,
                    product_id=product_id,
                    error_type=type(exc).__name__,
                    provider_status=getattr(exc, "status", None),
                )
                metrics.record_error(type(exc).__name__, flow)
                metrics.record_reconciliation(flow, "failed", time.perf_counter() - start)
                raise InternalError(failure_message) from exc

            add_span_attributes(span, state=entitlement.state.value)

        metrics.record_reconciliation(flow, "succeeded", time.perf_counter() - start)
        logger.info(
            f"subscription_{event_type.value}",
            user_id=identity.user_id,
            product_id=product_id,
            state=entitlement.state.value,
            has_premium_access=entitlement.has_premium_access,
        )
        return VerificationResult.from_entitlement(entitlement)

    # ========================================================================
    # Push notification flow
    # ========================================================================

    async def handle_notification(self, payload: bytes) -> NotificationOutcome:
        """
        Reconcile the entitlement referenced by a Real-Time Developer Notification.

        The notification only says that something changed; the state is always
        re-fetched from the billing gateway. Safe to re-invoke with the same
        payload: the document converges and each delivery adds one audit row.

        Args:
            payload: Raw Pub/Sub push body

        Returns:
            PROCESSED, IGNORED (not a subscription notification) or
            NO_MATCHING_USER (token unknown to the store)

        Raises:
            NotificationDecodeError: If the payload cannot be decoded
            Exception: Any other failure, unchanged, after rollback
        """
        start = time.perf_counter()

        try:
            notification = self.gateway.decode_notification(payload)
        except EntitlementError:
            metrics.record_reconciliation("rtdn", "undecodable", time.perf_counter() - start)
            raise

        if notification is None:
            metrics.record_reconciliation(
                "rtdn", NotificationOutcome.IGNORED.value, time.perf_counter() - start
            )
            return NotificationOutcome.IGNORED

        logger.info(
            "rtdn_received",
            message_id=notification.message_id,
            notification_type=notification.notification_type,
            notification_event=notification.event_name,
            subscription_id=notification.subscription_id,
        )

        with trace_operation(
            "handle_notification",
            subscription_id=notification.subscription_id,
            notification_type=notification.notification_type,
        ) as span:
            try:
                user_id = await self.store.find_user_by_token(notification.purchase_token)
                if user_id is None:
                    logger.warning(
                        "rtdn_no_matching_user",
                        message_id=notification.message_id,
                        subscription_id=notification.subscription_id,
                    )
                    metrics.record_reconciliation(
                        "rtdn",
                        NotificationOutcome.NO_MATCHING_USER.value,
                        time.perf_counter() - start,
                    )
                    return NotificationOutcome.NO_MATCHING_USER

                entitlement = await self._fetch_and_derive(
                    self.settings.default_package_name,
                    notification.subscription_id,
                    notification.purchase_token,
                )
                await self.store.update(user_id, entitlement)
                await self.audit_log.append(
                    user_id,
                    AuditEventType.RTDN_PROCESSED,
                    {
                        "notification_type": notification.notification_type,
                        "notification_event": notification.event_name,
                        "subscription_id": notification.subscription_id,
                        "new_state": entitlement.state.value,
                    },
                )
                await self.transaction.commit()

            except Exception as exc:
                await self.transaction.rollback()
                logger.error(
                    "rtdn_processing_failed",
                    message_id=notification.message_id,
                    subscription_id=notification.subscription_id,
                    error_type=type(exc).__name__,
                    provider_status=getattr(exc, "status", None),
                )
                metrics.record_error(type(exc).__name__, "rtdn")
                metrics.record_reconciliation("rtdn", "failed", time.perf_counter() - start)
                raise

            add_span_attributes(span, user_id=user_id, state=entitlement.state.value)

        metrics.record_reconciliation(
            "rtdn", NotificationOutcome.PROCESSED.value, time.perf_counter() - start
        )
        logger.info(
            "rtdn_processed",
            user_id=user_id,
            subscription_id=notification.subscription_id,
            notification_event=notification.event_name,
            new_state=entitlement.state.value,
        )
        return NotificationOutcome.PROCESSED

    # ========================================================================
    # Shared pipeline
    # ========================================================================

    async def _fetch_and_derive(
        self, package_name: str, product_id: str, purchase_token: str
    ) -> DerivedEntitlement:
        """Fetch a fresh record and derive the entitlement as of now."""
        fetch_start = time.perf_counter()
        try:
            record = await self.gateway.get_subscription(package_name, product_id, purchase_token)
        except Exception:
            metrics.record_billing_fetch(False, time.perf_counter() - fetch_start)
            raise
        metrics.record_billing_fetch(True, time.perf_counter() - fetch_start)

        entitlement = derive(record, product_id, self.clock())
        metrics.record_derived_state(entitlement.state.value)
        return entitlement
