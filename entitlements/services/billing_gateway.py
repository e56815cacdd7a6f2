"""
Billing Gateway Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from typing import Protocol

from entitlements.models.google_play import RawSubscriptionRecord, SubscriptionNotification


class BillingGateway(Protocol):
    """
    Billing gateway protocol.

    The reconciliation flows only need the provider's current view of a
    subscription. Timeouts and retries for this call belong to the
    implementation, not to its callers.
    """

    async def get_subscription(
        self,
        package_name: str,
        product_id: str,
        purchase_token: str,
    ) -> RawSubscriptionRecord:
        """
        Fetch the authoritative subscription record.

        Args:
            package_name: Application package the purchase belongs to
            product_id: Subscription product ID
            purchase_token: Opaque purchase token issued by the provider

        Returns:
            Raw subscription record, fetched fresh

        Raises:
            BillingProviderError: If the provider query fails
        """
        ...

    def decode_notification(self, payload: bytes) -> SubscriptionNotification | None:
        """
        Decode a push delivery into a subscription notification.

        Returns None for notification categories other than subscriptions.

        Raises:
            NotificationDecodeError: If the payload cannot be decoded
        """
        ...
