"""
Google Play Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.
"""

import asyncio
import base64
import binascii
import json
from typing import Any

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from structlog import get_logger

from entitlements.exceptions import BillingProviderError, NotificationDecodeError
from entitlements.models.google_play import RawSubscriptionRecord, SubscriptionNotification

logger = get_logger(__name__)

ANDROID_PUBLISHER_SCOPE = "https://www.googleapis.com/auth/androidpublisher"


class GooglePlayProvider:
    """
    Google Play Developer API billing gateway.

    Fetches subscription state with purchases.subscriptions.get and decodes
    Real-Time Developer Notifications.
    """

    def __init__(self, service_account_json: str | dict[str, str]) -> None:
        """
        Initialize Google Play provider.

        Args:
            service_account_json: Path to a service account JSON file, the raw
                JSON document, or an already-parsed dict with credentials
        """
        if isinstance(service_account_json, str) and service_account_json.lstrip().startswith(
            "{"
        ):
            service_account_json = json.loads(service_account_json)

        if isinstance(service_account_json, str):
            self.credentials = service_account.Credentials.from_service_account_file(  # type: ignore[no-untyped-call]
                service_account_json,
                scopes=[ANDROID_PUBLISHER_SCOPE],
            )
        else:
            self.credentials = service_account.Credentials.from_service_account_info(  # type: ignore[no-untyped-call]
                service_account_json,
                scopes=[ANDROID_PUBLISHER_SCOPE],
            )

        self.service = build(
            "androidpublisher", "v3", credentials=self.credentials, cache_discovery=False
        )

        logger.info("google_play_provider_initialized")

    async def get_subscription(
        self,
        package_name: str,
        product_id: str,
        purchase_token: str,
    ) -> RawSubscriptionRecord:
        """
        Fetch a subscription purchase from Google Play.

        Args:
            package_name: Android package name
            product_id: Subscription ID
            purchase_token: Purchase token from the client or the RTDN

        Returns:
            Raw subscription record

        Raises:
            BillingProviderError: If the query fails
        """
        try:
            logger.info(
                "fetching_google_play_subscription",
                product_id=product_id,
                package_name=package_name,
            )

            request = (
                self.service.purchases()
                .subscriptions()
                .get(
                    packageName=package_name,
                    subscriptionId=product_id,
                    token=purchase_token,
                )
            )
            # The discovery client is blocking
            result: dict[str, Any] = await asyncio.to_thread(request.execute)

            record = RawSubscriptionRecord.from_api_response(result)

            logger.info(
                "google_play_subscription_fetched",
                product_id=product_id,
                payment_state=record.payment_state,
                cancel_reason=record.cancel_reason,
                expiry_time_millis=record.expiry_time_millis,
            )
            return record

        except HttpError as exc:
            error_content = exc.content.decode("utf-8") if exc.content else str(exc)
            logger.error(
                "google_play_subscription_fetch_failed",
                product_id=product_id,
                status=exc.resp.status,
                error=error_content,
            )

            if exc.resp.status == 404:
                raise BillingProviderError(
                    "Subscription not found or invalid token", status=404
                ) from exc
            elif exc.resp.status == 410:
                raise BillingProviderError("Purchase token expired", status=410) from exc
            else:
                raise BillingProviderError(
                    f"Google Play API error: {error_content}", status=exc.resp.status
                ) from exc

        except Exception as exc:
            logger.exception("google_play_subscription_fetch_unexpected_error")
            raise BillingProviderError(f"Subscription fetch failed: {exc}") from exc

    @staticmethod
    def decode_notification(payload: bytes) -> SubscriptionNotification | None:
        """
        Decode a Pub/Sub push envelope carrying a Real-Time Developer Notification.

        Args:
            payload: Raw push body ({"message": {"data": <base64>, "messageId": ...}})

        Returns:
            The subscription notification, or None for any other category
            (one-time product, voided purchase, test notification)

        Raises:
            NotificationDecodeError: If the envelope or its data cannot be decoded
        """
        try:
            envelope = json.loads(payload)
            message = envelope.get("message") or {}

            message_data = message.get("data")
            if not message_data:
                raise NotificationDecodeError("No message data in push envelope")

            notification = json.loads(base64.b64decode(message_data).decode("utf-8"))
            if not isinstance(notification, dict):
                raise NotificationDecodeError("Notification is not a JSON object")

            subscription_notification = notification.get("subscriptionNotification")
            if not subscription_notification:
                logger.info(
                    "rtdn_non_subscription_notification",
                    package_name=notification.get("packageName"),
                    is_test=bool(notification.get("testNotification")),
                )
                return None

            return SubscriptionNotification(
                message_id=str(message.get("messageId") or message.get("message_id") or ""),
                package_name=notification.get("packageName", ""),
                subscription_id=subscription_notification.get("subscriptionId", ""),
                purchase_token=subscription_notification.get("purchaseToken", ""),
                notification_type=int(subscription_notification.get("notificationType", 0)),
                event_time_millis=int(notification.get("eventTimeMillis", 0)),
            )

        except NotificationDecodeError:
            raise
        except json.JSONDecodeError as exc:
            logger.error("rtdn_invalid_json", error=str(exc))
            raise NotificationDecodeError("Invalid JSON payload") from exc
        except (AttributeError, TypeError, ValueError, binascii.Error) as exc:
            logger.error("rtdn_decode_failed", error_type=type(exc).__name__)
            raise NotificationDecodeError(f"Malformed notification: {type(exc).__name__}") from exc
