#!/usr/bin/env python3
"""
Replay a Google Play Real-Time Developer Notification.

Runs a saved notification through the same handler as the push endpoint,
for recovering from deliveries that Pub/Sub gave up on. Safe to run more
than once: the entitlement converges and each run adds one audit row.

Usage:
  # Replay a saved Pub/Sub push body
  python3 scripts/replay_rtdn.py envelope.json

  # Replay a bare RTDN (the decoded "data" object)
  python3 scripts/replay_rtdn.py --raw notification.json
"""

import argparse
import asyncio
import base64
import json
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from entitlements.config import settings
from entitlements.db.session import close_engines, get_write_session
from entitlements.exceptions import NotificationDecodeError
from entitlements.observability.logging import setup_logging
from entitlements.services.audit_log import SqlAuditLog
from entitlements.services.entitlement_store import SqlEntitlementStore
from entitlements.services.google_play_provider import GooglePlayProvider
from entitlements.services.reconciliation import ReconciliationService

logger = structlog.get_logger()


def wrap_notification(notification: bytes, message_id: str = "replay") -> bytes:
    """Wrap a bare RTDN into a Pub/Sub push envelope."""
    envelope = {
        "message": {
            "data": base64.b64encode(notification).decode("ascii"),
            "messageId": message_id,
        },
        "subscription": "replay",
    }
    return json.dumps(envelope).encode()


async def replay(payload: bytes) -> str:
    """Handle one push payload against the configured database and Google Play."""
    gateway = GooglePlayProvider(service_account_json=settings.google_play_service_account_json)

    try:
        async with get_write_session() as session:
            service = ReconciliationService(
                gateway=gateway,
                store=SqlEntitlementStore(session),
                audit_log=SqlAuditLog(session),
                transaction=session,
                settings=settings,
            )
            outcome = await service.handle_notification(payload)
    finally:
        await close_engines()

    return outcome.value


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Replay a Google Play RTDN through the entitlement handler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("path", type=Path, help="JSON file with the push body or the bare RTDN")
    parser.add_argument(
        "--raw",
        action="store_true",
        help="File holds the decoded RTDN rather than a Pub/Sub push body",
    )
    args = parser.parse_args()

    if not settings.google_play_service_account_json:
        print("GOOGLE_PLAY_SERVICE_ACCOUNT_JSON is not configured", file=sys.stderr)
        sys.exit(2)

    setup_logging()

    payload = args.path.read_bytes()
    if args.raw:
        payload = wrap_notification(payload, message_id=f"replay-{args.path.stem}")

    try:
        outcome = asyncio.run(replay(payload))
    except NotificationDecodeError as exc:
        logger.error("rtdn_replay_rejected", error=exc.message)
        sys.exit(1)

    logger.info("rtdn_replay_complete", outcome=outcome)


if __name__ == "__main__":
    main()
