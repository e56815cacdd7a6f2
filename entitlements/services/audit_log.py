"""
Audit Log - Append-only record of reconciliation events.
"""

from collections.abc import Mapping
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.db.models import EntitlementAuditLog
from entitlements.models.api import AuditEventType

logger = get_logger(__name__)

# Key fragments that must never reach the audit trail
SENSITIVE_KEY_FRAGMENTS = ("token", "password", "secret", "credential")


def ensure_non_sensitive(data: Mapping[str, Any]) -> None:
    """
    Reject audit data carrying credential-like keys.

    Raises:
        ValueError: If any key looks like a token or credential
    """
    for key in data:
        lowered = key.lower()
        if any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS):
            raise ValueError(f"Audit data must not contain sensitive field: {key}")


class AuditLog(Protocol):
    """Write-only audit recorder."""

    async def append(
        self,
        user_id: str,
        event_type: AuditEventType,
        data: Mapping[str, Any],
    ) -> None:
        """Record one event."""
        ...


class SqlAuditLog:
    """
    AuditLog backed by the entitlement_audit_logs table.

    Shares the entitlement store's session so the event commits in the same
    transaction as the entitlement write.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize audit log with database session."""
        self.session = session

    async def append(
        self,
        user_id: str,
        event_type: AuditEventType,
        data: Mapping[str, Any],
    ) -> None:
        """Stage an audit row and flush it so constraint errors surface before commit."""
        ensure_non_sensitive(data)

        entry = EntitlementAuditLog(
            user_id=user_id,
            event_type=event_type.value,
            data=dict(data),
        )
        self.session.add(entry)
        await self.session.flush()

        logger.debug("audit_event_appended", user_id=user_id, event_type=event_type.value)
