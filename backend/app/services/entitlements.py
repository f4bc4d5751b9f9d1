"""Application wiring for the entitlement service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ..billing import (
    PaymentVerifier,
    create_payment_gateway,
    load_payment_config,
)
from ..entitlements import EntitlementAuditEvent, EntitlementAuditEventType, PriceTable
from ..entitlements.repository import PostgresEntitlementRepository
from ..entitlements.service import EntitlementEventLogger, EntitlementService


logger = logging.getLogger("entitlements")

_WARNING_EVENTS = {EntitlementAuditEventType.PAYMENT_VERIFICATION_FAILED}


class LoggingEntitlementEventLogger(EntitlementEventLogger):
    """Forwards entitlement audit events to the application logger."""

    def log(self, event: EntitlementAuditEvent) -> None:
        level = logging.WARNING if event.event_type in _WARNING_EVENTS else logging.INFO
        logger.log(
            level,
            "Entitlement event %s user=%s metadata=%s",
            event.event_type.value,
            event.user_id,
            event.metadata,
            extra={"audit_event": event.event_type.value, "user_id": event.user_id},
        )


@lru_cache(maxsize=1)
def get_entitlement_service() -> EntitlementService:
    config = load_payment_config()
    if not config.is_configured:
        logger.warning("Razorpay credentials are not set; payment endpoints will fail")
    service = EntitlementService(
        repository=PostgresEntitlementRepository(),
        verifier=PaymentVerifier(config.key_secret),
        gateway=create_payment_gateway(config),
        price_table=PriceTable(currency=config.currency),
        payment_config=config,
        event_logger=LoggingEntitlementEventLogger(),
    )
    return service


__all__ = ["get_entitlement_service", "LoggingEntitlementEventLogger"]
