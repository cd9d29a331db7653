"""Audit service: append-only event log.

Bill writes go through ``log_bill_event`` so every bill event carries the
same entity type and a fixed action name. Nothing here updates or deletes.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tally.models.audit import AuditLogEvent

BILL_ENTITY = "RecurringBill"

# event_type -> action
BILL_EVENTS = {
    "bill.created": "create",
    "bill.updated": "update",
    "bill.deleted": "delete",
    "bill.payment_recorded": "record_payment",
    "bill.paid": "create_transaction_from_bill",
}


async def log_event(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    event_type: str,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    detail: dict | None = None,
    ip_address: str | None = None,
) -> AuditLogEvent:
    event = AuditLogEvent(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        detail=detail,
        ip_address=ip_address,
    )
    db.add(event)
    await db.flush()
    return event


async def log_bill_event(
    db: AsyncSession,
    event_type: str,
    *,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
    detail: dict | None = None,
    ip_address: str | None = None,
) -> AuditLogEvent:
    """Record a bill or payment write. Unknown event types are a programming error."""
    action = BILL_EVENTS.get(event_type)
    if action is None:
        raise ValueError(f"Unknown bill event '{event_type}'")
    return await log_event(
        db,
        user_id=user_id,
        event_type=event_type,
        entity_type=BILL_ENTITY,
        entity_id=bill_id,
        action=action,
        detail=detail,
        ip_address=ip_address,
    )


async def get_bill_history(
    db: AsyncSession,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
) -> list[AuditLogEvent]:
    """Every event of one bill, oldest first. Survives deletion of the bill."""
    result = await db.execute(
        select(AuditLogEvent)
        .where(
            AuditLogEvent.user_id == user_id,
            AuditLogEvent.entity_type == BILL_ENTITY,
            AuditLogEvent.entity_id == bill_id,
        )
        .order_by(AuditLogEvent.timestamp.asc())
    )
    return list(result.scalars().all())
