"""
Transactional outbox for calendar mirroring and notifications.

Core transitions queue OutboxMessage rows inside their own transaction; this
module delivers them afterwards. Delivery failures are recorded on the row and
retried by the worker until OUTBOX_MAX_ATTEMPTS, then the message is dead.
A failed delivery never undoes the transition that queued it.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import OUTBOX_BATCH_SIZE, OUTBOX_MAX_ATTEMPTS
from ..models import OutboxMessage, ShiftAssignment
from ..models_calendar import CalendarIntegration, CalendarMirror
from ..shared.timeutils import utcnow
from . import google_calendar_service, notification_service

logger = logging.getLogger(__name__)

CALENDAR_CREATE = "calendar.create"
CALENDAR_DELETE = "calendar.delete"
NOTIFICATION = "notification"

# A claim older than this is assumed abandoned (worker crash) and can be retried
CLAIM_TIMEOUT = timedelta(minutes=10)


def queue_message(
    db: Session,
    kind: str,
    aggregate_type: str,
    aggregate_id: int,
    payload: dict,
    user_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> OutboxMessage:
    """Add a message to the caller's transaction. Does not commit."""
    message = OutboxMessage(
        kind=kind,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        user_id=user_id,
        payload=payload,
        status="pending",
        attempts=0,
        created_at=now or utcnow(),
    )
    db.add(message)
    db.flush()
    return message


def queue_notification(
    db: Session,
    user_id: int,
    message: str,
    metadata: dict,
    aggregate_type: str,
    aggregate_id: int,
    now: Optional[datetime] = None,
) -> OutboxMessage:
    return queue_message(
        db,
        NOTIFICATION,
        aggregate_type,
        aggregate_id,
        {"message": message, "metadata": metadata},
        user_id=user_id,
        now=now,
    )


def supersede_undelivered(db: Session, kind: str, aggregate_type: str, aggregate_id: int) -> int:
    """Stop delivery of messages that no longer apply. Does not commit."""
    return (
        db.query(OutboxMessage)
        .filter(
            OutboxMessage.kind == kind,
            OutboxMessage.aggregate_type == aggregate_type,
            OutboxMessage.aggregate_id == aggregate_id,
            OutboxMessage.status.in_(("pending", "failed")),
        )
        .update({OutboxMessage.status: "superseded"}, synchronize_session=False)
    )


class OutboxDispatcher:
    """Delivers queued outbox messages to the calendar provider and notification API"""

    def __init__(self, db: Session, max_attempts: int = OUTBOX_MAX_ATTEMPTS):
        self.db = db
        self.max_attempts = max_attempts

    def _claim(self, message_id: int, now: datetime) -> Optional[OutboxMessage]:
        """Atomically take a deliverable message so two workers never send it twice"""
        claimed = (
            self.db.query(OutboxMessage)
            .filter(
                OutboxMessage.id == message_id,
                or_(
                    OutboxMessage.status.in_(("pending", "failed")),
                    (OutboxMessage.status == "delivering") & (OutboxMessage.claimed_at < now - CLAIM_TIMEOUT),
                ),
            )
            .update(
                {
                    OutboxMessage.status: "delivering",
                    OutboxMessage.claimed_at: now,
                    OutboxMessage.attempts: OutboxMessage.attempts + 1,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        if not claimed:
            return None
        return self.db.query(OutboxMessage).filter(OutboxMessage.id == message_id).first()

    async def _handle_calendar_create(self, message: OutboxMessage) -> str:
        payload = message.payload or {}
        assignment = (
            self.db.query(ShiftAssignment).filter(ShiftAssignment.id == message.aggregate_id).first()
        )
        if assignment is None or assignment.status == "cancelled":
            return "superseded"

        integration = (
            self.db.query(CalendarIntegration)
            .filter(CalendarIntegration.id == payload.get("integration_id"))
            .first()
        )
        if integration is None or not integration.sync_enabled:
            logger.info(f"ℹ️ Calendar integration {payload.get('integration_id')} gone or disabled, skipping")
            return "superseded"

        event_data = google_calendar_service.build_shift_event(
            payload.get("title", "Shift"),
            datetime.fromisoformat(payload["starts_at"]),
            datetime.fromisoformat(payload["ends_at"]),
            payload.get("location"),
        )
        event_id = await google_calendar_service.create_shift_event(integration, event_data, self.db)
        self.db.add(
            CalendarMirror(
                shift_assignment_id=message.aggregate_id,
                integration_id=integration.id,
                external_event_id=event_id,
            )
        )

        # Cancelled while the event was being created: remove it again
        self.db.refresh(assignment)
        if assignment.status == "cancelled":
            queue_message(
                self.db,
                CALENDAR_DELETE,
                "shift_assignment",
                assignment.id,
                {"integration_id": integration.id, "external_event_id": event_id},
                user_id=message.user_id,
            )
        return "delivered"

    async def _handle_calendar_delete(self, message: OutboxMessage) -> str:
        payload = message.payload or {}
        integration = (
            self.db.query(CalendarIntegration)
            .filter(CalendarIntegration.id == payload.get("integration_id"))
            .first()
        )
        if integration is not None:
            await google_calendar_service.delete_shift_event(
                integration, payload["external_event_id"], self.db
            )
        self.db.query(CalendarMirror).filter(
            CalendarMirror.integration_id == payload.get("integration_id"),
            CalendarMirror.external_event_id == payload.get("external_event_id"),
        ).delete(synchronize_session=False)
        return "delivered"

    async def _handle_notification(self, message: OutboxMessage) -> str:
        payload = message.payload or {}
        await notification_service.notify(message.user_id, payload.get("message", ""), payload.get("metadata"))
        return "delivered"

    async def _deliver_one(self, message_id: int, now: datetime) -> Optional[OutboxMessage]:
        message = self._claim(message_id, now)
        if message is None:
            return None

        handlers = {
            CALENDAR_CREATE: self._handle_calendar_create,
            CALENDAR_DELETE: self._handle_calendar_delete,
            NOTIFICATION: self._handle_notification,
        }
        handler = handlers.get(message.kind)

        try:
            if handler is None:
                raise ValueError(f"Unknown outbox message kind: {message.kind}")
            message.status = await handler(message)
            message.delivered_at = utcnow() if message.status == "delivered" else None
            message.last_error = None
            self.db.commit()
            logger.info(f"✅ Outbox message {message.id} ({message.kind}) {message.status}")
        except Exception as e:
            # Outbox boundary: record the failure, never propagate into the caller's transition
            self.db.rollback()
            message = self.db.query(OutboxMessage).filter(OutboxMessage.id == message_id).first()
            message.last_error = str(e)[:1000]
            message.status = "dead" if message.attempts >= self.max_attempts else "failed"
            self.db.commit()
            log = logger.error if message.status == "dead" else logger.warning
            log(
                f"⚠️ Outbox message {message.id} ({message.kind}) failed "
                f"attempt {message.attempts}/{self.max_attempts}: {e}"
            )
        return message

    async def deliver(self, message_ids: Iterable[int], now: Optional[datetime] = None) -> list[OutboxMessage]:
        """Deliver specific messages (inline, right after a transition commits)"""
        now = now or utcnow()
        results = []
        for message_id in message_ids:
            message = await self._deliver_one(message_id, now)
            if message is not None:
                results.append(message)
        return results

    async def deliver_pending(self, now: Optional[datetime] = None, limit: int = OUTBOX_BATCH_SIZE) -> dict:
        """Retry everything still deliverable, oldest first (worker cron)"""
        now = now or utcnow()
        ids = [
            row.id
            for row in self.db.query(OutboxMessage.id)
            .filter(
                or_(
                    OutboxMessage.status.in_(("pending", "failed")),
                    (OutboxMessage.status == "delivering") & (OutboxMessage.claimed_at < now - CLAIM_TIMEOUT),
                )
            )
            .order_by(OutboxMessage.created_at.asc(), OutboxMessage.id.asc())
            .limit(limit)
            .all()
        ]
        delivered = await self.deliver(ids, now)

        summary = {"processed": len(delivered)}
        for message in delivered:
            summary[message.status] = summary.get(message.status, 0) + 1
        if delivered:
            logger.info(f"📬 Outbox run: {summary}")
        return summary
