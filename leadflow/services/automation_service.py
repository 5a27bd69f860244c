"""
Automation service.

Owns the automation event lifecycle: creating events for lead changes,
dispatching due events to the configured webhook target, and the operator
actions (list, detail, manual retry).

Dispatch state machine, per event:

    Pending --2xx-------------------------> Sent     (terminal)
    Pending --failure, attempts < max-----> Pending  (retried after backoff)
    Pending --failure, attempts >= max----> Failed   (terminal)
    Pending --no target URL---------------> Failed   (terminal, no HTTP call)
    Failed  --manual retry----------------> Pending
"""
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from leadflow.config import settings
from leadflow.logging_config import get_logger
from leadflow.models.automation_event import (
    AutomationEvent,
    AutomationEventStatus,
    AutomationEventType,
)
from leadflow.models.base import as_utc, utcnow
from leadflow.models.lead import Lead, LeadActivity
from leadflow.routes.metrics import (
    track_conflict,
    track_delivery,
    track_event_enqueued,
    track_manual_retry,
)
from leadflow.services.errors import ConflictError, NotFoundError, ValidationError
from leadflow.services.pagination import DEFAULT_PAGE_SIZE, Page, paginate
from leadflow.services.settings_service import SettingsService
from leadflow.services.webhook_service import deliver_webhook

log = get_logger(component="automation")

MISSING_TARGET_URL_ERROR = "Missing target URL."


def backoff_delay(
    attempts: int,
    base_seconds: float | None = None,
    max_seconds: float | None = None
) -> timedelta:
    """
    Minimum wait after the last attempt: min(max, base * 2^max(0, attempts - 1)).

    With the defaults: 5s, 10s, 20s, 40s, then 60s for every later attempt.
    """
    base = settings.AUTOMATION_BACKOFF_BASE_SECONDS if base_seconds is None else base_seconds
    cap = settings.AUTOMATION_BACKOFF_MAX_SECONDS if max_seconds is None else max_seconds
    exponent = max(0, attempts - 1)
    # 2**exponent grows without bound; stop doubling once past the cap
    if exponent >= 32:
        return timedelta(seconds=cap)
    return timedelta(seconds=min(cap, base * (2 ** exponent)))


def is_due(event: AutomationEvent, now: datetime) -> bool:
    """True when the event's schedule has arrived and its backoff window has elapsed."""
    scheduled_at = as_utc(event.scheduled_at)
    if scheduled_at is not None and scheduled_at > now:
        return False
    last_attempt_at = as_utc(event.last_attempt_at)
    if last_attempt_at is not None and last_attempt_at + backoff_delay(event.attempts) > now:
        return False
    return True


@dataclass
class DispatchSummary:
    """Counters for one dispatch cycle."""
    selected: int = 0
    attempted: int = 0
    sent: int = 0
    retrying: int = 0
    failed: int = 0
    conflicts: int = 0


def lead_snapshot(lead: Lead, **overrides) -> dict:
    """Lead fields embedded in every webhook payload."""
    snapshot = {
        "id": lead.id,
        "firstName": lead.first_name,
        "lastName": lead.last_name,
        "email": lead.email,
        "phone": lead.phone,
        "status": lead.status,
        "source": lead.source,
        "score": lead.score,
    }
    snapshot.update(overrides)
    return snapshot


class AutomationService:
    """Service for automation events."""

    def __init__(
        self,
        db: AsyncSession,
        http_client: httpx.AsyncClient | None = None,
        now: Callable[[], datetime] = utcnow,
        max_attempts: int | None = None,
        batch_size: int | None = None
    ):
        self.db = db
        self.http_client = http_client
        self._now = now
        self.max_attempts = max_attempts or settings.AUTOMATION_MAX_ATTEMPTS
        self.batch_size = batch_size or settings.AUTOMATION_BATCH_SIZE

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def select_candidates(self) -> list[AutomationEvent]:
        """
        Pending (or legacy queued) events below the attempt ceiling,
        oldest schedule first, limited to one batch.
        """
        stmt = (
            select(AutomationEvent)
            .where(
                AutomationEvent.status.in_(AutomationEventStatus.pending_values()),
                AutomationEvent.attempts < self.max_attempts
            )
            .order_by(AutomationEvent.scheduled_at.asc(), AutomationEvent.created_at.asc())
            .limit(self.batch_size)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def dispatch_pending(self) -> DispatchSummary:
        """
        Deliver every due event in one batch.

        Events are processed sequentially in selection order. Delivery failures
        are recorded on the event row, never raised. Each event's changes are
        flushed in their own SAVEPOINT right after delivery; if the row was
        changed concurrently only that event is skipped. The batch is committed
        once at the end, and a failure there propagates to the caller.

        Returns:
            DispatchSummary with per-outcome counters
        """
        if self.http_client is None:
            raise RuntimeError("dispatch_pending requires an http_client")

        summary = DispatchSummary()
        candidates = await self.select_candidates()
        summary.selected = len(candidates)
        if not candidates:
            return summary

        now = self._now()
        due = [event for event in candidates if is_due(event, now)]
        if not due:
            return summary

        secret = await SettingsService(self.db).get_webhook_secret()

        for event in due:
            event_id = event.id
            try:
                async with self.db.begin_nested():
                    outcome = await self._dispatch_one(event, secret)
            except StaleDataError:
                summary.conflicts += 1
                track_conflict()
                log.warning("automation_event_conflict", event_id=event_id)
                continue

            summary.attempted += 1
            if outcome == AutomationEventStatus.SENT:
                summary.sent += 1
            elif outcome == AutomationEventStatus.FAILED:
                summary.failed += 1
            else:
                summary.retrying += 1

        await self.db.commit()
        return summary

    async def _dispatch_one(self, event: AutomationEvent, secret: str | None) -> AutomationEventStatus:
        """Record one attempt on the event and apply its outcome. Returns the new status."""
        event.attempts += 1
        event.last_attempt_at = self._now()

        if not event.target_url or not event.target_url.strip():
            event.status = AutomationEventStatus.FAILED.value
            event.last_error = MISSING_TARGET_URL_ERROR
            event.processed_at = self._now()
            track_delivery(event.event_type, "failed")
            log.warning(
                "automation_event_failed",
                event_id=event.id,
                event_type=event.event_type,
                attempts=event.attempts,
                error=MISSING_TARGET_URL_ERROR
            )
            return AutomationEventStatus.FAILED

        result = await deliver_webhook(
            self.http_client,
            event.target_url,
            event.payload,
            event_type=event.event_type,
            event_id=event.id,
            secret=secret
        )

        if result.ok:
            event.status = AutomationEventStatus.SENT.value
            event.last_error = None
            event.processed_at = self._now()
            track_delivery(event.event_type, "sent")
            log.info(
                "automation_event_sent",
                event_id=event.id,
                event_type=event.event_type,
                attempts=event.attempts,
                status_code=result.status_code
            )
            return AutomationEventStatus.SENT

        event.last_error = result.error
        if event.attempts >= self.max_attempts:
            event.status = AutomationEventStatus.FAILED.value
            event.processed_at = self._now()
            track_delivery(event.event_type, "failed")
            log.warning(
                "automation_event_failed",
                event_id=event.id,
                event_type=event.event_type,
                attempts=event.attempts,
                status_code=result.status_code,
                error=result.error
            )
            return AutomationEventStatus.FAILED

        event.status = AutomationEventStatus.PENDING.value
        event.processed_at = None
        track_delivery(event.event_type, "retry")
        log.warning(
            "automation_event_retry_scheduled",
            event_id=event.id,
            event_type=event.event_type,
            attempts=event.attempts,
            status_code=result.status_code,
            error=result.error,
            retry_in_seconds=backoff_delay(event.attempts).total_seconds()
        )
        return AutomationEventStatus.PENDING

    # ------------------------------------------------------------------
    # Event creation
    # ------------------------------------------------------------------

    async def create_for_lead(
        self,
        lead: Lead,
        event_type: AutomationEventType,
        payload: dict,
        now: datetime | None = None
    ) -> AutomationEvent | None:
        """
        Stage a Pending event for a lead change, without committing.

        When no webhook target is configured a WebhookSkipped activity is
        staged instead and None is returned.
        """
        now = now or self._now()
        target_url = await SettingsService(self.db).get_webhook_target_url()

        if not target_url:
            self.db.add(LeadActivity(
                lead_id=lead.id,
                type="WebhookSkipped",
                notes="Webhook target missing",
                data_json=json.dumps({"reason": "Missing WebhookTargetUrl setting.", "eventType": event_type.value}),
                created_at=now
            ))
            return None

        event = AutomationEvent(
            lead_id=lead.id,
            event_type=event_type.value,
            payload=json.dumps(payload, default=str),
            target_url=target_url,
            status=AutomationEventStatus.PENDING.value,
            scheduled_at=now,
            created_at=now
        )
        self.db.add(event)
        track_event_enqueued(event_type.value)
        return event

    async def enqueue(
        self,
        lead_id: str,
        event_type: str,
        payload: dict | None = None,
        scheduled_at: datetime | None = None
    ) -> AutomationEvent:
        """
        Create a Pending event for an existing lead.

        The target URL is the current webhook setting; if none is configured
        the event is still created and will fail on its first dispatch.

        Raises:
            ValidationError: unknown event type
            NotFoundError: lead does not exist
        """
        normalized_type = AutomationEventType.normalize(event_type)
        if normalized_type is None:
            raise ValidationError("Invalid event_type value.")

        lead = await self.db.get(Lead, lead_id)
        if lead is None:
            raise NotFoundError("Lead not found.")

        now = self._now()
        if payload is None:
            payload = {
                "eventType": normalized_type,
                "leadId": lead.id,
                "timestamp": now.isoformat(),
                "lead": lead_snapshot(lead),
            }

        event = AutomationEvent(
            lead_id=lead.id,
            event_type=normalized_type,
            payload=json.dumps(payload, default=str),
            target_url=await SettingsService(self.db).get_webhook_target_url(),
            status=AutomationEventStatus.PENDING.value,
            scheduled_at=as_utc(scheduled_at) or now,
            created_at=now
        )
        self.db.add(event)
        await self.db.commit()
        track_event_enqueued(normalized_type)
        log.info("automation_event_enqueued", event_id=event.id, lead_id=lead.id, event_type=normalized_type)
        return event

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def get_event(self, event_id: str) -> AutomationEvent | None:
        """Get event by ID."""
        stmt = select(AutomationEvent).where(AutomationEvent.id == event_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_events(
        self,
        status: str | None = None,
        event_type: str | None = None,
        lead_id: str | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: str | None = "createdAt_desc"
    ) -> Page:
        """
        Page through events, newest first by default.

        Raises:
            ValidationError: unknown status or event type filter
        """
        stmt = select(AutomationEvent)

        if status and status.strip():
            normalized_status = AutomationEventStatus.normalize(status)
            if normalized_status is None:
                raise ValidationError("Invalid status value.")
            if normalized_status == AutomationEventStatus.PENDING.value:
                stmt = stmt.where(AutomationEvent.status.in_(AutomationEventStatus.pending_values()))
            else:
                stmt = stmt.where(AutomationEvent.status == normalized_status)

        if event_type and event_type.strip():
            normalized_type = AutomationEventType.normalize(event_type)
            if normalized_type is None:
                raise ValidationError("Invalid event_type value.")
            stmt = stmt.where(AutomationEvent.event_type == normalized_type)

        if lead_id:
            stmt = stmt.where(AutomationEvent.lead_id == lead_id)

        if sort == "createdAt_asc":
            order_by = (AutomationEvent.created_at.asc(),)
        else:
            order_by = (AutomationEvent.created_at.desc(),)

        return await paginate(self.db, stmt, order_by, page, page_size)

    async def retry(self, event_id: str, actor_email: str | None = None) -> AutomationEvent:
        """
        Manually put an event back into the dispatch pool.

        Clears last_error, last_attempt_at and processed_at so the event is
        due immediately. A missing target URL is refilled from the current
        webhook setting.

        Raises:
            NotFoundError: event does not exist
            ConflictError: event already sent, or modified concurrently
            ValidationError: attempt ceiling reached, or status not retryable
        """
        event = await self.get_event(event_id)
        if event is None:
            raise NotFoundError("Automation event not found.")

        current_status = AutomationEventStatus.normalize(event.status)
        if current_status == AutomationEventStatus.SENT.value:
            raise ConflictError("Already sent.")

        if event.attempts >= self.max_attempts:
            raise ValidationError("Max attempts reached.")

        if current_status not in (AutomationEventStatus.PENDING.value, AutomationEventStatus.FAILED.value):
            raise ValidationError("Event is not retryable.")

        target_url = event.target_url
        if not target_url or not target_url.strip():
            target_url = await SettingsService(self.db).get_webhook_target_url()

        now = self._now()
        event.status = AutomationEventStatus.PENDING.value
        event.last_error = None
        event.last_attempt_at = None
        event.processed_at = None
        event.scheduled_at = now
        event.target_url = target_url

        self.db.add(LeadActivity(
            lead_id=event.lead_id,
            type="WebhookRetryQueued",
            notes="Retry queued",
            data_json=json.dumps({
                "automationEventId": event.id,
                "attemptCount": event.attempts,
                "actorEmail": actor_email,
            }),
            created_at=now
        ))

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ConflictError("Automation event was modified concurrently; try again.")

        track_manual_retry()
        log.info("automation_event_retry_queued", event_id=event.id, actor_email=actor_email)
        return event
