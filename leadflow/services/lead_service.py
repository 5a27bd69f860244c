"""
Lead service.

Lead reads, pipeline changes and scoring. Changes that are worth notifying
about stage an automation event in the same transaction as the change.
"""
import json

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.logging_config import get_logger
from leadflow.models.automation_event import AutomationEventType
from leadflow.models.base import utcnow
from leadflow.models.lead import Lead, LeadActivity, LeadStatus
from leadflow.services.automation_service import AutomationService, lead_snapshot
from leadflow.services.errors import NotFoundError, ValidationError
from leadflow.services.pagination import DEFAULT_PAGE_SIZE, Page, paginate
from leadflow.services.scoring_service import calculate_score

log = get_logger(component="leads")

MAX_NOTE_LENGTH = 2000

LEAD_SORTS = {
    "createdAt_desc": (Lead.created_at.desc(),),
    "createdAt_asc": (Lead.created_at.asc(),),
    "score_desc": (Lead.score.desc(), Lead.created_at.desc()),
    "score_asc": (Lead.score.asc(), Lead.created_at.desc()),
}


def parse_json(value: str | None):
    """Decode stored JSON text; None for blank or malformed values."""
    if not value or not value.strip():
        return None
    try:
        return json.loads(value)
    except ValueError:
        return None


class LeadService:
    """Service for managing leads."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.automation = AutomationService(db)

    async def get_lead(self, lead_id: str) -> Lead | None:
        """Get lead by ID."""
        stmt = select(Lead).where(Lead.id == lead_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _require_lead(self, lead_id: str) -> Lead:
        lead = await self.get_lead(lead_id)
        if lead is None:
            raise NotFoundError("Lead not found.")
        return lead

    async def list_leads(
        self,
        q: str | None = None,
        status: str | None = None,
        source: str | None = None,
        min_score: int | None = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: str | None = "createdAt_desc"
    ) -> Page:
        """
        Filter and page through leads.

        Args:
            q: Case-insensitive match on name, email, phone or company
            status: Pipeline status (case-insensitive)
            source: Lead source, exact match
            min_score: Minimum score, inclusive

        Raises:
            ValidationError: unknown status
        """
        stmt = select(Lead)

        if q and q.strip():
            pattern = f"%{q.strip().lower()}%"
            stmt = stmt.where(or_(
                Lead.first_name.ilike(pattern),
                Lead.last_name.ilike(pattern),
                Lead.email.ilike(pattern),
                Lead.phone.ilike(pattern),
                Lead.company.ilike(pattern),
            ))

        if status and status.strip():
            normalized = LeadStatus.normalize(status)
            if normalized is None:
                raise ValidationError("Invalid status value.")
            stmt = stmt.where(Lead.status == normalized)

        if source and source.strip():
            stmt = stmt.where(Lead.source == source.strip())

        if min_score is not None:
            stmt = stmt.where(Lead.score >= min_score)

        order_by = LEAD_SORTS.get(sort or "", LEAD_SORTS["createdAt_desc"])
        return await paginate(self.db, stmt, order_by, page, page_size)

    async def get_activities(self, lead_id: str) -> list[LeadActivity]:
        """Activities for a lead, newest first."""
        await self._require_lead(lead_id)
        stmt = (
            select(LeadActivity)
            .where(LeadActivity.lead_id == lead_id)
            .order_by(LeadActivity.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create_lead(
        self,
        first_name: str,
        last_name: str,
        email: str,
        phone: str | None = None,
        company: str | None = None,
        source: str = "web",
        message: str | None = None,
        tags: list[str] | None = None,
        metadata: dict | None = None
    ) -> Lead:
        """
        Create a lead in New status and stage a LeadCreated event.

        Raises:
            ValidationError: missing name or email
        """
        if not first_name.strip() or not last_name.strip() or not email.strip():
            raise ValidationError("first_name, last_name and email are required.")

        now = utcnow()
        lead = Lead(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email.strip().lower(),
            phone=phone,
            company=company,
            source=source or "web",
            status=LeadStatus.NEW.value,
            score=0,
            message=message,
            tags_json=json.dumps(tags) if tags is not None else None,
            metadata_json=json.dumps(metadata) if metadata is not None else None,
            created_at=now,
            updated_at=now
        )
        self.db.add(lead)
        await self.db.flush()

        self.db.add(LeadActivity(
            lead_id=lead.id,
            type="Created",
            notes="Lead created",
            data_json=json.dumps({"source": lead.source}),
            created_at=now
        ))
        await self.automation.create_for_lead(
            lead,
            AutomationEventType.LEAD_CREATED,
            {
                "eventType": AutomationEventType.LEAD_CREATED.value,
                "leadId": lead.id,
                "timestamp": now.isoformat(),
                "lead": lead_snapshot(lead),
            },
            now=now
        )
        await self.db.commit()

        log.info("lead_created", lead_id=lead.id, source=lead.source)
        return lead

    async def update_status(self, lead_id: str, status: str) -> Lead:
        """
        Move a lead to a new pipeline status.

        Setting the current status again is a no-op.

        Raises:
            ValidationError: unknown status
            NotFoundError: lead does not exist
        """
        normalized = LeadStatus.normalize(status)
        if normalized is None:
            raise ValidationError("Invalid status value.")

        lead = await self._require_lead(lead_id)
        if lead.status.lower() == normalized.lower():
            return lead

        now = utcnow()
        previous = lead.status
        lead.status = normalized
        lead.updated_at = now

        self.db.add(LeadActivity(
            lead_id=lead.id,
            type="StatusChanged",
            notes="Status updated",
            data_json=json.dumps({"from": previous, "to": normalized}),
            created_at=now
        ))
        await self.automation.create_for_lead(
            lead,
            AutomationEventType.STATUS_CHANGED,
            {
                "eventType": AutomationEventType.STATUS_CHANGED.value,
                "leadId": lead.id,
                "oldStatus": previous,
                "newStatus": normalized,
                "timestamp": now.isoformat(),
                "lead": lead_snapshot(lead),
            },
            now=now
        )
        await self.db.commit()

        log.info("lead_status_changed", lead_id=lead.id, old_status=previous, new_status=normalized)
        return lead

    async def score_lead(self, lead_id: str) -> Lead:
        """
        Recalculate a lead's score and stage a LeadScored event.

        Raises:
            NotFoundError: lead does not exist
        """
        lead = await self._require_lead(lead_id)

        old_score = lead.score
        new_score, reasons = calculate_score(lead)
        reason_dicts = [reason.to_dict() for reason in reasons]
        now = utcnow()

        lead.score = new_score
        lead.score_reasons_json = json.dumps(reason_dicts)
        lead.updated_at = now

        self.db.add(LeadActivity(
            lead_id=lead.id,
            type="Scored",
            notes="Lead scored",
            data_json=json.dumps({"oldScore": old_score, "newScore": new_score, "reasons": reason_dicts}),
            created_at=now
        ))
        await self.automation.create_for_lead(
            lead,
            AutomationEventType.LEAD_SCORED,
            {
                "eventType": AutomationEventType.LEAD_SCORED.value,
                "leadId": lead.id,
                "oldScore": old_score,
                "newScore": new_score,
                "reasons": reason_dicts,
                "timestamp": now.isoformat(),
                "lead": lead_snapshot(lead, score=new_score),
            },
            now=now
        )
        await self.db.commit()

        log.info("lead_scored", lead_id=lead.id, old_score=old_score, new_score=new_score)
        return lead

    async def add_note(self, lead_id: str, text: str, author_email: str | None = None) -> LeadActivity:
        """
        Append a note to a lead's activity log.

        Raises:
            ValidationError: empty or longer than 2000 characters
            NotFoundError: lead does not exist
        """
        trimmed = (text or "").strip()
        if not trimmed or len(trimmed) > MAX_NOTE_LENGTH:
            raise ValidationError("Note text must be 1-2000 characters.")

        lead = await self._require_lead(lead_id)
        now = utcnow()
        lead.updated_at = now

        data = {"text": trimmed}
        if author_email:
            data["authorEmail"] = author_email

        activity = LeadActivity(
            lead_id=lead.id,
            type="NoteAdded",
            notes="Lead note added",
            data_json=json.dumps(data),
            created_at=now
        )
        self.db.add(activity)
        await self.db.commit()
        return activity
