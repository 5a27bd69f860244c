"""
Lead API routes.

Lead listing, detail and the pipeline actions (create, status, score, notes).
"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.database import get_db
from leadflow.dependencies.auth import (
    TokenPayload,
    get_current_user,
    require_admin_or_agent,
)
from leadflow.models.lead import Lead, LeadActivity
from leadflow.services.errors import ServiceError
from leadflow.services.lead_service import LeadService, parse_json
from leadflow.services.pagination import DEFAULT_PAGE_SIZE


router = APIRouter(prefix="/api/leads", tags=["leads"])


class CreateLeadRequest(BaseModel):
    """Request model for creating a lead."""
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    company: str | None = None
    source: str = "web"
    message: str | None = None
    tags: list[str] | None = None
    metadata: dict | None = None


class UpdateStatusRequest(BaseModel):
    """Request model for a pipeline status change."""
    status: str


class AddNoteRequest(BaseModel):
    """Request model for adding a note."""
    text: str


def iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def lead_to_dict(lead: Lead) -> dict:
    """Convert Lead model to response dict."""
    return {
        "id": lead.id,
        "first_name": lead.first_name,
        "last_name": lead.last_name,
        "email": lead.email,
        "phone": lead.phone,
        "company": lead.company,
        "source": lead.source,
        "status": lead.status,
        "score": lead.score,
        "message": lead.message,
        "tags": parse_json(lead.tags_json) or [],
        "metadata": parse_json(lead.metadata_json),
        "score_reasons": parse_json(lead.score_reasons_json) or [],
        "created_at": iso(lead.created_at),
        "updated_at": iso(lead.updated_at),
    }


def activity_to_dict(activity: LeadActivity) -> dict:
    return {
        "id": activity.id,
        "lead_id": activity.lead_id,
        "type": activity.type,
        "notes": activity.notes,
        "data": parse_json(activity.data_json),
        "created_at": iso(activity.created_at),
    }


@router.get("", response_model=dict)
async def list_leads(
    q: str | None = None,
    status_filter: str | None = Query(None, alias="status"),
    source: str | None = None,
    min_score: int | None = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    sort: str = "createdAt_desc",
    current_user: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List leads with search, filters and paging.
    """
    try:
        result = await LeadService(db).list_leads(
            q=q,
            status=status_filter,
            source=source,
            min_score=min_score,
            page=page,
            page_size=page_size,
            sort=sort
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return {
        "items": [lead_to_dict(lead) for lead in result.items],
        "page": result.page,
        "page_size": result.page_size,
        "total_items": result.total_items,
        "total_pages": result.total_pages,
    }


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_lead(
    request: CreateLeadRequest,
    current_user: TokenPayload = Depends(require_admin_or_agent),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a lead.
    
    Emits a LeadCreated automation event when a webhook target is configured.
    """
    try:
        lead = await LeadService(db).create_lead(
            first_name=request.first_name,
            last_name=request.last_name,
            email=request.email,
            phone=request.phone,
            company=request.company,
            source=request.source,
            message=request.message,
            tags=request.tags,
            metadata=request.metadata
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return lead_to_dict(lead)


@router.get("/{lead_id}", response_model=dict)
async def get_lead(
    lead_id: str,
    current_user: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get lead by ID."""
    lead = await LeadService(db).get_lead(lead_id)
    
    if not lead:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Lead not found"
        )
    
    return lead_to_dict(lead)


@router.get("/{lead_id}/activities", response_model=list[dict])
async def get_lead_activities(
    lead_id: str,
    current_user: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Activity log for a lead, newest first."""
    try:
        activities = await LeadService(db).get_activities(lead_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return [activity_to_dict(activity) for activity in activities]


@router.patch("/{lead_id}/status", response_model=dict)
async def update_lead_status(
    lead_id: str,
    request: UpdateStatusRequest,
    current_user: TokenPayload = Depends(require_admin_or_agent),
    db: AsyncSession = Depends(get_db)
):
    """
    Move a lead through the pipeline.
    
    Emits a StatusChanged automation event when the status actually changes.
    """
    try:
        lead = await LeadService(db).update_status(lead_id, request.status)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return lead_to_dict(lead)


@router.post("/{lead_id}/score", response_model=dict)
async def score_lead(
    lead_id: str,
    current_user: TokenPayload = Depends(require_admin_or_agent),
    db: AsyncSession = Depends(get_db)
):
    """Recalculate the lead's score and emit a LeadScored automation event."""
    try:
        lead = await LeadService(db).score_lead(lead_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return lead_to_dict(lead)


@router.post("/{lead_id}/notes", response_model=dict, status_code=status.HTTP_201_CREATED)
async def add_note(
    lead_id: str,
    request: AddNoteRequest,
    current_user: TokenPayload = Depends(require_admin_or_agent),
    db: AsyncSession = Depends(get_db)
):
    """Add a note to the lead's activity log."""
    try:
        activity = await LeadService(db).add_note(lead_id, request.text, current_user.email)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return activity_to_dict(activity)
