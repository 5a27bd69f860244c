"""
Automation event API routes.

Operators inspect webhook deliveries here and put failed ones back into the
dispatch pool.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.database import get_db
from leadflow.dependencies.auth import (
    TokenPayload,
    get_current_user,
    require_admin,
    require_admin_or_agent,
)
from leadflow.dependencies.rate_limit import retry_rate_limit
from leadflow.models.automation_event import AutomationEvent, AutomationEventStatus
from leadflow.routes.leads import iso
from leadflow.services.automation_service import AutomationService
from leadflow.services.errors import ServiceError
from leadflow.services.pagination import DEFAULT_PAGE_SIZE
from leadflow.worker import enqueue_dispatch


router = APIRouter(prefix="/api/automation-events", tags=["automation-events"])


class EnqueueEventRequest(BaseModel):
    """Request model for queuing an event by hand."""
    lead_id: str
    event_type: str
    payload: dict | None = None


def event_to_summary(event: AutomationEvent) -> dict:
    """List row: the fields operators scan for."""
    return {
        "id": event.id,
        "lead_id": event.lead_id,
        "event_type": event.event_type,
        "status": AutomationEventStatus.normalize(event.status) or event.status,
        "attempts": event.attempts,
        "last_attempt_at": iso(event.last_attempt_at),
        "last_error": event.last_error,
        "created_at": iso(event.created_at),
    }


def event_to_detail(event: AutomationEvent) -> dict:
    detail = event_to_summary(event)
    detail.update({
        "payload": event.payload,
        "target_url": event.target_url,
        "scheduled_at": iso(event.scheduled_at),
        "processed_at": iso(event.processed_at),
    })
    return detail


@router.get("", response_model=dict)
async def list_events(
    status_filter: str | None = Query(None, alias="status"),
    event_type: str | None = None,
    lead_id: str | None = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    sort: str = "createdAt_desc",
    current_user: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List automation events.
    
    `status=Pending` also matches rows written with the legacy `queued` value.
    """
    try:
        result = await AutomationService(db).list_events(
            status=status_filter,
            event_type=event_type,
            lead_id=lead_id,
            page=page,
            page_size=page_size,
            sort=sort
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return {
        "items": [event_to_summary(event) for event in result.items],
        "page": result.page,
        "page_size": result.page_size,
        "total_items": result.total_items,
        "total_pages": result.total_pages,
    }


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def enqueue_event(
    request: EnqueueEventRequest,
    current_user: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Queue an automation event for an existing lead."""
    try:
        event = await AutomationService(db).enqueue(
            lead_id=request.lead_id,
            event_type=request.event_type,
            payload=request.payload
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return event_to_detail(event)


@router.post("/dispatch", response_model=dict, status_code=status.HTTP_202_ACCEPTED)
async def trigger_dispatch(
    current_user: TokenPayload = Depends(require_admin)
):
    """
    Ask the background worker to run a dispatch cycle now.
    
    The polling loop keeps running regardless; this only shortens the wait.
    """
    queued = await enqueue_dispatch()
    
    if not queued:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dispatch queue unavailable"
        )
    
    return {"message": "Dispatch queued"}


@router.get("/{event_id}", response_model=dict)
async def get_event(
    event_id: str,
    current_user: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get automation event detail, including payload and target URL."""
    event = await AutomationService(db).get_event(event_id)
    
    if not event:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Automation event not found"
        )
    
    return event_to_detail(event)


@router.post(
    "/{event_id}/retry",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(retry_rate_limit)]
)
async def retry_event(
    event_id: str,
    current_user: TokenPayload = Depends(require_admin_or_agent),
    db: AsyncSession = Depends(get_db)
):
    """
    Put a Failed or Pending event back into the dispatch pool.
    
    400 once the attempt ceiling is reached, 409 if already sent. The
    dispatcher and this check share AUTOMATION_MAX_ATTEMPTS, so an event the
    dispatcher failed on its last allowed attempt cannot be retried by hand.
    """
    try:
        await AutomationService(db).retry(event_id, actor_email=current_user.email)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return Response(status_code=status.HTTP_204_NO_CONTENT)
