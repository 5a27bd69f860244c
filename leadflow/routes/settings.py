"""
Settings API routes.

Webhook target and secret configuration.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.database import get_db
from leadflow.dependencies.auth import TokenPayload, get_current_user, require_admin
from leadflow.dependencies.rate_limit import webhook_test_rate_limit
from leadflow.services.errors import ServiceError
from leadflow.services.settings_service import SettingsService, WebhookSettings


router = APIRouter(prefix="/api/settings", tags=["settings"])


class UpdateWebhookRequest(BaseModel):
    """Request model for updating webhook settings."""
    webhook_target_url: str | None = None
    webhook_secret: str | None = None
    rotate_secret: bool = False


def settings_to_dict(webhook: WebhookSettings) -> dict:
    return {
        "webhook_target_url": webhook.webhook_target_url,
        "has_webhook_secret": webhook.has_webhook_secret,
    }


@router.get("", response_model=dict)
async def get_settings(
    current_user: TokenPayload = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get webhook configuration. The secret is never returned."""
    webhook = await SettingsService(db).get_webhook_settings()
    return settings_to_dict(webhook)


@router.patch("/webhook", response_model=dict)
async def update_webhook(
    request: UpdateWebhookRequest,
    current_user: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Set the webhook target URL, and optionally a new or rotated secret.
    
    New automation events pick up the target URL at creation time.
    """
    try:
        webhook = await SettingsService(db).update_webhook_settings(
            webhook_target_url=request.webhook_target_url,
            webhook_secret=request.webhook_secret,
            rotate_secret=request.rotate_secret,
            actor_email=current_user.email
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    
    return settings_to_dict(webhook)


@router.post("/webhook/test", response_model=dict, dependencies=[Depends(webhook_test_rate_limit)])
async def test_webhook(
    current_user: TokenPayload = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Send a TestWebhook payload to the configured target and report the outcome."""
    try:
        return await SettingsService(db).send_test_webhook()
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
