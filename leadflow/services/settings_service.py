"""
Settings service.

Reads and updates the webhook configuration stored in the settings table.
"""
import base64
import json
import secrets
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadflow.config import settings as app_settings
from leadflow.logging_config import get_logger
from leadflow.models.base import utcnow
from leadflow.models.setting import (
    Setting,
    SettingsActivity,
    WEBHOOK_SECRET_KEY,
    WEBHOOK_TARGET_URL_KEY,
)
from leadflow.services.errors import ValidationError
from leadflow.services.webhook_service import build_webhook_client, deliver_webhook

log = get_logger(component="settings")

MAX_WEBHOOK_URL_LENGTH = 500
MIN_SECRET_LENGTH = 8
MAX_SECRET_LENGTH = 200


def is_valid_webhook_url(url: str | None) -> bool:
    """Absolute http(s) URL no longer than 500 characters."""
    if not url or not url.strip() or len(url) > MAX_WEBHOOK_URL_LENGTH:
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def generate_secret() -> str:
    """Random 32-byte secret, base64 encoded."""
    return base64.b64encode(secrets.token_bytes(32)).decode()


@dataclass
class WebhookSettings:
    webhook_target_url: str | None
    has_webhook_secret: bool


class SettingsService:
    """Service for webhook settings."""
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def _get_settings(self, *keys: str) -> dict[str, Setting]:
        stmt = select(Setting).where(Setting.key.in_(keys))
        result = await self.db.execute(stmt)
        return {setting.key: setting for setting in result.scalars().all()}
    
    async def get_value(self, key: str) -> str | None:
        """Get a single setting value, or None if unset/blank."""
        stmt = select(Setting.value).where(Setting.key == key)
        result = await self.db.execute(stmt)
        value = result.scalar_one_or_none()
        if value is None or not value.strip():
            return None
        return value
    
    async def get_webhook_target_url(self) -> str | None:
        return await self.get_value(WEBHOOK_TARGET_URL_KEY)
    
    async def get_webhook_secret(self) -> str | None:
        return await self.get_value(WEBHOOK_SECRET_KEY)
    
    async def get_webhook_settings(self) -> WebhookSettings:
        """Current webhook configuration. The secret itself is never returned."""
        existing = await self._get_settings(WEBHOOK_TARGET_URL_KEY, WEBHOOK_SECRET_KEY)
        target = existing.get(WEBHOOK_TARGET_URL_KEY)
        secret = existing.get(WEBHOOK_SECRET_KEY)
        return WebhookSettings(
            webhook_target_url=target.value if target else None,
            has_webhook_secret=bool(secret and secret.value.strip())
        )
    
    async def update_webhook_settings(
        self,
        webhook_target_url: str | None,
        webhook_secret: str | None = None,
        rotate_secret: bool = False,
        actor_email: str | None = None
    ) -> WebhookSettings:
        """
        Update the webhook target and optionally its secret.
        
        Args:
            webhook_target_url: Absolute http(s) URL (required)
            webhook_secret: New secret, 8..200 chars; blank keeps the current one
            rotate_secret: Replace the secret with a random one (wins over webhook_secret)
            actor_email: Email of the admin making the change, for the audit trail
            
        Raises:
            ValidationError: invalid URL or secret
        """
        if not webhook_target_url or not webhook_target_url.strip():
            raise ValidationError("webhook_target_url is required.")
        
        target_url = webhook_target_url.strip()
        if not is_valid_webhook_url(target_url):
            raise ValidationError("Invalid webhook_target_url.")
        
        next_secret = None
        secret_changed = False
        if rotate_secret:
            next_secret = generate_secret()
            secret_changed = True
        elif webhook_secret is not None and webhook_secret.strip():
            trimmed = webhook_secret.strip()
            if not MIN_SECRET_LENGTH <= len(trimmed) <= MAX_SECRET_LENGTH:
                raise ValidationError("Invalid webhook_secret length.")
            next_secret = trimmed
            secret_changed = True
        
        existing = await self._get_settings(WEBHOOK_TARGET_URL_KEY, WEBHOOK_SECRET_KEY)
        old_url = existing[WEBHOOK_TARGET_URL_KEY].value if WEBHOOK_TARGET_URL_KEY in existing else None
        old_secret = existing.get(WEBHOOK_SECRET_KEY)
        
        now = utcnow()
        self._upsert(existing, WEBHOOK_TARGET_URL_KEY, target_url, now)
        if secret_changed:
            self._upsert(existing, WEBHOOK_SECRET_KEY, next_secret, now)
        
        self.db.add(SettingsActivity(
            type="WebhookSettingsUpdated",
            data_json=json.dumps({
                "oldUrl": old_url,
                "newUrl": target_url,
                "secretChanged": secret_changed,
                "actorEmail": actor_email,
            }),
            created_at=now
        ))
        await self.db.commit()
        
        log.info("webhook_settings_updated", actor_email=actor_email, secret_changed=secret_changed)
        
        if secret_changed:
            has_secret = True
        else:
            has_secret = bool(old_secret and old_secret.value.strip())
        return WebhookSettings(webhook_target_url=target_url, has_webhook_secret=has_secret)
    
    def _upsert(self, existing: dict[str, Setting], key: str, value: str, now) -> None:
        setting = existing.get(key)
        if setting is None:
            setting = Setting(key=key, value=value, updated_at=now)
            self.db.add(setting)
            existing[key] = setting
            return
        setting.value = value
        setting.updated_at = now
    
    async def send_test_webhook(self, client: httpx.AsyncClient | None = None) -> dict:
        """
        Post a TestWebhook payload to the configured target.
        
        Raises:
            ValidationError: no webhook target configured
        """
        target_url = await self.get_webhook_target_url()
        if not target_url:
            raise ValidationError("webhook_target_url not configured.")
        
        secret = await self.get_webhook_secret()
        payload = json.dumps({
            "eventType": "TestWebhook",
            "timestamp": utcnow().isoformat(),
            "message": f"Hello from {app_settings.APP_NAME}",
            "environment": app_settings.ENVIRONMENT,
        })
        
        if client is None:
            async with build_webhook_client() as owned:
                result = await deliver_webhook(owned, target_url, payload, "TestWebhook", secret=secret)
        else:
            result = await deliver_webhook(client, target_url, payload, "TestWebhook", secret=secret)
        
        if result.ok:
            log.info("webhook_test_sent", status_code=result.status_code)
        else:
            log.warning("webhook_test_failed", status_code=result.status_code, error=result.error)
        
        return {
            "ok": result.ok,
            "status_code": result.status_code or 0,
            "error": None if result.ok else result.error,
        }
