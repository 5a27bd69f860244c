"""
Settings models.

Key/value application settings (webhook target, webhook secret) and
an audit trail of who changed them.
"""
import uuid
from datetime import datetime
from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from leadflow.models.base import Base, utcnow


WEBHOOK_TARGET_URL_KEY = "WebhookTargetUrl"
WEBHOOK_SECRET_KEY = "WebhookSecret"


class Setting(Base):
    """Single key/value setting."""
    __tablename__ = "settings"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    def __repr__(self):
        return f"<Setting(key={self.key})>"


class SettingsActivity(Base):
    """Audit record for settings changes."""
    __tablename__ = "settings_activities"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    data_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    def __repr__(self):
        return f"<SettingsActivity(id={self.id}, type={self.type})>"
