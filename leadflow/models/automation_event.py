"""
Automation event model.

One row per outbound webhook notification for a lead lifecycle change.
Rows are append-only: they are mutated by the dispatcher and by manual
retries, never deleted.
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from leadflow.models.base import Base, utcnow


# Status written by older releases; treated as Pending everywhere.
LEGACY_QUEUED_STATUS = "queued"


class AutomationEventStatus(str, enum.Enum):
    """Automation event delivery status."""
    PENDING = "Pending"
    SENT = "Sent"
    FAILED = "Failed"

    @classmethod
    def normalize(cls, value: str | None) -> str | None:
        """
        Return the canonical status for a user or database supplied value.

        Case-insensitive; the legacy "queued" value maps to Pending.
        Unknown or blank values return None.
        """
        if not value or not value.strip():
            return None
        wanted = value.strip().lower()
        if wanted == LEGACY_QUEUED_STATUS:
            return cls.PENDING.value
        for member in cls:
            if member.value.lower() == wanted:
                return member.value
        return None

    @classmethod
    def pending_values(cls) -> list[str]:
        """Raw column values that mean Pending."""
        return [cls.PENDING.value, LEGACY_QUEUED_STATUS]


class AutomationEventType(str, enum.Enum):
    """Lead lifecycle occurrences that produce webhooks."""
    LEAD_CREATED = "LeadCreated"
    LEAD_SCORED = "LeadScored"
    STATUS_CHANGED = "StatusChanged"

    @classmethod
    def normalize(cls, value: str | None) -> str | None:
        if not value or not value.strip():
            return None
        wanted = value.strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member.value
        return None

    @classmethod
    def is_valid(cls, value: str | None) -> bool:
        return cls.normalize(value) is not None


class AutomationEvent(Base):
    """
    Outbound webhook notification.

    `version` is bumped on every UPDATE and checked in its WHERE clause, so two
    writers racing on the same row cannot silently overwrite each other.
    """
    __tablename__ = "automation_events"
    __table_args__ = (
        Index("ix_automation_events_dispatch", "status", "attempts", "scheduled_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    lead_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AutomationEventStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    lead = relationship("Lead", back_populates="automation_events")

    @property
    def is_pending(self) -> bool:
        return AutomationEventStatus.normalize(self.status) == AutomationEventStatus.PENDING.value

    def __repr__(self):
        return (
            f"<AutomationEvent(id={self.id}, type={self.event_type}, "
            f"status={self.status}, attempts={self.attempts})>"
        )
