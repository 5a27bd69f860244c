"""
Lead models.

A lead is a prospective customer captured from a web form or ad campaign.
Every change to a lead is mirrored in an append-only activity log.
"""
import uuid
import enum
from datetime import datetime
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from leadflow.models.base import Base, TimestampMixin, utcnow


class LeadStatus(str, enum.Enum):
    """Lead pipeline status."""
    NEW = "New"
    CONTACTED = "Contacted"
    QUALIFIED = "Qualified"
    DISQUALIFIED = "Disqualified"

    @classmethod
    def normalize(cls, value: str | None) -> str | None:
        """Return the canonical spelling of a status, or None if unknown."""
        if not value or not value.strip():
            return None
        wanted = value.strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member.value
        return None


class Lead(Base, TimestampMixin):
    """
    Lead model.

    Tags, metadata and score reasons are stored as JSON text.
    """
    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="web")
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LeadStatus.NEW.value,
        index=True
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    score_reasons_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    activities = relationship(
        "LeadActivity",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadActivity.created_at.desc()"
    )
    automation_events = relationship("AutomationEvent", back_populates="lead")

    def __repr__(self):
        return f"<Lead(id={self.id}, email={self.email}, status={self.status}, score={self.score})>"


class LeadActivity(Base):
    """
    Lead activity log entry (StatusChanged, Scored, NoteAdded, WebhookSkipped, ...).
    """
    __tablename__ = "lead_activities"

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
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    data_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    # Relationships
    lead = relationship("Lead", back_populates="activities")

    def __repr__(self):
        return f"<LeadActivity(id={self.id}, lead_id={self.lead_id}, type={self.type})>"
