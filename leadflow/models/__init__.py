"""
ORM models. Importing this package registers every table on Base.metadata.
"""
from leadflow.models.base import Base
from leadflow.models.lead import Lead, LeadActivity, LeadStatus
from leadflow.models.automation_event import (
    AutomationEvent,
    AutomationEventStatus,
    AutomationEventType,
)
from leadflow.models.setting import Setting, SettingsActivity
from leadflow.models.user import User

__all__ = [
    "Base",
    "Lead",
    "LeadActivity",
    "LeadStatus",
    "AutomationEvent",
    "AutomationEventStatus",
    "AutomationEventType",
    "Setting",
    "SettingsActivity",
    "User",
]
