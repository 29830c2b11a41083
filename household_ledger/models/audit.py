"""
Audit Models for Household Ledger

Every event the ledger publishes can be recorded as an AuditEvent.
This provides:
1. Traceability of every mutation (who changed what, when)
2. Debugging information when storage degrades
3. A uniform shape for the structured log

DESIGN DECISION: Audit events are log records, not ledger state.
They are never persisted by the storage backends.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from household_ledger.models.transaction import utc_now


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.
    
    One of these is produced for every ledger event the AuditLogger sees.
    """
    
    # Identity
    event_id: str = Field(
        default_factory=lambda: uuid4().hex,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )
    
    # Classification
    topic: str = Field(
        ...,
        description="Event bus topic the event was published on"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )
    
    # Context
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the transaction this event relates to"
    )
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )
    
    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "topic": self.topic,
            "severity": self.severity.value,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
        }
