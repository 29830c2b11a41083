"""Audit logging package."""

from household_ledger.audit.logger import (
    AUDITED_TOPICS,
    AuditLogger,
    build_audit_event,
    configure_logging,
)

__all__ = ["AUDITED_TOPICS", "AuditLogger", "build_audit_event", "configure_logging"]
