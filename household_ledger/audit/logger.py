"""
Audit Logger

DESIGN DECISION: Every change the ledger announces is logged.
This provides:
1. Complete traceability of mutations
2. Debugging capability when storage degrades
3. A history a support person can read from the log alone

The audit logger:
- Observes the ledger's event bus, it never calls into the ledger
- Gracefully handles odd payloads (logging must not break the main flow)
- Shares the package-wide structlog configuration
"""

import logging
from typing import Any, Optional

import structlog

from household_ledger.config import get_settings
from household_ledger.events import topics
from household_ledger.events.bus import BusError, EventBus, Subscription
from household_ledger.models.audit import AuditEvent, AuditSeverity
from household_ledger.models.transaction import Transaction


def configure_logging(level: Optional[str] = None, json: Optional[bool] = None) -> None:
    """
    Configure structlog for the package.
    
    Defaults come from LedgerSettings (LEDGER_LOG_LEVEL, LEDGER_LOG_JSON).
    """
    settings = get_settings()
    level = level or settings.log_level
    json = settings.log_json if json is None else json
    
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.getLogger("household_ledger").setLevel(level)


configure_logging()


# Topics that are audited and how loud they are
AUDITED_TOPICS: dict[str, AuditSeverity] = {
    topics.LOADED: AuditSeverity.INFO,
    topics.TRANSACTION_ADDED: AuditSeverity.INFO,
    topics.TRANSACTION_UPDATED: AuditSeverity.INFO,
    topics.TRANSACTION_DELETED: AuditSeverity.INFO,
    topics.TRANSACTIONS_BATCH_ADDED: AuditSeverity.INFO,
    topics.CATEGORY_ADDED: AuditSeverity.INFO,
    topics.CATEGORY_REMOVED: AuditSeverity.INFO,
    topics.CATEGORY_RENAMED: AuditSeverity.INFO,
    topics.DATA_CLEARED: AuditSeverity.WARNING,
    topics.DATA_REPAIRED: AuditSeverity.WARNING,
    topics.STORAGE_DEGRADED: AuditSeverity.WARNING,
    topics.ERROR: AuditSeverity.ERROR,
}


def build_audit_event(topic: str, payload: Any) -> AuditEvent:
    """Turn a published ledger event into an AuditEvent."""
    severity = AUDITED_TOPICS.get(topic, AuditSeverity.DEBUG)
    entity_id = None
    details: dict[str, Any] = {}
    
    if isinstance(payload, Transaction):
        entity_id = payload.id
        details = {
            "kind": payload.kind.value,
            "category": payload.category,
            "amount": payload.amount,
            "date": payload.date.isoformat(),
        }
        description = f"{topic}: {payload.kind.value} {payload.amount} ({payload.category})"
    elif isinstance(payload, BusError):
        details = {"source_topic": payload.topic, "error_type": type(payload.error).__name__}
        description = f"Handler for '{payload.topic}' failed: {payload.error}"
    elif isinstance(payload, list):
        details = {"count": len(payload)}
        if payload and all(isinstance(item, str) for item in payload):
            details["actions"] = payload
        description = f"{topic}: {len(payload)} item(s)"
    elif isinstance(payload, dict):
        details = {k: v for k, v in payload.items() if isinstance(v, (str, int, float, bool))}
        description = f"{topic}: " + ", ".join(f"{k}={v}" for k, v in details.items())
    else:
        description = topic
    
    return AuditEvent(
        topic=topic,
        severity=severity,
        entity_id=entity_id,
        description=description[:500],
        details=details,
    )


class AuditLogger:
    """
    Logs every audited ledger event as a structured record.
    
    Usage:
        audit = AuditLogger()
        audit.attach(ledger.bus)
    """
    
    def __init__(self):
        self._logger = structlog.get_logger("household_ledger.audit")
        self._subscriptions: list[tuple[EventBus, Subscription]] = []
        self.last_event: Optional[AuditEvent] = None
    
    def log(self, event: AuditEvent) -> None:
        """Log an audit event at the level matching its severity."""
        log_dict = event.to_log_dict()
        self.last_event = event
        
        if event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.INFO:
            self._logger.info("audit_event", **log_dict)
        else:
            self._logger.debug("audit_event", **log_dict)
    
    def attach(self, bus: EventBus) -> None:
        """Subscribe to every audited topic of a bus."""
        for topic in AUDITED_TOPICS:
            subscription = bus.subscribe(topic, self._handler_for(topic))
            self._subscriptions.append((bus, subscription))
    
    def detach(self) -> None:
        for bus, subscription in self._subscriptions:
            bus.unsubscribe(subscription)
        self._subscriptions.clear()
    
    def _handler_for(self, topic: str):
        def handle(payload: Any) -> None:
            self.log(build_audit_event(topic, payload))
        return handle
