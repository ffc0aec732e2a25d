"""Consent Service - default-deny consent per category with an audit trail.

Every consent change is appended to a hash-chained audit log holding
only hashed subject identifiers.
"""

from .audit_log import AUDIT_RETENTION, AuditAction, AuditEntry, ConsentAuditLog
from .consent_gate import ERASURE_GRACE_PERIOD, ConsentGate
from .consent_repository import ConsentRepository, ScheduledErasure

__all__ = [
    "AUDIT_RETENTION",
    "AuditAction",
    "AuditEntry",
    "ConsentAuditLog",
    "ERASURE_GRACE_PERIOD",
    "ConsentGate",
    "ConsentRepository",
    "ScheduledErasure",
]
