"""Consent records.

Consent is kept as an append-only history per (subject, category). The
newest record is the current state; withdrawing appends a record rather
than deleting one, so the trail survives until the subject is erased.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..utils.clock import utcnow
from .purposes import CONSENT_VERSION, ConsentCategory


@dataclass(frozen=True)
class ConsentRecord:
    """One consent state transition for a subject and category.

    subject_id holds the subject key (session hash or hashed account id),
    never a raw account identifier.
    """
    subject_id: str
    category: ConsentCategory
    granted: bool
    version: str = CONSENT_VERSION
    granted_at: Optional[datetime] = None
    withdrawn_at: Optional[datetime] = None
    recorded_at: datetime = field(default_factory=utcnow)
    record_id: str = field(default_factory=lambda: f"consent_{uuid.uuid4().hex[:16]}")

    def __post_init__(self):
        if not self.subject_id:
            raise ValueError("subject_id is required")
        if self.granted and self.granted_at is None:
            raise ValueError("granted records need granted_at")
        if not self.granted and self.withdrawn_at is None and self.granted_at is not None:
            raise ValueError("withdrawn records need withdrawn_at")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "granted": self.granted,
            "version": self.version,
            "granted_at": self.granted_at.isoformat() if self.granted_at else None,
            "withdrawn_at": self.withdrawn_at.isoformat() if self.withdrawn_at else None,
        }
