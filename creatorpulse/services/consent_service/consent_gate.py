"""Consent Gate - per-category, default-deny consent for subjects.

Consulted before every ingestion. Decisions are read from the repository
on each call and never cached, so a change is visible to the very next
event from the same subject.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional

from creatorpulse.shared.models import ConsentCategory, ConsentRecord
from creatorpulse.shared.utils import Clock, is_valid_session_format, subject_key, utcnow

from .audit_log import AuditAction, ConsentAuditLog
from .consent_repository import ConsentRepository

logger = logging.getLogger(__name__)

ERASURE_GRACE_PERIOD = timedelta(days=30)


class ConsentGate:
    """Holds and answers consent questions for subjects.

    Granting one category never implies another. Withdrawing everything
    schedules erasure of the subject's data after a grace period; any new
    grant before then cancels it.
    """

    def __init__(
        self,
        repository: ConsentRepository,
        audit_log: ConsentAuditLog,
        clock: Clock = utcnow,
        erasure_grace_period: timedelta = ERASURE_GRACE_PERIOD,
    ):
        self._repository = repository
        self._audit = audit_log
        self._clock = clock
        self._grace = erasure_grace_period

    def _key(self, subject_id: str) -> str:
        return subject_key(subject_id)

    @staticmethod
    def _require_category(category) -> ConsentCategory:
        parsed = ConsentCategory.parse(category)
        if parsed is None:
            raise ValueError(f"Unknown consent category: {category!r}")
        return parsed

    def has_consent(self, subject_id: str, category) -> bool:
        """True only if the newest record for this category grants it.

        Unknown subjects, unknown categories and malformed subject keys
        are all answered False.
        """
        parsed = ConsentCategory.parse(category)
        if parsed is None or not is_valid_session_format(subject_id):
            return False

        record = self._repository.latest(self._key(subject_id), parsed)
        return bool(record and record.granted)

    def set_consent(self, subject_id: str, category, granted: bool) -> ConsentRecord:
        """Record a grant or withdrawal for one category.

        Args:
            subject_id: Session hash or account key
            category: ConsentCategory or its string value
            granted: New state

        Returns:
            The appended ConsentRecord

        Raises:
            ValueError: On an unknown category or malformed subject key
        """
        parsed = self._require_category(category)
        key = self._key(subject_id)
        now = self._clock()

        previous = self._repository.latest(key, parsed)
        if granted:
            record = ConsentRecord(
                subject_id=key,
                category=parsed,
                granted=True,
                granted_at=now,
                recorded_at=now,
            )
        else:
            record = ConsentRecord(
                subject_id=key,
                category=parsed,
                granted=False,
                granted_at=previous.granted_at if previous else None,
                withdrawn_at=now,
                recorded_at=now,
            )

        self._repository.append(record)
        self._audit.log(
            AuditAction.CONSENT_GRANTED if granted else AuditAction.CONSENT_WITHDRAWN,
            subject_key=key,
            category=parsed.value,
            details={"version": record.version},
        )

        if granted and self._repository.cancel_erasure(key):
            self._audit.log(AuditAction.ERASURE_CANCELLED, subject_key=key)
            logger.info("ERASURE_CANCELLED", extra={"subject_hash": key[:8]})

        logger.info(
            "CONSENT_UPDATED",
            extra={"subject_hash": key[:8], "category": parsed.value, "granted": granted}
        )
        return record

    def set_consents(self, subject_id: str, choices: Mapping) -> List[ConsentRecord]:
        """Apply several category choices at once. Categories not named are untouched."""
        parsed = {self._require_category(c): bool(g) for c, g in choices.items()}
        return [self.set_consent(subject_id, c, g) for c, g in parsed.items()]

    def withdraw_consent(self, subject_id: str, category) -> ConsentRecord:
        return self.set_consent(subject_id, category, False)

    def withdraw_all(self, subject_id: str) -> None:
        """Withdraw every granted category and schedule erasure.

        Deletion happens after the grace period, not now.
        """
        key = self._key(subject_id)
        now = self._clock()

        withdrawn = []
        for category, record in self._repository.current_states(key).items():
            if record.granted:
                self._repository.append(ConsentRecord(
                    subject_id=key,
                    category=category,
                    granted=False,
                    granted_at=record.granted_at,
                    withdrawn_at=now,
                    recorded_at=now,
                ))
                withdrawn.append(category.value)

        due_at = now + self._grace
        self._repository.schedule_erasure(key, due_at, now)

        self._audit.log(
            AuditAction.CONSENT_WITHDRAWN_ALL,
            subject_key=key,
            details={"categories": sorted(withdrawn)},
        )
        self._audit.log(
            AuditAction.ERASURE_SCHEDULED,
            subject_key=key,
            details={"due_at": due_at.isoformat()},
        )

        logger.info(
            "CONSENT_WITHDRAWN_ALL",
            extra={
                "subject_hash": key[:8],
                "categories_withdrawn": len(withdrawn),
                "erasure_due_at": due_at.isoformat(),
            }
        )

    def get_consents(self, subject_id: str) -> Dict[str, bool]:
        """Current state of every category; absent records read as False."""
        states = self._repository.current_states(self._key(subject_id))
        return {
            category.value: bool(states.get(category) and states[category].granted)
            for category in ConsentCategory
        }

    def create_schema(self) -> None:
        self._repository.create_schema()
        self._audit.create_schema()

    def get_history(self, subject_id: str) -> List[ConsentRecord]:
        return self._repository.history(self._key(subject_id))

    def pending_erasure(self, subject_id: str) -> Optional[datetime]:
        erasure = self._repository.pending_erasure(self._key(subject_id))
        return erasure.due_at if erasure else None

    def due_erasures(self, now: Optional[datetime] = None) -> List[str]:
        """Subject keys whose grace period has elapsed."""
        return [e.subject_id for e in self._repository.due_erasures(now or self._clock())]

    def forget_subject(self, subject_key_value: str) -> int:
        """Delete consent history for a subject key. The audit trail is kept."""
        return self._repository.delete_subject(subject_key_value)

    def consent_statistics(self) -> Dict[str, int]:
        counts = self._repository.granted_counts()
        return {category.value: counts.get(category.value, 0) for category in ConsentCategory}
