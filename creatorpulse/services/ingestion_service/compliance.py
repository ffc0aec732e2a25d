"""Compliance checks over stored events.

Reports events that outlived their retention and stored payload fields
the current policy no longer allows.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List

from creatorpulse.shared.models import policy_for
from creatorpulse.shared.utils import Clock, utcnow

from .event_store import EventStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComplianceIssue:
    issue_type: str
    description: str
    count: int
    severity: str


@dataclass(frozen=True)
class ComplianceReport:
    checked_at: datetime
    events_checked: int
    issues: List[ComplianceIssue] = field(default_factory=list)

    @property
    def compliant(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked_at": self.checked_at.isoformat(),
            "events_checked": self.events_checked,
            "compliant": self.compliant,
            "issues": [
                {
                    "type": i.issue_type,
                    "description": i.description,
                    "count": i.count,
                    "severity": i.severity,
                }
                for i in self.issues
            ],
        }


class ComplianceMonitor:
    """Audits the event store against retention and minimization rules."""

    def __init__(self, event_store: EventStore, clock: Clock = utcnow):
        self._store = event_store
        self._clock = clock

    def check(self) -> ComplianceReport:
        now = self._clock()
        events = self._store.find_all()

        overdue: Counter = Counter()
        disallowed: Counter = Counter()

        for event in events:
            policy = policy_for(event.purpose)
            cutoff = now - timedelta(days=policy.retention_days)
            if event.retention_until <= now or event.timestamp < cutoff:
                overdue[event.purpose.value] += 1
            for name in event.payload:
                if name not in policy.payload_fields:
                    disallowed[(event.purpose.value, name)] += 1

        issues = [
            ComplianceIssue(
                issue_type="retention_overdue",
                description=f"{purpose} events past retention",
                count=count,
                severity="high",
            )
            for purpose, count in sorted(overdue.items())
        ]
        issues.extend(
            ComplianceIssue(
                issue_type="minimization_violation",
                description=f"{purpose} events store disallowed field {name}",
                count=count,
                severity="critical",
            )
            for (purpose, name), count in sorted(disallowed.items())
        )

        report = ComplianceReport(checked_at=now, events_checked=len(events), issues=issues)
        log = logger.warning if issues else logger.info
        log(
            "COMPLIANCE_CHECK_COMPLETED",
            extra={"events_checked": len(events), "issue_count": len(issues)}
        )
        return report
