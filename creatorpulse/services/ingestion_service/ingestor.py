"""Event ingestion: consent check, minimization, then append.

Rejections are returned as IngestResult values. Only store failures
raise, as StorageError, so the caller can retry.
"""
import logging
import uuid
from datetime import timedelta
from typing import Any, List, Mapping, Optional

from creatorpulse.shared.models import (
    Event,
    EventType,
    IngestResult,
    Purpose,
    RejectionReason,
    policy_for,
)
from creatorpulse.shared.utils import Clock, is_valid_session_format, utcnow

from ..consent_service import ConsentGate
from .event_store import EventStore
from .minimizer import DataMinimizer, InvalidFieldError, extract_hashtags

logger = logging.getLogger(__name__)


class EventIngestor:
    """The hot ingestion path.

    Args:
        consent_gate: Consulted on every call, never cached
        minimizer: Applies the purpose allow-list and sanitizers
        event_store: Append-only destination
        reject_unknown_purpose: Reject rather than degrade to the strict default
    """

    def __init__(
        self,
        consent_gate: ConsentGate,
        minimizer: DataMinimizer,
        event_store: EventStore,
        clock: Clock = utcnow,
        reject_unknown_purpose: bool = False,
    ):
        self._consent = consent_gate
        self._minimizer = minimizer
        self._store = event_store
        self._clock = clock
        self._reject_unknown_purpose = reject_unknown_purpose

    def ingest(
        self,
        event_type: Any,
        raw_payload: Mapping[str, Any],
        purpose: Any,
        subject_id: str,
    ) -> IngestResult:
        """Ingest one event.

        Args:
            event_type: EventType or its string value
            raw_payload: Client payload
            purpose: Purpose or its string value
            subject_id: Session hash or account key

        Returns:
            IngestResult with the event id, or the rejection reason

        Raises:
            StorageError: If the event store is unavailable
        """
        if not is_valid_session_format(subject_id):
            logger.warning("INGEST_MALFORMED_SUBJECT", extra={"subject_length": len(str(subject_id))})
            return IngestResult.reject(RejectionReason.INVALID_FIELD, "subject_id: not a session hash")

        declared = Purpose.parse(purpose)
        if declared is None:
            if self._reject_unknown_purpose:
                logger.warning("INGEST_UNKNOWN_PURPOSE_REJECTED", extra={"purpose": str(purpose)[:64]})
                return IngestResult.reject(RejectionReason.UNKNOWN_PURPOSE, f"unknown purpose {purpose!r}")
            logger.warning(
                "INGEST_UNKNOWN_PURPOSE_DEFAULT_POLICY",
                extra={"purpose": str(purpose)[:64]}
            )
        policy = policy_for(declared)

        if not self._consent.has_consent(subject_id, policy.required_category):
            logger.debug(
                "INGEST_CONSENT_MISSING",
                extra={"category": policy.required_category.value}
            )
            return IngestResult.reject(RejectionReason.CONSENT_MISSING)

        parsed_type = EventType.parse(event_type)
        if parsed_type is None:
            logger.warning("INGEST_UNKNOWN_EVENT_TYPE", extra={"event_type": str(event_type)[:64]})
            return IngestResult.reject(RejectionReason.INVALID_FIELD, "event_type: unknown")

        try:
            minimized = self._minimizer.minimize(parsed_type, raw_payload, policy)
        except InvalidFieldError as e:
            logger.warning(
                "INGEST_INVALID_FIELD",
                extra={"event_type": parsed_type.value, "field": e.field, "reason": e.reason}
            )
            return IngestResult.reject(RejectionReason.INVALID_FIELD, str(e))

        now = self._clock()
        event = Event(
            event_id=f"evt_{uuid.uuid4().hex}",
            event_type=parsed_type,
            session_hash=subject_id,
            purpose=policy.purpose,
            timestamp=now,
            retention_until=now + timedelta(days=policy.retention_days),
            payload=minimized.fields,
            platform=minimized.fields.get("platform"),
        )
        self._store.append(event)

        logger.info(
            "EVENT_INGESTED",
            extra={
                "event_id": event.event_id,
                "event_type": parsed_type.value,
                "purpose": policy.purpose.value,
                "field_count": len(minimized.fields),
            }
        )
        return IngestResult.accept(event.event_id)

    def ingest_hashtags(
        self,
        text: str,
        subject_id: str,
        platform: Optional[str] = None,
        tone: Optional[str] = None,
    ) -> List[IngestResult]:
        """Track the hashtags a subject typed into caption input.

        One hashtag_added event per distinct tag, under the hashtag trend
        purpose. The text itself is never stored.

        Args:
            text: Caption or description as typed
            subject_id: Session hash or account key
            platform: Optional target platform
            tone: Optional tone

        Returns:
            One IngestResult per extracted hashtag, in order of first use
        """
        context = {}
        if platform:
            context["platform"] = platform
        if tone:
            context["tone"] = tone

        results = [
            self.ingest(
                EventType.HASHTAG_ADDED,
                dict(context, hashtag=tag),
                Purpose.HASHTAG_TREND_ANALYSIS,
                subject_id,
            )
            for tag in extract_hashtags(text)
        ]
        logger.info(
            "CAPTION_HASHTAGS_TRACKED",
            extra={
                "extracted": len(results),
                "accepted": sum(1 for r in results if r.accepted),
            }
        )
        return results
