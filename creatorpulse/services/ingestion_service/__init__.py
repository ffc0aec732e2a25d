"""Ingestion Service - consent-gated, minimized, append-only event capture.

Also owns the lifecycle of stored events: retention sweeps, scheduled
erasure after consent withdrawal, and compliance checks.
"""

from .compliance import ComplianceIssue, ComplianceMonitor, ComplianceReport
from .event_store import EventStore
from .ingestor import EventIngestor
from .minimizer import DataMinimizer, InvalidFieldError, MinimizedPayload, extract_hashtags
from .retention import ErasureProcessor, RetentionSweeper

__all__ = [
    "ComplianceIssue",
    "ComplianceMonitor",
    "ComplianceReport",
    "EventStore",
    "EventIngestor",
    "DataMinimizer",
    "InvalidFieldError",
    "MinimizedPayload",
    "extract_hashtags",
    "ErasureProcessor",
    "RetentionSweeper",
]
