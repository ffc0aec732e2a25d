"""CreatorPulse analytics services.

- Consent Service: default-deny consent per category, hash-chained audit log
- Ingestion Service: purpose-bound minimization, event store, retention
- Analytics Service: community baselines, trends and benchmarks
- Engine: wiring, background jobs and the HTTP adapter
"""
