"""
Submission coordination core.

    idempotency   — stable keys per (document, version, context)
    classifier    — provider failure → {kind, retryable}
    lock          — exclusive, time-bounded submission rights per document
    orchestrator  — per-job control flow around the provider call
    reaper        — expires orphaned locks and in-flight attempts
    inspection    — read-only views for operators
"""
