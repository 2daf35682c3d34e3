"""
Repositories package — data-access layer.

Each repository file handles all DB operations for one table.
Repositories do NOT make coordination decisions; the lock coordinator,
orchestrator and reaper do that inside their own transactions.

Convention:
    - One file per table (documents.py, attempts.py)
    - All functions accept `AsyncSession` as the first argument
    - Timestamps are passed in by the caller (injected clock)
    - Use `flush()` internally; commit/rollback is handled by `session_scope()`
"""
