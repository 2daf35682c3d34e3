"""
Celery settings for the stamping workers and the stale-state reaper.

Loaded by `celery_app.config_from_object("celeryconfig")` in stamping/tasks/__init__.py.
Redis URLs and the reaper interval are read from the environment and
point at a local Redis when unset.
"""

import os

# ═══════════════════════════════════════════════════════════
#  Broker & Result Backend
# ═══════════════════════════════════════════════════════════

broker_url = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
result_backend = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

# ═══════════════════════════════════════════════════════════
#  Serialization — jobs carry ids and versions only
# ═══════════════════════════════════════════════════════════

task_serializer = "json"
result_serializer = "json"
accept_content = ["json"]

# ═══════════════════════════════════════════════════════════
#  Timezone — lock ages are compared in UTC
# ═══════════════════════════════════════════════════════════

timezone = "UTC"
enable_utc = True

# ═══════════════════════════════════════════════════════════
#  Job Delivery
# ═══════════════════════════════════════════════════════════

# A job redelivered after a worker crash meets the document lock and
# the attempt ledger, so it cannot submit twice.
task_acks_late = True
task_reject_on_worker_lost = True

# One provider call in flight per worker process.
worker_prefetch_multiplier = 1

# Soft limit sits above PROVIDER_CALL_TIMEOUT_SECONDS (120 s) and below
# LOCK_TIMEOUT_SECONDS (300 s), so a stuck job dies before its lock goes stale.
task_soft_time_limit = 240
task_time_limit = 270

# Retry countdowns come from stamping.submission.retry_handler, not here.

# ═══════════════════════════════════════════════════════════
#  Results — outcome dicts kept for a day
# ═══════════════════════════════════════════════════════════

result_expires = 86400

# ═══════════════════════════════════════════════════════════
#  Worker Processes
# ═══════════════════════════════════════════════════════════

# Each job opens and disposes its own engine; recycle processes anyway.
worker_max_tasks_per_child = 500

# Turn on with: celery -A stamping.tasks worker -E
worker_send_task_events = False
task_send_sent_event = False

# ═══════════════════════════════════════════════════════════
#  Queues
# ═══════════════════════════════════════════════════════════
#   celery -A stamping.tasks worker -Q submissions    (submit_document)
#   celery -A stamping.tasks worker -Q maintenance    (reap_stale_submissions)
#   celery -A stamping.tasks beat                     (schedules the reaper)

task_routes = {
    "stamping.tasks.submission_tasks.*": {"queue": "submissions"},
    "stamping.tasks.maintenance_tasks.*": {"queue": "maintenance"},
}

task_default_queue = "submissions"

# ═══════════════════════════════════════════════════════════
#  Beat — expire stuck attempts and orphaned locks
# ═══════════════════════════════════════════════════════════

beat_schedule = {
    "reap-stale-submissions": {
        "task": "stamping.tasks.maintenance_tasks.reap_stale_submissions",
        "schedule": float(os.getenv("REAPER_INTERVAL_SECONDS", "60")),
    },
}
