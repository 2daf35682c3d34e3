"""
Celery application factory.
"""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from stamping.core.config import settings
from stamping.core.logging import setup_logging

celery_app = Celery("stamping")
celery_app.config_from_object("celeryconfig")

# Auto-discover tasks in these modules
celery_app.autodiscover_tasks([
    "stamping.tasks.submission_tasks",
    "stamping.tasks.maintenance_tasks",
])


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    # Connected handler stops Celery from installing its own root handlers.
    setup_logging(settings.LOG_LEVEL)
