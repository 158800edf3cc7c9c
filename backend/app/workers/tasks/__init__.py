"""
Celery Tasks
"""

from .enrichment_tasks import enrich_customers_batch, run_async
from .maintenance_tasks import check_quota_alerts, clean_old_screenshots, remove_stale_files

__all__ = [
    "enrich_customers_batch",
    "run_async",
    "check_quota_alerts",
    "clean_old_screenshots",
    "remove_stale_files",
]
