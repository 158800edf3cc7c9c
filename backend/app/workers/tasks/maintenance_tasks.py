"""
Maintenance Tasks
Periodic quota alerting and screenshot cleanup
"""

import time
from pathlib import Path
from typing import Dict, List, Optional

from celery.utils.log import get_task_logger

from app.config import get_settings
from app.workers.celery_app import celery_app
from app.workers.tasks.enrichment_tasks import run_async
from app.utils.database import get_db_context

logger = get_task_logger(__name__)


async def _check_alerts() -> List[Dict]:
    from app.services.quota_manager import QuotaManager

    async with get_db_context() as db:
        alerts = await QuotaManager(db).check_quota_alerts()
    return [alert.to_dict() for alert in alerts]


@celery_app.task(name="app.workers.tasks.maintenance_tasks.check_quota_alerts")
def check_quota_alerts() -> Dict:
    """Hourly: report services that crossed their alert threshold today"""
    alerts = run_async(_check_alerts())
    for alert in alerts:
        logger.warning(
            f"Quota alert for {alert['service']}: {alert['used']}/{alert['limit']} "
            f"({alert['percentage']:.1f}%)"
        )
    return {"alerts": alerts}


def remove_stale_files(directory: Path, max_age_days: int, now: Optional[float] = None) -> List[str]:
    """Delete PNG files older than ``max_age_days``; returns the removed names"""
    if not directory.is_dir():
        return []

    cutoff = (now if now is not None else time.time()) - max_age_days * 86400
    removed = []
    for path in directory.glob("*.png"):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed.append(path.name)
        except OSError as e:
            logger.warning(f"Could not remove {path.name}: {e}")
    return removed


@celery_app.task(name="app.workers.tasks.maintenance_tasks.clean_old_screenshots")
def clean_old_screenshots() -> Dict:
    """Daily: drop screenshots past the retention window"""
    settings = get_settings()
    removed = remove_stale_files(Path(settings.SCREENSHOTS_DIR), settings.SCREENSHOT_RETENTION_DAYS)
    logger.info(f"Removed {len(removed)} screenshots older than {settings.SCREENSHOT_RETENTION_DAYS} days")
    return {"removed": len(removed)}
