"""
Enrichment Tasks
Bulk enrichment outside the request cycle
"""

import asyncio
from typing import Dict, List
from uuid import UUID

from celery.utils.log import get_task_logger

from app.workers.celery_app import celery_app
from app.utils.database import close_db, get_db_context

logger = get_task_logger(__name__)


async def _in_task_loop(coro):
    try:
        return await coro
    finally:
        # pooled connections belong to this loop, which closes with the task
        await close_db()


def run_async(coro):
    """Run async function in sync context on a loop of its own"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_in_task_loop(coro))
    finally:
        loop.close()


async def _enrich_batch(customer_ids: List[str], services: List[str]) -> Dict:
    from app.services.enrichment_service import EnrichmentService

    ids = []
    invalid = []
    for customer_id in customer_ids:
        try:
            ids.append(UUID(customer_id))
        except ValueError:
            invalid.append({"customer_id": customer_id, "success": False, "error": "Invalid customer id"})

    async with get_db_context() as db:
        summary = await EnrichmentService(db).bulk_enrich(ids, services)

    if invalid:
        summary["results"].extend(invalid)
        summary["total"] += len(invalid)
        summary["failed"] += len(invalid)
    return summary


@celery_app.task(
    bind=True,
    name="app.workers.tasks.enrichment_tasks.enrich_customers_batch",
)
def enrich_customers_batch(self, customer_ids: List[str], services: List[str]) -> Dict:
    """
    Enrich customers one after another.

    Args:
        customer_ids: customer UUIDs as strings
        services: enrichment services to run for each customer

    Returns:
        Dict with per-customer outcomes
    """
    logger.info(f"Bulk enrichment task {self.request.id}: {len(customer_ids)} customers, services={services}")
    summary = run_async(_enrich_batch(customer_ids, services))
    logger.info(
        f"Bulk enrichment task {self.request.id} done: "
        f"{summary['succeeded']} succeeded, {summary['failed']} failed"
    )
    return summary
