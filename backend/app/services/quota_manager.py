"""
Quota Manager
Daily request budgets for metered external APIs

Mechanisms:
- Lazy day rollover: the first access on a new UTC day archives yesterday's
  usage into quota_history and zeroes the counters
- Atomic increment: a single guarded UPDATE, never read-modify-write
- Fail-closed: if the store cannot be read, the quota is reported exhausted
- Read cache: short TTL snapshot, invalidated on every successful write
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings, QUOTA_SERVICES
from app.models.database import QuotaRecord, QuotaHistory, utcnow
from app.utils.cache import QuotaCache, QuotaSnapshot, quota_cache
from app.utils.database import session_lock
from app.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class QuotaCheck:
    """Result of a quota check"""
    allowed: bool
    used: int
    limit: int
    reset_in: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QuotaAlert:
    """A service that crossed its alert threshold"""
    service: str
    used: int
    limit: int
    percentage: float
    threshold: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class QuotaManager:
    """
    Persistent per-service daily budget tracker.

    Each write is committed on its own so the quota row is never held locked
    for the length of an enrichment run.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: QuotaCache = quota_cache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.cache = cache
        self.clock = clock
        self.settings = get_settings()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _default_limit(self, service: str) -> int:
        if service not in QUOTA_SERVICES:
            raise ValidationError(
                f"Unknown quota service: {service}. Must be one of {QUOTA_SERVICES}"
            )
        return self.settings.quota_limits[service]

    def format_reset_in(self) -> str:
        """Time left until the next UTC midnight, as "{h}h {m}m" """
        now = self.clock()
        tomorrow = _start_of_day(now) + timedelta(days=1)
        seconds = int((tomorrow - now).total_seconds())
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"

    async def _rollback_quietly(self) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            logger.debug(f"Rollback after quota store failure also failed: {e}")

    async def _fetch(self, service: str) -> Optional[QuotaRecord]:
        result = await self.db.execute(
            select(QuotaRecord)
            .where(QuotaRecord.service == service)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_or_create(self, service: str) -> QuotaRecord:
        """Load a quota row, creating it lazily with the configured limit"""
        record = await self._fetch(service)
        if record is None:
            record = QuotaRecord(
                service=service,
                used=0,
                limit=self._default_limit(service),
                last_reset=self.clock(),
                success_count=0,
                error_count=0,
                alert_threshold=self.settings.QUOTA_ALERT_THRESHOLD,
                alert_sent=False,
            )
            self.db.add(record)
            await self.db.flush()
            await self.db.commit()
            logger.info(f"Created quota record for {service} (limit {record.limit}/day)")
        return record

    async def _rollover_if_needed(self, record: QuotaRecord) -> QuotaRecord:
        """
        Reset the counters when the calendar day has advanced.

        The UPDATE is guarded on last_reset so only one of several concurrent
        callers archives the previous day.
        """
        today = _start_of_day(self.clock())
        if record.last_reset >= today:
            return record

        archived_date = record.last_reset.date()
        snapshot = {
            "used": record.used,
            "success_count": record.success_count,
            "error_count": record.error_count,
        }

        result = await self.db.execute(
            update(QuotaRecord)
            .where(and_(QuotaRecord.id == record.id, QuotaRecord.last_reset < today))
            .values(
                used=0,
                success_count=0,
                error_count=0,
                last_error=None,
                last_error_at=None,
                alert_sent=False,
                last_reset=self.clock(),
                updated_at=self.clock(),
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            await self._archive(record.id, archived_date, snapshot)
            logger.info(
                f"Quota {record.service} rolled over: archived {snapshot['used']} "
                f"requests for {archived_date.isoformat()}"
            )

        await self.db.commit()
        self.cache.invalidate(record.service)
        return await self._fetch(record.service)

    async def _archive(self, quota_id, day, snapshot: Dict[str, int]) -> None:
        """Upsert the history row for (quota_id, day)"""
        result = await self.db.execute(
            select(QuotaHistory).where(
                QuotaHistory.quota_id == quota_id,
                QuotaHistory.date == day,
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            entry = QuotaHistory(quota_id=quota_id, date=day, **snapshot)
            self.db.add(entry)
        else:
            entry.used = snapshot["used"]
            entry.success_count = snapshot["success_count"]
            entry.error_count = snapshot["error_count"]
        await self.db.flush()

    async def _load(self, service: str) -> QuotaRecord:
        record = await self._get_or_create(service)
        return await self._rollover_if_needed(record)

    async def _snapshot(self, service: str) -> QuotaSnapshot:
        """Cached view of a quota row, refreshed after the TTL or a new day"""
        cached = self.cache.get(service)
        if cached is not None and cached.last_reset >= _start_of_day(self.clock()):
            return cached

        record = await self._load(service)
        snapshot = QuotaSnapshot(
            service=service,
            used=record.used,
            limit=record.limit,
            last_reset=record.last_reset,
        )
        self.cache.set(service, snapshot)
        return snapshot

    # =========================================================================
    # ENFORCEMENT
    # =========================================================================

    async def can_make_request(self, service: str) -> QuotaCheck:
        """Check whether a metered call is allowed right now"""
        limit = self._default_limit(service)

        async with session_lock(self.db):
            try:
                snapshot = await self._snapshot(service)
            except Exception as e:
                logger.error(f"Quota store unavailable for {service}, failing closed: {e}")
                await self._rollback_quietly()
                return QuotaCheck(
                    allowed=False,
                    used=0,
                    limit=limit,
                    reset_in=self.format_reset_in(),
                )

        return QuotaCheck(
            allowed=snapshot.used < snapshot.limit,
            used=snapshot.used,
            limit=snapshot.limit,
            reset_in=self.format_reset_in(),
        )

    async def increment_usage(self, service: str, amount: int = 1) -> bool:
        """
        Consume ``amount`` units of quota.

        Returns False without incrementing when the increment would exceed the
        limit or the store is unavailable.
        """
        self._default_limit(service)

        async with session_lock(self.db):
            try:
                await self._load(service)
                result = await self.db.execute(
                    update(QuotaRecord)
                    .where(
                        QuotaRecord.service == service,
                        QuotaRecord.used + amount <= QuotaRecord.limit,
                    )
                    .values(used=QuotaRecord.used + amount, updated_at=self.clock())
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
            except Exception as e:
                logger.error(f"Failed to increment quota for {service}: {e}")
                await self._rollback_quietly()
                return False

        if result.rowcount != 1:
            logger.warning(f"Quota exhausted for {service}, increment refused")
            return False

        self.cache.invalidate(service)
        return True

    # =========================================================================
    # HEALTH COUNTERS
    # =========================================================================

    async def record_success(self, service: str) -> None:
        self._default_limit(service)

        async with session_lock(self.db):
            try:
                await self._load(service)
                await self.db.execute(
                    update(QuotaRecord)
                    .where(QuotaRecord.service == service)
                    .values(success_count=QuotaRecord.success_count + 1)
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
            except Exception as e:
                logger.warning(f"Could not record success for {service}: {e}")
                await self._rollback_quietly()

    async def record_error(self, service: str, message: str) -> None:
        self._default_limit(service)
        truncated = (message or "")[: self.settings.QUOTA_ERROR_MAX_LENGTH]

        async with session_lock(self.db):
            try:
                await self._load(service)
                await self.db.execute(
                    update(QuotaRecord)
                    .where(QuotaRecord.service == service)
                    .values(
                        error_count=QuotaRecord.error_count + 1,
                        last_error=truncated,
                        last_error_at=self.clock(),
                    )
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
            except Exception as e:
                logger.warning(f"Could not record error for {service}: {e}")
                await self._rollback_quietly()

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def check_quota_alerts(self) -> List[QuotaAlert]:
        """Emit one alert per service per day once usage crosses its threshold"""
        alerts: List[QuotaAlert] = []

        async with session_lock(self.db):
            for service in QUOTA_SERVICES:
                record = await self._load(service)
                if record.limit <= 0 or record.alert_sent:
                    continue

                percentage = record.used / record.limit * 100
                if percentage < record.alert_threshold:
                    continue

                result = await self.db.execute(
                    update(QuotaRecord)
                    .where(QuotaRecord.id == record.id, QuotaRecord.alert_sent.is_(False))
                    .values(alert_sent=True)
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
                if result.rowcount != 1:
                    continue

                logger.warning(
                    f"Quota alert: {service} at {percentage:.1f}% "
                    f"({record.used}/{record.limit}, threshold {record.alert_threshold}%)"
                )
                alerts.append(QuotaAlert(
                    service=service,
                    used=record.used,
                    limit=record.limit,
                    percentage=round(percentage, 1),
                    threshold=record.alert_threshold,
                ))

        return alerts

    # =========================================================================
    # REPORTING
    # =========================================================================

    def _info(self, record: QuotaRecord) -> Dict[str, Any]:
        percentage = (record.used / record.limit * 100) if record.limit else 100.0
        return {
            "service": record.service,
            "used": record.used,
            "limit": record.limit,
            "available": max(record.limit - record.used, 0),
            "percentage": round(percentage, 1),
            "reset_in": self.format_reset_in(),
            "success_count": record.success_count,
            "error_count": record.error_count,
            "last_error": record.last_error,
            "last_error_at": record.last_error_at.isoformat() if record.last_error_at else None,
            "alert_threshold": record.alert_threshold,
            "alert_sent": record.alert_sent,
            "last_reset": record.last_reset.isoformat() if record.last_reset else None,
        }

    async def get_quota_info(self, service: str) -> Dict[str, Any]:
        self._default_limit(service)
        async with session_lock(self.db):
            record = await self._load(service)
        return self._info(record)

    async def get_all_quotas_info(self) -> List[Dict[str, Any]]:
        infos = []
        async with session_lock(self.db):
            for service in QUOTA_SERVICES:
                record = await self._load(service)
                infos.append(self._info(record))
        return infos

    async def _history(self, service: str, days: int) -> List[Dict[str, Any]]:
        since = (_start_of_day(self.clock()) - timedelta(days=days)).date()
        result = await self.db.execute(
            select(QuotaHistory, QuotaRecord.limit)
            .join(QuotaRecord, QuotaRecord.id == QuotaHistory.quota_id)
            .where(QuotaRecord.service == service, QuotaHistory.date >= since)
            .order_by(QuotaHistory.date.desc())
        )
        return [
            {
                "service": service,
                "date": entry.date.isoformat(),
                "used": entry.used,
                "limit": limit,
                "success_count": entry.success_count,
                "error_count": entry.error_count,
            }
            for entry, limit in result.all()
        ]

    @staticmethod
    def _check_days(days: int) -> None:
        if days < 1 or days > 30:
            raise ValidationError("History window must be between 1 and 30 days")

    async def get_history(self, service: str, days: int = 7) -> List[Dict[str, Any]]:
        """Archived daily usage for one service, newest first"""
        self._default_limit(service)
        self._check_days(days)
        async with session_lock(self.db):
            return await self._history(service, days)

    async def get_all_history(self, days: int = 7) -> Dict[str, List[Dict[str, Any]]]:
        self._check_days(days)
        async with session_lock(self.db):
            return {service: await self._history(service, days) for service in QUOTA_SERVICES}

    # =========================================================================
    # ADMIN
    # =========================================================================

    async def set_alert_threshold(self, service: str, threshold: int) -> Dict[str, Any]:
        self._default_limit(service)
        if threshold < 1 or threshold > 100:
            raise ValidationError("Alert threshold must be between 1 and 100")

        async with session_lock(self.db):
            record = await self._load(service)
            await self.db.execute(
                update(QuotaRecord)
                .where(QuotaRecord.id == record.id)
                .values(alert_threshold=threshold)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            record = await self._fetch(service)

        self.cache.invalidate(service)
        return self._info(record)

    async def _reset(self, service: str) -> None:
        await self._get_or_create(service)
        await self.db.execute(
            update(QuotaRecord)
            .where(QuotaRecord.service == service)
            .values(used=0, alert_sent=False, last_reset=self.clock(), updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        self.cache.invalidate(service)
        logger.info(f"Quota {service} manually reset")

    async def reset_quota(self, service: str) -> None:
        """Manual reset, without archiving"""
        self._default_limit(service)
        async with session_lock(self.db):
            await self._reset(service)

    async def reset_all_quotas(self) -> None:
        async with session_lock(self.db):
            for service in QUOTA_SERVICES:
                await self._reset(service)
