"""
Enrichment Service
Runs the requested enrichment facets for one customer and resolves the
human review of the AI-suggested fields
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.adapters.providers import SocialUrlValidator, UrlVerificationClient
from app.config import get_settings
from app.models.database import (
    Customer,
    EnrichmentRecord,
    EnrichmentRecordStatus,
    EnrichmentStatus,
    FieldReviewStatus,
    WebsiteAnalysis,
    utcnow,
)
from app.services.ai_service import AICompletionService
from app.services.api_key_service import ApiKeyService
from app.services.consensus_service import ConsensusService, EnrichmentOutput
from app.services.enrichment_post_processor import EnrichmentPostProcessor
from app.services.quota_manager import QuotaManager
from app.services.website_analysis_service import PROBES, WebsiteAnalysisService, analysis_to_dict
from app.utils.database import session_lock
from app.utils.exceptions import ConflictError, NotFoundError, ValidationError
from app.utils.url_validator import validate_url

logger = logging.getLogger(__name__)

AI_SERVICES = ["ai", "ai_quick"]
SERVICES = AI_SERVICES + PROBES + ["external", "social"]

# a reachable AI-found website is averaged with this confidence, then boosted
VERIFIED_WEBSITE_CONFIDENCE = 0.5
VERIFIED_WEBSITE_BOOST = 1.1

REVIEWABLE_FIELDS = [
    "website",
    "industry",
    "description",
    "companySize",
    "address",
    "emails",
    "phones",
    "socialProfiles",
]

# enrichment field -> (value column, score column) on EnrichmentRecord
RECORD_COLUMNS = {
    "website": ("website", "website_score"),
    "emails": ("emails", "emails_score"),
    "phones": ("phones", "phones_score"),
    "address": ("address", "address_score"),
    "description": ("description", "description_score"),
    "industry": ("industry", "industry_score"),
    "companySize": ("company_size", "company_size_score"),
    "socialProfiles": ("social_profiles", "social_profiles_score"),
}

SOCIAL_COLUMNS = ["facebook", "instagram", "linkedin", "twitter", "whatsapp"]

REVIEW_ACTIONS = ("confirm", "reject", "edit")


def _has_data(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return True


def _first_contact(items: Any, *keys: str) -> Optional[str]:
    """First entry of an email/phone list, either a plain string or an object"""
    if not isinstance(items, list) or not items:
        return None
    first = items[0]
    if isinstance(first, dict):
        for key in keys:
            if first.get(key):
                return str(first[key])
        return None
    return str(first) if first else None


def customer_updates(field_name: str, value: Any) -> Dict[str, Any]:
    """Customer column values that a confirmed field writes"""
    if field_name == "website":
        return {"website": value}
    if field_name == "industry":
        return {"industry": value}
    if field_name == "description":
        return {"description": value, "notes": value}
    if field_name == "companySize":
        return {"company_size": value}
    if field_name == "address":
        return {"address": value}
    if field_name == "emails":
        email = _first_contact(value, "value", "email")
        return {"email": email} if email else {}
    if field_name == "phones":
        phone = _first_contact(value, "value", "number")
        return {"phone": phone} if phone else {}
    if field_name == "socialProfiles":
        if not isinstance(value, dict):
            return {}
        updates = {}
        for network, url in value.items():
            network = network.lower()
            if network == "x":
                network = "twitter"
            if network in SOCIAL_COLUMNS and url:
                updates[network] = url
        return updates
    return {}


def _isoformat(value: Any) -> Optional[str]:
    return value.isoformat() if value else None


def record_to_dict(record: EnrichmentRecord) -> Dict[str, Any]:
    return {
        "id": str(record.id),
        "customer_id": str(record.customer_id),
        "website": record.website,
        "website_score": record.website_score,
        "emails": record.emails,
        "emails_score": record.emails_score,
        "phones": record.phones,
        "phones_score": record.phones_score,
        "address": record.address,
        "address_score": record.address_score,
        "description": record.description,
        "description_score": record.description_score,
        "industry": record.industry,
        "industry_score": record.industry_score,
        "company_size": record.company_size,
        "company_size_score": record.company_size_score,
        "social_profiles": record.social_profiles,
        "social_profiles_score": record.social_profiles_score,
        "sources": record.sources or {},
        "ai_providers_used": record.ai_providers_used or [],
        "enriched_at": _isoformat(record.enriched_at),
        "status": record.status.value if record.status else None,
        "field_statuses": record.field_statuses or {},
        "reviewed_at": _isoformat(record.reviewed_at),
        "reviewed_by": record.reviewed_by,
    }


def history_entry(record: EnrichmentRecord) -> Dict[str, Any]:
    statuses = record.field_statuses or {}
    return {
        "id": str(record.id),
        "enriched_at": _isoformat(record.enriched_at),
        "providers": record.ai_providers_used or [],
        "fields_found": len(statuses),
        "fields_confirmed": sum(1 for s in statuses.values() if s == FieldReviewStatus.CONFIRMED.value),
        "fields_rejected": sum(1 for s in statuses.values() if s == FieldReviewStatus.REJECTED.value),
        "status": record.status.value if record.status else None,
    }


def _failure(error: BaseException) -> Dict[str, Any]:
    return {"success": False, "error": str(error) or type(error).__name__}


class EnrichmentService:
    """
    Top-level orchestrator.

    The AI facet and the website facet run concurrently on the request's
    session. The AI answer is then checked: its website must answer, and the
    external facet cross-checks it against data APIs. Social validation runs
    last because it checks the profiles found so far. A failing facet never
    fails the run.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()
        self.quota = QuotaManager(db)
        self.api_keys = ApiKeyService(db)
        self.ai = AICompletionService(self.api_keys)
        self.consensus = ConsensusService(self.ai)
        self.website = WebsiteAnalysisService(db, self.quota, self.api_keys)
        self.social = SocialUrlValidator()
        self.verifier = UrlVerificationClient()
        self.post_processor = EnrichmentPostProcessor(self.quota, self.api_keys)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_customer(self, customer_id: UUID) -> Customer:
        async with session_lock(self.db):
            result = await self.db.execute(
                select(Customer)
                .where(Customer.id == customer_id)
                .execution_options(populate_existing=True)
            )
            customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFoundError("Customer not found")
        return customer

    async def _latest_record(self, customer_id: UUID) -> Optional[EnrichmentRecord]:
        result = await self.db.execute(
            select(EnrichmentRecord)
            .where(EnrichmentRecord.customer_id == customer_id)
            .order_by(EnrichmentRecord.enriched_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def cooldown(self, customer_id: UUID) -> Dict[str, Any]:
        """Whether the customer was enriched within the cooldown window"""
        async with session_lock(self.db):
            latest = await self._latest_record(customer_id)
        if latest is None or latest.enriched_at is None:
            return {"cooldown_warning": False, "hours_ago": None}

        hours_ago = (utcnow() - latest.enriched_at).total_seconds() / 3600
        return {
            "cooldown_warning": hours_ago < self.settings.ENRICHMENT_COOLDOWN_HOURS,
            "hours_ago": round(hours_ago, 1),
        }

    @staticmethod
    def _validate_services(services: List[str]) -> List[str]:
        if not services:
            raise ValidationError("At least one service is required")
        unknown = [service for service in services if service not in SERVICES]
        if unknown:
            raise ValidationError(f"Unknown services: {unknown}. Must be among {SERVICES}")
        if "ai" in services and "ai_quick" in services:
            raise ValidationError("Choose either 'ai' or 'ai_quick', not both")
        if "external" in services and not any(service in AI_SERVICES for service in services):
            raise ValidationError("The 'external' service post-processes AI results; add 'ai' or 'ai_quick'")
        # keep request order, drop duplicates
        return list(dict.fromkeys(services))

    # =========================================================================
    # ENRICHMENT
    # =========================================================================

    async def _ai_branch(
        self,
        customer: Customer,
        service: str,
        fields: Optional[List[str]],
        provider: Optional[str],
    ) -> EnrichmentOutput:
        if service == "ai_quick":
            return await self.consensus.quick_enrich(customer, provider)
        return await self.consensus.enrich_client(customer, fields)

    async def run_enrichment(
        self,
        customer_id: UUID,
        services: List[str],
        fields: Optional[List[str]] = None,
        provider: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run the requested facets and persist what they produced.

        Returns ``{customer_id, services, results, succeeded, failed,
        enrichment_id, all_succeeded, cooldown_warning, hours_ago}``.
        """
        services = self._validate_services(services)
        customer = await self._get_customer(customer_id)

        if fields:
            unknown_fields = [f for f in fields if f not in RECORD_COLUMNS]
            if unknown_fields:
                raise ValidationError(f"Unknown enrichment fields: {unknown_fields}")

        probes = [service for service in services if service in PROBES]
        url = None
        if probes:
            if not customer.website:
                raise ValidationError("Customer has no website to analyze")
            validation = validate_url(customer.website)
            if not validation.valid:
                raise ValidationError(f"Invalid website URL: {validation.error}")
            url = validation.normalized_url

        ai_service = next((service for service in services if service in AI_SERVICES), None)
        if ai_service == "ai_quick" and provider:
            available = await self.ai.get_available_providers()
            if provider not in available:
                raise ValidationError(
                    f"Provider '{provider}' is not available. Available: {', '.join(available) or 'none'}"
                )

        cooldown = await self.cooldown(customer_id)
        if cooldown["cooldown_warning"]:
            logger.info(f"Customer {customer_id} was enriched {cooldown['hours_ago']}h ago")

        logger.info(f"Enrichment started for customer {customer_id}: {services}")

        branches = {}
        if ai_service:
            branches["ai"] = self._ai_branch(customer, ai_service, fields, provider)
        if probes:
            branches["website"] = self.website.analyze_website(customer_id, url, probes)

        settled = await asyncio.gather(*branches.values(), return_exceptions=True)
        outcomes = dict(zip(branches.keys(), settled))

        for outcome in outcomes.values():
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome

        results: Dict[str, Dict[str, Any]] = {}
        ai_output: Optional[EnrichmentOutput] = None

        if ai_service:
            outcome = outcomes["ai"]
            if isinstance(outcome, Exception):
                logger.error(f"AI enrichment failed for customer {customer_id}: {outcome}")
                results[ai_service] = _failure(outcome)
            else:
                ai_output = outcome
                verification = await self._verify_website(ai_output)
                if "external" in services:
                    results["external"] = await self._external(customer, ai_output)
                data = ai_output.to_dict()
                if verification is not None:
                    data["website_verification"] = verification
                results[ai_service] = {"success": True, "data": data}

        if "external" in services and "external" not in results:
            results["external"] = {"success": False, "error": "AI enrichment failed; nothing to post-process"}

        if probes:
            outcome = outcomes["website"]
            if isinstance(outcome, Exception):
                logger.error(f"Website analysis failed for customer {customer_id}: {outcome}")
                for probe in probes:
                    results[probe] = _failure(outcome)
            else:
                for probe in probes:
                    results[probe] = outcome["probes"][probe].to_dict()

        if "social" in services:
            results["social"] = await self._social(customer, ai_output)

        enrichment_id = await self._persist(customer_id, ai_output, results)

        succeeded = [service for service in services if results[service]["success"]]
        failed = [service for service in services if not results[service]["success"]]

        logger.info(
            f"Enrichment finished for customer {customer_id}: "
            f"succeeded={succeeded} failed={failed}"
        )

        return {
            "customer_id": str(customer_id),
            "services": services,
            "results": results,
            "succeeded": succeeded,
            "failed": failed,
            "all_succeeded": not failed,
            "enrichment_id": enrichment_id,
            "cooldown_warning": cooldown["cooldown_warning"],
            "hours_ago": cooldown["hours_ago"],
        }

    async def _verify_website(self, ai_output: EnrichmentOutput) -> Optional[Dict[str, Any]]:
        """
        Check that the website the AI found answers.

        A reachable site is stored under the URL it finally resolved to and its
        score moves towards VERIFIED_WEBSITE_CONFIDENCE with a small boost. An
        unreachable one keeps the AI's value and score.
        """
        found = ai_output.fields.get("website")
        if found is None or not isinstance(found.value, str) or not found.value.strip():
            return None

        verification = await self.verifier.verify(found.value)
        if not verification.is_accessible:
            reason = verification.error or verification.status_code
            logger.info(f"AI-suggested website {found.value} is not reachable: {reason}")
            return verification.to_dict()

        final_url = verification.url
        if verification.redirect_url and validate_url(verification.redirect_url).valid:
            final_url = verification.redirect_url
        found.value = final_url
        found.score = min((found.score + VERIFIED_WEBSITE_CONFIDENCE) / 2 * VERIFIED_WEBSITE_BOOST, 1.0)
        return verification.to_dict()

    async def _external(self, customer: Customer, ai_output: EnrichmentOutput) -> Dict[str, Any]:
        location = customer.city or None
        try:
            processed = await self.post_processor.process(
                ai_output,
                company_name=customer.name,
                location=location,
                website_url=customer.website,
            )
        except Exception as e:
            logger.error(f"External post-processing failed: {e}")
            return _failure(e)
        return {
            "success": bool(processed.external_data_used) or not processed.errors,
            "data": processed.to_dict(),
        }

    async def _social(self, customer: Customer, ai_output: Optional[EnrichmentOutput]) -> Dict[str, Any]:
        found = ai_output.fields.get("socialProfiles") if ai_output else None
        if found is not None and isinstance(found.value, dict):
            profiles = found.value
        else:
            profiles = {
                network: getattr(customer, network)
                for network in SOCIAL_COLUMNS
                if getattr(customer, network)
            }

        try:
            validation = await self.social.validate_profiles(profiles)
        except Exception as e:
            logger.error(f"Social validation failed: {e}")
            return _failure(e)

        if found is not None and isinstance(found.value, dict):
            # unreachable profiles are never offered for review
            if validation.validated_profiles:
                found.value = dict(validation.validated_profiles)
            else:
                del ai_output.fields["socialProfiles"]

        return {
            "success": True,
            "data": {
                "validated_profiles": validation.validated_profiles,
                "validation_results": validation.validation_results,
                "accessible_count": validation.accessible_count,
                "total_count": validation.total_count,
            },
        }

    async def _persist(
        self,
        customer_id: UUID,
        ai_output: Optional[EnrichmentOutput],
        results: Dict[str, Dict[str, Any]],
    ) -> Optional[str]:
        fields = {
            name: result
            for name, result in (ai_output.fields.items() if ai_output else [])
            if name in RECORD_COLUMNS and _has_data(result.value)
        }
        if not fields and not any(result["success"] for result in results.values()):
            return None

        now = utcnow()
        async with session_lock(self.db):
            customer = await self.db.get(Customer, customer_id)
            record = None
            if fields:
                record = EnrichmentRecord(
                    customer_id=customer_id,
                    sources={name: result.source for name, result in fields.items()},
                    ai_providers_used=list(ai_output.providers_used),
                    enriched_at=now,
                    status=EnrichmentRecordStatus.PENDING,
                    field_statuses={name: FieldReviewStatus.PENDING.value for name in fields},
                )
                for name, result in fields.items():
                    value_column, score_column = RECORD_COLUMNS[name]
                    setattr(record, value_column, result.value)
                    setattr(record, score_column, result.score)
                self.db.add(record)
                customer.enrichment_status = EnrichmentStatus.PENDING

            customer.last_enriched_at = now
            await self.db.flush()
            await self.db.commit()

        if record is None:
            return None
        logger.info(f"Stored enrichment {record.id} with fields {list(fields)}")
        return str(record.id)

    # =========================================================================
    # REVIEW
    # =========================================================================

    async def _review_target(self, customer_id: UUID, enrichment_id: Optional[str]) -> EnrichmentRecord:
        if enrichment_id:
            try:
                record_id = UUID(str(enrichment_id))
            except ValueError:
                raise NotFoundError("Enrichment not found")
            result = await self.db.execute(
                select(EnrichmentRecord)
                .where(EnrichmentRecord.id == record_id)
                .execution_options(populate_existing=True)
            )
            record = result.scalar_one_or_none()
            if record is None or record.customer_id != customer_id:
                raise NotFoundError("Enrichment not found")
            return record

        result = await self.db.execute(
            select(EnrichmentRecord)
            .where(
                EnrichmentRecord.customer_id == customer_id,
                EnrichmentRecord.status == EnrichmentRecordStatus.PENDING,
            )
            .order_by(EnrichmentRecord.enriched_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("No pending enrichment found")
        return record

    async def review(
        self,
        customer_id: UUID,
        action: str,
        fields: List[str],
        edited_values: Optional[Dict[str, Any]] = None,
        enrichment_id: Optional[str] = None,
        reviewed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Confirm, reject or edit pending fields of an enrichment record.

        Only confirmed or edited values reach the customer. The record is
        CONFIRMED once no field is left PENDING.
        """
        if action not in REVIEW_ACTIONS:
            raise ValidationError(f"Invalid action: {action}. Must be one of {list(REVIEW_ACTIONS)}")
        if not fields:
            raise ValidationError("At least one field is required")
        invalid = [f for f in fields if f not in REVIEWABLE_FIELDS]
        if invalid:
            raise ValidationError(f"Invalid fields: {invalid}. Must be among {REVIEWABLE_FIELDS}")
        if action == "edit" and not edited_values:
            raise ValidationError("edited_values is required for the edit action")

        customer = await self._get_customer(customer_id)

        async with session_lock(self.db):
            record = await self._review_target(customer_id, enrichment_id)
            if record.status != EnrichmentRecordStatus.PENDING:
                raise ConflictError("Enrichment has already been reviewed")

            statuses = dict(record.field_statuses or {})
            pending = [f for f in fields if statuses.get(f) == FieldReviewStatus.PENDING.value]
            if not pending:
                raise ConflictError("None of the requested fields is pending review")

            for field_name in pending:
                if action == "reject":
                    statuses[field_name] = FieldReviewStatus.REJECTED.value
                    continue

                value_column, _ = RECORD_COLUMNS[field_name]
                if action == "edit" and field_name in edited_values:
                    value = edited_values[field_name]
                    setattr(record, value_column, value)
                else:
                    value = getattr(record, value_column)

                for column, new_value in customer_updates(field_name, value).items():
                    setattr(customer, column, new_value)
                statuses[field_name] = FieldReviewStatus.CONFIRMED.value

            record.field_statuses = statuses
            all_reviewed = all(status != FieldReviewStatus.PENDING.value for status in statuses.values())
            if all_reviewed:
                record.status = EnrichmentRecordStatus.CONFIRMED
                record.reviewed_at = utcnow()
                record.reviewed_by = reviewed_by
                customer.enrichment_status = EnrichmentStatus.COMPLETE
            else:
                customer.enrichment_status = EnrichmentStatus.PARTIAL

            await self.db.flush()
            await self.db.commit()

        logger.info(f"Enrichment {record.id}: {action} {pending} (all_reviewed={all_reviewed})")

        return {
            "action": action,
            "fields": pending,
            "field_statuses": statuses,
            "all_reviewed": all_reviewed,
            "status": record.status.value,
        }

    # =========================================================================
    # READS
    # =========================================================================

    async def get_latest(self, customer_id: UUID, history_limit: int = 20) -> Dict[str, Any]:
        customer = await self._get_customer(customer_id)

        async with session_lock(self.db):
            result = await self.db.execute(
                select(EnrichmentRecord)
                .where(EnrichmentRecord.customer_id == customer_id)
                .order_by(EnrichmentRecord.enriched_at.desc())
                .limit(history_limit)
                .execution_options(populate_existing=True)
            )
            records = result.scalars().all()

            result = await self.db.execute(
                select(WebsiteAnalysis)
                .where(WebsiteAnalysis.customer_id == customer_id)
                .execution_options(populate_existing=True)
            )
            analysis = result.scalar_one_or_none()

        return {
            "customer_id": str(customer_id),
            "enrichment_status": customer.enrichment_status.value,
            "last_enriched_at": _isoformat(customer.last_enriched_at),
            "latest_enrichment": record_to_dict(records[0]) if records else None,
            "website_analysis": analysis_to_dict(analysis) if analysis else None,
            "history": [history_entry(record) for record in records],
        }

    async def get_quota_status(self) -> Dict[str, Dict[str, Any]]:
        infos = await self.quota.get_all_quotas_info()
        return {
            info["service"]: {
                "used": info["used"],
                "limit": info["limit"],
                "percentage": info["percentage"],
                "reset_in": info["reset_in"],
            }
            for info in infos
        }

    # =========================================================================
    # BULK
    # =========================================================================

    async def bulk_enrich(self, customer_ids: List[UUID], services: List[str]) -> Dict[str, Any]:
        """Enrich customers one after another; one failure never stops the batch"""
        outcomes = []
        for customer_id in customer_ids:
            try:
                result = await self.run_enrichment(customer_id, services)
                outcomes.append({
                    "customer_id": str(customer_id),
                    "success": True,
                    "all_succeeded": result["all_succeeded"],
                    "enrichment_id": result["enrichment_id"],
                    "failed": result["failed"],
                })
            except Exception as e:
                logger.error(f"Bulk enrichment failed for customer {customer_id}: {e}")
                await self.db.rollback()
                outcomes.append({"customer_id": str(customer_id), "success": False, "error": str(e)})

        succeeded = sum(1 for outcome in outcomes if outcome["success"])
        logger.info(f"Bulk enrichment complete: {succeeded}/{len(outcomes)} customers")
        return {
            "total": len(outcomes),
            "succeeded": succeeded,
            "failed": len(outcomes) - succeeded,
            "results": outcomes,
        }
