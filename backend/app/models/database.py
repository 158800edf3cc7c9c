"""
Enrichment Core Database Models
SQLAlchemy ORM, portable across PostgreSQL and SQLite
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from uuid import uuid4

from sqlalchemy import (
    Column, String, Text, Integer, Float, Boolean, DateTime, Date,
    ForeignKey, Enum, JSON, Index, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# ENUMS
# ============================================================================

class EnrichmentStatus(str, PyEnum):
    """Customer-level review progress"""
    NONE = "NONE"
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETE = "COMPLETE"


class EnrichmentRecordStatus(str, PyEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"


class FieldReviewStatus(str, PyEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


# ============================================================================
# CUSTOMERS
# ============================================================================

class Customer(Base):
    """CRM customer, limited to what enrichment reads and writes"""
    __tablename__ = "customers"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(100), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(255), nullable=True)
    industry = Column(String(255), nullable=True)
    website = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    company_size = Column(String(50), nullable=True)

    # Social profiles
    facebook = Column(String(500), nullable=True)
    instagram = Column(String(500), nullable=True)
    linkedin = Column(String(500), nullable=True)
    twitter = Column(String(500), nullable=True)
    whatsapp = Column(String(500), nullable=True)

    has_ssl = Column(Boolean, nullable=True)
    enrichment_status = Column(Enum(EnrichmentStatus), default=EnrichmentStatus.NONE, nullable=False)
    last_enriched_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    enrichments = relationship(
        "EnrichmentRecord",
        back_populates="customer",
        cascade="all, delete-orphan",
        order_by="EnrichmentRecord.enriched_at.desc()",
    )
    website_analysis = relationship(
        "WebsiteAnalysis",
        back_populates="customer",
        uselist=False,
        cascade="all, delete-orphan",
    )


# ============================================================================
# ENRICHMENT
# ============================================================================

class EnrichmentRecord(Base):
    """One AI enrichment run for a customer; history is append-only"""
    __tablename__ = "customer_enrichments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    customer_id = Column(Uuid, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)

    website = Column(String(500), nullable=True)
    website_score = Column(Float, nullable=True)
    emails = Column(JSON, nullable=True)  # [{email, type}]
    emails_score = Column(Float, nullable=True)
    phones = Column(JSON, nullable=True)  # [{number, type}]
    phones_score = Column(Float, nullable=True)
    address = Column(Text, nullable=True)
    address_score = Column(Float, nullable=True)
    description = Column(Text, nullable=True)
    description_score = Column(Float, nullable=True)
    industry = Column(String(255), nullable=True)
    industry_score = Column(Float, nullable=True)
    company_size = Column(String(50), nullable=True)
    company_size_score = Column(Float, nullable=True)
    social_profiles = Column(JSON, nullable=True)  # {network: url}
    social_profiles_score = Column(Float, nullable=True)

    sources = Column(JSON, default=dict)  # {field: source}
    ai_providers_used = Column(JSON, default=list)
    enriched_at = Column(DateTime, default=utcnow, nullable=False)

    # Review
    status = Column(Enum(EnrichmentRecordStatus), default=EnrichmentRecordStatus.PENDING, nullable=False)
    field_statuses = Column(JSON, default=dict)  # {field: PENDING|CONFIRMED|REJECTED}
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(String(255), nullable=True)

    customer = relationship("Customer", back_populates="enrichments")

    __table_args__ = (
        Index("idx_enrichment_customer_date", "customer_id", "enriched_at"),
    )


class WebsiteAnalysis(Base):
    """Latest technical analysis of a customer's website, one row per customer"""
    __tablename__ = "website_analyses"

    id = Column(Uuid, primary_key=True, default=uuid4)
    customer_id = Column(Uuid, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, unique=True)
    url = Column(String(500), nullable=False)

    # SSL
    ssl_valid = Column(Boolean, nullable=True)
    ssl_protocol = Column(String(50), nullable=True)
    ssl_issuer = Column(String(255), nullable=True)
    ssl_expires_at = Column(DateTime, nullable=True)

    # Performance
    performance_score = Column(Integer, nullable=True)
    mobile_score = Column(Integer, nullable=True)
    desktop_score = Column(Integer, nullable=True)
    fcp_ms = Column(Integer, nullable=True)
    lcp_ms = Column(Integer, nullable=True)
    tti_ms = Column(Integer, nullable=True)
    cls = Column(Float, nullable=True)

    # Responsive
    has_viewport_meta = Column(Boolean, nullable=True)
    breakpoints = Column(JSON, nullable=True)
    media_queries_count = Column(Integer, nullable=True)
    is_responsive = Column(Boolean, nullable=True)
    responsive_confidence = Column(String(20), nullable=True)

    # Tech stack
    tech_stack = Column(JSON, nullable=True)

    # SEO
    seo_title = Column(String(500), nullable=True)
    seo_description = Column(Text, nullable=True)
    seo_h1_count = Column(Integer, nullable=True)
    seo_has_canonical = Column(Boolean, nullable=True)
    seo_indexable = Column(Boolean, nullable=True)
    seo_score = Column(Integer, nullable=True)
    has_open_graph = Column(Boolean, nullable=True)
    open_graph_data = Column(JSON, nullable=True)
    has_twitter_cards = Column(Boolean, nullable=True)
    has_json_ld = Column(Boolean, nullable=True)
    json_ld_types = Column(JSON, nullable=True)

    # Accessibility
    accessibility_score = Column(Integer, nullable=True)
    accessibility_issues = Column(JSON, nullable=True)

    # Security headers
    has_https = Column(Boolean, nullable=True)
    hsts_enabled = Column(Boolean, nullable=True)
    x_frame_options = Column(String(100), nullable=True)
    has_csp = Column(Boolean, nullable=True)
    security_score = Column(Integer, nullable=True)

    # Crawlability
    has_robots_txt = Column(Boolean, nullable=True)
    robots_allows_index = Column(Boolean, nullable=True)
    has_sitemap = Column(Boolean, nullable=True)
    sitemap_url = Column(String(500), nullable=True)
    sitemap_url_count = Column(Integer, nullable=True)

    # Server
    server_ip = Column(String(64), nullable=True)
    server_location = Column(String(255), nullable=True)
    server_country = Column(String(100), nullable=True)
    server_city = Column(String(100), nullable=True)
    server_isp = Column(String(255), nullable=True)
    is_hosting = Column(Boolean, nullable=True)

    # WHOIS
    domain_registrar = Column(String(255), nullable=True)
    domain_created_at = Column(DateTime, nullable=True)
    domain_expires_at = Column(DateTime, nullable=True)
    domain_age_years = Column(Integer, nullable=True)
    days_until_expiry = Column(Integer, nullable=True)
    whois_owner = Column(String(255), nullable=True)
    whois_country = Column(String(100), nullable=True)
    domain_trust_score = Column(Integer, nullable=True)

    # BuiltWith
    builtwith_technologies = Column(JSON, nullable=True)

    # Screenshots
    screenshot_desktop = Column(String(500), nullable=True)
    screenshot_mobile = Column(String(500), nullable=True)

    apis_used = Column(JSON, default=list)
    analyzed_at = Column(DateTime, default=utcnow)

    customer = relationship("Customer", back_populates="website_analysis")


# ============================================================================
# QUOTAS
# ============================================================================

class QuotaRecord(Base):
    """Daily usage counter for a metered external service"""
    __tablename__ = "quotas"

    id = Column(Uuid, primary_key=True, default=uuid4)
    service = Column(String(50), nullable=False, unique=True)
    used = Column(Integer, default=0, nullable=False)
    limit = Column("limit", Integer, nullable=False)
    last_reset = Column(DateTime, default=utcnow, nullable=False)

    success_count = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    last_error_at = Column(DateTime, nullable=True)

    alert_threshold = Column(Integer, default=80, nullable=False)
    alert_sent = Column(Boolean, default=False, nullable=False)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    history = relationship("QuotaHistory", back_populates="quota", cascade="all, delete-orphan")


class QuotaHistory(Base):
    """Archived daily usage, written on rollover"""
    __tablename__ = "quota_history"

    id = Column(Uuid, primary_key=True, default=uuid4)
    quota_id = Column(Uuid, ForeignKey("quotas.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    used = Column(Integer, default=0, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)

    quota = relationship("QuotaRecord", back_populates="history")

    __table_args__ = (
        UniqueConstraint("quota_id", "date", name="uq_quota_history_date"),
    )


# ============================================================================
# API KEYS
# ============================================================================

class ApiKey(Base):
    """Encrypted credential for an AI or external provider"""
    __tablename__ = "api_keys"

    id = Column(Uuid, primary_key=True, default=uuid4)
    provider = Column(String(50), nullable=False, unique=True)
    api_key = Column(Text, nullable=False)  # Fernet encrypted
    model = Column(String(100), nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)
    last_used_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
