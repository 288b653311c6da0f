"""
Database models for the LeadMailer outreach pipeline.
"""
import datetime
import os
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Date, ForeignKey, Text, JSON,
    UniqueConstraint, Index, create_engine, event
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from leadmailer.config import DATABASE_URL
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

# Global variables for database connections
DB_ENGINE = None
DB_SESSION = None

Base = declarative_base()


class SiteStatus(str, Enum):
    PENDING = "pending"
    CRAWLING = "crawling"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceType(str, Enum):
    HEADER = "header"
    FOOTER = "footer"
    CONTACT_PAGE = "contact_page"
    ABOUT_PAGE = "about_page"
    TEAM_PAGE = "team_page"
    BODY = "body"


class ValidationStatus(str, Enum):
    UNVALIDATED = "unvalidated"
    VALID = "valid"
    INVALID = "invalid"


class SuppressionType(str, Enum):
    EMAIL = "email"
    DOMAIN = "domain"


class SuppressionSource(str, Enum):
    MANUAL = "manual"
    AUTO_BOUNCE = "auto_bounce"
    AUTO_COMPLAINT = "auto_complaint"
    IMPORT = "csv_import"


class SendOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class DraftStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"
    FAILED = "failed"


class Site(Base):
    """A crawl target and the signals derived from crawling it."""
    __tablename__ = "sites"

    id = Column(Integer, primary_key=True)
    domain = Column(String(255), nullable=False, unique=True, index=True)
    url = Column(String(500), nullable=False)
    status = Column(String(20), default=SiteStatus.PENDING.value, index=True)

    # Derived signals
    title = Column(String(500))
    description = Column(Text)
    detected_platform = Column(String(50), index=True)
    page_count = Column(Integer, default=0)
    word_count = Column(Integer, default=0)
    content_snapshot = Column(Text)

    # Qualification
    meets_requirements = Column(Boolean, default=False, index=True)
    requirement_match_details = Column(JSON)

    # Crawl lifecycle
    crawl_attempts = Column(Integer, default=0)
    crawl_error = Column(Text)
    crawl_started_at = Column(DateTime)
    crawled_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    contacts = relationship("ContactRecord", back_populates="site")

    def __repr__(self):
        return f"<Site(id={self.id}, domain='{self.domain}', status='{self.status}', pages={self.page_count})>"


class ContactRecord(Base):
    """One discovered email address plus whatever could be inferred about it."""
    __tablename__ = "contacts"
    __table_args__ = (
        UniqueConstraint("site_id", "email", name="site_email_unique"),
        Index("ix_contacts_validation_contacted", "validation_status", "contacted"),
    )

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(255))
    position = Column(String(255))
    source_type = Column(String(50), index=True)
    source_url = Column(String(500))
    source_context = Column(Text)
    priority = Column(Integer, default=50, index=True)

    # Validation
    validation_status = Column(String(20), default=ValidationStatus.UNVALIDATED.value, index=True)
    validation_error = Column(Text)
    mx_host = Column(String(255))
    validated_at = Column(DateTime)

    # Outreach
    contacted = Column(Boolean, default=False, index=True)
    contact_count = Column(Integer, default=0)
    first_contacted_at = Column(DateTime)
    last_contacted_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    site = relationship("Site", back_populates="contacts")

    @property
    def email_domain(self):
        """Domain part of the contact's email address."""
        return self.email.rsplit("@", 1)[-1].lower() if self.email and "@" in self.email else ""

    @property
    def is_valid(self):
        return self.validation_status == ValidationStatus.VALID.value

    def __repr__(self):
        return f"<ContactRecord(id={self.id}, email='{self.email}', site_id={self.site_id}, source='{self.source_type}')>"


class SuppressionEntry(Base):
    """A blacklisted email address or domain."""
    __tablename__ = "suppression_entries"
    __table_args__ = (
        UniqueConstraint("entry_type", "value", name="suppression_type_value_unique"),
    )

    id = Column(Integer, primary_key=True)
    entry_type = Column(String(20), nullable=False, index=True)  # email or domain
    value = Column(String(255), nullable=False, index=True)
    reason = Column(Text)
    source = Column(String(50), default=SuppressionSource.MANUAL.value)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    def __repr__(self):
        return f"<SuppressionEntry(id={self.id}, type='{self.entry_type}', value='{self.value}', active={self.is_active})>"


class SendAttemptRecord(Base):
    """Append-only ledger of dispatch attempts."""
    __tablename__ = "send_attempts"
    __table_args__ = (
        Index("ix_send_attempts_contact_sent", "contact_id", "sent_at"),
        Index("ix_send_attempts_site_sent", "site_id", "sent_at"),
        Index("ix_send_attempts_domain_sent", "recipient_domain", "sent_at"),
    )

    id = Column(Integer, primary_key=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), index=True)
    site_id = Column(Integer, ForeignKey("sites.id"), index=True)
    sender_account_id = Column(Integer, ForeignKey("sender_accounts.id"))
    template_id = Column(Integer, ForeignKey("email_templates.id"))
    recipient_email = Column(String(255), nullable=False, index=True)
    recipient_domain = Column(String(255), nullable=False)
    recipient_name = Column(String(255))
    subject = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    outcome = Column(String(20), default=SendOutcome.SENT.value, index=True)
    error_message = Column(Text)
    sent_at = Column(DateTime, default=datetime.datetime.utcnow, index=True)

    def __repr__(self):
        return f"<SendAttemptRecord(id={self.id}, to='{self.recipient_email}', outcome='{self.outcome}')>"


class SenderAccount(Base):
    """An SMTP identity with daily capacity and health counters."""
    __tablename__ = "sender_accounts"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    host = Column(String(255), nullable=False)
    port = Column(Integer, default=587)
    encryption = Column(String(10), default="tls")  # tls, ssl or none
    username = Column(String(255), nullable=False)
    password = Column(String(255), nullable=False)
    from_address = Column(String(255), nullable=False)
    from_name = Column(String(255))

    is_active = Column(Boolean, default=True, index=True)
    daily_limit = Column(Integer, default=10)
    sent_today = Column(Integer, default=0)
    last_reset_date = Column(Date)
    last_used_at = Column(DateTime)
    success_count = Column(Integer, default=0)
    failure_count = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    @property
    def remaining_capacity(self):
        return max(0, (self.daily_limit or 0) - (self.sent_today or 0))

    @property
    def success_rate(self):
        """Success rate in percent, or None when the account has no history."""
        total = (self.success_count or 0) + (self.failure_count or 0)
        if total == 0:
            return None
        return (self.success_count or 0) * 100.0 / total

    def __repr__(self):
        return f"<SenderAccount(id={self.id}, name='{self.name}', sent_today={self.sent_today}/{self.daily_limit})>"


class QualificationRule(Base):
    """A named bundle of criteria a site may satisfy."""
    __tablename__ = "qualification_rules"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    criteria = Column(JSON, nullable=False)  # criterion name -> parameters
    is_active = Column(Boolean, default=True, index=True)
    priority = Column(Integer, default=50)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    def __repr__(self):
        return f"<QualificationRule(id={self.id}, name='{self.name}', active={self.is_active})>"


class EmailTemplate(Base):
    __tablename__ = "email_templates"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    subject_template = Column(Text, nullable=False)
    body_template = Column(Text, nullable=False)
    preheader = Column(Text)
    ai_enabled = Column(Boolean, default=False)
    ai_instructions = Column(Text)
    ai_tone = Column(String(50))
    ai_max_tokens = Column(Integer)
    is_active = Column(Boolean, default=True, index=True)
    is_default = Column(Boolean, default=False)
    usage_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    def __repr__(self):
        return f"<EmailTemplate(id={self.id}, name='{self.name}', ai={self.ai_enabled})>"


class ReviewDraft(Base):
    """A generated email waiting for a human decision."""
    __tablename__ = "review_drafts"
    __table_args__ = (
        Index("ix_review_drafts_status_priority_created", "status", "priority", "created_at"),
        Index("ix_review_drafts_contact_status", "contact_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id"), nullable=False)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False)
    template_id = Column(Integer, ForeignKey("email_templates.id"), nullable=False)
    sender_account_id = Column(Integer, ForeignKey("sender_accounts.id"))

    subject = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    preheader = Column(Text)

    status = Column(String(20), default=DraftStatus.PENDING.value, index=True)
    priority = Column(Integer, default=50, index=True)
    review_notes = Column(Text)
    error_message = Column(Text)
    reviewed_at = Column(DateTime)
    sent_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    site = relationship("Site")
    contact = relationship("ContactRecord")
    template = relationship("EmailTemplate")
    sender_account = relationship("SenderAccount")

    def __repr__(self):
        return f"<ReviewDraft(id={self.id}, contact_id={self.contact_id}, status='{self.status}', priority={self.priority})>"


def _create_engine(url: str):
    """Create an engine with thread-safe SQLite settings."""
    if url.startswith("sqlite"):
        if ":memory:" in url or url == "sqlite://":
            # A single shared connection keeps the in-memory database alive
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )

        path = url.replace("sqlite:///", "", 1)
        directory = os.path.dirname(path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)

        engine = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 60},
            pool_pre_ping=True,
        )

        @event.listens_for(engine, "connect")
        def receive_connect(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA busy_timeout = 60000")
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute("PRAGMA synchronous = NORMAL")
            cursor.close()

        return engine

    return create_engine(url, pool_pre_ping=True, pool_recycle=3600)


def init_db(url: str = None):
    """Initialize the database connection and return (engine, session factory)."""
    global DB_ENGINE, DB_SESSION

    # If we already have an engine, return it
    if DB_ENGINE is not None and DB_SESSION is not None:
        return DB_ENGINE, DB_SESSION

    engine = _create_engine(url or DATABASE_URL)

    # Create all tables if they don't exist
    Base.metadata.create_all(engine)

    session_factory = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False
    )

    DB_ENGINE = engine
    DB_SESSION = scoped_session(session_factory)
    logger.info(f"Database initialized at {engine.url}")

    return DB_ENGINE, DB_SESSION


def get_db_session(url: str = None):
    """Get a SQLAlchemy session for the database."""
    _, Session = init_db(url)
    return Session()


def close_connections():
    """Close all database connections and dispose of the engine."""
    global DB_ENGINE, DB_SESSION

    try:
        if DB_SESSION is not None:
            DB_SESSION.remove()
            logger.info("Database session cleared")

        if DB_ENGINE is not None:
            DB_ENGINE.dispose()
            logger.info("Database engine disposed")

        DB_ENGINE = None
        DB_SESSION = None
        return True
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")
        return False
