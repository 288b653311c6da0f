"""
CRUD operations for the LeadMailer outreach pipeline.
"""
import datetime
from typing import List, Dict, Any, Optional, Set
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from leadmailer.database.models import (
    Site, ContactRecord, SuppressionEntry, SendAttemptRecord, SenderAccount,
    QualificationRule, EmailTemplate, ReviewDraft, SendOutcome, SiteStatus,
    ValidationStatus
)
from leadmailer.utils.domains import extract_domain, site_url
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)


def get_site_by_domain(db: Session, domain: str) -> Optional[Site]:
    """
    Get a site by its domain.

    Args:
        db: Database session
        domain: Domain or URL of the site

    Returns:
        Site object if found, None otherwise
    """
    return db.query(Site).filter(Site.domain == extract_domain(domain)).first()


def register_site(db: Session, url: str) -> Site:
    """
    Register a site for crawling, returning the existing row if the domain is known.

    Args:
        db: Database session
        url: Site URL or bare domain

    Returns:
        Site object
    """
    domain = extract_domain(url)
    if not domain:
        raise ValueError(f"Cannot register site without a domain: {url!r}")

    site = get_site_by_domain(db, domain)
    if site:
        return site

    site = Site(domain=domain, url=site_url(domain), status=SiteStatus.PENDING.value)
    db.add(site)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error registering site {domain}: {e}")
        raise
    logger.info(f"Registered site {domain}")
    return site


def get_sites_by_status(db: Session, status: str, limit: int = None) -> List[Site]:
    query = db.query(Site).filter(Site.status == status).order_by(Site.id)
    if limit:
        query = query.limit(limit)
    return query.all()


def get_contacts_by_site(db: Session, site_id: int) -> List[ContactRecord]:
    return db.query(ContactRecord).filter(ContactRecord.site_id == site_id).order_by(ContactRecord.id).all()


def get_contact_by_site_and_email(db: Session, site_id: int, email: str) -> Optional[ContactRecord]:
    return db.query(ContactRecord).filter(
        ContactRecord.site_id == site_id,
        ContactRecord.email == email.lower()
    ).first()


def get_site_emails(db: Session, site_id: int) -> Set[str]:
    """
    Get the set of emails already stored for a site.

    Args:
        db: Database session
        site_id: Site ID

    Returns:
        Set of lower-cased email addresses
    """
    rows = db.query(ContactRecord.email).filter(ContactRecord.site_id == site_id).all()
    return {row[0].lower() for row in rows}


def create_contact(db: Session, contact_data: Dict[str, Any]) -> Optional[ContactRecord]:
    """
    Create a new contact, ignoring it if the (site, email) pair already exists.

    Args:
        db: Database session
        contact_data: Dictionary with contact data

    Returns:
        Created contact object, or None if it was a duplicate
    """
    contact_data = dict(contact_data)
    contact_data["email"] = contact_data["email"].lower()
    contact = ContactRecord(**contact_data)
    db.add(contact)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Contact {contact_data['email']} already exists for site {contact_data.get('site_id')}")
        return None
    return contact


def get_unvalidated_contacts(db: Session, limit: int = None) -> List[ContactRecord]:
    query = db.query(ContactRecord).filter(
        ContactRecord.validation_status == ValidationStatus.UNVALIDATED.value
    ).order_by(ContactRecord.id)
    if limit:
        query = query.limit(limit)
    return query.all()


def get_last_send_to_contact(db: Session, contact_id: int, since: datetime.datetime) -> Optional[SendAttemptRecord]:
    return db.query(SendAttemptRecord).filter(
        SendAttemptRecord.contact_id == contact_id,
        SendAttemptRecord.outcome == SendOutcome.SENT.value,
        SendAttemptRecord.sent_at >= since
    ).order_by(SendAttemptRecord.sent_at.desc()).first()


def count_sends_to_site_since(db: Session, site_id: int, since: datetime.datetime) -> int:
    """Count successful sends to any contact of a site at or after a timestamp."""
    return db.query(func.count(SendAttemptRecord.id)).filter(
        SendAttemptRecord.site_id == site_id,
        SendAttemptRecord.outcome == SendOutcome.SENT.value,
        SendAttemptRecord.sent_at >= since
    ).scalar() or 0


def count_sends_to_domain_since(db: Session, domain: str, since: datetime.datetime,
                                exclude_contact_id: int = None) -> int:
    """
    Count successful sends to any recipient at an email domain.

    Args:
        db: Database session
        domain: Recipient email domain
        since: Window start (inclusive)
        exclude_contact_id: Contact whose own sends should not be counted

    Returns:
        Number of sends
    """
    query = db.query(func.count(SendAttemptRecord.id)).filter(
        SendAttemptRecord.recipient_domain == domain.lower(),
        SendAttemptRecord.outcome == SendOutcome.SENT.value,
        SendAttemptRecord.sent_at >= since
    )
    if exclude_contact_id is not None:
        query = query.filter(SendAttemptRecord.contact_id != exclude_contact_id)
    return query.scalar() or 0


def site_has_been_contacted(db: Session, site_id: int) -> bool:
    return db.query(SendAttemptRecord.id).filter(
        SendAttemptRecord.site_id == site_id,
        SendAttemptRecord.outcome == SendOutcome.SENT.value
    ).first() is not None


def record_send_attempt(db: Session, attempt_data: Dict[str, Any]) -> SendAttemptRecord:
    """
    Append a row to the send ledger.

    Args:
        db: Database session
        attempt_data: Dictionary with attempt data

    Returns:
        Created SendAttemptRecord
    """
    attempt = SendAttemptRecord(**attempt_data)
    db.add(attempt)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error recording send attempt to {attempt_data.get('recipient_email')}: {e}")
        raise
    return attempt


def get_active_sender_accounts(db: Session) -> List[SenderAccount]:
    return db.query(SenderAccount).filter(SenderAccount.is_active.is_(True)).order_by(SenderAccount.id).all()


def get_active_rules(db: Session) -> List[QualificationRule]:
    return db.query(QualificationRule).filter(
        QualificationRule.is_active.is_(True)
    ).order_by(QualificationRule.priority.desc(), QualificationRule.id).all()


def get_template(db: Session, template_id: int = None) -> Optional[EmailTemplate]:
    """
    Get a template by ID, or the default active template when no ID is given.

    Args:
        db: Database session
        template_id: Optional template ID

    Returns:
        EmailTemplate object if found, None otherwise
    """
    if template_id is not None:
        return db.query(EmailTemplate).filter(EmailTemplate.id == template_id).first()
    return db.query(EmailTemplate).filter(
        EmailTemplate.is_active.is_(True)
    ).order_by(EmailTemplate.is_default.desc(), EmailTemplate.id).first()


def get_draft(db: Session, draft_id: int) -> Optional[ReviewDraft]:
    return db.query(ReviewDraft).filter(ReviewDraft.id == draft_id).first()


def get_drafts_by_status(db: Session, status: str, limit: int = None) -> List[ReviewDraft]:
    """
    Get drafts in a state, highest priority first and oldest first on ties.

    Args:
        db: Database session
        status: Draft status
        limit: Optional maximum number of drafts

    Returns:
        List of ReviewDraft objects
    """
    query = db.query(ReviewDraft).filter(ReviewDraft.status == status).order_by(
        ReviewDraft.priority.desc(), ReviewDraft.created_at.asc(), ReviewDraft.id.asc()
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def get_suppression_entry(db: Session, entry_type: str, value: str) -> Optional[SuppressionEntry]:
    return db.query(SuppressionEntry).filter(
        SuppressionEntry.entry_type == entry_type,
        SuppressionEntry.value == value.lower()
    ).first()
