"""
Email validation: syntax, disposable providers and mail routing for the domain.
"""
import datetime
from dataclasses import dataclass
from typing import List, Dict, Optional
import dns.exception
import dns.resolver
from sqlalchemy.orm import Session

from leadmailer.config import ValidationSettings
from leadmailer.database.models import ContactRecord, ValidationStatus
from leadmailer.utils.domains import email_domain, is_valid_email_syntax
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

NO_ROUTE_REASON = "no mail-exchange or address record"


@dataclass
class ValidationResult:
    email: str
    valid: bool
    reason: Optional[str] = None
    mx_host: Optional[str] = None


class DnsResolver:
    """Mail-exchange and address lookups through dnspython, bounded by a lifetime."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def mx_hosts(self, domain: str) -> List[str]:
        """
        Mail-exchange hosts for a domain, lowest preference first.

        Args:
            domain: Domain to look up

        Returns:
            List of host names, empty if the domain has no MX records

        Raises:
            dns.exception.DNSException: on timeouts and resolver failures
        """
        try:
            answers = dns.resolver.resolve(domain, "MX", lifetime=self.timeout)
        except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
            return []
        records = sorted(answers, key=lambda r: r.preference)
        return [str(r.exchange).rstrip(".") for r in records if str(r.exchange).rstrip(".")]

    def has_address(self, domain: str) -> bool:
        """Whether the domain has an A record."""
        try:
            dns.resolver.resolve(domain, "A", lifetime=self.timeout)
        except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
            return False
        return True


class EmailValidator:
    """Validate contact email addresses, cheapest check first."""

    def __init__(self, db_session: Session = None, settings: ValidationSettings = None,
                 resolver=None):
        """
        Initialize the validator.

        Args:
            db_session: Database session, needed to store results on contacts
            settings: Disposable domain list and DNS timeout
            resolver: Object with mx_hosts(domain) and has_address(domain)
        """
        self.db_session = db_session
        self.settings = settings or ValidationSettings()
        self.resolver = resolver or DnsResolver(timeout=self.settings.dns_timeout)
        self.disposable_domains = {d.lower() for d in self.settings.disposable_domains}

    def validate(self, email: str) -> ValidationResult:
        """
        Validate one address.

        Args:
            email: Email address

        Returns:
            ValidationResult with the first failing reason, if any
        """
        email = (email or "").strip()
        if not is_valid_email_syntax(email):
            return ValidationResult(email, False, "Invalid email format")

        domain = email_domain(email)
        if domain in self.disposable_domains:
            return ValidationResult(email, False, "Disposable email domain")

        try:
            hosts = self.resolver.mx_hosts(domain)
            if hosts:
                return ValidationResult(email, True, mx_host=hosts[0])
            if self.resolver.has_address(domain):
                return ValidationResult(email, True, mx_host=domain)
        except dns.exception.DNSException as e:
            return ValidationResult(email, False, f"DNS lookup failed: {str(e) or type(e).__name__}")
        except Exception as e:
            logger.warning(f"Unexpected DNS error for {domain}: {e}")
            return ValidationResult(email, False, f"DNS lookup failed: {e}")

        return ValidationResult(email, False, NO_ROUTE_REASON)

    def validate_contact(self, contact: ContactRecord) -> ValidationResult:
        """
        Validate a contact and record the outcome on it.

        Args:
            contact: Contact to validate

        Returns:
            ValidationResult
        """
        result = self.validate(contact.email)

        contact.validation_status = (ValidationStatus.VALID.value if result.valid
                                     else ValidationStatus.INVALID.value)
        contact.validation_error = result.reason
        contact.mx_host = result.mx_host
        contact.validated_at = datetime.datetime.utcnow()

        if self.db_session is not None:
            try:
                self.db_session.commit()
            except Exception as e:
                self.db_session.rollback()
                logger.error(f"Error saving validation of {contact.email}: {e}")
                raise

        if result.valid:
            logger.info(f"Email {contact.email} is valid (mx: {result.mx_host})")
        else:
            logger.info(f"Email {contact.email} is invalid: {result.reason}")
        return result

    def validate_batch(self, contacts: List[ContactRecord]) -> Dict[str, int]:
        """
        Validate a list of contacts independently.

        Args:
            contacts: Contacts to validate

        Returns:
            Counts: validated, valid, invalid
        """
        counts = {"validated": 0, "valid": 0, "invalid": 0}
        for contact in contacts:
            result = self.validate_contact(contact)
            counts["validated"] += 1
            counts["valid" if result.valid else "invalid"] += 1

        logger.info(f"Validated {counts['validated']} contacts: {counts['valid']} valid, {counts['invalid']} invalid")
        return counts
