"""
Suppression: the blacklist and the duplicate-prevention windows.

Both gates must pass before a contact may be emailed.
"""
import datetime
import re
import threading
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Callable, Iterable
import pandas as pd
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadmailer.config import SuppressionSettings
from leadmailer.database import crud
from leadmailer.database.models import (
    ContactRecord, Site, SuppressionEntry, SuppressionSource, SuppressionType, ValidationStatus
)
from leadmailer.utils.domains import email_domain, parent_domains, is_valid_email_syntax
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

DOMAIN_PATTERN = re.compile(r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z0-9][a-z0-9-]{0,61}[a-z0-9]$", re.I)

CSV_IMPORT_COLUMNS = ["value", "reason", "source"]
CSV_EXPORT_COLUMNS = ["value", "reason", "source", "type", "created_at"]


@dataclass
class SuppressionDecision:
    """Outcome of the suppression gates for one contact."""
    allowed: bool
    blacklist_reasons: List[str] = field(default_factory=list)
    duplicate_reasons: List[str] = field(default_factory=list)

    @property
    def reasons(self) -> List[str]:
        return self.blacklist_reasons + self.duplicate_reasons

    @property
    def reason(self) -> Optional[str]:
        return "; ".join(self.reasons) if self.reasons else None


class BlacklistCache:
    """
    Read-through cache of blacklist lookups keyed by 'type:value'.

    Entries live until a write to the same key invalidates them.
    """

    def __init__(self):
        self._values: Dict[str, bool] = {}
        self._generation = 0
        self._lock = threading.Lock()

    @staticmethod
    def key(entry_type: str, value: str) -> str:
        return f"{entry_type}:{value.lower()}"

    def get_or_load(self, entry_type: str, value: str, loader: Callable[[], bool]) -> bool:
        key = self.key(entry_type, value)
        with self._lock:
            if key in self._values:
                return self._values[key]
            generation = self._generation
        loaded = loader()
        with self._lock:
            # A write landed while loading, so the result may already be stale
            if generation == self._generation:
                self._values[key] = loaded
        return loaded

    def invalidate(self, entry_type: str, value: str) -> None:
        key = self.key(entry_type, value)
        with self._lock:
            self._values.pop(key, None)
            self._generation += 1
        logger.debug(f"Invalidated blacklist cache key {key}")

    def __len__(self):
        with self._lock:
            return len(self._values)


# Shared by every Blacklist of this process that is not handed its own cache
BLACKLIST_CACHE = BlacklistCache()


class Blacklist:
    """Persistent email and domain blacklist with cached lookups."""

    def __init__(self, db_session: Session, cache: BlacklistCache = None):
        """
        Initialize the blacklist.

        Args:
            db_session: Database session
            cache: Lookup cache, defaults to the process-wide BLACKLIST_CACHE
        """
        self.db_session = db_session
        self.cache = cache if cache is not None else BLACKLIST_CACHE

    def _exists(self, entry_type: str, value: str) -> bool:
        return self.db_session.query(SuppressionEntry.id).filter(
            SuppressionEntry.entry_type == entry_type,
            SuppressionEntry.value == value,
            SuppressionEntry.is_active.is_(True)
        ).first() is not None

    def is_email_blacklisted(self, email: str) -> bool:
        email = (email or "").strip().lower()
        if not email:
            return False
        return self.cache.get_or_load(
            SuppressionType.EMAIL.value, email,
            lambda: self._exists(SuppressionType.EMAIL.value, email)
        )

    def is_domain_blacklisted(self, domain: str) -> bool:
        """
        Check a domain and each of its parent domains.

        Args:
            domain: Domain to check

        Returns:
            True if the domain or a parent domain is actively blacklisted
        """
        domain = (domain or "").strip().lower()
        for candidate in parent_domains(domain):
            if "." not in candidate:
                break
            if self.cache.get_or_load(
                SuppressionType.DOMAIN.value, candidate,
                lambda c=candidate: self._exists(SuppressionType.DOMAIN.value, c)
            ):
                return True
        return False

    def check_contact(self, contact: ContactRecord, site: Site = None) -> List[str]:
        """
        Reasons a contact is blacklisted, empty if it is not.

        Args:
            contact: Contact to check
            site: The contact's site, loaded from the contact if omitted

        Returns:
            List of reason strings
        """
        reasons = []
        if self.is_email_blacklisted(contact.email):
            reasons.append("Email address is blacklisted")

        domain = email_domain(contact.email)
        if domain and self.is_domain_blacklisted(domain):
            reasons.append("Email domain is blacklisted")

        site = site or contact.site
        if site is not None and site.domain and self.is_domain_blacklisted(site.domain):
            reasons.append("Website domain is blacklisted")
        return reasons

    def _add(self, entry_type: str, value: str, reason: str, source: str) -> SuppressionEntry:
        value = value.strip().lower()
        entry = crud.get_suppression_entry(self.db_session, entry_type, value)
        if entry is None:
            entry = SuppressionEntry(entry_type=entry_type, value=value, reason=reason,
                                     source=source, is_active=True)
            self.db_session.add(entry)
        else:
            entry.is_active = True
            entry.reason = reason
            entry.source = source
        try:
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.error(f"Error blacklisting {entry_type} {value}: {e}")
            raise
        finally:
            self.cache.invalidate(entry_type, value)

        logger.info(f"Blacklisted {entry_type} {value} ({source}): {reason}")
        return entry

    def add_email(self, email: str, reason: str, source: str = SuppressionSource.MANUAL.value) -> SuppressionEntry:
        return self._add(SuppressionType.EMAIL.value, email, reason, source)

    def add_domain(self, domain: str, reason: str, source: str = SuppressionSource.MANUAL.value) -> SuppressionEntry:
        return self._add(SuppressionType.DOMAIN.value, domain, reason, source)

    def _remove(self, entry_type: str, value: str) -> bool:
        value = value.strip().lower()
        try:
            deleted = self.db_session.query(SuppressionEntry).filter(
                SuppressionEntry.entry_type == entry_type,
                SuppressionEntry.value == value
            ).delete(synchronize_session=False)
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.error(f"Error removing {entry_type} {value} from blacklist: {e}")
            raise
        finally:
            self.cache.invalidate(entry_type, value)

        if deleted:
            logger.info(f"Removed {entry_type} {value} from blacklist")
        return deleted > 0

    def remove_email(self, email: str) -> bool:
        return self._remove(SuppressionType.EMAIL.value, email)

    def remove_domain(self, domain: str) -> bool:
        return self._remove(SuppressionType.DOMAIN.value, domain)

    def _set_active(self, entry: SuppressionEntry, active: bool) -> SuppressionEntry:
        entry.is_active = active
        try:
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.error(f"Error updating blacklist entry {entry.id}: {e}")
            raise
        finally:
            self.cache.invalidate(entry.entry_type, entry.value)
        logger.info(f"Blacklist entry {entry.entry_type} {entry.value} {'activated' if active else 'deactivated'}")
        return entry

    def activate(self, entry: SuppressionEntry) -> SuppressionEntry:
        return self._set_active(entry, True)

    def deactivate(self, entry: SuppressionEntry) -> SuppressionEntry:
        return self._set_active(entry, False)

    def bulk_add_emails(self, emails: Iterable[str], reason: str,
                        source: str = SuppressionSource.IMPORT.value) -> int:
        """Blacklist every syntactically valid address; returns how many were added."""
        count = 0
        for email in emails:
            email = (email or "").strip().lower()
            if is_valid_email_syntax(email):
                self.add_email(email, reason, source)
                count += 1
        return count

    def bulk_add_domains(self, domains: Iterable[str], reason: str,
                         source: str = SuppressionSource.IMPORT.value) -> int:
        count = 0
        for domain in domains:
            domain = (domain or "").strip().lower()
            if DOMAIN_PATTERN.match(domain):
                self.add_domain(domain, reason, source)
                count += 1
        return count

    def auto_blacklist_bounce(self, email: str, bounce_type: str = "hard") -> Optional[SuppressionEntry]:
        """Hard bounces are blacklisted; soft bounces are left alone."""
        if bounce_type != "hard":
            return None
        return self.add_email(email, "Auto-blacklisted due to hard bounce", SuppressionSource.AUTO_BOUNCE.value)

    def auto_blacklist_complaint(self, email: str) -> SuppressionEntry:
        return self.add_email(email, "Auto-blacklisted due to spam complaint", SuppressionSource.AUTO_COMPLAINT.value)

    def active_entries(self, entry_type: str = None) -> List[SuppressionEntry]:
        query = self.db_session.query(SuppressionEntry).filter(SuppressionEntry.is_active.is_(True))
        if entry_type:
            query = query.filter(SuppressionEntry.entry_type == entry_type)
        return query.order_by(SuppressionEntry.created_at.desc(), SuppressionEntry.id.desc()).all()

    def search(self, text: str, entry_type: str = None) -> List[SuppressionEntry]:
        query = self.db_session.query(SuppressionEntry).filter(SuppressionEntry.value.contains(text.lower()))
        if entry_type:
            query = query.filter(SuppressionEntry.entry_type == entry_type)
        return query.order_by(SuppressionEntry.created_at.desc(), SuppressionEntry.id.desc()).all()

    def statistics(self) -> Dict[str, int]:
        query = self.db_session.query(SuppressionEntry)
        return {
            "total_entries": query.count(),
            "active_entries": query.filter(SuppressionEntry.is_active.is_(True)).count(),
            "inactive_entries": query.filter(SuppressionEntry.is_active.is_(False)).count(),
            "email_entries": query.filter(SuppressionEntry.entry_type == SuppressionType.EMAIL.value).count(),
            "domain_entries": query.filter(SuppressionEntry.entry_type == SuppressionType.DOMAIN.value).count(),
            "auto_entries": query.filter(SuppressionEntry.source.in_(
                [SuppressionSource.AUTO_BOUNCE.value, SuppressionSource.AUTO_COMPLAINT.value])).count(),
            "manual_entries": query.filter(SuppressionEntry.source == SuppressionSource.MANUAL.value).count(),
            "import_entries": query.filter(SuppressionEntry.source == SuppressionSource.IMPORT.value).count(),
        }

    def import_csv(self, file_path: str, entry_type: str) -> Dict[str, Any]:
        """
        Import entries from a CSV file with a header row and value,reason,source columns.

        Args:
            file_path: Path of the CSV file
            entry_type: 'email' or 'domain'

        Returns:
            Dictionary with imported and skipped counts and error messages
        """
        imported, skipped, errors = 0, 0, []
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False)
        df = df.reindex(columns=CSV_IMPORT_COLUMNS, fill_value="")

        for value, reason, source in df.itertuples(index=False, name=None):
            value = value.strip()
            if not value:
                skipped += 1
                continue
            try:
                self._add(entry_type, value, reason.strip() or "Imported from CSV",
                          source.strip() or SuppressionSource.IMPORT.value)
                imported += 1
            except SQLAlchemyError as e:
                errors.append(f"Error importing {value}: {e}")
                skipped += 1

        logger.info(f"Imported {imported} {entry_type} entries from {file_path} ({skipped} skipped)")
        return {"imported": imported, "skipped": skipped, "errors": errors}

    def export_csv(self, file_path: str, entry_type: str = None) -> int:
        """Write active entries to a CSV file; returns the number of rows written."""
        entries = self.active_entries(entry_type)
        df = pd.DataFrame([
            {
                "value": entry.value,
                "reason": entry.reason or "",
                "source": entry.source or "",
                "type": entry.entry_type,
                "created_at": entry.created_at.isoformat() if entry.created_at else "",
            }
            for entry in entries
        ], columns=CSV_EXPORT_COLUMNS)
        df.to_csv(file_path, index=False)
        logger.info(f"Exported {len(entries)} blacklist entries to {file_path}")
        return len(entries)


def humanize_age(delta: datetime.timedelta) -> str:
    """Rough 'N days ago' wording for log and refusal messages."""
    seconds = max(0, int(delta.total_seconds()))
    if seconds >= 86400:
        days = seconds // 86400
        return f"{days} day{'s' if days != 1 else ''} ago"
    if seconds >= 3600:
        hours = seconds // 3600
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    minutes = seconds // 60
    return f"{minutes} minute{'s' if minutes != 1 else ''} ago"


class DuplicatePrevention:
    """Rolling-window limits on how often a contact, site and email domain are mailed."""

    def __init__(self, db_session: Session, settings: SuppressionSettings = None,
                 clock: Callable[[], datetime.datetime] = None):
        self.db_session = db_session
        self.settings = settings or SuppressionSettings()
        self.clock = clock or datetime.datetime.utcnow

    def check(self, contact: ContactRecord) -> List[str]:
        """
        Every window the contact currently violates; all three are checked.

        Args:
            contact: Contact to check

        Returns:
            List of reason strings, empty if safe
        """
        now = self.clock()
        reasons = []

        contact_since = now - datetime.timedelta(days=self.settings.contact_cooldown_days)
        last = crud.get_last_send_to_contact(self.db_session, contact.id, contact_since)
        if last is not None:
            reasons.append(f"Contact was emailed {humanize_age(now - last.sent_at)}")

        window_days = self.settings.site_cooldown_days
        window_since = now - datetime.timedelta(days=window_days)
        site_count = crud.count_sends_to_site_since(self.db_session, contact.site_id, window_since)
        if site_count >= self.settings.max_sends_per_site:
            reasons.append(f"Website has been contacted {site_count} times in the last {window_days} days")

        domain = email_domain(contact.email)
        if domain:
            domain_count = crud.count_sends_to_domain_since(
                self.db_session, domain, window_since,
                exclude_contact_id=contact.id if self.settings.exclude_self_from_domain_cap else None
            )
            if domain_count >= self.settings.max_sends_per_email_domain:
                reasons.append(f"Domain {domain} has been contacted {domain_count} times recently")

        return reasons


class SuppressionEngine:
    """Blacklist and duplicate-prevention gates combined."""

    def __init__(self, db_session: Session, settings: SuppressionSettings = None,
                 blacklist: Blacklist = None, clock: Callable[[], datetime.datetime] = None):
        self.db_session = db_session
        self.blacklist = blacklist or Blacklist(db_session)
        self.duplicates = DuplicatePrevention(db_session, settings, clock)

    def check(self, contact: ContactRecord) -> SuppressionDecision:
        """
        Decide whether a contact may be emailed now.

        Args:
            contact: Contact to check

        Returns:
            SuppressionDecision with every reason that applies
        """
        decision = SuppressionDecision(allowed=True)
        decision.blacklist_reasons = self.blacklist.check_contact(contact)
        decision.duplicate_reasons = self.duplicates.check(contact)
        decision.allowed = not decision.reasons

        if not decision.allowed:
            logger.info(f"Contact {contact.email} suppressed: {decision.reason}")
        return decision

    def safe_contacts(self, limit: int = 100) -> List[ContactRecord]:
        """Valid, not yet contacted contacts of qualified sites that pass both gates."""
        candidates = self.db_session.query(ContactRecord).join(Site).filter(
            ContactRecord.validation_status == ValidationStatus.VALID.value,
            ContactRecord.contacted.is_(False),
            Site.meets_requirements.is_(True)
        ).order_by(ContactRecord.priority.desc(), ContactRecord.id).limit(limit * 2).all()

        safe = []
        for contact in candidates:
            if self.check(contact).allowed:
                safe.append(contact)
                if len(safe) >= limit:
                    break
        return safe
