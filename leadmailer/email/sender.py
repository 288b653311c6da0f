"""
Outreach dispatch: every gate re-checked, then the send recorded in the ledger.
"""
import datetime
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadmailer.database import crud
from leadmailer.database.models import (
    ContactRecord, EmailTemplate, SendAttemptRecord, SendOutcome, SenderAccount, ValidationStatus
)
from leadmailer.email.generator import EmailGenerator
from leadmailer.email.rate_limiter import RateLimiter
from leadmailer.email.rotation import SenderRotation
from leadmailer.email.suppression import SuppressionEngine
from leadmailer.email.transport import SmtpTransport
from leadmailer.errors import DispatchError
from leadmailer.utils.domains import email_domain
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

NO_CAPACITY_REASON = "No sender account with remaining capacity"

# One lock per contact id; gate check, send and ledger write happen under it
CONTACT_LOCKS: Dict[int, threading.Lock] = {}
CONTACT_LOCKS_GUARD = threading.Lock()


def contact_lock(contact_id: int) -> threading.Lock:
    with CONTACT_LOCKS_GUARD:
        return CONTACT_LOCKS.setdefault(contact_id, threading.Lock())


class DispatchStatus:
    SENT = "sent"
    REFUSED = "refused"
    FAILED = "failed"


@dataclass
class DispatchResult:
    """Outcome of one dispatch: sent, refused by policy, or failed in transport."""
    status: str
    reason: Optional[str] = None
    attempt: Optional[SendAttemptRecord] = None
    sender_account: Optional[SenderAccount] = None

    @property
    def sent(self) -> bool:
        return self.status == DispatchStatus.SENT

    @property
    def refused(self) -> bool:
        return self.status == DispatchStatus.REFUSED


class OutreachSender:
    """Gate, dispatch and record outreach emails."""

    def __init__(self, db_session: Session, rate_limiter: RateLimiter = None,
                 suppression: SuppressionEngine = None, rotation: SenderRotation = None,
                 generator: EmailGenerator = None, transport=None,
                 clock: Callable[[], datetime.datetime] = None):
        """
        Initialize the sender.

        Args:
            db_session: Database session
            rate_limiter: Sending window gate
            suppression: Blacklist and duplicate-prevention gate
            rotation: Sender account selection and health counters
            generator: Template renderer
            transport: Object with send(account, to_email, subject, body, preheader)
                raising DispatchError
            clock: Timestamp source for the ledger
        """
        self.db_session = db_session
        self.clock = clock or datetime.datetime.utcnow
        self.rate_limiter = rate_limiter or RateLimiter()
        self.suppression = suppression or SuppressionEngine(db_session, clock=self.clock)
        self.rotation = rotation or SenderRotation(db_session, clock=self.clock)
        self.generator = generator or EmailGenerator()
        self.transport = transport or SmtpTransport()

    def check_gates(self, contact: ContactRecord) -> Optional[str]:
        """
        Reason the contact may not be emailed right now, or None.

        Args:
            contact: Recipient

        Returns:
            Refusal reason or None
        """
        if not self.rate_limiter.is_within_window():
            return self.rate_limiter.refusal_reason

        if contact.validation_status == ValidationStatus.INVALID.value:
            return f"Contact email is invalid: {contact.validation_error or 'validation failed'}"
        if contact.validation_status != ValidationStatus.VALID.value:
            return "Contact email has not been validated"

        decision = self.suppression.check(contact)
        if not decision.allowed:
            return decision.reason
        return None

    def send_to_contact(self, contact: ContactRecord, template: EmailTemplate = None,
                        preferred_sender_id: int = None) -> DispatchResult:
        """
        Render a template for a contact and send it.

        Args:
            contact: Recipient
            template: Template, defaults to the default active template
            preferred_sender_id: Sender account to use if it has capacity

        Returns:
            DispatchResult
        """
        template = template or crud.get_template(self.db_session)
        if template is None:
            return self._refuse(contact, "No active email template")

        # Gates first so a refused contact never costs an AI call
        reason = self.check_gates(contact)
        if reason:
            return self._refuse(contact, reason)

        rendered = self.generator.render(template, contact.site, contact)
        return self.dispatch(contact, rendered.subject, rendered.body, rendered.preheader,
                             template=template, preferred_sender_id=preferred_sender_id)

    def dispatch(self, contact: ContactRecord, subject: str, body: str, preheader: str = None,
                 template: EmailTemplate = None, preferred_sender_id: int = None) -> DispatchResult:
        """
        Send already-rendered content, re-checking every gate first.

        Concurrent dispatches to the same contact run one at a time, so the
        second one sees the first one's ledger row and is refused.

        Args:
            contact: Recipient
            subject: Subject line
            body: Body text
            preheader: Optional preview text
            template: Template the content came from, if any
            preferred_sender_id: Sender account to use if it has capacity

        Returns:
            DispatchResult
        """
        with contact_lock(contact.id):
            return self._dispatch(contact, subject, body, preheader, template, preferred_sender_id)

    def _dispatch(self, contact, subject, body, preheader, template, preferred_sender_id) -> DispatchResult:
        reason = self.check_gates(contact)
        if reason:
            return self._refuse(contact, reason)

        account = self.rotation.reserve(preferred_sender_id)
        if account is None:
            return self._refuse(contact, NO_CAPACITY_REASON)

        try:
            self.transport.send(account, contact.email, subject, body, preheader)
        except DispatchError as e:
            return self._record_failure(contact, account, template, subject, body, str(e), e.bounced)
        except Exception as e:
            return self._record_failure(contact, account, template, subject, body,
                                        f"Unexpected error: {e}", False)

        attempt = self._record(contact, account, template, subject, body, SendOutcome.SENT.value)
        self.rotation.record_outcome(account, True)
        self._mark_contacted(contact, template)
        logger.info(f"Sent '{subject}' to {contact.email} via {account.name}")
        return DispatchResult(DispatchStatus.SENT, attempt=attempt, sender_account=account)

    def _refuse(self, contact: ContactRecord, reason: str) -> DispatchResult:
        logger.info(f"Not sending to {contact.email}: {reason}")
        return DispatchResult(DispatchStatus.REFUSED, reason=reason)

    def _record(self, contact, account, template, subject, body, outcome, error=None) -> SendAttemptRecord:
        return crud.record_send_attempt(self.db_session, {
            "contact_id": contact.id,
            "site_id": contact.site_id,
            "sender_account_id": account.id,
            "template_id": template.id if template is not None else None,
            "recipient_email": contact.email,
            "recipient_domain": email_domain(contact.email),
            "recipient_name": contact.name,
            "subject": subject,
            "body": body,
            "outcome": outcome,
            "error_message": error,
            "sent_at": self.clock(),
        })

    def _record_failure(self, contact, account, template, subject, body, error, bounced) -> DispatchResult:
        logger.error(f"Failed to send to {contact.email} via {account.name}: {error}")
        attempt = self._record(contact, account, template, subject, body, SendOutcome.FAILED.value, error)
        self.rotation.record_outcome(account, False)
        if bounced:
            self.suppression.blacklist.auto_blacklist_bounce(contact.email, "hard")
        return DispatchResult(DispatchStatus.FAILED, reason=error, attempt=attempt, sender_account=account)

    def _mark_contacted(self, contact: ContactRecord, template: EmailTemplate = None) -> None:
        now = self.clock()
        contact.contacted = True
        contact.contact_count = (contact.contact_count or 0) + 1
        contact.first_contacted_at = contact.first_contacted_at or now
        contact.last_contacted_at = now
        if template is not None:
            template.usage_count = (template.usage_count or 0) + 1
        try:
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.error(f"Error marking {contact.email} as contacted: {e}")
            raise

    def send_batch(self, contacts: List[ContactRecord], template: EmailTemplate = None,
                   pace: bool = False, sleep: Callable[[float], None] = time.sleep) -> List[DispatchResult]:
        """
        Send to several contacts in order, optionally spreading them over the window.

        Args:
            contacts: Recipients
            template: Template, defaults to the default active template
            pace: Wait delay_between_sends minutes between sends
            sleep: Sleep function

        Returns:
            One DispatchResult per contact
        """
        results = []
        for index, contact in enumerate(contacts):
            result = self.send_to_contact(contact, template)
            results.append(result)
            remaining = len(contacts) - index - 1
            if pace and result.sent and remaining:
                delay = self.rate_limiter.delay_between_sends(remaining)
                if delay:
                    logger.info(f"Waiting {delay} minutes before the next send")
                    sleep(delay * 60)

        sent = sum(1 for r in results if r.sent)
        logger.info(f"Batch finished: {sent}/{len(results)} sent")
        return results
