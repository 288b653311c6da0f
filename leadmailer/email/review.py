"""
Review queue for generated emails.

Drafts move pending -> approved/rejected, approved -> sent/failed, and
rejected/failed back to pending only through an explicit requeue.
"""
import datetime
from typing import List, Dict, Any, Optional, Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadmailer.config import ReviewSettings
from leadmailer.database import crud
from leadmailer.database.models import ContactRecord, DraftStatus, EmailTemplate, ReviewDraft
from leadmailer.email.generator import EmailGenerator
from leadmailer.email.sender import DispatchResult, OutreachSender
from leadmailer.errors import ReviewStateError
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

ACTIVE_STATES = (DraftStatus.PENDING.value, DraftStatus.APPROVED.value)
TERMINAL_STATES = (DraftStatus.REJECTED.value, DraftStatus.SENT.value, DraftStatus.FAILED.value)


class ReviewQueue:
    """Human approval step between draft generation and dispatch."""

    def __init__(self, db_session: Session, settings: ReviewSettings = None,
                 generator: EmailGenerator = None, sender: OutreachSender = None,
                 clock: Callable[[], datetime.datetime] = None):
        """
        Initialize the review queue.

        Args:
            db_session: Database session
            settings: Escalation floors and retention
            generator: Renders drafts from templates
            sender: Dispatches approved drafts
            clock: Timestamp source
        """
        self.db_session = db_session
        self.settings = settings or ReviewSettings()
        self.generator = generator or EmailGenerator()
        self.sender = sender or OutreachSender(db_session, generator=self.generator)
        self.clock = clock or datetime.datetime.utcnow

    def _commit(self, action: str) -> None:
        try:
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.error(f"Error {action}: {e}")
            raise

    def _get(self, draft_id: int) -> ReviewDraft:
        draft = crud.get_draft(self.db_session, draft_id)
        if draft is None:
            raise ReviewStateError(f"Review entry {draft_id} not found")
        return draft

    def _transition(self, draft: ReviewDraft, allowed_from: Iterable[str], target: str, message: str) -> None:
        if draft.status not in allowed_from:
            raise ReviewStateError(message)
        previous = draft.status
        draft.status = target
        draft.updated_at = self.clock()
        logger.info(f"Review entry {draft.id}: {previous} -> {target}")

    def find_active_draft(self, contact_id: int, template_id: int) -> Optional[ReviewDraft]:
        return self.db_session.query(ReviewDraft).filter(
            ReviewDraft.contact_id == contact_id,
            ReviewDraft.template_id == template_id,
            ReviewDraft.status.in_(ACTIVE_STATES)
        ).first()

    def create_draft(self, contact: ContactRecord, template: EmailTemplate = None,
                     priority: int = None, notes: str = None,
                     sender_account_id: int = None) -> ReviewDraft:
        """
        Render a template for a contact and queue it for review.

        A contact has at most one pending or approved draft per template; asking
        again returns that draft.

        Args:
            contact: Recipient
            template: Template, defaults to the default active template
            priority: Review priority 0-100
            notes: Free-text notes
            sender_account_id: Preferred sender account

        Returns:
            ReviewDraft

        Raises:
            ReviewStateError: if there is no template to render
        """
        template = template or crud.get_template(self.db_session)
        if template is None:
            raise ReviewStateError("No active email template")

        existing = self.find_active_draft(contact.id, template.id)
        if existing is not None:
            logger.info(f"Contact {contact.email} already has review entry {existing.id} ({existing.status})")
            return existing

        rendered = self.generator.render(template, contact.site, contact)
        now = self.clock()
        draft = ReviewDraft(
            site_id=contact.site_id,
            contact_id=contact.id,
            template_id=template.id,
            sender_account_id=sender_account_id,
            subject=rendered.subject,
            body=rendered.body,
            preheader=rendered.preheader,
            status=DraftStatus.PENDING.value,
            priority=self.settings.default_priority if priority is None else _clamp(priority),
            review_notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.db_session.add(draft)
        self._commit(f"queueing review for {contact.email}")
        logger.info(f"Queued review entry {draft.id} for {contact.email} (priority {draft.priority})")
        return draft

    def escalation(self, contact: ContactRecord, template: EmailTemplate,
                   force_review: bool = False, priority: int = None) -> Optional[Dict[str, Any]]:
        """
        Decide whether a contact's email needs review and at what priority.

        Every trigger that fires raises the priority to at least its floor and
        adds its note.

        Args:
            contact: Recipient
            template: Template that will be used
            force_review: Always review
            priority: Priority requested with force_review

        Returns:
            Dictionary with priority and notes, or None if no review is needed
        """
        triggered = []
        if (contact.priority or 0) >= self.settings.high_priority_contact:
            triggered.append((self.settings.high_priority_contact, "High priority contact"))
        if not crud.site_has_been_contacted(self.db_session, contact.site_id):
            triggered.append((self.settings.first_contact_priority, "First contact to this website"))
        if template.ai_enabled:
            triggered.append((self.settings.ai_content_priority, "AI-generated content requires review"))
        if force_review:
            requested = self.settings.default_priority if priority is None else _clamp(priority)
            triggered.append((requested, "Manual review requested"))

        if not triggered:
            return None
        return {
            "priority": max([self.settings.default_priority] + [floor for floor, _ in triggered]),
            "notes": "; ".join(note for _, note in triggered),
        }

    def auto_queue(self, contact: ContactRecord, template: EmailTemplate = None,
                   force_review: bool = False, priority: int = None) -> Optional[ReviewDraft]:
        """
        Queue a draft only when one of the escalation triggers fires.

        Returns:
            ReviewDraft, or None when the email needs no review
        """
        template = template or crud.get_template(self.db_session)
        if template is None:
            raise ReviewStateError("No active email template")

        decision = self.escalation(contact, template, force_review, priority)
        if decision is None:
            logger.debug(f"No review needed for {contact.email}")
            return None
        return self.create_draft(contact, template, decision["priority"], decision["notes"])

    def approve(self, draft_id: int, subject: str = None, body: str = None,
                preheader: str = None, notes: str = None) -> ReviewDraft:
        """
        Approve a pending draft, applying any edits first.

        Args:
            draft_id: Draft ID
            subject: Replacement subject
            body: Replacement body
            preheader: Replacement preheader
            notes: Reviewer notes

        Returns:
            Approved ReviewDraft

        Raises:
            ReviewStateError: if the draft is not pending
        """
        draft = self._get(draft_id)
        if draft.status != DraftStatus.PENDING.value:
            raise ReviewStateError(f"Entry is not pending (status: {draft.status})")

        if subject is not None:
            draft.subject = subject
        if body is not None:
            draft.body = body
        if preheader is not None:
            draft.preheader = preheader
        if notes is not None:
            draft.review_notes = notes

        self._transition(draft, [DraftStatus.PENDING.value], DraftStatus.APPROVED.value,
                         f"Entry is not pending (status: {draft.status})")
        draft.reviewed_at = self.clock()
        self._commit(f"approving review entry {draft_id}")
        return draft

    def reject(self, draft_id: int, notes: str = None) -> ReviewDraft:
        draft = self._get(draft_id)
        self._transition(draft, [DraftStatus.PENDING.value], DraftStatus.REJECTED.value,
                         f"Entry is not pending (status: {draft.status})")
        if notes is not None:
            draft.review_notes = notes
        draft.reviewed_at = self.clock()
        self._commit(f"rejecting review entry {draft_id}")
        return draft

    def requeue(self, draft_id: int) -> ReviewDraft:
        """Send a rejected or failed draft back to pending."""
        draft = self._get(draft_id)
        self._transition(draft, [DraftStatus.REJECTED.value, DraftStatus.FAILED.value], DraftStatus.PENDING.value,
                         f"Only rejected or failed entries can be requeued (status: {draft.status})")
        draft.reviewed_at = None
        draft.error_message = None
        self._commit(f"requeueing review entry {draft_id}")
        return draft

    def update_priority(self, draft_id: int, priority: int) -> ReviewDraft:
        if not 0 <= priority <= 100:
            raise ValueError(f"Priority must be between 0 and 100, got {priority}")
        draft = self._get(draft_id)
        draft.priority = priority
        draft.updated_at = self.clock()
        self._commit(f"updating priority of review entry {draft_id}")
        return draft

    def send_approved(self, draft_id: int) -> DispatchResult:
        """
        Send an approved draft; every dispatch gate is checked again.

        A policy refusal leaves the draft approved so it can be retried later.

        Args:
            draft_id: Draft ID

        Returns:
            DispatchResult

        Raises:
            ReviewStateError: if the draft is not approved
        """
        draft = self._get(draft_id)
        if draft.status != DraftStatus.APPROVED.value:
            raise ReviewStateError("Entry is not approved")

        result = self.sender.dispatch(
            draft.contact, draft.subject, draft.body, draft.preheader,
            template=draft.template, preferred_sender_id=draft.sender_account_id
        )

        if result.sent:
            self._transition(draft, [DraftStatus.APPROVED.value], DraftStatus.SENT.value, "Entry is not approved")
            draft.sent_at = self.clock()
            draft.sender_account_id = result.sender_account.id
            draft.error_message = None
        elif result.refused:
            draft.error_message = result.reason
            logger.info(f"Review entry {draft.id} stays approved: {result.reason}")
        else:
            self._transition(draft, [DraftStatus.APPROVED.value], DraftStatus.FAILED.value, "Entry is not approved")
            draft.error_message = result.reason
            if result.sender_account is not None:
                draft.sender_account_id = result.sender_account.id

        self._commit(f"recording dispatch of review entry {draft_id}")
        return result

    def _bulk(self, draft_ids: List[int], action: Callable[[int], Any], label: str) -> Dict[str, Any]:
        done, errors = 0, []
        for draft_id in draft_ids:
            try:
                action(draft_id)
                done += 1
            except ReviewStateError as e:
                errors.append(f"Entry {draft_id}: {e}")
        logger.info(f"Bulk {label}: {done} succeeded, {len(errors)} failed")
        return {label: done, "errors": errors}

    def bulk_approve(self, draft_ids: List[int], notes: str = None) -> Dict[str, Any]:
        return self._bulk(draft_ids, lambda draft_id: self.approve(draft_id, notes=notes), "approved")

    def bulk_reject(self, draft_ids: List[int], notes: str = None) -> Dict[str, Any]:
        return self._bulk(draft_ids, lambda draft_id: self.reject(draft_id, notes=notes), "rejected")

    def process_approved_queue(self, limit: int = 10) -> Dict[str, int]:
        """
        Send approved drafts, highest priority and oldest first.

        Args:
            limit: Maximum number of drafts to try

        Returns:
            Counts of sent, failed and refused drafts
        """
        counts = {"sent": 0, "failed": 0, "refused": 0}
        for draft in crud.get_drafts_by_status(self.db_session, DraftStatus.APPROVED.value, limit):
            result = self.send_approved(draft.id)
            if result.sent:
                counts["sent"] += 1
            elif result.refused:
                counts["refused"] += 1
            else:
                counts["failed"] += 1
        logger.info(f"Processed approved queue: {counts}")
        return counts

    def list_pending(self, limit: int = None) -> List[ReviewDraft]:
        return crud.get_drafts_by_status(self.db_session, DraftStatus.PENDING.value, limit)

    def statistics(self) -> Dict[str, int]:
        query = self.db_session.query(ReviewDraft)
        stats = {status.value: query.filter(ReviewDraft.status == status.value).count() for status in DraftStatus}
        stats["total"] = query.count()
        stats["high_priority"] = query.filter(
            ReviewDraft.status == DraftStatus.PENDING.value,
            ReviewDraft.priority >= self.settings.high_priority_contact
        ).count()
        return stats

    def cleanup(self, retention_days: int = None) -> int:
        """
        Delete rejected, sent and failed drafts older than the retention period.

        Pending and approved drafts are kept however old they are.

        Args:
            retention_days: Age threshold, defaults to the configured retention

        Returns:
            Number of drafts deleted
        """
        days = self.settings.retention_days if retention_days is None else retention_days
        cutoff = self.clock() - datetime.timedelta(days=days)
        try:
            deleted = self.db_session.query(ReviewDraft).filter(
                ReviewDraft.status.in_(TERMINAL_STATES),
                ReviewDraft.created_at < cutoff
            ).delete(synchronize_session=False)
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.error(f"Error cleaning up review entries: {e}")
            raise
        logger.info(f"Removed {deleted} review entries older than {days} days")
        return deleted


def _clamp(priority: int) -> int:
    return max(0, min(100, int(priority)))
