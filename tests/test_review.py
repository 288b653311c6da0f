import datetime

import pytest

from conftest import FakeTextGenerator, FakeTransport
from leadmailer.config import ReviewSettings, SendingWindow, SuppressionSettings
from leadmailer.database.models import DraftStatus, ReviewDraft
from leadmailer.email.generator import EmailGenerator
from leadmailer.email.rate_limiter import RateLimiter
from leadmailer.email.review import ReviewQueue
from leadmailer.email.sender import OutreachSender
from leadmailer.email.suppression import SuppressionEngine
from leadmailer.errors import DispatchError, ReviewStateError


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def queue(db_session, clock, transport, ai_settings):
    generator = EmailGenerator(ai_settings, FakeTextGenerator(body="AI drafted body"))
    sender = OutreachSender(
        db_session,
        rate_limiter=RateLimiter(SendingWindow(8, 17), clock=clock),
        suppression=SuppressionEngine(db_session, SuppressionSettings(), clock=clock),
        generator=generator,
        transport=transport,
        clock=clock,
    )
    return ReviewQueue(db_session, ReviewSettings(), generator=generator, sender=sender, clock=clock)


@pytest.fixture
def site(make_site):
    return make_site("example.com", title="Example Shop", content_snapshot="<p>We sell shoes</p>")


@pytest.fixture
def contact(site, make_contact):
    return make_contact(site, "jane@example.com", name="Jane")


def test_create_draft_renders_and_queues(queue, contact, make_template):
    draft = queue.create_draft(contact, make_template())

    assert draft.status == DraftStatus.PENDING.value
    assert draft.priority == 50
    assert draft.subject == "Quick question about Example Shop"
    assert draft.body.startswith("Hi Jane")


def test_one_active_draft_per_contact_and_template(queue, contact, make_template):
    template = make_template()
    first = queue.create_draft(contact, template)

    assert queue.create_draft(contact, template).id == first.id

    queue.reject(first.id)
    assert queue.create_draft(contact, template).id != first.id


def test_approve_applies_edits_before_flipping_state(queue, contact, make_template, clock):
    draft = queue.create_draft(contact, make_template())

    approved = queue.approve(draft.id, subject="Edited subject", body="Edited body", notes="Looks good")

    assert approved.status == DraftStatus.APPROVED.value
    assert approved.subject == "Edited subject"
    assert approved.body == "Edited body"
    assert approved.review_notes == "Looks good"
    assert approved.reviewed_at == clock()


def test_only_pending_drafts_can_be_reviewed(queue, contact, make_template):
    draft = queue.create_draft(contact, make_template())
    queue.reject(draft.id, notes="Off topic")

    with pytest.raises(ReviewStateError):
        queue.approve(draft.id, subject="sneaky edit")
    with pytest.raises(ReviewStateError):
        queue.reject(draft.id)
    assert draft.subject != "sneaky edit"


def test_send_requires_approval(queue, contact, make_template):
    draft = queue.create_draft(contact, make_template())

    with pytest.raises(ReviewStateError, match="Entry is not approved"):
        queue.send_approved(draft.id)


def test_sent_draft_cannot_be_sent_again(queue, transport, contact, make_account, make_template, clock):
    make_account("primary")
    draft = queue.create_draft(contact, make_template())
    queue.approve(draft.id)

    result = queue.send_approved(draft.id)

    assert result.sent
    assert draft.status == DraftStatus.SENT.value
    assert draft.sent_at == clock()
    assert draft.sender_account_id is not None
    assert len(transport.sent) == 1
    with pytest.raises(ReviewStateError):
        queue.send_approved(draft.id)
    with pytest.raises(ReviewStateError):
        queue.requeue(draft.id)


def test_policy_refusal_keeps_draft_approved(queue, transport, contact, make_account, make_template, clock):
    make_account("primary")
    draft = queue.create_draft(contact, make_template())
    queue.approve(draft.id)
    clock.now = clock.now.replace(hour=20)

    result = queue.send_approved(draft.id)

    assert result.refused
    assert draft.status == DraftStatus.APPROVED.value
    assert draft.error_message == "Outside allowed sending hours (8AM-5PM)"
    assert transport.sent == []


def test_approval_does_not_bypass_suppression(queue, contact, make_account, make_template):
    make_account("primary")
    draft = queue.create_draft(contact, make_template())
    queue.approve(draft.id)
    queue.sender.suppression.blacklist.add_email(contact.email, "Unsubscribed")

    result = queue.send_approved(draft.id)

    assert result.refused
    assert result.reason == "Email address is blacklisted"
    assert draft.status == DraftStatus.APPROVED.value


def test_transport_failure_fails_draft_and_requeue_restores_it(queue, transport, contact, make_account,
                                                              make_template):
    make_account("primary")
    draft = queue.create_draft(contact, make_template())
    queue.approve(draft.id)
    transport.error = DispatchError("SMTP error: connection reset")

    result = queue.send_approved(draft.id)

    assert not result.sent
    assert draft.status == DraftStatus.FAILED.value
    assert draft.error_message == "SMTP error: connection reset"
    with pytest.raises(ReviewStateError):
        queue.send_approved(draft.id)

    queue.requeue(draft.id)
    assert draft.status == DraftStatus.PENDING.value
    assert draft.error_message is None


def test_escalation_takes_highest_floor_and_joins_notes(queue, site, make_contact, make_template):
    contact = make_contact(site, "ceo@example.com", priority=80)

    draft = queue.auto_queue(contact, make_template(ai_enabled=True))

    assert draft.priority == 75
    assert draft.review_notes == ("High priority contact; First contact to this website; "
                                  "AI-generated content requires review")
    assert draft.body == "AI drafted body"


def test_no_trigger_means_no_draft(queue, site, make_contact, make_template, add_send, clock):
    earlier = make_contact(site, "info@example.com")
    add_send(earlier, clock() - datetime.timedelta(days=5))
    contact = make_contact(site, "sales@example.com", priority=55)

    assert queue.auto_queue(contact, make_template()) is None


def test_forced_review_uses_requested_priority(queue, site, make_contact, make_template, add_send, clock):
    add_send(make_contact(site, "info@example.com"), clock() - datetime.timedelta(days=5))
    contact = make_contact(site, "sales@example.com")

    draft = queue.auto_queue(contact, make_template(), force_review=True, priority=90)

    assert draft.priority == 90
    assert draft.review_notes == "Manual review requested"


def test_pending_list_orders_by_priority_then_age(queue, site, make_contact, make_template, clock):
    template = make_template()
    low = queue.create_draft(make_contact(site, "a@example.com"), template, priority=40)
    clock.advance(minutes=1)
    older_high = queue.create_draft(make_contact(site, "b@example.com"), template, priority=80)
    clock.advance(minutes=1)
    newer_high = queue.create_draft(make_contact(site, "c@example.com"), template, priority=80)

    assert [d.id for d in queue.list_pending()] == [older_high.id, newer_high.id, low.id]


def test_update_priority_bounds(queue, contact, make_template):
    draft = queue.create_draft(contact, make_template())

    assert queue.update_priority(draft.id, 99).priority == 99
    with pytest.raises(ValueError):
        queue.update_priority(draft.id, 101)


def test_bulk_actions_collect_errors(queue, site, make_contact, make_template):
    template = make_template()
    first = queue.create_draft(make_contact(site, "a@example.com"), template)
    second = queue.create_draft(make_contact(site, "b@example.com"), template)
    queue.reject(second.id)

    outcome = queue.bulk_approve([first.id, second.id, 999])

    assert outcome["approved"] == 1
    assert len(outcome["errors"]) == 2
    assert "Review entry 999 not found" in outcome["errors"][1]


def test_process_approved_queue(queue, transport, site, make_contact, make_account, make_template):
    make_account("primary")
    template = make_template()
    for email in ("a@example.com", "b@example.com"):
        draft = queue.create_draft(make_contact(site, email), template)
        queue.approve(draft.id)

    counts = queue.process_approved_queue(limit=5)

    assert counts == {"sent": 2, "failed": 0, "refused": 0}
    assert len(transport.sent) == 2


def test_cleanup_only_purges_old_terminal_entries(db_session, queue, site, make_contact, make_template, clock):
    template = make_template()
    drafts = {}
    for name in ("pending", "approved", "rejected", "sent", "failed"):
        drafts[name] = ReviewDraft(site_id=site.id, contact_id=make_contact(site, f"{name}@example.com").id,
                                   template_id=template.id, subject="s", body="b", status=name,
                                   created_at=clock() - datetime.timedelta(days=120))
        db_session.add(drafts[name])
    recent = ReviewDraft(site_id=site.id, contact_id=drafts["sent"].contact_id, template_id=template.id,
                         subject="s", body="b", status="sent", created_at=clock() - datetime.timedelta(days=10))
    db_session.add(recent)
    db_session.commit()

    assert queue.cleanup() == 3
    remaining = {d.status for d in db_session.query(ReviewDraft).all()}
    assert remaining == {"pending", "approved", "sent"}
    assert db_session.query(ReviewDraft).count() == 3


def test_statistics(queue, site, make_contact, make_template):
    template = make_template()
    queue.create_draft(make_contact(site, "a@example.com"), template, priority=90)
    queue.create_draft(make_contact(site, "b@example.com"), template, priority=20)

    stats = queue.statistics()

    assert stats["pending"] == 2
    assert stats["total"] == 2
    assert stats["high_priority"] == 1
