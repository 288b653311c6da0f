import argparse

import pytest

from conftest import FakeTextGenerator
from leadmailer import main
from leadmailer.database.models import DraftStatus, ReviewDraft
from leadmailer.email.generator import EmailGenerator


@pytest.fixture
def pending_drafts(db_session, make_site, make_contact, make_template, ai_settings, monkeypatch):
    monkeypatch.setattr(main, "build_generator", lambda: EmailGenerator(ai_settings, FakeTextGenerator()))
    site = make_site("example.com")
    template = make_template()
    drafts = []
    for email in ("jane@example.com", "joe@example.com"):
        contact = make_contact(site, email)
        draft = ReviewDraft(site_id=site.id, contact_id=contact.id, template_id=template.id,
                            subject="Hello", body="Hi there", status=DraftStatus.PENDING.value)
        db_session.add(draft)
        drafts.append(draft)
    db_session.commit()
    return drafts


def review_args(action, ids, notes=None):
    return argparse.Namespace(action=action, ids=ids, limit=10, notes=notes)


def test_review_approve_keeps_reviewer_notes(db_session, pending_drafts):
    main.run_review(db_session, review_args("approve", [d.id for d in pending_drafts], notes="checked by sales"))

    for draft in pending_drafts:
        db_session.refresh(draft)
        assert draft.status == DraftStatus.APPROVED.value
        assert draft.review_notes == "checked by sales"


def test_review_reject_keeps_reviewer_notes(db_session, pending_drafts):
    main.run_review(db_session, review_args("reject", [pending_drafts[0].id], notes="wrong company"))

    db_session.refresh(pending_drafts[0])
    db_session.refresh(pending_drafts[1])
    assert pending_drafts[0].status == DraftStatus.REJECTED.value
    assert pending_drafts[0].review_notes == "wrong company"
    assert pending_drafts[1].status == DraftStatus.PENDING.value
