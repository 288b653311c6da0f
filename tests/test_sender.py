import threading
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import FakeTransport
from leadmailer.config import SendingWindow, SuppressionSettings
from leadmailer.database.models import (
    Base, ContactRecord, EmailTemplate, SendAttemptRecord, SendOutcome, SenderAccount, Site, ValidationStatus
)
from leadmailer.email.generator import EmailGenerator
from leadmailer.email.rate_limiter import RateLimiter
from leadmailer.email.sender import NO_CAPACITY_REASON, DispatchStatus, OutreachSender
from leadmailer.email.suppression import SuppressionEngine
from leadmailer.errors import DispatchError


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sender(db_session, clock, transport, ai_settings):
    return OutreachSender(
        db_session,
        rate_limiter=RateLimiter(SendingWindow(8, 17), clock=clock),
        suppression=SuppressionEngine(db_session, SuppressionSettings(), clock=clock),
        generator=EmailGenerator(ai_settings),
        transport=transport,
        clock=clock,
    )


@pytest.fixture
def contact(make_site, make_contact):
    site = make_site("example.com", title="Example Shop")
    return make_contact(site, "jane@example.com", name="Jane")


def test_successful_send_updates_ledger_account_contact_and_template(
        db_session, sender, transport, contact, make_account, make_template, clock):
    account = make_account("primary")
    template = make_template()

    result = sender.send_to_contact(contact, template)

    assert result.status == DispatchStatus.SENT
    assert transport.sent[0]["to"] == "jane@example.com"
    assert transport.sent[0]["subject"] == "Quick question about Example Shop"
    attempt = result.attempt
    assert attempt.outcome == SendOutcome.SENT.value
    assert attempt.recipient_domain == "example.com"
    assert attempt.sender_account_id == account.id
    assert attempt.sent_at == clock()
    assert account.sent_today == 1
    assert account.success_count == 1
    assert contact.contacted and contact.contact_count == 1
    assert contact.first_contacted_at == clock()
    assert template.usage_count == 1


def test_second_send_is_suppressed(sender, contact, make_account, make_template):
    make_account("primary")
    template = make_template()

    assert sender.send_to_contact(contact, template).sent
    second = sender.send_to_contact(contact, template)

    assert second.refused
    assert second.reason.startswith("Contact was emailed")


def test_refused_outside_window(db_session, sender, transport, contact, make_account, make_template, clock):
    account = make_account("primary")
    clock.now = clock.now.replace(hour=18)

    result = sender.send_to_contact(contact, make_template())

    assert result.refused
    assert result.reason == "Outside allowed sending hours (8AM-5PM)"
    assert transport.sent == []
    assert account.sent_today == 0
    assert db_session.query(SendAttemptRecord).count() == 0


def test_refused_for_unvalidated_and_invalid_contacts(sender, make_site, make_contact, make_account, make_template):
    make_account("primary")
    template = make_template()
    site = make_site("example.com")
    pending = make_contact(site, "new@example.com", validation_status=ValidationStatus.UNVALIDATED.value)
    invalid = make_contact(site, "bad@example.com", validation_status=ValidationStatus.INVALID.value,
                           validation_error="Disposable email domain")

    assert sender.send_to_contact(pending, template).reason == "Contact email has not been validated"
    assert sender.send_to_contact(invalid, template).reason == "Contact email is invalid: Disposable email domain"


def test_refused_when_blacklisted(sender, contact, make_account, make_template):
    make_account("primary")
    sender.suppression.blacklist.add_domain("example.com", "Opted out")

    result = sender.send_to_contact(contact, make_template())

    assert result.refused
    assert result.reason == "Email domain is blacklisted; Website domain is blacklisted"


def test_refused_without_sender_capacity(sender, contact, make_account, make_template):
    make_account("primary", sent_today=10, daily_limit=10)

    result = sender.send_to_contact(contact, make_template())

    assert result.refused
    assert result.reason == NO_CAPACITY_REASON


def test_transport_failure_is_recorded(db_session, sender, transport, contact, make_account, make_template):
    account = make_account("primary")
    transport.error = DispatchError("SMTP error: (451, b'Try again later')")

    result = sender.send_to_contact(contact, make_template())

    assert result.status == DispatchStatus.FAILED
    assert result.attempt.outcome == SendOutcome.FAILED.value
    assert result.attempt.error_message == "SMTP error: (451, b'Try again later')"
    assert account.failure_count == 1
    assert account.sent_today == 1
    assert not contact.contacted


def test_hard_bounce_blacklists_the_address(sender, transport, contact, make_account, make_template):
    make_account("primary")
    transport.error = DispatchError("Recipients refused: 550 no such user", bounced=True)

    sender.send_to_contact(contact, make_template())

    assert sender.suppression.blacklist.is_email_blacklisted("jane@example.com")


def test_send_batch_paces_sends(sender, make_site, make_contact, make_account, make_template, clock):
    make_account("primary")
    site_a, site_b = make_site("a.com"), make_site("b.com")
    contacts = [make_contact(site_a, "x@a.com"), make_contact(site_b, "y@b.com")]
    waits = []

    results = sender.send_batch(contacts, make_template(), pace=True, sleep=waits.append)

    assert [r.sent for r in results] == [True, True]
    # 10:00 with one send left: the remaining 420 minutes
    assert waits == [420 * 60]


class SlowTransport(FakeTransport):
    """Holds each delivery open long enough for a second thread to catch up."""

    def send(self, account, to_email, subject, body, preheader=None):
        time.sleep(0.3)
        super().send(account, to_email, subject, body, preheader)


def test_concurrent_sends_to_one_contact_deliver_once(tmp_path, clock, ai_settings):
    engine = create_engine(f"sqlite:///{tmp_path / 'outreach.db'}",
                           connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    setup = factory()
    site = Site(domain="example.com", url="https://example.com", status="completed", meets_requirements=True)
    setup.add(site)
    setup.commit()
    contact = ContactRecord(site_id=site.id, email="ceo@example.com", priority=50, contacted=False,
                            validation_status=ValidationStatus.VALID.value)
    template = EmailTemplate(name="intro", subject_template="Hello", body_template="Hi",
                             ai_enabled=False, is_active=True, is_default=True, usage_count=0)
    setup.add_all([contact, template, SenderAccount(
        name="primary", host="smtp.example.net", port=587, username="primary@example.net",
        password="secret", from_address="primary@example.net", daily_limit=10, sent_today=0,
        success_count=0, failure_count=0, is_active=True)])
    setup.commit()
    contact_id, template_id = contact.id, template.id
    setup.close()

    transport = SlowTransport()
    results = []

    def send():
        session = factory()
        try:
            sender = OutreachSender(
                session,
                rate_limiter=RateLimiter(SendingWindow(8, 17), clock=clock),
                suppression=SuppressionEngine(session, SuppressionSettings(), clock=clock),
                generator=EmailGenerator(ai_settings),
                transport=transport,
                clock=clock,
            )
            results.append(sender.send_to_contact(session.get(ContactRecord, contact_id),
                                                  session.get(EmailTemplate, template_id)))
        finally:
            session.close()

    threads = [threading.Thread(target=send) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    engine.dispose()

    assert [m["to"] for m in transport.sent] == ["ceo@example.com"]
    assert sorted(r.status for r in results) == [DispatchStatus.REFUSED, DispatchStatus.SENT]
    refused = next(r for r in results if r.refused)
    assert refused.reason.startswith("Contact was emailed")
