import datetime
import threading
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadmailer.config import AISettings
from leadmailer.database.models import (
    Base, ContactRecord, EmailTemplate, SendAttemptRecord, SendOutcome, SenderAccount, Site,
    ValidationStatus
)
from leadmailer.discovery.crawler.fetcher import FetchResult
from leadmailer.email import suppression
from leadmailer.errors import FetchError
from leadmailer.utils.domains import email_domain

HTML_HEADERS = {"Content-Type": "text/html; charset=utf-8"}


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture(autouse=True)
def fresh_blacklist_cache(monkeypatch):
    # Each test has its own database, so cached lookups must not leak between tests
    monkeypatch.setattr(suppression, "BLACKLIST_CACHE", suppression.BlacklistCache())


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime.datetime):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + datetime.timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    # A Tuesday, inside the default 8-17 window
    return FixedClock(datetime.datetime(2024, 3, 12, 10, 0, 0))


class FakeFetcher:
    """Serve pages from a dict of URL -> HTML (or an exception to raise)."""

    def __init__(self, pages, headers=None, slow_urls=(), delay=0.0):
        self.pages = pages
        self.headers = headers
        self.slow_urls = set(slow_urls)
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, url):
        with self._lock:
            self.calls.append(url)
        if url in self.slow_urls:
            time.sleep(self.delay)
        page = self.pages.get(url)
        if page is None:
            raise FetchError(url, "HTTP 404", retryable=False, status_code=404)
        if isinstance(page, Exception):
            raise page
        return FetchResult(url=url, status_code=200,
                           headers=dict(self.headers if self.headers is not None else HTML_HEADERS),
                           body=page)


class FakeResolver:
    def __init__(self, mx=None, addresses=None, errors=None):
        self.mx = mx or {}
        self.addresses = set(addresses or [])
        self.errors = errors or {}
        self.lookups = []

    def mx_hosts(self, domain):
        self.lookups.append(domain)
        if domain in self.errors:
            raise self.errors[domain]
        return list(self.mx.get(domain, []))

    def has_address(self, domain):
        return domain in self.addresses


class FakeTransport:
    def __init__(self, error=None):
        self.error = error
        self.sent = []

    def send(self, account, to_email, subject, body, preheader=None):
        if self.error is not None:
            raise self.error
        self.sent.append({"account": account.name, "to": to_email, "subject": subject,
                          "body": body, "preheader": preheader})


class FakeTextGenerator:
    def __init__(self, body="AI body", subject="AI subject"):
        self.body = body
        self.subject = subject
        self.email_calls = []
        self.subject_calls = []

    def generate_email(self, instructions, website_content, context, tone=None, max_tokens=None):
        self.email_calls.append({"instructions": instructions, "content": website_content, "context": context})
        return self.body

    def generate_subject(self, website_title, context="", tone=None):
        self.subject_calls.append(website_title)
        return self.subject


@pytest.fixture
def ai_settings():
    return AISettings(api_key="", sender_name="Alex", sender_company="Acme Web")


@pytest.fixture
def make_site(db_session):
    def _make(domain="example.com", **kwargs):
        values = {"url": f"https://{domain}", "status": "completed", "meets_requirements": True}
        values.update(kwargs)
        site = Site(domain=domain, **values)
        db_session.add(site)
        db_session.commit()
        return site
    return _make


@pytest.fixture
def make_contact(db_session):
    def _make(site, email, **kwargs):
        values = {"validation_status": ValidationStatus.VALID.value, "priority": 50, "contacted": False}
        values.update(kwargs)
        contact = ContactRecord(site_id=site.id, email=email, **values)
        db_session.add(contact)
        db_session.commit()
        return contact
    return _make


@pytest.fixture
def make_account(db_session):
    def _make(name="primary", **kwargs):
        values = {
            "host": "smtp.example.net", "port": 587, "username": f"{name}@example.net",
            "password": "secret", "from_address": f"{name}@example.net", "from_name": "Alex",
            "daily_limit": 10, "sent_today": 0, "success_count": 0, "failure_count": 0,
            "is_active": True,
        }
        values.update(kwargs)
        account = SenderAccount(name=name, **values)
        db_session.add(account)
        db_session.commit()
        return account
    return _make


@pytest.fixture
def make_template(db_session):
    def _make(**kwargs):
        values = {
            "name": "intro",
            "subject_template": "Quick question about {{website_title}}",
            "body_template": "Hi {{contact_name}},\n\nI visited {{website_url}}.\n\n{{sender_name}}, {{sender_company}}",
            "ai_enabled": False,
            "is_active": True,
            "is_default": True,
            "usage_count": 0,
        }
        values.update(kwargs)
        template = EmailTemplate(**values)
        db_session.add(template)
        db_session.commit()
        return template
    return _make


@pytest.fixture
def add_send(db_session):
    def _add(contact, sent_at, outcome=SendOutcome.SENT.value):
        attempt = SendAttemptRecord(
            contact_id=contact.id,
            site_id=contact.site_id,
            recipient_email=contact.email,
            recipient_domain=email_domain(contact.email),
            subject="Hello",
            body="Body",
            outcome=outcome,
            sent_at=sent_at,
        )
        db_session.add(attempt)
        db_session.commit()
        return attempt
    return _add

