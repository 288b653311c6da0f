from conftest import FakeFetcher, FakeResolver, FakeTransport
from leadmailer.config import CrawlerSettings, SendingWindow, SuppressionSettings
from leadmailer.database.models import ContactRecord, QualificationRule, SiteStatus, ValidationStatus
from leadmailer.discovery.crawler.web_crawler import WebCrawler
from leadmailer.discovery.discovery_manager import DiscoveryManager
from leadmailer.email.generator import EmailGenerator
from leadmailer.email.rate_limiter import RateLimiter
from leadmailer.email.sender import OutreachSender
from leadmailer.email.suppression import SuppressionEngine
from leadmailer.email.validator import EmailValidator

ROOT = "https://example.com"

PAGES = {
    ROOT: """<html><head><title>Example Bakery</title>
        <script src="/wp-includes/js/jquery.js"></script></head>
        <body><h1>Fresh bread every day</h1><p>Our bakery ships sourdough across the country.</p>
        <a href="/contact">Contact</a><a href="/about-us">About</a>
        <footer>hello@example.com</footer></body></html>""",
    f"{ROOT}/contact": """<html><body><p>Reach Anna Baker - CEO at
        <a href="mailto:anna@example.com">anna@example.com</a></p>
        <p>Orders: orders@mailinator.com</p></body></html>""",
    f"{ROOT}/about-us": "<html><body><p>Family owned since 1952.</p></body></html>",
}


def manager(db_session):
    crawler = WebCrawler(
        db_session,
        settings=CrawlerSettings(max_pages=10, max_depth=2, concurrency=2, time_budget=30, politeness_delay=0),
        fetcher=FakeFetcher(PAGES),
    )
    validator = EmailValidator(db_session, resolver=FakeResolver(mx={"example.com": ["mx.example.com"]}))
    return DiscoveryManager(db_session, crawler=crawler, validator=validator)


def test_site_goes_from_crawl_to_sent_email(db_session, clock, ai_settings, make_account, make_template):
    db_session.add(QualificationRule(name="wordpress bakeries",
                                     criteria={"platforms": ["wordpress"], "required_keywords": ["bakery"]},
                                     is_active=True))
    db_session.commit()
    make_account("primary")
    template = make_template()

    summary = manager(db_session).process_site("www.example.com")

    assert summary["status"] == SiteStatus.COMPLETED.value
    assert summary["pages"] == 3
    assert summary["qualified"] is True
    assert summary["contacts_found"] == 3
    assert summary["validation"] == {"validated": 3, "valid": 2, "invalid": 1}

    transport = FakeTransport()
    sender = OutreachSender(
        db_session,
        rate_limiter=RateLimiter(SendingWindow(8, 17), clock=clock),
        suppression=SuppressionEngine(db_session, SuppressionSettings(), clock=clock),
        generator=EmailGenerator(ai_settings),
        transport=transport,
        clock=clock,
    )
    safe = sender.suppression.safe_contacts(10)
    assert [c.email for c in safe] == ["anna@example.com", "hello@example.com"]
    assert safe[0].name == "Anna Baker"
    assert safe[0].position == "CEO"

    results = sender.send_batch(safe, template)

    # Both addresses share a domain, and the cap of two is reached only after both sends
    assert [r.sent for r in results] == [True, True]
    assert transport.sent[0]["subject"] == "Quick question about Example Bakery"
    assert sender.send_to_contact(safe[0], template).refused


def test_crawl_failure_is_reported_in_summary(db_session):
    crawler = WebCrawler(db_session, settings=CrawlerSettings(politeness_delay=0), fetcher=FakeFetcher({}))

    summary = DiscoveryManager(db_session, crawler=crawler).process_site("down.example")

    assert summary["status"] == SiteStatus.FAILED.value
    assert summary["error"].startswith("Failed to fetch root page")
    assert summary["contacts_found"] == 0


def test_rerunning_discovery_adds_no_duplicate_contacts(db_session):
    first = manager(db_session).process_site("example.com")
    second = manager(db_session).process_site("example.com")

    assert first["contacts_found"] == 3
    assert second["contacts_found"] == 0
    assert second["validation"]["validated"] == 0
    assert all(c.validation_status != ValidationStatus.UNVALIDATED.value
               for c in db_session.query(ContactRecord).all())
