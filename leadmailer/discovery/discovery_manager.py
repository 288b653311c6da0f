"""
Discovery manager: runs a site through crawl, extraction, qualification and validation.
"""
import time
from typing import Dict, List, Any, Union
from sqlalchemy.orm import Session

from leadmailer.classification.qualifier import QualificationEvaluator
from leadmailer.database import crud
from leadmailer.database.models import Site, SiteStatus
from leadmailer.discovery.contact_extractor import ContactExtractor
from leadmailer.discovery.crawler.web_crawler import WebCrawler
from leadmailer.email.validator import EmailValidator
from leadmailer.errors import CrawlError
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)


class DiscoveryManager:
    """
    Turns a registered site into qualified, validated contacts.
    """

    def __init__(self, db_session: Session, crawler: WebCrawler = None,
                 extractor: ContactExtractor = None, evaluator: QualificationEvaluator = None,
                 validator: EmailValidator = None):
        """
        Initialize the discovery manager.

        Args:
            db_session: Database session
            crawler: Site crawler
            extractor: Contact extractor
            evaluator: Qualification evaluator
            validator: Email validator
        """
        self.db_session = db_session
        self.crawler = crawler or WebCrawler(db_session)
        self.extractor = extractor or ContactExtractor(db_session)
        self.evaluator = evaluator or QualificationEvaluator(db_session)
        self.validator = validator or EmailValidator(db_session)

    def process_site(self, site_or_url: Union[Site, str], max_pages: int = None,
                     max_depth: int = None) -> Dict[str, Any]:
        """
        Crawl a site, extract its contacts, qualify it and validate the new contacts.

        A crawl failure is reported in the summary and stops the run for this site.

        Args:
            site_or_url: Registered Site or a URL/domain to register
            max_pages: Optional page ceiling
            max_depth: Optional depth ceiling

        Returns:
            Dictionary summarizing the run
        """
        site = site_or_url if isinstance(site_or_url, Site) else crud.register_site(self.db_session, site_or_url)
        start_time = time.time()
        summary = {
            "domain": site.domain,
            "status": None,
            "pages": 0,
            "contacts_found": 0,
            "qualified": False,
            "qualification_reason": None,
            "validation": {"validated": 0, "valid": 0, "invalid": 0},
            "error": None,
            "budget_exhausted": False,
        }

        try:
            result = self.crawler.crawl_site(site, max_pages=max_pages, max_depth=max_depth)
        except CrawlError as e:
            summary["status"] = site.status
            summary["error"] = str(e)
            summary["duration"] = round(time.time() - start_time, 2)
            return summary

        contacts = self.extractor.extract_from_pages(site, result.pages)
        outcome = self.evaluator.qualify_site(site)
        validation = self.validator.validate_batch(contacts)

        summary.update({
            "status": site.status,
            "pages": result.page_count,
            "budget_exhausted": result.budget_exhausted,
            "contacts_found": len(contacts),
            "qualified": outcome.qualified,
            "qualification_reason": outcome.reason,
            "validation": validation,
            "duration": round(time.time() - start_time, 2),
        })
        logger.info(
            f"Processed {site.domain}: {summary['pages']} pages, {summary['contacts_found']} new contacts, "
            f"qualified={summary['qualified']}, valid={validation['valid']}"
        )
        return summary

    def run_pending_sites(self, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Process registered sites that have not been crawled yet.

        Args:
            limit: Maximum number of sites

        Returns:
            One summary per site
        """
        sites = crud.get_sites_by_status(self.db_session, SiteStatus.PENDING.value, limit)
        logger.info(f"Processing {len(sites)} pending sites")
        return [self.process_site(site) for site in sites]
