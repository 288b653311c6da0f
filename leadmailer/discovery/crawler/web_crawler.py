"""
Site crawler: fetches the pages of one website and records the derived signals.
"""
import time
import datetime
import threading
from concurrent import futures
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple
from urllib.parse import urlparse, urljoin, urlunparse
from bs4 import BeautifulSoup
from sqlalchemy.orm import Session

from leadmailer.classification.platform import detect_platform
from leadmailer.config import CrawlerSettings, PAGE_SEPARATOR
from leadmailer.database.models import Site, SiteStatus
from leadmailer.discovery.content_extractor import ContentExtractor
from leadmailer.discovery.crawler.fetcher import FetchResult, HttpPageFetcher
from leadmailer.discovery.url_patterns import UrlPatternService
from leadmailer.errors import CrawlError, FetchError
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

SKIPPED_SCHEMES = ("#", "mailto:", "tel:", "javascript:")


@dataclass
class CrawledPage:
    url: str
    depth: int
    body: str
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class CrawlResult:
    """Pages fetched for one site, in crawl order."""
    root_url: str
    pages: List[CrawledPage] = field(default_factory=list)
    failed_urls: List[str] = field(default_factory=list)
    budget_exhausted: bool = False

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def content(self) -> str:
        return PAGE_SEPARATOR.join(page.body for page in self.pages)

    @property
    def root_page(self) -> Optional[CrawledPage]:
        return self.pages[0] if self.pages else None


class CrawlState:
    """
    Shared bookkeeping for one crawl.

    A URL is claimed exactly once. Each claim takes a page slot, and a slot is
    given back when the fetch does not produce a page, so the number of pages
    can never pass max_pages however many fetches run at once.
    """

    def __init__(self, max_pages: int):
        self.max_pages = max_pages
        self.visited = set()
        self.slots_taken = 0
        self.lock = threading.Lock()

    def claim(self, url: str) -> bool:
        with self.lock:
            if url in self.visited or self.slots_taken >= self.max_pages:
                return False
            self.visited.add(url)
            self.slots_taken += 1
            return True

    def release(self) -> None:
        with self.lock:
            self.slots_taken -= 1

    def available(self) -> int:
        with self.lock:
            return self.max_pages - self.slots_taken

    def seen(self, url: str) -> bool:
        with self.lock:
            return url in self.visited


def normalize_url(url: str) -> str:
    """Force https, lower-case the host, drop the fragment and any trailing slash."""
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip("/")
    return urlunparse(("https", (parsed.netloc or "").lower(), path, parsed.params, parsed.query, ""))


def same_host(host: str, base_host: str) -> bool:
    """Hosts match exactly or differ only by a www. prefix."""
    host, base_host = (host or "").lower(), (base_host or "").lower()
    return host == base_host or host == f"www.{base_host}" or f"www.{host}" == base_host


class WebCrawler:
    """
    Bounded, same-host crawler for a single website.
    """

    def __init__(self, db_session: Session = None, settings: CrawlerSettings = None,
                 fetcher=None, url_patterns: UrlPatternService = None,
                 content_extractor: ContentExtractor = None):
        """
        Initialize the web crawler.

        Args:
            db_session: Database session, needed only for crawl_site
            settings: Crawl bounds, concurrency and time budget
            fetcher: Object with fetch(url) -> FetchResult raising FetchError
            url_patterns: Page-type classifier used to order links
            content_extractor: Structural summary extractor
        """
        self.db_session = db_session
        self.settings = settings or CrawlerSettings()
        self.fetcher = fetcher or HttpPageFetcher(
            timeout=self.settings.fetch_timeout,
            user_agent=self.settings.user_agent
        )
        self.url_patterns = url_patterns or UrlPatternService()
        self.content_extractor = content_extractor or ContentExtractor()

    def crawl_site(self, site: Site, max_pages: int = None, max_depth: int = None) -> CrawlResult:
        """
        Crawl a registered site and store page count, word count, platform and content.

        Args:
            site: Site to crawl
            max_pages: Optional override of the page ceiling
            max_depth: Optional override of the depth ceiling

        Returns:
            CrawlResult

        Raises:
            CrawlError: if the root page fails or no page was retrieved
        """
        self._set_status(site, SiteStatus.CRAWLING, started=True)
        logger.info(f"Crawling site {site.domain} (attempt {site.crawl_attempts})")

        try:
            result = self.crawl(site.url, max_pages=max_pages, max_depth=max_depth)
        except Exception as e:
            site.crawl_error = str(e)
            self._set_status(site, SiteStatus.FAILED)
            logger.error(f"Crawl of {site.domain} failed: {e}")
            if isinstance(e, CrawlError):
                raise
            raise CrawlError(str(e)) from e

        content = result.content
        summary = self.content_extractor.extract(content)
        root = result.root_page

        site.page_count = result.page_count
        site.word_count = summary.word_count
        site.title = summary.title
        site.description = summary.description
        site.content_snapshot = content
        site.detected_platform = detect_platform(root.body, root.headers) if root else None
        site.crawl_error = None
        site.crawled_at = datetime.datetime.utcnow()
        self._set_status(site, SiteStatus.COMPLETED)

        logger.info(
            f"Crawl of {site.domain} completed: {result.page_count} pages, "
            f"{summary.word_count} words, platform {site.detected_platform}"
        )
        return result

    def _set_status(self, site: Site, status: SiteStatus, started: bool = False) -> None:
        previous = site.status
        site.status = status.value
        if started:
            site.crawl_attempts = (site.crawl_attempts or 0) + 1
            site.crawl_started_at = datetime.datetime.utcnow()
        if self.db_session is not None:
            try:
                self.db_session.commit()
            except Exception as e:
                self.db_session.rollback()
                logger.error(f"Error updating status of site {site.domain}: {e}")
                raise
        logger.info(f"Site {site.domain}: {previous} -> {status.value}")

    def crawl(self, root_url: str, max_pages: int = None, max_depth: int = None) -> CrawlResult:
        """
        Crawl a website breadth first from its root URL.

        Args:
            root_url: Site root URL
            max_pages: Page ceiling, defaults to the configured bound
            max_depth: Depth ceiling, defaults to the configured bound

        Returns:
            CrawlResult with pages in crawl order

        Raises:
            CrawlError: if the root page fails or no page was retrieved
        """
        max_pages = self.settings.max_pages if max_pages is None else max_pages
        max_depth = self.settings.max_depth if max_depth is None else max_depth
        deadline = time.monotonic() + self.settings.time_budget

        root_url = normalize_url(root_url if "://" in root_url else f"https://{root_url}")
        base_host = urlparse(root_url).netloc
        state = CrawlState(max_pages)
        result = CrawlResult(root_url=root_url)

        if max_pages < 1:
            raise CrawlError("Failed to crawl any pages from domain")

        logger.info(f"Starting crawl of {root_url} (max_pages={max_pages}, max_depth={max_depth})")

        # The root page decides whether the crawl happens at all
        state.claim(root_url)
        try:
            fetched = self.fetcher.fetch(root_url)
        except FetchError as e:
            raise CrawlError(f"Failed to fetch root page {root_url}: {e}") from e

        root_page = self._to_page(fetched, root_url, 0)
        if root_page is None:
            raise CrawlError("Failed to crawl any pages from domain")
        result.pages.append(root_page)

        level = [root_page]
        depth = 0
        executor = futures.ThreadPoolExecutor(max_workers=max(1, self.settings.concurrency))
        try:
            while level and depth < max_depth and state.available() > 0:
                candidates = self._next_candidates(level, base_host, state)
                depth += 1
                level = self._fetch_level(executor, candidates, depth, state, result, deadline)
                if result.budget_exhausted:
                    logger.warning(f"Crawl time budget exhausted for {root_url}, keeping {result.page_count} pages")
                    break
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(f"Finished crawl of {root_url}: {result.page_count} pages, {len(result.failed_urls)} failures")
        return result

    def _next_candidates(self, level: List[CrawledPage], base_host: str, state: CrawlState) -> List[str]:
        """Unvisited same-host links of a level, contact-like pages first."""
        candidates = []
        for page in level:
            for link in self.extract_links(page.body, page.url, base_host):
                if link not in candidates and not state.seen(link):
                    candidates.append(link)
        # Stable sort keeps document order among equal priorities
        return sorted(candidates, key=self.url_patterns.url_priority, reverse=True)

    def _fetch_level(self, executor, candidates: List[str], depth: int, state: CrawlState,
                     result: CrawlResult, deadline: float) -> List[CrawledPage]:
        """Fetch one depth level in waves until candidates or page slots run out."""
        level_pages: List[Tuple[int, CrawledPage]] = []
        queue = list(enumerate(candidates))

        while queue and state.available() > 0:
            submitted = {}
            while queue and state.available() > 0:
                index, url = queue.pop(0)
                if state.claim(url):
                    submitted[executor.submit(self._fetch_one, url, depth)] = (index, url)

            if not submitted:
                break

            remaining = deadline - time.monotonic()
            done, not_done = futures.wait(submitted, timeout=max(0.0, remaining))

            for future in done:
                index, url = submitted[future]
                page = future.result()
                if page is None:
                    state.release()
                    result.failed_urls.append(url)
                else:
                    level_pages.append((index, page))

            if not_done:
                for future in not_done:
                    future.cancel()
                    result.failed_urls.append(submitted[future][1])
                result.budget_exhausted = True
                break

        level_pages.sort(key=lambda item: item[0])
        pages = [page for _, page in level_pages]
        result.pages.extend(pages)
        return pages

    def _fetch_one(self, url: str, depth: int) -> Optional[CrawledPage]:
        """Fetch a non-root page; failures are logged and skipped."""
        if self.settings.politeness_delay:
            time.sleep(self.settings.politeness_delay)
        try:
            fetched = self.fetcher.fetch(url)
        except FetchError as e:
            logger.warning(f"Skipping {url}: {e} (retryable={e.retryable})")
            return None
        except Exception as e:
            logger.warning(f"Skipping {url}: unexpected fetch error {e}")
            return None
        return self._to_page(fetched, url, depth)

    def _to_page(self, fetched: FetchResult, url: str, depth: int) -> Optional[CrawledPage]:
        """Keep only non-empty HTML responses."""
        if fetched.headers and not fetched.is_html:
            logger.debug(f"Ignoring non-HTML response from {url} ({fetched.content_type})")
            return None
        if not (fetched.body or "").strip():
            logger.debug(f"Ignoring empty response from {url}")
            return None
        return CrawledPage(url=url, depth=depth, body=fetched.body, headers=fetched.headers)

    def extract_links(self, html: str, page_url: str, base_host: str) -> List[str]:
        """
        Extract crawlable same-host links from a page.

        Args:
            html: Page HTML
            page_url: URL the page was fetched from, for resolving relative links
            base_host: Host of the site root

        Returns:
            Normalized links in document order, without duplicates
        """
        links = []
        soup = BeautifulSoup(html or "", "html.parser")

        for a_tag in soup.find_all("a", href=True):
            href = a_tag["href"].strip()

            # Skip empty links, anchors, javascript, mailto and tel links
            if not href or href.lower().startswith(SKIPPED_SCHEMES):
                continue

            absolute_url = urljoin(page_url, href)
            parsed = urlparse(absolute_url)
            if parsed.scheme not in ("http", "https"):
                continue
            if not same_host(parsed.hostname, urlparse(f"https://{base_host}").hostname):
                continue
            if parsed.path.lower().endswith(self.settings.skip_extensions):
                continue

            # One spelling per page, on the root's host form
            link = normalize_url(urlunparse(parsed._replace(netloc=base_host)))
            if link not in links:
                links.append(link)

        return links
