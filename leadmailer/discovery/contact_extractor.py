"""
Contact discovery: find email addresses in crawled pages and infer who they belong to.
"""
import re
from dataclasses import dataclass
from typing import List, Any, Optional, Iterable, Callable, Tuple, Set
from bs4 import BeautifulSoup
from sqlalchemy.orm import Session

from leadmailer.config import ExtractionSettings
from leadmailer.database import crud
from leadmailer.database.models import Site, ContactRecord, SourceType
from leadmailer.discovery.url_patterns import UrlPatternService, page_type_to_source_type
from leadmailer.utils.domains import is_valid_email_syntax
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

# Addresses that are really file names, e.g. logo@2x.png
FILE_EXTENSION_PATTERN = re.compile(
    r"\.(jpg|jpeg|png|gif|svg|webp|bmp|ico|pdf|doc|docx|xls|xlsx|zip|rar)$", re.IGNORECASE
)
RETINA_PATTERN = re.compile(r"@\d+x[-.]", re.IGNORECASE)

TAG_PATTERN = re.compile(r"<[^>]*>")
WHITESPACE_PATTERN = re.compile(r"\s+")
MAILTO_STOP_TAGS = {"body", "html", "[document]"}

# Ordered, first match wins
NAME_PATTERNS: List[Tuple[re.Pattern, Callable[[re.Match], str]]] = [
    (re.compile(r"(?i:contact|email|reach|write to)\s+([A-Z][a-z]+\s+[A-Z][a-z]+)"),
     lambda m: m.group(1).strip()),
    (re.compile(r"([A-Z][a-z]+\s+[A-Z][a-z]+)\s*[-–]\s*(?i:CEO|CTO|Manager|Director)"),
     lambda m: m.group(1).strip()),
]

SOURCE_PRIORITY_BONUS = {
    SourceType.CONTACT_PAGE.value: 30,
    SourceType.TEAM_PAGE.value: 25,
    SourceType.ABOUT_PAGE.value: 20,
    SourceType.HEADER.value: 15,
    SourceType.FOOTER.value: 10,
}


@dataclass
class EmailMatch:
    email: str
    context: str = ""
    name: Optional[str] = None
    position: Optional[str] = None


def is_plausible_email(email: str) -> bool:
    """
    Check that a scraped address is a real address and not a file name.

    Args:
        email: Lower-cased candidate address

    Returns:
        True if the address should be kept
    """
    if not is_valid_email_syntax(email):
        return False
    if FILE_EXTENSION_PATTERN.search(email):
        return False
    if RETINA_PATTERN.search(email):
        return False
    return True


def extract_name(context: Optional[str]) -> Optional[str]:
    """Infer a person's name from the text around an address."""
    if not context:
        return None
    for pattern, extractor in NAME_PATTERNS:
        match = pattern.search(context)
        if match:
            return extractor(match)
    return None


def extract_position(context: Optional[str], titles: Iterable[str]) -> Optional[str]:
    """Return the first job title from the list that appears in the context."""
    if not context:
        return None
    lowered = context.lower()
    for title in titles:
        if title.lower() in lowered:
            return title
    return None


def calculate_priority(source_type: str, name: Optional[str], position: Optional[str]) -> int:
    """
    Score how promising a contact is, 50 base plus source, name and position bonuses.

    Args:
        source_type: Contact source classification
        name: Inferred name, if any
        position: Inferred position, if any

    Returns:
        Priority between 0 and 100
    """
    priority = 50 + SOURCE_PRIORITY_BONUS.get(source_type, 5)
    if name:
        priority += 10
    if position:
        priority += 5
    return min(100, priority)


class ContactExtractor:
    """Discover contact records in crawled pages and persist new ones for a site."""

    def __init__(self, db_session: Session, settings: ExtractionSettings = None,
                 url_patterns: UrlPatternService = None):
        """
        Initialize the contact extractor.

        Args:
            db_session: Database session
            settings: Title list, page-type tables and context length
            url_patterns: Page-type classifier, built from settings if omitted
        """
        self.db_session = db_session
        self.settings = settings or ExtractionSettings()
        self.url_patterns = url_patterns or UrlPatternService(self.settings)

    def determine_source_type(self, url: str) -> str:
        return page_type_to_source_type(self.url_patterns.determine_page_type(url))

    def find_emails(self, html: str) -> List[EmailMatch]:
        """
        Find email addresses in a page, mailto links first, then free text.

        Args:
            html: Page HTML

        Returns:
            List of EmailMatch, unique by lower-cased address
        """
        results = []
        seen = set()

        soup = BeautifulSoup(html or "", "html.parser")
        for anchor in soup.select('a[href^="mailto:" i]'):
            href = anchor.get("href", "")
            email = href[len("mailto:"):].split("?", 1)[0].strip().lower()
            if email in seen or not is_plausible_email(email):
                continue
            seen.add(email)
            # The enclosing element often carries the name, e.g. "Reach Jane Doe at <a>"
            holder = anchor.parent if anchor.parent is not None and anchor.parent.name not in MAILTO_STOP_TAGS \
                else anchor
            context = WHITESPACE_PATTERN.sub(" ", holder.get_text(" ", strip=True))
            results.append(EmailMatch(
                email=email,
                context=context,
                name=extract_name(context),
                position=extract_position(context, self.settings.position_titles)
            ))

        for match in EMAIL_PATTERN.finditer(html or ""):
            email = match.group(0).strip().lower()
            if email in seen or not is_plausible_email(email):
                continue
            seen.add(email)
            context = self._context(html, match.start(), match.end())
            results.append(EmailMatch(
                email=email,
                context=context,
                name=extract_name(context),
                position=extract_position(context, self.settings.position_titles)
            ))

        return results

    def _context(self, html: str, start: int, end: int) -> str:
        """Text around a match with tags stripped and whitespace collapsed."""
        length = self.settings.context_length
        snippet = html[max(0, start - length):end + length]
        # Drop tag fragments cut off at either edge
        first_close, first_open = snippet.find(">"), snippet.find("<")
        if first_close != -1 and (first_open == -1 or first_close < first_open):
            snippet = snippet[first_close + 1:]
        last_open = snippet.rfind("<")
        if last_open > snippet.rfind(">"):
            snippet = snippet[:last_open]
        snippet = TAG_PATTERN.sub(" ", snippet)
        return WHITESPACE_PATTERN.sub(" ", snippet).strip()

    def extract_from_html(self, site: Site, html: str, url: str,
                          source_type: str = None) -> List[ContactRecord]:
        """
        Extract and persist contacts from a single page.

        Args:
            site: Site the page belongs to
            html: Page HTML
            url: Page URL, used for source classification
            source_type: Optional override of the source classification

        Returns:
            List of newly created ContactRecord objects
        """
        return self._extract(site, [(url, html, source_type)])

    def extract_from_pages(self, site: Site, pages: Iterable[Any]) -> List[ContactRecord]:
        """
        Extract and persist contacts from crawled pages.

        Each page is classified by its own URL. Addresses already stored for
        the site are skipped, so running twice on the same pages adds nothing.

        Args:
            site: Site that was crawled
            pages: Objects with url and body attributes

        Returns:
            List of newly created ContactRecord objects
        """
        return self._extract(site, [(page.url, page.body, None) for page in pages])

    def _extract(self, site: Site, pages: List[Tuple[str, str, Optional[str]]]) -> List[ContactRecord]:
        seen: Set[str] = crud.get_site_emails(self.db_session, site.id)
        created = []

        for url, html, source_type in pages:
            page_source = source_type or self.determine_source_type(url)
            for match in self.find_emails(html):
                if match.email in seen:
                    continue
                seen.add(match.email)

                contact = crud.create_contact(self.db_session, {
                    "site_id": site.id,
                    "email": match.email,
                    "name": match.name,
                    "position": match.position,
                    "source_type": page_source,
                    "source_url": url,
                    "source_context": match.context[:1000] if match.context else None,
                    "priority": calculate_priority(page_source, match.name, match.position),
                })
                if contact:
                    created.append(contact)
                    logger.info(f"Discovered contact {match.email} on {url} ({page_source})")

        logger.info(f"Extracted {len(created)} new contacts for {site.domain}")
        return created
