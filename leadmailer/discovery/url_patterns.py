"""
Multilingual URL patterns for classifying site pages.
"""
from typing import List
from urllib.parse import urlparse

from leadmailer.config import ExtractionSettings

HEADER_MARKERS = ("#header", "#nav", "#menu", "#top")
FOOTER_MARKERS = ("#footer", "#bottom")
HIGH_PRIORITY_TYPES = ("contact", "about", "team")


class UrlPatternService:
    """Classify URLs into page types (contact, about, team, ...) across languages."""

    def __init__(self, settings: ExtractionSettings = None):
        self.settings = settings or ExtractionSettings()

    def get_patterns(self, page_type: str) -> List[str]:
        """All patterns for a page type across the enabled languages, without duplicates."""
        by_language = self.settings.url_patterns.get(page_type, {})
        patterns = []
        for language in self.settings.enabled_languages:
            for pattern in by_language.get(language, []):
                if pattern not in patterns:
                    patterns.append(pattern)
        return patterns

    def matches_page_type(self, url_path: str, page_type: str) -> bool:
        return any(pattern in url_path for pattern in self.get_patterns(page_type))

    def determine_page_type(self, url: str) -> str:
        """
        Determine the page type of a URL.

        Page types are tried in a fixed order against the lower-cased path,
        then header/footer fragment markers, then 'body'.

        Args:
            url: Page URL

        Returns:
            Page type name
        """
        url = (url or "").lower()
        path = urlparse(url).path.strip("/")

        for page_type in self.settings.page_type_order:
            if self.matches_page_type(path, page_type):
                return page_type

        if any(marker in url for marker in HEADER_MARKERS):
            return "header"
        if any(marker in url for marker in FOOTER_MARKERS):
            return "footer"
        return "body"

    def get_priority_score(self, page_type: str) -> int:
        return self.settings.page_type_priority.get(page_type, 5)

    def url_priority(self, url: str) -> int:
        return self.get_priority_score(self.determine_page_type(url))


def page_type_to_source_type(page_type: str) -> str:
    """Map a page type to the contact source classification."""
    if page_type in HIGH_PRIORITY_TYPES:
        return f"{page_type}_page"
    if page_type in ("header", "footer"):
        return page_type
    return "body"
