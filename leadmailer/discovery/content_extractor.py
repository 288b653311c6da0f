"""
Structural summary of crawled HTML: title, description, headings, text and links.
"""
import re
from dataclasses import dataclass, field
from typing import List, Dict, Optional
from bs4 import BeautifulSoup

from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

# Alphabetic words, allowing inner apostrophes and hyphens
WORD_PATTERN = re.compile(r"[^\W\d_]+(?:['-][^\W\d_]+)*")

NON_CONTENT_TAGS = ["script", "style", "noscript", "template", "head"]


@dataclass
class ContentSummary:
    title: Optional[str] = None
    description: Optional[str] = None
    headings: List[str] = field(default_factory=list)
    paragraphs: List[str] = field(default_factory=list)
    links: List[Dict[str, str]] = field(default_factory=list)
    images: List[Dict[str, Optional[str]]] = field(default_factory=list)
    word_count: int = 0


def count_words(text: str) -> int:
    """Count alphabetic words in a block of text."""
    return len(WORD_PATTERN.findall(text or ""))


class ContentExtractor:
    """Extract a structural summary from an HTML document or crawl corpus."""

    def __init__(self, parser: str = "html.parser"):
        self.parser = parser

    def extract(self, html: str) -> ContentSummary:
        """
        Extract the structural summary of a document.

        Args:
            html: HTML of a page or the concatenated crawl corpus

        Returns:
            ContentSummary
        """
        soup = BeautifulSoup(html or "", self.parser)

        summary = ContentSummary()

        title_tag = soup.find("title")
        if title_tag:
            summary.title = title_tag.get_text().strip() or None

        meta_desc = soup.find("meta", attrs={"name": re.compile("^description$", re.I)})
        if meta_desc and meta_desc.get("content"):
            summary.description = meta_desc["content"].strip()

        # Level by level, h1 first
        for level in range(1, 7):
            for heading in soup.find_all(f"h{level}"):
                text = heading.get_text(" ", strip=True)
                if text:
                    summary.headings.append(text)

        for paragraph in soup.find_all("p"):
            text = paragraph.get_text(" ", strip=True)
            if len(text) > 20:
                summary.paragraphs.append(text)

        for anchor in soup.find_all("a"):
            href = (anchor.get("href") or "").strip()
            text = anchor.get_text(" ", strip=True)
            if href and text:
                summary.links.append({"url": href, "text": text})

        for image in soup.find_all("img"):
            summary.images.append({"src": image.get("src"), "alt": image.get("alt")})

        summary.word_count = self._word_count(soup)
        return summary

    def _word_count(self, soup: BeautifulSoup) -> int:
        for tag in soup.find_all(NON_CONTENT_TAGS):
            tag.decompose()
        return count_words(soup.get_text(" "))
