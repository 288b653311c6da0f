"""
Page fetchers used by the site crawler.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional
import requests

from leadmailer.config import HTTP_TIMEOUT, USER_AGENT
from leadmailer.errors import FetchError
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class FetchResult:
    """What a fetcher hands back for one URL."""
    url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value.lower()
        return ""

    @property
    def is_html(self) -> bool:
        return "text/html" in self.content_type


class HttpPageFetcher:
    """Fetch pages over HTTP with requests, bounded by a per-request timeout."""

    def __init__(self, timeout: float = HTTP_TIMEOUT, user_agent: str = USER_AGENT,
                 session: Optional[requests.Session] = None):
        """
        Initialize the fetcher.

        Args:
            timeout: Seconds allowed for connect and read
            user_agent: User-Agent header sent with every request
            session: Optional requests session to reuse connections
        """
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
        })

    def fetch(self, url: str) -> FetchResult:
        """
        Fetch a URL.

        Args:
            url: URL to fetch

        Returns:
            FetchResult for a 2xx response

        Raises:
            FetchError: on network errors, timeouts and non-2xx responses
        """
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.Timeout as e:
            raise FetchError(url, f"timed out after {self.timeout}s", retryable=True) from e
        except requests.exceptions.RequestException as e:
            raise FetchError(url, str(e), retryable=True) from e

        if response.status_code >= 400:
            raise FetchError(
                url,
                f"HTTP {response.status_code}",
                retryable=response.status_code >= 500 or response.status_code == 429,
                status_code=response.status_code
            )

        return FetchResult(
            url=response.url or url,
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.text or ""
        )
