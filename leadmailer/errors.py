"""
Exceptions raised by the outreach pipeline.

Expected refusals (outside the sending window, blacklisted, cooling down,
no sender capacity) are not exceptions; they come back as result objects
with a reason string.
"""


class LeadMailerError(Exception):
    """Base class for all pipeline errors."""


class CrawlError(LeadMailerError):
    """The crawl of a whole site failed (root fetch failed or no pages)."""


class FetchError(LeadMailerError):
    """A single page could not be fetched."""

    def __init__(self, url: str, message: str, retryable: bool = True, status_code: int = None):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.retryable = retryable
        self.status_code = status_code


class CriterionConfigError(LeadMailerError):
    """A qualification criterion carries parameters that cannot be used."""


class ReviewStateError(LeadMailerError):
    """A review draft was asked to make a transition its state does not allow."""


class DispatchError(LeadMailerError):
    """The mail transport failed to deliver a message."""

    def __init__(self, message: str, bounced: bool = False):
        super().__init__(message)
        self.bounced = bounced
