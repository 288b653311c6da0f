"""
Helpers for turning URLs and email addresses into comparable domain keys.
"""
import re
from typing import List
from urllib.parse import urlparse


def extract_domain(url_or_host: str) -> str:
    """
    Get the bare, lower-cased host of a URL or hostname, without a leading www.

    Args:
        url_or_host: Full URL (https://www.Example.com/a) or plain host

    Returns:
        Normalized domain, e.g. example.com
    """
    if not url_or_host:
        return ""
    value = url_or_host.strip().lower()
    if "://" not in value:
        value = f"http://{value}"
    host = urlparse(value).hostname or ""
    if host.startswith("www."):
        host = host[4:]
    return host.rstrip(".")


def email_domain(email: str) -> str:
    """Lower-cased domain part of an email address."""
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].strip().lower()


def parent_domains(domain: str) -> List[str]:
    """
    List a domain and each of its parent suffixes, most specific first.

    mail.shop.example.com -> [mail.shop.example.com, shop.example.com, example.com, com]
    """
    parts = [p for p in (domain or "").lower().split(".") if p]
    return [".".join(parts[i:]) for i in range(len(parts))]


def site_url(domain_or_url: str) -> str:
    """Canonical https root URL for a domain or URL."""
    return f"https://{extract_domain(domain_or_url)}"


def clean_url(url: str) -> str:
    """Strip the scheme and a trailing slash for display in emails."""
    if not url:
        return ""
    value = url
    for prefix in ("https://", "http://"):
        if value.lower().startswith(prefix):
            value = value[len(prefix):]
            break
    return value.rstrip("/")


_LOCAL_PART = r"[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+)*"
_DOMAIN_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
EMAIL_SYNTAX = re.compile(rf"^{_LOCAL_PART}@(?:{_DOMAIN_LABEL}\.)+[A-Za-z]{{2,63}}$")


def is_valid_email_syntax(email: str) -> bool:
    """Check an address against an RFC 5322 shaped pattern (dot-atom form only)."""
    if not email or len(email) > 254:
        return False
    local = email.rsplit("@", 1)[0]
    if len(local) > 64:
        return False
    return EMAIL_SYNTAX.match(email) is not None
