"""
Detect the CMS or site builder a website runs on.
"""
from typing import Dict, Optional

# Checked in order, first hit wins
PLATFORM_MARKERS = [
    ("wordpress", ["wp-content", "wp-includes", "wordpress", "/wp-json/"]),
    ("shopify", ["shopify", "cdn.shopify.com", "myshopify.com"]),
    ("wix", ["wix.com", "wixsite.com", "wix-code"]),
    ("squarespace", ["squarespace", "squarespace-cdn"]),
    ("webflow", ["webflow"]),
    ("joomla", ["joomla", "/components/com_"]),
    ("drupal", ["drupal", "sites/all/themes"]),
    ("woocommerce", ["woocommerce", "wc-"]),
]

CUSTOM = "custom"


def detect_from_headers(headers: Optional[Dict[str, str]]) -> str:
    """
    Detect the platform from response headers.

    Args:
        headers: Response headers of the root page

    Returns:
        Platform name or 'custom'
    """
    if not headers:
        return CUSTOM
    lowered = {str(k).lower(): str(v).lower() for k, v in headers.items()}
    if "wordpress" in lowered.get("x-powered-by", ""):
        return "wordpress"
    if any("shopify" in k or "shopify" in v for k, v in lowered.items()):
        return "shopify"
    return CUSTOM


def detect_from_html(html: str) -> str:
    """Detect the platform from markers in the page source."""
    html = (html or "").lower()
    for platform, markers in PLATFORM_MARKERS:
        if any(marker in html for marker in markers):
            return platform
    return CUSTOM


def detect_platform(html: str, headers: Optional[Dict[str, str]] = None) -> str:
    """Headers first, then page source."""
    platform = detect_from_headers(headers)
    if platform != CUSTOM:
        return platform
    return detect_from_html(html)
