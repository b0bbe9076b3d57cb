"""HTML heuristics for drop detection.

Pure, synchronous functions over an HTML document and its URL:
- evaluate(): structured live/product cues
- is_likely_product_page(): URL shape / structured data gate
- is_blocked_response(): bot check and forbidden detection
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from selectolax.parser import HTMLParser

from dropwatch.config import settings

logger = logging.getLogger(__name__)


CTA_PATTERN = re.compile(r"add to cart|buy now|ship it|pickup|add to basket", re.IGNORECASE)
IN_STOCK_PATTERN = re.compile(r"in stock|available|ready to ship", re.IGNORECASE)
OUT_OF_STOCK_PATTERN = re.compile(r"out of stock|sold out|unavailable", re.IGNORECASE)
PRICE_PATTERN = re.compile(r"\$\s*\d{1,3}(?:,\d{3})*(?:\.\d{2})?")
JSONLD_PRODUCT_PATTERN = re.compile(r"\bProduct\b")

# Block indicators - patterns that suggest the page is a bot challenge or block
BLOCK_PATTERNS = [
    r"captcha",
    r"incapsula",
    r"perimeterx",
    r"access denied",
    r"request unsuccessful",
    r"robot check",
    r"are you a (?:ro)?bot",
    r"\bbot\b",
    r"verify you are a human",
    r"unusual traffic",
    r"pardon our interruption",
    r"press (?:&|and) hold",
    r"forbidden",
    r"proxy authentication",
]
BLOCK_PATTERN = re.compile("|".join(BLOCK_PATTERNS), re.IGNORECASE)

BLOCKED_STATUS_CODES = {403, 407, 429}

# Hostname suffix -> product detail path check
PRODUCT_PATH_RULES: Dict[str, Callable[[str], bool]] = {
    "target.com": lambda path: "/p/" in path,
    "bestbuy.com": lambda path: "/site/" in path and path.endswith(".p"),
    "walmart.com": lambda path: "/ip/" in path,
    "costco.com": lambda path: re.search(r"product\.", path, re.IGNORECASE) is not None,
    "samsclub.com": lambda path: "/p/" in path,
    "gamestop.com": lambda path: "/products/" in path,
    "amazon.com": lambda path: "/dp/" in path or "/gp/product/" in path,
    "pokemoncenter.com": lambda path: "/product/" in path,
}


@dataclass
class PageSignals:
    """Cues extracted from a candidate page."""

    is_product: bool = False
    is_live: bool = False
    price_found: bool = False
    jsonld_product: bool = False
    signals: List[str] = field(default_factory=list)


def _parse(html: str) -> Optional[HTMLParser]:
    if not html:
        return None
    try:
        return HTMLParser(html)
    except Exception as e:
        logger.debug(f"Failed to parse HTML: {e}")
        return None


def _jsonld_blocks(parser: HTMLParser) -> List[str]:
    return [
        script.text() or ""
        for script in parser.css('script[type="application/ld+json"]')
    ]


def _has_jsonld_product(parser: HTMLParser) -> bool:
    return any(JSONLD_PRODUCT_PATTERN.search(block) for block in _jsonld_blocks(parser))


def _visible_text(parser: HTMLParser) -> str:
    parser.strip_tags(["script", "style", "noscript"])
    body = parser.body
    if body is None:
        return ""
    return body.text(separator=" ")


def _matches_product_keywords(text: str) -> bool:
    return any(
        re.search(rf"\b{re.escape(keyword)}\b", text, re.IGNORECASE)
        for keyword in settings.product_keywords
    )


def evaluate(url: str, html: str) -> PageSignals:
    """
    Extract live/product cues from a candidate page.

    Args:
        url: Source URL (kept for parity with the product-page gate)
        html: Raw HTML body

    Returns:
        PageSignals with the true cue names in `signals`
    """
    parser = _parse(html)
    if parser is None:
        return PageSignals()

    title_elem = parser.css_first("title")
    title = title_elem.text(strip=True) if title_elem else ""
    h1_elem = parser.css_first("h1")
    heading = h1_elem.text(strip=True) if h1_elem else ""

    jsonld_product = _has_jsonld_product(parser)
    text = _visible_text(parser)

    cta = CTA_PATTERN.search(text) is not None
    in_stock_text = (
        IN_STOCK_PATTERN.search(text) is not None
        and OUT_OF_STOCK_PATTERN.search(text) is None
    )
    price_seen = PRICE_PATTERN.search(text) is not None

    lead = " ".join([title, heading, text[:300]])
    is_product = jsonld_product or _matches_product_keywords(lead)

    signals: List[str] = []
    if cta:
        signals.append("cta")
    if in_stock_text:
        signals.append("in_stock_text")
    if price_seen:
        signals.append("price_seen")
    if jsonld_product:
        signals.append("jsonld_product")

    return PageSignals(
        is_product=is_product,
        is_live=cta or in_stock_text,
        price_found=price_seen,
        jsonld_product=jsonld_product,
        signals=signals,
    )


def is_likely_product_page(url: str, html: str) -> bool:
    """
    Decide whether a URL/DOM is a product detail page rather than a listing.

    Known retailer hosts are judged by URL shape; other hosts need a
    structured-data Product block.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    host = (parsed.hostname or "").lower()
    path = parsed.path or ""

    for suffix, rule in PRODUCT_PATH_RULES.items():
        if host == suffix or host.endswith("." + suffix):
            return rule(path)

    parser = _parse(html)
    if parser is None:
        return False
    return _has_jsonld_product(parser)


def body_to_text(data: Any) -> str:
    """Normalize a fetch body (str, bytes or JSON payload) to text."""
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    try:
        return json.dumps(data)
    except (TypeError, ValueError):
        return str(data)


def _block_check_text(body: Any) -> str:
    """Title and body text with script, style and noscript removed."""
    text = body_to_text(body)
    parser = _parse(text)
    if parser is None or parser.root is None:
        return text
    parser.strip_tags(["script", "style", "noscript"])
    return parser.root.text(separator=" ")


def is_blocked_response(status: int, body: Any) -> bool:
    """
    True for a 403/407/429 status or bot-check wording in the rendered text.

    Only text a visitor would see counts, so a product page that merely
    loads a captcha or bot-management script is not blocked.
    """
    if status in BLOCKED_STATUS_CODES:
        return True
    return BLOCK_PATTERN.search(_block_check_text(body)) is not None
