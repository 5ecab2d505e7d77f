"""Product listing extraction from category page HTML."""

import json
import logging
import re
from pathlib import Path
from typing import Callable, List, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from pydantic import BaseModel
from selectolax.parser import HTMLParser, Node

from catalog_crawler.ingest.base import ProductRecord

logger = logging.getLogger(__name__)

# Bot-wall and interstitial indicators (lowercase match)
BLOCK_PATTERNS = [
    ("just a moment", "Cloudflare challenge"),
    ("cf-browser-verification", "Cloudflare challenge"),
    ("attention required", "Cloudflare block"),
    ("access denied", "Access denied"),
    ("captcha", "Captcha required"),
    ("verify you are a human", "Human verification required"),
    ("request has been blocked", "Request blocked"),
    ("unusual traffic", "Unusual traffic detected"),
    ("enable javascript", "JavaScript required"),
]

_WHITESPACE = re.compile(r"\s+")


def detect_block_reason(html: str) -> Optional[str]:
    """Detect common bot/blocked page signals in HTML."""
    if not html:
        return "Empty response"
    haystack = " ".join(html.lower().split())
    for needle, reason in BLOCK_PATTERNS:
        if needle in haystack:
            return reason
    return None


class SiteProfile(BaseModel):
    """Selectors and rules describing a catalog's listing pages."""

    base_url: str = "https://casoca.com.br"
    item_selectors: List[str] = [
        ".col-md-4.detail-product",
        ".product-item",
        ".product",
    ]
    name_selectors: List[str] = [
        ".info h2",
        ".product-text strong",
        "h3",
        "h4",
        ".product-name",
    ]
    # (selector, attribute) pairs tried after the text selectors
    name_attributes: List[List[str]] = [["a[title]", "title"]]
    image_selector: str = "img"
    image_attributes: List[str] = ["src", "data-src", "data-lazy-src", "data-original"]
    link_selectors: List[str] = ["a.product-item-photo", "a[href]"]
    max_name_length: int = 200
    keep_items_without_link: bool = True
    keep_items_without_image: bool = True

    @classmethod
    def from_file(cls, path: str | Path) -> "SiteProfile":
        """Load a profile from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            return cls(**json.load(f))

    @classmethod
    def from_settings(cls, settings) -> "SiteProfile":
        """Profile from `settings.site_profile_file`, or the built-in one."""
        overrides = {
            "base_url": settings.site_base_url,
            "max_name_length": settings.max_name_length,
            "keep_items_without_link": settings.keep_items_without_link,
            "keep_items_without_image": settings.keep_items_without_image,
        }
        if settings.site_profile_file:
            profile = cls.from_file(settings.site_profile_file)
            # File wins for selectors, settings for filtering rules
            return profile.model_copy(update={k: v for k, v in overrides.items() if k != "base_url"})
        return cls(**overrides)


def clean_text(text: Optional[str]) -> str:
    """Collapse whitespace and strip."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


def normalize_url(raw: Optional[str], base_url: str, strip_fragment: bool = True) -> str:
    """
    Resolve `raw` to an absolute http(s) URL.

    Returns an empty string for missing values, `data:` placeholders and
    `javascript:` pseudo-links.
    """
    if not raw:
        return ""
    raw = raw.strip()
    lowered = raw.lower()
    if not raw or lowered.startswith(("data:", "javascript:", "mailto:", "#")):
        return ""
    if raw.startswith("//"):
        raw = "https:" + raw

    absolute = urljoin(base_url.rstrip("/") + "/", raw)
    parts = urlsplit(absolute)
    if parts.scheme not in ("http", "https"):
        return ""
    if strip_fragment and parts.fragment:
        absolute = urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))
    return absolute


def _first_text(node: Node, selectors: List[str]) -> str:
    for selector in selectors:
        elem = node.css_first(selector)
        if elem is None:
            continue
        text = clean_text(elem.text(separator=" "))
        if text:
            return text
    return ""


def _extract_name(node: Node, profile: SiteProfile) -> str:
    name = _first_text(node, profile.name_selectors)
    if name:
        return name

    for selector, attribute in profile.name_attributes:
        elem = node.css_first(selector)
        if elem is not None:
            value = clean_text(elem.attributes.get(attribute))
            if value:
                return value

    # Last resort: first anchor text
    anchor = node.css_first("a")
    if anchor is not None:
        return clean_text(anchor.text(separator=" "))
    return ""


def _extract_image(node: Node, profile: SiteProfile) -> str:
    for img in node.css(profile.image_selector):
        for attribute in profile.image_attributes:
            url = normalize_url(img.attributes.get(attribute), profile.base_url)
            if url:
                return url
    return ""


def _extract_link(node: Node, profile: SiteProfile) -> str:
    for selector in profile.link_selectors:
        elem = node.css_first(selector)
        if elem is None:
            continue
        url = normalize_url(elem.attributes.get("href"), profile.base_url)
        if url:
            return url
    return ""


def selector_cascade(node: Node, profile: SiteProfile) -> Optional[ProductRecord]:
    """Default strategy: ordered selector fallbacks for name, image and link."""
    name = _extract_name(node, profile)
    if not name:
        return None
    return ProductRecord(
        name=name[: profile.max_name_length],
        image_url=_extract_image(node, profile),
        link=_extract_link(node, profile),
    )


ExtractionStrategy = Callable[[Node, SiteProfile], Optional[ProductRecord]]


class ListingExtractor:
    """
    Turns a category page into product records.

    Strategies are tried in order per item node; the first one returning a
    record wins. Extraction is pure: no I/O, no classification.
    """

    def __init__(
        self,
        profile: Optional[SiteProfile] = None,
        strategies: Optional[List[ExtractionStrategy]] = None,
    ):
        self.profile = profile or SiteProfile()
        self.strategies: List[ExtractionStrategy] = strategies or [selector_cascade]

    def find_items(self, parser: HTMLParser) -> List[Node]:
        """Item nodes from the first item selector with at least one match."""
        for selector in self.profile.item_selectors:
            items = parser.css(selector)
            if items:
                logger.debug(f"Found {len(items)} items with selector '{selector}'")
                return items
        return []

    def _apply_strategies(self, node: Node) -> Optional[ProductRecord]:
        for strategy in self.strategies:
            record = strategy(node, self.profile)
            if record is not None:
                return record
        return None

    def extract(self, html: str, category: str) -> List[ProductRecord]:
        """
        Extract product records from a listing page.

        Args:
            html: Page HTML (may be empty)
            category: Category name stamped on every record

        Returns:
            Records in page order, deduplicated by link, subcategory unset
        """
        if not html or not html.strip():
            return []

        parser = HTMLParser(html)
        records: List[ProductRecord] = []
        seen_links: set[str] = set()
        dropped = 0

        for node in self.find_items(parser):
            record = self._apply_strategies(node)
            if record is None or not record.name:
                dropped += 1
                continue
            if not record.link and not self.profile.keep_items_without_link:
                dropped += 1
                continue
            if not record.image_url and not self.profile.keep_items_without_image:
                dropped += 1
                continue

            if record.link:
                if record.link in seen_links:
                    continue
                seen_links.add(record.link)

            record.category = category
            records.append(record)

        if dropped:
            logger.debug(f"{category}: dropped {dropped} item(s) without usable fields")
        return records
