"""
Utility functions for storybot.

Provides text normalization, URL/host resolution and id fingerprinting used by
the clustering stages.
"""

import hashlib
import re
import unicodedata
from typing import Iterable, Optional
from urllib.parse import urlparse

from .models import Article

GOOGLE_NEWS_HOST = "news.google.com"
PLACEHOLDER_IMAGE_HOSTS = ("placehold.co",)
WHITESPACE_PATTERN = re.compile(r"\s+")


def clean_text(text: Optional[str]) -> str:
    """NFKC-normalize and collapse whitespace runs to single spaces."""
    if not text:
        return ""
    return WHITESPACE_PATTERN.sub(" ", unicodedata.normalize("NFKC", text)).strip()


def validate_url(url: str) -> bool:
    """
    Validate if URL is properly formed.

    Args:
        url: URL to validate

    Returns:
        True if URL has an http(s) scheme and a host
    """
    if not url:
        return False

    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    # Must have scheme and netloc
    if not parsed.scheme or not parsed.netloc:
        return False

    return parsed.scheme in ('http', 'https')


def extract_host(url: str) -> str:
    """Lowercased hostname without a leading ``www.``; empty when unparseable."""
    if not validate_url(url):
        return ""
    host = (urlparse(url).hostname or "").lower()
    return re.sub(r'^www\.', '', host)


def resolve_article_host(article: Article) -> str:
    """
    Resolve the effective publisher host of an article.

    Prefers the publisher URL (``source.url``) over the article URL, which may
    be a Google News redirect. When the host is still news.google.com, the
    source name is appended so different publishers stay distinct.
    """
    host = extract_host(article.source.url) or extract_host(article.url)
    if host == GOOGLE_NEWS_HOST and article.source.name:
        host = f"{GOOGLE_NEWS_HOST}:{article.source.name.lower()}"
    return host


def canonical_url(article: Article) -> str:
    """
    Canonical key of an article for de-duplication.

    Origin + path of the article URL (query and fragment ignored). Articles
    without a usable URL fall back to ``host|title`` so they never collapse
    across hosts.
    """
    if validate_url(article.url):
        parsed = urlparse(article.url)
        return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"

    host = extract_host(article.source.url)
    return f"{host}|{article.title.lower().strip()}"


def has_useful_image(article: Optional[Article]) -> bool:
    """True when the article carries a real (non-placeholder) image URL."""
    if article is None or not article.url_to_image:
        return False
    return not any(host in article.url_to_image for host in PLACEHOLDER_IMAGE_HOSTS)


def fingerprint_ids(ids: Iterable[str]) -> str:
    """Stable SHA-1 fingerprint of a set of article ids (order-insensitive)."""
    joined = "-".join(sorted(set(ids)))
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()
