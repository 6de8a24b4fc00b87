"""Local content tools: readable-text extraction, normalization, quality scoring.

These back the ``research-tools`` capability. They run in-process, so the
real and mock backends share them.
"""

import re
from collections import Counter
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from bs4 import BeautifulSoup

AUTHORITY_DOMAINS = (
    ".gov",
    ".edu",
    ".ac.uk",
    ".gov.cn",
    ".edu.cn",
    "who.int",
    "oecd.org",
    "arxiv.org",
    "wikipedia.org",
    "nature.com",
    "acm.org",
    "ieee.org",
    "w3.org",
    "ietf.org",
    "iso.org",
    "nist.gov",
)

MARKETING_TERMS = re.compile(
    r"\b(sponsor(ed)?|advertorial|promotion(al)?|promo|buy now|discount|coupon|affiliate)\b|优惠|种草|联盟链接|推广",
    re.IGNORECASE,
)

_CJK = re.compile(r"[\u4e00-\u9fff]")
_STRIP_TAGS = ("script", "style", "noscript", "nav", "footer", "header", "aside", "form", "iframe")
_MONTH_SECONDS = 30 * 24 * 3600
FULL_LENGTH_CHARS = 8000


def host_of(url: str) -> str:
    return (urlparse(url).hostname or "").removeprefix("www.")


def is_authoritative(url: str) -> bool:
    """True when the url host is academic, governmental or a standards body."""
    host = host_of(url)
    if not host:
        return False
    for domain in AUTHORITY_DOMAINS:
        if domain.startswith("."):
            if host.endswith(domain):
                return True
        elif host == domain or host.endswith(f".{domain}"):
            return True
    return False


def is_marketing(text: str) -> bool:
    return bool(text) and MARKETING_TERMS.search(text) is not None


def detect_lang(text: str) -> str:
    return "zh" if _CJK.search(text or "") else "en"


def extract_readable(html: str, url: str | None = None) -> dict[str, Any]:
    """Pull the readable article text and metadata out of an HTML page."""
    soup = BeautifulSoup(html or "", "html.parser")

    title = ""
    og_title = soup.find("meta", attrs={"property": "og:title"})
    if og_title and og_title.get("content"):
        title = str(og_title["content"]).strip()
    elif soup.title and soup.title.string:
        title = soup.title.string.strip()

    author = soup.find("meta", attrs={"name": "author"})
    byline = str(author["content"]).strip() if author and author.get("content") else ""

    description = soup.find("meta", attrs={"name": "description"})
    excerpt = str(description["content"]).strip() if description and description.get("content") else ""

    for tag in soup(_STRIP_TAGS):
        tag.decompose()

    root = soup.find("article") or soup.find("main") or soup.body or soup
    paragraphs = [p.get_text(" ", strip=True) for p in root.find_all(["p", "li", "h1", "h2", "h3"])]
    paragraphs = [text for text in paragraphs if text]
    content_text = "\n".join(paragraphs) if paragraphs else root.get_text(" ", strip=True)

    if not excerpt and paragraphs:
        excerpt = paragraphs[0][:280]

    return {
        "title": title,
        "byline": byline,
        "excerpt": excerpt,
        "content_text": content_text,
        "length": len(content_text),
        "url": url,
    }


MAX_KEYWORDS = 10

_WORD = re.compile(r"\w+")


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Most frequent words longer than two characters that occur more than once."""
    counts = Counter(word for word in _WORD.findall(text.lower()) if len(word) > 2)
    return [word for word, count in counts.most_common(limit) if count > 1]


def normalize(item: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Canonical source record: host, language, times and text under fixed keys."""
    url = item.get("url") or ""
    content_text = item.get("content_text") or item.get("text") or ""
    title = item.get("title") or ""
    return {
        "id": item.get("id") or f"{url}#{title[:32]}",
        "url": url,
        "host": host_of(url),
        "title": title,
        "author": item.get("byline") or item.get("author") or "",
        "lang": item.get("lang") or detect_lang(content_text),
        "published_at": item.get("published_at"),
        "extracted_at": item.get("extracted_at") or (now or datetime.now(UTC)).isoformat(),
        "content_text": content_text,
        "keywords": list(item.get("keywords") or extract_keywords(content_text)),
    }


def _parse_time(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def quality_score(item: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Heuristic quality in [0, 1] with the labels that moved it."""
    url = str(item.get("url") or "")
    text = str(item.get("content_text") or item.get("text") or "")

    score = 0.4
    labels: list[str] = []

    if is_authoritative(url):
        score += 0.2
        labels.append("authoritative")

    if is_marketing(text):
        score -= 0.2
        labels.append("marketing")

    score += min(0.2, len(text) / FULL_LENGTH_CHARS * 0.2)

    published = _parse_time(item.get("published_at")) or _parse_time(item.get("extracted_at"))
    if published is not None:
        months = ((now or datetime.now(UTC)) - published).total_seconds() / _MONTH_SECONDS
        if months > 36:
            score -= 0.2
            labels.append("stale>36m")
        elif months > 18:
            score -= 0.1
            labels.append("stale>18m")

    return {"score": max(0.0, min(1.0, score)), "labels": labels}
