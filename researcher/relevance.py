"""Query relevance scoring and result-list checks.

Everything here is pure: no I/O, no randomness, same input same output.
"""

import re
from collections.abc import Sequence
from typing import Protocol

from researcher.models import QualityReport, RankingReport

FIELD_WEIGHTS = {"title": 0.5, "snippet": 0.3, "url": 0.2}
COVERAGE_WEIGHT = 0.8
FREQUENCY_WEIGHT = 0.2
FREQUENCY_CAP = 3
MIN_TERM_LENGTH = 2
MAX_TERMS = 15

LOW_RELEVANCE_THRESHOLD = 0.2
LOW_AVERAGE_THRESHOLD = 0.3
DUPLICATE_TITLE_RATIO_LIMIT = 0.2
MIN_TITLE_LENGTH = 5
RANKING_TOLERANCE = 1.1
PLACEHOLDER_DOMAIN = "example.com"

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "的", "了", "在", "是", "我", "有", "和", "就", "不", "人", "都", "一", "一个", "与",
    }
)  # fmt: skip

_NON_WORD = re.compile(r"[^\w\u4e00-\u9fff\s]")


class Scorable(Protocol):
    """Anything carrying the three scored fields."""

    title: str
    snippet: str
    url: str


def extract_key_terms(query: str) -> list[str]:
    """Lower-case, strip punctuation, drop stop-words and 1-char terms, cap the count."""
    cleaned = _NON_WORD.sub(" ", query.lower())
    terms = [term for term in cleaned.split() if len(term) >= MIN_TERM_LENGTH and term not in STOP_WORDS]
    return terms[:MAX_TERMS]


def term_match_score(text: str, terms: Sequence[str]) -> float:
    """0.8 x coverage + 0.2 x capped term frequency of ``terms`` inside ``text``."""
    if not text or not terms:
        return 0.0

    lower_text = text.lower()
    matched = 0
    occurrences = 0
    for term in terms:
        count = lower_text.count(term)
        if count:
            matched += 1
            occurrences += count

    coverage = matched / len(terms)
    frequency = min(occurrences / len(terms), FREQUENCY_CAP) / FREQUENCY_CAP
    return coverage * COVERAGE_WEIGHT + frequency * FREQUENCY_WEIGHT


def calculate_relevance(candidate: Scorable | None, query: str) -> float:
    """Weighted title/snippet/url relevance of ``candidate`` to ``query`` in [0, 1]."""
    if candidate is None or not query or not query.strip():
        return 0.0

    title = candidate.title or ""
    snippet = candidate.snippet or ""
    url = candidate.url or ""
    if not (title or snippet or url):
        return 0.0

    terms = extract_key_terms(query)
    if not terms:
        return 0.0

    total = (
        term_match_score(title, terms) * FIELD_WEIGHTS["title"]
        + term_match_score(snippet, terms) * FIELD_WEIGHTS["snippet"]
        + term_match_score(url, terms) * FIELD_WEIGHTS["url"]
    )
    return max(0.0, min(total, 1.0))


def validate_quality(results: Sequence[Scorable], query: str) -> QualityReport:
    """Flag low relevance, duplicated or placeholder results."""
    if not results:
        return QualityReport(is_valid=False, avg_relevance=0.0, issues=["No search results"])

    issues: list[str] = []
    total = 0.0
    for index, result in enumerate(results, start=1):
        relevance = calculate_relevance(result, query)
        total += relevance

        if relevance < LOW_RELEVANCE_THRESHOLD:
            issues.append(f"Result {index} has low relevance ({relevance:.1%}): {result.title}")
        if not result.title or len(result.title) < MIN_TITLE_LENGTH:
            issues.append(f"Result {index} has a missing or short title")
        url = result.url or ""
        if PLACEHOLDER_DOMAIN in url and "test" not in url and "docs" not in url:
            issues.append(f"Result {index} uses placeholder domain {PLACEHOLDER_DOMAIN}")

    avg_relevance = total / len(results)
    if avg_relevance < LOW_AVERAGE_THRESHOLD:
        issues.append(f"Average relevance too low ({avg_relevance:.1%})")

    duplicates = len(results) - len({result.title for result in results})
    if duplicates / len(results) >= DUPLICATE_TITLE_RATIO_LIMIT:
        issues.append(f"Too many duplicate titles ({duplicates} of {len(results)})")

    return QualityReport(is_valid=not issues, avg_relevance=avg_relevance, issues=issues)


def validate_ranking(results: Sequence[Scorable], query: str) -> RankingReport:
    """Check relevance is non-increasing along ``results``, allowing 10% noise."""
    if len(results) < 2:
        return RankingReport(is_valid=True)

    scores = [calculate_relevance(result, query) for result in results]
    issues = [
        f"Result {index + 1} ({scores[index]:.1%}) ranks below result {index} ({scores[index - 1]:.1%}) "
        "but is more relevant"
        for index in range(1, len(scores))
        if scores[index] > scores[index - 1] * RANKING_TOLERANCE
    ]
    return RankingReport(is_valid=not issues, issues=issues)
