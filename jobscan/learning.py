"""Learn from rejected matches and turn the accumulated signal into a score penalty.

Each rejection bumps a counter per derived pattern (title keywords, company,
source, location, low score band). At scoring time every pattern seen at
least twice contributes ``base * min(frequency / 10, 1)`` when it matches the
candidate posting; the sum is capped at ``MAX_PENALTY``. Nothing here is a
model: every point of a penalty traces back to a ``rejection_patterns`` row.

Patterns never decay. A user whose preferences shift keeps being penalised
for old rejections until the rows are removed by hand.
"""
from __future__ import annotations

import math
import re
from typing import Protocol

from jobscan.log import get_logger
from jobscan.models import NormalizedPosting, PatternType, PenaltyContribution, RejectionPattern
from jobscan.store import Store

log = get_logger(__name__)

MAX_PENALTY = 50.0
MIN_FREQUENCY = 2
LOW_SCORE_THRESHOLD = 50

BASE_POINTS: dict[PatternType, float] = {
    PatternType.TITLE_KEYWORD: 15.0,
    PatternType.COMPANY: 20.0,
    PatternType.SOURCE: 10.0,
    PatternType.LOCATION: 12.0,
}

STOP_WORDS = frozenset({
    "engineer", "specialist", "analyst", "manager", "developer", "consultant",
    "senior", "junior", "lead", "principal", "staff",
    "the", "a", "an", "and", "or", "for", "in", "at", "to",
})

_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")


class Rejectable(Protocol):
    title: str
    company: str
    source_name: str
    location: str | None
    fit_score: int


def title_keywords(title: str) -> list[str]:
    words = _NON_WORD_RE.sub(" ", (title or "").lower()).split()
    return list(dict.fromkeys(w for w in words if len(w) > 3 and w not in STOP_WORDS))


def derive_patterns(item: Rejectable) -> list[tuple[PatternType, str]]:
    patterns = [(PatternType.TITLE_KEYWORD, kw) for kw in title_keywords(item.title)]
    if item.company and item.company.strip():
        patterns.append((PatternType.COMPANY, item.company))
    if item.source_name and item.source_name.strip():
        patterns.append((PatternType.SOURCE, item.source_name))
    if item.location and item.location.strip():
        patterns.append((PatternType.LOCATION, item.location))
    if item.fit_score < LOW_SCORE_THRESHOLD:
        patterns.append((PatternType.LOW_SCORE_BAND, str(math.floor(item.fit_score / 10) * 10)))
    return patterns


def pattern_weight(frequency: int) -> float:
    return min(frequency / 10, 1.0)


def _matches(pattern: RejectionPattern, posting: NormalizedPosting) -> bool:
    value = pattern.pattern_value
    if pattern.pattern_type is PatternType.TITLE_KEYWORD:
        return value.lower() in (posting.title or "").lower()
    if pattern.pattern_type is PatternType.COMPANY:
        return posting.company == value
    if pattern.pattern_type is PatternType.SOURCE:
        return posting.source_name == value
    if pattern.pattern_type is PatternType.LOCATION:
        return bool(posting.location) and value.lower() in posting.location.lower()
    return False


def explain(patterns: list[RejectionPattern], posting: NormalizedPosting) -> list[PenaltyContribution]:
    """Per-pattern contributions for ``posting``, before the overall cap."""
    out: list[PenaltyContribution] = []
    for p in patterns:
        if p.frequency < MIN_FREQUENCY or p.pattern_type not in BASE_POINTS:
            continue
        if _matches(p, posting):
            weight = pattern_weight(p.frequency)
            out.append(PenaltyContribution(pattern=p, weight=weight, points=BASE_POINTS[p.pattern_type] * weight))
    return out


def penalty_for(patterns: list[RejectionPattern], posting: NormalizedPosting) -> float:
    total = sum(c.points for c in explain(patterns, posting))
    return min(MAX_PENALTY, max(0.0, total))


class RejectionLearner:
    def __init__(self, store: Store) -> None:
        self.store = store

    def learn_from_rejection(self, user_id: str, item: Rejectable) -> list[tuple[PatternType, str]]:
        patterns = derive_patterns(item)
        for pattern_type, value in patterns:
            self.store.increment_pattern(user_id, pattern_type, value)
        log.info("Learned %d rejection patterns from '%s' at %s",
                 len(patterns), item.title, item.company)
        return patterns

    def load_patterns(self, user_id: str) -> list[RejectionPattern]:
        return self.store.list_patterns(user_id, min_frequency=MIN_FREQUENCY)

    def calculate_rejection_penalty(self, user_id: str, posting: NormalizedPosting) -> float:
        return penalty_for(self.load_patterns(user_id), posting)

    def explain_penalty(self, user_id: str, posting: NormalizedPosting) -> dict:
        contributions = explain(self.load_patterns(user_id), posting)
        raw = sum(c.points for c in contributions)
        return {
            "penalty": min(MAX_PENALTY, raw),
            "uncapped": raw,
            "contributions": contributions,
        }

    def get_rejection_stats(self, user_id: str) -> dict:
        patterns = self.store.list_patterns(user_id)
        keywords = [p for p in patterns if p.pattern_type is PatternType.TITLE_KEYWORD]
        companies = [p for p in patterns if p.pattern_type is PatternType.COMPANY]
        return {
            "total_patterns": len(patterns),
            "top_rejected_keywords": [
                {"keyword": p.pattern_value, "count": p.frequency} for p in keywords[:10]
            ],
            "top_rejected_companies": [
                {"company": p.pattern_value, "count": p.frequency} for p in companies[:10]
            ],
        }
