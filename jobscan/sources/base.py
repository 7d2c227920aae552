from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

from jobscan.log import get_logger
from jobscan.models import NormalizedPosting
from jobscan.retry import retry

log = get_logger(__name__)

DESCRIPTION_LIMIT = 2000
REQUIREMENTS_LIMIT = 500

UNKNOWN_COMPANY = "Unknown Company"

# Keys tried, in order, when an upstream sends an object where text belongs.
_TEXT_KEYS = ("name", "display_name", "title", "label", "city", "value")


class SourceError(RuntimeError):
    """A source returned a bad status or a payload we cannot parse."""


def as_text(value: Any) -> str | None:
    """Coerce one upstream field to text; ``None`` when nothing usable is in it.

    Objects give their first text-like key (``{"name": "Madrid"}`` -> "Madrid"),
    lists are joined with commas.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        for key in _TEXT_KEYS:
            text = as_text(value.get(key))
            if text:
                return text
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(t for t in map(as_text, value) if t) or None
    return None


def clean_posting(posting: NormalizedPosting) -> NormalizedPosting | None:
    """Posting with every field of the right type, or ``None`` without a title or link."""
    title = as_text(posting.title)
    source_url = as_text(posting.source_url)
    if not title or not source_url:
        return None
    posted_at = posting.posted_at if isinstance(posting.posted_at, datetime) else None
    return replace(
        posting,
        title=title,
        company=as_text(posting.company) or UNKNOWN_COMPANY,
        description=as_text(posting.description) or "",
        source_url=source_url,
        requirements=as_text(posting.requirements),
        location=as_text(posting.location),
        salary=as_text(posting.salary),
        posted_at=posted_at,
    )


def filter_by_skills(postings: list[NormalizedPosting], skills: list[str]) -> list[NormalizedPosting]:
    """Keep postings whose title + description mention any skill (case-insensitive)."""
    needles = [s.lower() for s in skills if s and s.strip()]
    return [p for p in postings if any(n in p.text().lower() for n in needles)]


def filter_by_recency(
    postings: list[NormalizedPosting], max_age_days: int, *, now: datetime | None = None,
) -> list[NormalizedPosting]:
    """Drop postings published more than ``max_age_days`` ago. Undated ones stay."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=max_age_days)
    return [p for p in postings if p.posted_at is None or p.posted_at > cutoff]


class JobSource(ABC):
    """One upstream feed or API.

    Subclasses implement ``_fetch`` which returns normalized postings and may
    raise freely. ``fetch_jobs`` is the boundary: it never raises, coerces
    each posting's fields to text (dropping those without a title or link)
    and applies the skill filter.
    """

    key: str = ""
    name: str = "Unknown"
    source_type: str = "rss"
    default_location: str | None = None

    def __init__(self, timeout: float = 15.0) -> None:
        self.timeout = timeout

    @abstractmethod
    def _fetch(self, limit: int) -> list[NormalizedPosting]:
        ...

    @retry(max_attempts=2, base_delay=1.5, retryable=(requests.RequestException, OSError), give_up_after=5.0)
    def _get(self, url: str, **kwargs) -> requests.Response:
        r = requests.get(url, timeout=self.timeout, **kwargs)
        r.raise_for_status()
        return r

    def _post_filter(self, postings: list[NormalizedPosting]) -> list[NormalizedPosting]:
        return postings

    def fetch_jobs(self, skills: list[str], limit: int = 50) -> list[NormalizedPosting]:
        log.info("[%s] Fetching jobs...", self.name)
        try:
            postings = self._fetch(limit)
        except Exception as exc:
            log.error("[%s] Error fetching jobs: %s", self.name, exc)
            return []

        complete = [p for p in map(clean_posting, postings) if p is not None]
        if len(complete) < len(postings):
            log.warning("[%s] Dropped %d postings without a usable title or link",
                        self.name, len(postings) - len(complete))
        log.info("[%s] Received %d jobs", self.name, len(complete))

        filtered = self._post_filter(filter_by_skills(complete, skills))
        for p in filtered:
            p.source_name = self.name
        log.info("[%s] Filtered to %d relevant jobs", self.name, len(filtered))
        return filtered

    def health_check(self) -> bool:
        """Hit the upstream once; unlike ``fetch_jobs`` this sees the failure."""
        try:
            self._fetch(1)
            return True
        except Exception as exc:
            log.warning("[%s] Health check failed: %s", self.name, exc)
            return False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"
