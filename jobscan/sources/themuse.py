"""The Muse public jobs API. Only remote or flexible roles are kept."""
from __future__ import annotations

from jobscan.models import NormalizedPosting
from jobscan.sources.base import (
    DESCRIPTION_LIMIT,
    JobSource,
    SourceError,
    as_text,
    filter_by_recency,
)
from jobscan.sources.feeds import parse_date, strip_markup

API_URL = "https://www.themuse.com/api/public/jobs"
CATEGORIES = ("Engineering", "Data Science", "IT")
MAX_AGE_DAYS = 7
MAX_RESULTS = 15


def _is_remote(hit: dict) -> bool:
    places = (as_text(hit.get("locations")) or "").lower()
    return "remote" in places or "flexible" in places


class MuseSource(JobSource):
    key = "themuse"
    name = "The Muse"
    source_type = "api"

    def _fetch(self, limit: int) -> list[NormalizedPosting]:
        r = self._get(
            API_URL,
            params={"category": ",".join(CATEGORIES), "page": 0, "descending": "true"},
            headers={"Accept": "application/json"},
        )
        data = r.json()
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise SourceError("Invalid response format: missing 'results' list")

        postings: list[NormalizedPosting] = []
        for hit in results:
            if not isinstance(hit, dict) or not _is_remote(hit):
                continue
            postings.append(
                NormalizedPosting(
                    title=as_text(hit.get("name")) or "",
                    company=as_text(hit.get("company")) or "Unknown Company",
                    description=strip_markup(hit.get("contents"))[:DESCRIPTION_LIMIT],
                    requirements=as_text(hit.get("categories")),
                    location=as_text(hit.get("locations")),
                    source_url=as_text((hit.get("refs") or {}).get("landing_page")) or "",
                    source_name=self.name,
                    posted_at=parse_date(hit.get("publication_date")),
                )
            )
            if len(postings) >= limit:
                break
        return postings

    def _post_filter(self, postings: list[NormalizedPosting]) -> list[NormalizedPosting]:
        return filter_by_recency(postings, MAX_AGE_DAYS)[:MAX_RESULTS]
