"""Remotive: free API for remote tech jobs (no API key required).

Docs: https://remotive.com/api/remote-jobs
"""
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

API_URL = "https://remotive.com/api/remote-jobs"
MAX_AGE_DAYS = 7
MAX_RESULTS = 20


class RemotiveSource(JobSource):
    key = "remotive"
    name = "Remotive"
    source_type = "api"
    default_location = "Remote"

    def _fetch(self, limit: int) -> list[NormalizedPosting]:
        r = self._get(API_URL, params={"limit": limit}, headers={"Accept": "application/json"})
        data = r.json()
        hits = data.get("jobs") if isinstance(data, dict) else None
        if not isinstance(hits, list):
            raise SourceError("Invalid response format: missing 'jobs' list")

        postings: list[NormalizedPosting] = []
        for hit in hits:
            if not isinstance(hit, dict):
                continue
            postings.append(
                NormalizedPosting(
                    title=as_text(hit.get("title")) or "",
                    company=as_text(hit.get("company_name")) or "Unknown Company",
                    description=strip_markup(hit.get("description"))[:DESCRIPTION_LIMIT],
                    requirements=as_text(hit.get("tags")),
                    location=as_text(hit.get("candidate_required_location")) or self.default_location,
                    salary=as_text(hit.get("salary")),
                    source_url=as_text(hit.get("url")) or "",
                    source_name=self.name,
                    posted_at=parse_date(hit.get("publication_date")),
                )
            )
        return postings

    def _post_filter(self, postings: list[NormalizedPosting]) -> list[NormalizedPosting]:
        return filter_by_recency(postings, MAX_AGE_DAYS)[:MAX_RESULTS]
