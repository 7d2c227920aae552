"""Sources defined by users as data: a feed URL or an API endpoint, no code."""
from __future__ import annotations

from jobscan.models import NormalizedPosting, SourceDescriptor, SourceType
from jobscan.sources.base import DESCRIPTION_LIMIT, REQUIREMENTS_LIMIT, JobSource, SourceError, as_text
from jobscan.sources.feeds import (
    UNKNOWN_COMPANY,
    entry_date,
    json_feed_items,
    json_feed_posting,
    parse_date,
    strip_markup,
    xml_entries,
)


class UserRssSource(JobSource):
    """JSON Feed when the server says JSON, XML RSS otherwise."""

    source_type = SourceType.RSS.value

    def __init__(self, descriptor: SourceDescriptor, timeout: float = 15.0) -> None:
        super().__init__(timeout)
        self.descriptor = descriptor
        self.name = descriptor.name
        self.feed_url = descriptor.feed_url or ""

    def _fetch(self, limit: int) -> list[NormalizedPosting]:
        r = self._get(self.feed_url)
        if "json" in r.headers.get("content-type", "").lower():
            items = json_feed_items(r.json())
            return [json_feed_posting(item, self.name) for item in items[:limit]]

        postings: list[NormalizedPosting] = []
        for entry in xml_entries(r.content)[:limit]:
            description = strip_markup(entry.get("summary"))
            postings.append(
                NormalizedPosting(
                    title=strip_markup(entry.get("title")),
                    company=as_text(entry.get("author")) or UNKNOWN_COMPANY,
                    description=description[:DESCRIPTION_LIMIT],
                    requirements=description[:REQUIREMENTS_LIMIT] or None,
                    source_url=as_text(entry.get("link")) or "",
                    source_name=self.name,
                    posted_at=entry_date(entry),
                )
            )
        return postings


class UserApiSource(JobSource):
    """Generic JSON API: a bare list, or ``{"jobs": [...]}`` / ``{"results": [...]}``."""

    source_type = SourceType.API.value

    def __init__(self, descriptor: SourceDescriptor, timeout: float = 15.0) -> None:
        super().__init__(timeout)
        self.descriptor = descriptor
        self.name = descriptor.name
        self.endpoint = descriptor.api_endpoint or ""
        self.api_key = descriptor.api_key

    def _fetch(self, limit: int) -> list[NormalizedPosting]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        data = self._get(self.endpoint, headers=headers).json()

        if isinstance(data, list):
            rows = data
        elif isinstance(data, dict) and isinstance(data.get("jobs"), list):
            rows = data["jobs"]
        elif isinstance(data, dict) and isinstance(data.get("results"), list):
            rows = data["results"]
        else:
            raise SourceError("API response is neither a list nor has a 'jobs'/'results' list")

        postings: list[NormalizedPosting] = []
        for job in rows[:limit]:
            if not isinstance(job, dict):
                continue
            description = strip_markup(job.get("description"))
            postings.append(
                NormalizedPosting(
                    title=as_text(job.get("title")) or as_text(job.get("name")) or "",
                    company=as_text(job.get("company")) or as_text(job.get("company_name")) or UNKNOWN_COMPANY,
                    description=description[:DESCRIPTION_LIMIT],
                    requirements=(as_text(job.get("requirements")) or "")[:REQUIREMENTS_LIMIT] or None,
                    location=as_text(job.get("location")),
                    salary=as_text(job.get("salary")),
                    source_url=as_text(job.get("url")) or as_text(job.get("link")) or "",
                    source_name=self.name,
                    posted_at=parse_date(job.get("posted_date")),
                )
            )
        return postings
