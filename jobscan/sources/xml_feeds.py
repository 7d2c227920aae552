"""Job boards that publish classic XML RSS."""
from __future__ import annotations

import re

from jobscan.models import NormalizedPosting
from jobscan.sources.base import DESCRIPTION_LIMIT, REQUIREMENTS_LIMIT, JobSource
from jobscan.sources.feeds import entry_date, strip_markup, xml_entries

_BULLET_RE = re.compile(r"^\s*\* (.+)$", re.MULTILINE)


class XmlFeedSource(JobSource):
    feed_url: str = ""
    company: str = "Various"

    def _fetch(self, limit: int) -> list[NormalizedPosting]:
        entries = xml_entries(self._get(self.feed_url).content)
        postings: list[NormalizedPosting] = []
        for entry in entries:
            if not entry.get("title") or not entry.get("link"):
                continue
            postings.append(self._to_posting(entry))
            if len(postings) >= limit:
                break
        return postings

    def _to_posting(self, entry) -> NormalizedPosting:
        description = strip_markup(entry.get("summary"))
        return NormalizedPosting(
            title=strip_markup(entry.get("title")),
            company=self.company,
            description=description[:DESCRIPTION_LIMIT],
            requirements=description[:REQUIREMENTS_LIMIT] or None,
            location=self.default_location,
            source_url=entry.get("link", "").strip(),
            source_name=self.name,
            posted_at=entry_date(entry),
        )


class FoorillaRemoteSource(XmlFeedSource):
    """Company is the item's dc:creator; the first description line reads
    "<Location> [<Type>] <Salary>"."""

    key = "foorilla_remote"
    name = "Foorilla Remote"
    feed_url = "https://foorilla.com/account/feed/N7bL10Q0T9GGbac/rss/"
    default_location = "Remote"

    def _to_posting(self, entry) -> NormalizedPosting:
        posting = super()._to_posting(entry)
        posting.company = (entry.get("author") or "").strip() or "Unknown Company"

        raw = entry.get("summary") or ""
        first_line = strip_markup(raw.split("\n", 1)[0])
        location = first_line.split("[", 1)[0].strip()
        posting.location = location or self.default_location

        bullets = _BULLET_RE.findall(raw)
        if bullets:
            posting.requirements = ", ".join(b.strip() for b in bullets[:10])[:REQUIREMENTS_LIMIT]
        return posting


class InfosecJobsSource(XmlFeedSource):
    key = "infosec_jobs"
    name = "Infosec-Jobs Remote"
    feed_url = "https://infosec-jobs.com/remote-jobs/rss/"
    default_location = "Remote"


class CyberSecEuSource(XmlFeedSource):
    key = "cybersec_eu"
    name = "CyberSecurity JobSite EU"
    feed_url = "https://www.cybersecurityjobsite.com/jobsrss/?keywords=security+engineer&location=europe"
    default_location = "Europe"
