"""Security job boards republished as RSS.app JSON Feeds."""
from __future__ import annotations

from jobscan.models import NormalizedPosting
from jobscan.sources.base import DESCRIPTION_LIMIT, REQUIREMENTS_LIMIT, JobSource, as_text
from jobscan.sources.feeds import (
    UNKNOWN_COMPANY,
    json_feed_items,
    json_feed_posting,
    parse_date,
    strip_markup,
)


class JsonFeedSource(JobSource):
    feed_url: str = ""
    dash_titles: bool = False

    def _fetch(self, limit: int) -> list[NormalizedPosting]:
        items = json_feed_items(self._get(self.feed_url).json())
        return [self._to_posting(item) for item in items[:limit]]

    def _to_posting(self, item: dict) -> NormalizedPosting:
        return json_feed_posting(
            item,
            self.name,
            default_location=self.default_location,
            dash_titles=self.dash_titles,
        )


class BarcelonaSecuritySource(JsonFeedSource):
    key = "barcelona_security"
    name = "Barcelona Security Jobs"
    feed_url = "https://rss.app/feeds/v1.1/C5zHjN9WFy1WI1sN.json"
    default_location = "Barcelona, Spain"


class SecurityJobsFeedSource(JsonFeedSource):
    key = "security_jobs3"
    name = "Security Jobs Feed 3"
    feed_url = "https://rss.app/feeds/v1.1/Dphao3rl7Yywrt77.json"
    default_location = "Spain"
    dash_titles = True


class CyberSecSpainSource(JsonFeedSource):
    """Headlines are plain titles here; the employer comes from the item author."""

    key = "cybersec_spain"
    name = "CyberSecurity JobSite Spain"
    feed_url = "https://rss.app/feeds/v1.1/A3zJXmli7QilaybJ.json"
    default_location = "Spain"

    def _fetch(self, limit: int) -> list[NormalizedPosting]:
        items = json_feed_items(self._get(self.feed_url).json())
        postings: list[NormalizedPosting] = []
        for item in items[:limit]:
            url = as_text(item.get("url")) or ""
            # The feed mixes in account pages when the scraper gets logged out.
            if "/logon/" in url or item.get("title") == "sign in, create an account":
                continue
            postings.append(self._to_posting(item))
        return postings

    def _to_posting(self, item: dict) -> NormalizedPosting:
        authors = item.get("authors")
        author = authors[0] if isinstance(authors, list) and authors else None
        description = as_text(item.get("content_text")) or strip_markup(item.get("content_html"))
        return NormalizedPosting(
            title=as_text(item.get("title")) or "",
            company=as_text(author) or UNKNOWN_COMPANY,
            description=description[:DESCRIPTION_LIMIT],
            requirements=description[:REQUIREMENTS_LIMIT] or None,
            location=self.default_location,
            source_url=as_text(item.get("url")) or "",
            source_name=self.name,
            posted_at=parse_date(item.get("date_published")),
        )
