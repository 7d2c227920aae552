"""Parsing helpers shared by feed-backed sources (JSON Feed and XML RSS)."""
from __future__ import annotations

import calendar
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import feedparser
from bs4 import BeautifulSoup

from jobscan.models import NormalizedPosting
from jobscan.sources.base import (
    DESCRIPTION_LIMIT,
    REQUIREMENTS_LIMIT,
    UNKNOWN_COMPANY,
    SourceError,
    as_text,
)

_SPANISH_TITLE_RE = re.compile(r"^(.+?)\s+busca personal para el cargo de\s+(.+?)\s+en\s+(.+)$")
_DASH_TITLE_RE = re.compile(r"^(.+?)\s+-\s+(.+)$")
_WS_RE = re.compile(r"\s+")


def strip_markup(html: Any) -> str:
    html = as_text(html)
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return _WS_RE.sub(" ", text).strip()


def parse_title_company(raw: str, *, dash: bool = False) -> tuple[str, str, str | None]:
    """Split a combined headline into ``(title, company, location)``.

    Tried in order: "<Company> busca personal para el cargo de <Title> en
    <Location>", "<Title> - <Company>" (only when ``dash``), and
    "<Title> at <Company>". Anything else keeps the headline as the title.
    """
    raw = (raw or "").strip()
    m = _SPANISH_TITLE_RE.match(raw)
    if m:
        return m.group(2).strip(), m.group(1).strip(), m.group(3).strip()
    if dash:
        m = _DASH_TITLE_RE.match(raw)
        if m:
            return m.group(1).strip(), m.group(2).strip(), None
    parts = raw.split(" at ")
    if len(parts) > 1:
        return parts[0].strip(), " at ".join(parts[1:]).strip(), None
    return raw, UNKNOWN_COMPANY, None


def parse_date(value: Any) -> datetime | None:
    """ISO 8601 (JSON Feed), RFC 822 (RSS) or a feedparser time tuple."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, tuple) or hasattr(value, "tm_year"):
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    else:
        text = str(value).strip()
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                dt = parsedate_to_datetime(text)
            except (TypeError, ValueError):
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def json_feed_items(data: Any) -> list[dict]:
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise SourceError("JSON feed has no items list")
    return [item for item in data["items"] if isinstance(item, dict)]


def json_feed_posting(
    item: dict,
    source_name: str,
    *,
    default_location: str | None = None,
    dash_titles: bool = False,
) -> NormalizedPosting:
    """Map one RSS.app-style JSON Feed item to a posting."""
    title, company, parsed_location = parse_title_company(as_text(item.get("title")) or "", dash=dash_titles)
    description = strip_markup(item.get("content_html")) or as_text(item.get("content_text")) or ""
    return NormalizedPosting(
        title=title,
        company=company,
        description=description[:DESCRIPTION_LIMIT],
        requirements=description[:REQUIREMENTS_LIMIT] or None,
        location=as_text(item.get("location")) or parsed_location or default_location,
        source_url=as_text(item.get("url")) or "",
        source_name=source_name,
        posted_at=parse_date(item.get("date_published")),
    )


def xml_entries(content: bytes | str) -> list:
    """Parse an RSS/Atom document; a feed with no entries and a parse error is malformed."""
    parsed = feedparser.parse(content)
    if parsed.bozo and not parsed.entries:
        raise SourceError(f"malformed XML feed: {parsed.get('bozo_exception')}")
    return list(parsed.entries)


def entry_date(entry) -> datetime | None:
    return parse_date(entry.get("published_parsed") or entry.get("published"))
