"""Fan out to every enabled source and merge the results."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from jobscan.config import Settings
from jobscan.log import get_logger
from jobscan.models import NormalizedPosting
from jobscan.sources import JobSource, build_sources
from jobscan.store import Store

log = get_logger(__name__)


def _safe_fetch(source: JobSource, skills: list[str], limit: int) -> list[NormalizedPosting]:
    # fetch_jobs already swallows upstream errors; this guards plugin bugs.
    try:
        return source.fetch_jobs(skills, limit)
    except Exception:
        log.exception("[%s] Source raised past its boundary", source.name)
        return []


def merge_postings(batches: list[list[NormalizedPosting]]) -> list[NormalizedPosting]:
    """Deduplicate by source URL. Later batches overwrite earlier ones (last write wins)."""
    by_url: dict[str, NormalizedPosting] = {}
    for batch in batches:
        for posting in batch:
            by_url[posting.source_url] = posting
    return list(by_url.values())


def fetch_from_sources(
    sources: list[JobSource],
    skills: list[str],
    *,
    limit: int = 50,
    max_workers: int = 8,
) -> list[NormalizedPosting]:
    if not sources:
        log.info("No enabled sources")
        return []

    workers = max(1, min(len(sources), max_workers))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="source") as pool:
        futures = [pool.submit(_safe_fetch, s, skills, limit) for s in sources]
        batches = [f.result() for f in futures]

    for source, batch in zip(sources, batches):
        log.info("  %-28s %3d jobs", source.name, len(batch))
    merged = merge_postings(batches)
    log.info("Fetched %d jobs from %d sources, %d unique",
             sum(len(b) for b in batches), len(sources), len(merged))
    return merged


def fetch_from_all_sources(
    store: Store, settings: Settings, user_id: str, skills: list[str],
) -> list[NormalizedPosting]:
    """Source rows are read fresh on every call; nothing is cached between scans."""
    descriptors = store.list_sources(user_id)
    sources = build_sources(descriptors, settings)
    return fetch_from_sources(
        sources, skills, limit=settings.fetch_limit, max_workers=settings.source_workers,
    )
