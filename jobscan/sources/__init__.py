from __future__ import annotations

from .base import JobSource, SourceError, filter_by_recency, filter_by_skills
from .remotive import RemotiveSource
from .rss_app import BarcelonaSecuritySource, CyberSecSpainSource, SecurityJobsFeedSource
from .themuse import MuseSource
from .user import UserApiSource, UserRssSource
from .xml_feeds import CyberSecEuSource, FoorillaRemoteSource, InfosecJobsSource

from jobscan.config import Settings
from jobscan.log import get_logger
from jobscan.models import SourceDescriptor, SourceType

log = get_logger(__name__)

__all__ = [
    "JobSource", "SourceError", "filter_by_skills", "filter_by_recency",
    "RemotiveSource", "MuseSource", "BarcelonaSecuritySource",
    "SecurityJobsFeedSource", "CyberSecSpainSource", "FoorillaRemoteSource",
    "InfosecJobsSource", "CyberSecEuSource", "UserRssSource", "UserApiSource",
    "BUILTIN_SOURCES", "build_sources",
]

# Registration order is also merge order in the aggregator.
BUILTIN_SOURCES: dict[str, type[JobSource]] = {
    cls.key: cls
    for cls in (
        RemotiveSource,
        MuseSource,
        BarcelonaSecuritySource,
        SecurityJobsFeedSource,
        CyberSecSpainSource,
        FoorillaRemoteSource,
        InfosecJobsSource,
        CyberSecEuSource,
    )
}


def build_user_source(descriptor: SourceDescriptor, timeout: float = 15.0) -> JobSource | None:
    if descriptor.source_type == SourceType.RSS.value and descriptor.feed_url:
        return UserRssSource(descriptor, timeout=timeout)
    if descriptor.source_type == SourceType.API.value and descriptor.api_endpoint:
        return UserApiSource(descriptor, timeout=timeout)
    log.warning("[%s] Unsupported source type or missing URL: %s",
                descriptor.name, descriptor.source_type)
    return None


def build_sources(descriptors: list[SourceDescriptor], settings: Settings) -> list[JobSource]:
    """Fresh source instances for one user: enabled built-ins, then user sources by id.

    ``descriptors`` are that user's rows. A built-in row (``is_builtin``)
    overrides the global default for that key; other rows are data-driven
    feeds or APIs.
    """
    if settings.builtin_sources is None:
        defaults = set(BUILTIN_SOURCES)
    else:
        defaults = set(settings.builtin_sources)
        for key in defaults - set(BUILTIN_SOURCES):
            log.warning("Unknown built-in source in settings: %s", key)

    overrides = {d.builtin_key: d.enabled for d in descriptors if d.is_builtin and d.builtin_key}

    sources: list[JobSource] = []
    for key, cls in BUILTIN_SOURCES.items():
        if overrides.get(key, key in defaults):
            sources.append(cls(timeout=settings.source_timeout))

    for d in sorted((d for d in descriptors if not d.is_builtin), key=lambda d: d.id):
        if not d.enabled:
            continue
        source = build_user_source(d, timeout=settings.source_timeout)
        if source is not None:
            sources.append(source)

    log.debug("Built %d sources: %s", len(sources), ", ".join(s.name for s in sources))
    return sources
