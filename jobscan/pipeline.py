"""Scan pipeline: fetch → filter → score → penalise → publish, plus the user-facing operations."""
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable

from jobscan.aggregator import fetch_from_all_sources
from jobscan.config import Settings
from jobscan.learning import RejectionLearner, penalty_for
from jobscan.log import get_logger
from jobscan.models import NormalizedPosting, Opportunity, ScanResult, Skill, UserProfile
from jobscan.notify import NotificationSink, StoreNotificationSink, match_message
from jobscan.reasoning import ReasoningClient
from jobscan.scoring import FitScorer
from jobscan.skills import SkillService
from jobscan.store import Store, StoreError

log = get_logger(__name__)

Fetcher = Callable[[str, list[str]], list[NormalizedPosting]]

FEEDBACK_BAD = "BAD_MATCH"
FEEDBACK_GOOD = "GOOD_MATCH"


class ScanError(RuntimeError):
    """The store failed mid-scan. ``added_count`` opportunities were already saved."""

    def __init__(self, message: str, added_count: int = 0) -> None:
        super().__init__(message)
        self.added_count = added_count


def _age_days(posted_at: datetime, now: datetime) -> int:
    if posted_at.tzinfo is None:
        posted_at = posted_at.replace(tzinfo=timezone.utc)
    return (now - posted_at).days


class ScanPipeline:
    def __init__(
        self,
        store: Store,
        settings: Settings,
        *,
        client: ReasoningClient | None = None,
        scorer: FitScorer | None = None,
        sink: NotificationSink | None = None,
        fetcher: Fetcher | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        if client is None and settings.has_reasoning_credential:
            client = ReasoningClient(settings)
        self.scorer = scorer or FitScorer(client)
        self.learner = RejectionLearner(store)
        self.skills = SkillService(store, client)
        self.sink = sink or StoreNotificationSink(store)
        self._fetch = fetcher or (
            lambda user_id, skills: fetch_from_all_sources(store, settings, user_id, skills)
        )

    # ── scan ─────────────────────────────────────────────────────────────

    def _candidates(
        self, user_id: str, profile: UserProfile, postings: list[NormalizedPosting],
        cancel: threading.Event | None,
    ) -> tuple[list[NormalizedPosting], int, bool]:
        """Drop blocked, already-known and stale postings before any scoring."""
        now = datetime.now(timezone.utc)
        keep: list[NormalizedPosting] = []
        seen_pairs: set[tuple[str, str]] = set()
        skipped = 0
        for posting in postings:
            if cancel is not None and cancel.is_set():
                return keep, skipped, True
            if self.store.is_blocked(user_id, posting.source_url):
                log.info("Skipping blocked job: %s", posting.title)
                skipped += 1
                continue
            pair = (posting.title, posting.company)
            existing = self.store.find_existing_opportunity(
                user_id, posting.source_url, posting.title, posting.company,
            )
            if existing is not None or pair in seen_pairs:
                log.info("Skipping duplicate job: %s (archived: %s)",
                         posting.title, existing.archived if existing else False)
                skipped += 1
                continue
            if posting.posted_at is not None:
                age = _age_days(posting.posted_at, now)
                if age > profile.max_posting_age_days:
                    log.info("Skipping old job: %s (posted %d days ago, max: %d days)",
                             posting.title, age, profile.max_posting_age_days)
                    skipped += 1
                    continue
            seen_pairs.add(pair)
            keep.append(posting)
        return keep, skipped, False

    def _publish(
        self, user_id: str, posting: NormalizedPosting, adjusted: int, result: ScanResult,
    ) -> bool:
        opportunity = self.store.create_opportunity(user_id, posting, adjusted)
        if opportunity is None:
            log.info("Skipping duplicate job: %s (stored concurrently)", posting.title)
            return False
        # Counted before notifying: the row is committed even if the alert write fails.
        result.opportunities.append(opportunity)
        result.added_count += 1
        self.sink.notify(user_id, match_message(opportunity), opportunity)
        log.info("Added job: %s (%d%% fit)", posting.title, adjusted)
        return True

    def _flush_after_abort(self, user_id: str) -> None:
        """Deliver what an aborted scan already saved so it is not held for the next digest."""
        try:
            self.sink.flush(user_id)
        except StoreError as exc:
            log.warning("Could not deliver notifications for aborted scan of %s: %s", user_id, exc)

    def run_scan(self, user_id: str, cancel: threading.Event | None = None) -> ScanResult:
        """Scan every enabled source for ``user_id`` and publish good matches.

        Only a store failure aborts the scan; it is re-raised as ``ScanError``
        carrying the number of opportunities already added. ``cancel`` is
        checked between postings.
        """
        result = ScanResult(added_count=0)
        try:
            profile = self.store.get_user_profile(user_id)
        except StoreError as exc:
            raise ScanError(f"cannot load user {user_id}: {exc}", 0) from exc

        skills = profile.primary_skills or profile.all_skills
        log.info("Starting scan for user %s (min fit %d%%, max age %d days)",
                 user_id, profile.min_fit_score, profile.max_posting_age_days)

        pool: ThreadPoolExecutor | None = None
        finished = False
        try:
            postings = self._fetch(user_id, skills)
            result.fetched_count = len(postings)
            log.info("Found %d total jobs from all sources", len(postings))

            patterns = self.learner.load_patterns(user_id)
            demand: list[Skill] = self.skills.demand_snapshot()

            candidates, result.skipped_count, result.cancelled = self._candidates(
                user_id, profile, postings, cancel,
            )
            if candidates and not result.cancelled:
                pool = ThreadPoolExecutor(
                    max_workers=max(1, self.settings.scoring_workers), thread_name_prefix="score",
                )
                futures: list[tuple[NormalizedPosting, Future]] = [
                    (p, pool.submit(self.scorer.score, profile, p, demand)) for p in candidates
                ]
                for posting, future in futures:
                    if cancel is not None and cancel.is_set():
                        result.cancelled = True
                        break
                    try:
                        score = future.result()
                    except Exception:
                        log.exception("Scoring failed for %s", posting.title)
                        result.skipped_count += 1
                        continue
                    result.scored_count += 1

                    penalty = penalty_for(patterns, posting)
                    adjusted = max(0, score.overall - round(penalty))
                    log.info(
                        "%s at %s: %d%% fit (title: %d%%, skill: %d%%, exp: %d%%)%s",
                        posting.title, posting.company, score.overall, score.title_match,
                        score.skill_match, score.experience_match,
                        f" - PENALTY: -{penalty:.1f} = {adjusted}%" if penalty > 0 else "",
                    )
                    if adjusted < profile.min_fit_score:
                        continue
                    if not self._publish(user_id, posting, adjusted, result):
                        result.skipped_count += 1
            finished = True
        except StoreError as exc:
            log.error("Scan for %s aborted by store failure after %d additions: %s",
                      user_id, result.added_count, exc)
            raise ScanError(str(exc), result.added_count) from exc
        finally:
            if pool is not None:
                pool.shutdown(wait=True, cancel_futures=True)
            if not finished:
                self._flush_after_abort(user_id)

        if result.cancelled:
            log.warning("Scan for %s cancelled", user_id)
        try:
            self.sink.flush(user_id)
        except StoreError as exc:
            raise ScanError(str(exc), result.added_count) from exc
        log.info("Scan complete. Added %d new jobs.", result.added_count)
        return result

    # ── opportunities ────────────────────────────────────────────────────

    def get_opportunities(self, user_id: str, *, include_archived: bool = False) -> list[Opportunity]:
        return self.store.list_opportunities(user_id, include_archived=include_archived)

    def reject_opportunity(self, user_id: str, opportunity_id: int, *, forever: bool = True) -> None:
        opportunity = self.store.get_opportunity(user_id, opportunity_id)
        self.learner.learn_from_rejection(user_id, opportunity)
        if forever:
            self.store.block_job(user_id, opportunity.source_url)
        self.store.set_feedback(user_id, opportunity_id, FEEDBACK_BAD)
        self.store.archive_opportunity(user_id, opportunity_id)
        log.info("Rejected %s at %s%s", opportunity.title, opportunity.company,
                 " (blocked)" if forever else "")

    def mark_good_match(self, user_id: str, opportunity_id: int) -> None:
        self.store.set_feedback(user_id, opportunity_id, FEEDBACK_GOOD)

    def archive_opportunity(self, user_id: str, opportunity_id: int) -> None:
        self.store.archive_opportunity(user_id, opportunity_id)

    def delete_opportunity(self, user_id: str, opportunity_id: int) -> None:
        self.store.delete_opportunity(user_id, opportunity_id)

    def get_rejection_stats(self, user_id: str) -> dict:
        return self.learner.get_rejection_stats(user_id)

    def explain_penalty(self, user_id: str, posting: NormalizedPosting) -> dict:
        return self.learner.explain_penalty(user_id, posting)

    # ── skills ───────────────────────────────────────────────────────────

    def extract_and_save_skills(self, text: str, title: str, company: str | None = None) -> dict[str, int]:
        return self.skills.extract_and_save_skills(text, title, company)

    def get_skill_stats(self) -> dict:
        return self.skills.get_skill_stats()

    def search_skills(self, query: str, category: str | None = None) -> list[Skill]:
        return self.skills.search_skills(query, category)

    def match_user_skills(self, skills: list[str]) -> dict[str, list[Skill]]:
        return self.skills.match_user_skills(skills)

    def update_trends(self) -> dict[str, int]:
        return self.skills.update_trends()
