"""
Tests for the scan pipeline and the user-facing opportunity operations.

Sources are replaced by an in-memory fetcher so scans never touch the network.
"""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from conftest import make_posting, make_score
from jobscan.models import PatternType, UserProfile
from jobscan.notify import EmailNotificationSink
from jobscan.pipeline import FEEDBACK_BAD, FEEDBACK_GOOD, ScanError, ScanPipeline
from jobscan.run_daily import next_run, run_once
from jobscan.store import NotFoundError, StoreError


class ScoreByTitle:
    """Scorer returning a fixed overall score per posting title."""

    def __init__(self, scores):
        self.scores = scores

    def score(self, profile, posting, demand=()):
        return make_score(self.scores[posting.title])


def _pipeline(store, settings, postings, **kwargs):
    return ScanPipeline(store, settings, fetcher=lambda user_id, skills: list(postings), **kwargs)


class TestRunScan:
    """Tests for one scan."""

    def test_publishes_good_matches_with_alerts(self, store, settings, user):
        """Fallback scoring publishes strong matches and raises an alert each."""
        postings = [make_posting(1), make_posting(2, title="Florist", description="Flowers")]
        result = _pipeline(store, settings, postings).run_scan(user)

        assert result.fetched_count == 2
        assert result.scored_count == 2
        assert result.added_count == 1
        assert [o.title for o in result.opportunities] == ["Senior Python Engineer 1"]

        alerts = store.list_alerts(user)
        assert [a["message"] for a in alerts] == [
            f"New job match: Senior Python Engineer 1 at Company 1 ({result.opportunities[0].fit_score}% fit)"
        ]

    def test_threshold_is_inclusive(self, store, settings, profile):
        """A score equal to the minimum is published; one below is not."""
        profile.min_fit_score = 60
        store.upsert_user("u", profile)
        postings = [make_posting(1, title="At"), make_posting(2, title="Below")]
        scorer = ScoreByTitle({"At": 60, "Below": 59})

        result = _pipeline(store, settings, postings, scorer=scorer).run_scan("u")
        assert [o.title for o in result.opportunities] == ["At"]

    def test_penalty_is_subtracted(self, store, settings, user):
        """Learned patterns lower the stored score."""
        for _ in range(10):
            store.increment_pattern(user, PatternType.COMPANY, "Company 1")
        scorer = ScoreByTitle({"Senior Python Engineer 1": 65})

        result = _pipeline(store, settings, [make_posting(1)], scorer=scorer).run_scan(user)
        assert result.opportunities[0].fit_score == 45

    def test_penalty_can_drop_below_threshold(self, store, settings, user):
        """A penalised score under the minimum is not published."""
        for _ in range(10):
            store.increment_pattern(user, PatternType.COMPANY, "Company 1")
        scorer = ScoreByTitle({"Senior Python Engineer 1": 55})

        result = _pipeline(store, settings, [make_posting(1)], scorer=scorer).run_scan(user)
        assert result.added_count == 0

    def test_blocked_postings_skipped(self, store, settings, user):
        """Blocked URLs are never scored."""
        store.block_job(user, make_posting(1).source_url)
        result = _pipeline(store, settings, [make_posting(1)]).run_scan(user)
        assert result.added_count == 0
        assert result.skipped_count == 1
        assert result.scored_count == 0

    def test_rescan_adds_nothing(self, store, settings, user):
        """Postings already stored are duplicates on the next scan."""
        pipeline = _pipeline(store, settings, [make_posting(1), make_posting(2)])
        assert pipeline.run_scan(user).added_count == 2
        second = pipeline.run_scan(user)
        assert second.added_count == 0
        assert second.skipped_count == 2

    def test_same_title_and_company_across_urls(self, store, settings, user):
        """Cross-posted jobs with different links are kept once."""
        postings = [
            make_posting(1, title="Python Dev", company="Acme"),
            make_posting(2, title="Python Dev", company="Acme"),
        ]
        result = _pipeline(store, settings, postings).run_scan(user)
        assert result.added_count == 1
        assert len(store.list_opportunities(user)) == 1

    def test_old_postings_skipped(self, store, settings, user):
        """Postings older than the profile's limit are dropped; undated ones stay."""
        old = make_posting(1, posted_at=datetime.now(timezone.utc) - timedelta(days=8))
        undated = make_posting(2, posted_at=None)
        result = _pipeline(store, settings, [old, undated]).run_scan(user)
        assert [o.source_url for o in result.opportunities] == [undated.source_url]

    def test_cancelled_before_scoring(self, store, settings, user):
        """A set cancel flag stops the scan without publishing."""
        cancel = threading.Event()
        cancel.set()
        result = _pipeline(store, settings, [make_posting(1)]).run_scan(user, cancel=cancel)
        assert result.cancelled is True
        assert result.added_count == 0
        assert store.list_opportunities(user) == []

    def test_store_failure_reports_partial_progress(self, store, settings, user, monkeypatch):
        """A store failure mid-scan surfaces with the count already saved."""
        real_create = store.create_opportunity
        calls = {"n": 0}

        def flaky_create(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise StoreError("database is locked")
            return real_create(*args, **kwargs)

        monkeypatch.setattr(store, "create_opportunity", flaky_create)
        postings = [make_posting(1), make_posting(2), make_posting(3)]

        with pytest.raises(ScanError) as excinfo:
            _pipeline(store, settings, postings).run_scan(user)
        assert excinfo.value.added_count == 1
        assert len(store.list_opportunities(user)) == 1

    def test_alert_failure_still_counts_saved_row(self, store, settings, user, monkeypatch):
        """An opportunity committed before its alert write fails is reported as added."""
        def broken_alert(*args, **kwargs):
            raise StoreError("disk I/O error")

        monkeypatch.setattr(store, "add_alert", broken_alert)
        with pytest.raises(ScanError) as excinfo:
            _pipeline(store, settings, [make_posting(1), make_posting(2)]).run_scan(user)
        assert excinfo.value.added_count == 1
        assert len(store.list_opportunities(user)) == excinfo.value.added_count

    def test_aborted_scan_delivers_its_digest(self, store, settings, user, monkeypatch):
        """Matches queued by an aborted scan go out then, not with the next scan's digest."""
        sink = EmailNotificationSink(store, "me@example.com")
        digests = []
        monkeypatch.setattr(
            sink, "send_digest",
            lambda user_id, matches: digests.append([o.title for o in matches]) or (True, "Email sent"),
        )
        real_create = store.create_opportunity
        calls = {"n": 0}

        def flaky_create(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise StoreError("database is locked")
            return real_create(*args, **kwargs)

        monkeypatch.setattr(store, "create_opportunity", flaky_create)
        with pytest.raises(ScanError):
            _pipeline(store, settings, [make_posting(1), make_posting(2)], sink=sink).run_scan(user)
        assert digests == [["Senior Python Engineer 1"]]

        monkeypatch.setattr(store, "create_opportunity", real_create)
        _pipeline(store, settings, [make_posting(3)], sink=sink).run_scan(user)
        assert digests[1] == ["Senior Python Engineer 3"]

    def test_malformed_field_from_user_api_drops_nothing_else(self, store, settings, user, monkeypatch):
        """An object-valued location is read as text and the rest of the feed still publishes."""
        monkeypatch.setattr("jobscan.retry.time.sleep", lambda _s: None)
        store.add_source(user, "Partner API", "api", api_endpoint="https://api.example.com/jobs")
        payload = {"jobs": [
            {"title": "Senior Python Engineer 1", "company": "Acme",
             "description": "Python and AWS services at scale",
             "url": "https://api.example.com/jobs/1", "location": {"city": "Madrid"}},
            {"title": {"unexpected": True}, "company": "Nobody",
             "description": "Python", "url": "https://api.example.com/jobs/2"},
            {"title": "Senior Python Engineer 3", "company": "Globex",
             "description": "Python and AWS services at scale",
             "url": "https://api.example.com/jobs/3", "location": "Remote",
             "salary": {"min": 1}},
        ]}
        response = MagicMock()
        response.json.return_value = payload
        response.headers = {"content-type": "application/json"}
        response.raise_for_status.return_value = None

        with patch("jobscan.sources.base.requests.get", return_value=response):
            result = ScanPipeline(store, settings).run_scan(user)

        assert result.fetched_count == 2
        assert result.added_count == 2
        stored = {o.title: (o.company, o.location, o.salary) for o in store.list_opportunities(user)}
        assert stored == {
            "Senior Python Engineer 1": ("Acme", "Madrid", None),
            "Senior Python Engineer 3": ("Globex", "Remote", None),
        }

    def test_unknown_user(self, store, settings):
        """Scanning a user without a profile is an error."""
        with pytest.raises(NotFoundError):
            _pipeline(store, settings, []).run_scan("ghost")


class TestOpportunityOperations:
    """Tests for reject, good match and archive."""

    def _scanned(self, store, settings, user):
        pipeline = _pipeline(store, settings, [make_posting(1)])
        opp = pipeline.run_scan(user).opportunities[0]
        return pipeline, opp

    def test_reject_blocks_learns_and_archives(self, store, settings, user):
        """Rejected matches never come back."""
        pipeline, opp = self._scanned(store, settings, user)
        pipeline.reject_opportunity(user, opp.id)

        stored = store.get_opportunity(user, opp.id)
        assert stored.archived is True
        assert stored.feedback == FEEDBACK_BAD
        assert store.is_blocked(user, opp.source_url)
        assert store.list_patterns(user)
        assert pipeline.get_opportunities(user) == []
        assert pipeline.run_scan(user).added_count == 0

    def test_reject_without_blocking(self, store, settings, user):
        """Learning still happens when the URL is not blocked."""
        pipeline, opp = self._scanned(store, settings, user)
        pipeline.reject_opportunity(user, opp.id, forever=False)
        assert not store.is_blocked(user, opp.source_url)
        assert pipeline.get_rejection_stats(user)["total_patterns"] > 0

    def test_good_match_and_archive(self, store, settings, user):
        pipeline, opp = self._scanned(store, settings, user)
        pipeline.mark_good_match(user, opp.id)
        assert store.get_opportunity(user, opp.id).feedback == FEEDBACK_GOOD

        pipeline.archive_opportunity(user, opp.id)
        assert pipeline.get_opportunities(user) == []
        assert len(pipeline.get_opportunities(user, include_archived=True)) == 1


class TestDailyRun:
    """Tests for the scheduled batch."""

    def test_only_auto_scan_users(self, store, settings, profile):
        """Users without auto-scan are left alone."""
        store.upsert_user("auto", profile, auto_scan=True)
        store.upsert_user("manual", profile)
        pipeline = _pipeline(store, settings, [make_posting(1)])

        summary = run_once(pipeline, settings)
        assert summary["users"] == 1
        assert summary["added"] == 1
        assert summary["failed"] == []
        assert store.list_opportunities("manual") == []

    def test_failed_user_does_not_stop_batch(self, store, settings):
        """A store failure for one user is recorded and the batch goes on."""
        store.upsert_user("a", UserProfile(primary_skills=["Python"]), auto_scan=True)
        store.upsert_user("b", UserProfile(primary_skills=["Python"]), auto_scan=True)

        def fetch(user_id, skills):
            if user_id == "a":
                raise StoreError("gone")
            return [make_posting(1)]

        pipeline = ScanPipeline(store, settings, fetcher=fetch)
        summary = run_once(pipeline, settings)
        assert summary["failed"] == ["a"]
        assert summary["added"] == 1

    def test_next_run(self):
        """The next run is today if the hour is still ahead, else tomorrow."""
        morning = datetime(2026, 5, 1, 4, 30, tzinfo=timezone.utc)
        evening = datetime(2026, 5, 1, 20, 0, tzinfo=timezone.utc)
        assert next_run(morning).day == 1
        assert next_run(evening).day == 2
