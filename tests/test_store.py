"""
Tests for the SQLAlchemy store against in-memory SQLite.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import USER, make_posting
from jobscan.models import PatternType
from jobscan.store import NotFoundError, Store


class TestUsers:
    """Tests for user profile persistence."""

    def test_round_trip_and_defaults(self, store, profile):
        """Stored thresholds come back; missing ones use the store defaults."""
        store.upsert_user(USER, profile, email="a@example.com", auto_scan=True)
        loaded = store.get_user_profile(USER)
        assert loaded == profile
        assert store.get_user_email(USER) == "a@example.com"
        assert store.list_users(auto_scan_only=True) == [USER]

    def test_upsert_keeps_email_when_omitted(self, store, profile):
        """Passing no email leaves the stored one alone."""
        store.upsert_user(USER, profile, email="a@example.com")
        store.upsert_user(USER, profile)
        assert store.get_user_email(USER) == "a@example.com"
        assert store.list_users(auto_scan_only=True) == []

    def test_unknown_user(self, store):
        """Missing users raise NotFoundError."""
        with pytest.raises(NotFoundError):
            store.get_user_profile("nobody")


class TestOpportunities:
    """Tests for opportunity rows, blocking and deduplication lookups."""

    def test_create_and_duplicate_url(self, store, user):
        """A second row for the same user and URL is refused quietly."""
        first = store.create_opportunity(user, make_posting(1), 70)
        assert first is not None and first.fit_score == 70
        assert store.create_opportunity(user, make_posting(1, title="Other"), 90) is None
        assert len(store.list_opportunities(user)) == 1

    def test_same_url_for_another_user(self, store, user, profile):
        """Uniqueness is per user."""
        store.upsert_user("bob", profile)
        assert store.create_opportunity(user, make_posting(1), 70) is not None
        assert store.create_opportunity("bob", make_posting(1), 70) is not None

    def test_find_existing_includes_archived(self, store, user):
        """URL or title+company matches, archived rows included."""
        opp = store.create_opportunity(user, make_posting(1), 70)
        store.archive_opportunity(user, opp.id)

        by_url = store.find_existing_opportunity(user, opp.source_url, "x", "y")
        by_pair = store.find_existing_opportunity(user, "https://elsewhere", opp.title, opp.company)
        assert by_url.id == by_pair.id == opp.id
        assert by_url.archived is True
        assert store.find_existing_opportunity(user, "https://elsewhere", opp.title, "Other Co") is None
        assert store.list_opportunities(user) == []
        assert len(store.list_opportunities(user, include_archived=True)) == 1

    def test_block_is_idempotent(self, store, user):
        """Blocking the same URL twice is fine."""
        store.block_job(user, "https://jobs.example.com/1")
        store.block_job(user, "https://jobs.example.com/1")
        assert store.is_blocked(user, "https://jobs.example.com/1")
        assert not store.is_blocked("bob", "https://jobs.example.com/1")

    def test_other_users_rows_are_not_found(self, store, user):
        """Ids belonging to another user behave as missing."""
        opp = store.create_opportunity(user, make_posting(1), 70)
        with pytest.raises(NotFoundError):
            store.archive_opportunity("bob", opp.id)
        with pytest.raises(NotFoundError):
            store.get_opportunity("bob", opp.id)

    def test_delete_keeps_alert(self, store, user):
        """Deleting an opportunity unlinks its alerts."""
        opp = store.create_opportunity(user, make_posting(1), 70)
        store.add_alert(user, "New job match", opportunity_id=opp.id)
        store.delete_opportunity(user, opp.id)

        alerts = store.list_alerts(user)
        assert len(alerts) == 1
        assert alerts[0]["opportunity_id"] is None

    def test_archive_older_than(self, store, user):
        """Only rows created before the cutoff are archived."""
        store.create_opportunity(user, make_posting(1), 70)
        future = datetime.now(timezone.utc) + timedelta(days=1)
        past = datetime.now(timezone.utc) - timedelta(days=1)
        assert store.archive_older_than(past) == 0
        assert store.archive_older_than(future) == 1
        assert store.list_opportunities(user) == []

    def test_posted_at_is_utc(self, store, user):
        """Datetimes come back timezone-aware."""
        opp = store.create_opportunity(user, make_posting(1), 70)
        assert store.get_opportunity(user, opp.id).posted_at.tzinfo is not None


class TestPatternsAndSources:
    """Tests for rejection patterns and per-user source rows."""

    def test_increment_pattern_upserts(self, store, user):
        """The first increment creates the row, later ones bump it."""
        for _ in range(3):
            store.increment_pattern(user, PatternType.COMPANY, "LawCo")
        store.increment_pattern(user, PatternType.TITLE_KEYWORD, "legal")

        patterns = store.list_patterns(user)
        assert [(p.pattern_value, p.frequency) for p in patterns] == [("LawCo", 3), ("legal", 1)]
        assert [p.pattern_value for p in store.list_patterns(user, min_frequency=2)] == ["LawCo"]

    def test_sources(self, store, user):
        """User feeds and built-in toggles live in the same table."""
        feed = store.add_source(user, "My feed", "rss", feed_url="https://feed.example.com")
        store.set_builtin_enabled(user, "remotive", "Remotive", False)
        store.set_builtin_enabled(user, "remotive", "Remotive", True)

        rows = store.list_sources(user)
        assert [(r.name, r.is_builtin, r.enabled) for r in rows] == [
            ("My feed", False, True), ("Remotive", True, True),
        ]

        store.set_source_enabled(user, feed.id, False)
        assert [r.name for r in store.list_sources(user, enabled_only=True)] == ["Remotive"]

        store.delete_source(user, feed.id)
        with pytest.raises(NotFoundError):
            store.delete_source(user, feed.id)


class TestAlerts:
    """Tests for in-app alerts."""

    def test_mark_read(self, store, user):
        """Read alerts drop out of the unread list."""
        alert_id = store.add_alert(user, "hello")
        store.mark_alert_read(user, alert_id)
        assert store.list_alerts(user) == []
        assert len(store.list_alerts(user, unread_only=False)) == 1


def test_file_backed_database(tmp_path, profile):
    """A file URL works the same as memory."""
    s = Store(f"sqlite:///{tmp_path / 'jobs.db'}")
    s.create_all()
    s.upsert_user(USER, profile)
    assert s.list_users() == [USER]
