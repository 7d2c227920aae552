"""Shared fixtures: an in-memory store, settings and a sample profile."""

import os

# Keep test runs from writing daily log files into the repo.
os.environ.setdefault("JOBSCAN_LOG_TO_FILE", "0")

from datetime import datetime, timedelta, timezone

import pytest

from jobscan.config import Settings
from jobscan.models import FitScore, NormalizedPosting, Opportunity, UserProfile
from jobscan.store import Store

USER = "alice"


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", builtin_sources=(), scoring_workers=2)


@pytest.fixture
def store():
    s = Store("sqlite://")
    s.create_all()
    return s


@pytest.fixture
def profile():
    return UserProfile(
        primary_skills=["Python", "AWS"],
        years_of_experience=5,
        seniority_level="Senior",
        min_fit_score=40,
        max_posting_age_days=7,
    )


@pytest.fixture
def user(store, profile):
    store.upsert_user(USER, profile)
    return USER


def make_posting(n=1, **overrides):
    fields = dict(
        title=f"Senior Python Engineer {n}",
        company=f"Company {n}",
        description="Python and AWS services at scale",
        source_url=f"https://jobs.example.com/{n}",
        source_name="Example Board",
        posted_at=datetime.now(timezone.utc) - timedelta(days=1),
    )
    fields.update(overrides)
    return NormalizedPosting(**fields)


def make_opportunity(n=1, **overrides):
    fields = dict(
        id=n,
        user_id=USER,
        title=f"Job {n}",
        company=f"Company {n}",
        description="",
        source_url=f"https://jobs.example.com/{n}",
        source_name=f"Board {n}",
        fit_score=70,
        created_at=datetime.now(timezone.utc),
    )
    fields.update(overrides)
    return Opportunity(**fields)


def make_score(overall):
    return FitScore(
        overall=overall,
        skill_match=overall,
        experience_match=overall,
        seniority_match=overall,
        title_match=overall,
        industry_match=overall,
        location_match=overall,
    )
