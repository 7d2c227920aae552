"""
Tests for skill extraction, the skill catalog and demand trends.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import USER, make_posting
from jobscan.models import DemandTrend, ExtractedSkill, SkillExtractionResult
from jobscan.reasoning import ReasoningError
from jobscan.skills import SkillService, fallback_extract, normalize_skill_name, parse_extracted_skills

NOW = datetime(2026, 6, 1, 12, tzinfo=timezone.utc)


class FakeClient:
    def __init__(self, result):
        self.result = result

    @property
    def available(self):
        return True

    def complete_json(self, prompt, **kwargs):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture
def service(store):
    return SkillService(store, None)


def _sight(store, name, when, category="Tool", aliases=()):
    store.upsert_skill(
        normalize_skill_name(name),
        ExtractedSkill(name=name, category=category, aliases=list(aliases)),
        job_title="Engineer",
        seen_at=when,
    )


class TestFallbackExtract:
    """Tests for the keyword dictionary scan."""

    def test_short_names_need_whole_tokens(self):
        """Names of two characters or fewer, like "R" and "Go", need token boundaries."""
        names = [s.name for s in fallback_extract("We are going to use Python, Go and C++ on AWS")]
        assert "Python" in names and "Go" in names and "C++" in names and "AWS" in names
        assert "R" not in names

        names = [s.name for s in fallback_extract("Strong regards for good governance")]
        assert "Go" not in names and "R" not in names

    def test_longer_names_match_as_substrings(self):
        """Longer names hit inside compound spellings."""
        names = {s.name for s in fallback_extract("Strong ReactJS and PostgreSQL14 experience, Dockerized services")}
        assert {"React", "PostgreSQL", "Docker"} <= names
        assert "R" not in names and "Go" not in names

    def test_requirements_are_scanned(self):
        """Requirements text counts as well as the description."""
        assert [s.name for s in fallback_extract("Nothing here", "Kubernetes")] == ["Kubernetes"]

    def test_categories(self):
        """Each hit carries its dictionary category."""
        found = {s.name: s.category for s in fallback_extract("PostgreSQL with Django")}
        assert found == {"Django": "Backend Framework", "PostgreSQL": "Database"}


class TestParseExtractedSkills:
    """Tests for validating the service's skill list."""

    def test_valid(self):
        """Fields are mapped and bad entries skipped."""
        skills = parse_extracted_skills({"skills": [
            {"name": "JavaScript", "category": "Programming Language", "aliases": ["JS"],
             "isRequired": False, "yearsRequired": "3"},
            {"name": ""},
            "junk",
            {"name": "Scrum"},
        ]})
        assert [(s.name, s.category) for s in skills] == [
            ("JavaScript", "Programming Language"), ("Scrum", "Tool"),
        ]
        assert skills[0].is_required is False
        assert skills[0].years_required == 3
        assert skills[0].aliases == ["JS"]

    def test_missing_list(self):
        """No skills list is a reasoning error."""
        with pytest.raises(ReasoningError):
            parse_extracted_skills({"items": []})


class TestSkillCatalog:
    """Tests for saving skills and querying the catalog."""

    def test_python_twice_has_frequency_two(self, service, store):
        """The second sighting updates the existing skill."""
        assert service.extract_and_save_skills("We use Python", "Dev") == {"saved_count": 1, "updated_count": 0}
        assert service.extract_and_save_skills("Python again", "Dev") == {"saved_count": 0, "updated_count": 1}

        skills = store.list_skills()
        assert [(s.normalized_name, s.frequency) for s in skills] == [("python", 2)]
        assert store.skill_totals() == (1, 2)

    def test_duplicates_in_one_extraction_count_once(self, service, store):
        """The same skill twice in one result is one sighting."""
        result = SkillExtractionResult(
            skills=[ExtractedSkill("Python", "Programming Language"),
                    ExtractedSkill("python ", "Programming Language")],
            job_title="Dev",
        )
        assert service.save_skills(result) == {"saved_count": 1, "updated_count": 0}
        assert store.list_skills()[0].frequency == 1

    def test_save_leaves_caller_skills_untouched(self, service, store):
        """Aliases are normalized for storage without rewriting the caller's objects."""
        skill = ExtractedSkill("JavaScript", "Programming Language", aliases=["JS", "javascript", " "])
        service.save_skills(SkillExtractionResult(skills=[skill], job_title="Dev"))
        assert skill.aliases == ["JS", "javascript", " "]
        assert store.list_skills()[0].aliases == ["js"]

    def test_service_extraction_with_aliases(self, store):
        """Service results are used and aliases are stored lowercase."""
        client = FakeClient({"skills": [
            {"name": "JavaScript", "category": "Programming Language", "aliases": ["JS", "ECMAScript"]},
        ]})
        SkillService(store, client).extract_and_save_skills("Frontend work", "Dev")

        skill = store.list_skills()[0]
        assert skill.name == "JavaScript"
        assert skill.aliases == ["ecmascript", "js"]

    def test_service_failure_falls_back(self, store):
        """Errors from the service switch to the keyword scan."""
        service = SkillService(store, FakeClient(ReasoningError("down")))
        service.extract_and_save_skills("Terraform on AWS", "Dev")
        assert sorted(s.name for s in store.list_skills()) == ["AWS", "Terraform"]

    def test_search_by_substring_and_alias(self, store):
        """Substrings of the name or an exact alias match."""
        _sight(store, "JavaScript", NOW, aliases=["js"])
        _sight(store, "Java", NOW)

        assert {s.name for s in store.search_skills("java")} == {"JavaScript", "Java"}
        found = store.search_skills("JS")
        assert [s.name for s in found] == ["JavaScript"]
        assert found[0].sighting_count == 1
        assert store.search_skills("java", category="Database") == []

    def test_match_and_recommend(self, service, store):
        """Matched skills include alias hits; recommendations are frequent and unmatched."""
        for _ in range(6):
            _sight(store, "Kubernetes", NOW)
        for _ in range(5):
            _sight(store, "JavaScript", NOW, aliases=["js"])
        _sight(store, "Rare", NOW)

        result = service.match_user_skills(["JS", "Rare", "Unknown"])
        assert [s.name for s in result["matched"]] == ["JavaScript", "Rare"]
        assert [s.name for s in result["recommended"]] == ["Kubernetes"]

    def test_related_skills(self, store):
        """Skills sighted on the same job titles are related."""
        for name in ("Python", "Django", "Rust"):
            store.upsert_skill(normalize_skill_name(name), ExtractedSkill(name, "Tool"),
                               job_title="Rust Dev" if name == "Rust" else "Web Dev")
        python = next(s for s in store.list_skills() if s.name == "Python")
        assert [s.name for s in store.related_skills(python.id)] == ["Django"]

    def test_stats(self, service, store):
        """Totals and the per-category breakdown."""
        _sight(store, "Python", NOW, category="Programming Language")
        _sight(store, "Go", NOW, category="Programming Language")
        _sight(store, "Docker", NOW, category="DevOps")

        stats = service.get_skill_stats()
        assert stats["total_skills"] == 3
        assert stats["total_sightings"] == 3
        assert {"category": "DevOps", "count": 1, "total_frequency": 1} in stats["category_breakdown"]

    def test_build_from_opportunities(self, service, store, user):
        """Stored opportunities seed the catalog."""
        store.create_opportunity(USER, make_posting(1, description="Python and Docker"), 70)
        totals = service.build_from_opportunities()
        assert totals["processed"] == 1
        assert totals["saved_count"] >= 2


class TestTrends:
    """Tests for the 30-day demand trend update."""

    def test_rising_declining_and_unchanged(self, service, store):
        recent = NOW - timedelta(days=5)
        previous = NOW - timedelta(days=45)

        for _ in range(6):
            _sight(store, "NewHot", recent)
        for _ in range(2):
            _sight(store, "Fading", recent)
        for _ in range(4):
            _sight(store, "Fading", previous)
        for _ in range(3):
            _sight(store, "Steady", recent)
        for _ in range(3):
            _sight(store, "Steady", previous)
        _sight(store, "Quiet", recent)

        counts = service.update_trends(now=NOW)
        trends = {s.name: s.demand_trend for s in store.list_skills()}

        assert trends == {
            "NewHot": DemandTrend.RISING,
            "Fading": DemandTrend.DECLINING,
            "Steady": DemandTrend.STABLE,
            "Quiet": DemandTrend.STABLE,
        }
        assert counts == {"rising": 1, "stable": 0, "declining": 1}
        assert [s.name for s in service.get_trending_skills()] == ["NewHot"]

    def test_window_boundary(self, service, store):
        """A sighting exactly 30 days old belongs to the earlier window."""
        for _ in range(6):
            _sight(store, "Edge", NOW - timedelta(days=30))
        service.update_trends(now=NOW)
        # Six sightings in the earlier window, none recent.
        assert store.list_skills()[0].demand_trend == DemandTrend.DECLINING
