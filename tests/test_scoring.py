"""
Unit tests for fit scoring: reasoning-service payload validation and the
deterministic keyword fallback.
"""

import math

import pytest

from conftest import make_posting
from jobscan.config import Settings
from jobscan.models import UserProfile
from jobscan.reasoning import ReasoningClient, ReasoningError, extract_json_object
from jobscan.scoring import FitScorer, ScoreSchemaError, build_prompt, fallback_score, parse_fit_score


def _payload(**overrides):
    data = {
        "overall": 80, "skillMatch": 90, "experienceMatch": 70, "seniorityMatch": 60,
        "titleMatch": 85, "industryMatch": 50, "locationMatch": 100,
        "reasoning": "Strong Python background.",
        "matchedSkills": ["Python"], "missingSkills": [], "recommendations": ["Apply"],
        "strengths": ["Cloud"], "concerns": [],
    }
    data.update(overrides)
    return data


class FakeClient:
    """Stands in for ReasoningClient; returns a canned payload or raises."""

    def __init__(self, result):
        self.result = result
        self.calls = 0

    @property
    def available(self):
        return True

    def complete_json(self, prompt, **kwargs):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class TestExtractJsonObject:
    """Tests for pulling the JSON object out of a model reply."""

    def test_object_wrapped_in_prose(self):
        """Prose, fences and stray braces before the object are skipped."""
        text = 'Sure {not json} here you go:\n```json\n{"a": {"b": "}"}, "c": [1]}\n```'
        assert extract_json_object(text) == {"a": {"b": "}"}, "c": [1]}

    def test_no_object(self):
        """Replies without an object are an error."""
        with pytest.raises(ReasoningError):
            extract_json_object("I cannot help with that.")
        with pytest.raises(ReasoningError):
            extract_json_object("")

    def test_client_without_key_is_unavailable(self):
        """No credential means no call is attempted."""
        client = ReasoningClient(Settings(reasoning_api_key=""))
        assert client.available is False
        with pytest.raises(ReasoningError):
            client.complete("hello")


class TestParseFitScore:
    """Tests for the strict fit-score schema."""

    def test_valid_payload(self):
        """All fields map onto FitScore."""
        score = parse_fit_score(_payload())
        assert score.overall == 80
        assert score.title_match == 85
        assert score.matched_skills == ["Python"]
        assert score.fallback is False

    def test_out_of_range_is_clamped(self):
        """Scores outside 0..100 are clamped, not rejected."""
        score = parse_fit_score(_payload(overall=150, skillMatch=-5, titleMatch=72.6))
        assert (score.overall, score.skill_match, score.title_match) == (100, 0, 73)

    def test_lists_and_reasoning_default(self):
        """Missing lists are empty and missing reasoning gets a stock line."""
        data = _payload()
        for key in ("matchedSkills", "missingSkills", "recommendations", "strengths", "concerns", "reasoning"):
            del data[key]
        score = parse_fit_score(data)
        assert score.matched_skills == [] and score.concerns == []
        assert score.reasoning == "Match analysis completed"

    @pytest.mark.parametrize("bad", [
        {"overall": "80"},
        {"overall": None},
        {"overall": True},
        {"overall": math.nan},
        {"matchedSkills": "Python"},
        {"reasoning": 42},
    ])
    def test_schema_violations(self, bad):
        """Wrong types are schema errors."""
        with pytest.raises(ScoreSchemaError):
            parse_fit_score(_payload(**bad))

    def test_missing_score_field(self):
        """Every score field is required."""
        data = _payload()
        del data["locationMatch"]
        with pytest.raises(ScoreSchemaError):
            parse_fit_score(data)


class TestFitScorer:
    """Tests for choosing between the service and the fallback."""

    def test_uses_service_result(self, profile):
        """A valid reply is used as-is."""
        client = FakeClient(_payload(overall=91))
        score = FitScorer(client).score(profile, make_posting())
        assert score.overall == 91
        assert client.calls == 1

    @pytest.mark.parametrize("result", [
        ReasoningError("timeout"),
        _payload(overall="high"),
        {"unexpected": "shape"},
    ])
    def test_falls_back_on_failure(self, profile, result):
        """Service errors and schema violations both fall back to the heuristic."""
        posting = make_posting()
        score = FitScorer(FakeClient(result)).score(profile, posting)
        assert score.fallback is True
        assert score == fallback_score(profile, posting)

    def test_no_client(self, profile):
        """Without a client the heuristic is used directly."""
        assert FitScorer(None).score(profile, make_posting()).fallback is True

    def test_prompt_mentions_demand(self, profile):
        """The prompt carries the profile, the posting and the demand section."""
        prompt = build_prompt(profile, make_posting(title="Platform Engineer"))
        assert "Python, AWS" in prompt
        assert "Platform Engineer" in prompt
        assert "no data yet" in prompt


class TestFallbackScore:
    """Tests for the deterministic heuristic."""

    def test_python_aws_senior(self):
        """Both skills present, no preferred titles: full skill match and neutral title."""
        profile = UserProfile(primary_skills=["Python", "AWS"])
        posting = make_posting(title="Senior Python Engineer", description="We use AWS and Python daily")
        score = fallback_score(profile, posting)
        assert score.skill_match == 100
        assert score.title_match >= 50
        assert score.matched_skills == ["Python", "AWS"]

    def test_deterministic(self, profile):
        """Same inputs, same score."""
        posting = make_posting()
        assert fallback_score(profile, posting) == fallback_score(profile, posting)

    def test_components(self):
        """Experience, seniority and the weighted overall."""
        profile = UserProfile(
            primary_skills=["Python", "Go", "Rust", "Kotlin"],
            years_of_experience=3,
            seniority_level="Junior",
        )
        posting = make_posting(title="Lead Python Developer", description="Python and Go")
        score = fallback_score(profile, posting)
        assert score.skill_match == 50
        assert score.experience_match == 30
        assert score.seniority_match == 60
        assert score.title_match == 50
        assert score.industry_match == score.location_match == 70
        # 50*.3 + 30*.2 + 60*.1 + 50*.3 + 70*.05 + 70*.05
        assert score.overall == 49

    def test_unknown_experience_is_neutral(self):
        """Missing years of experience scores 50, zero years scores 0."""
        posting = make_posting()
        assert fallback_score(UserProfile(), posting).experience_match == 50
        assert fallback_score(UserProfile(years_of_experience=0), posting).experience_match == 0
        assert fallback_score(UserProfile(years_of_experience=15), posting).experience_match == 100

    def test_no_skills(self):
        """An empty profile scores zero on skills."""
        assert fallback_score(UserProfile(), make_posting()).skill_match == 0

    @pytest.mark.parametrize("job_title,expected", [
        ("Senior Cloud Security Engineer", 100),
        ("Security Engineer, Cloud", 85),
        ("Cloud Platform Engineer", 50),
        ("Sales Manager", 10),
    ])
    def test_title_match(self, job_title, expected):
        """Containment, word overlap and unrelated titles."""
        profile = UserProfile(preferred_titles=["Cloud Security Engineer"])
        assert fallback_score(profile, make_posting(title=job_title)).title_match == expected

    def test_wrong_role_does_not_match_inside_words(self):
        """'hr' inside 'threat' is not the HR role."""
        profile = UserProfile(preferred_titles=["Threat Intelligence", "Security Engineer"])
        score = fallback_score(profile, make_posting(title="Threat Hunter"))
        assert score.title_match == 50
