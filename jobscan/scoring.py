"""Score a posting against a user profile: reasoning service first, heuristic fallback."""
from __future__ import annotations

import math
import re
from typing import Any, Iterable

from jobscan.log import get_logger
from jobscan.models import FitScore, NormalizedPosting, Skill, UserProfile
from jobscan.reasoning import ReasoningClient, ReasoningError

log = get_logger(__name__)

SCORE_FIELDS: tuple[str, ...] = (
    "overall",
    "skillMatch",
    "experienceMatch",
    "seniorityMatch",
    "titleMatch",
    "industryMatch",
    "locationMatch",
)
LIST_FIELDS: tuple[str, ...] = (
    "matchedSkills",
    "missingSkills",
    "recommendations",
    "strengths",
    "concerns",
)

WEIGHTS: dict[str, float] = {
    "skill": 0.30,
    "experience": 0.20,
    "seniority": 0.10,
    "title": 0.30,
    "industry": 0.05,
    "location": 0.05,
}
NEUTRAL_CONTEXT_SCORE = 70

SENIOR_MARKERS = ("senior", "lead", "principal")
SENIOR_LEVELS = {"senior", "lead", "principal"}
GENERIC_TITLE_WORDS = {
    "engineer", "specialist", "analyst", "manager", "developer",
    "consultant", "senior", "junior", "lead", "principal",
}
# Titles that put a posting in a different line of work altogether.
DIFFERENT_ROLES = (
    "data engineer", "software engineer", "devops", "qa", "legal",
    "sales", "marketing", "hr", "product manager",
)

_PROMPT = """You are an expert career advisor. Analyze how well this candidate matches the job posting.

Candidate profile:
- Primary skills (core expertise): {primary}
- Secondary skills: {secondary}
- Learning / familiar: {learning}
- Years of experience: {years}
- Seniority level: {seniority}
- Recent roles: {roles}
- Preferred job titles (must align): {titles}
- Target industries: {industries}
- Work preference / location constraint: {location_pref}
- Summary: {summary}

Skill demand across recent postings (name: postings seen, trend):
{demand}

Job posting:
Title: {title}
Company: {company}
Location: {location}
Salary: {salary}

Description:
{description}
{requirements}
Return ONLY a JSON object with exactly these keys:
{{
  "overall": 0-100,
  "skillMatch": 0-100,
  "experienceMatch": 0-100,
  "seniorityMatch": 0-100,
  "titleMatch": 0-100,
  "industryMatch": 0-100,
  "locationMatch": 0-100,
  "reasoning": "2-3 sentences explaining the match",
  "matchedSkills": ["profile skills the job asks for"],
  "missingSkills": ["required skills the candidate lacks"],
  "recommendations": ["concrete advice for this application"],
  "strengths": ["key advantages for this role"],
  "concerns": ["gaps or risks"]
}}

Rules:
- A job in a different domain than the preferred titles gets titleMatch <= 25 and overall <= 30.
- locationMatch is 0 when the job location conflicts with the work preference.
- overall weights: skills 30%, experience 20%, seniority 10%, title 30%, industry 5%, location 5%.
"""


class ScoreSchemaError(ReasoningError):
    """The service answered with JSON that does not fit the fit-score schema."""


def _clamp(value: float) -> int:
    return int(max(0, min(100, round(value))))


def _number(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ScoreSchemaError(f"{key} is not a number: {value!r}")
    if math.isnan(value) or math.isinf(value):
        raise ScoreSchemaError(f"{key} is not finite")
    return _clamp(value)


def _strings(data: dict[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ScoreSchemaError(f"{key} is not a list")
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def parse_fit_score(data: dict[str, Any]) -> FitScore:
    """Validate a reasoning-service payload.

    Every score must be a finite number and is clamped to 0..100; list fields
    default to empty. Anything else raises ``ScoreSchemaError``.
    """
    scores = {key: _number(data, key) for key in SCORE_FIELDS}
    lists = {key: _strings(data, key) for key in LIST_FIELDS}
    reasoning = data.get("reasoning")
    if reasoning is None:
        reasoning = "Match analysis completed"
    elif not isinstance(reasoning, str):
        raise ScoreSchemaError("reasoning is not a string")
    return FitScore(
        overall=scores["overall"],
        skill_match=scores["skillMatch"],
        experience_match=scores["experienceMatch"],
        seniority_match=scores["seniorityMatch"],
        title_match=scores["titleMatch"],
        industry_match=scores["industryMatch"],
        location_match=scores["locationMatch"],
        reasoning=reasoning.strip(),
        matched_skills=lists["matchedSkills"],
        missing_skills=lists["missingSkills"],
        recommendations=lists["recommendations"],
        strengths=lists["strengths"],
        concerns=lists["concerns"],
    )


def _format_demand(demand: Iterable[Skill]) -> str:
    lines = [f"- {s.name}: {s.frequency}, {s.demand_trend.value}" for s in demand]
    return "\n".join(lines) or "- no data yet"


def build_prompt(profile: UserProfile, posting: NormalizedPosting, demand: Iterable[Skill] = ()) -> str:
    def joined(items: list[str], default: str) -> str:
        return ", ".join(items) if items else default

    return _PROMPT.format(
        primary=joined(profile.primary_skills, "None"),
        secondary=joined(profile.secondary_skills, "None"),
        learning=joined(profile.learning_skills, "None"),
        years=profile.years_of_experience if profile.years_of_experience is not None else "Unknown",
        seniority=profile.seniority_level or "Unknown",
        roles=joined([w.role for w in profile.work_history[:3]], "Not provided"),
        titles=joined(profile.preferred_titles, "Any"),
        industries=joined(profile.industries, "Any"),
        location_pref=profile.work_location_preference or "Not specified",
        summary=profile.summary or "Not provided",
        demand=_format_demand(demand),
        title=posting.title,
        company=posting.company,
        location=posting.location or "Not specified",
        salary=posting.salary or "Not specified",
        description=posting.description[:4000],
        requirements=f"\nRequirements:\n{posting.requirements}\n" if posting.requirements else "",
    )


def _title_match(profile: UserProfile, job_title: str) -> int:
    if not profile.preferred_titles:
        return 50

    job_title_lower = job_title.lower()
    score = 10
    for preferred in profile.preferred_titles:
        wanted = preferred.lower().strip()
        if not wanted:
            continue
        if wanted in job_title_lower or job_title_lower in wanted:
            return 100

        words = [w for w in wanted.split() if len(w) > 3 and w not in GENERIC_TITLE_WORDS]
        matched = [w for w in words if w in job_title_lower]
        if matched and len(matched) >= len(words) * 0.8:
            score = max(score, 85)
        elif matched and len(matched) >= len(words) * 0.5:
            score = max(score, 50)
        else:
            for role in DIFFERENT_ROLES:
                if role in wanted:
                    continue
                if re.search(rf"\b{re.escape(role)}\b", job_title_lower):
                    score = min(score, 15)
                    break
    return score


def fallback_score(profile: UserProfile, posting: NormalizedPosting) -> FitScore:
    """Deterministic keyword heuristic used whenever the service is unusable."""
    job_text = f"{posting.title} {posting.description} {posting.requirements or ''}".lower()

    all_skills = profile.all_skills
    matched = [s for s in all_skills if s and s.lower() in job_text]
    skill_match = round(len(matched) / len(all_skills) * 100) if all_skills else 0

    years = profile.years_of_experience
    experience_match = min(100, years * 10) if years is not None else 50

    seniority_match = 50
    if profile.seniority_level:
        senior_role = any(marker in job_text for marker in SENIOR_MARKERS)
        senior_candidate = profile.seniority_level.strip().lower() in SENIOR_LEVELS
        seniority_match = 100 if senior_role == senior_candidate else 60

    title_match = _title_match(profile, posting.title)

    overall = round(
        skill_match * WEIGHTS["skill"]
        + experience_match * WEIGHTS["experience"]
        + seniority_match * WEIGHTS["seniority"]
        + title_match * WEIGHTS["title"]
        + NEUTRAL_CONTEXT_SCORE * WEIGHTS["industry"]
        + NEUTRAL_CONTEXT_SCORE * WEIGHTS["location"]
    )

    return FitScore(
        overall=min(100, overall),
        skill_match=skill_match,
        experience_match=experience_match,
        seniority_match=seniority_match,
        title_match=title_match,
        industry_match=NEUTRAL_CONTEXT_SCORE,
        location_match=NEUTRAL_CONTEXT_SCORE,
        reasoning=(
            f"Match based on {len(matched)} matching skills and "
            f"{years or 0} years of experience."
        ),
        matched_skills=matched,
        missing_skills=[],
        recommendations=[
            "Review the job requirements carefully",
            "Highlight your matching skills in your application",
        ],
        strengths=matched[:3],
        concerns=[],
        fallback=True,
    )


class FitScorer:
    def __init__(self, client: ReasoningClient | None = None) -> None:
        self.client = client

    def score(
        self,
        profile: UserProfile,
        posting: NormalizedPosting,
        demand: Iterable[Skill] = (),
    ) -> FitScore:
        if self.client is None or not self.client.available:
            return fallback_score(profile, posting)
        try:
            data = self.client.complete_json(
                build_prompt(profile, posting, demand), max_tokens=2048, temperature=0.3,
            )
            return parse_fit_score(data)
        except ReasoningError as exc:
            log.warning("Scoring '%s' via reasoning service failed (%s), using heuristic",
                        posting.title, exc)
            return fallback_score(profile, posting)
