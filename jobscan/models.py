"""Data models shared across the scan pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PatternType(str, Enum):
    TITLE_KEYWORD = "TITLE_KEYWORD"
    COMPANY = "COMPANY"
    SOURCE = "SOURCE"
    LOCATION = "LOCATION"
    LOW_SCORE_BAND = "LOW_SCORE_BAND"


class DemandTrend(str, Enum):
    RISING = "rising"
    STABLE = "stable"
    DECLINING = "declining"


class SourceType(str, Enum):
    RSS = "rss"
    API = "api"


@dataclass
class NormalizedPosting:
    title: str
    company: str
    description: str
    source_url: str
    source_name: str = "Unknown"
    requirements: str | None = None
    location: str | None = None
    salary: str | None = None
    posted_at: datetime | None = None

    def text(self) -> str:
        return f"{self.title} {self.description}"


@dataclass
class WorkHistoryEntry:
    company: str
    role: str
    duration: str = ""
    achievements: list[str] = field(default_factory=list)


@dataclass
class UserProfile:
    primary_skills: list[str] = field(default_factory=list)
    secondary_skills: list[str] = field(default_factory=list)
    learning_skills: list[str] = field(default_factory=list)
    years_of_experience: int | None = None
    seniority_level: str | None = None
    work_history: list[WorkHistoryEntry] = field(default_factory=list)
    preferred_titles: list[str] = field(default_factory=list)
    industries: list[str] = field(default_factory=list)
    work_location_preference: str | None = None
    summary: str | None = None
    min_fit_score: int = 40
    max_posting_age_days: int = 7

    @property
    def all_skills(self) -> list[str]:
        return [*self.primary_skills, *self.secondary_skills, *self.learning_skills]


@dataclass
class FitScore:
    overall: int
    skill_match: int
    experience_match: int
    seniority_match: int
    title_match: int
    industry_match: int
    location_match: int
    reasoning: str = ""
    matched_skills: list[str] = field(default_factory=list)
    missing_skills: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    strengths: list[str] = field(default_factory=list)
    concerns: list[str] = field(default_factory=list)
    fallback: bool = False


@dataclass
class Opportunity:
    id: int
    user_id: str
    title: str
    company: str
    description: str
    source_url: str
    source_name: str
    fit_score: int
    created_at: datetime
    requirements: str | None = None
    location: str | None = None
    salary: str | None = None
    posted_at: datetime | None = None
    archived: bool = False
    feedback: str | None = None


@dataclass
class SourceDescriptor:
    """A per-user source row: either a data-driven feed or a built-in toggle."""
    id: int
    user_id: str
    name: str
    source_type: str
    feed_url: str | None = None
    api_endpoint: str | None = None
    api_key: str | None = None
    enabled: bool = True
    is_builtin: bool = False
    builtin_key: str | None = None


@dataclass
class RejectionPattern:
    user_id: str
    pattern_type: PatternType
    pattern_value: str
    frequency: int


@dataclass
class PenaltyContribution:
    pattern: RejectionPattern
    weight: float
    points: float


@dataclass
class ExtractedSkill:
    name: str
    category: str
    subcategory: str | None = None
    is_required: bool = True
    proficiency_level: str | None = None
    years_required: int | None = None
    aliases: list[str] = field(default_factory=list)


@dataclass
class SkillExtractionResult:
    skills: list[ExtractedSkill]
    job_title: str
    company: str | None = None
    source_url: str | None = None


@dataclass
class Skill:
    id: int
    name: str
    normalized_name: str
    category: str
    frequency: int
    demand_trend: DemandTrend
    last_seen_at: datetime
    subcategory: str | None = None
    aliases: list[str] = field(default_factory=list)
    sighting_count: int = 0


@dataclass
class ScanResult:
    added_count: int
    fetched_count: int = 0
    scored_count: int = 0
    skipped_count: int = 0
    cancelled: bool = False
    opportunities: list[Opportunity] = field(default_factory=list)
