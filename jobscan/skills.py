"""Skill extraction from posting text and the alias-aware skill catalog built from it."""
from __future__ import annotations

import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from jobscan.log import get_logger
from jobscan.models import DemandTrend, ExtractedSkill, Skill, SkillExtractionResult
from jobscan.reasoning import ReasoningClient, ReasoningError
from jobscan.store import Store

log = get_logger(__name__)

CATEGORIES: tuple[str, ...] = (
    "Programming Language",
    "Frontend Framework",
    "Backend Framework",
    "Database",
    "Cloud Platform",
    "DevOps",
    "Security",
    "Data & ML",
    "Soft Skill",
    "Tool",
    "Methodology",
    "Domain Knowledge",
)

# Keyword dictionary for extraction without the reasoning service.
SKILL_CATEGORIES: dict[str, list[str]] = {
    "Programming Language": [
        "JavaScript", "TypeScript", "Python", "Java", "Go", "Rust", "C++", "C#",
        "Ruby", "PHP", "Swift", "Kotlin", "Scala", "R", "MATLAB",
    ],
    "Frontend Framework": [
        "React", "Vue", "Angular", "Svelte", "Next.js", "Nuxt", "Remix", "Astro", "SolidJS",
    ],
    "Backend Framework": [
        "Node.js", "Express", "NestJS", "Django", "Flask", "FastAPI", "Spring Boot",
        "Rails", "Laravel", "ASP.NET",
    ],
    "Database": [
        "PostgreSQL", "MySQL", "MongoDB", "Redis", "Elasticsearch", "DynamoDB",
        "Cassandra", "SQLite", "Oracle", "SQL Server",
    ],
    "Cloud Platform": [
        "AWS", "Azure", "GCP", "Google Cloud", "DigitalOcean", "Heroku", "Vercel", "Cloudflare",
    ],
    "DevOps": [
        "Docker", "Kubernetes", "Terraform", "Ansible", "Jenkins", "GitLab CI",
        "GitHub Actions", "CircleCI", "ArgoCD",
    ],
    "Security": [
        "OWASP", "Penetration Testing", "SIEM", "SOC", "IAM", "Zero Trust",
        "Encryption", "Compliance", "DLP", "SASE",
    ],
    "Data & ML": [
        "Machine Learning", "Deep Learning", "TensorFlow", "PyTorch", "Pandas",
        "NumPy", "Spark", "Hadoop", "Data Engineering",
    ],
    "Soft Skill": [
        "Communication", "Leadership", "Problem Solving", "Teamwork", "Time Management",
        "Project Management",
    ],
    "Tool": ["Git", "Jira", "Confluence", "Splunk", "Wireshark", "Burp Suite"],
    "Methodology": ["Agile", "Scrum", "Kanban", "CI/CD", "DevSecOps", "TDD"],
    "Domain Knowledge": ["FinTech", "Healthcare", "E-commerce", "GDPR", "ISO 27001", "PCI DSS"],
}

TREND_WINDOW_DAYS = 30
RISING_RATIO = 1.2
DECLINING_RATIO = 0.8
NEW_SKILL_RISING_COUNT = 5
RECOMMEND_MIN_FREQUENCY = 5

_PROMPT = """You are an expert at analyzing job descriptions and extracting technical and soft skills.

Job title: {title}
Company: {company}

Job description:
{description}
{requirements}
Extract every skill mentioned or clearly implied. Return ONLY a JSON object:
{{
  "skills": [
    {{
      "name": "Skill name in its usual capitalisation, e.g. 'JavaScript'",
      "category": "one of: {categories}",
      "subcategory": "optional, more specific",
      "isRequired": true,
      "proficiencyLevel": "Beginner, Intermediate, Advanced or Expert if stated, else null",
      "yearsRequired": null,
      "aliases": ["other names, e.g. 'JS' for JavaScript"]
    }}
  ]
}}

Normalise names ("k8s" -> "Kubernetes"), include soft skills, methodologies and domain
knowledge, never list job titles as skills, and do not repeat a skill.
"""


def normalize_skill_name(name: str) -> str:
    return (name or "").strip().lower()


def _keyword_pattern(skill: str) -> re.Pattern:
    needle = re.escape(skill.lower())
    if len(skill) <= 2:
        # "R" and "Go" would hit almost any text as bare substrings.
        return re.compile(rf"(?<![a-z0-9]){needle}(?![a-z0-9])")
    return re.compile(needle)


_KEYWORDS: list[tuple[str, str, re.Pattern]] = [
    (category, skill, _keyword_pattern(skill))
    for category, skills in SKILL_CATEGORIES.items()
    for skill in skills
]


def fallback_extract(description: str, requirements: str | None = None) -> list[ExtractedSkill]:
    """Dictionary scan for case-insensitive substring hits; names of two characters or fewer need whole tokens."""
    text = f"{description or ''} {requirements or ''}".lower()
    found: list[ExtractedSkill] = []
    seen: set[str] = set()
    for category, skill, pattern in _KEYWORDS:
        key = skill.lower()
        if key not in seen and pattern.search(text):
            seen.add(key)
            found.append(ExtractedSkill(name=skill, category=category, is_required=True))
    return found


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_extracted_skills(data: dict[str, Any]) -> list[ExtractedSkill]:
    items = data.get("skills")
    if not isinstance(items, list):
        raise ReasoningError("response has no 'skills' list")
    skills: list[ExtractedSkill] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        category = item.get("category")
        if not isinstance(category, str) or not category.strip():
            category = "Tool"
        aliases = item.get("aliases") or []
        if not isinstance(aliases, list):
            aliases = []
        skills.append(
            ExtractedSkill(
                name=name.strip(),
                category=category.strip(),
                subcategory=item.get("subcategory") or None,
                is_required=item.get("isRequired") is not False,
                proficiency_level=item.get("proficiencyLevel") or None,
                years_required=_optional_int(item.get("yearsRequired")),
                aliases=[str(a).strip() for a in aliases if str(a).strip()],
            )
        )
    return skills


class SkillService:
    def __init__(self, store: Store, client: ReasoningClient | None = None) -> None:
        self.store = store
        self.client = client

    # ── extraction ───────────────────────────────────────────────────────

    def extract_skills(
        self,
        description: str,
        title: str,
        company: str | None = None,
        requirements: str | None = None,
    ) -> SkillExtractionResult:
        skills: list[ExtractedSkill] | None = None
        if self.client is not None and self.client.available:
            prompt = _PROMPT.format(
                title=title,
                company=company or "Not specified",
                description=(description or "")[:6000],
                requirements=f"\nRequirements:\n{requirements}\n" if requirements else "",
                categories=", ".join(CATEGORIES),
            )
            try:
                skills = parse_extracted_skills(
                    self.client.complete_json(prompt, max_tokens=4096, temperature=0.2)
                )
            except ReasoningError as exc:
                log.warning("Skill extraction for '%s' failed (%s), using keyword scan", title, exc)
        if skills is None:
            skills = fallback_extract(description, requirements)
        return SkillExtractionResult(skills=skills, job_title=title, company=company)

    def save_skills(self, result: SkillExtractionResult, source_url: str | None = None) -> dict[str, int]:
        saved = updated = 0
        seen: set[str] = set()
        for skill in result.skills:
            key = normalize_skill_name(skill.name)
            if not key or key in seen:
                continue
            seen.add(key)
            aliases = sorted({normalize_skill_name(a) for a in skill.aliases} - {"", key})
            created = self.store.upsert_skill(
                key,
                replace(skill, aliases=aliases),
                job_title=result.job_title,
                company=result.company,
                source_url=source_url or result.source_url,
            )
            if created:
                saved += 1
            else:
                updated += 1
        log.info("Saved skills for '%s': %d new, %d updated", result.job_title, saved, updated)
        return {"saved_count": saved, "updated_count": updated}

    def extract_and_save_skills(
        self,
        text: str,
        title: str,
        company: str | None = None,
        *,
        requirements: str | None = None,
        source_url: str | None = None,
    ) -> dict[str, int]:
        result = self.extract_skills(text, title, company, requirements)
        return self.save_skills(result, source_url=source_url)

    def build_from_opportunities(self, limit: int = 100) -> dict[str, int]:
        """Seed the catalog from stored opportunities across all users."""
        totals = {"processed": 0, "saved_count": 0, "updated_count": 0}
        for opp in self.store.list_opportunities(None, limit=limit):
            counts = self.extract_and_save_skills(
                opp.description, opp.title, opp.company,
                requirements=opp.requirements, source_url=opp.source_url,
            )
            totals["processed"] += 1
            totals["saved_count"] += counts["saved_count"]
            totals["updated_count"] += counts["updated_count"]
        return totals

    # ── trends ───────────────────────────────────────────────────────────

    def update_trends(self, now: datetime | None = None) -> dict[str, int]:
        now = now or datetime.now(timezone.utc)
        window = timedelta(days=TREND_WINDOW_DAYS)
        recent = self.store.sighting_counts_between(now - window, now)
        previous = self.store.sighting_counts_between(now - 2 * window, now - window)

        changes: dict[int, DemandTrend] = {}
        for skill in self.store.list_skills():
            r, p = recent.get(skill.id, 0), previous.get(skill.id, 0)
            if p > 0:
                ratio = r / p
                if ratio > RISING_RATIO:
                    trend = DemandTrend.RISING
                elif ratio < DECLINING_RATIO:
                    trend = DemandTrend.DECLINING
                else:
                    trend = DemandTrend.STABLE
            elif r > NEW_SKILL_RISING_COUNT:
                trend = DemandTrend.RISING
            else:
                continue
            if trend != skill.demand_trend:
                changes[skill.id] = trend

        self.store.set_trends(changes)
        log.info("Updated demand trend for %d skills", len(changes))
        return {t.value: sum(1 for v in changes.values() if v is t) for t in DemandTrend}

    # ── queries ──────────────────────────────────────────────────────────

    def demand_snapshot(self, limit: int = 15) -> list[Skill]:
        return self.store.top_skills(limit=limit)

    def match_user_skills(self, user_skills: list[str]) -> dict[str, list[Skill]]:
        wanted = {normalize_skill_name(s) for s in user_skills} - {""}
        matched = [
            s for s in self.store.list_skills()
            if s.normalized_name in wanted or wanted.intersection(a.lower() for a in s.aliases)
        ]
        matched.sort(key=lambda s: (-s.frequency, s.id))
        recommended = self.store.top_skills(
            limit=10,
            min_frequency=RECOMMEND_MIN_FREQUENCY,
            exclude_ids={s.id for s in matched},
        )
        return {"matched": matched, "recommended": recommended}

    def get_skill_stats(self) -> dict:
        total_skills, total_sightings = self.store.skill_totals()
        return {
            "total_skills": total_skills,
            "total_sightings": total_sightings,
            "top_skills": self.store.top_skills(limit=20),
            "category_breakdown": self.store.category_breakdown(),
            "recent_skills": self.store.top_skills(limit=10, order_by_recent=True),
        }

    def search_skills(self, query: str, category: str | None = None, limit: int = 50) -> list[Skill]:
        return self.store.search_skills(query, category, limit)

    def get_related_skills(self, skill_id: int, limit: int = 10) -> list[Skill]:
        return self.store.related_skills(skill_id, limit)

    def get_trending_skills(self, limit: int = 20) -> list[Skill]:
        return self.store.top_skills(limit=limit, trend=DemandTrend.RISING)
