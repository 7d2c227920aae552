"""Read and write user profiles as YAML files."""
from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml

from jobscan.log import get_logger
from jobscan.models import UserProfile, WorkHistoryEntry
from jobscan.store import Store

log = get_logger(__name__)

# Older profile files used these names.
_ALIASES: dict[str, str] = {
    "skills": "primary_skills",
    "preferred_roles": "preferred_titles",
    "job_titles": "preferred_titles",
    "years_experience": "years_of_experience",
    "level": "seniority_level",
    "work_preference": "work_location_preference",
}


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


def profile_from_dict(data: dict[str, Any]) -> UserProfile:
    """Build a UserProfile from a parsed YAML mapping. Unknown keys are ignored."""
    raw = dict(data.get("profile") or {}) | {k: v for k, v in data.items() if k != "profile"}
    for old, new in _ALIASES.items():
        if old in raw and new not in raw:
            raw[new] = raw.pop(old)

    history = [
        WorkHistoryEntry(
            company=str(h.get("company", "")),
            role=str(h.get("role", "")),
            duration=str(h.get("duration", "")),
            achievements=_str_list(h.get("achievements")),
        )
        for h in raw.get("work_history") or []
        if isinstance(h, dict)
    ]
    years = raw.get("years_of_experience")

    profile = UserProfile(
        primary_skills=_str_list(raw.get("primary_skills")),
        secondary_skills=_str_list(raw.get("secondary_skills")),
        learning_skills=_str_list(raw.get("learning_skills")),
        years_of_experience=int(years) if years not in (None, "") else None,
        seniority_level=raw.get("seniority_level") or None,
        work_history=history,
        preferred_titles=_str_list(raw.get("preferred_titles")),
        industries=_str_list(raw.get("industries")),
        work_location_preference=raw.get("work_location_preference") or None,
        summary=raw.get("summary") or None,
    )
    if raw.get("min_fit_score") is not None:
        profile.min_fit_score = int(raw["min_fit_score"])
    if raw.get("max_posting_age_days") is not None:
        profile.max_posting_age_days = int(raw["max_posting_age_days"])
    return profile


def load_profile_file(path: Path | str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return data


def import_profile(store: Store, user_id: str, path: Path | str) -> UserProfile:
    data = load_profile_file(path)
    profile = profile_from_dict(data)
    if "min_fit_score" not in data and "min_fit_score" not in (data.get("profile") or {}):
        profile.min_fit_score = store.default_min_fit_score
    if "max_posting_age_days" not in data and "max_posting_age_days" not in (data.get("profile") or {}):
        profile.max_posting_age_days = store.default_max_posting_age_days
    auto_scan = data.get("auto_scan")
    store.upsert_user(
        user_id,
        profile,
        email=data.get("email") or None,
        auto_scan=bool(auto_scan) if auto_scan is not None else None,
    )
    log.info("Imported profile for %s from %s (%d primary skills)",
             user_id, path, len(profile.primary_skills))
    return profile


def profile_to_dict(profile: UserProfile) -> dict[str, Any]:
    return asdict(profile)


def write_profile(profile: UserProfile, path: Path | str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    header = (
        "# ============================================================\n"
        "# Job scan profile\n"
        "# Edit freely, then: jobscan profile import <file> --user <id>\n"
        "# ============================================================\n\n"
    )
    yaml_str = yaml.dump(profile_to_dict(profile), default_flow_style=False,
                         sort_keys=False, allow_unicode=True)
    path.write_text(header + yaml_str, encoding="utf-8")
    log.info("Profile written → %s", path)
    return path
