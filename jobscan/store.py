"""Relational store used by the scan pipeline (SQLAlchemy, SQLite or PostgreSQL).

Every public method runs in its own short transaction. Failures to reach or
query the database surface as ``StoreError``; a unique-constraint hit on an
opportunity insert is not an error and is reported as ``None``.
"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import and_, create_engine, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from jobscan.log import get_logger
from jobscan.models import (
    DemandTrend,
    ExtractedSkill,
    NormalizedPosting,
    Opportunity,
    PatternType,
    RejectionPattern,
    Skill,
    SourceDescriptor,
    UserProfile,
    WorkHistoryEntry,
)
from jobscan.schema import (
    AlertRow,
    Base,
    BlockedJobRow,
    OpportunityRow,
    RejectionPatternRow,
    SkillRow,
    SkillSightingRow,
    UserJobSourceRow,
    UserRow,
    utcnow,
)

log = get_logger(__name__)


class StoreError(RuntimeError):
    """The persistent store could not be reached or rejected a query."""


class NotFoundError(LookupError):
    """A user, opportunity or source id does not exist for the caller."""


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands datetimes back naive; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_profile(row: UserRow, default_min_score: int, default_max_age: int) -> UserProfile:
    history = [
        WorkHistoryEntry(
            company=h.get("company", ""),
            role=h.get("role", ""),
            duration=h.get("duration", ""),
            achievements=list(h.get("achievements") or []),
        )
        for h in (row.work_history or [])
        if isinstance(h, dict)
    ]
    return UserProfile(
        primary_skills=list(row.primary_skills or []),
        secondary_skills=list(row.secondary_skills or []),
        learning_skills=list(row.learning_skills or []),
        years_of_experience=row.years_of_experience,
        seniority_level=row.seniority_level,
        work_history=history,
        preferred_titles=list(row.preferred_titles or []),
        industries=list(row.industries or []),
        work_location_preference=row.work_location_preference,
        summary=row.summary,
        min_fit_score=row.min_fit_score if row.min_fit_score is not None else default_min_score,
        max_posting_age_days=(
            row.max_posting_age_days if row.max_posting_age_days is not None else default_max_age
        ),
    )


def _to_opportunity(row: OpportunityRow) -> Opportunity:
    return Opportunity(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        company=row.company,
        description=row.description,
        source_url=row.source_url,
        source_name=row.source_name,
        fit_score=row.fit_score,
        created_at=as_utc(row.created_at),
        requirements=row.requirements,
        location=row.location,
        salary=row.salary,
        posted_at=as_utc(row.posted_at),
        archived=row.archived,
        feedback=row.feedback,
    )


def _to_descriptor(row: UserJobSourceRow) -> SourceDescriptor:
    return SourceDescriptor(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        source_type=row.source_type,
        feed_url=row.feed_url,
        api_endpoint=row.api_endpoint,
        api_key=row.api_key,
        enabled=row.enabled,
        is_builtin=row.is_builtin,
        builtin_key=row.builtin_key,
    )


def _to_skill(row: SkillRow, sighting_count: int = 0) -> Skill:
    return Skill(
        id=row.id,
        name=row.name,
        normalized_name=row.normalized_name,
        category=row.category,
        subcategory=row.subcategory,
        aliases=list(row.aliases or []),
        frequency=row.frequency,
        demand_trend=DemandTrend(row.demand_trend),
        last_seen_at=as_utc(row.last_seen_at),
        sighting_count=sighting_count,
    )


class Store:
    def __init__(
        self,
        database_url: str,
        *,
        default_min_fit_score: int = 40,
        default_max_posting_age_days: int = 7,
        echo: bool = False,
    ) -> None:
        kwargs: dict = {"echo": echo, "future": True}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **kwargs)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)
        self.default_min_fit_score = default_min_fit_score
        self.default_max_posting_age_days = default_max_posting_age_days

    @classmethod
    def from_settings(cls, settings) -> "Store":
        return cls(
            settings.database_url,
            default_min_fit_score=settings.default_min_fit_score,
            default_max_posting_age_days=settings.default_max_posting_age_days,
        )

    def create_all(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"cannot create schema: {exc}") from exc

    @contextmanager
    def _tx(self) -> Iterator[Session]:
        try:
            with self._sessions() as session, session.begin():
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def _insert(self, table):
        if self.engine.dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert
        return insert(table)

    # ── users ────────────────────────────────────────────────────────────

    def upsert_user(
        self,
        user_id: str,
        profile: UserProfile,
        *,
        email: str | None = None,
        auto_scan: bool | None = None,
    ) -> None:
        with self._tx() as s:
            row = s.get(UserRow, user_id)
            if row is None:
                row = UserRow(id=user_id)
                s.add(row)
            row.primary_skills = list(profile.primary_skills)
            row.secondary_skills = list(profile.secondary_skills)
            row.learning_skills = list(profile.learning_skills)
            row.years_of_experience = profile.years_of_experience
            row.seniority_level = profile.seniority_level
            row.work_history = [
                {"company": w.company, "role": w.role, "duration": w.duration,
                 "achievements": list(w.achievements)}
                for w in profile.work_history
            ]
            row.preferred_titles = list(profile.preferred_titles)
            row.industries = list(profile.industries)
            row.work_location_preference = profile.work_location_preference
            row.summary = profile.summary
            row.min_fit_score = profile.min_fit_score
            row.max_posting_age_days = profile.max_posting_age_days
            if email is not None:
                row.email = email
            if auto_scan is not None:
                row.auto_scan = auto_scan

    def get_user_profile(self, user_id: str) -> UserProfile:
        with self._tx() as s:
            row = s.get(UserRow, user_id)
            if row is None:
                raise NotFoundError(f"user {user_id!r} not found")
            return _to_profile(row, self.default_min_fit_score, self.default_max_posting_age_days)

    def get_user_email(self, user_id: str) -> str | None:
        with self._tx() as s:
            row = s.get(UserRow, user_id)
            return row.email if row else None

    def list_users(self, *, auto_scan_only: bool = False) -> list[str]:
        with self._tx() as s:
            q = select(UserRow.id).order_by(UserRow.id)
            if auto_scan_only:
                q = q.where(UserRow.auto_scan.is_(True))
            return list(s.scalars(q))

    # ── sources ──────────────────────────────────────────────────────────

    def list_sources(self, user_id: str, *, enabled_only: bool = False) -> list[SourceDescriptor]:
        with self._tx() as s:
            q = select(UserJobSourceRow).where(UserJobSourceRow.user_id == user_id)
            if enabled_only:
                q = q.where(UserJobSourceRow.enabled.is_(True))
            q = q.order_by(UserJobSourceRow.id)
            return [_to_descriptor(r) for r in s.scalars(q)]

    def add_source(
        self,
        user_id: str,
        name: str,
        source_type: str,
        *,
        feed_url: str | None = None,
        api_endpoint: str | None = None,
        api_key: str | None = None,
        enabled: bool = True,
    ) -> SourceDescriptor:
        with self._tx() as s:
            row = UserJobSourceRow(
                user_id=user_id,
                name=name,
                source_type=source_type,
                feed_url=feed_url,
                api_endpoint=api_endpoint,
                api_key=api_key,
                enabled=enabled,
                is_builtin=False,
            )
            s.add(row)
            s.flush()
            return _to_descriptor(row)

    def set_builtin_enabled(self, user_id: str, builtin_key: str, name: str, enabled: bool) -> None:
        with self._tx() as s:
            row = s.scalars(
                select(UserJobSourceRow).where(
                    UserJobSourceRow.user_id == user_id,
                    UserJobSourceRow.builtin_key == builtin_key,
                )
            ).first()
            if row is None:
                s.add(UserJobSourceRow(
                    user_id=user_id, name=name, source_type="builtin",
                    is_builtin=True, builtin_key=builtin_key, enabled=enabled,
                ))
            else:
                row.enabled = enabled

    def set_source_enabled(self, user_id: str, source_id: int, enabled: bool) -> None:
        with self._tx() as s:
            row = s.get(UserJobSourceRow, source_id)
            if row is None or row.user_id != user_id:
                raise NotFoundError(f"source {source_id} not found")
            row.enabled = enabled

    def delete_source(self, user_id: str, source_id: int) -> None:
        with self._tx() as s:
            row = s.get(UserJobSourceRow, source_id)
            if row is None or row.user_id != user_id:
                raise NotFoundError(f"source {source_id} not found")
            s.delete(row)

    # ── blocked jobs / opportunities ─────────────────────────────────────

    def is_blocked(self, user_id: str, source_url: str) -> bool:
        with self._tx() as s:
            found = s.scalar(
                select(BlockedJobRow.id).where(
                    BlockedJobRow.user_id == user_id,
                    BlockedJobRow.source_url == source_url,
                ).limit(1)
            )
            return found is not None

    def block_job(self, user_id: str, source_url: str) -> None:
        stmt = self._insert(BlockedJobRow).values(
            user_id=user_id, source_url=source_url, created_at=utcnow(),
        ).on_conflict_do_nothing(index_elements=["user_id", "source_url"])
        with self._tx() as s:
            s.execute(stmt)

    def find_existing_opportunity(
        self, user_id: str, source_url: str, title: str, company: str,
    ) -> Opportunity | None:
        """Any stored row (archived included) with the same URL or title+company."""
        with self._tx() as s:
            row = s.scalars(
                select(OpportunityRow).where(
                    OpportunityRow.user_id == user_id,
                    or_(
                        OpportunityRow.source_url == source_url,
                        and_(OpportunityRow.title == title, OpportunityRow.company == company),
                    ),
                ).limit(1)
            ).first()
            return _to_opportunity(row) if row else None

    def create_opportunity(
        self, user_id: str, posting: NormalizedPosting, fit_score: int,
    ) -> Opportunity | None:
        try:
            with self._tx() as s:
                row = OpportunityRow(
                    user_id=user_id,
                    title=posting.title,
                    company=posting.company,
                    description=posting.description,
                    requirements=posting.requirements,
                    location=posting.location,
                    salary=posting.salary,
                    source_url=posting.source_url,
                    source_name=posting.source_name,
                    posted_at=posting.posted_at,
                    fit_score=fit_score,
                    created_at=utcnow(),
                )
                s.add(row)
                s.flush()
                return _to_opportunity(row)
        except IntegrityError:
            log.debug("Opportunity already stored: %s", posting.source_url)
            return None

    def get_opportunity(self, user_id: str, opportunity_id: int) -> Opportunity:
        with self._tx() as s:
            row = s.get(OpportunityRow, opportunity_id)
            if row is None or row.user_id != user_id:
                raise NotFoundError(f"opportunity {opportunity_id} not found")
            return _to_opportunity(row)

    def list_opportunities(
        self, user_id: str | None, *, include_archived: bool = False, limit: int | None = None,
    ) -> list[Opportunity]:
        with self._tx() as s:
            q = select(OpportunityRow)
            if user_id is not None:
                q = q.where(OpportunityRow.user_id == user_id)
            if not include_archived:
                q = q.where(OpportunityRow.archived.is_(False))
            q = q.order_by(OpportunityRow.created_at.desc(), OpportunityRow.id.desc())
            if limit:
                q = q.limit(limit)
            return [_to_opportunity(r) for r in s.scalars(q)]

    def archive_opportunity(self, user_id: str, opportunity_id: int) -> None:
        with self._tx() as s:
            row = s.get(OpportunityRow, opportunity_id)
            if row is None or row.user_id != user_id:
                raise NotFoundError(f"opportunity {opportunity_id} not found")
            row.archived = True

    def delete_opportunity(self, user_id: str, opportunity_id: int) -> None:
        with self._tx() as s:
            row = s.get(OpportunityRow, opportunity_id)
            if row is None or row.user_id != user_id:
                raise NotFoundError(f"opportunity {opportunity_id} not found")
            s.execute(
                update(AlertRow)
                .where(AlertRow.opportunity_id == opportunity_id)
                .values(opportunity_id=None)
            )
            s.delete(row)

    def set_feedback(self, user_id: str, opportunity_id: int, feedback: str) -> None:
        with self._tx() as s:
            row = s.get(OpportunityRow, opportunity_id)
            if row is None or row.user_id != user_id:
                raise NotFoundError(f"opportunity {opportunity_id} not found")
            row.feedback = feedback

    def archive_older_than(self, cutoff: datetime) -> int:
        with self._tx() as s:
            result = s.execute(
                update(OpportunityRow)
                .where(OpportunityRow.archived.is_(False), OpportunityRow.created_at < cutoff)
                .values(archived=True)
            )
            return result.rowcount or 0

    # ── rejection patterns ───────────────────────────────────────────────

    def increment_pattern(self, user_id: str, pattern_type: PatternType, pattern_value: str) -> None:
        now = utcnow()
        stmt = self._insert(RejectionPatternRow).values(
            user_id=user_id,
            pattern_type=pattern_type.value,
            pattern_value=pattern_value,
            frequency=1,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "pattern_type", "pattern_value"],
            set_={"frequency": RejectionPatternRow.frequency + 1, "updated_at": now},
        )
        with self._tx() as s:
            s.execute(stmt)

    def list_patterns(
        self, user_id: str, *, min_frequency: int = 1, limit: int | None = None,
    ) -> list[RejectionPattern]:
        with self._tx() as s:
            q = (
                select(RejectionPatternRow)
                .where(
                    RejectionPatternRow.user_id == user_id,
                    RejectionPatternRow.frequency >= min_frequency,
                )
                .order_by(RejectionPatternRow.frequency.desc(), RejectionPatternRow.id)
            )
            if limit:
                q = q.limit(limit)
            return [
                RejectionPattern(
                    user_id=r.user_id,
                    pattern_type=PatternType(r.pattern_type),
                    pattern_value=r.pattern_value,
                    frequency=r.frequency,
                )
                for r in s.scalars(q)
            ]

    # ── skills ───────────────────────────────────────────────────────────

    def upsert_skill(
        self,
        normalized_name: str,
        skill: ExtractedSkill,
        *,
        job_title: str,
        company: str | None = None,
        source_url: str | None = None,
        seen_at: datetime | None = None,
    ) -> bool:
        """Create or bump a skill and append one sighting. Returns True if created."""
        seen_at = seen_at or utcnow()
        for attempt in (1, 2):
            try:
                with self._tx() as s:
                    row = s.scalars(
                        select(SkillRow).where(SkillRow.normalized_name == normalized_name)
                    ).first()
                    created = row is None
                    if created:
                        row = SkillRow(
                            name=skill.name.strip(),
                            normalized_name=normalized_name,
                            category=skill.category,
                            subcategory=skill.subcategory,
                            aliases=sorted(set(skill.aliases)),
                            frequency=1,
                            demand_trend=DemandTrend.STABLE.value,
                            last_seen_at=seen_at,
                        )
                        s.add(row)
                        s.flush()
                    else:
                        row.frequency = row.frequency + 1
                        row.aliases = sorted(set(row.aliases or []) | set(skill.aliases))
                        row.last_seen_at = seen_at
                    s.add(SkillSightingRow(
                        skill_id=row.id,
                        job_title=job_title,
                        company=company,
                        source_url=source_url,
                        is_required=skill.is_required,
                        proficiency_level=skill.proficiency_level,
                        years_required=skill.years_required,
                        extracted_at=seen_at,
                    ))
                    return created
            except IntegrityError as exc:
                # Lost a race creating the same skill; the second pass updates it.
                if attempt == 2:
                    raise StoreError(str(exc)) from exc
        return False  # pragma: no cover

    def list_skills(self) -> list[Skill]:
        with self._tx() as s:
            return [_to_skill(r) for r in s.scalars(select(SkillRow).order_by(SkillRow.id))]

    def get_skill(self, skill_id: int) -> Skill | None:
        with self._tx() as s:
            row = s.get(SkillRow, skill_id)
            return _to_skill(row) if row else None

    def sighting_counts_between(self, start: datetime, end: datetime) -> dict[int, int]:
        """Sightings per skill with ``start < extracted_at <= end``."""
        with self._tx() as s:
            rows = s.execute(
                select(SkillSightingRow.skill_id, func.count(SkillSightingRow.id))
                .where(SkillSightingRow.extracted_at > start, SkillSightingRow.extracted_at <= end)
                .group_by(SkillSightingRow.skill_id)
            )
            return {skill_id: count for skill_id, count in rows}

    def set_trends(self, trends: dict[int, DemandTrend]) -> None:
        with self._tx() as s:
            for skill_id, trend in trends.items():
                s.execute(update(SkillRow).where(SkillRow.id == skill_id).values(demand_trend=trend.value))

    def top_skills(
        self,
        *,
        limit: int = 20,
        min_frequency: int = 0,
        trend: DemandTrend | None = None,
        exclude_ids: set[int] | None = None,
        order_by_recent: bool = False,
    ) -> list[Skill]:
        with self._tx() as s:
            q = select(SkillRow).where(SkillRow.frequency >= min_frequency)
            if trend is not None:
                q = q.where(SkillRow.demand_trend == trend.value)
            if exclude_ids:
                q = q.where(SkillRow.id.not_in(exclude_ids))
            if order_by_recent:
                q = q.order_by(SkillRow.last_seen_at.desc(), SkillRow.id)
            else:
                q = q.order_by(SkillRow.frequency.desc(), SkillRow.id)
            return [_to_skill(r) for r in s.scalars(q.limit(limit))]

    def skill_totals(self) -> tuple[int, int]:
        with self._tx() as s:
            skills = s.scalar(select(func.count(SkillRow.id))) or 0
            sightings = s.scalar(select(func.count(SkillSightingRow.id))) or 0
            return skills, sightings

    def category_breakdown(self) -> list[dict]:
        with self._tx() as s:
            rows = s.execute(
                select(SkillRow.category, func.count(SkillRow.id), func.sum(SkillRow.frequency))
                .group_by(SkillRow.category)
                .order_by(SkillRow.category)
            )
            return [
                {"category": category, "count": count, "total_frequency": int(total or 0)}
                for category, count, total in rows
            ]

    def search_skills(self, query: str, category: str | None = None, limit: int = 50) -> list[Skill]:
        needle = query.strip().lower()
        with self._tx() as s:
            q = select(SkillRow)
            if category:
                q = q.where(SkillRow.category == category)
            q = q.order_by(SkillRow.frequency.desc(), SkillRow.id)
            counts = dict(s.execute(
                select(SkillSightingRow.skill_id, func.count(SkillSightingRow.id))
                .group_by(SkillSightingRow.skill_id)
            ).all())
            out: list[Skill] = []
            for row in s.scalars(q):
                # Aliases live in a JSON column, so matching happens here rather than in SQL.
                if needle and needle not in row.normalized_name and needle not in (
                    a.lower() for a in row.aliases or []
                ):
                    continue
                out.append(_to_skill(row, counts.get(row.id, 0)))
                if len(out) >= limit:
                    break
            return out

    def related_skills(self, skill_id: int, limit: int = 10) -> list[Skill]:
        with self._tx() as s:
            titles = select(SkillSightingRow.job_title).where(
                SkillSightingRow.skill_id == skill_id
            ).limit(100)
            related_ids = select(SkillSightingRow.skill_id).where(
                SkillSightingRow.job_title.in_(titles)
            )
            q = (
                select(SkillRow)
                .where(SkillRow.id != skill_id, SkillRow.id.in_(related_ids))
                .order_by(SkillRow.frequency.desc(), SkillRow.id)
                .limit(limit)
            )
            return [_to_skill(r) for r in s.scalars(q)]

    # ── alerts ───────────────────────────────────────────────────────────

    def add_alert(
        self, user_id: str, message: str, *, opportunity_id: int | None = None, kind: str = "NEW_JOB",
    ) -> int:
        with self._tx() as s:
            row = AlertRow(
                user_id=user_id, message=message[:500], type=kind,
                opportunity_id=opportunity_id, created_at=utcnow(),
            )
            s.add(row)
            s.flush()
            return row.id

    def list_alerts(self, user_id: str, *, unread_only: bool = True) -> list[dict]:
        with self._tx() as s:
            q = select(AlertRow).where(AlertRow.user_id == user_id)
            if unread_only:
                q = q.where(AlertRow.is_read.is_(False))
            q = q.order_by(AlertRow.created_at.desc(), AlertRow.id.desc())
            return [
                {
                    "id": r.id,
                    "message": r.message,
                    "type": r.type,
                    "opportunity_id": r.opportunity_id,
                    "is_read": r.is_read,
                    "created_at": as_utc(r.created_at),
                }
                for r in s.scalars(q)
            ]

    def mark_alert_read(self, user_id: str, alert_id: int) -> None:
        with self._tx() as s:
            row = s.get(AlertRow, alert_id)
            if row is None or row.user_id != user_id:
                raise NotFoundError(f"alert {alert_id} not found")
            row.is_read = True
