"""
services/matching/eligibility.py
Tutor eligibility: which peers can help with a subject, at a level, in a weekly slot.

The filter itself is pure. The pool loader is the only part that reads the
database, and it hands the filter plain snapshots rather than ORM rows.
"""

import uuid
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shared.models.models import ClassLevel, Day, TimeCode, TutorPreference, User, UserRole
from shared.utils.levels import is_senior_or_equal, parse_class_level
from shared.utils.slots import parse_slot_id


@dataclass(frozen=True)
class MatchQuery:
    subject: str
    level: ClassLevel
    slot_id: str

    @property
    def slot(self) -> Tuple[Day, TimeCode]:
        return parse_slot_id(self.slot_id)


@dataclass(frozen=True)
class CandidateTutor:
    """Snapshot of a user as seen by the eligibility filter."""
    id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    avatar: Optional[str]
    class_level: ClassLevel
    specialties: Tuple[str, ...]
    role: UserRole
    enabled: bool
    subjects: FrozenSet[str] = field(default_factory=frozenset)
    levels: FrozenSet[ClassLevel] = field(default_factory=frozenset)
    weekly_slots: FrozenSet[Tuple[Day, TimeCode]] = field(default_factory=frozenset)

    @classmethod
    def from_user(cls, user: User) -> "CandidateTutor":
        """Build from a User loaded with tutor_preference and weekly_slots."""
        prefs = user.tutor_preference
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            avatar=user.avatar,
            class_level=parse_class_level(user.class_level),
            specialties=tuple(user.specialties or ()),
            role=user.role,
            enabled=bool(prefs and prefs.enabled),
            subjects=frozenset(prefs.subjects or ()) if prefs else frozenset(),
            levels=frozenset(parse_class_level(l) for l in prefs.levels or ()) if prefs else frozenset(),
            weekly_slots=frozenset((Day(s.day), TimeCode(s.time_code)) for s in user.weekly_slots),
        )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


def is_eligible(candidate: CandidateTutor, query: MatchQuery, exclude_user_id: uuid.UUID) -> bool:
    # Pool guards, re-checked so the filter holds for any pool
    if candidate.id == exclude_user_id:
        return False
    if candidate.role != UserRole.STUDENT or not candidate.enabled:
        return False

    teaches_subject = query.subject in candidate.subjects
    teaches_own_level = candidate.class_level in candidate.levels
    senior_enough = is_senior_or_equal(candidate.class_level, query.level)
    available = query.slot in candidate.weekly_slots

    return teaches_subject and teaches_own_level and senior_enough and available


def filter_eligible_tutors(
    pool: Iterable[CandidateTutor],
    query: MatchQuery,
    exclude_user_id: uuid.UUID,
) -> List[CandidateTutor]:
    """Candidates able to take the query, in pool order."""
    return [c for c in pool if is_eligible(c, query, exclude_user_id)]


async def load_candidate_pool(db: AsyncSession, exclude_user_id: uuid.UUID) -> List[CandidateTutor]:
    """Every enabled STUDENT tutor other than the requester, oldest account first."""
    result = await db.execute(
        select(User)
        .join(TutorPreference, TutorPreference.user_id == User.id)
        .where(
            User.id != exclude_user_id,
            User.role == UserRole.STUDENT,
            User.is_active == True,
            TutorPreference.enabled == True,
        )
        .options(selectinload(User.tutor_preference), selectinload(User.weekly_slots))
        .order_by(User.created_at)
    )
    return [CandidateTutor.from_user(u) for u in result.scalars().unique()]


async def find_eligible_tutors(
    db: AsyncSession, query: MatchQuery, requester_id: uuid.UUID
) -> List[CandidateTutor]:
    pool = await load_candidate_pool(db, requester_id)
    return filter_eligible_tutors(pool, query, requester_id)
