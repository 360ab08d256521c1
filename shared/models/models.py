"""
shared/models/models.py
All SQLAlchemy ORM models for the Peer Tutoring Platform.
UUID primary keys throughout; collection columns use PostgreSQL ARRAY
(JSON on SQLite for local runs and tests).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Portable column types
StringList = ARRAY(String(50)).with_variant(JSON(), "sqlite")
JSONData = JSONB().with_variant(JSON(), "sqlite")


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    STUDENT = "STUDENT"
    MODERATOR = "MODERATOR"


class ClassLevel(str, PyEnum):
    """Lycée class levels, most junior first. Ordering lives in shared/utils/levels.py."""
    SECONDE = "SECONDE"
    PREMIERE = "PREMIERE"
    TERMINALE = "TERMINALE"


class Subject(str, PyEnum):
    MATHEMATIQUES = "Mathématiques"
    PHYSIQUE_CHIMIE = "Physique-Chimie"
    FRANCAIS = "Français"
    ANGLAIS = "Anglais"
    HISTOIRE_GEO = "Histoire-Géo"
    SVT = "SVT"


class Day(str, PyEnum):
    LUNDI = "Lundi"
    MARDI = "Mardi"
    MERCREDI = "Mercredi"
    JEUDI = "Jeudi"
    VENDREDI = "Vendredi"


class TimeCode(str, PyEnum):
    M1 = "M1"   # Morning periods
    M2 = "M2"
    M3 = "M3"
    M4 = "M4"
    S1 = "S1"   # Afternoon periods
    S2 = "S2"
    S3 = "S3"
    S4 = "S4"


class RequestStatus(str, PyEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    HONORED = "HONORED"
    CANCELLED = "CANCELLED"


class NotificationType(str, PyEnum):
    NEW_REQUEST = "NEW_REQUEST"
    REQUEST_ACCEPTED = "REQUEST_ACCEPTED"
    REQUEST_REJECTED = "REQUEST_REJECTED"
    BROADCAST_CALL = "BROADCAST_CALL"
    NEW_MESSAGE = "NEW_MESSAGE"
    ABUSE_REPORT = "ABUSE_REPORT"


class ReportStatus(str, PyEnum):
    OPEN = "OPEN"
    REVIEWING = "REVIEWING"
    CLOSED = "CLOSED"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )


# ── Accounts ──────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Student or moderator account. Only verified accounts may match or message."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    class_level: Mapped[ClassLevel] = mapped_column(Enum(ClassLevel), nullable=False)
    specialties: Mapped[List[str]] = mapped_column(StringList, default=list, nullable=False)
    options: Mapped[List[str]] = mapped_column(StringList, default=list, nullable=False)
    avatar: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.STUDENT
    )
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    tutor_preference: Mapped[Optional["TutorPreference"]] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    weekly_slots: Mapped[List["WeeklyAvailabilitySlot"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    availability_exceptions: Mapped[List["AvailabilityException"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", order_by="AvailabilityException.date"
    )
    notifications: Mapped[List["Notification"]] = relationship(back_populates="user")
    refresh_tokens: Mapped[List["RefreshToken"]] = relationship(back_populates="user")

    __table_args__ = (
        Index("ix_users_role", "role"),
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class RefreshToken(Base):
    """Refresh tokens stored for rotation and revocation."""
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    user: Mapped["User"] = relationship(back_populates="refresh_tokens")

    __table_args__ = (Index("ix_refresh_tokens_user_id", "user_id"),)


class EmailVerificationToken(Base):
    """One-shot token mailed at registration. Deleted once consumed or expired."""
    __tablename__ = "email_verification_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )


class PasswordResetToken(Base):
    """One-shot password reset token. Deleted once consumed or expired."""
    __tablename__ = "password_reset_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )


# ── Tutor Profile & Availability ──────────────────────────────

class TutorPreference(TimestampMixin, Base):
    """
    Opt-in tutoring profile, one per user, created on first write.
    A missing row means: disabled, no subjects, no levels.
    """
    __tablename__ = "tutor_preferences"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    subjects: Mapped[List[str]] = mapped_column(StringList, default=list, nullable=False)
    levels: Mapped[List[str]] = mapped_column(StringList, default=list, nullable=False)
    available_outside_hours: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    user: Mapped["User"] = relationship(back_populates="tutor_preference")

    __table_args__ = (Index("ix_tutor_preferences_enabled", "enabled"),)


class WeeklyAvailabilitySlot(Base):
    """One cell of the recurring weekly grid (day × time code)."""
    __tablename__ = "weekly_availability_slots"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    day: Mapped[Day] = mapped_column(Enum(Day), nullable=False)
    time_code: Mapped[TimeCode] = mapped_column(Enum(TimeCode), nullable=False)

    user: Mapped["User"] = relationship(back_populates="weekly_slots")

    __table_args__ = (
        UniqueConstraint("user_id", "day", "time_code", name="uq_weekly_slot"),
        Index("ix_weekly_slots_user_id", "user_id"),
    )


class AvailabilityException(TimestampMixin, Base):
    """Per-date override of the weekly grid (holiday, exam day, extra session)."""
    __tablename__ = "availability_exceptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    user: Mapped["User"] = relationship(back_populates="availability_exceptions")

    __table_args__ = (Index("ix_availability_exceptions_user_date", "user_id", "date"),)


# ── Matching ──────────────────────────────────────────────────

class TutoringRequest(TimestampMixin, Base):
    """
    A tutoring request addressed to one tutor.
    A broadcast call produces one row per matched tutor (is_broadcast=True).
    Status transitions: PENDING → ACCEPTED | REJECTED, ACCEPTED → HONORED | CANCELLED
    """
    __tablename__ = "tutoring_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    tutor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    subject: Mapped[str] = mapped_column(String(50), nullable=False)
    level: Mapped[ClassLevel] = mapped_column(Enum(ClassLevel), nullable=False)
    slot_id: Mapped[str] = mapped_column(String(20), nullable=False)    # "Lundi_S3"
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus), nullable=False, default=RequestStatus.PENDING
    )
    is_broadcast: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    conversation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("conversations.id", use_alter=True, name="fk_requests_conversation"),
        nullable=True,
    )

    student: Mapped["User"] = relationship(foreign_keys=[student_id])
    tutor: Mapped["User"] = relationship(foreign_keys=[tutor_id])
    audit_logs: Mapped[List["TutoringRequestAuditLog"]] = relationship(back_populates="request")

    __table_args__ = (
        CheckConstraint("student_id <> tutor_id", name="ck_request_not_self"),
        Index("ix_requests_student_id", "student_id"),
        Index("ix_requests_tutor_id", "tutor_id"),
        Index("ix_requests_status", "status"),
    )


class TutoringRequestAuditLog(Base):
    """Immutable log of all tutoring request status transitions."""
    __tablename__ = "tutoring_request_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tutoring_requests.id"), nullable=False
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    request: Mapped["TutoringRequest"] = relationship(back_populates="audit_logs")


# ── Messaging ─────────────────────────────────────────────────

def conversation_pair_key(user_a: uuid.UUID, user_b: uuid.UUID) -> str:
    """Canonical key for an unordered participant pair."""
    low, high = sorted((str(user_a), str(user_b)))
    return f"{low}:{high}"


class Conversation(TimestampMixin, Base):
    """
    1:1 thread between two users. pair_key is unique, so one conversation
    exists per unordered pair whatever order the participants were given in.
    updated_at is bumped on every new message.
    """
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    participant1_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    participant2_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    pair_key: Mapped[str] = mapped_column(String(80), nullable=False)
    request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("tutoring_requests.id"), nullable=True
    )

    participant1: Mapped["User"] = relationship(foreign_keys=[participant1_id])
    participant2: Mapped["User"] = relationship(foreign_keys=[participant2_id])
    request: Mapped[Optional["TutoringRequest"]] = relationship(foreign_keys=[request_id])
    messages: Mapped[List["Message"]] = relationship(
        back_populates="conversation", order_by="Message.created_at"
    )

    __table_args__ = (
        UniqueConstraint("pair_key", name="uq_conversation_pair"),
        CheckConstraint("participant1_id <> participant2_id", name="ck_conversation_not_self"),
        Index("ix_conversations_participant1", "participant1_id"),
        Index("ix_conversations_participant2", "participant2_id"),
    )

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.participant1_id, self.participant2_id)


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")
    sender: Mapped["User"] = relationship()

    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )


# ── Notifications & Moderation ────────────────────────────────

class Notification(TimestampMixin, Base):
    """In-app notification log. Also pushed to the realtime layer."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("tutoring_requests.id"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSONData, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user: Mapped["User"] = relationship(back_populates="notifications")

    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "is_read"),)


class AbuseReport(TimestampMixin, Base):
    """A report on a conversation or a single message, reviewed by moderators."""
    __tablename__ = "abuse_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reporter_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    conversation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("conversations.id"), nullable=True
    )
    message_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("messages.id"), nullable=True
    )
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ReportStatus] = mapped_column(
        Enum(ReportStatus), nullable=False, default=ReportStatus.OPEN
    )

    reporter: Mapped["User"] = relationship()

    __table_args__ = (
        CheckConstraint(
            "conversation_id IS NOT NULL OR message_id IS NOT NULL",
            name="ck_report_has_target",
        ),
        Index("ix_abuse_reports_status", "status"),
    )


class ModerationAuditLog(Base):
    """Immutable log of all moderator actions."""
    __tablename__ = "moderation_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    moderator_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSONData, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_moderation_audit_moderator_id", "moderator_id"),
        Index("ix_moderation_audit_created_at", "created_at"),
    )
