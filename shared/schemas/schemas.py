"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
Slot ids and class level labels are validated here, before any core call.
"""

import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from shared.models.models import ReportStatus, RequestStatus, Subject
from shared.utils.levels import level_label
from shared.utils.slots import normalize_slot_ids, parse_slot_id

LevelLabel = Literal["2nde", "1ère", "Terminale"]

_TAG_RE = re.compile(r"<[^>]*>")


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int


class _SlotValidated(BaseSchema):
    slot_id: str

    @field_validator("slot_id")
    @classmethod
    def validate_slot_id(cls, v: str) -> str:
        parse_slot_id(v)
        return v


class _LevelLabelled(BaseSchema):
    """Output schemas expose class levels as their labels ("2nde", "1ère", "Terminale")."""

    @field_validator("class_level", "level", mode="before", check_fields=False)
    @classmethod
    def to_label(cls, v):
        return level_label(v) if v is not None else v


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    class_level: LevelLabel
    specialties: List[str] = Field(default_factory=list)
    options: List[str] = Field(default_factory=list)
    avatar: Optional[str] = None


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1)


class VerifyEmailRequest(BaseSchema):
    token: str = Field(..., min_length=1)


class EmailRequest(BaseSchema):
    email: EmailStr


class ResetPasswordRequest(BaseSchema):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=128)


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class UserResponse(_LevelLabelled):
    id: uuid.UUID
    email: EmailStr
    first_name: str
    last_name: str
    class_level: str
    specialties: List[str]
    options: List[str]
    avatar: Optional[str]
    role: str
    email_verified: bool
    is_tutor_enabled: bool = False
    created_at: datetime


class AuthResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class RefreshTokenRequest(BaseSchema):
    refresh_token: Optional[str] = None


# ── Tutor profile ─────────────────────────────────────────────

class TutorPreferencesUpdate(BaseSchema):
    subjects: List[Subject]
    levels: List[LevelLabel]
    available_outside_hours: bool


class TutorPreferencesResponse(BaseSchema):
    subjects: List[str]
    levels: List[str]           # labels
    available_outside_hours: bool
    enabled: bool


class TutorEnabledUpdate(BaseSchema):
    enabled: bool


class TutorEnabledResponse(BaseSchema):
    enabled: bool


class WeeklyAvailabilityUpdate(BaseSchema):
    available_slots: List[str]

    @field_validator("available_slots")
    @classmethod
    def validate_slots(cls, v: List[str]) -> List[str]:
        return normalize_slot_ids(v)


class AvailabilityExceptionCreate(BaseSchema):
    date: datetime
    is_available: bool
    reason: Optional[str] = Field(None, max_length=255)


class AvailabilityExceptionResponse(BaseSchema):
    id: uuid.UUID
    date: datetime
    is_available: bool
    reason: Optional[str]


class AvailabilityResponse(BaseSchema):
    available_slots: List[str]
    exceptions: List[AvailabilityExceptionResponse]


# ── Matching ──────────────────────────────────────────────────

class TutorSummary(_LevelLabelled):
    id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    avatar: Optional[str]
    class_level: str
    specialties: List[str]


class MatchResponse(BaseSchema):
    tutors: List[TutorSummary]


class ParticipantSummary(_LevelLabelled):
    id: uuid.UUID
    first_name: str
    last_name: str
    avatar: Optional[str] = None
    class_level: Optional[str] = None


class TutoringRequestCreate(_SlotValidated):
    tutor_id: uuid.UUID
    subject: Subject
    level: LevelLabel
    date: datetime


class BroadcastCallCreate(_SlotValidated):
    subject: Subject
    level: LevelLabel
    date: datetime


class TutoringRequestResponse(_LevelLabelled):
    id: uuid.UUID
    student_id: uuid.UUID
    tutor_id: uuid.UUID
    subject: str
    level: str
    slot_id: str
    date: datetime
    status: str
    is_broadcast: bool
    conversation_id: Optional[uuid.UUID]
    created_at: datetime
    student: Optional[ParticipantSummary] = None
    tutor: Optional[ParticipantSummary] = None


class TutoringRequestListResponse(BaseSchema):
    requests: List[TutoringRequestResponse]


class RequestStatusUpdate(BaseSchema):
    status: RequestStatus


class RequestStatusResponse(BaseSchema):
    id: uuid.UUID
    status: str
    conversation_id: Optional[uuid.UUID] = None


class BroadcastCallResponse(BaseSchema):
    message: str
    count: int
    notified_tutor_ids: List[uuid.UUID]


# ── Messaging ─────────────────────────────────────────────────

class ConversationCreate(BaseSchema):
    participant_id: uuid.UUID
    request_id: Optional[uuid.UUID] = None


class ConversationResponse(BaseSchema):
    id: uuid.UUID
    participant1_id: uuid.UUID
    participant2_id: uuid.UUID
    request_id: Optional[uuid.UUID]
    created_at: datetime


class ChatMessageCreate(BaseSchema):
    content: str = Field(..., min_length=1, max_length=2000)

    @field_validator("content")
    @classmethod
    def strip_markup(cls, v: str) -> str:
        cleaned = _TAG_RE.sub("", v).strip()
        if not cleaned:
            raise ValueError("Message content is empty")
        return cleaned


class ChatMessageResponse(BaseSchema):
    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    sender: Optional[ParticipantSummary] = None
    content: str
    read: bool
    created_at: datetime


class ChatMessageListResponse(BaseSchema):
    messages: List[ChatMessageResponse]


class RequestBrief(BaseSchema):
    id: uuid.UUID
    subject: str
    slot_id: str
    status: str


class LastMessage(BaseSchema):
    id: uuid.UUID
    content: str
    sender_id: uuid.UUID
    created_at: datetime


class ConversationSummary(BaseSchema):
    id: uuid.UUID
    participant: ParticipantSummary
    request_id: Optional[uuid.UUID]
    request: Optional[RequestBrief] = None
    last_message: Optional[LastMessage] = None
    unread_count: int
    updated_at: datetime


class ConversationListResponse(BaseSchema):
    conversations: List[ConversationSummary]


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    title: str
    message: str
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime
    request_id: Optional[uuid.UUID]
    data: Optional[Dict[str, Any]] = None


class NotificationListResponse(PaginatedResponse):
    items: List[NotificationResponse]


# ── Moderation ────────────────────────────────────────────────

class AbuseReportCreate(BaseSchema):
    conversation_id: Optional[uuid.UUID] = None
    message_id: Optional[uuid.UUID] = None
    reason: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=5000)

    @model_validator(mode="after")
    def require_target(self) -> "AbuseReportCreate":
        if not self.conversation_id and not self.message_id:
            raise ValueError("conversation_id or message_id is required")
        return self


class AbuseReportResponse(BaseSchema):
    id: uuid.UUID
    reporter_id: uuid.UUID
    conversation_id: Optional[uuid.UUID]
    message_id: Optional[uuid.UUID]
    reason: str
    description: str
    status: str
    created_at: datetime


class ReporterSummary(BaseSchema):
    id: uuid.UUID
    first_name: str
    last_name: str
    email: str


class ReportedConversation(BaseSchema):
    id: uuid.UUID
    participant1: ParticipantSummary
    participant2: ParticipantSummary


class ModerationReportResponse(AbuseReportResponse):
    reporter: ReporterSummary
    updated_at: datetime
    conversation: Optional[ReportedConversation] = None


class ModerationReportListResponse(BaseSchema):
    reports: List[ModerationReportResponse]


class ReportStatusUpdate(BaseSchema):
    status: ReportStatus


class ModerationConversationResponse(BaseSchema):
    id: uuid.UUID
    participant1: ParticipantSummary
    participant2: ParticipantSummary
    request: Optional[RequestBrief] = None
    messages: List[ChatMessageResponse]
    created_at: datetime
    updated_at: datetime


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
