"""
services/auth/router.py
Email/password authentication endpoints.
Implements: Register → Verify email → Login → JWT issue → Refresh → Logout,
plus password reset by emailed one-shot token.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response, status
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.tutor.preferences import get_preferences
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import (
    EmailVerificationToken,
    PasswordResetToken,
    RefreshToken,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AuthResponse,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
    VerifyEmailRequest,
)
from shared.utils.levels import parse_class_level
from shared.utils.security import (
    create_access_token,
    create_refresh_token,
    generate_account_token,
    get_token_remaining_ttl,
    hash_password,
    hash_token,
    is_expired,
    verify_password,
)
from tasks.email_tasks import send_password_reset_email, send_verification_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

RESET_REQUESTED_MESSAGE = "Si cet email existe, un lien de réinitialisation a été envoyé"


# ── Helpers ───────────────────────────────────────────────────

async def _user_response(db: AsyncSession, user: User) -> UserResponse:
    prefs = await get_preferences(db, user.id)
    return UserResponse.model_validate(user).model_copy(
        update={"is_tutor_enabled": bool(prefs and prefs.enabled)}
    )


async def _issue_tokens(
    user: User,
    db: AsyncSession,
    response: Response,
    request: Request,
) -> tuple[str, str]:
    """Issue access + refresh tokens. Store refresh token in DB and set cookie."""
    access_token, _ = create_access_token(
        user_id=str(user.id),
        role=user.role.value,
        email=user.email,
    )

    raw_refresh, hashed_refresh = create_refresh_token()
    expires_at = datetime.now(timezone.utc) + timedelta(
        days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS
    )

    db.add(RefreshToken(
        user_id=user.id,
        token_hash=hashed_refresh,
        expires_at=expires_at,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    ))

    # httpOnly cookie for web clients; mobile clients use the body
    response.set_cookie(
        key="refresh_token",
        value=raw_refresh,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 86400,
        path="/auth",
    )

    return access_token, raw_refresh


async def _create_verification_token(db: AsyncSession, user: User) -> str:
    token = generate_account_token()
    db.add(EmailVerificationToken(
        user_id=user.id,
        token=token,
        expires_at=datetime.now(timezone.utc)
        + timedelta(hours=settings.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS),
    ))
    return token


async def _consume_token(db: AsyncSession, model, token: str):
    """
    Look up a one-shot token. Expired tokens are deleted and rejected;
    the deletion is committed before the error propagates.
    """
    result = await db.execute(select(model).where(model.token == token))
    record = result.scalar_one_or_none()
    if not record:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token invalide")

    if is_expired(record.expires_at):
        await db.delete(record)
        await db.commit()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token expiré")

    await db.delete(record)
    return record


# ── Registration & Login ──────────────────────────────────────

@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a student account",
)
async def register(
    data: RegisterRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Creates an unverified STUDENT account and mails the verification link.
    The account can log in immediately but matching and messaging stay closed
    until the email is verified.
    """
    email = data.email.lower()
    existing = await db.scalar(select(User.id).where(User.email == email))
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cet email est déjà utilisé")

    user = User(
        email=email,
        password_hash=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        class_level=parse_class_level(data.class_level),
        specialties=data.specialties,
        options=data.options,
        avatar=data.avatar,
        role=UserRole.STUDENT,
        email_verified=False,
        is_active=True,
    )
    db.add(user)
    await db.flush()

    token = await _create_verification_token(db, user)
    access_token, raw_refresh = await _issue_tokens(user, db, response, request)
    await db.commit()

    send_verification_email.delay(user.email, user.first_name, token)
    logger.info(f"User {user.id} registered")

    return AuthResponse(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=await _user_response(db, user),
    )


@router.post("/login", response_model=AuthResponse, summary="Log in with email and password")
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).where(User.email == data.email.lower()))
    user = result.scalar_one_or_none()

    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email ou mot de passe incorrect",
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    access_token, raw_refresh = await _issue_tokens(user, db, response, request)
    await db.commit()

    return AuthResponse(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=await _user_response(db, user),
    )


# ── Token Lifecycle ───────────────────────────────────────────

@router.post("/refresh", response_model=TokenResponse, summary="Refresh access token")
async def refresh_token(
    request: Request,
    response: Response,
    data: Optional[RefreshTokenRequest] = None,
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new access token using a valid refresh token.
    Implements refresh token rotation — old token is revoked.
    """
    raw_token = refresh_token_cookie or (data.refresh_token if data else None)
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token manquant",
        )

    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(raw_token),
            RefreshToken.is_revoked == False,
        )
    )
    db_token = result.scalar_one_or_none()

    if not db_token or is_expired(db_token.expires_at):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token invalide ou expiré",
        )

    user = await db.get(User, db_token.user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Utilisateur non trouvé")

    # Rotate: revoke old token, issue new ones
    db_token.is_revoked = True
    access_token, _ = await _issue_tokens(user, db, response, request)
    await db.commit()

    return TokenResponse(
        access_token=access_token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/logout", response_model=MessageResponse, summary="Logout user")
async def logout(
    response: Response,
    token_data: TokenData = Depends(get_token_data),
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Revoke refresh token + add JWT to deny-list in Redis.
    Clears httpOnly cookie.
    """
    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.jti, ttl)

    if refresh_token_cookie:
        await db.execute(
            update(RefreshToken)
            .where(RefreshToken.token_hash == hash_token(refresh_token_cookie))
            .values(is_revoked=True)
        )

    response.delete_cookie(key="refresh_token", path="/auth")
    await db.commit()

    return MessageResponse(message="Déconnexion réussie")


@router.get("/me", response_model=UserResponse, summary="Get current user")
async def get_me(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Returns the authenticated user's profile."""
    return await _user_response(db, current_user)


# ── Email Verification ────────────────────────────────────────

@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    data: VerifyEmailRequest,
    db: AsyncSession = Depends(get_db),
):
    record = await _consume_token(db, EmailVerificationToken, data.token)
    await db.execute(
        update(User).where(User.id == record.user_id).values(email_verified=True)
    )
    await db.commit()
    logger.info(f"Email verified for user {record.user_id}")
    return MessageResponse(message="Email vérifié avec succès")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    data: EmailRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).where(User.email == data.email.lower()))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Utilisateur non trouvé")
    if user.email_verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email déjà vérifié")

    # Only the newest link stays valid
    await db.execute(
        delete(EmailVerificationToken).where(EmailVerificationToken.user_id == user.id)
    )
    token = await _create_verification_token(db, user)
    await db.commit()

    send_verification_email.delay(user.email, user.first_name, token)
    return MessageResponse(message="Email de vérification envoyé")


# ── Password Reset ────────────────────────────────────────────

@router.post("/request-password-reset", response_model=MessageResponse)
async def request_password_reset(
    data: EmailRequest,
    db: AsyncSession = Depends(get_db),
):
    """Same answer whether or not the address has an account."""
    result = await db.execute(select(User).where(User.email == data.email.lower()))
    user = result.scalar_one_or_none()
    if not user:
        return MessageResponse(message=RESET_REQUESTED_MESSAGE)

    await db.execute(delete(PasswordResetToken).where(PasswordResetToken.user_id == user.id))
    token = generate_account_token()
    db.add(PasswordResetToken(
        user_id=user.id,
        token=token,
        expires_at=datetime.now(timezone.utc)
        + timedelta(minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES),
    ))
    await db.commit()

    send_password_reset_email.delay(user.email, user.first_name, token)
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
):
    """Set a new password and revoke every refresh token of the account."""
    record = await _consume_token(db, PasswordResetToken, data.token)
    await db.execute(
        update(User)
        .where(User.id == record.user_id)
        .values(password_hash=hash_password(data.password))
    )
    await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == record.user_id, RefreshToken.is_revoked == False)
        .values(is_revoked=True)
    )
    await db.commit()
    logger.info(f"Password reset for user {record.user_id}")
    return MessageResponse(message="Mot de passe réinitialisé avec succès")
