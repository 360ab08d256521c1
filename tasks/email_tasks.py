"""
tasks/email_tasks.py
Celery tasks for account emails: address verification and password reset.

Usage from a route:
    from tasks.email_tasks import send_verification_email
    send_verification_email.delay(user.email, user.first_name, token)

Without RESEND_API_KEY the link is logged instead of sent (local development).
"""

import html
import logging

from tenacity import retry, stop_after_attempt, wait_exponential

from config.settings import settings
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ── Delivery ───────────────────────────────────────────────────────────────────

@retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=10), reraise=True)
def _deliver(to_email: str, subject: str, html_body: str) -> None:
    """Send through Resend. Transient API failures are retried in-process first."""
    import resend

    resend.api_key = settings.RESEND_API_KEY
    resend.Emails.send({
        "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
        "to": [to_email],
        "subject": subject,
        "html": html_body,
    })


def _send_email(to_email: str, subject: str, html_body: str, link: str) -> bool:
    """Returns True on success. Never raises."""
    if not settings.RESEND_API_KEY:
        logger.warning(f"Email service not configured, link for {to_email}: {link}")
        return True
    try:
        _deliver(to_email, subject, html_body)
        logger.info(f"Email '{subject}' sent to {to_email}")
        return True
    except Exception as e:
        logger.warning(f"Email send to {to_email} failed: {e}")
        return False


# ── Templates ──────────────────────────────────────────────────────────────────

def _layout(title: str, intro: str, link: str, button: str, footer: str) -> str:
    title, intro, link, button, footer = (
        html.escape(value) for value in (title, intro, link, button, footer)
    )
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #4f46e5;">{title}</h2>
        <p>{intro}</p>
        <p style="margin: 20px 0;">
            <a href="{link}" style="background-color: #4f46e5; color: white; padding: 12px 24px;
               text-decoration: none; border-radius: 6px; display: inline-block;">{button}</a>
        </p>
        <p style="color: #666; font-size: 14px;">{footer}</p>
    </div>
    """


def verification_link(token: str) -> str:
    return f"{settings.FRONTEND_URL}/verify-email?token={token}"


def password_reset_link(token: str) -> str:
    return f"{settings.FRONTEND_URL}/reset-password?token={token}"


# ── Tasks ──────────────────────────────────────────────────────────────────────

@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_verification_email(self, to_email: str, first_name: str, token: str):
    """Welcome email with the address verification link (valid 24 hours)."""
    link = verification_link(token)
    body = _layout(
        title=f"Bienvenue sur {settings.EMAIL_FROM_NAME}, {first_name} !",
        intro="Merci de vous être inscrit. Pour activer votre compte, veuillez vérifier votre adresse email.",
        link=link,
        button="Vérifier mon email",
        footer=(
            f"Ce lien expire dans {settings.EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS} heures. "
            "Si vous n'avez pas créé de compte, ignorez cet email."
        ),
    )
    if not _send_email(to_email, f"Vérifiez votre email - {settings.EMAIL_FROM_NAME}", body, link):
        raise self.retry(countdown=60 * (2 ** self.request.retries))


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_password_reset_email(self, to_email: str, first_name: str, token: str):
    """Password reset link (valid 1 hour)."""
    link = password_reset_link(token)
    body = _layout(
        title=f"Réinitialisation du mot de passe, {first_name}",
        intro="Vous avez demandé à réinitialiser votre mot de passe.",
        link=link,
        button="Choisir un nouveau mot de passe",
        footer=(
            f"Ce lien expire dans {settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES} minutes. "
            "Si vous n'êtes pas à l'origine de cette demande, ignorez cet email."
        ),
    )
    if not _send_email(to_email, f"Réinitialisation du mot de passe - {settings.EMAIL_FROM_NAME}", body, link):
        raise self.retry(countdown=60 * (2 ** self.request.retries))
