"""
Service notification : envoi email (SMTP) et SMS (Twilio) aux utilisateurs.

Best-effort : chaque canal est tenté indépendamment, les échecs sont loggés
et jamais propagés à l'appelant.
"""
import asyncio
import logging
import smtplib
import uuid
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Dict, Optional

from config import settings
from database import db
from models.notification import NotificationChannel, NotificationStatus

logger = logging.getLogger(__name__)


def _notif_id() -> str:
    return f"ntf_{uuid.uuid4().hex[:12]}"


EMAIL_TEMPLATE = """
<div style="font-family: Arial, sans-serif; padding: 20px; max-width: 600px; margin: 0 auto; border: 1px solid #ddd; border-radius: 8px;">
  <h2 style="color: #2563eb; border-bottom: 2px solid #7c3aed; padding-bottom: 10px;">BackStore Parcel System</h2>
  <div style="margin: 20px 0; line-height: 1.6;">{content}</div>
  <div style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #eee; color: #666; font-size: 12px;">
    <p>Message automatique, merci de ne pas répondre.</p>
  </div>
</div>
"""


def _render_html(message: str, html: Optional[str]) -> str:
    return EMAIL_TEMPLATE.format(content=html or message.replace("\n", "<br>"))


def _smtp_send(to: str, subject: str, text: str, html: str) -> None:
    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(text)
    msg.add_alternative(html, subtype="html")

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT) as smtp:
        if settings.SMTP_STARTTLS:
            smtp.starttls()
        if settings.SMTP_USER:
            smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD or "")
        smtp.send_message(msg)


async def _send_email(to: str, subject: str, text: str, html: str) -> NotificationStatus:
    if not settings.SMTP_HOST:
        logger.debug(f"SMTP non configuré, email ignoré pour {to}")
        return NotificationStatus.SKIPPED
    await asyncio.to_thread(_smtp_send, to, subject, text, html)
    logger.info(f"Email envoyé à {to} : {subject}")
    return NotificationStatus.SENT


async def _send_sms(phone: str, body: str) -> NotificationStatus:
    if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_SMS_NUMBER:
        logger.debug(f"Twilio non configuré, SMS ignoré pour {phone}")
        return NotificationStatus.SKIPPED
    from twilio.rest import Client
    client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
    await asyncio.to_thread(
        client.messages.create, body=body, from_=settings.TWILIO_SMS_NUMBER, to=phone,
    )
    logger.info(f"SMS envoyé à {phone}")
    return NotificationStatus.SENT


async def _record(
    user_id: str,
    channel: NotificationChannel,
    title: str,
    body: str,
    status: NotificationStatus,
    error: Optional[str],
    ref_type: Optional[str],
    ref_id: Optional[str],
) -> None:
    try:
        await db.notifications.insert_one({
            "notif_id":   _notif_id(),
            "user_id":    user_id,
            "channel":    channel.value,
            "title":      title,
            "body":       body,
            "status":     status.value,
            "error":      error,
            "ref_type":   ref_type,
            "ref_id":     ref_id,
            "created_at": datetime.now(timezone.utc),
        })
    except Exception as e:
        logger.warning(f"Notification non historisée pour {user_id} : {e}")


async def _attempt(
    user: dict,
    channel: NotificationChannel,
    subject: str,
    message: str,
    html: Optional[str],
    ref_type: Optional[str],
    ref_id: Optional[str],
) -> NotificationStatus:
    error = None
    try:
        if channel == NotificationChannel.EMAIL:
            status = await _send_email(user["email"], subject, message, _render_html(message, html))
        else:
            status = await _send_sms(user["phone"], message)
    except Exception as e:
        logger.warning(f"{channel.value} non envoyé à {user.get('user_id')} : {e}")
        status, error = NotificationStatus.FAILED, str(e)
    await _record(user.get("user_id", ""), channel, subject, message, status, error, ref_type, ref_id)
    return status


async def notify_user(
    user: dict,
    subject: str,
    message: str,
    html: Optional[str] = None,
    ref_type: Optional[str] = None,
    ref_id: Optional[str] = None,
) -> Dict[str, str]:
    """
    Notifie un utilisateur sur chaque canal disponible (email, SMS).
    Retourne le résultat par canal ; ne lève jamais.
    """
    prefs = user.get("notification_preferences") or {}
    channels = []
    if user.get("email") and prefs.get("email", True):
        channels.append(NotificationChannel.EMAIL)
    if user.get("phone") and prefs.get("sms", True):
        channels.append(NotificationChannel.SMS)

    results = await asyncio.gather(*[
        _attempt(user, channel, subject, message, html, ref_type, ref_id)
        for channel in channels
    ])
    return {channel.value: status.value for channel, status in zip(channels, results)}
