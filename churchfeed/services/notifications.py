"""Email notifications (Mailgun, SendGrid fallback)."""
import logging

import httpx

from churchfeed.config import get_settings

logger = logging.getLogger(__name__)

MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"


def send_email(to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
    """Send email via Mailgun (preferred) or SendGrid. Returns True if sent."""
    settings = get_settings()
    has_key = bool(settings.mailgun_api_key)
    has_domain = bool(settings.mailgun_domain)
    if has_key and has_domain:
        logger.info("[Email] Calling Mailgun API: to=%s subject=%s domain=%s", to_email, subject, settings.mailgun_domain)
        return _send_email_mailgun(to_email, subject, html_content, text_content=text_content, settings=settings)
    if settings.sendgrid_api_key:
        return _send_email_sendgrid(to_email, subject, html_content, text_content=text_content, settings=settings)
    logger.warning(
        "[Email] NOT SENT: to=%s subject=%s. MAILGUN_API_KEY=%s MAILGUN_DOMAIN=%s. Set both in .env and restart the server.",
        to_email,
        subject,
        "set" if has_key else "MISSING",
        "set" if has_domain else "MISSING",
    )
    return False


def _send_email_mailgun(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None) -> bool:
    if settings is None:
        settings = get_settings()
    base = (settings.mailgun_base_url or MAILGUN_US_BASE).strip().rstrip("/")
    domain = (settings.mailgun_domain or "").strip().lower()
    from_addr = (settings.mailgun_from_email or "").strip()
    from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
    if domain and from_domain != domain:
        from_addr = f"noreply@{domain}"
        logger.info("[Mailgun] Using from=%s (must match domain %s for delivery)", from_addr, domain)
    data = {
        "from": f"{settings.mailgun_from_name} <{from_addr}>",
        "to": to_email,
        "subject": subject,
        "text": text_content or "",
        "html": html_content or "",
    }
    try:
        with httpx.Client(timeout=10.0) as client:
            r = client.post(f"{base}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
            if 200 <= r.status_code < 300:
                logger.info("[Mailgun] API success: to=%s status=%s", to_email, r.status_code)
                return True
            if r.status_code == 401 and base == MAILGUN_US_BASE:
                logger.info("[Mailgun] 401 with US endpoint. Retrying with EU endpoint...")
                r2 = client.post(f"{MAILGUN_EU_BASE}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
                if 200 <= r2.status_code < 300:
                    logger.info("[Mailgun] API success (EU): to=%s", to_email)
                    return True
                logger.warning("[Mailgun] EU request failed: status=%s body=%s", r2.status_code, r2.text[:500])
                return False
            logger.warning("[Mailgun] API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
            return False
    except httpx.HTTPError as e:
        logger.warning("[Mailgun] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False


def _send_email_sendgrid(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None) -> bool:
    if settings is None:
        settings = get_settings()
    from sendgrid import SendGridAPIClient
    from sendgrid.helpers.mail import Mail

    message = Mail(
        from_email=(settings.sendgrid_from_email, settings.sendgrid_from_name),
        to_emails=to_email,
        subject=subject,
        html_content=html_content,
        plain_text_content=text_content or "",
    )
    try:
        SendGridAPIClient(settings.sendgrid_api_key).send(message)
        return True
    except Exception as e:  # SendGrid raises python_http_client errors and urllib errors
        logger.warning("[SendGrid] send failed: to=%s error=%s", to_email, e)
        return False


def send_verification_email(to_email: str, code: str) -> bool:
    """Send the 6-digit verification code a new church admin needs before first sign-in."""
    subject = "[ChurchFeed] Your verification code"
    text_content = f"Your ChurchFeed verification code is: {code}. It expires in 10 minutes."
    html_content = f"""
    <p>Hello,</p>
    <p>Your ChurchFeed verification code is: <strong style="font-size:1.2em;letter-spacing:0.2em;">{code}</strong></p>
    <p>This code expires in 10 minutes. If you did not request this, you can ignore this email.</p>
    <p>— ChurchFeed</p>
    """
    return send_email(to_email, subject, html_content, text_content=text_content)


def send_church_welcome_email(to_email: str, admin_name: str | None, church_name: str, church_code: str) -> bool:
    """Welcome the admin once the church exists; the church code is what members join with."""
    name = (admin_name or "").strip() or "there"
    subject = f"[ChurchFeed] {church_name} is registered"
    text = (
        f"Hi {name}, welcome to ChurchFeed. {church_name} is registered. "
        f"Your church code is {church_code}. Share it with your members so they can join."
    )
    html = f"""
    <p>Hi {name},</p>
    <p>Welcome to <strong>ChurchFeed</strong>. <strong>{church_name}</strong> is registered.</p>
    <p>Your church code is <strong style="letter-spacing:0.2em;">{church_code}</strong>. Share it with your members so they can join.</p>
    <p>— ChurchFeed</p>
    """
    return send_email(to_email, subject, html, text_content=text)


def send_member_welcome_email(to_email: str, full_name: str | None, church_name: str) -> bool:
    name = (full_name or "").strip() or "there"
    subject = f"[ChurchFeed] Welcome to {church_name}"
    text = f"Hi {name}, you have joined {church_name} on ChurchFeed. Sign in to see announcements."
    html = f"""
    <p>Hi {name},</p>
    <p>You have joined <strong>{church_name}</strong> on ChurchFeed. Sign in to see announcements.</p>
    <p>— ChurchFeed</p>
    """
    return send_email(to_email, subject, html, text_content=text)
