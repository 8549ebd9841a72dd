"""Notification service (Mailgun email). Unconfigured deployments skip sending."""
import logging

from provisioning.config import get_settings

logger = logging.getLogger(__name__)

MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"


def send_email(to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
    """Send email via Mailgun. Returns True if the API accepted it."""
    settings = get_settings()
    if not (settings.mailgun_api_key and settings.mailgun_domain):
        logger.info("[Email] NOT SENT: to=%s subject=%s (MAILGUN_API_KEY / MAILGUN_DOMAIN not set)", to_email, subject)
        return False
    return _send_email_mailgun(to_email, subject, html_content, text_content=text_content, settings=settings)


def _send_email_mailgun(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None) -> bool:
    if settings is None:
        settings = get_settings()
    import httpx

    base = (settings.mailgun_base_url or MAILGUN_US_BASE).strip().rstrip("/")
    domain = (settings.mailgun_domain or "").strip().lower()
    from_addr = (settings.mailgun_from_email or "").strip()
    from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
    if domain and from_domain != domain:
        from_addr = f"noreply@{domain}"
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
                    return True
                logger.warning("[Mailgun] EU request failed: status=%s body=%s", r2.status_code, r2.text[:500])
                return False
            logger.warning("[Mailgun] API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
            return False
    except httpx.HTTPError as e:
        logger.warning("[Mailgun] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False


def send_company_welcome_email(to_email: str, full_name: str | None, company_name: str, trial_days: int = 0) -> bool:
    """Welcome email once the tenant account exists."""
    app_name = get_settings().app_name
    name = (full_name or "").strip() or "there"
    trial_line = f" Your free trial runs for {trial_days} days." if trial_days else ""
    subject = f"[{app_name}] Welcome - {company_name} is ready"
    text = f"Hi {name}, your company {company_name} has been created.{trial_line} Sign in to get started."
    html = f"""
    <p>Hi {name},</p>
    <p>Your company <strong>{company_name}</strong> has been created.{trial_line}</p>
    <p>Sign in with your email and the password you chose during signup.</p>
    <p>- {app_name}</p>
    """
    return send_email(to_email, subject, html, text_content=text)
