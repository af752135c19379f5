import os
import logging
from datetime import datetime

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, To, From, Subject, HtmlContent, PlainTextContent

from signflow.core.settings import settings

logger = logging.getLogger("signflow.email")

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "..", "templates", "email")


def strftime_filter(value, format="%d/%m/%Y"):
    """Jinja2 filter for dates; 'now' renders the current date."""
    if isinstance(value, str) and value == "now":
        return datetime.now().strftime(format)
    if hasattr(value, "strftime"):
        return value.strftime(format)
    return value


def get_email_template_env():
    """Get Jinja2 environment for email templates."""
    env = Environment(
        loader=FileSystemLoader(TEMPLATE_DIR),
        autoescape=select_autoescape(["html", "xml"]),
        keep_trailing_newline=False,
    )
    env.filters["strftime"] = strftime_filter
    return env


def get_sendgrid_client():
    """Get SendGrid client if configured and log diagnostics (without leaking key)."""
    api_key = os.getenv("SENDGRID_API_KEY")
    if not api_key:
        logger.warning("[email] SENDGRID_API_KEY missing from environment")
        return None
    logger.debug(f"[email] SendGrid key loaded (length={len(api_key)})")
    if api_key.startswith("your_"):
        logger.warning("[email] SENDGRID_API_KEY appears to be a placeholder (starts with 'your_')")
        return None
    try:
        return SendGridAPIClient(api_key)
    except Exception as e:
        logger.error(f"[email] Failed to instantiate SendGrid client: {e}")
        return None


def send_email(to_email: str, subject: str, html_content: str, plain_content: str, from_email: str = None) -> bool:
    """Send email using SendGrid.

    Returns False instead of raising when the client is unavailable or the API
    answers with a non-2xx status. Transport exceptions propagate to the caller.
    """
    client = get_sendgrid_client()
    if not client:
        logger.warning(f"[email] Skipping send (client unavailable) to={to_email} subject={subject[:120]!r}")
        return False

    from_email = from_email or settings.email_from_address
    message = Mail(
        from_email=From(from_email, settings.email_from_name),
        to_emails=To(to_email),
        subject=Subject(subject),
        html_content=HtmlContent(html_content),
        plain_text_content=PlainTextContent(plain_content),
    )
    logger.debug(f"[email] Sending message payload_summary={{'to': {to_email!r}, 'subject': {subject[:120]!r}, 'plain_len': {len(plain_content)}}}")
    response = client.send(message)

    status_code = getattr(response, "status_code", None)
    if status_code in (200, 202):
        logger.info(f"[email] Sent to={to_email} status={status_code}")
        return True
    logger.error(f"[email] Failed send to={to_email} status={status_code}")
    return False
