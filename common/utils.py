# common/utils.py
import logging
from smtplib import SMTPException

from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


def unique_emails(*addresses):
    """
    Drop blanks and case-insensitive duplicates, keep order.
    """
    seen = set()
    out = []
    for addr in addresses:
        addr = (addr or "").strip()
        if addr and addr.lower() not in seen:
            seen.add(addr.lower())
            out.append(addr)
    return out


def send_email_and_log(subject: str, message: str, recipients) -> bool:
    """
    Send one plain-text mail and log the outcome. Returns True on success.
    Mail failures never break the caller's flow.
    """
    recipients = unique_emails(*recipients)
    if not recipients:
        return False

    try:
        send_mail(
            subject,
            message,
            settings.DEFAULT_FROM_EMAIL,
            recipients,
            fail_silently=False,
        )
    except (SMTPException, OSError):
        logger.exception("Email '%s' to %s failed", subject, recipients)
        return False

    logger.info("Email '%s' sent to %s", subject, recipients)
    return True
