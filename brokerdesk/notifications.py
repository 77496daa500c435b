from __future__ import annotations

import json
import logging
from urllib import error as urlerror
from urllib import request as urlrequest

from brokerdesk import config
from brokerdesk.errors import NotificationError

logger = logging.getLogger(__name__)


def email_configured() -> bool:
    return bool(config.RESEND_API_KEY and config.RESEND_FROM_EMAIL)


def send_email(
    to_email: str,
    subject: str,
    text: str | None = None,
    html: str | None = None,
) -> bool:
    """Deliver one message through Resend.

    Returns False when delivery is not configured. Raises NotificationError
    when the provider rejects the message or cannot be reached.
    """
    if not email_configured():
        logger.warning("Email delivery not configured; message to %s not sent", to_email)
        return False
    payload: dict[str, object] = {
        "from": config.RESEND_FROM_EMAIL,
        "to": [to_email],
        "subject": subject,
    }
    if html:
        payload["html"] = html
    if text:
        payload["text"] = text
    req = urlrequest.Request(
        config.RESEND_API_URL,
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Authorization": f"Bearer {config.RESEND_API_KEY}",
            "Content-Type": "application/json",
        },
        method="POST",
    )
    try:
        with urlrequest.urlopen(req, timeout=10) as resp:
            if resp.status >= 300:
                raise NotificationError(f"No se pudo enviar el correo ({resp.status})")
    except urlerror.HTTPError as exc:
        logger.error("Resend rejected message to %s: %s", to_email, exc.code)
        raise NotificationError(f"No se pudo enviar el correo ({exc.code})") from exc
    except (urlerror.URLError, TimeoutError) as exc:
        raise NotificationError("Error de conexión. Por favor verifica tu conexión a internet.") from exc
    logger.info("Email sent to %s: %s", to_email, subject)
    return True
