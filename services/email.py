"""Email sending utilities for the hearing notifier."""

from __future__ import annotations

import logging
import smtplib
import time
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from threading import RLock
from typing import Iterable, Optional, Union

from jinja2 import Environment

from services.hearings import APPEAL, FIRST_INSTANCE, format_hearing_datetime
from services.settings import SettingsManager, get_settings_manager

logger = logging.getLogger("hearings.email")


class EmailConfigError(RuntimeError):
    """Raised when the SMTP configuration is incomplete."""


@dataclass
class _SMTPConfig:
    host: str
    port: int
    username: Optional[str]
    password: Optional[str]
    use_tls: bool
    from_email: Optional[str]
    timeout_seconds: float


@dataclass
class HearingNotice:
    """Facts a court hearing reminder is rendered from."""

    plaintiff_name: str
    defendant_name: str
    hearing_datetime_iso: str
    hearing_type: str
    case_id: int


_CACHE_TTL_SECONDS = 300
_config_lock = RLock()
_cached_config: Optional[_SMTPConfig] = None
_cached_loaded_at: float = 0.0

HEARING_TYPE_LABELS = {
    FIRST_INSTANCE: "Shkallë I",
    APPEAL: "Apel",
}

_html_env = Environment(autoescape=True)
_text_env = Environment(autoescape=False, keep_trailing_newline=True)

_SUBJECT_TEMPLATE = _text_env.from_string(
    'Tomorrow, a court hearing will take place for "{{ plaintiff }}" and "{{ defendant }}" at {{ when }}'
)

_TEXT_TEMPLATE = _text_env.from_string(
    """NJOFTIM PËR SEANCË GJYQËSORE / COURT HEARING NOTIFICATION

Përkujtues i Rëndësishëm: Nesër zhvillohet seanca gjyqësore!

Detajet e Seancës / Hearing Details:
- Paditesi / Plaintiff: {{ plaintiff }}
- I Paditur / Defendant: {{ defendant }}
- Data dhe Ora / Date & Time: {{ when }}
- Lloji / Type: {{ type_label }}
- Nr. Çështjës / Case ID: #{{ case_id }}

Tomorrow, a court hearing will take place for "{{ plaintiff }}" and "{{ defendant }}" at {{ when }}

Ky është një njoftim automatik nga sistemi i menaxhimit të çështjeve ligjore.
This is an automated notification from the legal case management system.
"""
)

_HTML_TEMPLATE = _html_env.from_string(
    """<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <div style="background-color: #1e40af; color: white; padding: 20px;">
    <h2 style="margin: 0;">Njoftim për Seancë Gjyqësore</h2>
    <p style="margin: 5px 0 0 0;">Court Hearing Notification</p>
  </div>
  <div style="background-color: #f8fafc; padding: 30px;">
    <p style="font-weight: bold; color: #92400e;">Përkujtues i Rëndësishëm / Important Reminder</p>
    <table style="width: 100%; border-collapse: collapse;">
      <tr><td><strong>Paditesi / Plaintiff:</strong></td><td>{{ plaintiff }}</td></tr>
      <tr><td><strong>I Paditur / Defendant:</strong></td><td>{{ defendant }}</td></tr>
      <tr><td><strong>Data dhe Ora / Date &amp; Time:</strong></td><td>{{ when }}</td></tr>
      <tr><td><strong>Lloji / Type:</strong></td><td>{{ type_label }}</td></tr>
      <tr><td><strong>Nr. Çështjës / Case ID:</strong></td><td>#{{ case_id }}</td></tr>
    </table>
    <p>
      Tomorrow, a court hearing will take place for "<strong>{{ plaintiff }}</strong>" and
      "<strong>{{ defendant }}</strong>" at <strong>{{ when }}</strong>
    </p>
    <p style="color: #6b7280; font-size: 14px;">
      Ky është një njoftim automatik nga sistemi i menaxhimit të çështjeve ligjore.<br>
      This is an automated notification from the legal case management system.
    </p>
  </div>
</div>
"""
)


def clear_email_cache() -> None:
    """Clear cached SMTP configuration so future sends reload from disk."""
    global _cached_config, _cached_loaded_at
    with _config_lock:
        _cached_config = None
        _cached_loaded_at = 0.0


def _load_smtp_config(force: bool = False, manager: Optional[SettingsManager] = None) -> _SMTPConfig:
    """Load SMTP configuration, caching values to avoid re-deriving the secrets key per send."""
    global _cached_config, _cached_loaded_at
    now = time.monotonic()
    with _config_lock:
        if not force and _cached_config is not None and (now - _cached_loaded_at) < _CACHE_TTL_SECONDS:
            return _cached_config

        manager = manager or get_settings_manager()
        host = manager.get("smtp_host")
        port_raw = manager.get("smtp_port", 587)
        username = manager.get("smtp_username")
        use_tls = bool(manager.get("smtp_use_tls", True))
        from_email = manager.get("smtp_from_email")
        timeout_raw = manager.get("smtp_timeout_seconds", 10)

        if not host:
            raise EmailConfigError("SMTP host must be configured before sending email.")

        try:
            port = int(port_raw)
        except (TypeError, ValueError):
            raise EmailConfigError(f"Invalid SMTP port value: {port_raw!r}") from None
        if port <= 0:
            raise EmailConfigError("SMTP port must be a positive integer.")

        password: Optional[str] = None
        secret_error: Optional[Exception] = None
        try:
            password = manager.get_secret("smtp_password", None)
        except RuntimeError as exc:
            secret_error = exc
        if not password:
            password = manager.get("smtp_password") or None

        if username and not password:
            raise EmailConfigError(
                "SMTP password is not available. Store it with set_secret('smtp_password', ...)."
            ) from secret_error

        try:
            timeout_seconds = float(timeout_raw)
        except (TypeError, ValueError):
            timeout_seconds = 10.0
        if timeout_seconds <= 0:
            timeout_seconds = 10.0

        _cached_config = _SMTPConfig(
            host=host,
            port=port,
            username=username or None,
            password=password,
            use_tls=use_tls,
            from_email=from_email or None,
            timeout_seconds=timeout_seconds,
        )
        _cached_loaded_at = time.monotonic()
        return _cached_config


def _as_list(recipient: Union[str, Iterable[str]]) -> list[str]:
    if isinstance(recipient, str):
        return [recipient]
    return list(recipient)


def send_email(
    recipient: Union[str, Iterable[str]],
    subject: str,
    body: str,
    *,
    html_body: Optional[str] = None,
    from_email: Optional[str] = None,
    _config: Optional[_SMTPConfig] = None,
) -> None:
    config = _config or _load_smtp_config()

    recipients = _as_list(recipient)
    if not recipients:
        raise ValueError("At least one recipient must be provided")

    sender = from_email or config.from_email
    if not sender:
        raise EmailConfigError("No sender address given and smtp_from_email is not configured.")

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg.set_content(body)
    if html_body:
        msg.add_alternative(html_body, subtype="html")

    started = time.perf_counter()
    try:
        with smtplib.SMTP(config.host, config.port, timeout=config.timeout_seconds) as smtp:
            if config.use_tls:
                smtp.starttls()
            if config.username and config.password:
                smtp.login(config.username, config.password)
            smtp.send_message(msg)
    except Exception:
        logger.exception("Failed to send message to %s", recipients)
        raise
    logger.info(
        "Email sent to %s in %dms", recipients, int((time.perf_counter() - started) * 1000)
    )


def _display_datetime(iso_value: str) -> str:
    try:
        return format_hearing_datetime(datetime.fromisoformat(iso_value))
    except ValueError:
        return iso_value


def render_court_hearing_notification(notice: HearingNotice) -> tuple[str, str, str]:
    """Return ``(subject, text_body, html_body)`` for a hearing reminder."""
    context = {
        "plaintiff": notice.plaintiff_name,
        "defendant": notice.defendant_name,
        "when": _display_datetime(notice.hearing_datetime_iso),
        "type_label": HEARING_TYPE_LABELS.get(notice.hearing_type, notice.hearing_type),
        "case_id": notice.case_id,
    }
    return (
        _SUBJECT_TEMPLATE.render(**context),
        _TEXT_TEMPLATE.render(**context),
        _HTML_TEMPLATE.render(**context),
    )


def send_court_hearing_notification(
    recipient_email: str,
    sender_email: str,
    notice: HearingNotice,
) -> bool:
    """Deliver a hearing reminder; report failure as ``False`` rather than raising."""
    subject, text_body, html_body = render_court_hearing_notification(notice)
    try:
        send_email(
            recipient_email,
            subject,
            text_body,
            html_body=html_body,
            from_email=sender_email,
        )
    except EmailConfigError as exc:
        logger.error("Hearing reminder for case #%s not sent: %s", notice.case_id, exc)
        return False
    except Exception:
        # send_email already logged the traceback.
        return False
    return True
