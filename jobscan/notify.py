"""Notification sinks for newly published opportunities."""
from __future__ import annotations

import html
import os
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from jobscan.log import get_logger
from jobscan.models import Opportunity
from jobscan.retry import retry
from jobscan.store import Store

log = get_logger(__name__)


def match_message(opportunity: Opportunity) -> str:
    return (
        f"New job match: {opportunity.title} at {opportunity.company} "
        f"({opportunity.fit_score}% fit)"
    )


class NotificationSink(ABC):
    @abstractmethod
    def notify(self, user_id: str, message: str, opportunity: Opportunity) -> None:
        ...

    def flush(self, user_id: str) -> None:
        """Called once at the end of a scan; digest-style sinks deliver here."""


class StoreNotificationSink(NotificationSink):
    """Writes an unread alert row linked to the opportunity."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def notify(self, user_id: str, message: str, opportunity: Opportunity) -> None:
        self.store.add_alert(user_id, message, opportunity_id=opportunity.id, kind="NEW_JOB")


@retry(max_attempts=3, base_delay=3.0, retryable=(smtplib.SMTPException, OSError))
def _smtp_send(
    host: str, port: int, user: str, password: str,
    from_addr: str, to_addr: str, msg: MIMEMultipart,
) -> None:
    with smtplib.SMTP(host, port, timeout=30) as server:
        server.starttls()
        server.login(user, password)
        server.sendmail(from_addr, [to_addr], msg.as_string())


def smtp_configured() -> bool:
    return all(os.environ.get(k, "").strip() for k in ("SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD"))


def _digest_html(matches: list[Opportunity]) -> str:
    rows = "\n".join(
        "<tr>"
        f'<td style="border:1px solid #ddd;padding:5px 8px">{o.fit_score}%</td>'
        f'<td style="border:1px solid #ddd;padding:5px 8px">'
        f'<a href="{html.escape(o.source_url, quote=True)}" style="color:#1a73e8">{html.escape(o.title)}</a></td>'
        f'<td style="border:1px solid #ddd;padding:5px 8px">{html.escape(o.company)}</td>'
        f'<td style="border:1px solid #ddd;padding:5px 8px">{html.escape(o.location or "")}</td>'
        "</tr>"
        for o in matches
    )
    head = "".join(
        f'<th style="border:1px solid #ddd;padding:6px 8px;background:#f5f7fa;text-align:left">{h}</th>'
        for h in ("Fit", "Title", "Company", "Location")
    )
    return f"""<div style="font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;max-width:900px;margin:0 auto;padding:16px;color:#333">
<h2 style="margin:0 0 8px;color:#2c3e50">{len(matches)} new job match{'es' if len(matches) != 1 else ''}</h2>
<table style="border-collapse:collapse;width:100%;font-size:13px;margin:8px 0">
<tr>{head}</tr>
{rows}
</table>
</div>"""


class EmailNotificationSink(NotificationSink):
    """Collects a scan's matches and mails them as one digest on ``flush``.

    SMTP settings come from SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD
    and FROM_EMAIL. The recipient is the user's stored email, else
    ``default_to``.
    """

    def __init__(self, store: Store | None = None, default_to: str = "") -> None:
        self.store = store
        self.default_to = default_to
        self._pending: dict[str, list[Opportunity]] = {}

    def notify(self, user_id: str, message: str, opportunity: Opportunity) -> None:
        self._pending.setdefault(user_id, []).append(opportunity)

    def _recipient(self, user_id: str) -> str:
        email = self.store.get_user_email(user_id) if self.store is not None else None
        return (email or self.default_to or os.environ.get("TO_EMAIL", "")).strip()

    def flush(self, user_id: str) -> None:
        matches = self._pending.pop(user_id, [])
        if matches:
            self.send_digest(user_id, matches)

    def send_digest(self, user_id: str, matches: list[Opportunity]) -> tuple[bool, str]:
        host = os.environ.get("SMTP_HOST", "").strip()
        user = os.environ.get("SMTP_USER", "").strip()
        password = os.environ.get("SMTP_PASSWORD", "").strip()
        from_addr = os.environ.get("FROM_EMAIL", user).strip()
        to_addr = self._recipient(user_id)
        if not all([host, user, password, to_addr]):
            log.debug("SMTP not configured, skipping digest for %s", user_id)
            return False, "SMTP not configured"
        try:
            port = int(os.environ.get("SMTP_PORT", "587").strip())
        except ValueError:
            port = 587

        date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"{len(matches)} new job matches – {date}"
        msg["From"] = from_addr
        msg["To"] = to_addr
        plain = "\n".join(f"- {match_message(o)}\n  {o.source_url}" for o in matches)
        msg.attach(MIMEText(plain, "plain", "utf-8"))
        msg.attach(MIMEText(_digest_html(matches), "html", "utf-8"))

        try:
            _smtp_send(host, port, user, password, from_addr, to_addr, msg)
        except (smtplib.SMTPException, OSError) as exc:
            log.error("Digest email to %s failed: %s", to_addr, exc)
            return False, str(exc)[:150]
        log.info("Digest with %d matches sent to %s", len(matches), to_addr)
        return True, "Email sent"


class CompositeSink(NotificationSink):
    def __init__(self, *sinks: NotificationSink) -> None:
        self.sinks = list(sinks)

    def notify(self, user_id: str, message: str, opportunity: Opportunity) -> None:
        for sink in self.sinks:
            sink.notify(user_id, message, opportunity)

    def flush(self, user_id: str) -> None:
        for sink in self.sinks:
            sink.flush(user_id)


def default_sink(store: Store, notify_email: str = "") -> NotificationSink:
    if smtp_configured():
        return CompositeSink(StoreNotificationSink(store), EmailNotificationSink(store, notify_email))
    return StoreNotificationSink(store)
