"""Rescore notifications: alert generation, storage, and email.

Subscribes to ``DecisionRescored`` and ``AssumptionChanged`` and records:

  LIFECYCLE_CHANGED  a configured transition (e.g. STABLE -> AT_RISK);
                     CRITICAL when the new state is INVALIDATED
  HEALTH_DEGRADED    health crossed below ``health_degraded``;
                     CRITICAL below ``health_critical``
  ASSUMPTION_BROKEN  CRITICAL, once per affected decision when an
                     assumption becomes BROKEN
  NEEDS_REVIEW       not reviewed for ``review_after_days``; raised by
                     ``check_needs_review``, not by events
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from vigil.config.schema import VigilConfig
from vigil.engine.types import Lifecycle, as_utc, utc_now
from vigil.events.models import AssumptionChanged, DecisionRescored
from vigil.storage.database import Database
from vigil.storage.queries import (
    from_db_time,
    get_assumption,
    get_decision,
    get_decision_ids_for_assumption,
    has_notification_since,
    insert_notification,
    list_decisions,
    mark_notification_emailed,
)

logger = logging.getLogger(__name__)

LIFECYCLE_CHANGED = "LIFECYCLE_CHANGED"
HEALTH_DEGRADED = "HEALTH_DEGRADED"
ASSUMPTION_BROKEN = "ASSUMPTION_BROKEN"
NEEDS_REVIEW = "NEEDS_REVIEW"


# ---------------------------------------------------------------------------
# Alert generation
# ---------------------------------------------------------------------------

def generate_rescore_alerts(
    event: DecisionRescored,
    config: VigilConfig | None = None,
    title: str = "",
) -> list[dict[str, Any]]:
    """Alerts warranted by one rescore.

    Returns:
        List of alert dicts with: type, severity, title, message, metadata.
    """
    if config is None:
        config = VigilConfig()

    name = title or event.decision_id
    alerts: list[dict[str, Any]] = []

    transitions = {tuple(t) for t in config.alerts.transitions}
    old, new = event.old_lifecycle.value, event.new_lifecycle.value
    if (old, new) in transitions:
        alerts.append({
            "type": LIFECYCLE_CHANGED,
            "severity": "CRITICAL" if event.new_lifecycle is Lifecycle.INVALIDATED else "WARNING",
            "title": "Decision Lifecycle Changed",
            "message": f'"{name}" transitioned from {old} to {new}',
            "metadata": {"old_lifecycle": old, "new_lifecycle": new},
        })

    thresholds = config.alerts.thresholds
    degraded = thresholds.get("health_degraded", 60)
    critical = thresholds.get("health_critical", 40)
    if event.new_health < degraded <= event.old_health:
        alerts.append({
            "type": HEALTH_DEGRADED,
            "severity": "CRITICAL" if event.new_health < critical else "WARNING",
            "title": "Decision Health Degraded",
            "message": f'"{name}" has degraded to {event.new_health}% health',
            "metadata": {
                "old_health": event.old_health,
                "new_health": event.new_health,
                "lifecycle": new,
            },
        })

    return alerts


def generate_assumption_alert(
    assumption_id: str,
    decision_id: str,
    title: str = "",
    description: str = "",
) -> dict[str, Any]:
    """CRITICAL alert for one decision resting on a broken assumption."""
    name = title or decision_id
    return {
        "type": ASSUMPTION_BROKEN,
        "severity": "CRITICAL",
        "title": f"Assumption broken: {assumption_id}",
        "message": f'An assumption on decision "{name}" was marked broken',
        "metadata": {"assumption_id": assumption_id, "description": description},
    }


def generate_review_alert(
    decision_id: str,
    last_reviewed_at: datetime,
    now: datetime,
    config: VigilConfig | None = None,
    title: str = "",
) -> dict[str, Any] | None:
    """NEEDS_REVIEW alert when the last review is older than ``review_after_days``.

    INFO until ``review_overdue_days``, WARNING after.
    """
    if config is None:
        config = VigilConfig()
    thresholds = config.alerts.thresholds
    days = (as_utc(now) - as_utc(last_reviewed_at)).days
    if days < thresholds.get("review_after_days", 30):
        return None

    return {
        "type": NEEDS_REVIEW,
        "severity": "WARNING" if days > thresholds.get("review_overdue_days", 60) else "INFO",
        "title": "Decision Needs Review",
        "message": f"\"{title or decision_id}\" hasn't been reviewed in {days} days",
        "metadata": {
            "last_reviewed_at": as_utc(last_reviewed_at).isoformat(),
            "days_since_review": days,
        },
    }


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------

def build_alert_email(
    alerts: list[dict[str, Any]],
    decision_id: str,
) -> tuple[str, str]:
    """Build an HTML email for one decision's alerts.

    Returns:
        (subject, body_html) tuple.
    """
    date_str = utc_now().strftime("%Y-%m-%d")
    top = "CRITICAL" if any(a["severity"] == "CRITICAL" for a in alerts) else "WARNING"
    subject = f"[{top}] Decision {decision_id} - {date_str}"

    parts: list[str] = ["<html><body>"]
    parts.append(f"<h2>Decision {decision_id}</h2>")
    parts.append("<table border='1' cellpadding='4' cellspacing='0'>")
    parts.append("<tr><th>Severity</th><th>Alert</th><th>Details</th></tr>")
    for alert in alerts:
        color = "#B22222" if alert["severity"] == "CRITICAL" else "#DAA520"
        parts.append(
            f"<tr><td style='color:{color}'><b>{alert['severity']}</b></td>"
            f"<td>{alert['title']}</td>"
            f"<td>{alert['message']}</td></tr>"
        )
    parts.append("</table>")
    parts.append("<hr><p><em>Generated by Vigil</em></p>")
    parts.append("</body></html>")
    return subject, "\n".join(parts)


def send_email(
    subject: str,
    body_html: str,
    config: VigilConfig,
) -> bool:
    """Send HTML email via SMTP.

    Returns True if sent, False if failed or not configured.
    """
    email_cfg = config.alerts.email
    if not email_cfg.to or not email_cfg.from_addr or not email_cfg.app_password:
        logger.debug("Email not configured, skipping")
        return False

    try:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = email_cfg.from_addr
        msg["To"] = email_cfg.to
        msg.attach(MIMEText(body_html, "html"))

        with smtplib.SMTP(email_cfg.smtp_server, email_cfg.smtp_port) as server:
            server.starttls()
            server.login(email_cfg.from_addr, email_cfg.app_password)
            server.send_message(msg)

        logger.info("Email sent: %s", subject)
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email send failed: %s", e)
        return False


# ---------------------------------------------------------------------------
# Recorder
# ---------------------------------------------------------------------------

class NotificationRecorder:
    """Stores alerts for rescores and broken assumptions published on the bus."""

    def __init__(self, db: Database, config: VigilConfig | None = None, *, email: bool = False):
        self.db = db
        self.config = config or VigilConfig()
        self.email = email

    def register(self, bus: Any) -> None:
        if not self.config.alerts.enabled:
            logger.debug("Alerts disabled; recorder not subscribed")
            return
        bus.subscribe(DecisionRescored, self.on_decision_rescored)
        bus.subscribe(AssumptionChanged, self.on_assumption_changed)

    def on_decision_rescored(self, event: DecisionRescored) -> list[int]:
        row = get_decision(self.db, event.decision_id)
        title = row["title"] if row else ""
        alerts = generate_rescore_alerts(event, self.config, title=title)
        return self._record(event.decision_id, alerts)

    def on_assumption_changed(self, event: AssumptionChanged) -> list[int]:
        """Record ASSUMPTION_BROKEN for every live decision resting on a BROKEN assumption.

        Universal assumptions reach every decision of their tenant.
        """
        assumption = get_assumption(self.db, event.assumption_id)
        if assumption is None or assumption["status"] != "BROKEN":
            return []

        if assumption["scope"] == "UNIVERSAL":
            rows = list_decisions(self.db, assumption["tenant_id"])
        else:
            linked = get_decision_ids_for_assumption(self.db, event.assumption_id)
            rows = [get_decision(self.db, d) for d in linked]

        ids: list[int] = []
        for row in rows:
            if row is None or row["lifecycle"] == Lifecycle.RETIRED.value:
                continue
            alert = generate_assumption_alert(
                event.assumption_id,
                row["id"],
                title=row["title"] or "",
                description=assumption["description"] or "",
            )
            ids.extend(self._record(row["id"], [alert]))
        return ids

    def check_needs_review(self, tenant_id: str, now: datetime | None = None) -> list[int]:
        """Record NEEDS_REVIEW for decisions of ``tenant_id`` gone unreviewed too long.

        At most one reminder per review: a decision is skipped while it
        already has a NEEDS_REVIEW notification newer than its last review.
        """
        now = as_utc(now) if now is not None else utc_now()
        cutoff = now - timedelta(days=self.config.alerts.thresholds.get("review_after_days", 30))

        ids: list[int] = []
        for row in list_decisions(self.db, tenant_id):
            if row["lifecycle"] == Lifecycle.RETIRED.value:
                continue
            reviewed = from_db_time(row["last_reviewed_at"]) or from_db_time(row["created_at"])
            if reviewed is None or reviewed > cutoff:
                continue
            if has_notification_since(self.db, row["id"], NEEDS_REVIEW, reviewed):
                continue
            alert = generate_review_alert(
                row["id"], reviewed, now, self.config, title=row["title"] or ""
            )
            if alert is not None:
                ids.extend(self._record(row["id"], [alert]))
        return ids

    def _record(self, decision_id: str, alerts: list[dict[str, Any]]) -> list[int]:
        if not alerts:
            return []

        ids = [
            insert_notification(
                self.db,
                decision_id,
                alert["type"],
                alert["severity"],
                alert["title"],
                alert["message"],
                metadata=alert["metadata"],
            )
            for alert in alerts
        ]
        logger.info("Recorded %d notification(s) for %s", len(ids), decision_id)

        if self.email:
            subject, body = build_alert_email(alerts, decision_id)
            if send_email(subject, body, self.config):
                for notification_id in ids:
                    mark_notification_emailed(self.db, notification_id)
        return ids
