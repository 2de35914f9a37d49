"""Output generation: decision notifications and email."""

from vigil.output.alerts import (
    NotificationRecorder,
    build_alert_email,
    generate_assumption_alert,
    generate_rescore_alerts,
    generate_review_alert,
    send_email,
)

__all__ = [
    "NotificationRecorder",
    "build_alert_email",
    "generate_assumption_alert",
    "generate_rescore_alerts",
    "generate_review_alert",
    "send_email",
]
