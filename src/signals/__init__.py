from src.signals.notifications import (
    NotificationQueue,
    NotificationSink,
    format_alert_body,
    format_alert_title,
)

__all__ = [
    "NotificationQueue",
    "NotificationSink",
    "format_alert_body",
    "format_alert_title",
]
