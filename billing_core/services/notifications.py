import json
from typing import Optional
from flask import current_app
from billing_core.extensions import db
from billing_core.models import Notification
from billing_core.models.notification import SEVERITIES


def notify(user_id: str, title: str, message: str, severity: str = "info", link: Optional[str] = None) -> int:
    """
    Write an in-app notification for ``user_id``. Returns the notification id.
    Callers treat this as fire-and-forget: the effect dispatcher catches and logs
    anything raised here.
    """
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown notification severity: {severity!r}")

    row = Notification(user_id=user_id, title=title, message=message, type=severity, link=link)
    db.session.add(row)
    db.session.commit()

    current_app.logger.info(json.dumps({
        "event": "notification_created",
        "user_id": user_id,
        "type": severity,
        "title": title,
    }))
    return row.id
