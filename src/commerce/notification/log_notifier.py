"""Notifier that only writes a structured log line.

Default adapter outside tests: message delivery (email, SMS) is handled by a
separate service that tails these events.
"""

from uuid import uuid4

import structlog

from commerce.notification.port import Notifier

logger = structlog.get_logger(__name__)


class LogNotifier(Notifier):
    def notify(self, user_id: str, event_type: str, payload: dict) -> dict:
        message_id = f"log-{uuid4().hex[:12]}"
        logger.info(
            "Notification emitted",
            message_id=message_id,
            user_id=user_id,
            event_type=event_type,
            payload=payload,
        )
        return {"message_id": message_id, "status": "sent"}
