"""Fake notifier — records notifications in memory for test assertions."""

from uuid import uuid4

from commerce.notification.port import Notifier


class FakeNotifier(Notifier):
    """Notifier that records messages, or fails on demand."""

    def __init__(self):
        self.sent: list[dict] = []
        self.should_succeed = True
        self.raise_error = False
        self.failure_reason = "Notification delivery failed"

    def configure(
        self,
        should_succeed: bool = True,
        raise_error: bool = False,
        failure_reason: str = "Notification delivery failed",
    ):
        """Configure the fake notifier behavior for testing."""
        self.should_succeed = should_succeed
        self.raise_error = raise_error
        self.failure_reason = failure_reason

    def notify(self, user_id: str, event_type: str, payload: dict) -> dict:
        if self.raise_error:
            raise ConnectionError(self.failure_reason)
        if not self.should_succeed:
            return {"message_id": None, "status": "failed", "error": self.failure_reason}

        message_id = f"note-{uuid4().hex[:12]}"
        self.sent.append(
            {
                "message_id": message_id,
                "user_id": user_id,
                "event_type": event_type,
                "payload": payload,
            }
        )
        return {"message_id": message_id, "status": "sent"}

    def of_type(self, event_type: str) -> list[dict]:
        return [message for message in self.sent if message["event_type"] == event_type]

    def reset(self):
        """Clear recorded notifications (useful between tests)."""
        self.sent.clear()
        self.should_succeed = True
        self.raise_error = False
