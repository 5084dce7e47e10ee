"""Delivery results for announcements and operator alerts."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class DeliveryResult(BaseModel):
    """Outcome of sending one message to a chat."""

    success: bool
    chat_id: str
    message_id: int | None = None
    attempts: int = 0
    error: str | None = None
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        if self.success:
            return f"Delivered to {self.chat_id} after {self.attempts} attempt(s)"
        return f"Undelivered to {self.chat_id} after {self.attempts} attempt(s): {self.error}"
