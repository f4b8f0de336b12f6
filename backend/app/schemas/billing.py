"""API schemas for billing webhook endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..billing import WebhookEvent


class WebhookEnvelope(BaseModel):
    """Raw delivery body as posted by the billing provider."""

    id: Optional[str] = None
    event_type: str
    occurred_at: Optional[Union[int, datetime]] = None
    content: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    def to_event(self) -> WebhookEvent:
        """Validate the content sections into a :class:`WebhookEvent`."""

        return WebhookEvent.model_validate(
            {
                "id": self.id,
                "event_type": self.event_type,
                "occurred_at": self.occurred_at,
                "content": self.content,
            }
        )


class WebhookAck(BaseModel):
    success: bool = True
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


__all__ = ["WebhookAck", "WebhookEnvelope"]
