"""Webhook acknowledgement schema."""

from typing import Optional

from pydantic import BaseModel


class WebhookAckResponse(BaseModel):
    status: str
    event_id: str
    event_type: str
    order_number: Optional[str] = None
    invoice_number: Optional[str] = None
