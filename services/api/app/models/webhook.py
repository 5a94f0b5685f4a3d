from __future__ import annotations

from pydantic import BaseModel


class WebhookAck(BaseModel):
    # ok | ignored | duplicate
    status: str
    detail: str = ""
