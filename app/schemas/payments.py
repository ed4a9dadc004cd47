from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class WhiteLabelCreateIn(BaseModel):
    payCurrency: str = "USDT"
    network: str | None = None


class ManualVipUpgradeIn(BaseModel):
    userId: str = Field(min_length=1)
    paymentId: str | None = None
    reason: str | None = None


class PaymentStatusOut(BaseModel):
    id: str
    status: str
    amount: float
    currency: str
    createdAt: datetime
    metadata: dict[str, Any]


class WebhookAck(BaseModel):
    success: bool = True
    status: str
