"""
Payment model: one row per attempted purchase through OxaPay.

status is authoritative; metadata is an append-only audit bag
(provider track id, pay address, raw webhook fields, errors).
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Numeric, String, Text

from app.db.base import Base, JSONType


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


TERMINAL_STATUSES = frozenset({PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value})

PAYMENT_TYPE_VIP_UPGRADE = "VIP_UPGRADE"

METHOD_OXAPAY = "oxapay"
METHOD_OXAPAY_WHITELABEL = "oxapay_whitelabel"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    currency = Column(String, nullable=False, default="USD")
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_method = Column(String, nullable=False)              # oxapay / oxapay_whitelabel
    payment_type = Column(String, nullable=False, index=True)    # VIP_UPGRADE
    transaction_id = Column(String, nullable=True, index=True)   # OxaPay trackId, set once
    description = Column(Text, nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def merge_meta(self, **fields) -> dict:
        """Add keys to metadata. JSON columns don't track in-place mutation, so reassign."""
        merged = dict(self.meta or {})
        merged.update(fields)
        self.meta = merged
        return merged

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
