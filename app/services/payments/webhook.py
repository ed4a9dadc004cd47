"""
OxaPay VIP webhook reconciliation.

The provider delivers at-least-once and in no particular order, so every step is
idempotent: status only leaves PENDING through a conditional update, the VIP
grant is a set, and side effects (activity log, admin notification) fire only
for the delivery that actually moved the row.

No signature verification: callbacks are trusted as delivered.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.payment import PAYMENT_TYPE_VIP_UPGRADE, Payment, PaymentStatus
from app.models.user import User
from app.services.audit.service import AuditService
from app.services.errors import BadRequestError, NotFoundError
from app.services.notifications.service import NotificationService
from app.services.oxapay.client import FAILURE_STATUSES, PAID, map_payment_status
from app.services.users.service import UserService
from app.utils.metrics import payment_webhooks_total, vip_upgrades_total

logger = logging.getLogger(__name__)


class OxaPayCallback(BaseModel):
    """Callback body. Unknown fields are kept: the provider adds fields without notice."""

    model_config = ConfigDict(extra="allow")

    orderId: str
    status: str
    trackId: str | None = None
    amount: float | str | None = None
    currency: str | None = None
    payAmount: float | str | None = None
    payCurrency: str | None = None
    txID: str | None = None
    network: str | None = None
    date: int | str | None = None

    @field_validator("trackId", mode="before")
    @classmethod
    def _track_id_to_str(cls, v: Any) -> Any:
        return str(v) if v is not None else None


class WebhookResult(BaseModel):
    payment_id: str
    status: PaymentStatus
    transitioned: bool
    vip_granted: bool


class VipWebhookHandler:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditService(db)

    def handle(self, callback: OxaPayCallback, now: datetime | None = None) -> WebhookResult:
        now = now or datetime.now(timezone.utc)
        logger.info(
            "vip_webhook_received",
            extra={"order_id": callback.orderId, "track_id": callback.trackId, "webhook_status": callback.status},
        )

        payment = self.db.query(Payment).filter(Payment.id == callback.orderId).one_or_none()
        if payment is None:
            logger.warning("vip_webhook_payment_not_found", extra={"order_id": callback.orderId})
            raise NotFoundError("Payment not found")
        if payment.payment_type != PAYMENT_TYPE_VIP_UPGRADE:
            logger.warning("vip_webhook_wrong_payment_type", extra={"order_id": callback.orderId})
            raise BadRequestError("Invalid payment type")

        mapped = map_payment_status(callback.status)

        transitioned = False
        if mapped != PaymentStatus.PENDING:
            res = self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
                .values(status=mapped.value)
            )
            transitioned = res.rowcount > 0
            self.db.refresh(payment)

        # Raw fields are recorded for every delivery, including ones that lost the race.
        # Absent fields never erase what creation or an earlier delivery stored.
        raw = {
            "payAmount": callback.payAmount,
            "payCurrency": callback.payCurrency,
            "txID": callback.txID,
            "network": callback.network,
        }
        fields = {k: v for k, v in raw.items() if v is not None}
        if callback.trackId:
            if payment.transaction_id is None:
                payment.transaction_id = callback.trackId
                fields["trackId"] = callback.trackId
            elif callback.trackId != payment.transaction_id:
                logger.warning(
                    "vip_webhook_track_id_mismatch",
                    extra={"payment_id": payment.id, "track_id": callback.trackId},
                )
                fields["webhookTrackId"] = callback.trackId
        payment.merge_meta(
            **fields,
            webhookStatus=callback.status,
            webhookReceivedAt=now.isoformat(),
        )

        stored = PaymentStatus(payment.status)
        user = self.db.query(User).filter(User.id == payment.user_id).one_or_none()

        vip_granted = False
        if stored == PaymentStatus.COMPLETED and callback.status == PAID:
            vip_granted = UserService(self.db).grant_vip(payment.user_id)

        if transitioned:
            self._log_transition(payment, user, callback, stored)

        self.db.commit()

        payment_webhooks_total.labels(
            webhook_status=callback.status, transitioned=str(transitioned).lower()
        ).inc()
        if vip_granted:
            vip_upgrades_total.labels(source="webhook").inc()
        logger.info(
            "vip_webhook_processed",
            extra={
                "payment_id": payment.id,
                "user_id": payment.user_id,
                "status": stored.value,
                "webhook_status": callback.status,
            },
        )

        if transitioned and stored == PaymentStatus.COMPLETED:
            NotificationService(self.db).notify_payment_completed(payment.id, user, float(payment.amount))

        return WebhookResult(
            payment_id=payment.id,
            status=stored,
            transitioned=transitioned,
            vip_granted=vip_granted,
        )

    def _log_transition(
        self,
        payment: Payment,
        user: User | None,
        callback: OxaPayCallback,
        stored: PaymentStatus,
    ) -> None:
        username = user.username if user else None
        if stored == PaymentStatus.COMPLETED:
            self.audit.log(
                "PAYMENT_COMPLETE",
                "VIPUpgrade",
                payment.id,
                user_id=payment.user_id,
                username=username,
                details={
                    "amount": callback.amount,
                    "currency": callback.currency,
                    "payAmount": callback.payAmount,
                    "payCurrency": callback.payCurrency,
                    "txID": callback.txID,
                    "network": callback.network,
                    "trackId": callback.trackId,
                    "testMode": settings.payment_test_mode,
                },
            )
        elif callback.status in FAILURE_STATUSES:
            self.audit.log(
                "PAYMENT_FAIL",
                "VIPUpgrade",
                payment.id,
                user_id=payment.user_id,
                username=username,
                details={
                    "amount": callback.amount,
                    "currency": callback.currency,
                    "status": callback.status,
                    "trackId": callback.trackId,
                },
            )
