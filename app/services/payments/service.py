"""
PaymentService: VIP upgrade payments through OxaPay.

Responsibilities:
- Create VIP payments (hosted invoice or white-label address)
- Status polling, cancel, history for the owner
- Admin override: manual VIP upgrade, list of stuck PENDING payments
- Payment config / currency listing for the frontend

Lifecycle: PENDING -> COMPLETED | FAILED. Automated paths (webhook, user cancel)
only ever move a row out of PENDING; see webhook.py for reconciliation.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.payment import (
    METHOD_OXAPAY,
    METHOD_OXAPAY_WHITELABEL,
    PAYMENT_TYPE_VIP_UPGRADE,
    Payment,
    PaymentStatus,
)
from app.models.user import User
from app.services.audit.service import AuditService
from app.services.errors import (
    BadRequestError,
    ConfigurationError,
    NotFoundError,
    PaymentGatewayError,
    StateConflictError,
)
from app.services.notifications.service import NotificationService
from app.services.oxapay.client import (
    FALLBACK_CURRENCIES,
    OxaPayClient,
    default_network,
)
from app.services.payments.webhook import OxaPayCallback, VipWebhookHandler, WebhookResult
from app.services.users.service import UserService
from app.utils.metrics import payments_cancelled_total, payments_created_total, vip_upgrades_total

logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEY = "your-api-key-here"
SANDBOX_MERCHANT = "sandbox"


def vip_price() -> float:
    return settings.vip_test_price if settings.payment_test_mode else settings.vip_price


def vip_under_paid_cover() -> float:
    return settings.vip_test_under_paid_cover if settings.payment_test_mode else settings.vip_under_paid_cover


def vip_description() -> str:
    if settings.payment_test_mode:
        return f"VIP Membership - TEST MODE (${vip_price():g})"
    return "VIP Membership - Lifetime Access"


def check_production_config() -> None:
    """Refuse to take real money with placeholder credentials or a localhost callback URL."""
    if settings.payment_test_mode:
        return
    if not settings.oxapay_api_key or settings.oxapay_api_key == PLACEHOLDER_API_KEY:
        raise ConfigurationError("OXAPAY_API_KEY not configured for production")
    if not settings.oxapay_merchant_id or settings.oxapay_merchant_id == SANDBOX_MERCHANT:
        raise ConfigurationError("OXAPAY_MERCHANT_ID not configured for production")
    if not settings.base_url or "localhost" in settings.base_url:
        raise ConfigurationError("BASE_URL must be set to production URL (not localhost)")


class PaymentService:
    def __init__(self, db: Session, gateway: OxaPayClient | None = None):
        self.db = db
        self._gateway = gateway
        self.audit = AuditService(db)

    @property
    def gateway(self) -> OxaPayClient:
        if self._gateway is None:
            self._gateway = OxaPayClient()
        return self._gateway

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _start_vip_payment(self, user: User, method: str, extra_meta: dict[str, Any] | None = None) -> Payment:
        """Common prologue: guards, then a committed PENDING row the gateway can reference by id."""
        check_production_config()
        if user.is_vip:
            raise BadRequestError("You are already a VIP member")

        payment = Payment(
            user_id=user.id,
            amount=vip_price(),
            currency=settings.vip_currency,
            status=PaymentStatus.PENDING.value,
            payment_method=method,
            payment_type=PAYMENT_TYPE_VIP_UPGRADE,
            description=vip_description(),
            meta={
                "userEmail": user.email,
                "username": user.username,
                "paymentType": PAYMENT_TYPE_VIP_UPGRADE,
                "testMode": settings.payment_test_mode,
                **(extra_meta or {}),
            },
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        logger.info(
            "payment_created",
            extra={"payment_id": payment.id, "user_id": user.id, "status": payment.status},
        )
        return payment

    def _fail_payment(self, payment: Payment, method: str, error: Exception) -> PaymentGatewayError:
        """Gateway call failed: the row goes FAILED (it never reached the provider) and is committed."""
        self.db.rollback()
        self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
            .values(status=PaymentStatus.FAILED.value)
        )
        self.db.refresh(payment)
        payment.merge_meta(error=str(error))
        self.db.commit()
        payments_created_total.labels(method=method, outcome="gateway_error").inc()
        logger.error(
            "payment_gateway_failed",
            extra={"payment_id": payment.id, "user_id": payment.user_id, "error": str(error)},
        )
        return PaymentGatewayError("Failed to create payment", payment_id=payment.id)

    def _notify_created(self, payment: Payment, user: User) -> None:
        NotificationService(self.db).notify_payment_created(payment.id, user, float(payment.amount))

    def create_vip_invoice(self, user: User) -> dict[str, Any]:
        """Hosted-page invoice. Returns {paymentId, payLink, trackId, amount, currency, testMode}."""
        payment = self._start_vip_payment(user, METHOD_OXAPAY)
        try:
            invoice = self.gateway.create_invoice(
                amount=float(payment.amount),
                currency=payment.currency,
                order_id=payment.id,
                callback_url=settings.vip_webhook_url,
                return_url=f"{settings.base_url}/payment/success?orderId={payment.id}",
                description=payment.description,
                email=user.email,
                under_paid_cover=vip_under_paid_cover(),
                fee_paid_by_payer=0,
            )
        except Exception as e:
            raise self._fail_payment(payment, METHOD_OXAPAY, e) from e

        payment.transaction_id = invoice.track_id
        payment.merge_meta(trackId=invoice.track_id, payLink=invoice.pay_link)
        self.audit.log(
            "PAYMENT_CREATE",
            "Payment",
            payment.id,
            user_id=user.id,
            username=user.username,
            details={
                "amount": float(payment.amount),
                "currency": payment.currency,
                "trackId": invoice.track_id,
                "type": PAYMENT_TYPE_VIP_UPGRADE,
            },
        )
        self.db.commit()
        payments_created_total.labels(method=METHOD_OXAPAY, outcome="created").inc()
        logger.info(
            "payment_invoice_created",
            extra={"payment_id": payment.id, "user_id": user.id, "track_id": invoice.track_id},
        )
        self._notify_created(payment, user)
        return {
            "paymentId": payment.id,
            "payLink": invoice.pay_link,
            "trackId": invoice.track_id,
            "amount": float(payment.amount),
            "currency": payment.currency,
            "testMode": settings.payment_test_mode,
        }

    def create_vip_white_label(
        self, user: User, pay_currency: str | None = None, network: str | None = None
    ) -> dict[str, Any]:
        """White-label payment: deposit address and QR code rendered on our own page."""
        pay_currency = (pay_currency or "USDT").upper()
        network = network or default_network(pay_currency)
        payment = self._start_vip_payment(
            user,
            METHOD_OXAPAY_WHITELABEL,
            extra_meta={"payCurrency": pay_currency, "network": network},
        )
        try:
            wl = self.gateway.create_white_label_payment(
                amount=float(payment.amount),
                currency=payment.currency,
                pay_currency=pay_currency,
                network=network,
                order_id=payment.id,
                callback_url=settings.vip_webhook_url,
                description=payment.description,
                email=user.email,
                under_paid_cover=vip_under_paid_cover(),
                fee_paid_by_payer=0,
                lifetime=settings.oxapay_white_label_lifetime_minutes,
            )
        except Exception as e:
            raise self._fail_payment(payment, METHOD_OXAPAY_WHITELABEL, e) from e

        payment.transaction_id = wl.track_id
        payment.merge_meta(
            trackId=wl.track_id,
            address=wl.address,
            payAmount=wl.pay_amount,
            payCurrency=wl.pay_currency,
            network=wl.network,
            qrCode=wl.qr_code,
            expiredAt=wl.expired_at,
            rate=wl.rate,
        )
        self.audit.log(
            "PAYMENT_CREATE",
            "Payment",
            payment.id,
            user_id=user.id,
            username=user.username,
            details={
                "amount": float(payment.amount),
                "currency": payment.currency,
                "payCurrency": wl.pay_currency,
                "trackId": wl.track_id,
                "type": "VIP_UPGRADE_WHITELABEL",
                "network": wl.network,
            },
        )
        self.db.commit()
        payments_created_total.labels(method=METHOD_OXAPAY_WHITELABEL, outcome="created").inc()
        logger.info(
            "payment_white_label_created",
            extra={"payment_id": payment.id, "user_id": user.id, "track_id": wl.track_id},
        )
        self._notify_created(payment, user)
        return {
            "paymentId": payment.id,
            "payment": {
                "id": payment.id,
                "amount": float(payment.amount),
                "currency": payment.currency,
                "status": payment.status,
                "trackId": wl.track_id,
                "address": wl.address,
                "payAmount": wl.pay_amount,
                "payCurrency": wl.pay_currency,
                "network": wl.network,
                "qrCode": wl.qr_code,
                "expiredAt": wl.expired_at,
                "rate": wl.rate,
            },
            "testMode": settings.payment_test_mode,
        }

    # ------------------------------------------------------------------
    # Owner queries / actions
    # ------------------------------------------------------------------

    def get(self, payment_id: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.id == payment_id).one_or_none()

    def get_status_for_user(self, order_id: str, user: User) -> Payment:
        payment = self.get(order_id)
        if payment is None or payment.user_id != user.id:
            raise NotFoundError("Payment not found")
        return payment

    def cancel(self, payment_id: str, user: User) -> Payment:
        """User abandons a PENDING payment. A late Paid webhook for it will not be honored."""
        payment = self.get(payment_id)
        if payment is None or payment.user_id != user.id:
            raise NotFoundError("Payment not found")
        res = self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
            .values(status=PaymentStatus.FAILED.value)
        )
        if res.rowcount == 0:
            self.db.rollback()
            raise StateConflictError("Only pending payments can be cancelled")
        self.db.refresh(payment)
        payment.merge_meta(cancelledByUser=True, cancelledAt=datetime.now(timezone.utc).isoformat())
        self.audit.log(
            "PAYMENT_CANCEL",
            "Payment",
            payment.id,
            user_id=user.id,
            username=user.username,
            details={"amount": float(payment.amount), "currency": payment.currency},
        )
        self.db.commit()
        payments_cancelled_total.inc()
        logger.info("payment_cancelled", extra={"payment_id": payment.id, "user_id": user.id})
        return payment

    def history(self, user: User) -> list[dict[str, Any]]:
        payments = (
            self.db.query(Payment)
            .filter(Payment.user_id == user.id)
            .order_by(Payment.created_at.desc())
            .all()
        )
        result = []
        for p in payments:
            meta = p.meta or {}
            result.append({
                "id": p.id,
                "amount": float(p.amount),
                "currency": p.currency,
                "status": p.status,
                "paymentMethod": p.payment_method,
                "description": p.description,
                "transactionId": p.transaction_id,
                "metadata": meta,
                "createdAt": p.created_at,
                "updatedAt": p.updated_at,
                "paymentType": p.payment_type or meta.get("paymentType") or "UNKNOWN",
                "testMode": bool(meta.get("testMode", False)),
                "trackId": meta.get("trackId"),
                "payLink": meta.get("payLink"),
            })
        return result

    def recent_pending(self, user: User, now: datetime | None = None) -> Payment | None:
        """Newest PENDING payment inside the resume window, unless its white-label address has expired."""
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=settings.recent_pending_window_hours)
        payment = (
            self.db.query(Payment)
            .filter(
                Payment.user_id == user.id,
                Payment.status == PaymentStatus.PENDING.value,
                Payment.created_at >= since,
            )
            .order_by(Payment.created_at.desc())
            .first()
        )
        if payment is None:
            return None
        expired_at = (payment.meta or {}).get("expiredAt")
        if expired_at and now.timestamp() > float(expired_at):
            return None
        return payment

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def list_payments(self, status: str | None = None, limit: int = 100, offset: int = 0) -> list[Payment]:
        q = self.db.query(Payment)
        if status:
            q = q.filter(Payment.status == status)
        return q.order_by(Payment.created_at.desc()).offset(offset).limit(limit).all()

    def pending_vip_payments(self) -> list[tuple[Payment, User]]:
        """PENDING VIP payments whose owner is still not VIP: candidates for a manual upgrade."""
        return (
            self.db.query(Payment, User)
            .join(User, User.id == Payment.user_id)
            .filter(
                Payment.status == PaymentStatus.PENDING.value,
                Payment.payment_type == PAYMENT_TYPE_VIP_UPGRADE,
                User.is_vip.is_(False),
            )
            .order_by(Payment.created_at.desc())
            .all()
        )

    def sync_with_gateway(self, payment_id: str) -> WebhookResult:
        """Ask OxaPay for the current status of a stuck payment and reconcile it like a webhook delivery."""
        payment = self.get(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        if not payment.transaction_id:
            raise StateConflictError("Payment has no gateway trackId")
        try:
            info = self.gateway.get_payment_info(payment.transaction_id)
        except Exception as e:
            logger.warning(
                "payment_inquiry_failed",
                extra={"payment_id": payment.id, "track_id": payment.transaction_id, "error": str(e)},
            )
            raise PaymentGatewayError("Failed to get payment info", payment_id=payment.id) from e
        if not info.get("status"):
            raise PaymentGatewayError("Inquiry response without status", payment_id=payment.id)

        callback = OxaPayCallback.model_validate({**info, "orderId": payment.id})
        logger.info(
            "payment_inquiry_synced",
            extra={"payment_id": payment.id, "webhook_status": callback.status},
        )
        return VipWebhookHandler(self.db).handle(callback)

    def manual_vip_upgrade(
        self,
        admin_username: str,
        user_id: str,
        payment_id: str | None = None,
        reason: str | None = None,
    ) -> tuple[User, bool]:
        """
        Admin override for payments whose webhook never arrived.
        Returns (user, upgraded); upgraded is False when the user already was VIP.
        The referenced payment may be completed from PENDING or FAILED.
        """
        users = UserService(self.db)
        user = users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.is_vip:
            return user, False

        payment = None
        if payment_id:
            payment = self.get(payment_id)
            if payment is None or payment.user_id != user_id:
                raise NotFoundError("Payment not found")

        users.grant_vip(user_id)
        reason = reason or "Manual upgrade by admin"
        if payment is not None:
            res = self.db.execute(
                update(Payment)
                .where(
                    Payment.id == payment.id,
                    Payment.status.in_([PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]),
                )
                .values(status=PaymentStatus.COMPLETED.value)
            )
            if res.rowcount:
                self.db.refresh(payment)
                payment.merge_meta(
                    manualUpgrade=True,
                    upgradedBy=admin_username,
                    upgradedAt=datetime.now(timezone.utc).isoformat(),
                    reason=reason,
                )
        self.audit.log(
            "MANUAL_VIP_UPGRADE",
            "User",
            user_id,
            user_id=None,
            username=admin_username,
            details={
                "targetUser": user.username,
                "targetEmail": user.email,
                "paymentId": payment_id,
                "reason": reason,
            },
        )
        self.db.commit()
        self.db.refresh(user)
        vip_upgrades_total.labels(source="manual").inc()
        logger.info(
            "manual_vip_upgrade",
            extra={"user_id": user_id, "payment_id": payment_id},
        )
        return user, True

    # ------------------------------------------------------------------
    # Frontend config
    # ------------------------------------------------------------------

    @staticmethod
    def payment_config() -> dict[str, Any]:
        return {
            "testMode": settings.payment_test_mode,
            "sandbox": settings.oxapay_merchant_id == SANDBOX_MERCHANT,
            "pricing": {
                "vip": {
                    "production": settings.vip_price,
                    "test": settings.vip_test_price,
                    "current": vip_price(),
                },
            },
        }

    def list_currencies(self) -> tuple[list[dict[str, Any]], bool]:
        """(currencies, fallback). Provider failure degrades to a static list rather than an error."""
        start = time.time()
        try:
            currencies = self.gateway.list_currencies()
        except Exception as e:
            logger.warning(
                "oxapay_currencies_fallback",
                extra={"error": str(e), "latency_ms": int((time.time() - start) * 1000)},
            )
            return [dict(c) for c in FALLBACK_CURRENCIES], True
        if not currencies:
            return [dict(c) for c in FALLBACK_CURRENCIES], True
        return currencies, False
