"""
VIP payment routes: creation, OxaPay webhook, status polling, cancel, history.
"""
import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.user import User
from app.schemas.payments import PaymentStatusOut, WebhookAck, WhiteLabelCreateIn
from app.services.auth.session import get_current_user
from app.services.payments.service import PaymentService
from app.services.payments.webhook import OxaPayCallback, VipWebhookHandler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/payment/create-vip")
def create_vip(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = PaymentService(db).create_vip_invoice(user)
    return {"message": "VIP payment created successfully", **result}


@router.post("/payment/create-vip-whitelabel")
def create_vip_white_label(
    body: WhiteLabelCreateIn | None = Body(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    body = body or WhiteLabelCreateIn()
    result = PaymentService(db).create_vip_white_label(user, body.payCurrency, body.network)
    return {"message": "VIP payment created successfully", **result}


@router.post("/payment/vip-webhook", response_model=WebhookAck)
def vip_webhook(callback: OxaPayCallback, db: Session = Depends(get_db)):
    """OxaPay callback. Unauthenticated; the body is trusted as delivered."""
    result = VipWebhookHandler(db).handle(callback)
    return WebhookAck(success=True, status=result.status.value)


@router.get("/payment/vip-webhook")
def vip_webhook_probe():
    """Reachability check for the callback URL."""
    return {"message": "VIP webhook endpoint is reachable", "method": "POST"}


@router.get("/payment/status/{order_id}", response_model=PaymentStatusOut)
def payment_status(order_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    payment = PaymentService(db).get_status_for_user(order_id, user)
    return PaymentStatusOut(
        id=payment.id,
        status=payment.status,
        amount=float(payment.amount),
        currency=payment.currency,
        createdAt=payment.created_at,
        metadata=payment.meta or {},
    )


@router.post("/payment/cancel/{payment_id}")
def cancel_payment(payment_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    PaymentService(db).cancel(payment_id, user)
    return {"success": True, "message": "Payment cancelled successfully"}


@router.get("/payment/recent-pending")
def recent_pending(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    payment = PaymentService(db).recent_pending(user)
    if payment is None:
        return {"payment": None}
    meta = payment.meta or {}
    return {
        "payment": {
            "id": payment.id,
            "amount": float(payment.amount),
            "currency": payment.currency,
            "createdAt": payment.created_at,
            "payCurrency": meta.get("payCurrency") or "USDT",
        }
    }


@router.get("/payment/config")
def payment_config():
    return PaymentService.payment_config()


@router.get("/payment/currencies")
def payment_currencies(db: Session = Depends(get_db)):
    currencies, fallback = PaymentService(db).list_currencies()
    return {"currencies": currencies, "fallback": fallback}


@router.get("/payments/history")
def payment_history(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"payments": PaymentService(db).history(user)}
