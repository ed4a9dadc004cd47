"""
Admin API: payments, manual VIP upgrade, activity log, admin notifications.
All routes require X-Admin-Key.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.payments import ManualVipUpgradeIn
from app.services.audit.service import AuditService
from app.services.auth.session import require_admin
from app.services.notifications.service import NotificationService
from app.services.payments.service import PaymentService

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# ---------- Payments ----------
@router.get("/payments")
def payments_list(
    status: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    items = PaymentService(db).list_payments(status=status, limit=limit, offset=offset)
    return {
        "items": [
            {
                "id": p.id,
                "userId": p.user_id,
                "amount": float(p.amount),
                "currency": p.currency,
                "status": p.status,
                "paymentMethod": p.payment_method,
                "paymentType": p.payment_type,
                "transactionId": p.transaction_id,
                "metadata": p.meta or {},
                "createdAt": p.created_at,
            }
            for p in items
        ]
    }


@router.get("/payments/pending-vip")
def payments_pending_vip(db: Session = Depends(get_db)):
    rows = PaymentService(db).pending_vip_payments()
    payments = [
        {
            "paymentId": p.id,
            "userId": u.id,
            "username": u.username,
            "email": u.email,
            "amount": float(p.amount),
            "currency": p.currency,
            "createdAt": p.created_at,
            "transactionId": p.transaction_id,
            "metadata": p.meta or {},
        }
        for p, u in rows
    ]
    return {"count": len(payments), "payments": payments}


@router.post("/payments/{payment_id}/sync")
def payment_sync(payment_id: str, db: Session = Depends(get_db)):
    result = PaymentService(db).sync_with_gateway(payment_id)
    return {
        "paymentId": result.payment_id,
        "status": result.status.value,
        "transitioned": result.transitioned,
        "vipGranted": result.vip_granted,
    }


@router.post("/payments/manual-vip-upgrade")
def manual_vip_upgrade(
    body: ManualVipUpgradeIn,
    admin: str = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user, upgraded = PaymentService(db).manual_vip_upgrade(
        admin, body.userId, payment_id=body.paymentId, reason=body.reason
    )
    return {
        "success": True,
        "message": "User upgraded to VIP successfully" if upgraded else "User is already VIP",
        "upgraded": upgraded,
        "user": {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "isVip": user.is_vip,
            "vipUntil": user.vip_until,
        },
    }


# ---------- Activity log ----------
@router.get("/activity")
def activity_list(
    action: str | None = Query(None),
    entity_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    entries = AuditService(db).list_recent(action=action, entity_id=entity_id, limit=limit)
    return {
        "items": [
            {
                "id": e.id,
                "action": e.action,
                "entityType": e.entity_type,
                "entityId": e.entity_id,
                "userId": e.user_id,
                "username": e.username,
                "details": e.details or {},
                "createdAt": e.created_at,
            }
            for e in entries
        ]
    }


# ---------- Notifications ----------
@router.get("/notifications")
def admin_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    items = NotificationService(db).list_admin(unread_only=unread_only, limit=limit)
    return {
        "notifications": [
            {
                "id": n.id,
                "type": n.type,
                "title": n.title,
                "message": n.message,
                "link": n.link,
                "metadata": n.meta or {},
                "read": n.read,
                "createdAt": n.created_at,
            }
            for n in items
        ]
    }
