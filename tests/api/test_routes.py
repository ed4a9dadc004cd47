"""HTTP-level tests: auth, error mapping, webhook, chat flow, cron, admin."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from app.models.chat import ChatRequest
from app.models.payment import PAYMENT_TYPE_VIP_UPGRADE, Payment, PaymentStatus
from app.models.post import Post
from app.models.user import User
from app.services.oxapay.client import Invoice, OxaPayError


def _payment(db, user, status=PaymentStatus.PENDING.value) -> Payment:
    p = Payment(
        user_id=user.id,
        amount=1.0,
        currency="USD",
        status=status,
        payment_method="oxapay",
        payment_type=PAYMENT_TYPE_VIP_UPGRADE,
        meta={"paymentType": PAYMENT_TYPE_VIP_UPGRADE},
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        assert "X-Request-Id" in resp.headers


class TestPaymentRoutes:
    def test_requires_auth(self, client):
        assert client.post("/payment/create-vip").status_code == 401

    def test_create_vip_gateway_failure_is_502(self, client, make_user, auth_headers, db):
        user = make_user()
        gateway = MagicMock()
        gateway.create_invoice.side_effect = OxaPayError("down")

        with patch("app.services.payments.service.OxaPayClient", return_value=gateway):
            resp = client.post("/payment/create-vip", headers=auth_headers(user))

        assert resp.status_code == 502
        assert resp.json() == {"detail": "Failed to create payment"}
        assert db.query(Payment).one().status == PaymentStatus.FAILED.value

    def test_create_vip_success(self, client, make_user, auth_headers):
        user = make_user()
        gateway = MagicMock()
        gateway.create_invoice.return_value = Invoice(track_id="9", pay_link="https://pay/9")

        with patch("app.services.payments.service.OxaPayClient", return_value=gateway):
            resp = client.post("/payment/create-vip", headers=auth_headers(user))

        assert resp.status_code == 200
        assert resp.json()["payLink"] == "https://pay/9"

    def test_status_of_foreign_payment_is_404(self, client, make_user, auth_headers, db):
        owner, other = make_user(), make_user()
        payment = _payment(db, owner)

        assert client.get(f"/payment/status/{payment.id}", headers=auth_headers(owner)).status_code == 200
        assert client.get(f"/payment/status/{payment.id}", headers=auth_headers(other)).status_code == 404

    def test_cancel_completed_is_409(self, client, make_user, auth_headers, db):
        user = make_user()
        payment = _payment(db, user, status=PaymentStatus.COMPLETED.value)

        resp = client.post(f"/payment/cancel/{payment.id}", headers=auth_headers(user))

        assert resp.status_code == 409

    def test_webhook_example_delivery(self, client, make_user, db):
        user = make_user()
        payment = _payment(db, user)
        body = {
            "trackId": 777,
            "orderId": payment.id,
            "status": "Paid",
            "amount": 1,
            "currency": "USD",
            "payAmount": 1.0,
            "payCurrency": "USDT",
            "txID": "0xabc",
            "network": "TRC20",
            "date": 1700000000,
        }

        first = client.post("/payment/vip-webhook", json=body)
        second = client.post("/payment/vip-webhook", json=body)

        assert first.status_code == 200
        assert first.json() == {"success": True, "status": "COMPLETED"}
        assert second.json() == {"success": True, "status": "COMPLETED"}
        db.expire_all()
        assert db.query(User).filter(User.id == user.id).one().is_vip is True

    def test_webhook_unknown_order(self, client):
        resp = client.post("/payment/vip-webhook", json={"orderId": "nope", "status": "Paid"})
        assert resp.status_code == 404

    def test_webhook_reachability_check(self, client):
        assert client.get("/payment/vip-webhook").status_code == 200

    def test_config_is_public(self, client):
        data = client.get("/payment/config").json()
        assert data["testMode"] is True
        assert data["pricing"]["vip"]["current"] == 1.0


class TestChatRoutes:
    def test_request_accept_send_flow(self, client, make_user, auth_headers, db):
        alice, bob = make_user(), make_user()

        chat_id = client.post("/chat/create", json={"userId": bob.id}, headers=auth_headers(alice)).json()["chatId"]
        blocked = client.post("/chat/send", json={"chatId": chat_id, "content": "hi"}, headers=auth_headers(alice))
        assert blocked.status_code == 409

        requests = client.get("/chat/requests", headers=auth_headers(bob)).json()["requests"]
        assert len(requests) == 1
        assert requests[0]["sender"]["id"] == alice.id

        accepted = client.post(f"/chat/requests/{requests[0]['id']}/accept", headers=auth_headers(bob))
        assert accepted.status_code == 200
        again = client.post(f"/chat/requests/{requests[0]['id']}/reject", headers=auth_headers(bob))
        assert again.status_code == 409

        sent = client.post("/chat/send", json={"chatId": chat_id, "content": "hi"}, headers=auth_headers(alice))
        assert sent.status_code == 200
        assert client.get("/chat/unread-count", headers=auth_headers(bob)).json() == {"count": 1}

        marked = client.post(f"/chat/{chat_id}/mark-read", headers=auth_headers(bob))
        assert marked.json()["count"] == 1
        chats = client.get("/chat", headers=auth_headers(alice)).json()["chats"]
        assert chats[0]["lastMessage"]["content"] == "hi"

    def test_outsider_cannot_read_messages(self, client, make_user, auth_headers, db):
        alice, bob, eve = make_user(), make_user(), make_user()
        chat_id = client.post("/chat/create", json={"userId": bob.id}, headers=auth_headers(alice)).json()["chatId"]

        resp = client.get(f"/chat/{chat_id}/messages", headers=auth_headers(eve))

        assert resp.status_code == 404

    def test_message_too_long_is_422(self, client, make_user, auth_headers):
        alice = make_user()
        resp = client.post(
            "/chat/send",
            json={"chatId": "x", "content": "a" * 5001},
            headers=auth_headers(alice),
        )
        assert resp.status_code == 422

    def test_reject_over_http(self, client, make_user, auth_headers, db):
        alice, bob = make_user(), make_user()
        client.post("/chat/create", json={"userId": bob.id}, headers=auth_headers(alice))
        req = db.query(ChatRequest).one()

        assert client.post(f"/chat/requests/{req.id}/reject", headers=auth_headers(alice)).status_code == 404
        assert client.post(f"/chat/requests/{req.id}/reject", headers=auth_headers(bob)).status_code == 200
        assert client.get("/chat", headers=auth_headers(bob)).json() == {"chats": []}


class TestCronAndAdmin:
    def test_cron_requires_secret(self, client):
        assert client.post("/cron/publish-scheduled").status_code == 401
        assert client.post(
            "/cron/publish-scheduled", headers={"Authorization": "Bearer wrong"}
        ).status_code == 401

    def test_cron_publishes(self, client, db):
        db.add(Post(
            title="later",
            slug="later",
            published=False,
            scheduled_for=datetime.now(timezone.utc) - timedelta(minutes=1),
        ))
        db.commit()

        resp = client.get("/cron/publish-scheduled", headers={"Authorization": "Bearer test-cron-secret"})

        assert resp.status_code == 200
        assert resp.json()["publishedCount"] == 1
        assert client.get("/posts").json()["pagination"]["totalPosts"] == 1

    def test_admin_requires_key(self, client):
        assert client.get("/admin/payments").status_code == 401
        assert client.get("/admin/payments", headers={"X-Admin-Key": "wrong"}).status_code == 401

    def test_admin_manual_upgrade(self, client, make_user, db):
        user = make_user()
        payment = _payment(db, user)

        resp = client.post(
            "/admin/payments/manual-vip-upgrade",
            json={"userId": user.id, "paymentId": payment.id, "reason": "support ticket"},
            headers={"X-Admin-Key": "test-admin-key", "X-Admin-User": "ops"},
        )

        assert resp.status_code == 200
        assert resp.json()["user"]["isVip"] is True
        pending = client.get("/admin/payments/pending-vip", headers={"X-Admin-Key": "test-admin-key"}).json()
        assert pending["count"] == 0

    def test_admin_sync_reconciles_with_gateway(self, client, make_user, db):
        user = make_user()
        payment = _payment(db, user)
        payment.transaction_id = "42"
        db.commit()
        gateway = MagicMock()
        gateway.get_payment_info.return_value = {"result": 100, "trackId": "42", "status": "Expired"}

        with patch("app.services.payments.service.OxaPayClient", return_value=gateway):
            resp = client.post(
                f"/admin/payments/{payment.id}/sync", headers={"X-Admin-Key": "test-admin-key"}
            )

        assert resp.status_code == 200
        assert resp.json() == {
            "paymentId": payment.id,
            "status": "FAILED",
            "transitioned": True,
            "vipGranted": False,
        }
