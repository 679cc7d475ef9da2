"""Tests for checkout sessions and processor notifications."""
import base64

import httpx
import pytest

from conftest import get_stock, sign_notification, snap_payload
from storefront.models import Order, Payment


@pytest.fixture
def pending_order(client, customer, address, product):
    """A pending order for 3 mice (stock left: 7)."""
    client.post("/api/cart", json={"product_id": product.id, "quantity": 3}, headers=customer.headers)
    response = client.post("/api/orders", json={"address_id": address.id}, headers=customer.headers)
    assert response.status_code == 201
    return response.json()


def open_session(client, customer, order):
    return client.post(f"/api/payments/{order['id']}", headers=customer.headers)


def payment_for(session_factory, order_id):
    with session_factory() as db:
        return db.query(Payment).filter(Payment.order_id == order_id).one()


def order_status(session_factory, order_id):
    with session_factory() as db:
        return db.get(Order, order_id).status


def notify(client, external_id, transaction_status, status_code="200", gross_amount="315000.00",
           payment_type="bank_transfer", signature=None):
    return client.post("/api/payments/notification", json={
        "order_id": external_id,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "transaction_status": transaction_status,
        "payment_type": payment_type,
        "signature_key": signature or sign_notification(external_id, status_code, gross_amount),
    })


class TestCreatePayment:
    def test_opens_session_with_processor(self, client, session_factory, upstream, customer, pending_order):
        response = open_session(client, customer, pending_order)

        assert response.status_code == 200
        assert response.json() == {
            "snap_token": "snap-token-1",
            "redirect_url": "https://app.sandbox.midtrans.com/snap/v2/vtweb/snap-token-1",
        }

        (request,) = upstream.snap_calls
        assert str(request.url) == "https://app.sandbox.midtrans.com/snap/v1/transactions"
        expected_auth = base64.b64encode(b"SB-Mid-server-test-key:").decode()
        assert request.headers["Authorization"] == f"Basic {expected_auth}"

        body = snap_payload(request)
        assert body["transaction_details"]["gross_amount"] == 315000
        assert isinstance(body["transaction_details"]["gross_amount"], int)
        assert body["transaction_details"]["order_id"].startswith(f"NEXORA-{pending_order['id'][:8]}-")
        assert body["customer_details"] == {
            "first_name": "Budi Santoso", "email": "budi@mail.com", "phone": "08123456789"
        }
        assert body["callbacks"]["finish"] == f"http://shop.test/orders/{pending_order['id']}"

        payment = payment_for(session_factory, pending_order["id"])
        assert payment.status == "pending"
        assert payment.amount == 315000
        assert payment.session_token == "snap-token-1"

    def test_pending_session_is_reused(self, client, session_factory, upstream, customer, pending_order):
        first = open_session(client, customer, pending_order).json()
        second = open_session(client, customer, pending_order).json()

        assert first == second
        assert len(upstream.snap_calls) == 1
        payment_for(session_factory, pending_order["id"])

    def test_other_users_order_is_not_found(self, client, upstream, other_customer, pending_order):
        response = open_session(client, other_customer, pending_order)
        assert response.status_code == 404
        assert upstream.snap_calls == []

    def test_cancelled_order_cannot_be_paid(self, client, upstream, customer, pending_order):
        client.post(f"/api/orders/{pending_order['id']}/cancel", headers=customer.headers)

        response = open_session(client, customer, pending_order)
        assert response.status_code == 400
        assert response.json()["error"] == "Payment already processed or order cancelled"
        assert upstream.snap_calls == []


class TestGatewayFailures:
    @pytest.mark.parametrize("status, body, message", [
        (401, {"error_messages": ["Access denied"]}, "Payment gateway rejected the transaction"),
        (201, {"redirect_url": "https://x"}, "Payment gateway did not return a token"),
        (200, "<html>maintenance</html>", "Invalid response from payment gateway"),
    ])
    def test_bad_answers_persist_nothing(self, client, session_factory, upstream, customer, pending_order,
                                         status, body, message):
        upstream.snap_status = status
        upstream.snap_body = body

        response = open_session(client, customer, pending_order)

        assert response.status_code == 502
        assert response.json() == {"error": message, "error_type": "GatewayError", "retryable": False}
        assert "retry-after" not in response.headers
        with session_factory() as db:
            assert db.query(Payment).count() == 0
        assert order_status(session_factory, pending_order["id"]) == "pending"

    def test_timeout(self, client, session_factory, upstream, customer, pending_order):
        upstream.snap_error = httpx.ConnectTimeout("timed out")

        response = open_session(client, customer, pending_order)

        assert response.status_code == 502
        assert response.json()["error"] == "Payment gateway timed out"
        assert response.json()["retryable"] is True
        assert response.headers["retry-after"] == "5"
        with session_factory() as db:
            assert db.query(Payment).count() == 0

    def test_connection_failure(self, client, upstream, customer, pending_order):
        upstream.snap_error = httpx.ConnectError("connection refused")

        response = open_session(client, customer, pending_order)
        assert response.status_code == 502
        assert response.json()["error"] == "Payment gateway unavailable"
        assert response.json()["retryable"] is True
        assert response.headers["retry-after"] == "5"


class TestNotifications:
    def test_settlement_marks_order_paid(self, client, session_factory, customer, pending_order):
        open_session(client, customer, pending_order)
        external_id = payment_for(session_factory, pending_order["id"]).external_id

        response = notify(client, external_id, "settlement")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        payment = payment_for(session_factory, pending_order["id"])
        assert payment.status == "success"
        assert payment.method == "bank_transfer"
        assert payment.paid_at is not None
        assert order_status(session_factory, pending_order["id"]) == "paid"

    def test_replay_changes_nothing(self, client, session_factory, customer, pending_order):
        open_session(client, customer, pending_order)
        external_id = payment_for(session_factory, pending_order["id"]).external_id
        notify(client, external_id, "settlement")
        paid_at = payment_for(session_factory, pending_order["id"]).paid_at

        assert notify(client, external_id, "settlement").status_code == 200
        assert notify(client, external_id, "expire", status_code="407").status_code == 200

        payment = payment_for(session_factory, pending_order["id"])
        assert payment.status == "success"
        assert payment.paid_at == paid_at
        assert order_status(session_factory, pending_order["id"]) == "paid"

    def test_bad_signature_is_rejected(self, client, session_factory, customer, pending_order):
        open_session(client, customer, pending_order)
        external_id = payment_for(session_factory, pending_order["id"]).external_id

        response = notify(client, external_id, "settlement", signature="0" * 128)

        assert response.status_code == 403
        assert response.json()["error"] == "Invalid signature"
        assert payment_for(session_factory, pending_order["id"]).status == "pending"
        assert order_status(session_factory, pending_order["id"]) == "pending"

    def test_signature_covers_amount(self, client, session_factory, customer, pending_order):
        open_session(client, customer, pending_order)
        external_id = payment_for(session_factory, pending_order["id"]).external_id
        signature = sign_notification(external_id, "200", "1.00")

        response = notify(client, external_id, "settlement", gross_amount="315000.00", signature=signature)
        assert response.status_code == 403

    def test_unknown_transaction(self, client):
        response = notify(client, "NEXORA-missing-1", "settlement")
        assert response.status_code == 404

    def test_non_final_status_is_acknowledged(self, client, session_factory, customer, pending_order):
        open_session(client, customer, pending_order)
        external_id = payment_for(session_factory, pending_order["id"]).external_id

        response = notify(client, external_id, "pending", status_code="201")

        assert response.status_code == 200
        assert payment_for(session_factory, pending_order["id"]).status == "pending"

    def test_expiry_holds_order_and_stock(self, client, session_factory, customer, product, pending_order):
        open_session(client, customer, pending_order)
        external_id = payment_for(session_factory, pending_order["id"]).external_id

        notify(client, external_id, "expire", status_code="407")

        assert payment_for(session_factory, pending_order["id"]).status == "expired"
        assert order_status(session_factory, pending_order["id"]) == "pending"
        assert get_stock(session_factory, product.id) == 7

    def test_deny_marks_payment_failed(self, client, session_factory, customer, pending_order):
        open_session(client, customer, pending_order)
        external_id = payment_for(session_factory, pending_order["id"]).external_id

        notify(client, external_id, "deny", status_code="202")
        assert payment_for(session_factory, pending_order["id"]).status == "failed"


class TestReleasePolicy:
    @pytest.fixture
    def settings(self, base_settings):
        return base_settings.with_overrides(payment_failure_policy="release")

    def test_expiry_cancels_order_and_restores_stock(self, client, session_factory, customer, product,
                                                     pending_order):
        open_session(client, customer, pending_order)
        external_id = payment_for(session_factory, pending_order["id"]).external_id

        notify(client, external_id, "expire", status_code="407")
        notify(client, external_id, "expire", status_code="407")

        assert order_status(session_factory, pending_order["id"]) == "cancelled"
        assert get_stock(session_factory, product.id) == 10

    def test_settlement_after_cancel_keeps_order_cancelled(self, client, session_factory, customer, product,
                                                           pending_order):
        open_session(client, customer, pending_order)
        external_id = payment_for(session_factory, pending_order["id"]).external_id
        client.post(f"/api/orders/{pending_order['id']}/cancel", headers=customer.headers)

        response = notify(client, external_id, "settlement")

        assert response.status_code == 200
        assert payment_for(session_factory, pending_order["id"]).status == "success"
        assert order_status(session_factory, pending_order["id"]) == "cancelled"
        assert get_stock(session_factory, product.id) == 10


class TestSimulateAndStatus:
    def test_simulate_marks_paid(self, client, session_factory, customer, pending_order):
        open_session(client, customer, pending_order)

        response = client.post(f"/api/payments/{pending_order['id']}/simulate", headers=customer.headers)

        assert response.status_code == 200
        assert response.json()["message"] == "Payment simulated successfully"
        assert order_status(session_factory, pending_order["id"]) == "paid"

        status = client.get(f"/api/payments/{pending_order['id']}/status", headers=customer.headers).json()
        assert status["status"] == "success"
        assert status["method"] == "simulation"

    def test_simulate_without_session(self, client, customer, pending_order):
        response = client.post(f"/api/payments/{pending_order['id']}/simulate", headers=customer.headers)
        assert response.status_code == 404

    def test_status_without_payment(self, client, customer, pending_order):
        response = client.get(f"/api/payments/{pending_order['id']}/status", headers=customer.headers)
        assert response.status_code == 404
        assert response.json()["error"] == "Payment not found"


class TestSimulateInProduction:
    @pytest.fixture
    def settings(self, base_settings):
        return base_settings.with_overrides(midtrans_is_production=True)

    def test_simulation_is_forbidden(self, client, upstream, customer, pending_order):
        open_session(client, customer, pending_order)
        assert str(upstream.snap_calls[0].url) == "https://app.midtrans.com/snap/v1/transactions"

        response = client.post(f"/api/payments/{pending_order['id']}/simulate", headers=customer.headers)
        assert response.status_code == 403


class TestGuestPayment:
    def test_guest_pays_by_number_and_email(self, client, session_factory, upstream, product):
        order = client.post("/api/orders/guest", json={
            "guest_email": "tamu@mail.com",
            "guest_name": "Tamu",
            "guest_phone": "0812",
            "guest_address": "Jl. Sudirman 5",
            "items": [{"product_id": product.id, "quantity": 1}],
        }).json()

        response = client.post("/api/payments/guest", json={
            "order_number": order["order_number"].lower(), "email": "tamu@mail.com"
        })

        assert response.status_code == 200
        assert response.json()["snap_token"] == "snap-token-1"
        body = snap_payload(upstream.snap_calls[0])
        assert body["customer_details"] == {"first_name": "Tamu", "email": "tamu@mail.com", "phone": "0812"}
        assert body["transaction_details"]["gross_amount"] == 115000

        external_id = payment_for(session_factory, order["id"]).external_id
        notify(client, external_id, "capture", gross_amount="115000.00", payment_type="credit_card")
        assert order_status(session_factory, order["id"]) == "paid"

    def test_wrong_email_is_not_found(self, client, upstream, product):
        order = client.post("/api/orders/guest", json={
            "guest_email": "tamu@mail.com", "guest_name": "Tamu", "guest_phone": "1", "guest_address": "x",
            "items": [{"product_id": product.id, "quantity": 1}],
        }).json()

        response = client.post("/api/payments/guest", json={
            "order_number": order["order_number"], "email": "other@mail.com"
        })
        assert response.status_code == 404
        assert upstream.snap_calls == []
