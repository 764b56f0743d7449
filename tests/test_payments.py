import random

import pytest

from errors import PaymentGatewayError
from main import app
from payments import PaymentGateway, PaymentOutcome, SimulatedGateway, get_payment_gateway


class FixedGateway(PaymentGateway):
    def __init__(self, outcome):
        self.outcome = outcome
        self.charged = []

    def charge(self, order, details=None):
        self.charged.append(order.id)
        return self.outcome


class BrokenGateway(PaymentGateway):
    def charge(self, order, details=None):
        raise PaymentGatewayError()


@pytest.fixture
def order_id(client, user_headers, make_category):
    category_id = make_category("Shirt", "20")
    client.post("/cart", json={"categoryId": category_id, "quantity": 1}, headers=user_headers)
    return client.post("/cart/checkout", json={"paymentMethod": "card"}, headers=user_headers).json()["orderId"]


def _use(gateway):
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    return gateway


def test_approved_payment_confirms_order(client, user_headers, order_id):
    _use(FixedGateway(PaymentOutcome.approved))
    response = client.post("/orders/payment", json={"orderId": order_id}, headers=user_headers)
    assert response.status_code == 200
    assert response.json() == {
        "message": "Payment processed successfully",
        "orderId": order_id,
        "paymentStatus": "completed",
        "orderStatus": "confirmed",
    }


def test_second_payment_is_already_processed(client, user_headers, order_id):
    gateway = _use(FixedGateway(PaymentOutcome.approved))
    client.post("/orders/payment", json={"orderId": order_id}, headers=user_headers)
    again = client.post("/orders/payment", json={"orderId": order_id}, headers=user_headers)
    assert again.status_code == 400
    assert again.json()["detail"] == "Payment already completed"
    assert gateway.charged == [order_id]

    order = client.get(f"/orders/{order_id}", headers=user_headers).json()["order"]
    assert (order["status"], order["paymentStatus"]) == ("confirmed", "completed")


def test_declined_payment_leaves_order_pending(client, user_headers, order_id):
    _use(FixedGateway(PaymentOutcome.declined))
    response = client.post("/orders/payment", json={"orderId": order_id}, headers=user_headers)
    assert response.status_code == 400
    assert response.json() == {"detail": "Payment failed", "orderId": order_id, "paymentStatus": "failed"}

    order = client.get(f"/orders/{order_id}", headers=user_headers).json()["order"]
    assert (order["status"], order["paymentStatus"]) == ("pending", "failed")


def test_payment_can_be_retried_after_decline(client, user_headers, order_id):
    _use(FixedGateway(PaymentOutcome.declined))
    client.post("/orders/payment", json={"orderId": order_id}, headers=user_headers)
    _use(FixedGateway(PaymentOutcome.approved))
    response = client.post("/orders/payment", json={"orderId": order_id}, headers=user_headers)
    assert response.json()["paymentStatus"] == "completed"


def test_confirmed_order_cannot_be_cancelled(client, user_headers, order_id):
    _use(FixedGateway(PaymentOutcome.approved))
    client.post("/orders/payment", json={"orderId": order_id}, headers=user_headers)
    assert client.put(f"/orders/{order_id}/cancel", headers=user_headers).status_code == 400


def test_cancelled_order_cannot_be_paid(client, user_headers, order_id):
    gateway = _use(FixedGateway(PaymentOutcome.approved))
    client.put(f"/orders/{order_id}/cancel", headers=user_headers)
    response = client.post("/orders/payment", json={"orderId": order_id}, headers=user_headers)
    assert response.status_code == 400
    assert gateway.charged == []


def test_payment_for_unknown_or_foreign_order(client, user_headers, other_headers, order_id):
    _use(FixedGateway(PaymentOutcome.approved))
    assert client.post("/orders/payment", json={"orderId": 9999}, headers=user_headers).status_code == 404
    assert client.post("/orders/payment", json={"orderId": order_id}, headers=other_headers).status_code == 404


def test_gateway_outage_is_bad_gateway(client, user_headers, order_id):
    _use(BrokenGateway())
    response = client.post("/orders/payment", json={"orderId": order_id}, headers=user_headers)
    assert response.status_code == 502
    order = client.get(f"/orders/{order_id}", headers=user_headers).json()["order"]
    assert order["paymentStatus"] == "pending"


def test_payment_screens_report_order_state(client, user_headers, other_headers, order_id):
    screen = client.get(f"/payment/screen/{order_id}", headers=user_headers).json()
    assert screen["orderId"] == order_id
    assert screen["totalAmount"] == 20.0
    assert screen["paymentUrl"] == "/orders/payment"

    assert client.get(f"/payment/success/{order_id}", headers=user_headers).json()["status"] == "pending"
    assert client.get(f"/payment/failure/{order_id}", headers=user_headers).status_code == 200
    assert client.get(f"/payment/screen/{order_id}", headers=other_headers).status_code == 404


def test_simulated_gateway_uses_success_rate():
    always = SimulatedGateway(success_rate=1.0, rng=random.Random(1))
    never = SimulatedGateway(success_rate=0.0, rng=random.Random(1))
    assert {always.charge(None) for _ in range(20)} == {PaymentOutcome.approved}
    assert {never.charge(None) for _ in range(20)} == {PaymentOutcome.declined}


def test_simulated_gateway_mostly_approves():
    gateway = SimulatedGateway(success_rate=0.9, rng=random.Random(42))
    approved = sum(gateway.charge(None) == PaymentOutcome.approved for _ in range(1000))
    assert 850 < approved < 950


def test_gateway_interface_requires_charge():
    with pytest.raises(TypeError):
        PaymentGateway()

    class Incomplete(PaymentGateway):
        pass

    with pytest.raises(TypeError):
        Incomplete()
