import hashlib
import hmac

import mercadopago
import pytest
import requests

import config
from conftest import StubSDK
from payments import MercadoPagoClient, PaymentGatewayError, build_preference, verify_webhook_signature

SECRET = "webhook-secret"


def sign(data_id, request_id="req-1", ts="1704908010", secret=SECRET):
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    digest = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return f"ts={ts},v1={digest}"


def answering(status, response):
    return StubSDK(lambda method, path, data: {"status": status, "response": response})


# Client

def test_create_preference_goes_through_sdk():
    sdk = answering(201, {"id": "pref-1", "init_point": "live", "sandbox_init_point": "sandbox"})
    client = MercadoPagoClient(access_token="APP_USR-token", public_key="APP_USR-key", sdk=sdk)

    pref = client.create_preference({"items": []})

    assert sdk.calls == [("POST", "/checkout/preferences", {"items": []})]
    assert client.redirect_url(pref) == "live"


def test_default_client_uses_mercadopago_sdk():
    client = MercadoPagoClient(access_token="APP_USR-token", timeout=7)
    assert isinstance(client.sdk, mercadopago.SDK)


def test_test_mode_uses_sandbox_url():
    client = MercadoPagoClient(access_token="TEST-token", public_key="TEST-key", sdk=answering(200, {}))
    assert client.is_test_mode()
    assert client.redirect_url({"init_point": "live", "sandbox_init_point": "sandbox"}) == "sandbox"


def test_get_payment_reads_sdk_response():
    sdk = answering(200, {"id": 9, "status": "approved"})
    client = MercadoPagoClient(access_token="TEST-token", sdk=sdk)
    assert client.get_payment("9")["status"] == "approved"
    assert sdk.calls[0][:2] == ("GET", "/v1/payments/9")


def test_error_status_raises_gateway_error():
    client = MercadoPagoClient(access_token="TEST-token", sdk=answering(400, {"message": "bad"}))
    with pytest.raises(PaymentGatewayError) as exc:
        client.get_payment("1")
    assert exc.value.status_code == 400
    assert "bad" in str(exc.value)


def test_network_error_raises_gateway_error():
    def down(method, path, data):
        raise requests.ConnectionError("down")

    client = MercadoPagoClient(access_token="TEST-token", sdk=StubSDK(down))
    with pytest.raises(PaymentGatewayError):
        client.create_preference({})


def test_missing_token_fails_without_request():
    sdk = answering(201, {})
    client = MercadoPagoClient(access_token="", sdk=sdk)
    with pytest.raises(PaymentGatewayError):
        client.create_preference({})
    assert sdk.calls == []


# Preference building

def test_build_preference(monkeypatch):
    monkeypatch.setattr(config, "PUBLIC_API_URL", "https://api.example.com")
    order = {
        "id": "order-1",
        "user_email": "ana@example.com",
        "shipping_cost": 1500.0,
        "shipping_details": {"full_name": "Ana", "email": "ana@example.com", "phone": "1155550000"},
        "items": [
            {"id": "p1", "name": "Whey", "price": 100.0, "quantity": 2, "image": "", "selected_flavor": "Chocolate"},
            {"id": "p2", "name": "Creatina", "price": 50.0, "quantity": 1, "image": "x.jpg", "selected_flavor": None},
        ],
    }
    pref = build_preference(order)

    assert [i["title"] for i in pref["items"]] == ["Whey - Chocolate", "Creatina"]
    assert pref["items"][0]["currency_id"] == config.CURRENCY_ID
    assert pref["payer"] == {"name": "Ana", "email": "ana@example.com", "phone": {"number": "1155550000"}}
    assert pref["back_urls"]["failure"].endswith("/order-confirmation/order-1?status=failed")
    assert pref["back_urls"]["pending"].endswith("/order-confirmation/order-1?status=pending")
    assert pref["external_reference"] == "order-1"
    assert pref["expires"] is True
    assert pref["shipments"]["cost"] == 1500.0
    assert pref["notification_url"] == "https://api.example.com/api/payments/webhook"


# Signatures

def test_valid_signature():
    assert verify_webhook_signature(sign("123"), "req-1", "123", SECRET)


@pytest.mark.parametrize("header", [None, "", "ts=1", "v1=abc", sign("123", secret="other")])
def test_invalid_signature(header):
    assert not verify_webhook_signature(header, "req-1", "123", SECRET)


def test_signature_bound_to_data_id():
    assert not verify_webhook_signature(sign("123"), "req-1", "124", SECRET)


# Pass-through endpoint

def test_proxy_rejects_bad_items(client, gateway):
    res = client.post("/create-preference", json={"items": [{"title": "x", "unit_price": "1", "quantity": 1}], "payer": {"email": "a@b.co"}})
    assert res.status_code == 400
    assert res.json() == {"error": "Invalid items format"}
    assert gateway.calls == []


def test_proxy_rejects_missing_payer_email(client, gateway):
    res = client.post("/create-preference", json={"items": [{"title": "x", "unit_price": 1, "quantity": 1}], "payer": {}})
    assert res.status_code == 400
    assert res.json() == {"error": "Invalid payer email"}


def test_proxy_forwards_preference(client, gateway):
    items = [{"title": "Whey", "unit_price": 100, "quantity": 1}]
    res = client.post("/create-preference", json={"items": items, "payer": {"email": "a@b.co", "name": "ignored"}})
    assert res.status_code == 200
    assert res.json()["id"] == "pref-1"

    sent = gateway.preference_calls[0][2]
    assert sent["items"] == items
    assert sent["payer"] == {"email": "a@b.co"}
    assert sent["back_urls"] == {
        "success": "https://shop.example.com/order-confirmation",
        "failure": "https://shop.example.com/checkout",
        "pending": "https://shop.example.com/checkout",
    }


def test_proxy_reports_gateway_errors(client, gateway):
    gateway.fail_preferences = True
    res = client.post("/create-preference", json={"items": [{"title": "x", "unit_price": 1, "quantity": 1}], "payer": {"email": "a@b.co"}})
    assert res.status_code == 500
    assert "error" in res.json()


# Webhook

ADDRESS = {
    "full_name": "Ana", "email": "ana@example.com", "phone": "1", "address": "Calle 1",
    "city": "CABA", "state": "BA", "postal_code": "1000", "country": "Argentina",
}


@pytest.fixture
def mp_order(client):
    res = client.post("/api/checkout", json={
        "items": [{"id": "p1", "name": "Whey", "price": 100.0, "quantity": 1}],
        "shipping_option_id": "delivery",
        "payment_method_id": "mercadopago",
        "shipping_details": ADDRESS,
    })
    return res.json()["order_id"]


def test_webhook_requires_secret(client, monkeypatch):
    monkeypatch.setattr(config, "MERCADOPAGO_WEBHOOK_SECRET", "")
    res = client.post("/api/payments/webhook", json={"type": "payment", "data": {"id": "1"}})
    assert res.status_code == 503


def test_webhook_rejects_bad_signature(client, monkeypatch, mongo, mp_order):
    monkeypatch.setattr(config, "MERCADOPAGO_WEBHOOK_SECRET", SECRET)
    res = client.post(
        "/api/payments/webhook",
        json={"type": "payment", "data": {"id": "1"}},
        headers={"x-signature": sign("1", secret="wrong"), "x-request-id": "req-1"},
    )
    assert res.status_code == 401
    assert mongo["orders"].find_one({"_id": mp_order})["payment_status"] == "pending"


def test_webhook_applies_payment_once(client, gateway, monkeypatch, mongo, mp_order):
    monkeypatch.setattr(config, "MERCADOPAGO_WEBHOOK_SECRET", SECRET)
    gateway.payments["321"] = {"id": 321, "status": "approved", "external_reference": mp_order}
    headers = {"x-signature": sign("321"), "x-request-id": "req-1"}
    body = {"type": "payment", "action": "payment.updated", "data": {"id": "321"}}

    first = client.post("/api/payments/webhook", json=body, headers=headers)
    assert first.status_code == 200
    assert first.json() == {"received": True, "order_id": mp_order, "updated": True}

    second = client.post("/api/payments/webhook", json=body, headers=headers)
    assert second.json()["updated"] is False
    assert mongo["orders"].find_one({"_id": mp_order})["payment_status"] == "approved"


def test_webhook_ignores_other_topics(client, monkeypatch):
    monkeypatch.setattr(config, "MERCADOPAGO_WEBHOOK_SECRET", SECRET)
    res = client.post(
        "/api/payments/webhook",
        json={"type": "merchant_order", "data": {"id": "5"}},
        headers={"x-signature": sign("5"), "x-request-id": "req-1"},
    )
    assert res.json() == {"received": True, "ignored": True}


def test_approved_order_is_not_downgraded_by_another_payment(client, gateway, monkeypatch, mongo, mp_order):
    monkeypatch.setattr(config, "MERCADOPAGO_WEBHOOK_SECRET", SECRET)
    gateway.payments["1"] = {"id": 1, "status": "approved", "external_reference": mp_order}
    gateway.payments["2"] = {"id": 2, "status": "rejected", "external_reference": mp_order}
    for pid in ("1", "2"):
        client.post(
            "/api/payments/webhook",
            json={"type": "payment", "data": {"id": pid}},
            headers={"x-signature": sign(pid), "x-request-id": "req-1"},
        )
    order = mongo["orders"].find_one({"_id": mp_order})
    assert order["payment_status"] == "approved"
    assert order["mercadopago_payment_id"] == "1"
