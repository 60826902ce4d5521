import hashlib
import hmac
import json
from decimal import Decimal

import pytest
import requests

from models import Transaction
from services import payments
from services.tokens import deduct_tokens, get_balance
from shared.exceptions import PaymentProviderError, ValidationError

SECRET = "whsec-test"


class _FakeResponse:
    def __init__(self, payload, status=201):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


def _sign(body: bytes) -> str:
    return hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()


def _webhook(event="order_created", user_id=1, packs=1, order_id="9001", total=552):
    return json.dumps(
        {
            "meta": {"event_name": event, "custom_data": {"user_id": str(user_id), "packs": str(packs)}},
            "data": {
                "id": order_id,
                "attributes": {
                    "order_number": 12,
                    "status": "paid",
                    "total": total,
                    "first_order_item": {"variant_id": 1144926, "variant_name": "Starter"},
                },
            },
        }
    ).encode()


def test_tiers_and_pricing(app):
    with app.app_context():
        tiers = payments.token_tiers()
        assert [t.packs for t in tiers] == [1, 3, 5]
        assert payments.expected_total_price(tiers[0]) == Decimal("5.52")
        assert payments.expected_total_price(tiers[1]) == Decimal("14.35")
        assert "variant_id" not in tiers[2].to_public_dict()
        assert tiers[2].to_public_dict()["name"] == "Power User"

        assert payments.is_valid_pack_count(3)
        assert not payments.is_valid_pack_count(2)
        assert not payments.is_valid_pack_count(True)
        assert not payments.is_valid_pack_count("1")
        assert payments.calculate_tokens(5) == 25000


def test_signature_verification():
    body = b'{"ok":true}'
    assert payments.verify_webhook_signature(body, _sign(body), SECRET)
    assert payments.verify_webhook_signature(body.decode(), _sign(body), SECRET)
    assert not payments.verify_webhook_signature(body, _sign(b"other"), SECRET)
    assert not payments.verify_webhook_signature(body, None, SECRET)
    assert not payments.verify_webhook_signature(body, _sign(body), "")


def test_parse_webhook_payload_extracts_fields():
    hook = payments.parse_webhook_payload(json.loads(_webhook(order_id="77")))
    assert hook.event_name == "order_created"
    assert hook.order_id == "77"
    assert hook.variant_id == "1144926"
    assert hook.custom_data["packs"] == "1"


def test_create_checkout_sends_string_custom_data(app, monkeypatch):
    captured = {}

    def _post(url, json=None, headers=None, timeout=None):
        captured.update(url=url, body=json, headers=headers)
        return _FakeResponse({"data": {"id": "chk_1", "attributes": {"url": "https://pay.example/chk_1"}}})

    monkeypatch.setattr("services.payments.requests.post", _post)
    with app.app_context():
        result = payments.create_checkout("1144926", {"user_id": 5, "packs": 1})

    assert result == {"url": "https://pay.example/chk_1", "checkout_id": "chk_1"}
    assert captured["url"].endswith("/checkouts")
    assert captured["body"]["data"]["attributes"]["checkout_data"]["custom"] == {"user_id": "5", "packs": "1"}
    assert captured["body"]["data"]["relationships"]["store"]["data"]["id"] == "4242"
    assert captured["headers"]["Authorization"] == "Bearer test-ls-key"


def test_create_checkout_wraps_provider_errors(app, monkeypatch):
    monkeypatch.setattr("services.payments.requests.post", lambda *a, **k: _FakeResponse({}, status=500))
    with app.app_context():
        with pytest.raises(PaymentProviderError):
            payments.create_checkout("1", {})

    monkeypatch.setattr("services.payments.requests.post", lambda *a, **k: _FakeResponse({"data": {}}))
    with app.app_context():
        with pytest.raises(PaymentProviderError):
            payments.create_checkout("1", {})


def test_start_purchase_records_pending_transaction(create_user, monkeypatch):
    user, _ = create_user(credits=0)
    monkeypatch.setattr(
        "services.payments.create_checkout",
        lambda variant_id, custom: {"url": f"https://pay.example/{variant_id}", "checkout_id": "chk_9"},
    )

    result = payments.start_purchase(user, 3)

    assert result == {"success": True, "checkoutUrl": "https://pay.example/1144938"}
    pending = Transaction.query.filter_by(user_id=user.id).one()
    assert pending.status == Transaction.STATUS_PENDING
    assert pending.order_id == "pending-chk_9"
    assert pending.tokens_purchased == 15000
    assert get_balance(user.id) == 0

    with pytest.raises(ValidationError):
        payments.start_purchase(user, 2)


def test_webhook_rejects_bad_signatures(db_session):
    body = _webhook()
    assert payments.handle_webhook(body, None) == payments.WebhookOutcome(401, "No signature")
    assert payments.handle_webhook(body, "deadbeef") == payments.WebhookOutcome(401, "Invalid signature")


def test_order_created_credits_once(create_user):
    user, _ = create_user(credits=0)
    body = _webhook(user_id=user.id, packs=1, order_id="order-1", total=552)

    first = payments.handle_webhook(body, _sign(body))
    second = payments.handle_webhook(body, _sign(body))

    assert first == payments.WebhookOutcome(200, "OK")
    assert second.status == 200
    assert get_balance(user.id) == 5000
    row = Transaction.query.filter_by(order_id="order-1").one()
    assert row.status == Transaction.STATUS_COMPLETED
    assert row.amount_usd == Decimal("5.52")
    assert row.variant_name == "Starter"


def test_order_refunded_debits_and_floors_at_zero(create_user):
    user, _ = create_user(credits=0)
    created = _webhook(user_id=user.id, packs=1, order_id="order-2")
    payments.handle_webhook(created, _sign(created))
    deduct_tokens(user.id, 4000)
    refunded = _webhook(event="order_refunded", user_id=user.id, packs=1, order_id="order-2")

    assert payments.handle_webhook(refunded, _sign(refunded)).status == 200
    assert get_balance(user.id) == 0
    assert Transaction.query.filter_by(order_id="order-2").one().status == Transaction.STATUS_REFUNDED

    # replayed refund is a no-op
    add_back = payments.handle_webhook(refunded, _sign(refunded))
    assert add_back.status == 200
    assert get_balance(user.id) == 0


def test_webhook_custom_data_errors(create_user):
    user, _ = create_user()
    missing_user = json.dumps({"meta": {"event_name": "order_created", "custom_data": {"packs": "1"}}, "data": {}}).encode()
    bad_packs = json.dumps(
        {"meta": {"event_name": "order_created", "custom_data": {"user_id": str(user.id), "packs": "many"}}, "data": {}}
    ).encode()

    assert payments.handle_webhook(missing_user, _sign(missing_user)) == payments.WebhookOutcome(400, "Missing user_id")
    assert payments.handle_webhook(bad_packs, _sign(bad_packs)) == payments.WebhookOutcome(400, "Invalid packs value")


def test_webhook_invalid_json_and_unknown_user_are_acknowledged(db_session):
    garbage = b"{not json"
    assert payments.handle_webhook(garbage, _sign(garbage)) == payments.WebhookOutcome(200, "Error logged")

    body = _webhook(user_id=987654)
    assert payments.handle_webhook(body, _sign(body)) == payments.WebhookOutcome(200, "OK")
    assert Transaction.query.count() == 0


def test_wrongly_shaped_webhook_parts_do_not_crash(create_user):
    user, _ = create_user(credits=0)
    custom_not_dict = json.dumps({"meta": {"event_name": "order_created", "custom_data": "not-a-dict"}}).encode()
    data_not_dict = json.dumps({"meta": "oops", "data": ["x"]}).encode()

    assert payments.handle_webhook(custom_not_dict, _sign(custom_not_dict)) == payments.WebhookOutcome(
        400, "Missing user_id"
    )
    assert payments.handle_webhook(data_not_dict, _sign(data_not_dict)).status == 400

    odd_total = _webhook(user_id=user.id, order_id="order-odd", total="n/a")
    assert payments.handle_webhook(odd_total, _sign(odd_total)) == payments.WebhookOutcome(200, "OK")
    assert get_balance(user.id) == 5000
    assert Transaction.query.filter_by(order_id="order-odd").one().amount_usd is None


def test_processing_errors_are_logged_and_acknowledged(create_user, monkeypatch):
    user, _ = create_user(credits=0)

    def _explode(*args, **kwargs):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(payments, "_order_created", _explode)
    body = _webhook(user_id=user.id, order_id="order-boom")

    assert payments.handle_webhook(body, _sign(body)) == payments.WebhookOutcome(200, "Error logged")
    assert get_balance(user.id) == 0


def test_refund_without_ledger_row_debits_once(create_user):
    user, _ = create_user(credits=6000)
    refunded = _webhook(event="order_refunded", user_id=user.id, packs=1, order_id="order-unseen")

    assert payments.handle_webhook(refunded, _sign(refunded)).status == 200
    assert payments.handle_webhook(refunded, _sign(refunded)).status == 200

    assert get_balance(user.id) == 1000
    row = Transaction.query.filter_by(order_id="order-unseen").one()
    assert row.status == Transaction.STATUS_REFUNDED
    assert row.credits_delta == -5000
