"""HTTP tests for the v1 API (in-process ASGI, SQLite session)."""
import json

import pytest
from httpx import ASGITransport, AsyncClient

from digipay.api.deps import get_event_publisher, get_identity_verifier, get_payment_gateway
from digipay.infra.db.session import get_db
from digipay.infra.security.jwt import create_access_token, create_refresh_token
from digipay.infra.security.password import get_password_hash
from digipay.main import app


@pytest.fixture
async def client(db_session, gateway, verifier, publisher):
    async def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_identity_verifier] = lambda: verifier
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


OFFER_BODY = {
    "side": "sell",
    "amount": "100",
    "rate": "1000",
    "payment_method": {
        "kind": "bank_transfer",
        "bank_name": "GTBank",
        "account_number": "0123456789",
        "account_name": "Ada Obi",
    },
}


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert (await client.get("/v1/health")).status_code == 200


async def test_signup_login_refresh(client):
    response = await client.post(
        "/v1/auth/signup",
        json={"email": "New@Example.com", "password": "password123", "display_name": "New"},
    )
    assert response.status_code == 201
    tokens = response.json()
    assert tokens["token_type"] == "bearer"

    duplicate = await client.post("/v1/auth/signup", json={"email": "new@example.com", "password": "password123"})
    assert duplicate.status_code == 409

    bad = await client.post("/v1/auth/login", json={"email": "new@example.com", "password": "wrong-password"})
    assert bad.status_code == 401
    good = await client.post("/v1/auth/login", json={"email": "new@example.com", "password": "password123"})
    assert good.status_code == 200

    refreshed = await client.post("/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200
    # Access tokens are not refresh tokens
    rejected = await client.post("/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert rejected.status_code == 401

    me = await client.get("/v1/users/me", headers={"Authorization": f"Bearer {good.json()['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "new@example.com"
    assert me.json()["balances"] == {"NGN": "0.00", "USDT": "0.00000000"}


async def test_banned_user_cannot_log_in(client, seeder, services):
    user = await seeder.user("banned", password_hash=get_password_hash("password123"))
    await services.user_repo.set_flags(user.id, is_banned=True)
    await services.session.commit()
    response = await client.post("/v1/auth/login", json={"email": user.email, "password": "password123"})
    assert response.status_code == 403


async def test_requires_authentication(client):
    assert (await client.get("/v1/users/me")).status_code == 401
    response = await client.get("/v1/users/me", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401


async def test_refresh_token_is_not_an_access_token(client, seeder):
    user = await seeder.user("user")
    headers = {"Authorization": f"Bearer {create_refresh_token(user.id)}"}
    assert (await client.get("/v1/users/me", headers=headers)).status_code == 401


async def test_trade_flow_over_http(client, seeder, publisher):
    seller = await seeder.user("seller", usdt="100")
    buyer = await seeder.user("buyer")

    offer = await client.post("/v1/offers", json=OFFER_BODY, headers=auth(seller))
    assert offer.status_code == 201
    offer_id = offer.json()["id"]
    assert offer.json()["rate"] == "1000.00"
    assert offer.json()["payment_method"]["kind"] == "bank_transfer"

    listed = await client.get("/v1/offers", params={"side": "sell"})
    assert [o["id"] for o in listed.json()] == [offer_id]

    trade = await client.post("/v1/trades", json={"offer_id": offer_id, "amount": "40"}, headers=auth(buyer))
    assert trade.status_code == 201
    body = trade.json()
    assert body["fiat_amount"] == "40000.00"
    assert body["amount"] == "40.00000000"
    assert body["status"] == "payment_pending"
    trade_id = body["id"]

    offer_after = await client.get(f"/v1/offers/{offer_id}")
    assert offer_after.json()["remaining_amount"] == "60.00000000"

    # Wrong party gets 403, wrong state gets 409
    assert (await client.post(f"/v1/trades/{trade_id}/release-funds", headers=auth(buyer))).status_code == 403
    assert (await client.post(f"/v1/trades/{trade_id}/release-funds", headers=auth(seller))).status_code == 409

    paid = await client.post(
        f"/v1/trades/{trade_id}/confirm-payment", json={"payment_reference": "GTB-1"}, headers=auth(buyer)
    )
    assert paid.json()["status"] == "payment_made"

    released = await client.post(f"/v1/trades/{trade_id}/release-funds", headers=auth(seller))
    assert released.status_code == 200
    assert released.json()["status"] == "completed"

    balances = await client.get("/v1/wallet/balances", headers=auth(buyer))
    assert balances.json() == {"NGN": "0.00", "USDT": "40.00000000"}
    assert "trade.completed" in publisher.types()

    rating = await client.post(
        "/v1/ratings", json={"trade_id": trade_id, "rated_user_id": seller.id, "score": 5}, headers=auth(buyer)
    )
    assert rating.status_code == 201
    again = await client.post(
        "/v1/ratings", json={"trade_id": trade_id, "rated_user_id": seller.id, "score": 1}, headers=auth(buyer)
    )
    assert again.status_code == 409
    profile = await client.get(f"/v1/users/{seller.id}", headers=auth(buyer))
    assert profile.json()["rating_average"] == "5.00"
    assert profile.json()["rating_count"] == 1

    # The score is also accepted under the name "rating"
    out_of_range = await client.post(
        "/v1/ratings", json={"trade_id": trade_id, "rated_user_id": buyer.id, "rating": 6}, headers=auth(seller)
    )
    assert out_of_range.status_code == 422
    by_seller = await client.post(
        "/v1/ratings", json={"trade_id": trade_id, "rated_user_id": buyer.id, "rating": 4}, headers=auth(seller)
    )
    assert by_seller.status_code == 201
    assert by_seller.json()["score"] == 4
    buyer_profile = await client.get(f"/v1/users/{buyer.id}", headers=auth(seller))
    assert buyer_profile.json()["rating_average"] == "4.00"


async def test_amount_validation(client, seeder):
    seller = await seeder.user("seller", usdt="100")
    float_body = dict(OFFER_BODY, amount=100.5)
    assert (await client.post("/v1/offers", json=float_body, headers=auth(seller))).status_code == 422

    precise = dict(OFFER_BODY, amount="1.000000001")
    response = await client.post("/v1/offers", json=precise, headers=auth(seller))
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidAmountError"

    too_big = dict(OFFER_BODY, amount="1000")
    response = await client.post("/v1/offers", json=too_big, headers=auth(seller))
    assert response.status_code == 400
    assert response.json()["error"] == "InsufficientFundsError"


async def test_offer_update_and_delete(client, seeder):
    seller = await seeder.user("seller", usdt="100")
    other = await seeder.user("other")
    offer_id = (await client.post("/v1/offers", json=dict(OFFER_BODY, min_amount="5"), headers=auth(seller))).json()["id"]

    forbidden = await client.put(f"/v1/offers/{offer_id}", json={"rate": "1100"}, headers=auth(other))
    assert forbidden.status_code == 403

    updated = await client.put(f"/v1/offers/{offer_id}", json={"rate": "1100", "min_amount": None}, headers=auth(seller))
    assert updated.status_code == 200
    assert updated.json()["rate"] == "1100.00"
    assert updated.json()["min_amount"] is None

    paused = await client.post(f"/v1/offers/{offer_id}/status", json={"status": "paused"}, headers=auth(seller))
    assert paused.json()["status"] == "paused"

    assert (await client.delete(f"/v1/offers/{offer_id}", headers=auth(seller))).status_code == 204
    assert (await client.get(f"/v1/offers/{offer_id}")).status_code == 404


async def test_dispute_and_admin_resolution(client, seeder):
    seller = await seeder.user("seller", usdt="100")
    buyer = await seeder.user("buyer")
    admin = await seeder.user("admin", admin=True)
    offer_id = (await client.post("/v1/offers", json=OFFER_BODY, headers=auth(seller))).json()["id"]
    trade_id = (await client.post("/v1/trades", json={"offer_id": offer_id, "amount": "40"}, headers=auth(buyer))).json()["id"]
    await client.post(f"/v1/trades/{trade_id}/confirm-payment", headers=auth(buyer))

    disputed = await client.post(
        f"/v1/trades/{trade_id}/dispute",
        json={"category": "payment_not_received", "reason": "No credit received"},
        headers=auth(seller),
    )
    assert disputed.status_code == 200
    assert disputed.json()["dispute_raised_by"] == seller.id

    bad_category = await client.post(
        f"/v1/trades/{trade_id}/dispute", json={"category": "bored", "reason": "x"}, headers=auth(buyer)
    )
    assert bad_category.status_code == 422

    assert (await client.get("/v1/admin/disputes", headers=auth(buyer))).status_code == 403
    queue = await client.get("/v1/admin/disputes", headers=auth(admin))
    assert [t["id"] for t in queue.json()] == [trade_id]

    chat = await client.post(f"/v1/trades/{trade_id}/messages", json={"body": "Upload proof"}, headers=auth(admin))
    assert chat.status_code == 201

    resolve = {"action": "refund", "admin_notes": "seller provided no evidence of receipt"}
    resolved = await client.post(f"/v1/admin/disputes/{trade_id}/resolve", json=resolve, headers=auth(admin))
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "cancelled"
    assert resolved.json()["resolved_by"] == admin.id
    again = await client.post(f"/v1/admin/disputes/{trade_id}/resolve", json=resolve, headers=auth(admin))
    assert again.status_code == 409


async def test_kyc_verification(client, seeder, verifier):
    user = await seeder.user("kemi")
    response = await client.post(
        "/v1/kyc/verify",
        json={"identity_number": "22212345678", "first_name": "Kemi", "last_name": "Adeyemi"},
        headers=auth(user),
    )
    assert response.status_code == 200
    assert response.json()["kyc_verified"] is True
    assert verifier.calls


async def test_kyc_provider_outage_is_502(client, seeder, verifier):
    from digipay.domain.common.errors import ExternalServiceError

    verifier.error = ExternalServiceError("youverify", "identity service unreachable")
    user = await seeder.user("kemi")
    response = await client.post(
        "/v1/kyc/verify",
        json={"identity_number": "22212345678", "first_name": "Kemi", "last_name": "Adeyemi"},
        headers=auth(user),
    )
    assert response.status_code == 502
    assert "youverify" not in response.text


async def test_deposit_and_webhook(client, seeder, gateway):
    user = await seeder.user("payer")
    init = await client.post("/v1/payments/initialize", json={"amount": "5000"}, headers=auth(user))
    assert init.status_code == 200
    reference = init.json()["reference"]
    assert init.json()["amount"] == "5000.00"

    gateway.settle(reference, "5000")
    raw = json.dumps({"event": "charge.success", "data": {"reference": reference}}).encode("utf-8")
    unsigned = await client.post("/v1/payments/webhook", content=raw)
    assert unsigned.status_code == 403

    for _ in range(2):
        hook = await client.post(
            "/v1/payments/webhook", content=raw, headers={"x-paystack-signature": gateway.sign(raw)}
        )
        assert hook.status_code == 200
    verified = await client.post("/v1/payments/verify", json={"reference": reference}, headers=auth(user))
    assert verified.json()["status"] == "completed"

    balances = await client.get("/v1/wallet/balances", headers=auth(user))
    assert balances.json()["NGN"] == "5000.00"
    history = await client.get("/v1/wallet/transactions", params={"type": "deposit"}, headers=auth(user))
    assert [tx["tx_ref"] for tx in history.json()] == [reference]


async def test_withdrawal_review_over_http(client, seeder):
    user = await seeder.user("known", ngn="5000", kyc=True)
    admin = await seeder.user("admin", admin=True)
    withdrawal = await client.post(
        "/v1/wallet/withdraw",
        json={
            "amount": "2000",
            "bank_name": "Access Bank",
            "bank_code": "044",
            "account_number": "0690000031",
            "account_name": "Ada Obi",
        },
        headers=auth(user),
    )
    assert withdrawal.status_code == 201
    tx_id = withdrawal.json()["id"]

    reviewed = await client.post(
        f"/v1/admin/withdrawals/{tx_id}/review", json={"approve": False, "notes": "wrong name"}, headers=auth(admin)
    )
    assert reviewed.json()["status"] == "rejected"
    balances = await client.get("/v1/wallet/balances", headers=auth(user))
    assert balances.json()["NGN"] == "5000.00"


async def test_admin_adjustments_and_flags(client, seeder):
    admin = await seeder.user("admin", admin=True)
    user = await seeder.user("user")
    credit = await client.post(
        "/v1/admin/wallet/credit",
        json={"user_id": user.id, "currency": "USDT", "amount": "12.5", "description": "promo"},
        headers=auth(admin),
    )
    assert credit.status_code == 200
    assert credit.json()["amount"] == "12.50000000"

    flags = await client.post(f"/v1/admin/users/{user.id}/flags", json={"funds_frozen": True}, headers=auth(admin))
    assert flags.json()["funds_frozen"] is True

    swap = await client.post("/v1/wallet/swap", json={"from_currency": "USDT", "amount": "1"}, headers=auth(user))
    assert swap.status_code == 403


async def test_direct_messages(client, seeder):
    ada = await seeder.user("ada")
    bayo = await seeder.user("bayo")
    sent = await client.post(f"/v1/messages/direct/{bayo.id}", json={"body": "Hello"}, headers=auth(ada))
    assert sent.status_code == 201
    conversation = await client.get(f"/v1/messages/direct/{ada.id}", headers=auth(bayo))
    assert [m["body"] for m in conversation.json()] == ["Hello"]
    read = await client.post(f"/v1/messages/{sent.json()['id']}/read", headers=auth(bayo))
    assert read.json()["read_at"] is not None
    assert (await client.post(f"/v1/messages/direct/{bayo.id}", json={"body": ""}, headers=auth(ada))).status_code == 422


async def test_admin_config_push(client, seeder):
    from digipay.settings import get_config_store

    admin = await seeder.user("admin", admin=True)
    user = await seeder.user("user")
    assert (await client.get("/v1/admin/config", headers=auth(user))).status_code == 403
    try:
        pushed = await client.post("/v1/admin/config", json={"swap_rate": "1600"}, headers=auth(admin))
        assert pushed.json() == {"ok": True, "changed": ["swap_rate"]}
        rejected = await client.post("/v1/admin/config", json={"swap_rate": "-1"}, headers=auth(admin))
        assert rejected.status_code == 400

        current = (await client.get("/v1/admin/config", headers=auth(admin))).json()
        assert current["settings"]["swap_rate"] == "1600"
        assert current["settings"]["secret_key"] == "***"
        assert current["overrides"] == {"swap_rate": "1600"}
    finally:
        get_config_store().clear_overrides()
