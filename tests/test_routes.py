"""HTTP surface: auth gates, envelopes and status codes."""

from conftest import auth_headers

ADMIN = auth_headers("admin-1", "admin")
DOCTOR = auth_headers("doc-1", "doctor")
CLINIC = auth_headers("clinic-1", "clinic")
BASE = "/v1/marketing"


async def test_requires_auth(client):
    r = await client.get(f"{BASE}/wallet/me")
    assert r.status_code == 401
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "UNAUTHORIZED"
    assert body["request_id"]

    r = await client.get(f"{BASE}/wallet/me", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


async def test_session_cookie_auth(client):
    token = ADMIN["Authorization"].split(" ", 1)[1]
    client.cookies.set("zeva_session", token)
    r = await client.get(f"{BASE}/admin-credits")
    assert r.status_code == 200


async def test_admin_credits(client):
    r = await client.get(f"{BASE}/admin-credits", headers=DOCTOR)
    assert r.status_code == 403

    r = await client.post(f"{BASE}/admin-credits", json={"amount": 1000, "note": "Q1"}, headers=ADMIN)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["availableCredits"] == 1000
    assert data["totalAdded"] == 1000
    assert data["lastNote"] == "Q1"

    r = await client.post(f"{BASE}/admin-credits", json={"lowThreshold": 2000}, headers=ADMIN)
    assert r.json()["data"]["isLow"] is True

    r = await client.post(f"{BASE}/admin-credits", json={"note": "nothing"}, headers=ADMIN)
    assert r.status_code == 400

    r = await client.post(f"{BASE}/admin-credits", json={"amount": -5}, headers=ADMIN)
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_AMOUNT"


async def test_admin_credits_invalid_amount_changes_nothing(client):
    r = await client.post(f"{BASE}/admin-credits", json={"amount": 100, "lowThreshold": 50}, headers=ADMIN)
    assert r.json()["data"]["lowThreshold"] == 50

    r = await client.post(f"{BASE}/admin-credits", json={"amount": 0, "lowThreshold": 5}, headers=ADMIN)
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_AMOUNT"
    r = await client.post(f"{BASE}/admin-credits", json={"amount": 10, "lowThreshold": -1}, headers=ADMIN)
    assert r.status_code == 400

    r = await client.get(f"{BASE}/admin-credits", headers=ADMIN)
    data = r.json()["data"]
    assert data["lowThreshold"] == 50
    assert data["availableCredits"] == 100


async def test_topup_flow(client):
    await client.post(f"{BASE}/admin-credits", json={"amount": 500}, headers=ADMIN)

    r = await client.post(f"{BASE}/topup", json={"credits": 200, "note": "please"}, headers=DOCTOR)
    assert r.status_code == 200
    req = r.json()["data"]
    assert req["status"] == "pending"
    assert req["ownerType"] == "doctor"

    r = await client.patch(f"{BASE}/topup/{req['id']}", json={"status": "approved"}, headers=DOCTOR)
    assert r.status_code == 403

    r = await client.patch(f"{BASE}/topup/{req['id']}", json={"status": "approved", "adminNote": "ok"}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "approved"
    assert r.json()["data"]["adminNote"] == "ok"

    r = await client.patch(f"{BASE}/topup/{req['id']}", json={"status": "approved"}, headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["code"] == "ALREADY_PROCESSED"

    r = await client.get(f"{BASE}/wallet/me", headers=DOCTOR)
    assert r.json()["data"]["balance"] == 200

    r = await client.get(f"{BASE}/topup", headers=DOCTOR)
    page = r.json()["data"]
    assert page["total"] == 1
    assert page["items"][0]["id"] == req["id"]

    r = await client.get(f"{BASE}/topup/{req['id']}", headers=CLINIC)
    assert r.status_code == 404


async def test_topup_insufficient_pool(client):
    r = await client.post(f"{BASE}/topup", json={"credits": 100}, headers=CLINIC)
    req_id = r.json()["data"]["id"]
    r = await client.patch(f"{BASE}/topup/{req_id}", json={"status": "approved"}, headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["code"] == "INSUFFICIENT_ADMIN_CREDITS"
    r = await client.get(f"{BASE}/topup/{req_id}", headers=ADMIN)
    assert r.json()["data"]["status"] == "pending"


async def test_topup_not_found(client):
    r = await client.get(f"{BASE}/topup/not-an-id", headers=ADMIN)
    assert r.status_code == 404
    r = await client.get(f"{BASE}/topup/65f000000000000000000000", headers=ADMIN)
    assert r.status_code == 404


async def test_sms_send(client):
    await client.post(f"{BASE}/admin-credits", json={"amount": 10}, headers=ADMIN)
    await client.post(f"{BASE}/wallet", json={"ownerId": "doc-1", "ownerType": "doctor", "credits": 5}, headers=ADMIN)

    payload = {"body": "x" * 150, "to": ["+15550000001", "+15550000002", "+15550000003"]}
    r = await client.post(f"{BASE}/sms-send/quote", json=payload, headers=DOCTOR)
    assert r.json()["data"] == {"segments": 1, "recipients": 3, "credits": 3}

    r = await client.post(f"{BASE}/sms-send", json=payload, headers=DOCTOR)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["creditsCharged"] == 3
    assert data["balance"] == 2
    assert data["sent"] == 3

    r = await client.post(f"{BASE}/sms-send", json=payload, headers=DOCTOR)
    assert r.status_code == 402
    assert r.json()["code"] == "INSUFFICIENT_BALANCE"

    r = await client.post(f"{BASE}/sms-send", json={"body": "hi", "to": ["123"]}, headers=DOCTOR)
    assert r.status_code == 400

    r = await client.post(f"{BASE}/sms-send", json=payload, headers=ADMIN)
    assert r.status_code == 403
    assert r.json()["code"] == "UNMAPPED_ROLE"


async def test_wallet_admin(client):
    await client.post(f"{BASE}/admin-credits", json={"amount": 100}, headers=ADMIN)
    r = await client.post(
        f"{BASE}/wallet",
        json={"ownerId": "clinic-1", "ownerType": "clinic", "credits": 40, "note": "promo"},
        headers=ADMIN,
    )
    assert r.status_code == 200
    wallet_id = r.json()["data"]["wallet"]["id"]
    assert r.json()["data"]["entry"]["reason"] == "manual_credit"

    r = await client.get(f"{BASE}/wallet", params={"ownerType": "clinic"}, headers=ADMIN)
    assert r.json()["data"]["total"] == 1

    r = await client.patch(f"{BASE}/wallet/{wallet_id}", json={"isActive": False}, headers=ADMIN)
    assert r.json()["data"]["isActive"] is False
    r = await client.post(f"{BASE}/sms-send", json={"body": "hi", "to": ["+15550000001"]}, headers=CLINIC)
    assert r.status_code == 403
    assert r.json()["code"] == "WALLET_INACTIVE"

    r = await client.patch(f"{BASE}/wallet/{wallet_id}", json={"lowBalanceThreshold": 50}, headers=ADMIN)
    assert r.json()["data"]["isLow"] is True

    r = await client.get(f"{BASE}/wallet/{wallet_id}/ledger", headers=ADMIN)
    assert r.json()["data"]["total"] == 1
    r = await client.get(f"{BASE}/wallet/me/ledger", headers=CLINIC)
    assert r.json()["data"]["items"][0]["amount"] == 40

    r = await client.get(f"{BASE}/wallet", headers=CLINIC)
    assert r.status_code == 403


async def test_reconciliation_endpoint(client):
    await client.post(f"{BASE}/admin-credits", json={"amount": 100}, headers=ADMIN)
    r = await client.get(f"{BASE}/admin-credits/reconciliation", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["data"]["conservation"]["ok"] is True
