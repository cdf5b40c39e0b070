"""Tests for delegation lifecycle endpoints."""

from fastapi import status
from fastapi.testclient import TestClient

from vericred_gate.core.settings import settings
from tests.conftest import BACKEND_ADDRESS

SMART_ACCOUNT = "0x90F79bf6EB2c4f870365E785982E1f101E93b906"


def _create_payload(**overrides) -> dict:
    payload = {
        "delegation": {
            "delegate": BACKEND_ADDRESS,
            "delegator": SMART_ACCOUNT,
            "caveats": [],
            "signature": "0x" + "ab" * 65,
        },
        "smartAccountAddress": SMART_ACCOUNT,
        "maxCalls": 5,
        "caveats": ["limitedCalls", "timestamp"],
    }
    payload.update(overrides)
    return payload


def _create(client: TestClient, wallet, **overrides) -> str:
    r = client.post(
        "/api/v1/delegations",
        json=_create_payload(**overrides),
        headers=wallet.auth_headers(),
    )
    assert r.status_code == status.HTTP_200_OK
    return r.json()["delegationId"]


def test_create_and_list_delegations(client: TestClient, issuer_wallet) -> None:
    delegation_id = _create(client, issuer_wallet)

    r = client.get("/api/v1/delegations", headers=issuer_wallet.auth_headers())
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["count"] == 1
    listed = data["delegations"][0]
    assert listed["id"] == delegation_id
    assert listed["issuerAddress"] == issuer_wallet.address
    assert listed["smartAccountAddress"] == SMART_ACCOUNT.lower()
    assert listed["backendAddress"] == settings.backend_delegation_address.lower()
    assert listed["maxCalls"] == 5
    assert listed["callsUsed"] == 0
    assert "delegation" not in listed
    assert "delegationPayload" not in listed


def test_create_rejects_unsigned_delegation(client: TestClient, issuer_wallet) -> None:
    r = client.post(
        "/api/v1/delegations",
        json=_create_payload(delegation={"delegate": BACKEND_ADDRESS}),
        headers=issuer_wallet.auth_headers(),
    )
    assert r.status_code == status.HTTP_400_BAD_REQUEST
    assert r.json()["detail"]["code"] == "VALIDATION_ERROR"


def test_create_requires_authentication(client: TestClient) -> None:
    r = client.post("/api/v1/delegations", json=_create_payload())
    assert r.status_code == status.HTTP_401_UNAUTHORIZED


def test_list_filters(client: TestClient, issuer_wallet) -> None:
    kept = _create(client, issuer_wallet)
    revoked = _create(client, issuer_wallet, smartAccountAddress="0x" + "5" * 40)
    client.post(f"/api/v1/delegations/{revoked}/revoke", headers=issuer_wallet.auth_headers())

    r = client.get("/api/v1/delegations", headers=issuer_wallet.auth_headers())
    assert [d["id"] for d in r.json()["delegations"]] == [kept]

    r = client.get(
        "/api/v1/delegations",
        params={"includeRevoked": "true", "smartAccountAddress": "0x" + "5" * 40},
        headers=issuer_wallet.auth_headers(),
    )
    assert [d["id"] for d in r.json()["delegations"]] == [revoked]

    r = client.get(
        "/api/v1/delegations",
        params={"smartAccountAddress": "nope"},
        headers=issuer_wallet.auth_headers(),
    )
    assert r.status_code == status.HTTP_400_BAD_REQUEST


def test_revoke_is_idempotent(client: TestClient, issuer_wallet) -> None:
    delegation_id = _create(client, issuer_wallet)
    url = f"/api/v1/delegations/{delegation_id}/revoke"

    first = client.post(url, json={"reason": "lost device"}, headers=issuer_wallet.auth_headers())
    assert first.status_code == status.HTTP_200_OK
    assert first.json()["isRevoked"] is True

    second = client.post(url, headers=issuer_wallet.auth_headers())
    assert second.status_code == status.HTTP_200_OK
    assert second.json()["revokedAt"] == first.json()["revokedAt"]


def test_revoke_checks_ownership(client: TestClient, issuer_wallet, other_wallet) -> None:
    delegation_id = _create(client, issuer_wallet)

    r = client.post(
        f"/api/v1/delegations/{delegation_id}/revoke",
        headers=other_wallet.auth_headers(),
    )
    assert r.status_code == status.HTTP_403_FORBIDDEN

    r = client.post("/api/v1/delegations/missing/revoke", headers=issuer_wallet.auth_headers())
    assert r.status_code == status.HTTP_404_NOT_FOUND


def test_revoke_all(client: TestClient, issuer_wallet) -> None:
    _create(client, issuer_wallet)
    _create(client, issuer_wallet)

    r = client.post("/api/v1/delegations/revoke-all", headers=issuer_wallet.auth_headers())
    assert r.status_code == status.HTTP_200_OK
    assert r.json() == {"success": True, "revoked": 2}

    r = client.get("/api/v1/delegations", headers=issuer_wallet.auth_headers())
    assert r.json()["count"] == 0


def test_usage_stats(client: TestClient, issuer_wallet, other_wallet) -> None:
    delegation_id = _create(client, issuer_wallet, maxCalls=4)

    r = client.get(
        f"/api/v1/delegations/{delegation_id}/usage",
        headers=issuer_wallet.auth_headers(),
    )
    assert r.status_code == status.HTTP_200_OK
    assert r.json() == {"callsUsed": 0, "maxCalls": 4, "callsRemaining": 4, "percentUsed": 0.0}

    r = client.get(
        f"/api/v1/delegations/{delegation_id}/usage",
        headers=other_wallet.auth_headers(),
    )
    assert r.status_code == status.HTTP_403_FORBIDDEN


def test_public_status(client: TestClient, issuer_wallet) -> None:
    delegation_id = _create(client, issuer_wallet)

    r = client.get(f"/api/v1/delegations/{delegation_id}/status")
    assert r.status_code == status.HTTP_200_OK
    assert r.json() == {"valid": True, "reason": None}
    assert r.headers["X-RateLimit-Limit"] == str(settings.rate_limit_verification)

    client.post(f"/api/v1/delegations/{delegation_id}/revoke", headers=issuer_wallet.auth_headers())
    r = client.get(f"/api/v1/delegations/{delegation_id}/status")
    assert r.json() == {"valid": False, "reason": "Delegation revoked"}

    r = client.get("/api/v1/delegations/missing/status")
    assert r.json() == {"valid": False, "reason": "Delegation not found"}


def test_public_status_rate_limited_by_ip(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(settings, "rate_limit_verification", 1)
    headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}

    assert client.get("/api/v1/delegations/x/status", headers=headers).status_code == 200
    r = client.get("/api/v1/delegations/x/status", headers=headers)
    assert r.status_code == status.HTTP_429_TOO_MANY_REQUESTS

    other = client.get("/api/v1/delegations/x/status", headers={"X-Forwarded-For": "198.51.100.1"})
    assert other.status_code == status.HTTP_200_OK
