import json

import httpx
import pytest

from vericred_gate.services.indexer import IndexerClient

RECIPIENT = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
ISSUER = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"


def _client(handler) -> IndexerClient:
    transport = httpx.MockTransport(handler)
    return IndexerClient(
        "https://indexer.test/v1/graphql",
        client=httpx.AsyncClient(transport=transport),
    )


def _route(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    query = body["query"]
    if "GetCredentialsByRecipient" in query:
        assert body["variables"] == {"recipient": RECIPIENT.lower()}
        return httpx.Response(
            200,
            json={
                "data": {
                    "Credential": [
                        {"credentialType": "Degree", "issuer": ISSUER, "status": "ACTIVE"},
                        {"credentialType": "Badge", "issuer": ISSUER, "status": "REVOKED"},
                        {"credentialType": "Degree", "issuer": "0x" + "1" * 40, "status": "ACTIVE"},
                    ]
                }
            },
        )
    if "GetRecentMintEvents" in query:
        return httpx.Response(
            200,
            json={
                "data": {
                    "VeriCredSBT_CredentialMinted": [
                        {"credentialType": "Degree", "issuer": ISSUER, "blockTimestamp": "1700000000"}
                    ]
                }
            },
        )
    if "CheckInteractions" in query:
        return httpx.Response(
            200, json={"data": {"Credential_aggregate": {"aggregate": {"count": 3}}}}
        )
    if "GetIssuer" in query:
        assert body["variables"] == {"id": f"issuer_{ISSUER}"}
        return httpx.Response(
            200,
            json={
                "data": {
                    "Issuer": {
                        "name": "State University",
                        "isVerified": True,
                        "totalCredentialsIssued": 12,
                        "totalActiveCredentials": 11,
                    }
                }
            },
        )
    return httpx.Response(400)


async def test_recipient_activity_is_aggregated() -> None:
    activity = await _client(_route).get_recipient_activity(RECIPIENT)

    assert activity.address == RECIPIENT.lower()
    assert activity.total_credentials == 3
    assert activity.active_credentials == 2
    assert activity.revoked_credentials == 1
    assert activity.credential_types == ["Badge", "Degree"]
    assert len(activity.issuers) == 2
    assert activity.recent_activity == [
        {"type": "Degree", "issuer": ISSUER, "timestamp": "1700000000"}
    ]


async def test_prior_interactions_and_issuer() -> None:
    client = _client(_route)
    assert await client.count_prior_interactions(ISSUER, RECIPIENT) == 3

    issuer = await client.get_issuer_info(ISSUER)
    assert issuer is not None
    assert issuer.name == "State University"
    assert issuer.is_verified is True
    assert issuer.total_issued == 12


@pytest.mark.parametrize(
    "reply",
    [
        lambda request: httpx.Response(503),
        lambda request: httpx.Response(200, json={"errors": [{"message": "boom"}]}),
        lambda request: httpx.Response(200, json={"data": None}),
        lambda request: httpx.Response(200, content=b"<html>"),
    ],
)
async def test_failures_degrade_to_empty_results(reply) -> None:
    client = _client(reply)

    activity = await client.get_recipient_activity(RECIPIENT)
    assert activity.total_credentials == 0
    assert activity.recent_activity == []
    assert await client.count_prior_interactions(ISSUER, RECIPIENT) == 0
    assert await client.get_issuer_info(ISSUER) is None


async def test_disabled_indexer_makes_no_requests() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = IndexerClient("", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    assert client.enabled is False
    assert await client.get_credentials_by_recipient(RECIPIENT) == []
    assert await client.count_prior_interactions(ISSUER, RECIPIENT) == 0
    assert await client.get_issuer_info(ISSUER) is None
