import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from vericred_gate.core.errors import Forbidden, NotFound, UpstreamFailure, ValidationFailed
from vericred_gate.db.time import utcnow
from vericred_gate.models import Delegation, IssuedCredential
from vericred_gate.repositories.delegation_repo import DelegationRepository
from vericred_gate.services.chain import UNKNOWN_TOKEN_ID, ChainSubmissionError
from vericred_gate.services.indexer import RecipientActivity
from vericred_gate.services.issuance import IssuanceStage, IssueCredentialCommand
from vericred_gate.services.metadata import MetadataPublishError, credential_hash
from tests.conftest import CONTRACT_ADDRESS, RECIPIENT_ADDRESS

CREDENTIAL_DATA = {"degree": "BSc Computer Science", "year": 2024}


@pytest.fixture()
def pipeline(services, db_session):
    return services.issuance_pipeline(db_session)


def _command(issuer_address: str, delegation_id: str | None = None, **overrides) -> IssueCredentialCommand:
    values = {
        "issuer_address": issuer_address,
        "recipient_address": RECIPIENT_ADDRESS,
        "credential_type": "Degree",
        "credential_data": CREDENTIAL_DATA,
        "recipient_name": "Ada",
        "issuer_name": "State University",
        "delegation_id": delegation_id,
    }
    values.update(overrides)
    return IssueCredentialCommand(**values)


def _calls_used(db_session, delegation_id: str) -> int:
    db_session.expire_all()
    return db_session.get(Delegation, delegation_id).calls_used


def test_command_requires_fields(issuer_wallet) -> None:
    with pytest.raises(ValidationFailed, match="credential_type, credential_data"):
        _command(issuer_wallet.address, credential_type="", credential_data={})


def test_command_normalizes_addresses(issuer_wallet) -> None:
    command = _command(
        issuer_wallet.address.upper().replace("0X", "0x"),
        recipient_address=RECIPIENT_ADDRESS.upper().replace("0X", "0x"),
    )
    assert command.issuer_address == issuer_wallet.address
    assert command.recipient_address == RECIPIENT_ADDRESS
    assert command.auto_delegation is True
    assert _command(issuer_wallet.address, "auto").auto_delegation is True
    assert _command(issuer_wallet.address, "abc").auto_delegation is False


async def test_issue_until_delegation_is_exhausted(
    pipeline, make_delegation, issuer_wallet, fake_chain, fake_uploader, db_session
) -> None:
    delegation = make_delegation(issuer_wallet.address, max_calls=2)

    first = await pipeline.issue(_command(issuer_wallet.address, delegation.id))
    second = await pipeline.issue(_command(issuer_wallet.address, delegation.id))

    assert (first.token_id, second.token_id) == ("1", "2")
    assert first.metadata_uri == "ipfs://QmTestCid1"
    assert first.delegation_id == delegation.id
    assert first.stages[-1] is IssuanceStage.COMPLETE
    assert first.risk is not None and first.risk.risk_level.value == "MEDIUM"

    with pytest.raises(Forbidden, match="maximum usage limit"):
        await pipeline.issue(_command(issuer_wallet.address, delegation.id))

    assert _calls_used(db_session, delegation.id) == 2
    assert len(fake_chain.calls) == 2
    assert len(fake_uploader.published) == 2
    assert db_session.query(IssuedCredential).count() == 2


async def test_mint_call_carries_recipient_uri_and_hash(
    pipeline, make_delegation, issuer_wallet, fake_chain
) -> None:
    delegation = make_delegation(issuer_wallet.address)
    result = await pipeline.issue(_command(issuer_wallet.address, delegation.id))

    call = fake_chain.calls[0]
    assert call.target == CONTRACT_ADDRESS
    assert call.args == (
        RECIPIENT_ADDRESS,
        "Degree",
        result.metadata_uri,
        0,
        int(credential_hash(CREDENTIAL_DATA), 16),
    )
    assert call.delegation_payload == delegation.delegation_payload


async def test_issued_credential_is_recorded(
    pipeline, make_delegation, issuer_wallet, db_session
) -> None:
    delegation = make_delegation(issuer_wallet.address)
    result = await pipeline.issue(_command(issuer_wallet.address))

    stored = db_session.query(IssuedCredential).one()
    assert stored.token_id == result.token_id
    assert stored.transaction_hash == result.transaction_hash
    assert stored.delegation_id == delegation.id
    assert stored.recipient_name == "Ada"
    assert stored.risk_level == "MEDIUM"
    assert stored.risk_score == 60


async def test_auto_resolution_uses_most_recent_delegation(
    pipeline, make_delegation, issuer_wallet
) -> None:
    make_delegation(issuer_wallet.address)
    newest = make_delegation(issuer_wallet.address)

    result = await pipeline.issue(_command(issuer_wallet.address, "auto"))
    assert result.delegation_id == newest.id


async def test_auto_resolution_without_delegation(pipeline, issuer_wallet) -> None:
    with pytest.raises(NotFound, match="No active delegation found"):
        await pipeline.issue(_command(issuer_wallet.address))


async def test_auto_resolution_explains_exhausted_delegation(
    pipeline, make_delegation, issuer_wallet
) -> None:
    make_delegation(issuer_wallet.address, max_calls=1)
    await pipeline.issue(_command(issuer_wallet.address))

    with pytest.raises(NotFound, match="maximum usage limit"):
        await pipeline.issue(_command(issuer_wallet.address))


async def test_unknown_delegation_id(pipeline, issuer_wallet) -> None:
    with pytest.raises(NotFound, match="Delegation not found"):
        await pipeline.issue(_command(issuer_wallet.address, "missing"))


async def test_other_issuers_delegation_is_forbidden(
    pipeline, make_delegation, issuer_wallet, other_wallet, db_session, fake_chain
) -> None:
    delegation = make_delegation(other_wallet.address)

    with pytest.raises(Forbidden, match="does not belong"):
        await pipeline.issue(_command(issuer_wallet.address, delegation.id))

    assert _calls_used(db_session, delegation.id) == 0
    assert fake_chain.calls == []


async def test_revoked_delegation_is_forbidden(
    pipeline, make_delegation, issuer_wallet, db_session
) -> None:
    delegation = make_delegation(issuer_wallet.address)
    DelegationRepository(db_session).revoke(delegation.id)

    with pytest.raises(Forbidden, match="Delegation has been revoked"):
        await pipeline.issue(_command(issuer_wallet.address, delegation.id))
    assert _calls_used(db_session, delegation.id) == 0


async def test_expired_delegation_is_forbidden(
    pipeline, make_delegation, issuer_wallet, db_session
) -> None:
    delegation = make_delegation(
        issuer_wallet.address,
        expires_at=utcnow() - timedelta(minutes=1),
    )

    with pytest.raises(Forbidden, match="Delegation has expired"):
        await pipeline.issue(_command(issuer_wallet.address, delegation.id))
    assert _calls_used(db_session, delegation.id) == 0


async def test_high_risk_is_blocked_after_reserving(
    pipeline, make_delegation, issuer_wallet, fake_indexer, fake_uploader, fake_chain, db_session
) -> None:
    fake_indexer.activity = RecipientActivity(
        address=RECIPIENT_ADDRESS,
        total_credentials=5,
        active_credentials=2,
        revoked_credentials=3,
    )
    delegation = make_delegation(issuer_wallet.address)

    with pytest.raises(Forbidden) as excinfo:
        await pipeline.issue(_command(issuer_wallet.address, delegation.id))

    detail = excinfo.value.to_detail()
    assert detail["fraudAnalysis"]["riskLevel"] == "HIGH"
    assert detail["fraudAnalysis"]["riskScore"] == 75
    assert "Multiple revoked credentials in history" in detail["redFlags"]
    assert _calls_used(db_session, delegation.id) == 1
    assert fake_uploader.published == []
    assert fake_chain.calls == []


async def test_risk_gate_failure_does_not_block(
    pipeline, make_delegation, issuer_wallet, mocker
) -> None:
    make_delegation(issuer_wallet.address)
    mocker.patch.object(pipeline.risk_gate, "assess", side_effect=RuntimeError("indexer down"))

    result = await pipeline.issue(_command(issuer_wallet.address))
    assert result.risk is None
    assert result.token_id == "1"


async def test_metadata_failure_stops_before_chain(
    pipeline, make_delegation, issuer_wallet, fake_uploader, fake_chain, db_session
) -> None:
    delegation = make_delegation(issuer_wallet.address)
    fake_uploader.error = MetadataPublishError("IPFS upload failed: HTTP 503", retryable=True)

    with pytest.raises(UpstreamFailure) as excinfo:
        await pipeline.issue(_command(issuer_wallet.address, delegation.id))

    assert excinfo.value.stage == "metadata"
    assert excinfo.value.retryable is True
    assert fake_chain.calls == []
    assert _calls_used(db_session, delegation.id) == 1


async def test_chain_failure_is_reported(
    pipeline, make_delegation, issuer_wallet, fake_chain, db_session
) -> None:
    delegation = make_delegation(issuer_wallet.address)
    fake_chain.error = ChainSubmissionError("execution reverted")

    with pytest.raises(UpstreamFailure) as excinfo:
        await pipeline.issue(_command(issuer_wallet.address, delegation.id))

    assert excinfo.value.stage == "chain"
    assert excinfo.value.to_detail()["code"] == "UPSTREAM_FAILURE"
    assert db_session.query(IssuedCredential).count() == 0
    assert _calls_used(db_session, delegation.id) == 1


async def test_missing_contract_address(pipeline, make_delegation, issuer_wallet, fake_chain) -> None:
    make_delegation(issuer_wallet.address, contract_address=None)
    pipeline.contract_address = None

    with pytest.raises(UpstreamFailure, match="contract address"):
        await pipeline.issue(_command(issuer_wallet.address))
    assert fake_chain.calls == []


async def test_missing_mint_event_uses_placeholder(
    pipeline, make_delegation, issuer_wallet, fake_chain, db_session
) -> None:
    make_delegation(issuer_wallet.address)
    fake_chain.emit_event = False

    result = await pipeline.issue(_command(issuer_wallet.address))
    assert result.token_id == UNKNOWN_TOKEN_ID
    assert db_session.query(IssuedCredential).one().token_id == UNKNOWN_TOKEN_ID


async def test_record_failure_still_returns_mint(
    pipeline, make_delegation, issuer_wallet, mocker
) -> None:
    make_delegation(issuer_wallet.address)
    mocker.patch.object(pipeline.credentials, "record", side_effect=SQLAlchemyError("disk full"))

    result = await pipeline.issue(_command(issuer_wallet.address))
    assert result.token_id == "1"
    assert result.transaction_hash.startswith("0x")


async def test_cancelled_request_still_records_submitted_mint(
    pipeline, make_delegation, issuer_wallet, fake_chain, db_session
) -> None:
    make_delegation(issuer_wallet.address)
    submitted = asyncio.Event()
    release = asyncio.Event()
    confirm = fake_chain.submit

    async def slow_submit(call):
        submitted.set()
        await release.wait()
        return await confirm(call)

    fake_chain.submit = slow_submit

    request = asyncio.create_task(pipeline.issue(_command(issuer_wallet.address)))
    await asyncio.wait_for(submitted.wait(), timeout=1)
    request.cancel()
    with pytest.raises(asyncio.CancelledError):
        await request

    release.set()
    for _ in range(100):
        if db_session.query(IssuedCredential).count():
            break
        await asyncio.sleep(0)

    stored = db_session.query(IssuedCredential).one()
    assert stored.token_id == "1"
    assert len(fake_chain.calls) == 1
