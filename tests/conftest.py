# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

CONTRACT_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
BACKEND_ADDRESS = "0x9965507d1a55bcc2695c58ba16fb37d819b0a4dc"
RECIPIENT_ADDRESS = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("VERICRED_SBT_ADDRESS", CONTRACT_ADDRESS)
os.environ.setdefault("BACKEND_DELEGATION_ADDRESS", BACKEND_ADDRESS)

from web3 import Web3  # noqa: E402

from vericred_gate.core.security import sign_message  # noqa: E402
from vericred_gate.core.settings import settings  # noqa: E402
from vericred_gate.db.session import Base, build_engine, create_tables  # noqa: E402
from vericred_gate.db.session import get_db as app_get_session  # noqa: E402
from vericred_gate.db.time import to_millis, utcnow  # noqa: E402
from vericred_gate.main import app as fastapi_app  # noqa: E402
from vericred_gate.models import Delegation  # noqa: E402
from vericred_gate.repositories.delegation_repo import (  # noqa: E402
    DelegationGrant,
    DelegationRepository,
)
from vericred_gate.services.auth import (  # noqa: E402
    build_auth_headers,
    generate_auth_message,
)
from vericred_gate.services.chain import ChainCall, ChainReceipt, LogEntry  # noqa: E402
from vericred_gate.services.container import ServiceContainer  # noqa: E402
from vericred_gate.services.indexer import (  # noqa: E402
    IndexerClient,
    IssuerInfo,
    RecipientActivity,
)
from vericred_gate.services.risk import ModelRiskAnalyzer  # noqa: E402
from vericred_gate.services.risk_cache import RiskAssessmentCache  # noqa: E402

TEST_DB_URL = "sqlite://"

# Well-known development keys; never funded outside local chains.
ISSUER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
OTHER_ISSUER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"


@dataclass(frozen=True)
class Wallet:
    """Test signer able to produce authentication headers."""

    private_key: str
    address: str

    def auth_headers(self, timestamp_ms: int | None = None) -> dict[str, str]:
        timestamp = timestamp_ms if timestamp_ms is not None else to_millis(utcnow())
        signature = sign_message(self.private_key, generate_auth_message(timestamp))
        return build_auth_headers(self.address, signature, timestamp)


def _wallet(private_key: str) -> Wallet:
    from eth_account import Account

    return Wallet(private_key=private_key, address=Account.from_key(private_key).address.lower())


class FakeIndexer(IndexerClient):
    """Indexer returning canned facts instead of querying GraphQL."""

    def __init__(
        self,
        activity: RecipientActivity | None = None,
        prior_interactions: int = 0,
        issuer: IssuerInfo | None = None,
    ) -> None:
        super().__init__(url="http://indexer.test")
        self.activity = activity
        self.prior_interactions = prior_interactions
        self.issuer = issuer

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def get_recipient_activity(self, address: str) -> RecipientActivity:
        return self.activity or RecipientActivity(address=address.lower())

    async def count_prior_interactions(self, issuer_address: str, recipient_address: str) -> int:
        return self.prior_interactions

    async def get_issuer_info(self, address: str) -> IssuerInfo | None:
        return self.issuer


class FakeUploader:
    """Metadata uploader recording what it was asked to pin."""

    configured = True

    def __init__(self) -> None:
        self.published: list[dict[str, Any]] = []
        self.error: Exception | None = None

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def publish(self, metadata: dict[str, Any]) -> str:
        if self.error is not None:
            raise self.error
        self.published.append(metadata)
        return f"ipfs://QmTestCid{len(self.published)}"


class FakeChain:
    """Chain submitter that confirms every call and emits CredentialMinted."""

    def __init__(self) -> None:
        self.calls: list[ChainCall] = []
        self.error: Exception | None = None
        self.emit_event = True

    async def submit(self, call: ChainCall) -> ChainReceipt:
        if self.error is not None:
            raise self.error
        self.calls.append(call)
        token_id = len(self.calls)
        logs: list[LogEntry] = []
        if self.emit_event:
            topic0 = Web3.to_hex(Web3.keccak(text=settings.credential_minted_event_signature))
            logs.append(
                LogEntry(
                    address=call.target,
                    topics=[topic0, "0x" + format(token_id, "064x")],
                    data="0x",
                )
            )
        return ChainReceipt(
            transaction_hash="0x" + format(token_id, "064x"),
            block_number=100 + token_id,
            status=1,
            logs=logs,
        )


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = build_engine(TEST_DB_URL, poolclass=StaticPool)
    create_tables(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def issuer_wallet() -> Wallet:
    return _wallet(ISSUER_KEY)


@pytest.fixture()
def other_wallet() -> Wallet:
    return _wallet(OTHER_ISSUER_KEY)


@pytest.fixture()
def fake_indexer() -> FakeIndexer:
    return FakeIndexer()


@pytest.fixture()
def fake_uploader() -> FakeUploader:
    return FakeUploader()


@pytest.fixture()
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def services(
    fake_indexer: FakeIndexer,
    fake_uploader: FakeUploader,
    fake_chain: FakeChain,
) -> ServiceContainer:
    return ServiceContainer(
        indexer=fake_indexer,
        analyzer=ModelRiskAnalyzer(api_key=""),
        cache=RiskAssessmentCache(redis_url=""),
        uploader=fake_uploader,  # type: ignore[arg-type]
        chain=fake_chain,
    )


@pytest.fixture()
def make_delegation(db_session: Session):
    """Return a factory persisting delegations for a wallet."""

    def _make(
        issuer_address: str,
        *,
        max_calls: int = 100,
        expires_at: datetime | None = None,
        contract_address: str | None = CONTRACT_ADDRESS,
    ) -> Delegation:
        return DelegationRepository(db_session).create(
            DelegationGrant(
                issuer_address=issuer_address,
                smart_account_address="0x90f79bf6eb2c4f870365e785982e1f101e93b906",
                backend_address=BACKEND_ADDRESS,
                delegation_payload={"delegate": BACKEND_ADDRESS, "signature": "0x" + "ab" * 65},
                max_calls=max_calls,
                expires_at=expires_at or utcnow() + timedelta(days=30),
                contract_address=contract_address,
                caveats=["allowedTargets", "allowedMethods", "limitedCalls", "timestamp"],
            )
        )

    return _make


@pytest.fixture()
def app(services: ServiceContainer) -> FastAPI:
    fastapi_app.state.services = services
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    fastapi_app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        fastapi_app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client
