"""Long-lived collaborators shared across requests."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from vericred_gate.repositories.credential_repo import CredentialRepository
from vericred_gate.repositories.delegation_repo import DelegationRepository
from vericred_gate.services.auth import SignatureAuthenticator
from vericred_gate.services.chain import ChainSubmissionError, ChainSubmitter, Web3ChainSubmitter
from vericred_gate.services.indexer import IndexerClient
from vericred_gate.services.issuance import IssuancePipeline
from vericred_gate.services.metadata import MetadataPublishError, PinataUploader
from vericred_gate.services.rate_limiter import RateLimiter
from vericred_gate.services.risk import ModelRiskAnalyzer, RiskGate
from vericred_gate.services.risk_cache import RiskAssessmentCache

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Own the outbound clients and build per-request services around a session.

    Collaborators are created eagerly and connected in :meth:`initialize`.
    A collaborator that fails to initialize is logged and retried lazily on
    first use, so the API can start without every upstream being reachable.
    """

    def __init__(
        self,
        *,
        authenticator: SignatureAuthenticator | None = None,
        indexer: IndexerClient | None = None,
        analyzer: ModelRiskAnalyzer | None = None,
        cache: RiskAssessmentCache | None = None,
        uploader: PinataUploader | None = None,
        chain: ChainSubmitter | None = None,
    ) -> None:
        self.authenticator = authenticator or SignatureAuthenticator()
        self.indexer = indexer or IndexerClient()
        self.analyzer = analyzer or ModelRiskAnalyzer()
        self.cache = cache or RiskAssessmentCache()
        self.risk_gate = RiskGate(self.indexer, self.analyzer, self.cache)
        self.uploader = uploader or PinataUploader()
        self.chain: ChainSubmitter = chain or Web3ChainSubmitter()
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self.indexer.initialize()
        await self.analyzer.initialize()
        try:
            await self.uploader.initialize()
        except MetadataPublishError as err:
            logger.warning("Metadata uploader not ready: %s", err)
        if isinstance(self.chain, Web3ChainSubmitter):
            try:
                await self.chain.initialize()
            except ChainSubmissionError as err:
                logger.warning("Chain submitter not ready: %s", err)
        logger.info("Services initialized (risk cache: %s)", self.cache.backend)
        self._initialized = True

    async def shutdown(self) -> None:
        await self.indexer.close()
        await self.analyzer.close()
        await self.uploader.close()
        if isinstance(self.chain, Web3ChainSubmitter):
            await self.chain.close()
        self.cache.close()
        self._initialized = False
        logger.info("Services shut down")

    def rate_limiter(self, session: Session) -> RateLimiter:
        return RateLimiter(session)

    def issuance_pipeline(self, session: Session) -> IssuancePipeline:
        return IssuancePipeline(
            DelegationRepository(session),
            CredentialRepository(session),
            self.risk_gate,
            self.uploader,
            self.chain,
        )
