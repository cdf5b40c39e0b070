"""Credential issuance authorization and execution.

One request moves through these stages in order::

    AUTHENTICATING -> DELEGATION_RESOLVED -> USAGE_RESERVED -> RISK_CHECKED
        -> METADATA_PUBLISHED -> CHAIN_SUBMITTED -> COMPLETE

A usage slot is consumed when it is reserved, not when the mint succeeds.
Requests rejected by the risk gate or failing at the metadata or chain stage
keep their slot consumed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from vericred_gate.core.errors import Forbidden, NotFound, UpstreamFailure, ValidationFailed
from vericred_gate.core.security import normalize_address
from vericred_gate.core.settings import settings
from vericred_gate.db.time import utcnow
from vericred_gate.models.credential import IssuedCredential
from vericred_gate.models.delegation import Delegation
from vericred_gate.repositories.credential_repo import CredentialRepository
from vericred_gate.repositories.delegation_repo import DelegationRepository
from vericred_gate.schemas.credential import AUTO_DELEGATION
from vericred_gate.services.chain import (
    ChainCall,
    ChainReceipt,
    ChainSubmissionError,
    ChainSubmitter,
    extract_token_id,
)
from vericred_gate.services.metadata import (
    MetadataPublishError,
    PinataUploader,
    build_credential_metadata,
    credential_hash,
)
from vericred_gate.services.risk import RiskAssessment, RiskGate

logger = logging.getLogger(__name__)


class IssuanceStage(str, Enum):
    AUTHENTICATING = "authenticating"
    DELEGATION_RESOLVED = "delegation_resolved"
    USAGE_RESERVED = "usage_reserved"
    RISK_CHECKED = "risk_checked"
    METADATA_PUBLISHED = "metadata_published"
    CHAIN_SUBMITTED = "chain_submitted"
    COMPLETE = "complete"


@dataclass(frozen=True)
class IssueCredentialCommand:
    """Validated issuance input bound to the authenticated issuer."""

    issuer_address: str
    recipient_address: str
    credential_type: str
    credential_data: dict[str, Any]
    recipient_name: str | None = None
    issuer_name: str | None = None
    delegation_id: str | None = None

    def __post_init__(self) -> None:
        missing = [
            name
            for name in ("issuer_address", "recipient_address", "credential_type")
            if not getattr(self, name)
        ]
        if not self.credential_data:
            missing.append("credential_data")
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")
        object.__setattr__(self, "issuer_address", normalize_address(self.issuer_address))
        object.__setattr__(self, "recipient_address", normalize_address(self.recipient_address))

    @property
    def auto_delegation(self) -> bool:
        return not self.delegation_id or self.delegation_id == AUTO_DELEGATION


@dataclass
class IssuanceResult:
    token_id: str
    transaction_hash: str
    metadata_uri: str
    delegation_id: str
    risk: RiskAssessment | None = None
    stages: list[IssuanceStage] = field(default_factory=list)


class IssuancePipeline:
    """Compose delegation checks, the risk gate and the external side effects."""

    def __init__(
        self,
        delegations: DelegationRepository,
        credentials: CredentialRepository,
        risk_gate: RiskGate | None,
        uploader: PinataUploader,
        chain: ChainSubmitter,
        *,
        contract_address: str | None = None,
        event_signature: str | None = None,
        mint_function_signature: str | None = None,
    ) -> None:
        self.delegations = delegations
        self.credentials = credentials
        self.risk_gate = risk_gate
        self.uploader = uploader
        self.chain = chain
        self.contract_address = contract_address or settings.credential_contract_address
        self.event_signature = event_signature or settings.credential_minted_event_signature
        self.mint_function_signature = mint_function_signature or settings.mint_function_signature

    async def issue(self, command: IssueCredentialCommand) -> IssuanceResult:
        stages = [IssuanceStage.AUTHENTICATING]

        delegation = self.resolve_delegation(command)
        stages.append(IssuanceStage.DELEGATION_RESOLVED)

        if not self.delegations.increment_call_count(delegation.id):
            raise Forbidden("Delegation has reached maximum usage limit")
        stages.append(IssuanceStage.USAGE_RESERVED)

        risk = await self._assess(command)
        if risk is not None and risk.is_high:
            logger.warning(
                "Issuance blocked by risk gate: issuer=%s recipient=%s score=%d",
                command.issuer_address,
                command.recipient_address,
                risk.risk_score,
            )
            raise Forbidden(
                risk.recommendation or "High fraud risk detected",
                extra={"fraudAnalysis": risk.summary(), "redFlags": list(risk.red_flags)},
            )
        stages.append(IssuanceStage.RISK_CHECKED)

        digest = credential_hash(command.credential_data)
        metadata_uri = await self._publish(command, delegation, digest)
        stages.append(IssuanceStage.METADATA_PUBLISHED)

        call = self._mint_call(command, delegation, metadata_uri, digest)
        # The transaction outlives the request once sent.
        task = asyncio.ensure_future(
            self._submit_and_record(command, delegation, metadata_uri, call, risk)
        )
        token_id, receipt = await asyncio.shield(task)
        stages.extend([IssuanceStage.CHAIN_SUBMITTED, IssuanceStage.COMPLETE])

        return IssuanceResult(
            token_id=token_id,
            transaction_hash=receipt.transaction_hash,
            metadata_uri=metadata_uri,
            delegation_id=delegation.id,
            risk=risk,
            stages=stages,
        )

    def resolve_delegation(self, command: IssueCredentialCommand) -> Delegation:
        """Find the delegation to use and check it before any usage is reserved."""
        if command.auto_delegation:
            delegation = self.delegations.find_active_by_issuer(command.issuer_address)
            if delegation is None:
                if self.delegations.has_exhausted_delegation(command.issuer_address):
                    raise NotFound(
                        "No active delegation found. Your delegation has reached its "
                        "maximum usage limit; create a new one to continue."
                    )
                raise NotFound("No active delegation found. Please create a delegation first.")
        else:
            delegation = self.delegations.find_by_id(str(command.delegation_id))
            if delegation is None:
                raise NotFound("Delegation not found")

        if delegation.issuer_address != command.issuer_address:
            raise Forbidden("Delegation does not belong to this issuer")
        if delegation.is_revoked:
            raise Forbidden("Delegation has been revoked")
        if delegation.is_expired(utcnow()):
            raise Forbidden("Delegation has expired")
        return delegation

    async def _assess(self, command: IssueCredentialCommand) -> RiskAssessment | None:
        if self.risk_gate is None:
            return None
        try:
            return await self.risk_gate.assess(
                command.recipient_address,
                command.issuer_address,
                command.credential_type,
            )
        except Exception as err:  # noqa: BLE001 - fraud analysis is advisory
            logger.warning("Risk assessment unavailable, continuing without it: %s", err)
            return None

    async def _publish(
        self,
        command: IssueCredentialCommand,
        delegation: Delegation,
        digest: str,
    ) -> str:
        metadata = build_credential_metadata(
            credential_type=command.credential_type,
            issuer_address=command.issuer_address,
            recipient_address=command.recipient_address,
            issuer_name=command.issuer_name,
            recipient_name=command.recipient_name,
            issued_at=utcnow(),
            credential_hash=digest,
            additional_data=command.credential_data,
        )
        try:
            return await self.uploader.publish(metadata)
        except MetadataPublishError as err:
            logger.error("Metadata publish failed for delegation %s: %s", delegation.id, err)
            raise UpstreamFailure("metadata", str(err), retryable=err.retryable) from err

    def _mint_call(
        self,
        command: IssueCredentialCommand,
        delegation: Delegation,
        metadata_uri: str,
        digest: str,
    ) -> ChainCall:
        target = delegation.contract_address or self.contract_address
        if not target:
            raise UpstreamFailure("chain", "Credential contract address is not configured")
        return ChainCall(
            target=target,
            function_signature=self.mint_function_signature,
            args=(
                command.recipient_address,
                command.credential_type,
                metadata_uri,
                0,
                int(digest, 16),
            ),
            delegation_payload=delegation.delegation_payload,
        )

    async def _submit_and_record(
        self,
        command: IssueCredentialCommand,
        delegation: Delegation,
        metadata_uri: str,
        call: ChainCall,
        risk: RiskAssessment | None,
    ) -> tuple[str, ChainReceipt]:
        try:
            receipt = await self.chain.submit(call)
        except ChainSubmissionError as err:
            logger.error("Mint failed for delegation %s: %s", delegation.id, err)
            raise UpstreamFailure("chain", str(err)) from err

        token_id = extract_token_id(receipt, self.event_signature, call.target)
        logger.info(
            "Credential minted: token=%s tx=%s recipient=%s issuer=%s",
            token_id,
            receipt.transaction_hash,
            command.recipient_address,
            command.issuer_address,
        )
        credential = IssuedCredential(
            token_id=token_id,
            transaction_hash=receipt.transaction_hash,
            recipient_address=command.recipient_address,
            recipient_name=command.recipient_name or "Unknown",
            issuer_address=command.issuer_address,
            issuer_name=command.issuer_name or "Unknown Issuer",
            credential_type=command.credential_type,
            credential_data=command.credential_data,
            metadata_uri=metadata_uri,
            delegation_id=delegation.id,
            risk_level=risk.risk_level.value if risk else None,
            risk_score=risk.risk_score if risk else None,
            recommendation=risk.recommendation if risk else None,
            created_at=utcnow(),
        )
        try:
            self.credentials.record(credential)
        except SQLAlchemyError as err:
            # Minted on-chain regardless; the transaction hash is the recovery key.
            self.credentials.session.rollback()
            logger.error(
                "Could not record minted credential tx=%s: %s", receipt.transaction_hash, err
            )
        return token_id, receipt
