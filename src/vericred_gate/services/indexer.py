"""Read-only client for the on-chain credential indexer (GraphQL).

Query failures are logged and degrade to empty results so that risk analysis
can still run on whatever facts are available.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from vericred_gate.core.security import normalize_address
from vericred_gate.core.settings import settings

logger = logging.getLogger(__name__)

_CREDENTIALS_BY_RECIPIENT = """
query GetCredentialsByRecipient($recipient: String!) {
  Credential(
    where: { recipient: { _eq: $recipient } }
    order_by: { issuedAt: desc }
  ) {
    id
    tokenId
    recipient
    issuer
    credentialType
    status
    issuedAt
  }
}
"""

_RECENT_MINT_EVENTS = """
query GetRecentMintEvents($recipient: String!, $limit: Int!) {
  VeriCredSBT_CredentialMinted(
    where: { recipient: { _eq: $recipient } }
    order_by: { blockTimestamp: desc }
    limit: $limit
  ) {
    tokenId
    issuer
    credentialType
    blockTimestamp
  }
}
"""

_PRIOR_INTERACTIONS = """
query CheckInteractions($issuer: String!, $recipient: String!) {
  Credential_aggregate(
    where: { issuer: { _eq: $issuer }, recipient: { _eq: $recipient } }
  ) {
    aggregate {
      count
    }
  }
}
"""

_ISSUER = """
query GetIssuer($id: ID!) {
  Issuer(id: $id) {
    id
    name
    isVerified
    totalCredentialsIssued
    totalActiveCredentials
  }
}
"""


@dataclass(frozen=True)
class RecipientActivity:
    """Summary of a recipient's credential history."""

    address: str
    total_credentials: int = 0
    active_credentials: int = 0
    revoked_credentials: int = 0
    credential_types: list[str] = field(default_factory=list)
    issuers: list[str] = field(default_factory=list)
    recent_activity: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class IssuerInfo:
    address: str
    name: str = "Unknown"
    is_verified: bool = False
    total_issued: int = 0
    active_credentials: int = 0


class IndexerError(RuntimeError):
    """Raised when the indexer returns an unusable response."""


class IndexerClient:
    """GraphQL client for credential history queries."""

    def __init__(
        self,
        url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url if url is not None else settings.indexer_url
        self._timeout = timeout_seconds or settings.indexer_timeout_seconds
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def initialize(self) -> None:
        await self._ensure_client()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        if not self.enabled:
            raise IndexerError("Indexer URL not configured")
        client = await self._ensure_client()
        response = await client.post(
            str(self.url),
            json={"query": query, "variables": variables},
        )
        response.raise_for_status()
        payload = response.json()
        if payload.get("errors"):
            raise IndexerError(str(payload["errors"]))
        data = payload.get("data")
        if not isinstance(data, dict):
            raise IndexerError("Indexer response has no data")
        return data

    async def get_credentials_by_recipient(self, address: str) -> list[dict[str, Any]]:
        if not self.enabled:
            return []
        try:
            data = await self._query(
                _CREDENTIALS_BY_RECIPIENT,
                {"recipient": normalize_address(address)},
            )
        except (httpx.HTTPError, IndexerError, ValueError) as err:
            logger.warning("Failed to fetch credentials for %s: %s", address, err)
            return []
        return list(data.get("Credential") or [])

    async def get_recent_mint_events(self, address: str, limit: int = 20) -> list[dict[str, Any]]:
        if not self.enabled:
            return []
        try:
            data = await self._query(
                _RECENT_MINT_EVENTS,
                {"recipient": normalize_address(address), "limit": limit},
            )
        except (httpx.HTTPError, IndexerError, ValueError) as err:
            logger.warning("Failed to fetch mint events for %s: %s", address, err)
            return []
        return list(data.get("VeriCredSBT_CredentialMinted") or [])

    async def count_prior_interactions(self, issuer_address: str, recipient_address: str) -> int:
        """Return how many credentials `issuer_address` has issued to `recipient_address`."""
        if not self.enabled:
            return 0
        try:
            data = await self._query(
                _PRIOR_INTERACTIONS,
                {
                    "issuer": normalize_address(issuer_address),
                    "recipient": normalize_address(recipient_address),
                },
            )
        except (httpx.HTTPError, IndexerError, ValueError) as err:
            logger.warning("Failed to check prior interactions: %s", err)
            return 0
        aggregate = (data.get("Credential_aggregate") or {}).get("aggregate") or {}
        return int(aggregate.get("count") or 0)

    async def get_issuer_info(self, address: str) -> IssuerInfo | None:
        if not self.enabled:
            return None
        try:
            data = await self._query(_ISSUER, {"id": f"issuer_{normalize_address(address)}"})
        except (httpx.HTTPError, IndexerError, ValueError) as err:
            logger.warning("Failed to fetch issuer %s: %s", address, err)
            return None
        issuer = data.get("Issuer")
        if not issuer:
            return None
        return IssuerInfo(
            address=normalize_address(address),
            name=issuer.get("name") or "Unknown",
            is_verified=bool(issuer.get("isVerified")),
            total_issued=int(issuer.get("totalCredentialsIssued") or 0),
            active_credentials=int(issuer.get("totalActiveCredentials") or 0),
        )

    async def get_recipient_activity(self, address: str) -> RecipientActivity:
        """Aggregate a recipient's credential history for risk analysis."""
        credentials, recent = await asyncio.gather(
            self.get_credentials_by_recipient(address),
            self.get_recent_mint_events(address, 20),
        )
        return RecipientActivity(
            address=normalize_address(address),
            total_credentials=len(credentials),
            active_credentials=sum(1 for c in credentials if c.get("status") == "ACTIVE"),
            revoked_credentials=sum(1 for c in credentials if c.get("status") == "REVOKED"),
            credential_types=sorted({c["credentialType"] for c in credentials if c.get("credentialType")}),
            issuers=sorted({c["issuer"] for c in credentials if c.get("issuer")}),
            recent_activity=[
                {
                    "type": event.get("credentialType"),
                    "issuer": event.get("issuer"),
                    "timestamp": event.get("blockTimestamp"),
                }
                for event in recent[:10]
            ],
        )
