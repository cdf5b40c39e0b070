"""Credential metadata publishing to IPFS through Pinata."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

import httpx
from web3 import Web3

from vericred_gate.core.settings import settings
from vericred_gate.db.time import utcnow

logger = logging.getLogger(__name__)

IPFS_SCHEME = "ipfs://"


class MetadataPublishError(RuntimeError):
    """Publishing failed. `retryable` is True for transport failures."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


def credential_hash(credential_data: dict[str, Any]) -> str:
    """Return the keccak-256 digest of the canonical JSON form of `credential_data`."""
    canonical = json.dumps(credential_data, sort_keys=True, separators=(",", ":"), default=str)
    return Web3.to_hex(Web3.keccak(text=canonical))


def build_credential_metadata(
    *,
    credential_type: str,
    issuer_address: str,
    recipient_address: str,
    issuer_name: str | None = None,
    recipient_name: str | None = None,
    issued_at: datetime | None = None,
    expires_at: datetime | None = None,
    credential_hash: str = "",
    additional_data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the JSON document pinned for a credential."""
    issuer_label = issuer_name or "Unknown Issuer"
    attributes: dict[str, Any] = {
        "credentialType": credential_type,
        "issuer": issuer_label,
        "issuerName": issuer_label,
        "issuerAddress": issuer_address,
        "recipient": recipient_address,
        "recipientName": recipient_name or "Unknown",
        "issuedDate": (issued_at or utcnow()).isoformat(),
        "credentialHash": credential_hash,
    }
    if expires_at is not None:
        attributes["expirationDate"] = expires_at.isoformat()
    if additional_data:
        attributes["additionalData"] = additional_data
    return {
        "name": f"{credential_type} - {recipient_name or 'Credential'}",
        "description": f"Verifiable {credential_type} credential issued by {issuer_label}",
        "attributes": attributes,
    }


def gateway_url(ipfs_uri: str, gateway: str | None = None) -> str:
    base = gateway or settings.ipfs_gateway_url
    if not base.endswith("/"):
        base += "/"
    return base + ipfs_uri.removeprefix(IPFS_SCHEME)


class PinataUploader:
    """Pin JSON documents and return `ipfs://<cid>` URIs."""

    def __init__(
        self,
        api_key: str | None = None,
        secret_key: str | None = None,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.pinata_api_key
        self.secret_key = secret_key if secret_key is not None else settings.pinata_secret_key
        self.base_url = (base_url or settings.pinata_base_url).rstrip("/")
        self._timeout = timeout_seconds or settings.pinata_timeout_seconds
        self._client = client
        self._owns_client = client is None
        self._authenticated = False

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.secret_key)

    def _headers(self) -> dict[str, str]:
        if not self.configured:
            raise MetadataPublishError(
                "PINATA_API_KEY and PINATA_SECRET_KEY must be set",
                retryable=False,
            )
        return {
            "pinata_api_key": str(self.api_key),
            "pinata_secret_api_key": str(self.secret_key),
        }

    async def initialize(self) -> None:
        """Open the HTTP client and check the credentials once."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        if self._authenticated:
            return
        try:
            response = await self._client.get(
                f"{self.base_url}/data/testAuthentication",
                headers=self._headers(),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as err:
            raise MetadataPublishError(
                f"Pinata authentication failed: HTTP {err.response.status_code}",
                retryable=False,
            ) from err
        except httpx.HTTPError as err:
            raise MetadataPublishError(
                f"Pinata authentication failed: {err}",
                retryable=True,
            ) from err
        self._authenticated = True
        logger.info("Pinata authenticated")

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._authenticated = False

    async def publish(self, metadata: dict[str, Any]) -> str:
        """Pin `metadata` and return its content URI."""
        headers = self._headers()
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        credential_type = metadata.get("attributes", {}).get("credentialType", "unknown")
        body = {
            "pinataContent": metadata,
            "pinataMetadata": {
                "name": f"credential-{credential_type}-{int(utcnow().timestamp() * 1000)}",
            },
            "pinataOptions": {"cidVersion": 0},
        }
        try:
            response = await self._client.post(
                f"{self.base_url}/pinning/pinJSONToIPFS",
                headers=headers,
                json=body,
            )
            response.raise_for_status()
            ipfs_hash = response.json()["IpfsHash"]
        except httpx.HTTPStatusError as err:
            status = err.response.status_code
            raise MetadataPublishError(
                f"IPFS upload failed: HTTP {status}",
                retryable=status >= 500 or status == 429,
            ) from err
        except httpx.HTTPError as err:
            raise MetadataPublishError(f"IPFS upload failed: {err}", retryable=True) from err
        except (KeyError, ValueError) as err:
            raise MetadataPublishError("IPFS upload failed: malformed response") from err

        uri = f"{IPFS_SCHEME}{ipfs_hash}"
        logger.info("Metadata pinned at %s", uri)
        return uri
