"""Wallet signature authentication for API requests.

A caller proves control of an address by signing a challenge that is derived
from a timestamp alone. No nonce is stored server side, so a captured
signature can be replayed until it falls outside the freshness window.
Timestamps more than a small clock skew ahead of the server are refused.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Final

from vericred_gate.core.errors import Unauthenticated
from vericred_gate.core.security import normalize_address, verify_signature
from vericred_gate.core.settings import settings
from vericred_gate.db.time import from_millis, to_millis, utcnow

logger = logging.getLogger(__name__)

ADDRESS_HEADER: Final[str] = "x-address"
SIGNATURE_HEADER: Final[str] = "x-signature"
TIMESTAMP_HEADER: Final[str] = "x-timestamp"
MESSAGE_HEADER: Final[str] = "x-message"


def generate_auth_message(timestamp: int) -> str:
    """Return the canonical challenge a wallet signs for `timestamp` (ms since epoch)."""
    return (
        "VeriCred+ Authentication\n\n"
        f"Timestamp: {timestamp}\n\n"
        "This signature proves you own this wallet address."
    )


@dataclass(frozen=True)
class AuthenticatedIssuer:
    """Identity established by a verified request signature."""

    address: str
    timestamp: int

    @property
    def signed_at(self) -> datetime:
        return from_millis(self.timestamp)


class SignatureAuthenticator:
    """Verify timestamped personal-sign challenges."""

    def __init__(
        self,
        max_age: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_skew: timedelta | None = None,
    ) -> None:
        self.max_age = max_age or timedelta(seconds=settings.auth_max_age_seconds)
        self.max_skew = (
            max_skew
            if max_skew is not None
            else timedelta(seconds=settings.auth_max_clock_skew_seconds)
        )
        self._clock = clock

    def authenticate(
        self,
        address: str | None,
        signature: str | None,
        timestamp: str | int | None,
        message: str | None = None,
        now: datetime | None = None,
    ) -> AuthenticatedIssuer:
        """Return the authenticated identity or raise :class:`Unauthenticated`.

        The freshness check runs before any signature recovery. A custom
        `message` is accepted only if it embeds the timestamp, so that it
        stays subject to the same freshness window.
        """
        if not address or not signature or timestamp is None or timestamp == "":
            raise Unauthenticated("Invalid or missing authentication")

        try:
            timestamp_ms = int(timestamp)
        except (TypeError, ValueError) as err:
            raise Unauthenticated("Invalid authentication timestamp") from err

        current_ms = to_millis(now or self._clock())
        max_age_ms = int(self.max_age.total_seconds() * 1000)
        if current_ms - timestamp_ms > max_age_ms:
            raise Unauthenticated("Authentication signature has expired")
        if timestamp_ms - current_ms > int(self.max_skew.total_seconds() * 1000):
            raise Unauthenticated("Authentication timestamp is in the future")

        challenge = generate_auth_message(timestamp_ms)
        if message and message != challenge:
            if str(timestamp_ms) not in message:
                raise Unauthenticated("Authentication message does not match timestamp")
            challenge = message

        if not verify_signature(address, challenge, signature):
            logger.info("Rejected signature for claimed address %s", address)
            raise Unauthenticated("Invalid signature for claimed address")

        return AuthenticatedIssuer(address=normalize_address(address), timestamp=timestamp_ms)

    def authenticate_headers(
        self,
        headers: Mapping[str, str],
        now: datetime | None = None,
    ) -> AuthenticatedIssuer:
        """Authenticate using the X-Address / X-Signature / X-Timestamp headers."""
        return self.authenticate(
            headers.get(ADDRESS_HEADER),
            headers.get(SIGNATURE_HEADER),
            headers.get(TIMESTAMP_HEADER),
            headers.get(MESSAGE_HEADER) or None,
            now=now,
        )


def build_auth_headers(
    address: str,
    signature: str,
    timestamp: int,
    message: str | None = None,
) -> dict[str, str]:
    """Return request headers for a signed challenge (client-side helper).

    `message` is sent as X-Message when the wallet signed something other than
    the canonical challenge. Header values cannot carry line breaks, so a
    custom message must be a single line.
    """
    headers = {
        "X-Address": address,
        "X-Signature": signature,
        "X-Timestamp": str(timestamp),
    }
    if message is not None:
        headers["X-Message"] = message
    return headers
