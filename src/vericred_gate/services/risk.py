"""Fraud risk classification for credential issuance.

The gate gathers on-chain facts about the recipient and issuer, hands them to
an analyzer and returns the classification. It never blocks on its own;
callers decide what to do with a HIGH result.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Protocol

import httpx
import openai
from openai import AsyncOpenAI

from vericred_gate.core.security import normalize_address
from vericred_gate.core.settings import settings
from vericred_gate.services.indexer import IndexerClient, IssuerInfo, RecipientActivity
from vericred_gate.services.risk_cache import RiskAssessmentCache, cache_key

logger = logging.getLogger(__name__)

LOW_THRESHOLD = 30
HIGH_THRESHOLD = 70


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @classmethod
    def from_score(cls, score: int) -> RiskLevel:
        if score < LOW_THRESHOLD:
            return cls.LOW
        if score > HIGH_THRESHOLD:
            return cls.HIGH
        return cls.MEDIUM

    @classmethod
    def parse(cls, value: Any) -> RiskLevel:
        """Parse a level from untrusted input, defaulting to MEDIUM."""
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.MEDIUM


@dataclass(frozen=True)
class RiskContext:
    """Facts about one prospective issuance."""

    recipient: RecipientActivity
    issuer: IssuerInfo
    prior_interactions: int
    credential_type: str


@dataclass
class RiskAssessment:
    risk_score: int
    risk_level: RiskLevel
    recommendation: str
    red_flags: list[str] = field(default_factory=list)
    source: str = "rules"
    analysis: dict[str, Any] = field(default_factory=dict)

    @property
    def is_high(self) -> bool:
        return self.risk_level is RiskLevel.HIGH

    def summary(self) -> dict[str, Any]:
        return {
            "riskLevel": self.risk_level.value,
            "riskScore": self.risk_score,
            "recommendation": self.recommendation,
        }

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["risk_level"] = self.risk_level.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RiskAssessment:
        return cls(
            risk_score=int(data["risk_score"]),
            risk_level=RiskLevel.parse(data.get("risk_level")),
            recommendation=str(data.get("recommendation", "")),
            red_flags=[str(flag) for flag in data.get("red_flags") or []],
            source=str(data.get("source", "rules")),
            analysis=dict(data.get("analysis") or {}),
        )


class RiskAnalyzer(Protocol):
    async def analyze(self, context: RiskContext) -> RiskAssessment: ...


def clamp_score(value: Any) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return 50
    return max(0, min(100, score))


def _analysis_summary(context: RiskContext, red_flags: list[str]) -> dict[str, Any]:
    return {
        "priorInteractions": context.prior_interactions,
        "recipientHistory": (
            f"{context.recipient.total_credentials} credentials, "
            f"{context.recipient.active_credentials} active"
        ),
        "issuerReputation": "Verified issuer" if context.issuer.is_verified else "Unverified issuer",
        "redFlags": list(red_flags),
    }


class RuleBasedRiskAnalyzer:
    """Deterministic scoring from fixed signal weights."""

    def score(self, context: RiskContext) -> RiskAssessment:
        recipient = context.recipient
        score = 50
        red_flags: list[str] = []

        if context.prior_interactions > 0:
            score -= 20
        if context.issuer.is_verified:
            score -= 15
        if recipient.total_credentials > 0 and recipient.revoked_credentials == 0:
            score -= 10

        if recipient.revoked_credentials > 2:
            score += 25
            red_flags.append("Multiple revoked credentials in history")
        if context.prior_interactions == 0 and recipient.total_credentials == 0:
            score += 10
            red_flags.append("No prior on-chain history")
        if not context.issuer.is_verified:
            red_flags.append("Issuer not verified")

        score = max(0, min(100, score))
        level = RiskLevel.from_score(score)

        if level is RiskLevel.LOW:
            if context.prior_interactions > 0:
                recommendation = (
                    f"Low Risk: Found {context.prior_interactions} prior interaction(s) "
                    "between these addresses."
                )
            else:
                recommendation = "Low Risk. Legitimate on-chain history detected."
        elif level is RiskLevel.MEDIUM:
            recommendation = "Medium Risk: " + (
                red_flags[0] if red_flags else "No prior history found. Verify manually."
            )
        else:
            recommendation = f"High Risk: {'. '.join(red_flags)}. Recommend manual verification."

        return RiskAssessment(
            risk_score=score,
            risk_level=level,
            recommendation=recommendation,
            red_flags=red_flags,
            source="rules",
            analysis=_analysis_summary(context, red_flags),
        )

    async def analyze(self, context: RiskContext) -> RiskAssessment:
        return self.score(context)


_SYSTEM_PROMPT = (
    "You are a fraud detection AI analyzing credential issuance risk. "
    "Base the analysis only on the on-chain data provided. "
    "Always respond with a single valid JSON object."
)


def build_prompt(context: RiskContext) -> str:
    """Serialize the gathered facts into the analysis prompt."""
    recipient = context.recipient
    issuer = context.issuer
    return f"""ON-CHAIN HISTORY for recipient address {recipient.address}:
- Total credentials received: {recipient.total_credentials}
- Active credentials: {recipient.active_credentials}
- Revoked credentials: {recipient.revoked_credentials}
- Credential types: {", ".join(recipient.credential_types) or "None"}
- Unique issuers: {len(recipient.issuers)}
- Recent activity: {json.dumps(recipient.recent_activity, indent=2)}

ISSUER address: {issuer.address}
- Name: {issuer.name}
- Verified: {str(issuer.is_verified).lower()}
- Total issued: {issuer.total_issued}
- Active: {issuer.active_credentials}

PRIOR INTERACTIONS between these addresses: {context.prior_interactions}

REQUESTED CREDENTIAL TYPE: {context.credential_type}

Based on this history, analyze the likelihood that this issuance request is legitimate.

Focus on:
1. Prior interactions between these addresses (strong positive signal)
2. Recipient's general on-chain behavior (suspicious patterns?)
3. Issuer's reputation and verification status
4. Credential type consistency with recipient's history

Respond ONLY with a JSON object containing:
- "riskScore" (number 0-100, where 0=no risk, 100=maximum risk)
- "riskLevel" (string: "LOW", "MEDIUM", or "HIGH")
- "recommendation" (string: brief explanation for issuer)
- "redFlags" (array of strings: specific concerns, empty if none)"""


class ModelRiskAnalyzer:
    """Language-model scorer that degrades to :class:`RuleBasedRiskAnalyzer`.

    API errors, timeouts and unparseable replies all produce the rule-based
    assessment instead of an exception. Requests are not retried.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
        fallback: RuleBasedRiskAnalyzer | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.openai_model
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self._timeout = timeout_seconds or settings.openai_timeout_seconds
        self._http_client = http_client
        self._client: AsyncOpenAI | None = None
        self.fallback = fallback or RuleBasedRiskAnalyzer()

    async def initialize(self) -> None:
        if self.api_key:
            self._ensure_client()

    def _ensure_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self._timeout,
                max_retries=0,
                http_client=self._http_client,
            )
        return self._client

    async def close(self) -> None:
        # A caller-supplied http client is closed by its owner.
        if self._client is not None and self._http_client is None:
            await self._client.close()
        self._client = None

    async def analyze(self, context: RiskContext) -> RiskAssessment:
        if not self.api_key:
            return self.fallback.score(context)
        try:
            raw = await self._complete(build_prompt(context))
            return self._parse(raw, context)
        except (openai.APIError, ValueError, KeyError, TypeError, IndexError) as err:
            logger.warning("Model risk analysis failed, using rule-based fallback: %s", err)
            return self.fallback.score(context)

    async def _complete(self, prompt: str) -> str:
        completion = await self._ensure_client().chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            temperature=0.3,
        )
        content = completion.choices[0].message.content
        if content is None:
            raise ValueError("Model reply has no content")
        return content

    def _parse(self, raw: str, context: RiskContext) -> RiskAssessment:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Model reply is not a JSON object")
        flags = data.get("redFlags") or []
        if not isinstance(flags, list):
            flags = [flags]
        red_flags = [str(flag) for flag in flags]
        return RiskAssessment(
            risk_score=clamp_score(data.get("riskScore", 50)),
            risk_level=RiskLevel.parse(data.get("riskLevel")),
            recommendation=str(data.get("recommendation") or "Unable to complete analysis"),
            red_flags=red_flags,
            source="model",
            analysis=_analysis_summary(context, red_flags),
        )


class RiskGate:
    """Assess an issuance using indexer facts and a pluggable analyzer."""

    def __init__(
        self,
        indexer: IndexerClient,
        analyzer: RiskAnalyzer | None = None,
        cache: RiskAssessmentCache | None = None,
    ) -> None:
        self.indexer = indexer
        self.analyzer: RiskAnalyzer = analyzer or RuleBasedRiskAnalyzer()
        self.cache = cache

    async def gather(
        self,
        recipient_address: str,
        issuer_address: str,
        credential_type: str,
    ) -> RiskContext:
        activity, prior, issuer = await asyncio.gather(
            self.indexer.get_recipient_activity(recipient_address),
            self.indexer.count_prior_interactions(issuer_address, recipient_address),
            self.indexer.get_issuer_info(issuer_address),
        )
        return RiskContext(
            recipient=activity,
            issuer=issuer or IssuerInfo(address=normalize_address(issuer_address)),
            prior_interactions=prior,
            credential_type=credential_type,
        )

    async def assess(
        self,
        recipient_address: str,
        issuer_address: str,
        credential_type: str,
    ) -> RiskAssessment:
        key = cache_key(recipient_address, issuer_address, credential_type)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                try:
                    return RiskAssessment.from_dict(cached)
                except (KeyError, TypeError, ValueError):
                    logger.warning("Ignoring malformed cached assessment for %s", key)

        context = await self.gather(recipient_address, issuer_address, credential_type)
        assessment = await self.analyzer.analyze(context)
        logger.info(
            "Risk assessed for %s by %s: %s (%d, %s)",
            context.recipient.address,
            context.issuer.address,
            assessment.risk_level.value,
            assessment.risk_score,
            assessment.source,
        )
        if self.cache is not None:
            self.cache.set(key, assessment.to_dict())
        return assessment
