"""On-chain credential minting through the backend signer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Final, Protocol

from eth_abi import encode
from eth_account import Account
from web3 import AsyncWeb3, Web3

from vericred_gate.core.settings import settings

logger = logging.getLogger(__name__)

UNKNOWN_TOKEN_ID: Final[str] = "unknown"

REDEEM_DELEGATIONS_SIGNATURE: Final[str] = "redeemDelegations(bytes[],bytes32[],bytes[])"
# Delegation(delegate, delegator, authority, Caveat(enforcer, terms, args)[], salt, signature)
_DELEGATION_TUPLE: Final[str] = "(address,address,bytes32,(address,bytes,bytes)[],uint256,bytes)"
_SINGLE_CALL_MODE: Final[bytes] = bytes(32)


class ChainSubmissionError(RuntimeError):
    """The transaction could not be built, sent or confirmed."""


@dataclass(frozen=True)
class ChainCall:
    """A contract call the backend signer is asked to perform."""

    target: str
    function_signature: str
    args: tuple[Any, ...]
    delegation_payload: dict[str, Any] | None = None
    value: int = 0


@dataclass(frozen=True)
class LogEntry:
    address: str
    topics: list[str]
    data: str


@dataclass(frozen=True)
class ChainReceipt:
    transaction_hash: str
    block_number: int
    status: int
    logs: list[LogEntry] = field(default_factory=list)


class ChainSubmitter(Protocol):
    async def submit(self, call: ChainCall) -> ChainReceipt: ...


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes | bytearray):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        return bytes.fromhex(text)
    if isinstance(value, int):
        return value.to_bytes(32, "big")
    raise TypeError(f"Cannot convert {type(value).__name__} to bytes")


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to int")


def argument_types(function_signature: str) -> list[str]:
    """Return the ABI types in a signature such as ``f(address,uint256)``."""
    start = function_signature.find("(")
    if start <= 0 or not function_signature.endswith(")"):
        raise ValueError(f"Malformed function signature: {function_signature}")
    inner = function_signature[start + 1 : -1]
    return [part.strip() for part in inner.split(",")] if inner else []


def function_selector(function_signature: str) -> bytes:
    return bytes(Web3.keccak(text=function_signature)[:4])


def encode_call(function_signature: str, args: tuple[Any, ...]) -> bytes:
    """ABI-encode a call to `function_signature` with positional `args`."""
    return function_selector(function_signature) + encode(argument_types(function_signature), list(args))


def encode_redeem_delegations(
    delegation_payload: dict[str, Any],
    target: str,
    calldata: bytes,
    value: int = 0,
) -> bytes:
    """Wrap `calldata` into a delegation manager redemption of one signed delegation."""
    try:
        caveats = [
            (
                Web3.to_checksum_address(caveat["enforcer"]),
                _to_bytes(caveat.get("terms") or b""),
                _to_bytes(caveat.get("args") or b""),
            )
            for caveat in delegation_payload.get("caveats") or []
        ]
        delegation = (
            Web3.to_checksum_address(delegation_payload["delegate"]),
            Web3.to_checksum_address(delegation_payload["delegator"]),
            _to_bytes(delegation_payload["authority"]).rjust(32, b"\x00"),
            caveats,
            _to_int(delegation_payload.get("salt", 0)),
            _to_bytes(delegation_payload["signature"]),
        )
    except (KeyError, TypeError, ValueError) as err:
        raise ChainSubmissionError(f"Malformed delegation payload: {err}") from err

    permission_context = encode([f"{_DELEGATION_TUPLE}[]"], [[delegation]])
    execution = _to_bytes(Web3.to_checksum_address(target)) + value.to_bytes(32, "big") + calldata
    return function_selector(REDEEM_DELEGATIONS_SIGNATURE) + encode(
        ["bytes[]", "bytes32[]", "bytes[]"],
        [[permission_context], [_SINGLE_CALL_MODE], [execution]],
    )


def _hex(value: Any) -> str:
    if isinstance(value, bytes | bytearray):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


def extract_token_id(
    receipt: ChainReceipt,
    event_signature: str | None = None,
    contract_address: str | None = None,
) -> str:
    """Return the minted token id from the receipt, or :data:`UNKNOWN_TOKEN_ID`.

    The id is read from the first indexed topic, or from the first data word
    when the event does not index it.
    """
    topic0 = _hex(Web3.keccak(text=event_signature or settings.credential_minted_event_signature))
    for entry in receipt.logs:
        if contract_address and entry.address.lower() != contract_address.lower():
            continue
        if not entry.topics or entry.topics[0].lower() != topic0.lower():
            continue
        try:
            if len(entry.topics) > 1:
                return str(int(entry.topics[1], 16))
            data = entry.data[2:] if entry.data.startswith("0x") else entry.data
            if len(data) >= 64:
                return str(int(data[:64], 16))
        except ValueError:
            break
    logger.warning(
        "CredentialMinted event not found in transaction %s, using placeholder token id",
        receipt.transaction_hash,
    )
    return UNKNOWN_TOKEN_ID


class Web3ChainSubmitter:
    """Sign and send transactions from the backend key and wait for one confirmation."""

    def __init__(
        self,
        private_key: str | None = None,
        rpc_url: str | None = None,
        *,
        delegation_manager_address: str | None = None,
        confirmation_timeout: float | None = None,
    ) -> None:
        self._private_key = private_key if private_key is not None else settings.backend_private_key
        self.rpc_url = rpc_url or settings.chain_rpc_url
        self.delegation_manager_address = (
            delegation_manager_address
            if delegation_manager_address is not None
            else settings.delegation_manager_address
        )
        self.confirmation_timeout = confirmation_timeout or settings.chain_confirmation_timeout_seconds
        self._w3: AsyncWeb3 | None = None
        self._account: Any = None
        self._send_lock = asyncio.Lock()

    @property
    def address(self) -> str:
        if self._account is None:
            raise ChainSubmissionError("Backend wallet not initialized")
        return str(self._account.address)

    async def initialize(self) -> None:
        if self._w3 is not None:
            return
        key = self._private_key
        if not key:
            raise ChainSubmissionError("BACKEND_PRIVATE_KEY is not set")
        if not key.startswith("0x") or len(key) != 66:
            raise ChainSubmissionError("BACKEND_PRIVATE_KEY must be a 0x-prefixed 32-byte hex string")
        self._account = Account.from_key(key)
        self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.rpc_url))
        logger.info("Backend wallet initialized: %s", self._account.address)
        try:
            balance = await self._w3.eth.get_balance(self._account.address)
        except Exception as err:  # noqa: BLE001 - RPC may be down at startup
            logger.warning("Could not read backend wallet balance: %s", err)
            return
        if balance == 0:
            logger.warning("Backend wallet has zero balance, transactions will fail")

    async def close(self) -> None:
        if self._w3 is not None:
            await self._w3.provider.disconnect()
            self._w3 = None

    def build_transaction_data(self, call: ChainCall) -> tuple[str, bytes, int]:
        """Return destination, calldata and value, wrapping through the delegation manager if set."""
        calldata = encode_call(call.function_signature, call.args)
        if self.delegation_manager_address and call.delegation_payload:
            wrapped = encode_redeem_delegations(
                call.delegation_payload,
                call.target,
                calldata,
                call.value,
            )
            return Web3.to_checksum_address(self.delegation_manager_address), wrapped, 0
        return Web3.to_checksum_address(call.target), calldata, call.value

    async def _ensure_web3(self) -> AsyncWeb3:
        await self.initialize()
        if self._w3 is None:
            raise ChainSubmissionError("Chain client not initialized")
        return self._w3

    async def submit(self, call: ChainCall) -> ChainReceipt:
        w3 = await self._ensure_web3()
        try:
            destination, data, value = self.build_transaction_data(call)
        except (TypeError, ValueError) as err:
            raise ChainSubmissionError(f"Could not encode call: {err}") from err

        try:
            async with self._send_lock:
                tx: dict[str, Any] = {
                    "from": self._account.address,
                    "to": destination,
                    "data": data,
                    "value": value,
                    "nonce": await w3.eth.get_transaction_count(self._account.address, "pending"),
                    "chainId": await w3.eth.chain_id,
                }
                tx["gas"] = await w3.eth.estimate_gas(tx)
                tx["gasPrice"] = await w3.eth.gas_price
                signed = self._account.sign_transaction(tx)
                tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info("Submitted transaction %s to %s", _hex(tx_hash), destination)
            receipt = await w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.confirmation_timeout,
            )
        except ChainSubmissionError:
            raise
        except Exception as err:  # noqa: BLE001 - web3 raises many unrelated types
            raise ChainSubmissionError(str(err) or type(err).__name__) from err

        result = ChainReceipt(
            transaction_hash=_hex(receipt["transactionHash"]),
            block_number=int(receipt["blockNumber"]),
            status=int(receipt["status"]),
            logs=[
                LogEntry(
                    address=str(entry["address"]),
                    topics=[_hex(topic) for topic in entry["topics"]],
                    data=_hex(entry["data"]),
                )
                for entry in receipt["logs"]
            ],
        )
        if result.status != 1:
            raise ChainSubmissionError(f"Transaction {result.transaction_hash} reverted")
        return result
