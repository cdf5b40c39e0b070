"""Signature utilities built on EIP-191 personal-sign recovery."""
from __future__ import annotations

from eth_account import Account
from eth_account.messages import encode_defunct

_SIGNATURE_HEX_LENGTH = 130  # 65 bytes


def normalize_address(address: str) -> str:
    """Return the canonical lower-case form of a 0x-prefixed address."""
    return address.strip().lower()


def recover_address(message: str, signature_hex: str) -> str | None:
    """Recover the signer of a personal-sign message.

    Args:
        message: Exact text that was signed on the client.
        signature_hex: 0x-prefixed hex-encoded 65-byte signature.

    Returns:
        The lower-cased signer address, or None if the signature is malformed.
    """
    cleaned = signature_hex.strip()
    if cleaned.startswith(("0x", "0X")):
        cleaned = cleaned[2:]
    if len(cleaned) != _SIGNATURE_HEX_LENGTH:
        return None
    try:
        signature = bytes.fromhex(cleaned)
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception:  # malformed signature or unrecoverable point
        return None
    return normalize_address(recovered)


def verify_signature(address: str, message: str, signature_hex: str) -> bool:
    """Return True if `signature_hex` over `message` recovers to `address`."""
    recovered = recover_address(message, signature_hex)
    if recovered is None:
        return False
    return recovered == normalize_address(address)


def sign_message(private_key: str, message: str) -> str:
    """Sign a personal-sign message and return the 0x-prefixed signature."""
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    return "0x" + bytes(signed.signature).hex()
