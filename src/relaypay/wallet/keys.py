"""Keypair generation and loading for EVM and Solana wallets.

Key formats as stored:
- EVM: 0x-prefixed hex of the 32-byte secp256k1 private key
- Solana: base64 of the 64-byte ed25519 keypair (secret + public)
"""

import base64
import binascii
from dataclasses import dataclass

from eth_account import Account
from eth_account.signers.local import LocalAccount
from solders.keypair import Keypair


@dataclass(frozen=True)
class GeneratedKeypair:
    """Freshly generated address and private key."""

    address: str
    private_key: str

    def __repr__(self) -> str:
        return f"GeneratedKeypair(address={self.address!r}, private_key='***')"


def generate_evm_keypair() -> GeneratedKeypair:
    account = Account.create()
    return GeneratedKeypair(
        address=account.address,
        private_key="0x" + bytes(account.key).hex(),
    )


def generate_solana_keypair() -> GeneratedKeypair:
    keypair = Keypair()
    return GeneratedKeypair(
        address=str(keypair.pubkey()),
        private_key=base64.b64encode(bytes(keypair)).decode(),
    )


def load_evm_account(private_key: str) -> LocalAccount:
    """Load an EVM account from a hex private key.

    Raises:
        ValueError: If the key is malformed
    """
    key = private_key.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    return Account.from_key(key)


def load_solana_keypair(private_key: str) -> Keypair:
    """Load a Solana keypair from base64 of the 64-byte secret.

    Raises:
        ValueError: If the key is malformed
    """
    try:
        raw = base64.b64decode(private_key.strip(), validate=True)
    except binascii.Error:
        raise ValueError("Solana private key must be base64 encoded")
    if len(raw) != 64:
        raise ValueError(f"Solana private key must be 64 bytes, got {len(raw)}")
    return Keypair.from_bytes(raw)


def evm_address_from_key(private_key: str) -> str:
    return load_evm_account(private_key).address


def solana_address_from_key(private_key: str) -> str:
    return str(load_solana_keypair(private_key).pubkey())
