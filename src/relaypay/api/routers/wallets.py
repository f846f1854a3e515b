"""Wallet API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from relaypay.chains import Network
from relaypay.config import get_settings
from relaypay.crypto import EncryptionProvider, get_encryption_provider
from relaypay.ledger.database import get_db
from relaypay.ledger.repository import LedgerRepository
from relaypay.oracle import BalanceOracle
from relaypay.wallet.store import WalletStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/wallets", tags=["Wallets"])


def get_wallet_encryptor() -> EncryptionProvider:
    return get_encryption_provider(get_settings().encryption_key)


def get_balance_oracle() -> BalanceOracle:
    from relaypay.gasless.factory import get_orchestrator

    return get_orchestrator().oracle


class ProvisionWalletRequest(BaseModel):
    """Request to provision a wallet for an external user."""
    external_id: str
    email: Optional[str] = None


class WalletResponse(BaseModel):
    """Public wallet info. Never includes key material."""
    external_id: str
    user_id: int
    evm_address: str
    solana_address: str


class NetworkBalance(BaseModel):
    network: str
    address: str
    usdc: str


class WalletBalancesResponse(BaseModel):
    """On-chain USDC held by a user's wallet."""
    external_id: str
    balances: list[NetworkBalance]
    total_usdc: str


@router.post("", response_model=WalletResponse)
async def provision_wallet(
    request: ProvisionWalletRequest,
    encryptor: EncryptionProvider = Depends(get_wallet_encryptor),
) -> WalletResponse:
    """Create the user and their wallet, or return the existing ones."""
    if not request.external_id.strip():
        raise HTTPException(status_code=400, detail="external_id is required")

    settings = get_settings()
    async with get_db() as session:
        repo = LedgerRepository(session)
        user = await repo.get_or_create_user(request.external_id, request.email)
        store = WalletStore(session, encryptor, settings.allow_plaintext_wallets)
        addresses = await store.provision_wallet(user.id)

        return WalletResponse(
            external_id=user.external_id,
            user_id=user.id,
            evm_address=addresses.evm_address,
            solana_address=addresses.solana_address,
        )


@router.get("/{external_id}", response_model=WalletResponse)
async def get_wallet(
    external_id: str,
    encryptor: EncryptionProvider = Depends(get_wallet_encryptor),
) -> WalletResponse:
    """Get wallet addresses for an external user."""
    settings = get_settings()
    async with get_db() as session:
        user = await LedgerRepository(session).get_user_by_external_id(external_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")

        store = WalletStore(session, encryptor, settings.allow_plaintext_wallets)
        addresses = await store.get_wallet_addresses(user.id)

        return WalletResponse(
            external_id=user.external_id,
            user_id=user.id,
            evm_address=addresses.evm_address,
            solana_address=addresses.solana_address,
        )


@router.get("/{external_id}/balances", response_model=WalletBalancesResponse)
async def get_wallet_balances(
    external_id: str,
    encryptor: EncryptionProvider = Depends(get_wallet_encryptor),
    oracle: BalanceOracle = Depends(get_balance_oracle),
) -> WalletBalancesResponse:
    """Read the user's USDC balances from Base and Solana.

    A failed chain read answers with OracleUnavailable; it is never shown as 0.
    """
    settings = get_settings()
    async with get_db() as session:
        user = await LedgerRepository(session).get_user_by_external_id(external_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")

        store = WalletStore(session, encryptor, settings.allow_plaintext_wallets)
        addresses = await store.get_wallet_addresses(user.id)

    by_network = {
        Network.EVM: addresses.evm_address,
        Network.SOLANA: addresses.solana_address,
    }
    balances = await oracle.get_wallet_balances(by_network)

    return WalletBalancesResponse(
        external_id=external_id,
        balances=[
            NetworkBalance(network=network.value, address=address, usdc=str(balances[network]))
            for network, address in by_network.items()
        ],
        total_usdc=str(sum(balances.values())),
    )
