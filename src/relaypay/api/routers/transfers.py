"""Gasless transfer API endpoints.

Errors from the transfer service are rendered by the application's
RelayPayError handler; a timed-out transfer answers 202 with its tx hash so
the client can poll the record.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from relaypay.chains import Network
from relaypay.ledger.database import get_db
from relaypay.ledger.models import TransferStatus
from relaypay.ledger.repository import LedgerRepository
from relaypay.services.transfer_service import TransferService, get_transfer_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/transfers", tags=["Transfers"])


class TransferRequest(BaseModel):
    """Gasless transfer request."""
    external_id: str
    network: str  # "evm" / "base" or "solana"
    destination: str
    amount: str  # Decimal as string


class TransferResponse(BaseModel):
    """Confirmed transfer."""
    success: bool
    transfer_id: Optional[int] = None
    tx_hash: str
    permit_tx_hash: Optional[str] = None
    network: str
    amount: str
    fee_payer: str
    source_address: Optional[str] = None
    destination_address: Optional[str] = None
    destination_account_created: bool = False
    estimated_fee: Optional[str] = None
    explorer_url: str


@router.post("", response_model=TransferResponse)
async def create_transfer(
    request: TransferRequest,
    service: TransferService = Depends(get_transfer_service),
) -> TransferResponse:
    """Send USDC from the user's wallet; the relayer pays all fees."""
    async with get_db() as session:
        user = await LedgerRepository(session).get_user_by_external_id(request.external_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    result = await service.request_transfer(
        user_id=user.id,
        network=request.network,
        destination_address=request.destination,
        amount=request.amount,
    )
    return TransferResponse(**result.to_dict())


@router.get("")
async def list_transfers(
    external_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    network: Optional[str] = None,
    status: Optional[TransferStatus] = None,
) -> dict:
    """Transfer history of a user, newest first."""
    network_filter = Network.parse(network).value if network else None

    async with get_db() as session:
        repo = LedgerRepository(session)
        user = await repo.get_user_by_external_id(external_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")

        total = await repo.count_user_transfers(user.id, network_filter, status)
        transfers = await repo.get_user_transfers(
            user.id,
            limit=limit,
            offset=(page - 1) * limit,
            network=network_filter,
            status=status,
        )

    total_pages = (total + limit - 1) // limit
    return {
        "transfers": [transfer.to_dict() for transfer in transfers],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


@router.get("/{transfer_id}")
async def get_transfer(
    transfer_id: int,
    service: TransferService = Depends(get_transfer_service),
) -> dict:
    """Get a transfer record."""
    record = await service.get_transfer(transfer_id)
    return record.to_dict()
