"""Relayer status endpoint (token-protected)."""

import logging

from fastapi import APIRouter, Depends, Header, HTTPException

from relaypay.config import get_settings
from relaypay.gasless.factory import get_orchestrator
from relaypay.gasless.orchestrator import GaslessTransferOrchestrator
from relaypay.services.relayer_monitor import get_all_relayer_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/relayer", tags=["Relayer"])


async def require_admin_token(x_admin_token: str = Header(None)) -> bool:
    """Verify admin token from header.

    If ADMIN_TOKEN is not set, allows access outside production.
    """
    settings = get_settings()

    if not settings.admin_token:
        if settings.is_production:
            raise HTTPException(status_code=503, detail="ADMIN_TOKEN is not configured")
        return True

    if x_admin_token != settings.admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")

    return True


@router.get("/status")
async def relayer_status(
    _: bool = Depends(require_admin_token),
    orchestrator: GaslessTransferOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Relayer balances, minimums and estimated remaining transfers per network."""
    statuses = await get_all_relayer_status(
        orchestrator.strategies, orchestrator.relayers, orchestrator.oracle
    )
    return {
        "relayers": [status.to_dict() for status in statuses],
        "needs_funding": [s.network.value for s in statuses if s.needs_funding],
    }
