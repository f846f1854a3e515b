"""Health check endpoints."""

from fastapi import APIRouter

from relaypay import __version__
from relaypay.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "relaypay"}


@router.get("/health/detailed")
async def detailed_health():
    """Detailed health check with configuration info."""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "relaypay",
        "version": __version__,
        "relayers": {
            "evm": settings.has_evm_relayer,
            "solana": settings.has_solana_relayer,
        },
        "config": settings.get_safe_dict(),
    }
