"""Per-(user, network) locking for transfer requests.

Two transfers of the same user on the same network would read the same
balance and race each other on chain, so they are serialised here. Transfers
on different networks, or of different users, run concurrently.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from relaypay.errors import TransferInProgress

logger = logging.getLogger(__name__)

LockKey = tuple[int, str]

# Global lock registry: (user_id, network) -> asyncio.Lock
_transfer_locks: dict[LockKey, asyncio.Lock] = {}
_registry_lock = asyncio.Lock()


def _key(user_id: int, network: str) -> LockKey:
    return user_id, str(getattr(network, "value", network))


async def get_transfer_lock(user_id: int, network: str) -> asyncio.Lock:
    """Get or create the lock for a user on a network."""
    key = _key(user_id, network)
    async with _registry_lock:
        if key not in _transfer_locks:
            _transfer_locks[key] = asyncio.Lock()
        return _transfer_locks[key]


def is_transfer_locked(user_id: int, network: str) -> bool:
    lock = _transfer_locks.get(_key(user_id, network))
    return lock is not None and lock.locked()


@asynccontextmanager
async def transfer_lock(
    user_id: int,
    network: str,
    timeout: Optional[float] = 30.0,
    operation: str = "transfer",
):
    """Hold the (user, network) lock for the duration of the block.

    Raises:
        TransferInProgress: If the lock is not acquired within ``timeout``

    Example:
        async with transfer_lock(user.id, "solana"):
            await orchestrator.execute_gasless_transfer(...)
    """
    lock = await get_transfer_lock(user_id, network)
    label = f"user {user_id} on {_key(user_id, network)[1]}"

    try:
        if timeout:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        else:
            await lock.acquire()
    except asyncio.TimeoutError:
        logger.warning(f"Lock timeout for {label} after {timeout}s: {operation}")
        raise TransferInProgress(
            f"Another transfer for {label} is still running; retry later"
        )

    logger.debug(f"Lock acquired for {label}: {operation}")
    try:
        yield
    finally:
        lock.release()
        logger.debug(f"Lock released for {label}: {operation}")


def clear_transfer_locks() -> None:
    """Clear all transfer locks (useful for testing)."""
    _transfer_locks.clear()
