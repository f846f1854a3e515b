"""Thin RPC clients for Base and Solana."""

from relaypay.clients.evm import ERC20PermitToken, EVMRpcClient
from relaypay.clients.solana import SignatureStatus, SolanaRpcClient
from relaypay.errors import RpcError

__all__ = [
    "RpcError",
    "EVMRpcClient",
    "ERC20PermitToken",
    "SolanaRpcClient",
    "SignatureStatus",
]
