"""Base (EVM) JSON-RPC client and USDC contract helpers.

Uses httpx for raw JSON-RPC. Errors are raised as RpcError so callers can
tell transport problems apart from on-chain outcomes.
"""

import logging
from typing import Any, Optional

import httpx
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from relaypay.errors import RpcError

logger = logging.getLogger(__name__)

PERMIT_SIGNATURE = "permit(address,address,uint256,uint256,uint8,bytes32,bytes32)"
TRANSFER_FROM_SIGNATURE = "transferFrom(address,address,uint256)"


class EVMRpcClient:
    """Minimal async JSON-RPC client for an EVM node."""

    def __init__(self, rpc_url: str, timeout: float = 30.0):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._request_id = 0

    async def _rpc_call(self, method: str, params: list) -> Any:
        """Send a JSON-RPC request and return its result."""
        self._request_id += 1
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.rpc_url,
                    json={
                        "jsonrpc": "2.0",
                        "method": method,
                        "params": params,
                        "id": self._request_id,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise RpcError(f"{method} failed: {e}", method=method)
        except ValueError as e:
            raise RpcError(f"{method} returned invalid JSON: {e}", method=method)

        if "error" in data:
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise RpcError(f"{method} error: {message}", method=method)

        return data.get("result")

    async def chain_id(self) -> int:
        return int(await self._rpc_call("eth_chainId", []), 16)

    async def get_balance(self, address: str) -> int:
        """Native balance in wei."""
        return int(await self._rpc_call("eth_getBalance", [address, "latest"]), 16)

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        """Nonce of an address, including pending transactions by default."""
        return int(await self._rpc_call("eth_getTransactionCount", [address, block]), 16)

    async def gas_price(self) -> int:
        return int(await self._rpc_call("eth_gasPrice", []), 16)

    async def call(self, to: str, data: str) -> str:
        """eth_call against the latest block. Returns hex output."""
        return await self._rpc_call("eth_call", [{"to": to, "data": data}, "latest"])

    async def send_raw_transaction(self, raw_tx: bytes) -> str:
        """Broadcast a signed transaction. Returns the tx hash."""
        return await self._rpc_call("eth_sendRawTransaction", ["0x" + raw_tx.hex()])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        """Receipt of a mined transaction, or None while pending."""
        return await self._rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        """Transaction by hash, or None if the node does not know it."""
        return await self._rpc_call("eth_getTransactionByHash", [tx_hash])


def receipt_succeeded(receipt: dict) -> bool:
    status = receipt.get("status", "0x0")
    return int(status, 16) == 1 if isinstance(status, str) else status == 1


class ERC20PermitToken:
    """Read and encode calls on an EIP-2612 token such as USDC."""

    def __init__(self, rpc: EVMRpcClient, address: str, decimals: int = 6):
        self.rpc = rpc
        self.address = address
        self.decimals = decimals

    @staticmethod
    def _encode_call(signature: str, arg_types: list[str], args: list) -> str:
        selector = function_signature_to_4byte_selector(signature)
        return "0x" + (selector + encode(arg_types, args)).hex()

    async def _read(self, signature: str, arg_types: list[str], args: list, output_type: str):
        result = await self.rpc.call(self.address, self._encode_call(signature, arg_types, args))
        if not result or result == "0x":
            raise RpcError(f"{signature} returned no data", method="eth_call")
        try:
            (value,) = decode([output_type], bytes.fromhex(result[2:]))
        except (DecodingError, ValueError) as e:
            raise RpcError(f"Cannot decode {signature} output: {e}", method="eth_call")
        return value

    async def name(self) -> str:
        return await self._read("name()", [], [], "string")

    async def version(self) -> str:
        return await self._read("version()", [], [], "string")

    async def nonces(self, owner: str) -> int:
        return await self._read("nonces(address)", ["address"], [owner], "uint256")

    async def balance_of(self, owner: str) -> int:
        """Token balance in base units."""
        return await self._read("balanceOf(address)", ["address"], [owner], "uint256")

    def encode_permit(
        self,
        owner: str,
        spender: str,
        value: int,
        deadline: int,
        v: int,
        r: bytes,
        s: bytes,
    ) -> str:
        return self._encode_call(
            PERMIT_SIGNATURE,
            ["address", "address", "uint256", "uint256", "uint8", "bytes32", "bytes32"],
            [owner, spender, value, deadline, v, r, s],
        )

    def encode_transfer_from(self, owner: str, recipient: str, value: int) -> str:
        return self._encode_call(
            TRANSFER_FROM_SIGNATURE,
            ["address", "address", "uint256"],
            [owner, recipient, value],
        )
