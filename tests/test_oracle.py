"""Tests for the balance oracle and the token helpers it reads through."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector
from solders.keypair import Keypair
from spl.token.instructions import get_associated_token_address

from relaypay.chains import Network
from relaypay.clients.evm import ERC20PermitToken, receipt_succeeded
from relaypay.config import get_settings
from relaypay.errors import OracleUnavailable, RpcError
from relaypay.oracle import BalanceOracle

OWNER = "0x1111111111111111111111111111111111111111"
TOKEN = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


def _abi_output(output_type: str, value) -> str:
    return "0x" + encode([output_type], [value]).hex()


@pytest.fixture
def evm_rpc():
    rpc = MagicMock()
    rpc.call = AsyncMock()
    rpc.get_balance = AsyncMock()
    return rpc


@pytest.fixture
def solana_client():
    client = MagicMock()
    client.account_exists = AsyncMock(return_value=True)
    client.get_token_account_balance = AsyncMock(return_value=0)
    client.get_balance = AsyncMock(return_value=0)
    return client


@pytest.fixture
def oracle(evm_rpc, solana_client):
    token = ERC20PermitToken(evm_rpc, TOKEN)
    return BalanceOracle(evm_rpc, token, solana_client, get_settings().solana_usdc_mint)


class TestERC20PermitToken:
    """Tests for USDC contract reads and call encoding."""

    @pytest.mark.asyncio
    async def test_reads_decode_output(self, evm_rpc):
        token = ERC20PermitToken(evm_rpc, TOKEN)
        evm_rpc.call.return_value = _abi_output("string", "USD Coin")

        assert await token.name() == "USD Coin"
        to, data = evm_rpc.call.call_args.args
        assert to == TOKEN
        assert data == "0x" + function_signature_to_4byte_selector("name()").hex()

    @pytest.mark.asyncio
    async def test_empty_output_is_rpc_error(self, evm_rpc):
        token = ERC20PermitToken(evm_rpc, TOKEN)
        evm_rpc.call.return_value = "0x"

        with pytest.raises(RpcError):
            await token.nonces(OWNER)

    def test_encode_transfer_from(self, evm_rpc):
        token = ERC20PermitToken(evm_rpc, TOKEN)
        recipient = "0x2222222222222222222222222222222222222222"

        data = bytes.fromhex(token.encode_transfer_from(OWNER, recipient, 5_000_000)[2:])

        assert data[:4] == function_signature_to_4byte_selector("transferFrom(address,address,uint256)")
        owner, to, value = decode(["address", "address", "uint256"], data[4:])
        assert (owner.lower(), to.lower(), value) == (OWNER, recipient, 5_000_000)

    @pytest.mark.parametrize("receipt,expected", [
        ({"status": "0x1"}, True),
        ({"status": "0x0"}, False),
        ({"status": 1}, True),
        ({}, False),
    ])
    def test_receipt_status(self, receipt, expected):
        assert receipt_succeeded(receipt) is expected


class TestTokenBalance:
    """Tests for USDC balances."""

    @pytest.mark.asyncio
    async def test_evm_balance(self, oracle, evm_rpc):
        evm_rpc.call.return_value = _abi_output("uint256", 5_000_000)

        balance = await oracle.get_token_balance(OWNER, Network.EVM)

        assert balance == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_solana_balance_reads_owner_ata(self, oracle, solana_client):
        owner = Keypair().pubkey()
        solana_client.get_token_account_balance.return_value = 1_234_567

        balance = await oracle.get_token_balance(str(owner), "solana")

        assert balance == Decimal("1.234567")
        expected_ata = get_associated_token_address(owner, oracle.solana_mint)
        solana_client.get_token_account_balance.assert_awaited_once_with(expected_ata)

    @pytest.mark.asyncio
    async def test_missing_token_account_is_zero(self, oracle, solana_client):
        solana_client.account_exists.return_value = False

        balance = await oracle.get_token_balance(str(Keypair().pubkey()), Network.SOLANA)

        assert balance == Decimal("0")
        solana_client.get_token_account_balance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rpc_failure_is_not_zero(self, oracle, solana_client):
        solana_client.account_exists.side_effect = RpcError("connection reset")

        with pytest.raises(OracleUnavailable) as exc:
            await oracle.get_token_balance(str(Keypair().pubkey()), Network.SOLANA)
        assert exc.value.retryable is True


class TestNativeBalance:
    """Tests for ETH and SOL balances."""

    @pytest.mark.asyncio
    async def test_eth(self, oracle, evm_rpc):
        evm_rpc.get_balance.return_value = 10**15

        assert await oracle.get_native_balance(OWNER, Network.EVM) == Decimal("0.001")

    @pytest.mark.asyncio
    async def test_sol(self, oracle, solana_client):
        solana_client.get_balance.return_value = 2_500_000_000

        assert await oracle.get_native_balance(str(Keypair().pubkey()), Network.SOLANA) == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_failure(self, oracle, evm_rpc):
        evm_rpc.get_balance.side_effect = RpcError("timeout")

        with pytest.raises(OracleUnavailable):
            await oracle.get_native_balance(OWNER, Network.EVM)


class TestWalletBalances:
    """Tests for reading one wallet on every network."""

    @pytest.mark.asyncio
    async def test_reads_each_network(self, oracle, evm_rpc, solana_client):
        owner = Keypair().pubkey()
        evm_rpc.call.return_value = _abi_output("uint256", 7_500_000)
        solana_client.get_token_account_balance.return_value = 250_000

        balances = await oracle.get_wallet_balances({
            Network.EVM: OWNER,
            Network.SOLANA: str(owner),
        })

        assert balances == {Network.EVM: Decimal("7.5"), Network.SOLANA: Decimal("0.25")}

    @pytest.mark.asyncio
    async def test_one_failed_network_fails_all(self, oracle, evm_rpc, solana_client):
        evm_rpc.call.return_value = _abi_output("uint256", 1_000_000)
        solana_client.account_exists.side_effect = RpcError("connection reset")

        with pytest.raises(OracleUnavailable):
            await oracle.get_wallet_balances({
                Network.EVM: OWNER,
                Network.SOLANA: str(Keypair().pubkey()),
            })
