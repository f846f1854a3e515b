"""Tests for the relayer registry."""

import pytest

from relaypay.chains import Network
from relaypay.config import Settings
from relaypay.errors import ErrorCategory, RelayerNotConfigured
from relaypay.relayer import RelayerRegistry
from relaypay.wallet.keys import generate_evm_keypair, generate_solana_keypair


class TestRelayerRegistry:
    """Tests for loading relayers from settings."""

    def test_loads_both_relayers(self):
        evm = generate_evm_keypair()
        solana = generate_solana_keypair()
        settings = Settings(
            relayer_private_key=evm.private_key,
            solana_relayer_private_key=solana.private_key,
        )

        registry = RelayerRegistry.from_settings(settings)

        assert registry.configured_networks() == [Network.EVM, Network.SOLANA]
        assert registry.get(Network.EVM).address == evm.address
        assert registry.get("sol").address == solana.address
        assert evm.private_key not in repr(registry.get(Network.EVM))

    def test_unset_keys_leave_network_unconfigured(self):
        registry = RelayerRegistry.from_settings(
            Settings(relayer_private_key="", solana_relayer_private_key="")
        )

        assert registry.configured_networks() == []
        assert not registry.is_configured(Network.SOLANA)

    def test_missing_relayer_raises(self):
        registry = RelayerRegistry({})

        with pytest.raises(RelayerNotConfigured) as exc:
            registry.get(Network.SOLANA)
        assert exc.value.category == ErrorCategory.CONFIGURATION
        assert exc.value.code == "RELAYER_NOT_CONFIGURED"

    def test_malformed_key_fails_at_load(self):
        with pytest.raises(ValueError):
            RelayerRegistry.from_settings(
                Settings(relayer_private_key="", solana_relayer_private_key="bm90LWEta2V5")
            )
