"""Custodial wallet keys and storage."""

from relaypay.wallet.store import DecryptedKeys, ScopedWalletKeys, WalletAddresses, WalletStore

__all__ = ["DecryptedKeys", "ScopedWalletKeys", "WalletAddresses", "WalletStore"]
