"""relaypay - custodial USDC wallets with sponsor-paid transfers."""

__version__ = "0.1.0"
