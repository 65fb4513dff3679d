"""Wallet/contract synchronization and transaction orchestration for the lottery DApp."""

__version__ = "1.0.0"
