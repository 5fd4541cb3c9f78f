"""Costpulse: local cloud-billing ledger with period-over-period comparisons."""

__version__ = "0.1.0"
