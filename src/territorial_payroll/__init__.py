"""Territorial payroll: gross-to-net calculation, pay period lifecycle and tax remittance sync."""

__version__ = "0.1.0"
