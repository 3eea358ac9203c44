"""Everkeep.

Encrypted-at-rest storage for user vaults and vault entries.
"""
from .version import __version__

__all__ = ["__version__"]
