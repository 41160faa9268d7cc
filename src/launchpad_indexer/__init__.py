"""Launchpad Indexer - Reorg-aware event indexing for bonding-curve launchpads."""

__version__ = "0.1.0"
