"""Beer Distribution Game simulation core with ledger synchronisation."""

__version__ = "0.1.0"
