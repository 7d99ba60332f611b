"""storesync: local-first state synchronization for a key-value backed storefront."""

__version__ = "0.1.0"
