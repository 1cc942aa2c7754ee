"""View-count cache, ledger and batch synchronization."""
