"""Core accounting components: configuration, logging, errors and the DeFi ledger."""
