"""Core services: stores, edge provider, event bus, ledger and orchestrator."""
