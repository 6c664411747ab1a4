"""Configuration loading for the consent ledger."""
