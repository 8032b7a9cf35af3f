"""Concrete wallet, ledger, token and notification collaborators."""
