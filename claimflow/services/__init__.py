"""Claim lifecycle services."""
