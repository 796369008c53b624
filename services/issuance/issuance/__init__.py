"""Shahadati certificate issuance service."""
