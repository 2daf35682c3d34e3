"""Idempotent submission of fiscal documents to a certification provider."""

__version__ = "0.1.0"
