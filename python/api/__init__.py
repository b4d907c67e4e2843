"""
FastAPI Backend for the Household Ledger

Provides REST API endpoints for uploading statements and reviewing transactions.
"""

from .main import app

__all__ = ["app"]
