"""
API Routes Package

Contains all route modules for the ledger API.
"""

from .transactions import router as transactions_router

__all__ = [
    "transactions_router",
]
