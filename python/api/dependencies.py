"""
API Dependencies

Provides the shared transaction pipeline for FastAPI dependency injection.
"""

import logging

from ingestion import TransactionPipeline
from ledger_store import SqlDocumentStore

logger = logging.getLogger(__name__)

_pipeline: TransactionPipeline | None = None


def get_pipeline() -> TransactionPipeline:
    """Get the process-wide pipeline backed by the SQL document store.

    Returns:
        TransactionPipeline
    """
    global _pipeline
    if _pipeline is None:
        _pipeline = TransactionPipeline(store=SqlDocumentStore())
        logger.info("Transaction pipeline initialized")
    return _pipeline
