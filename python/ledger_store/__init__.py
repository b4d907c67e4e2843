"""
Ledger persistence: document store implementations and mapping tables.
"""

from .config import default_config_dir
from .document_store import (
    CANCELLED_PAIRS,
    TRANSACTIONS,
    DocumentStore,
    InMemoryDocumentStore,
    SqlDocumentStore,
)
from .mappings import (
    MappingStore,
    keyword_mappings,
    merchant_mappings,
    personal_mappings,
)

__all__ = [
    "CANCELLED_PAIRS",
    "TRANSACTIONS",
    "DocumentStore",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
    "MappingStore",
    "default_config_dir",
    "keyword_mappings",
    "merchant_mappings",
    "personal_mappings",
]
