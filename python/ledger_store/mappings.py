"""
Mapping Stores

Key -> category tables kept in the document store's global settings: the
profile-scoped personal name mapping, the global keyword mapping and the
global merchant mapping.
"""

import logging
from typing import Callable

from .document_store import DocumentStore

logger = logging.getLogger(__name__)

PERSONAL_MAPPINGS = "personal_mappings"
KEYWORD_MAPPINGS = "keyword_mappings"
MERCHANT_MAPPINGS = "merchant_mappings"


def _default_key(key: str) -> str:
    return (key or "").strip().lower()


class MappingStore:
    """A named key -> category table with normalized keys."""

    def __init__(
        self,
        store: DocumentStore,
        name: str,
        normalize: Callable[[str], str] | None = None,
    ):
        """Initialize the mapping.

        Args:
            store: Backing document store
            name: Settings table name
            normalize: Key normalization applied on every read and write
        """
        self.store = store
        self.name = name
        self.normalize = normalize or _default_key

    def get(self, key: str) -> str | None:
        normalized = self.normalize(key)
        if not normalized:
            return None
        return self.store.get_settings(self.name).get(normalized)

    def set(self, key: str, category: str) -> str:
        """Store a mapping; returns the normalized key actually written."""
        normalized = self.normalize(key)
        if not normalized:
            raise ValueError("Mapping key is empty after normalization")
        self.store.set_setting(self.name, normalized, category)
        logger.debug(f"{self.name}: {normalized!r} -> {category}")
        return normalized

    def delete(self, key: str) -> bool:
        return self.store.delete_setting(self.name, self.normalize(key))

    def all(self) -> dict[str, str]:
        return self.store.get_settings(self.name)

    def clear(self) -> int:
        return self.store.clear_settings(self.name)


def personal_mappings(store: DocumentStore, profile_id: str) -> MappingStore:
    return MappingStore(store, f"{PERSONAL_MAPPINGS}:{profile_id}")


def keyword_mappings(store: DocumentStore) -> MappingStore:
    return MappingStore(store, KEYWORD_MAPPINGS)


def merchant_mappings(store: DocumentStore, normalize: Callable[[str], str]) -> MappingStore:
    return MappingStore(store, MERCHANT_MAPPINGS, normalize)
