"""Repository implementations."""

from dictstore.db.repositories.entries import EntryRepository
from dictstore.db.repositories.lemma_cache import LemmaCacheRepository
from dictstore.db.repositories.search import SearchRepository

__all__ = [
    "EntryRepository",
    "LemmaCacheRepository",
    "SearchRepository",
]
