"""Service layer exports."""

from dictstore.services.dictionary_store import DictionaryStore
from dictstore.services.lemma_resolver import LemmaResolver
from dictstore.services.maintenance import run_periodic_maintenance

__all__ = ["DictionaryStore", "LemmaResolver", "run_periodic_maintenance"]
