from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from dictstore.db.errors import WriteError
from dictstore.db.repositories.lemma_cache import LemmaCacheRepository
from dictstore.domain.normalization import clean_lemma, contextual_cache_key, normalize_headword

logger = logging.getLogger(__name__)

Lemmatizer = Callable[[str, str], Awaitable[str]]
ContextLemmatizer = Callable[[str, str, str], Awaitable[str]]


@dataclass(frozen=True, slots=True)
class LemmaLookup:
    lemma: str
    cached: bool


@dataclass(slots=True)
class LemmaResolver:
    """Cache-first lemma lookup in front of an external lemmatizer.

    ``lemmatize(word, target_language)`` and the optional
    ``lemmatize_in_context(word, context_sentence, target_language)`` are the
    only points where the model is consulted.
    """

    cache: LemmaCacheRepository
    lemmatize: Lemmatizer
    lemmatize_in_context: ContextLemmatizer | None = None

    async def resolve(
        self,
        word: str,
        *,
        target_language: str,
        context_sentence: str | None = None,
    ) -> LemmaLookup:
        word = normalize_headword(word)
        use_context = bool(context_sentence and context_sentence.strip()) and (
            self.lemmatize_in_context is not None
        )
        cache_key = contextual_cache_key(word, context_sentence) if use_context else word

        cached = await self.cache.get_cached_lemma(cache_key, target_language)
        if cached:
            return LemmaLookup(lemma=cached, cached=True)

        try:
            if use_context and self.lemmatize_in_context is not None:
                raw = await self.lemmatize_in_context(word, context_sentence or "", target_language)
            else:
                raw = await self.lemmatize(word, target_language)
        except Exception:
            logger.exception("Lemmatizer failed for %r; using the word itself", word)
            return LemmaLookup(lemma=word, cached=False)

        lemma = clean_lemma(raw, word)
        try:
            await self.cache.cache_lemma(cache_key, lemma, target_language)
        except WriteError:
            logger.warning("Could not cache lemma for %r", word)
        return LemmaLookup(lemma=lemma, cached=False)
