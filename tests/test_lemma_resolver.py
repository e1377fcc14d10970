from __future__ import annotations

import asyncio

from dictstore.services.lemma_resolver import LemmaResolver


class FakeLemmatizer:
    def __init__(self, answer: str = "run", *, fail: bool = False) -> None:
        self.answer = answer
        self.fail = fail
        self.calls: list[tuple[str, ...]] = []

    async def __call__(self, word: str, target_language: str) -> str:
        self.calls.append((word, target_language))
        if self.fail:
            raise RuntimeError("model unavailable")
        return self.answer

    async def in_context(self, word: str, context_sentence: str, target_language: str) -> str:
        self.calls.append((word, context_sentence, target_language))
        return self.answer


def _run(make_store, case):
    async def run_case():
        store = make_store()
        await store.open()
        try:
            return await case(store)
        finally:
            await store.close()

    return asyncio.run(run_case())


def test_second_lookup_is_served_from_cache(make_store) -> None:
    lemmatizer = FakeLemmatizer(answer='"run."')

    async def case(store):
        resolver = LemmaResolver(cache=store.lemmas, lemmatize=lemmatizer)
        first = await resolver.resolve(" running ", target_language="en")
        second = await resolver.resolve("running", target_language="en")
        return first, second

    first, second = _run(make_store, case)
    assert (first.lemma, first.cached) == ("run", False)
    assert (second.lemma, second.cached) == ("run", True)
    assert lemmatizer.calls == [("running", "en")]


def test_context_lookups_use_a_separate_cache_key(make_store) -> None:
    lemmatizer = FakeLemmatizer(answer="lie")
    context = "She lay on the beach all afternoon and read a very long novel."

    async def case(store):
        resolver = LemmaResolver(
            cache=store.lemmas,
            lemmatize=lemmatizer,
            lemmatize_in_context=lemmatizer.in_context,
        )
        contextual = await resolver.resolve("lay", target_language="en", context_sentence=context)
        cached = await store.lemmas.get_cached_lemma(f"lay|{context[:50]}", "en")
        plain = await store.lemmas.get_cached_lemma("lay", "en")
        again = await resolver.resolve("lay", target_language="en", context_sentence=context)
        return contextual, cached, plain, again

    contextual, cached, plain, again = _run(make_store, case)
    assert contextual.lemma == "lie"
    assert cached == "lie"
    assert plain is None
    assert again.cached is True
    assert lemmatizer.calls == [("lay", context, "en")]


def test_lemmatizer_failure_falls_back_to_the_word(make_store) -> None:
    lemmatizer = FakeLemmatizer(fail=True)

    async def case(store):
        resolver = LemmaResolver(cache=store.lemmas, lemmatize=lemmatizer)
        result = await resolver.resolve("Häuser", target_language="de")
        cached = await store.lemmas.get_cached_lemma("Häuser", "de")
        return result, cached

    result, cached = _run(make_store, case)
    assert (result.lemma, result.cached) == ("Häuser", False)
    assert cached is None
