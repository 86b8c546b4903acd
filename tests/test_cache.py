import pytest

from wizard.cache import (
    RecommendationCache, fingerprint, sanitize_addon_recommendation, sanitize_intro_text,
)


class CountingFetch:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self, inputs):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_fingerprint_ignores_key_order_and_set_order():
    assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})
    assert fingerprint({"tags": {"x", "y", "z"}}) == fingerprint({"tags": {"z", "y", "x"}})
    assert fingerprint({"a": [1, 2]}) != fingerprint({"a": [2, 1]})


@pytest.mark.asyncio
async def test_same_inputs_fetch_once():
    cache = RecommendationCache()
    fetch = CountingFetch({"intro_text": "Hello"}, {"intro_text": "Again"})

    first = await cache.get_or_refresh("intro", {"region": "Other"}, fetch)
    second = await cache.get_or_refresh("intro", {"region": "Other"}, fetch)

    assert first == second == {"intro_text": "Hello"}
    assert fetch.calls == 1


@pytest.mark.asyncio
async def test_changed_inputs_refetch():
    cache = RecommendationCache()
    fetch = CountingFetch({"intro_text": "One"}, {"intro_text": "Two"})

    await cache.get_or_refresh("intro", {"region": "Other"}, fetch)
    result = await cache.get_or_refresh("intro", {"region": "Europe (EU/EEA, UK)"}, fetch)

    assert result == {"intro_text": "Two"}
    assert fetch.calls == 2


@pytest.mark.asyncio
async def test_empty_output_is_not_reused():
    cache = RecommendationCache()
    fetch = CountingFetch({}, {"intro_text": "Filled"})

    await cache.get_or_refresh("intro", {"region": "Other"}, fetch)
    result = await cache.get_or_refresh("intro", {"region": "Other"}, fetch)

    assert result == {"intro_text": "Filled"}
    assert fetch.calls == 2


@pytest.mark.asyncio
async def test_failed_fetch_leaves_cache_untouched_and_retries():
    cache = RecommendationCache()
    inputs = {"region": "Other"}
    await cache.get_or_refresh("intro", {"region": "Asia"}, CountingFetch({"intro_text": "Old"}))

    fetch = CountingFetch(RuntimeError("provider down"), {"intro_text": "Recovered"})
    with pytest.raises(RuntimeError):
        await cache.get_or_refresh("intro", inputs, fetch)

    assert cache.peek("intro") == {"intro_text": "Old"}
    assert not cache.is_current("intro", inputs)

    result = await cache.get_or_refresh("intro", inputs, fetch)
    assert result == {"intro_text": "Recovered"}
    assert fetch.calls == 2


@pytest.mark.asyncio
async def test_invalidate_forces_refetch():
    cache = RecommendationCache()
    fetch = CountingFetch({"x": 1}, {"x": 2})

    await cache.get_or_refresh("k", {}, fetch)
    cache.invalidate("k")
    assert cache.peek("k") is None
    assert await cache.get_or_refresh("k", {}, fetch) == {"x": 2}


def test_sanitizer_drops_unknown_ids_and_missing_reasoning():
    raw = {
        "recommended_addon_ids": ["mail_forwarding", "crypto_wallet", "nominee_director", "tax_registration"],
        "reasoning_by_addon_id": {
            "mail_forwarding": "You need a local address.",
            "crypto_wallet": "Not in the catalog.",
            "nominee_director": "   ",
            "accounting_services": "Reasoning without an id.",
        },
        "intro_text": "Consider these:",
    }
    clean = sanitize_addon_recommendation(raw, ["mail_forwarding", "nominee_director", "tax_registration",
                                                "accounting_services"])

    assert clean["recommended_addon_ids"] == ["mail_forwarding"]
    assert clean["reasoning_by_addon_id"] == {"mail_forwarding": "You need a local address."}
    assert set(clean["recommended_addon_ids"]) == set(clean["reasoning_by_addon_id"])


def test_sanitizer_handles_missing_fields():
    assert sanitize_addon_recommendation({}, ["a"]) == {
        "recommended_addon_ids": [], "reasoning_by_addon_id": {}, "intro_text": "",
    }


@pytest.mark.parametrize("text, expected", [
    ("Here are your options:", "Here are your options"),
    ("  Tailored for you:  ", "Tailored for you"),
    ("Two colons::", "Two colons:"),
    ("", "Fallback"),
    (None, "Fallback"),
    (":", "Fallback"),
])
def test_intro_text_sanitizer(text, expected):
    assert sanitize_intro_text(text, "Fallback") == expected
