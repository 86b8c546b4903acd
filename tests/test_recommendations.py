"""Recommendation client against scripted chat models."""
import json

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from conftest import ADDONS_REPLY, INCORPORATION_REPLY, ScriptedLLM
from wizard.recommendations import (
    ADDONS_EMPTY_CATALOG_TEXT, INTRO_NO_INPUT_TEXT, NAME_PLACEHOLDER,
    RecommendationClient, RecommendationUnavailable,
    fallback_addons, fallback_incorporation, fallback_intro, fallback_prefill, fallback_summary,
    infer_name_from_email,
)


ASIA_NEEDS = {
    "business_activities": ["E-commerce / Online Sales"],
    "strategic_objectives": ["Tax Optimization"],
    "region": "Asia (Singapore, Hong Kong, etc.)",
    "business_description": "Handmade ceramics",
}

AVAILABLE = [
    {"id": "nominee_director", "name": "Nominee Director", "description": "..."},
    {"id": "bank_account_assistance", "name": "Bank Account Opening Assistance", "description": "..."},
]


@pytest.mark.asyncio
async def test_recommend_incorporation_with_fake_chat_model():
    llm = FakeListChatModel(responses=[json.dumps(INCORPORATION_REPLY)])
    client = RecommendationClient(llm=llm)

    result = await client.recommend_incorporation(**ASIA_NEEDS)

    assert result["best_recommendation"]["jurisdiction"] == "Singapore"
    assert result["best_recommendation"]["state"] is None
    assert [r["jurisdiction"] for r in result["alternative_recommendations"]] == [
        "Hong Kong", "United States of America",
    ]
    assert result["alternative_recommendations"][1]["state"] == "Delaware-DE"


@pytest.mark.asyncio
async def test_reply_inside_markdown_fence_is_parsed():
    fenced = "Sure!\n```json\n" + json.dumps(INCORPORATION_REPLY) + "\n```"
    client = RecommendationClient(llm=ScriptedLLM(incorporation=fenced))

    result = await client.recommend_incorporation(**ASIA_NEEDS)
    assert result["best_recommendation"]["company_type"] == "Private Limited Company"


@pytest.mark.asyncio
async def test_invalid_alternatives_are_dropped():
    reply = {
        **INCORPORATION_REPLY,
        "alternative_recommendations": [
            {"jurisdiction": "Atlantis", "company_type": "Private Limited Company"},
            {"jurisdiction": "Hong Kong", "company_type": "LLC"},
            {"jurisdiction": "Ireland", "state": "Texas-TX", "company_type": "Private Limited Company"},
        ],
    }
    client = RecommendationClient(llm=ScriptedLLM(incorporation=reply))

    result = await client.recommend_incorporation(**ASIA_NEEDS)

    # A stray state on a non-US jurisdiction is dropped, not fatal
    assert result["alternative_recommendations"] == [{
        "jurisdiction": "Ireland", "state": None, "company_type": "Private Limited Company",
        "short_description": "", "reasoning": "",
    }]


@pytest.mark.asyncio
@pytest.mark.parametrize("best", [
    {"jurisdiction": "Atlantis", "company_type": "Private Limited Company"},
    {"jurisdiction": "United States of America", "company_type": "Limited Liability Company"},
    {"jurisdiction": "United States of America", "state": "Delaware", "company_type": "Limited Liability Company"},
    {"jurisdiction": "Singapore", "company_type": "C Corporation"},
])
async def test_invalid_best_recommendation_is_unavailable(best):
    client = RecommendationClient(llm=ScriptedLLM(incorporation={"best_recommendation": best}))

    with pytest.raises(RecommendationUnavailable) as exc:
        await client.recommend_incorporation(**ASIA_NEEDS)
    assert exc.value.call == "recommend_incorporation"


@pytest.mark.asyncio
async def test_usa_exclusive_region_rejects_other_jurisdictions():
    client = RecommendationClient(llm=ScriptedLLM(incorporation=INCORPORATION_REPLY))

    with pytest.raises(RecommendationUnavailable):
        await client.recommend_incorporation(**{**ASIA_NEEDS, "region": "USA (Exclusive Focus)"})


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", [
    ConnectionError("overloaded"),
    "I'm sorry, I can't help with that.",
    {"best_recommendation": {"jurisdiction": "Singapore"}},
])
async def test_provider_and_schema_failures_look_the_same(reply):
    client = RecommendationClient(llm=ScriptedLLM(incorporation=reply))

    with pytest.raises(RecommendationUnavailable):
        await client.recommend_incorporation(**ASIA_NEEDS)


@pytest.mark.asyncio
async def test_addon_ids_are_restricted_to_the_catalog():
    llm = ScriptedLLM(addons=ADDONS_REPLY)
    client = RecommendationClient(llm=llm)

    result = await client.recommend_addons(
        main_service_details={"jurisdiction": "Singapore", "company_type": "Private Limited Company"},
        user_needs={"region": "Other"},
        available_addons=AVAILABLE,
    )

    assert result["recommended_addon_ids"] == ["bank_account_assistance"]
    assert "crypto_wallet" not in result["reasoning_by_addon_id"]
    assert set(result["reasoning_by_addon_id"]) == {"bank_account_assistance"}
    assert result["intro_text"] == "To complement your choices, consider these add-ons"


@pytest.mark.asyncio
async def test_empty_addon_catalog_skips_the_provider():
    llm = ScriptedLLM()
    client = RecommendationClient(llm=llm)

    result = await client.recommend_addons(main_service_details={}, user_needs={}, available_addons=[])

    assert result == {"recommended_addon_ids": [], "reasoning_by_addon_id": {}, "intro_text": ADDONS_EMPTY_CATALOG_TEXT}
    assert llm.calls["addons"] == 0


@pytest.mark.asyncio
async def test_intro_without_inputs_skips_the_provider():
    llm = ScriptedLLM()
    client = RecommendationClient(llm=llm)

    result = await client.generate_recommendation_intro(region="", business_activities=[], strategic_objectives=[])

    assert result == {"intro_text": INTRO_NO_INPUT_TEXT}
    assert llm.calls["intro"] == 0


@pytest.mark.asyncio
async def test_empty_intro_reply_gets_fallback_text():
    client = RecommendationClient(llm=ScriptedLLM(intro={"intro_text": "  "}))

    result = await client.generate_recommendation_intro(region="Other", business_activities=[], strategic_objectives=[])
    assert result["intro_text"] == fallback_intro()["intro_text"]


@pytest.mark.asyncio
async def test_prefill_requires_an_email_before_calling():
    llm = ScriptedLLM()
    client = RecommendationClient(llm=llm)

    with pytest.raises(RecommendationUnavailable):
        await client.prefill_company_details(
            user_email="", user_phone="", business_purpose="Trading", business_description="",
            selected_jurisdiction="Singapore", selected_state=None, selected_company_type="Private Limited Company",
        )
    assert llm.calls["prefill"] == 0


@pytest.mark.asyncio
async def test_summary():
    client = RecommendationClient(llm=ScriptedLLM(summary={"summary": "  Short version.  "}))

    assert await client.summarize_business_description("A long story.") == {"summary": "Short version."}


def test_fallbacks_are_static():
    assert fallback_incorporation() == {"best_recommendation": None, "alternative_recommendations": []}
    assert fallback_addons()["recommended_addon_ids"] == []


@pytest.mark.parametrize("email, name", [
    ("jane.doe@acme.io", "Jane Doe"),
    ("john_smith42@studio.co.uk", "John Smith"),
    ("jane.doe@gmail.com", ""),
    ("not-an-email", ""),
])
def test_infer_name_from_email(email, name):
    assert infer_name_from_email(email) == name


def test_fallback_prefill_uses_local_data():
    result = fallback_prefill({
        "user_email": "someone@hotmail.com",
        "user_phone": "+1 555 0100",
        "selected_jurisdiction": "Singapore",
        "selected_company_type": "Private Limited Company",
    })

    assert result["suggested_company_names"]["first_choice"] == "My Private Limited Company in Singapore"
    assert result["suggested_director"] == {"full_name": NAME_PLACEHOLDER, "email": "someone@hotmail.com"}
    assert result["suggested_primary_contact"]["phone"] == "+1 555 0100"


def test_fallback_summary_keeps_first_two_sentences():
    text = "We make pots.  We sell them online! We ship worldwide. We are nice."
    assert fallback_summary(text) == {"summary": "We make pots. We sell them online!"}
