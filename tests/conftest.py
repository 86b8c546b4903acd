"""Shared fixtures: scripted chat models, ready-made sessions and an API client."""
import json

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from wizard.recommendations import RecommendationClient
from wizard.session import WizardSession


# Substrings that identify which recommendation prompt a model is answering
PROMPT_MARKERS = {
    "incorporation": "choose where and how to incorporate",
    "intro": "Write a short, friendly introduction",
    "addons": "AVAILABLE ADD-ONS",
    "prefill": "pre-fill the details",
    "summary": "Summarise this business description",
}


INCORPORATION_REPLY = {
    "best_recommendation": {
        "jurisdiction": "Singapore",
        "state": None,
        "company_type": "Private Limited Company",
        "short_description": "Asian hub with low tax and strong banking.",
        "reasoning": "Singapore suits e-commerce in Asia with a 17% corporate tax rate and reliable banks.",
    },
    "alternative_recommendations": [
        {
            "jurisdiction": "Hong Kong",
            "state": None,
            "company_type": "Private Limited Company",
            "short_description": "Territorial tax and gateway to China.",
            "reasoning": "Hong Kong only taxes local profits.",
        },
        {
            "jurisdiction": "United States of America",
            "state": "Delaware-DE",
            "company_type": "Limited Liability Company",
            "short_description": "Flexible US entity.",
            "reasoning": "Delaware LLCs are quick to form.",
        },
    ],
}

USA_INCORPORATION_REPLY = {
    "best_recommendation": {
        "jurisdiction": "United States of America",
        "state": "Delaware-DE",
        "company_type": "Limited Liability Company",
        "short_description": "The default choice for US startups.",
        "reasoning": "Delaware has the most predictable corporate law.",
    },
    "alternative_recommendations": [],
}

INTRO_REPLY = {"intro_text": "For your e-commerce venture in Asia, we've prepared these options:"}

ADDONS_REPLY = {
    "recommended_addon_ids": ["bank_account_assistance", "nominee_director", "crypto_wallet"],
    "recommendation_reasonings": [
        {"addon_id": "bank_account_assistance", "reasoning": "Singapore banks expect a local introduction."},
        {"addon_id": "nominee_director", "reasoning": ""},
        {"addon_id": "crypto_wallet", "reasoning": "Not something we sell."},
    ],
    "intro_text": "To complement your choices, consider these add-ons:",
}

PREFILL_REPLY = {
    "suggested_company_names": {
        "first_choice": "Acme Trading Pte. Ltd.",
        "second_choice": "Acme Asia Pte. Ltd.",
        "third_choice": "",
    },
    "suggested_director": {"full_name": "Jane Doe", "email": "jane.doe@acme.io"},
    "suggested_primary_contact": {"full_name": "Jane Doe", "email": "jane.doe@acme.io", "phone": "+65 6123 4567"},
}

SUMMARY_REPLY = {"summary": "Online store selling handmade ceramics across Southeast Asia."}


class ScriptedLLM:
    """Stands in for ChatAnthropic: answers each prompt kind from a script.

    A reply is a dict (sent back as JSON), a raw string, an exception to raise,
    or a callable taking the messages and returning one of those.
    """

    def __init__(self, **replies):
        self.replies = replies
        self.calls = {key: 0 for key in PROMPT_MARKERS}

    async def ainvoke(self, messages, *args, **kwargs):
        prompt = messages[0].content
        kind = next(k for k, marker in PROMPT_MARKERS.items() if marker in prompt)
        self.calls[kind] += 1

        reply = self.replies.get(kind)
        if callable(reply) and not isinstance(reply, type):
            reply = reply(messages)
        if isinstance(reply, Exception):
            raise reply
        if reply is None:
            raise RuntimeError(f"no scripted reply for {kind}")
        if isinstance(reply, str):
            return AIMessage(content=reply)
        return AIMessage(content=json.dumps(reply))


@pytest.fixture
def llm():
    return ScriptedLLM(
        incorporation=INCORPORATION_REPLY,
        intro=INTRO_REPLY,
        addons=ADDONS_REPLY,
        prefill=PREFILL_REPLY,
        summary=SUMMARY_REPLY,
    )


@pytest.fixture
def session(llm):
    return WizardSession(client=RecommendationClient(llm=llm), strict=())


@pytest.fixture
def asia_session(session):
    """A session that has passed the welcome step with Asia-focused needs."""
    session.submit_contact("jane.doe@acme.io", "+65 6123 4567")
    session.update({"needs_assessment": {
        "region": "Asia (Singapore, Hong Kong, etc.)",
        "business_activities": ["E-commerce / Online Sales"],
        "strategic_objectives": ["Tax Optimization", "Access to Specific Markets/Banking"],
        "business_description": "We sell handmade ceramics online.",
    }})
    return session


@pytest.fixture
def api(llm, monkeypatch, tmp_path):
    from server import app as app_module

    monkeypatch.setattr(app_module, "_client", RecommendationClient(llm=llm))
    monkeypatch.setattr(app_module, "LOG_DIR", tmp_path)
    monkeypatch.setattr(app_module, "sessions", {})
    with TestClient(app_module.app) as client:
        yield client
