"""AI recommendation calls for the Incorporation Order wizard.

Each call takes a structured request, asks Claude for a JSON object and
validates the reply against a pydantic schema. Provider errors, unparseable
replies and schema failures all surface as RecommendationUnavailable; the
deterministic fallback_* functions below are what the wizard shows instead.
"""
from __future__ import annotations

import json
import re
from typing import Optional

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import SystemMessage, HumanMessage
from pydantic import BaseModel, Field, ValidationError

from wizard.cache import sanitize_addon_recommendation, sanitize_intro_text
from wizard.catalog import (
    JURISDICTIONS, US_STATES, US_STATE_VALUES, USA_JURISDICTION, USA_EXCLUSIVE_REGION,
    company_types_for,
)
from wizard.config import ANTHROPIC_API_KEY, MODEL_SMART, MODEL_FAST, LLM_TIMEOUT


class RecommendationUnavailable(Exception):
    """A recommendation call failed or returned output that did not validate."""

    def __init__(self, call: str, reason: str):
        super().__init__(f"{call}: {reason}")
        self.call = call
        self.reason = reason


# ────────── FALLBACK TEXT ──────────

INTRO_NO_INPUT_TEXT = "Here are some incorporation options based on your stated needs and objectives"
INTRO_FALLBACK_TEXT = "Here are some incorporation options tailored to your needs"
ADDONS_EMPTY_CATALOG_TEXT = "Explore our full range of add-ons to customize your package."
ADDONS_FALLBACK_TEXT = "We have a range of add-ons you might find useful. Please browse below."
ADDONS_DEFAULT_TEXT = "Consider these add-ons to enhance your setup."
NAME_PLACEHOLDER = "To Be Confirmed by User"

GENERIC_EMAIL_DOMAINS = (
    "gmail.com", "yahoo.com", "outlook.com", "hotmail.com",
    "aol.com", "icloud.com", "protonmail.com", "zoho.com",
)


# ────────── REQUEST SCHEMAS ──────────

class IncorporationRequest(BaseModel):
    business_activities: list[str] = []
    strategic_objectives: list[str] = []
    region: str = ""
    business_description: str = ""


class MainServiceDetails(BaseModel):
    jurisdiction: str = ""
    state: Optional[str] = None
    company_type: str = ""
    package_name: str = ""


class UserNeeds(BaseModel):
    region: str = ""
    business_activities: list[str] = []
    strategic_objectives: list[str] = []
    business_description: str = ""


class AvailableAddon(BaseModel):
    id: str
    name: str
    description: str = ""


class AddonRequest(BaseModel):
    main_service_details: MainServiceDetails
    user_needs: UserNeeds
    available_addons: list[AvailableAddon] = []


class IntroRequest(BaseModel):
    region: str = ""
    business_activities: list[str] = []
    strategic_objectives: list[str] = []


class PrefillRequest(BaseModel):
    user_email: str = Field(min_length=1)
    user_phone: str = ""
    business_purpose: str = Field(min_length=1)
    business_description: str = ""
    selected_jurisdiction: str = Field(min_length=1)
    selected_state: Optional[str] = None
    selected_company_type: str = Field(min_length=1)


class SummaryRequest(BaseModel):
    business_description: str = Field(min_length=1)


# ────────── RESPONSE SCHEMAS ──────────

class RecommendationOut(BaseModel):
    jurisdiction: str
    state: Optional[str] = None
    company_type: str
    short_description: str = ""
    reasoning: str = ""


class IncorporationResult(BaseModel):
    best_recommendation: RecommendationOut
    alternative_recommendations: list[RecommendationOut] = []


class AddonReasoning(BaseModel):
    addon_id: str
    reasoning: str = ""


class AddonModelOutput(BaseModel):
    recommended_addon_ids: list[str] = []
    recommendation_reasonings: list[AddonReasoning] = []
    intro_text: str = ""


class IntroResult(BaseModel):
    intro_text: str = ""


class SuggestedCompanyNames(BaseModel):
    first_choice: str = Field(min_length=1)
    second_choice: str = ""
    third_choice: str = ""


class SuggestedDirector(BaseModel):
    full_name: str
    email: str


class SuggestedPrimaryContact(BaseModel):
    full_name: str
    email: str
    phone: str = ""


class PrefillResult(BaseModel):
    suggested_company_names: SuggestedCompanyNames
    suggested_director: SuggestedDirector
    suggested_primary_contact: SuggestedPrimaryContact


class SummaryResult(BaseModel):
    summary: str = Field(min_length=1)


# ────────── CLIENT ──────────

class RecommendationClient:
    """Async wrapper around the Claude models used by the wizard.

    Pass chat models in to swap the provider (tests use fake LangChain models);
    otherwise ChatAnthropic instances are built on first use.
    """

    def __init__(self, llm=None, llm_fast=None):
        self._llm = llm
        self._llm_fast = llm_fast or llm

    @property
    def llm(self):
        if self._llm is None:
            self._llm = ChatAnthropic(
                model=MODEL_SMART,
                api_key=ANTHROPIC_API_KEY,
                max_tokens=2048,
                temperature=0.3,
                timeout=LLM_TIMEOUT,
            )
        return self._llm

    @property
    def llm_fast(self):
        if self._llm_fast is None:
            self._llm_fast = ChatAnthropic(
                model=MODEL_FAST,
                api_key=ANTHROPIC_API_KEY,
                max_tokens=1024,
                temperature=0.3,
                timeout=LLM_TIMEOUT,
            )
        return self._llm_fast

    async def recommend_incorporation(self, business_activities: list[str], strategic_objectives: list[str],
                                      region: str, business_description: str = "") -> dict:
        """Best jurisdiction/state/company type plus up to two alternatives."""
        req = _request("recommend_incorporation", IncorporationRequest,
                       business_activities=business_activities, strategic_objectives=strategic_objectives,
                       region=region, business_description=business_description)

        usa_only = req.region == USA_EXCLUSIVE_REGION
        us_states = "; ".join(f"{s['label']} ({s['value']})" for s in US_STATES)
        prompt = f"""You are an expert corporate services advisor helping a client choose where and how to incorporate.

CLIENT NEEDS:
- Region of operation: {req.region or "Not specified"}
- Business activities: {", ".join(req.business_activities) or "Not specified"}
- Strategic objectives: {", ".join(req.strategic_objectives) or "Not specified"}
- Business description: {req.business_description or "Not provided"}

RULES:
- "jurisdiction" MUST be one of: {USA_JURISDICTION if usa_only else ", ".join(JURISDICTIONS)}
- If the jurisdiction is "{USA_JURISDICTION}", "state" is REQUIRED and MUST be a value from this list, in "FullName-Abbreviation" format (e.g. "California-CA"): {us_states}
- For any other jurisdiction, "state" must be null.
- "company_type" for {USA_JURISDICTION} MUST be one of: {", ".join(company_types_for(USA_JURISDICTION))}
- "company_type" for every other jurisdiction MUST be one of: {", ".join(company_types_for(""))}
- "short_description" is a one-line pitch (max 15 words). "reasoning" is 2-3 sentences tied to the client's needs.
- Give one best recommendation and up to two genuinely different alternatives.

Return a JSON object:
{{"best_recommendation": {{"jurisdiction": "...", "state": "..." or null, "company_type": "...", "short_description": "...", "reasoning": "..."}}, "alternative_recommendations": [same shape, up to 2]}}

Return ONLY the JSON object."""

        result = await _invoke("recommend_incorporation", self.llm, prompt,
                               "Recommend an incorporation setup for me.", IncorporationResult)

        best = _checked_recommendation(result.best_recommendation, req.region)
        if best is None:
            raise RecommendationUnavailable(
                "recommend_incorporation",
                f"best recommendation outside the catalog: {result.best_recommendation.model_dump()}",
            )
        alternatives = []
        for alt in result.alternative_recommendations:
            checked = _checked_recommendation(alt, req.region)
            if checked is None:
                print(f"[REC] Dropping invalid alternative: {alt.jurisdiction} / {alt.company_type}")
                continue
            alternatives.append(checked)

        return {"best_recommendation": best, "alternative_recommendations": alternatives[:2]}

    async def recommend_addons(self, main_service_details: dict, user_needs: dict,
                               available_addons: list[dict]) -> dict:
        """Add-on ids drawn from available_addons, each with its reasoning."""
        req = _request("recommend_addons", AddonRequest,
                       main_service_details=main_service_details, user_needs=user_needs,
                       available_addons=available_addons)

        if not req.available_addons:
            return {"recommended_addon_ids": [], "reasoning_by_addon_id": {},
                    "intro_text": ADDONS_EMPTY_CATALOG_TEXT}

        svc = req.main_service_details
        needs = req.user_needs
        addon_lines = "\n".join(f'- ID: {a.id}, Name: "{a.name}", Description: "{a.description}"'
                                for a in req.available_addons)
        service_lines = [f"- Jurisdiction: {svc.jurisdiction or 'Not selected'}"]
        if svc.state:
            service_lines.append(f"- State: {svc.state}")
        service_lines.append(f"- Company type: {svc.company_type or 'Not selected'}")
        if svc.package_name:
            service_lines.append(f"- Package: {svc.package_name}")
        service_context = "\n".join(service_lines)

        prompt = f"""You are an expert business advisor helping a client finish their company incorporation order.

MAIN SERVICE:
{service_context}

CLIENT NEEDS:
- Region: {needs.region or "Not specified"}
- Business activities: {", ".join(needs.business_activities) or "Not specified"}
- Strategic objectives: {", ".join(needs.strategic_objectives) or "Not specified"}
- Business description: {needs.business_description or "Not provided"}

AVAILABLE ADD-ONS:
{addon_lines}

GUIDELINES:
- Recommend at most 3-4 add-ons that matter for this jurisdiction and company type. Quality over quantity.
- Only use IDs from the list above, exactly as written.
- Every recommended ID needs a reasoning entry (1-2 sentences, max 25 words) linked to the client's inputs.
- "intro_text" is one engaging sentence (max 30 words) introducing the recommendations.
- If nothing is relevant, return empty lists and intro_text "{ADDONS_EMPTY_CATALOG_TEXT}"

Return a JSON object:
{{"recommended_addon_ids": ["..."], "recommendation_reasonings": [{{"addon_id": "...", "reasoning": "..."}}], "intro_text": "..."}}

Return ONLY the JSON object."""

        result = await _invoke("recommend_addons", self.llm_fast, prompt,
                               "Which add-ons should I consider?", AddonModelOutput)

        raw = {
            "recommended_addon_ids": result.recommended_addon_ids,
            "reasoning_by_addon_id": {r.addon_id: r.reasoning for r in result.recommendation_reasonings},
            "intro_text": result.intro_text,
        }
        clean = sanitize_addon_recommendation(raw, [a.id for a in req.available_addons])
        dropped = set(result.recommended_addon_ids) - set(clean["recommended_addon_ids"])
        if dropped:
            print(f"[REC] Filtered add-on ids: {sorted(dropped)}")
        clean["intro_text"] = sanitize_intro_text(clean["intro_text"], ADDONS_DEFAULT_TEXT)
        return clean

    async def generate_recommendation_intro(self, region: str, business_activities: list[str],
                                            strategic_objectives: list[str]) -> dict:
        req = _request("generate_recommendation_intro", IntroRequest, region=region,
                       business_activities=business_activities, strategic_objectives=strategic_objectives)

        if not (req.region or req.business_activities or req.strategic_objectives):
            return {"intro_text": INTRO_NO_INPUT_TEXT}

        prompt = f"""Write a short, friendly introduction (1-2 sentences, max 35 words) shown just before a client's company incorporation recommendations.

CLIENT INPUTS:
- Region: {req.region or "Not specified"}
- Business activities: {", ".join(req.business_activities) or "Not specified"}
- Strategic objectives: {", ".join(req.strategic_objectives) or "Not specified"}

GUIDELINES:
- Briefly acknowledge their main focus areas so they feel understood.
- Helpful and professional. Use phrasing like "we've prepared" or "tailored for you".
- Never mention AI.

Return a JSON object:
{{"intro_text": "..."}}

Return ONLY the JSON object."""

        result = await _invoke("generate_recommendation_intro", self.llm_fast, prompt,
                               "Introduce my recommendations.", IntroResult)
        return {"intro_text": sanitize_intro_text(result.intro_text, INTRO_FALLBACK_TEXT)}

    async def prefill_company_details(self, user_email: str, user_phone: str, business_purpose: str,
                                      business_description: str, selected_jurisdiction: str,
                                      selected_state: Optional[str], selected_company_type: str) -> dict:
        """Suggested company names, first director and primary contact."""
        req = _request("prefill_company_details", PrefillRequest,
                       user_email=user_email, user_phone=user_phone or "",
                       business_purpose=business_purpose, business_description=business_description or "",
                       selected_jurisdiction=selected_jurisdiction, selected_state=selected_state,
                       selected_company_type=selected_company_type)

        prompt = f"""You are helping a client pre-fill the details of their new company.

CLIENT:
- Email: {req.user_email}
- Phone: {req.user_phone or "Not provided"}
- Business purpose: {req.business_purpose}
- Business description: {req.business_description or "Not provided"}
- Jurisdiction: {req.selected_jurisdiction}{f" ({req.selected_state})" if req.selected_state else ""}
- Company type: {req.selected_company_type}

GUIDELINES:
- Suggest 1-3 professional, plausible company names that fit the purpose, jurisdiction and company type. The first choice is the strongest.
- If the email domain is not generic, its organisation name is a good hint for the company name.
- Infer the director's full name from the email where you can (john.doe@acme.com -> "John Doe").
- If the domain is generic ({", ".join(GENERIC_EMAIL_DOMAINS)}) or no name can be inferred, use "{NAME_PLACEHOLDER}".
- The primary contact uses the same name as the director, the client's email and phone.

Return a JSON object:
{{"suggested_company_names": {{"first_choice": "...", "second_choice": "...", "third_choice": "..."}}, "suggested_director": {{"full_name": "...", "email": "..."}}, "suggested_primary_contact": {{"full_name": "...", "email": "...", "phone": "..."}}}}

Return ONLY the JSON object."""

        result = await _invoke("prefill_company_details", self.llm_fast, prompt,
                               "Suggest my company details.", PrefillResult)
        return result.model_dump()

    async def summarize_business_description(self, business_description: str) -> dict:
        req = _request("summarize_business_description", SummaryRequest,
                       business_description=business_description)

        prompt = f"""Summarise this business description in one or two plain sentences (max 40 words). Keep every concrete fact; add nothing.

DESCRIPTION:
{req.business_description}

Return a JSON object:
{{"summary": "..."}}

Return ONLY the JSON object."""

        result = await _invoke("summarize_business_description", self.llm_fast, prompt,
                               "Summarise it.", SummaryResult)
        return {"summary": result.summary.strip()}


# ────────── FALLBACKS ──────────

def fallback_incorporation() -> dict:
    return {"best_recommendation": None, "alternative_recommendations": []}


def fallback_addons() -> dict:
    return {"recommended_addon_ids": [], "reasoning_by_addon_id": {}, "intro_text": ADDONS_FALLBACK_TEXT}


def fallback_intro() -> dict:
    return {"intro_text": INTRO_FALLBACK_TEXT}


def fallback_prefill(request: dict) -> dict:
    """Best-effort details from local data only: a name guessed from the email."""
    email = request.get("user_email") or ""
    name = infer_name_from_email(email) or NAME_PLACEHOLDER
    company_type = request.get("selected_company_type") or "Company"
    jurisdiction = request.get("selected_jurisdiction") or "your jurisdiction"
    return {
        "suggested_company_names": {
            "first_choice": f"My {company_type} in {jurisdiction}",
            "second_choice": "",
            "third_choice": "",
        },
        "suggested_director": {"full_name": name, "email": email},
        "suggested_primary_contact": {"full_name": name, "email": email, "phone": request.get("user_phone") or ""},
    }


def fallback_summary(text: str) -> dict:
    text = " ".join((text or "").split())
    sentences = re.split(r"(?<=[.!?])\s+", text)
    summary = " ".join(sentences[:2])
    if len(summary) > 280:
        summary = summary[:277].rstrip() + "..."
    return {"summary": summary}


def infer_name_from_email(email: str) -> str:
    """'jane.doe@acme.com' -> 'Jane Doe'. Empty for generic mail providers."""
    local, _, domain = email.strip().lower().partition("@")
    if not local or not domain or domain in GENERIC_EMAIL_DOMAINS:
        return ""
    parts = [p for p in re.split(r"[._\-+]+", re.sub(r"\d+", "", local)) if p]
    return " ".join(p.capitalize() for p in parts)


# ────────── HELPERS ──────────

def _request(call: str, schema: type[BaseModel], **fields) -> BaseModel:
    try:
        return schema.model_validate(fields)
    except ValidationError as e:
        raise RecommendationUnavailable(call, f"invalid request: {e.errors()[0]['msg']}") from e


async def _invoke(call: str, model, prompt: str, human: str, schema: type[BaseModel]) -> BaseModel:
    try:
        response = await model.ainvoke([
            SystemMessage(content=prompt),
            HumanMessage(content=human),
        ])
        content = _content(response)
        raw_json = _extract_json(content)
        return schema.model_validate(json.loads(raw_json))
    except Exception as e:
        print(f"[REC ERROR] {call}: {e}")
        raise RecommendationUnavailable(call, str(e)) from e


def _checked_recommendation(rec: RecommendationOut, region: str) -> Optional[dict]:
    """Recommendation as a dict if it names catalog values, else None."""
    if rec.jurisdiction not in JURISDICTIONS:
        return None
    if region == USA_EXCLUSIVE_REGION and rec.jurisdiction != USA_JURISDICTION:
        return None
    state = rec.state or None
    if rec.jurisdiction == USA_JURISDICTION:
        if state not in US_STATE_VALUES:
            return None
    else:
        state = None
    if rec.company_type not in company_types_for(rec.jurisdiction, region):
        return None
    return {**rec.model_dump(), "state": state}


def _content(response) -> str:
    content = response.content
    if isinstance(content, list):
        return "".join(block.get("text", "") if isinstance(block, dict) else str(block) for block in content)
    return content


def _extract_json(text: str) -> str:
    """Extract JSON from LLM response, handling markdown code blocks."""
    text = text.strip()
    if "```" in text:
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start:end + 1]
    return text
