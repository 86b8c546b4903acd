"""State definition for the Incorporation Order wizard"""
from __future__ import annotations

import uuid
from enum import Enum
from typing import Callable, Optional, TypedDict, Union

from wizard.catalog import (
    ADDONS, ADDONS_BY_ID, ORDER_STATUSES, PAYMENT_METHODS, USA_JURISDICTION, USA_EXCLUSIVE_REGION,
    company_types_for,
)
from wizard.pricing import resolve_price


class InvalidUpdate(ValueError):
    """A partial update that would leave the order structurally invalid."""


class ShareholderType(str, Enum):
    INDIVIDUAL = "individual"
    CORPORATE_ENTITY = "corporate_entity"


class NeedsAssessment(TypedDict):
    region: str
    business_activities: list[str]
    strategic_objectives: list[str]
    business_description: str


class Recommendation(TypedDict):
    jurisdiction: str
    state: Optional[str]
    company_type: str
    short_description: str
    reasoning: str


class Incorporation(TypedDict):
    # Current (possibly user-overridden) selection
    jurisdiction: str
    state: Optional[str]            # None unless USA jurisdiction or USA-exclusive region
    company_type: str
    base_price: Optional[int]       # derived through resolve_price; None = incomplete
    package_name: str

    # AI output, kept apart from the selection
    best_recommendation: Optional[Recommendation]
    alternative_recommendations: list[Recommendation]
    ai_jurisdiction: str
    ai_state: Optional[str]
    ai_company_type: str
    ai_reasoning: str
    intro_text: str


class AddonSelection(TypedDict):
    id: str
    selected: bool
    recommendation_reasoning: Optional[str]
    details: dict


class ResolvedAddon(TypedDict):
    id: str
    name: str
    description: str
    price: int
    requires_details: bool
    selected: bool
    recommendation_reasoning: Optional[str]
    details: dict


class CompanyNames(TypedDict):
    first_choice: str
    second_choice: str
    third_choice: str


class Address(TypedDict):
    street: str
    city: str
    state_or_province: str
    postal_code: str
    country: str


class Person(TypedDict):
    id: str
    full_name: str
    email: str
    phone: str


class PrimaryContact(Person):
    address: Address


class Shareholder(TypedDict):
    id: str
    type: str
    full_name_or_entity_name: str
    registration_number: str
    share_allocation: str


class BillingAddress(Address):
    use_delivery_address: bool
    use_primary_contact_address: bool


class OrderState(TypedDict):
    # Identity
    user_email: str
    user_phone: str

    # Define & configure
    needs_assessment: NeedsAssessment
    incorporation: Incorporation
    add_ons: list[AddonSelection]
    addon_intro_text: str

    # Details
    company_names: CompanyNames
    directors: list[Person]
    shareholders: list[Shareholder]
    primary_contact: PrimaryContact
    delivery_address: Address
    extra_requests: str

    # Review & pay
    billing_address: BillingAddress
    payment_method: Optional[str]     # "card" | "paypal" | "bank_transfer"

    # Confirmation
    order_id: str
    order_status: str                 # "pending" | "success" | "failed" | "completed_free"
    payment_date: Optional[str]


Update = Union[dict, Callable[[OrderState], dict]]

# Sub-objects merged field by field
COMPOSITE_KEYS = frozenset({
    "incorporation", "needs_assessment", "company_names",
    "primary_contact", "delivery_address", "billing_address",
})
# Sequences replaced wholesale
SEQUENCE_KEYS = frozenset({"add_ons", "directors", "shareholders"})

STATE_KEYS = frozenset(OrderState.__annotations__)


# ────────── DEFAULTS ──────────

def _new_id(prefix: str) -> str:
    return f"{prefix}-{str(uuid.uuid4())[:8]}"


def empty_address() -> Address:
    return {"street": "", "city": "", "state_or_province": "", "postal_code": "", "country": ""}


def empty_incorporation() -> Incorporation:
    return {
        "jurisdiction": "",
        "state": None,
        "company_type": "",
        "base_price": None,
        "package_name": "",
        "best_recommendation": None,
        "alternative_recommendations": [],
        "ai_jurisdiction": "",
        "ai_state": None,
        "ai_company_type": "",
        "ai_reasoning": "",
        "intro_text": "",
    }


def new_director() -> Person:
    return {"id": _new_id("dir"), "full_name": "", "email": "", "phone": ""}


def new_shareholder(shareholder_type: ShareholderType = ShareholderType.INDIVIDUAL) -> Shareholder:
    return {
        "id": _new_id("sh"),
        "type": ShareholderType(shareholder_type).value,
        "full_name_or_entity_name": "",
        "registration_number": "",
        "share_allocation": "",
    }


def initial_state() -> OrderState:
    """Session-start defaults. Every sub-object exists from the start."""
    return {
        "user_email": "",
        "user_phone": "",
        "needs_assessment": {
            "region": "",
            "business_activities": [],
            "strategic_objectives": [],
            "business_description": "",
        },
        "incorporation": empty_incorporation(),
        "add_ons": sync_addon_selections([]),
        "addon_intro_text": "",
        "company_names": {"first_choice": "", "second_choice": "", "third_choice": ""},
        "directors": [new_director()],
        "shareholders": [new_shareholder()],
        "primary_contact": {
            "id": _new_id("contact"), "full_name": "", "email": "", "phone": "",
            "address": empty_address(),
        },
        "delivery_address": empty_address(),
        "extra_requests": "",
        "billing_address": {
            **empty_address(),
            "use_delivery_address": False,
            "use_primary_contact_address": False,
        },
        "payment_method": None,
        "order_id": "",
        "order_status": "pending",
        "payment_date": None,
    }


# ────────── ADD-ONS ──────────

def sync_addon_selections(selections: list[dict]) -> list[AddonSelection]:
    """One selection per catalog add-on, in catalog order.

    Unknown ids are dropped and catalog fields (name, price, description) are
    ignored if a caller sent them. Detail fields survive only for add-ons that
    declare them.
    """
    by_id: dict[str, dict] = {}
    for sel in selections:
        addon_id = sel.get("id")
        if addon_id in ADDONS_BY_ID and addon_id not in by_id:
            by_id[addon_id] = sel

    synced = []
    for addon in ADDONS:
        sel = by_id.get(addon.id, {})
        details = sel.get("details") or {}
        if not isinstance(details, dict):
            raise InvalidUpdate(f"add_ons.{addon.id}.details must be an object")
        synced.append({
            "id": addon.id,
            "selected": bool(sel.get("selected", False)),
            "recommendation_reasoning": sel.get("recommendation_reasoning") or None,
            "details": {k: v for k, v in details.items() if k in addon.detail_fields},
        })
    return synced


def resolve_addons(state: OrderState) -> list[ResolvedAddon]:
    """Join session selections with the catalog at read time."""
    resolved = []
    for sel in state["add_ons"]:
        addon = ADDONS_BY_ID[sel["id"]]
        resolved.append({
            "id": addon.id,
            "name": addon.name,
            "description": addon.description,
            "price": addon.price,
            "requires_details": addon.requires_details,
            "selected": sel["selected"],
            "recommendation_reasoning": sel["recommendation_reasoning"],
            "details": dict(sel["details"]),
        })
    return resolved


# ────────── CONTEXT ──────────

def is_usa_exclusive(state: OrderState) -> bool:
    return state["needs_assessment"].get("region") == USA_EXCLUSIVE_REGION


def is_usa_context(state: OrderState) -> bool:
    return is_usa_exclusive(state) or state["incorporation"].get("jurisdiction") == USA_JURISDICTION


# ────────── MERGE ──────────

def apply_update(state: OrderState, update: Update) -> OrderState:
    """Merge a partial update (or a function producing one) into a new snapshot.

    Composite sub-objects are shallow-merged, sequences and plain fields are
    replaced. The input snapshot is never mutated.
    """
    partial = update(state) if callable(update) else update
    partial = partial or {}

    unknown = set(partial) - STATE_KEYS
    if unknown:
        raise InvalidUpdate(f"Unknown order fields: {', '.join(sorted(unknown))}")

    new = dict(state)
    for key, value in partial.items():
        if key in COMPOSITE_KEYS:
            if not isinstance(value, dict):
                raise InvalidUpdate(f"{key} must be an object")
            new[key] = {**state[key], **value}
        elif key in SEQUENCE_KEYS:
            if not isinstance(value, (list, tuple)):
                raise InvalidUpdate(f"{key} must be a list")
            if not all(isinstance(v, dict) for v in value):
                raise InvalidUpdate(f"{key} entries must be objects")
            new[key] = [dict(v) for v in value]
        else:
            new[key] = value

    return _normalize(new, partial)


def _normalize(new: dict, partial: dict) -> OrderState:
    """Re-establish the order invariants on a freshly merged snapshot."""
    for key in ("directors", "shareholders"):
        if key in partial and not new[key]:
            raise InvalidUpdate(f"{key} must keep at least one entry")

    if "directors" in partial:
        new["directors"] = [_sync_director(d) for d in new["directors"]]
    if "shareholders" in partial:
        new["shareholders"] = [_sync_shareholder(s) for s in new["shareholders"]]

    if "add_ons" in partial:
        new["add_ons"] = sync_addon_selections(new["add_ons"])

    if "needs_assessment" in partial:
        needs = new["needs_assessment"]
        new["needs_assessment"] = {
            **needs,
            "region": _text(needs.get("region"), "needs_assessment.region"),
            "business_description": _text(needs.get("business_description"), "needs_assessment.business_description"),
            "business_activities": _dedupe(_text_list(needs.get("business_activities"), "needs_assessment.business_activities")),
            "strategic_objectives": _dedupe(_text_list(needs.get("strategic_objectives"), "needs_assessment.strategic_objectives")),
        }

    if "primary_contact" in partial:
        address = new["primary_contact"].get("address") or {}
        if not isinstance(address, dict):
            raise InvalidUpdate("primary_contact.address must be an object")
        new["primary_contact"] = {**new["primary_contact"], "address": {**empty_address(), **address}}

    if partial.get("payment_method") is not None and partial["payment_method"] not in PAYMENT_METHODS:
        raise InvalidUpdate(f"Unknown payment method '{partial['payment_method']}'")
    if "order_status" in partial and partial["order_status"] not in ORDER_STATUSES:
        raise InvalidUpdate(f"Unknown order status '{partial['order_status']}'")

    if "billing_address" in partial:
        new["billing_address"] = _exclusive_billing_flags(new["billing_address"], partial["billing_address"])

    if "incorporation" in partial or "needs_assessment" in partial:
        new["incorporation"] = _normalize_incorporation(
            new["incorporation"], new["needs_assessment"].get("region", ""),
        )

    return new


def _normalize_incorporation(inc: dict, region: str) -> Incorporation:
    jurisdiction = _text(inc.get("jurisdiction"), "incorporation.jurisdiction")
    state = _text(inc.get("state"), "incorporation.state") or None
    company_type = _text(inc.get("company_type"), "incorporation.company_type")
    package_name = _text(inc.get("package_name"), "incorporation.package_name")

    if state and not (jurisdiction == USA_JURISDICTION or region == USA_EXCLUSIVE_REGION):
        state = None
    if company_type and company_type not in company_types_for(jurisdiction, region):
        print(f"[STATE] Clearing company type '{company_type}' (not valid for {jurisdiction or 'no jurisdiction'})")
        company_type = ""

    return {
        **inc,
        "jurisdiction": jurisdiction,
        "state": state,
        "company_type": company_type,
        "package_name": package_name,
        "base_price": resolve_price(jurisdiction, state, company_type),
    }


def _sync_director(entry: dict) -> Person:
    """Director with every field present; an existing id is kept."""
    director = new_director()
    if entry.get("id"):
        director["id"] = _text(entry["id"], "directors.id")
    for field in ("full_name", "email", "phone"):
        if field in entry:
            director[field] = _text(entry[field], f"directors.{field}")
    return director


def _sync_shareholder(entry: dict) -> Shareholder:
    kind = entry.get("type") or ShareholderType.INDIVIDUAL
    try:
        shareholder = new_shareholder(kind)
    except (ValueError, TypeError):
        raise InvalidUpdate(f"Unknown shareholder type '{kind}'") from None
    if entry.get("id"):
        shareholder["id"] = _text(entry["id"], "shareholders.id")
    for field in ("full_name_or_entity_name", "registration_number", "share_allocation"):
        if field in entry:
            shareholder[field] = _text(entry[field], f"shareholders.{field}")
    return shareholder


def _text(value, field: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidUpdate(f"{field} must be text")
    return value


def _text_list(values, field: str) -> list[str]:
    if values is None:
        return []
    if not isinstance(values, (list, tuple)) or not all(isinstance(v, str) for v in values):
        raise InvalidUpdate(f"{field} must be a list of text values")
    return list(values)


def _exclusive_billing_flags(billing: dict, patch: dict) -> BillingAddress:
    # The delivery flag wins if an update sets both
    if patch.get("use_delivery_address"):
        return {**billing, "use_primary_contact_address": False}
    if patch.get("use_primary_contact_address"):
        return {**billing, "use_delivery_address": False}
    return billing


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))
