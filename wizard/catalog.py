"""Static catalogs for the Incorporation Order Wizard.

Everything the wizard prices or offers is defined here: jurisdictions, US
states, company types, packages, add-ons and fees. Session state only ever
refers to these entries by value or id.
"""
from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, ConfigDict


USA_JURISDICTION = "United States of America"
USA_EXCLUSIVE_REGION = "USA (Exclusive Focus)"


# ────────── JURISDICTIONS ──────────

JURISDICTIONS = [
    USA_JURISDICTION,
    "United Kingdom",
    "Singapore",
    "Hong Kong",
    "British Virgin Islands",
    "Cayman Islands",
    "Seychelles",
    "United Arab Emirates",
    "Estonia",
    "Ireland",
]

_US_STATE_NAMES = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas", "CA": "California",
    "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware", "FL": "Florida", "GA": "Georgia",
    "HI": "Hawaii", "ID": "Idaho", "IL": "Illinois", "IN": "Indiana", "IA": "Iowa",
    "KS": "Kansas", "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah", "VT": "Vermont",
    "VA": "Virginia", "WA": "Washington", "WV": "West Virginia", "WI": "Wisconsin",
    "WY": "Wyoming", "DC": "District of Columbia",
}

# Values are encoded as "FullName-Abbreviation", e.g. "Delaware-DE"
US_STATES = [
    {"value": f"{name}-{code}", "label": name}
    for code, name in sorted(_US_STATE_NAMES.items(), key=lambda kv: kv[1])
]
US_STATE_VALUES = frozenset(s["value"] for s in US_STATES)


def us_state_label(value: str) -> str:
    """Display label for a US state value, tolerant of unknown values."""
    for s in US_STATES:
        if s["value"] == value:
            return s["label"]
    return value.split("-")[0]


# ────────── COMPANY TYPES ──────────

US_COMPANY_TYPES = [
    "Limited Liability Company",
    "C Corporation",
    "S Corporation",
    "Nonprofit Corporation",
]

INTERNATIONAL_COMPANY_TYPES = [
    "Private Limited Company",
    "International Business Company",
    "Limited Liability Partnership",
    "Public Limited Company",
    "Exempted Company",
    "Free Zone Company",
]


def company_types_for(jurisdiction: str, region: str = "") -> list[str]:
    """Company types valid for the jurisdiction context (US list vs international list)."""
    if jurisdiction == USA_JURISDICTION or region == USA_EXCLUSIVE_REGION:
        return US_COMPANY_TYPES
    return INTERNATIONAL_COMPANY_TYPES


# ────────── NEEDS ASSESSMENT OPTIONS ──────────

REGIONS = [
    USA_EXCLUSIVE_REGION,
    "Global / No Specific Region",
    "North America (USA, Canada)",
    "Europe (EU/EEA, UK)",
    "Asia (Singapore, Hong Kong, etc.)",
    "Middle East & Africa",
    "Latin America & Caribbean",
    "Other",
]

BUSINESS_ACTIVITIES = [
    "E-commerce / Online Sales",
    "Consulting / Professional Services",
    "Holding Company / Asset Protection",
    "Software / Technology Development",
    "Trading / Investment",
    "Other",
]

STRATEGIC_OBJECTIVES = [
    "Tax Optimization",
    "Privacy & Anonymity",
    "Ease of Management & Low Compliance",
    "Access to Specific Markets/Banking",
    "Credibility & Reputation",
    "Other",
]


# ────────── PACKAGES ──────────

class Package(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    price: int
    features: tuple[str, ...]


# USA incorporation tiers
USA_PACKAGES = [
    Package(name="Basic", price=150, features=(
        "Company Registration", "Registered Agent Service (1yr)", "Standard Documents",
    )),
    Package(name="Standard", price=450, features=(
        "All Basic Features", "EIN Application Assistance", "Operating Agreement / Bylaws",
    )),
    Package(name="Premium", price=850, features=(
        "All Standard Features", "Priority Processing", "Bank Account Opening Support",
    )),
]

# International processing-time options
INTERNATIONAL_PACKAGES = [
    Package(name="Standard", price=0, features=(
        "Processing in 10-15 business days", "Digital Corporate Documents",
    )),
    Package(name="Express", price=300, features=(
        "Processing in 5-7 business days", "Digital Corporate Documents", "Courier Delivery",
    )),
    Package(name="Priority", price=600, features=(
        "Processing in 2-3 business days", "Dedicated Case Manager", "Courier Delivery",
    )),
]


# ────────── ADD-ONS ──────────

class AddonDefinition(BaseModel):
    """Catalog entry for an add-on. Session state never overrides these fields."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    price: int
    requires_details: bool = False
    detail_fields: tuple[str, ...] = ()


ADDONS = [
    AddonDefinition(
        id="nominee_director", name="Nominee Director", price=500,
        description="A professional nominee director appointed to your company for one year.",
    ),
    AddonDefinition(
        id="nominee_shareholder", name="Nominee Shareholder", price=400,
        description="Shares held by a nominee on your behalf to keep ownership private.",
    ),
    AddonDefinition(
        id="mail_forwarding", name="Mail Forwarding & Virtual Office", price=350,
        description="A business address with scanning and forwarding of incoming mail.",
        requires_details=True, detail_fields=("forwarding_address", "forwarding_frequency"),
    ),
    AddonDefinition(
        id="accounting_services", name="Annual Accounting Services", price=750,
        description="Bookkeeping, annual financial statements and tax filing support.",
    ),
    AddonDefinition(
        id="bank_account_assistance", name="Bank Account Opening Assistance", price=250,
        description="Introductions and application support for a corporate bank account.",
        requires_details=True, detail_fields=("preferred_bank", "expected_monthly_volume"),
    ),
    AddonDefinition(
        id="tax_registration", name="Tax ID Registration", price=200,
        description="Registration for a tax identification number (EIN, VAT or local equivalent).",
    ),
]

ADDONS_BY_ID = {a.id: a for a in ADDONS}


def get_addon(addon_id: str) -> Optional[AddonDefinition]:
    return ADDONS_BY_ID.get(addon_id)


# ────────── PRICES & FEES ──────────

USA_STATE_FEE = 150
INTERNATIONAL_GOVERNMENT_FEE = 100

USA_DEFAULT_PRICE = 249
INTERNATIONAL_DEFAULT_PRICE = 399

# Featured (jurisdiction, state, company_type) combinations with a fixed price.
# International entries carry state=None.
FEATURED_PRICES = {
    (USA_JURISDICTION, "Delaware-DE", "Limited Liability Company"): 199,
    (USA_JURISDICTION, "Delaware-DE", "C Corporation"): 299,
    (USA_JURISDICTION, "Wyoming-WY", "Limited Liability Company"): 179,
    (USA_JURISDICTION, "Nevada-NV", "Limited Liability Company"): 229,
    (USA_JURISDICTION, "Florida-FL", "Limited Liability Company"): 219,
    ("Singapore", None, "Private Limited Company"): 499,
    ("Hong Kong", None, "Private Limited Company"): 449,
    ("United Kingdom", None, "Private Limited Company"): 149,
    ("British Virgin Islands", None, "International Business Company"): 899,
    ("Seychelles", None, "International Business Company"): 599,
}


# ────────── CHECKOUT & STEPS ──────────

PAYMENT_METHODS = ("card", "paypal", "bank_transfer")
ORDER_STATUSES = ("pending", "success", "failed", "completed_free")

STEPS = [
    {"id": "welcome", "name": "Welcome"},
    {"id": "define", "name": "Define Your Needs"},
    {"id": "services", "name": "Select Services"},
    {"id": "details", "name": "Provide Details"},
    {"id": "review", "name": "Review & Pay"},
    {"id": "confirmation", "name": "Confirmation"},
]


def catalog_snapshot() -> dict:
    """JSON-safe dump of every catalog, for UIs."""
    return {
        "jurisdictions": JURISDICTIONS,
        "us_states": US_STATES,
        "us_company_types": US_COMPANY_TYPES,
        "international_company_types": INTERNATIONAL_COMPANY_TYPES,
        "regions": REGIONS,
        "business_activities": BUSINESS_ACTIVITIES,
        "strategic_objectives": STRATEGIC_OBJECTIVES,
        "usa_packages": [p.model_dump() for p in USA_PACKAGES],
        "international_packages": [p.model_dump() for p in INTERNATIONAL_PACKAGES],
        "addons": [a.model_dump() for a in ADDONS],
        "fees": {
            "usa_state_fee": USA_STATE_FEE,
            "international_government_fee": INTERNATIONAL_GOVERNMENT_FEE,
        },
        "payment_methods": list(PAYMENT_METHODS),
        "order_statuses": list(ORDER_STATUSES),
        "steps": STEPS,
    }
