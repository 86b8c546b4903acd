"""Price lookups for incorporation services, packages and mandatory fees.

Both the AI-recommendation path and the manual dropdown path price through
resolve_price, so a given (jurisdiction, state, company type) always costs the same.
"""
from __future__ import annotations

from typing import Optional

from wizard.catalog import (
    USA_JURISDICTION, USA_EXCLUSIVE_REGION,
    USA_PACKAGES, INTERNATIONAL_PACKAGES, Package,
    FEATURED_PRICES, USA_DEFAULT_PRICE, INTERNATIONAL_DEFAULT_PRICE,
    USA_STATE_FEE, INTERNATIONAL_GOVERNMENT_FEE,
)


def resolve_price(jurisdiction: str, state: Optional[str], company_type: str) -> Optional[int]:
    """Base incorporation price, or None while the selection is incomplete."""
    if not jurisdiction or not company_type:
        return None

    if jurisdiction == USA_JURISDICTION:
        if not state:
            return None
        return FEATURED_PRICES.get((jurisdiction, state, company_type), USA_DEFAULT_PRICE)

    return FEATURED_PRICES.get((jurisdiction, None, company_type), INTERNATIONAL_DEFAULT_PRICE)


def uses_usa_fees(jurisdiction: str, region: str) -> bool:
    return region == USA_EXCLUSIVE_REGION or jurisdiction == USA_JURISDICTION


def government_fee(jurisdiction: str, region: str) -> tuple[str, int]:
    """(line item name, amount) of the mandatory government/state fee."""
    if uses_usa_fees(jurisdiction, region):
        return "State Fees (USA)", USA_STATE_FEE
    return "Government Fees", INTERNATIONAL_GOVERNMENT_FEE


def active_packages(region: str) -> list[Package]:
    """USA incorporation tiers for the USA-exclusive region, processing times otherwise."""
    if region == USA_EXCLUSIVE_REGION:
        return USA_PACKAGES
    return INTERNATIONAL_PACKAGES


def find_package(name: str, region: str) -> Optional[Package]:
    if not name:
        return None
    return next((p for p in active_packages(region) if p.name == name), None)
