"""Order derivation: billable line items recomputed from an order snapshot.

derive_items is a pure function of the incorporation selection, the add-on
selections and the needs-assessment region. Items are rebuilt from scratch on
every call, never patched, so callers can simply re-derive after each update.
"""
from __future__ import annotations

from typing import Optional, TypedDict

from wizard.catalog import USA_JURISDICTION, us_state_label
from wizard.pricing import find_package, government_fee
from wizard.state import OrderState, is_usa_exclusive, resolve_addons


INCORPORATION_SERVICE = "incorporation_service"
PACKAGE_TIER = "incorporation_package_tier"
GOVERNMENT_FEES = "government_fees"

INCORPORATION_ITEM_IDS = frozenset({INCORPORATION_SERVICE, PACKAGE_TIER, GOVERNMENT_FEES})


class OrderItem(TypedDict):
    id: str
    name: str
    price: int
    quantity: int
    description: str


def derive_items(state: OrderState) -> list[OrderItem]:
    """Billable items in order: service, package tier, government fees, selected add-ons."""
    inc = state["incorporation"]
    region = state["needs_assessment"].get("region", "")
    usa_exclusive = is_usa_exclusive(state)

    jurisdiction = inc.get("jurisdiction") or ""
    company_type = inc.get("company_type") or ""
    us_state = inc.get("state") or None

    items: list[OrderItem] = []

    billable = bool(jurisdiction and company_type) and (
        usa_exclusive or jurisdiction != USA_JURISDICTION or bool(us_state)
    )
    if billable:
        state_label = _state_label(jurisdiction, us_state)
        name = jurisdiction
        if state_label:
            name += f" ({state_label})"
        items.append({
            "id": INCORPORATION_SERVICE,
            "name": f"{name} {company_type} Formation",
            "price": inc.get("base_price") or 0,
            "quantity": 1,
            "description": f"Base service for company formation in {jurisdiction}.",
        })

        package = find_package(inc.get("package_name") or "", region)
        if package:
            suffix = "Package" if usa_exclusive else "Processing"
            items.append({
                "id": PACKAGE_TIER,
                "name": f"{package.name} {suffix}",
                "price": package.price,
                "quantity": 1,
                "description": "; ".join(package.features),
            })

        fee_name, fee_price = government_fee(jurisdiction, region)
        fee_scope = jurisdiction
        if us_state:
            fee_scope += f" ({us_state_label(us_state)})"
        items.append({
            "id": GOVERNMENT_FEES,
            "name": fee_name,
            "price": fee_price,
            "quantity": 1,
            "description": f"Mandatory fees for {fee_scope}.",
        })

    for addon in resolve_addons(state):
        if addon["selected"]:
            items.append({
                "id": addon["id"],
                "name": addon["name"],
                "price": addon["price"],
                "quantity": 1,
                "description": addon["description"] or f"{addon['name']} service.",
            })

    return items


def order_total(items: list[OrderItem]) -> int:
    return sum(item["price"] * item["quantity"] for item in items)


def remove_item_update(state: OrderState, item_id: str) -> dict:
    """Partial update that drops a line item from the order.

    Removing the incorporation service clears the whole selection, so its tier
    and fee items go with it on the next derive. Add-ons are deselected.
    Fees and tiers only exist through the service; removing them on their own
    changes nothing.
    """
    if item_id == INCORPORATION_SERVICE:
        return {"incorporation": {"jurisdiction": "", "state": None, "company_type": "", "package_name": ""}}
    if item_id in INCORPORATION_ITEM_IDS:
        return {}
    return {
        "add_ons": [
            {**sel, "selected": False} if sel["id"] == item_id else sel
            for sel in state["add_ons"]
        ],
    }


def _state_label(jurisdiction: str, us_state: Optional[str]) -> str:
    if jurisdiction == USA_JURISDICTION and us_state:
        return us_state_label(us_state)
    return ""
