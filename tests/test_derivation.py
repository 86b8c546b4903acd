"""Line item derivation, including the reference order scenarios."""
from wizard.catalog import USA_EXCLUSIVE_REGION, USA_JURISDICTION
from wizard.derivation import derive_items, order_total, remove_item_update
from wizard.state import apply_update, initial_state


def _select_addon(state, addon_id):
    return apply_update(state, lambda s: {"add_ons": [
        {**a, "selected": True} if a["id"] == addon_id else a for a in s["add_ons"]
    ]})


def _usa_order():
    state = apply_update(initial_state(), {
        "needs_assessment": {"region": USA_EXCLUSIVE_REGION},
        "incorporation": {
            "jurisdiction": USA_JURISDICTION,
            "state": "Delaware-DE",
            "company_type": "Limited Liability Company",
            "package_name": "Standard",
        },
    })
    return _select_addon(state, "bank_account_assistance")


def test_usa_exclusive_order_with_package_and_addon():
    items = derive_items(_usa_order())

    assert [(i["id"], i["price"]) for i in items] == [
        ("incorporation_service", 199),
        ("incorporation_package_tier", 450),
        ("government_fees", 150),
        ("bank_account_assistance", 250),
    ]
    assert order_total(items) == 1049
    assert items[0]["name"] == "United States of America (Delaware) Limited Liability Company Formation"
    assert items[1]["name"] == "Standard Package"
    assert items[1]["description"] == "All Basic Features; EIN Application Assistance; Operating Agreement / Bylaws"
    assert items[2]["name"] == "State Fees (USA)"
    assert items[2]["description"] == "Mandatory fees for United States of America (Delaware)."


def test_international_order_without_package():
    state = apply_update(initial_state(), {"incorporation": {
        "jurisdiction": "Singapore", "company_type": "Private Limited Company",
    }})
    items = derive_items(state)

    assert [(i["id"], i["price"]) for i in items] == [("incorporation_service", 499), ("government_fees", 100)]
    assert order_total(items) == 599
    assert items[0]["name"] == "Singapore Private Limited Company Formation"
    assert items[1]["description"] == "Mandatory fees for Singapore."


def test_international_package_is_a_processing_tier():
    state = apply_update(initial_state(), {"incorporation": {
        "jurisdiction": "Hong Kong", "company_type": "Private Limited Company", "package_name": "Express",
    }})
    tier = derive_items(state)[1]

    assert tier == {
        "id": "incorporation_package_tier",
        "name": "Express Processing",
        "price": 300,
        "quantity": 1,
        "description": "Processing in 5-7 business days; Digital Corporate Documents; Courier Delivery",
    }


def test_no_jurisdiction_leaves_only_selected_addons():
    state = _select_addon(initial_state(), "tax_registration")
    state = apply_update(state, {"incorporation": {"package_name": "Standard"}})

    assert [(i["id"], i["price"]) for i in derive_items(state)] == [("tax_registration", 200)]


def test_usa_without_state_is_not_billable_outside_usa_exclusive_region():
    state = apply_update(initial_state(), {"incorporation": {
        "jurisdiction": USA_JURISDICTION, "company_type": "C Corporation",
    }})
    assert derive_items(state) == []


def test_usa_exclusive_without_state_bills_zero_base():
    state = apply_update(initial_state(), {
        "needs_assessment": {"region": USA_EXCLUSIVE_REGION},
        "incorporation": {"jurisdiction": USA_JURISDICTION, "company_type": "C Corporation"},
    })
    items = derive_items(state)

    assert [i["id"] for i in items] == ["incorporation_service", "government_fees"]
    assert items[0]["price"] == 0


def test_derivation_is_idempotent():
    state = _usa_order()
    assert derive_items(state) == derive_items(state)


def test_addons_follow_catalog_order():
    state = _select_addon(initial_state(), "tax_registration")
    state = _select_addon(state, "nominee_director")

    assert [i["id"] for i in derive_items(state)] == ["nominee_director", "tax_registration"]


def test_removing_an_addon_deselects_it():
    state = _usa_order()
    state = apply_update(state, remove_item_update(state, "bank_account_assistance"))

    assert [i["id"] for i in derive_items(state)] == [
        "incorporation_service", "incorporation_package_tier", "government_fees",
    ]


def test_removing_the_service_drops_tier_and_fees():
    state = _usa_order()
    state = apply_update(state, remove_item_update(state, "incorporation_service"))

    assert [i["id"] for i in derive_items(state)] == ["bank_account_assistance"]
    assert state["incorporation"]["package_name"] == ""


def test_fees_cannot_be_removed_on_their_own():
    state = _usa_order()
    assert remove_item_update(state, "government_fees") == {}
