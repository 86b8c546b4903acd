"""Synchronous checks run before a step advances or a recommendation call fires."""
from __future__ import annotations

import re

from wizard.catalog import (
    JURISDICTIONS, PAYMENT_METHODS, REGIONS, US_STATE_VALUES, USA_JURISDICTION,
    company_types_for, get_addon,
)
from wizard.pricing import find_package
from wizard.state import OrderState, is_usa_context


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# International numbers with spaces, hyphens, dots and parentheses
PHONE_RE = re.compile(r"^[+]?[(]?[0-9]{1,4}[)]?[-\s./0-9]*$")


class WizardValidationError(Exception):
    """One or more fields failed validation. errors maps field path -> message."""

    def __init__(self, errors: dict[str, str]):
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors


def validate_email(email: str) -> str | None:
    if not email:
        return "Email is required."
    if not EMAIL_RE.match(email):
        return "Invalid email format."
    return None


def validate_phone(phone: str) -> str | None:
    if not phone:
        return "Phone number is required."
    if not PHONE_RE.match(phone):
        return "Invalid phone number format."
    return None


def validate_contact(state: OrderState) -> dict[str, str]:
    errors = {}
    if err := validate_email(state["user_email"]):
        errors["user_email"] = err
    if err := validate_phone(state["user_phone"]):
        errors["user_phone"] = err
    return errors


def validate_needs(state: OrderState) -> dict[str, str]:
    needs = state["needs_assessment"]
    errors = {}
    region = needs.get("region") or ""
    if not region:
        errors["needs_assessment.region"] = "Please choose a region of operation."
    elif region not in REGIONS:
        errors["needs_assessment.region"] = f"Unknown region '{region}'."
    if not needs.get("business_activities"):
        errors["needs_assessment.business_activities"] = "Select at least one business activity."
    if not needs.get("strategic_objectives"):
        errors["needs_assessment.strategic_objectives"] = "Select at least one strategic objective."
    return errors


def validate_incorporation(state: OrderState) -> dict[str, str]:
    inc = state["incorporation"]
    region = state["needs_assessment"].get("region", "")
    errors = {}

    jurisdiction = inc.get("jurisdiction") or ""
    if not jurisdiction:
        errors["incorporation.jurisdiction"] = "Please choose a jurisdiction."
    elif jurisdiction not in JURISDICTIONS:
        errors["incorporation.jurisdiction"] = f"Unknown jurisdiction '{jurisdiction}'."

    if jurisdiction == USA_JURISDICTION or (is_usa_context(state) and not jurisdiction):
        if not inc.get("state"):
            errors["incorporation.state"] = "Please choose a US state."
        elif inc["state"] not in US_STATE_VALUES:
            errors["incorporation.state"] = f"Unknown US state '{inc['state']}'."

    company_type = inc.get("company_type") or ""
    if not company_type:
        errors["incorporation.company_type"] = "Please choose a company type."
    elif company_type not in company_types_for(jurisdiction, region):
        errors["incorporation.company_type"] = f"'{company_type}' is not available in {jurisdiction}."

    package_name = inc.get("package_name") or ""
    if not package_name:
        errors["incorporation.package_name"] = "Please choose a package."
    elif find_package(package_name, region) is None:
        errors["incorporation.package_name"] = f"Unknown package '{package_name}'."
    return errors


def validate_addons(state: OrderState) -> dict[str, str]:
    """Selected add-ons that need extra details must have every detail field filled."""
    errors = {}
    for sel in state["add_ons"]:
        addon = get_addon(sel["id"])
        if not (sel["selected"] and addon and addon.requires_details):
            continue
        for field in addon.detail_fields:
            if not str(sel["details"].get(field) or "").strip():
                errors[f"add_ons.{addon.id}.{field}"] = f"{addon.name} needs '{field.replace('_', ' ')}'."
    return errors


def validate_details(state: OrderState) -> dict[str, str]:
    errors = {}
    if not state["company_names"].get("first_choice", "").strip():
        errors["company_names.first_choice"] = "Please provide at least one company name."
    if not state["directors"][0].get("full_name", "").strip():
        errors["directors.0.full_name"] = "The first director needs a full name."
    contact_email = state["primary_contact"].get("email", "")
    if contact_email and (err := validate_email(contact_email)):
        errors["primary_contact.email"] = err
    return errors


def validate_checkout(state: OrderState, total: int) -> dict[str, str]:
    errors = {}
    method = state.get("payment_method")
    if method and method not in PAYMENT_METHODS:
        errors["payment_method"] = f"Unsupported payment method '{method}'."
    elif not method and total > 0:
        errors["payment_method"] = "Please choose a payment method."
    return errors


def raise_for(errors: dict[str, str]):
    if errors:
        raise WizardValidationError(errors)
