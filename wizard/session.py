"""Wizard session: one order snapshot plus the recommendation calls around it.

All mutation goes through apply_update, so every read of `state` is a complete
snapshot and `items` / `total` are always re-derived from it. Recommendation
calls run through the session's fingerprint cache; failures fall back to static
defaults unless the call is configured as strict.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from wizard.cache import RecommendationCache, fingerprint
from wizard.catalog import (
    ADDONS, JURISDICTIONS, STEPS, US_STATE_VALUES, company_types_for, get_addon,
)
from wizard.config import STRICT_RECOMMENDATIONS
from wizard.derivation import derive_items, order_total, remove_item_update
from wizard.pricing import find_package
from wizard.recommendations import (
    RecommendationClient, RecommendationUnavailable,
    fallback_incorporation, fallback_addons, fallback_intro, fallback_prefill, fallback_summary,
)
from wizard.state import (
    OrderState, ShareholderType, Update,
    apply_update, initial_state, new_director, new_shareholder,
)
from wizard.validation import (
    WizardValidationError, raise_for, validate_addons, validate_checkout, validate_contact, validate_details,
    validate_email, validate_incorporation, validate_needs, validate_phone,
)


class ActionInProgress(Exception):
    """The same recommendation action is already running for this session."""


CALL_LABELS = {
    "incorporation": "Incorporation Recommendation",
    "intro": "Recommendation Intro",
    "addons": "Add-on Recommendation",
    "prefill": "Company Details Prefill",
    "summary": "Business Summary",
}


class WizardSession:

    def __init__(self, client: RecommendationClient = None, strict=None, session_id: str = None):
        self.session_id = session_id or str(uuid.uuid4())[:8]
        self.state: OrderState = initial_state()
        self.client = client or RecommendationClient()
        self.cache = RecommendationCache()
        self.strict = STRICT_RECOMMENDATIONS if strict is None else frozenset(strict)
        self.api_trace: list[dict] = []
        self._in_flight: set[str] = set()

    # ────────── STATE ──────────

    def update(self, update: Update) -> OrderState:
        self.state = apply_update(self.state, update)
        return self.state

    @property
    def items(self) -> list[dict]:
        return derive_items(self.state)

    @property
    def total(self) -> int:
        return order_total(self.items)

    def current_step(self) -> str:
        """First step whose requirements are not met yet."""
        if validate_contact(self.state):
            return "welcome"
        if validate_needs(self.state) or validate_incorporation(self.state):
            return "define"
        if validate_addons(self.state):
            return "services"
        if validate_details(self.state):
            return "details"
        if not self.state["order_id"]:
            return "review"
        return "confirmation"

    def step_index(self) -> int:
        step = self.current_step()
        return next(i for i, s in enumerate(STEPS) if s["id"] == step)

    def save(self) -> OrderState:
        """Nothing is persisted; the snapshot lives as long as the session."""
        return self.state

    def drain_trace(self) -> list[dict]:
        trace, self.api_trace = self.api_trace, []
        return trace

    # ────────── WELCOME ──────────

    def submit_contact(self, email: str, phone: str) -> OrderState:
        email = (email or "").strip()
        phone = (phone or "").strip()
        errors = {}
        if err := validate_email(email):
            errors["user_email"] = err
        if err := validate_phone(phone):
            errors["user_phone"] = err
        raise_for(errors)
        return self.update({"user_email": email, "user_phone": phone})

    # ────────── DEFINE & CONFIGURE ──────────

    async def recommend_incorporation(self) -> OrderState:
        """Incorporation recommendation and its intro sentence, fetched together."""
        raise_for(validate_needs(self.state))

        with self._action("incorporation"):
            inc_inputs = self._incorporation_inputs()
            intro_inputs = self._intro_inputs()
            # Both calls settle before the guard is released
            results = await asyncio.gather(
                self._call("incorporation", inc_inputs,
                           lambda i: self.client.recommend_incorporation(**i),
                           lambda i: fallback_incorporation()),
                self._call("intro", intro_inputs,
                           lambda i: self.client.generate_recommendation_intro(**i),
                           lambda i: fallback_intro()),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            rec, intro = results

        if self._is_stale(inc_inputs, self._incorporation_inputs()):
            print("[INC] Needs changed while waiting, discarding recommendation")
            return self.state

        best = rec["best_recommendation"]
        inc_update = {
            "best_recommendation": best,
            "alternative_recommendations": rec["alternative_recommendations"],
            "intro_text": intro["intro_text"],
            "ai_jurisdiction": best["jurisdiction"] if best else "",
            "ai_state": best["state"] if best else None,
            "ai_company_type": best["company_type"] if best else "",
            "ai_reasoning": best["reasoning"] if best else "",
        }
        # Only pre-select when the user hasn't picked anything yet
        if best and not self.state["incorporation"]["jurisdiction"]:
            inc_update.update(
                jurisdiction=best["jurisdiction"],
                state=best["state"],
                company_type=best["company_type"],
            )

        print(f"[INC] best={best['jurisdiction'] + ' / ' + best['company_type'] if best else None} | "
              f"alternatives={len(rec['alternative_recommendations'])}")
        return self.update({"incorporation": inc_update})

    def select_recommendation(self, index: int) -> OrderState:
        """Adopt a recommendation: 0 is the best one, 1.. the alternatives."""
        inc = self.state["incorporation"]
        options = ([inc["best_recommendation"]] if inc["best_recommendation"] else []) \
            + list(inc["alternative_recommendations"])
        if not 0 <= index < len(options):
            raise_for({"recommendation": f"No recommendation at position {index}."})

        chosen = options[index]
        return self.update({"incorporation": {
            "jurisdiction": chosen["jurisdiction"],
            "state": chosen["state"],
            "company_type": chosen["company_type"],
        }})

    def select_incorporation(self, jurisdiction: str, state: Optional[str] = None,
                             company_type: str = "", package_name: Optional[str] = None) -> OrderState:
        """Manual dropdown selection. Priced exactly like an adopted recommendation."""
        region = self.state["needs_assessment"].get("region", "")
        errors = {}
        if jurisdiction and jurisdiction not in JURISDICTIONS:
            errors["incorporation.jurisdiction"] = f"Unknown jurisdiction '{jurisdiction}'."
        if state and state not in US_STATE_VALUES:
            errors["incorporation.state"] = f"Unknown US state '{state}'."
        if company_type and company_type not in company_types_for(jurisdiction, region):
            errors["incorporation.company_type"] = f"'{company_type}' is not available in {jurisdiction}."
        if package_name and find_package(package_name, region) is None:
            errors["incorporation.package_name"] = f"Unknown package '{package_name}'."
        raise_for(errors)

        inc_update = {"jurisdiction": jurisdiction, "state": state, "company_type": company_type}
        if package_name is not None:
            inc_update["package_name"] = package_name
        return self.update({"incorporation": inc_update})

    def select_package(self, name: str) -> OrderState:
        region = self.state["needs_assessment"].get("region", "")
        if name and find_package(name, region) is None:
            raise_for({"incorporation.package_name": f"Unknown package '{name}'."})
        return self.update({"incorporation": {"package_name": name}})

    async def summarize_description(self, apply: bool = False) -> str:
        """Shorten the business description; store it back when apply is set."""
        description = self.state["needs_assessment"].get("business_description", "").strip()
        raise_for({} if description else {
            "needs_assessment.business_description": "Describe your business first.",
        })

        inputs = {"business_description": description}
        with self._action("summary"):
            result = await self._call("summary", inputs,
                                      lambda i: self.client.summarize_business_description(**i),
                                      lambda i: fallback_summary(i["business_description"]))

        summary = result["summary"]
        if apply and summary and not self._is_stale(inputs, self._summary_inputs()):
            self.update({"needs_assessment": {"business_description": summary}})
        return summary

    # ────────── ADD-ONS ──────────

    def toggle_addon(self, addon_id: str, selected: bool) -> OrderState:
        if get_addon(addon_id) is None:
            raise_for({"add_ons": f"Unknown add-on '{addon_id}'."})
        return self.update(lambda s: {"add_ons": [
            {**sel, "selected": bool(selected)} if sel["id"] == addon_id else sel
            for sel in s["add_ons"]
        ]})

    def set_addon_details(self, addon_id: str, details: dict) -> OrderState:
        addon = get_addon(addon_id)
        if addon is None:
            raise_for({"add_ons": f"Unknown add-on '{addon_id}'."})
        unknown = set(details) - set(addon.detail_fields)
        if unknown:
            raise_for({f"add_ons.{addon_id}": f"Unknown detail fields: {', '.join(sorted(unknown))}"})
        return self.update(lambda s: {"add_ons": [
            {**sel, "details": {**sel["details"], **details}} if sel["id"] == addon_id else sel
            for sel in s["add_ons"]
        ]})

    async def recommend_addons(self) -> OrderState:
        """Attach AI reasoning to recommended add-ons. Selection stays with the user."""
        errors = validate_incorporation(self.state)
        errors.pop("incorporation.package_name", None)
        raise_for(errors)

        inputs = self._addon_inputs()
        with self._action("addons"):
            result = await self._call("addons", inputs,
                                      lambda i: self.client.recommend_addons(**i),
                                      lambda i: fallback_addons())

        if self._is_stale(inputs, self._addon_inputs()):
            print("[ADDONS] Selection changed while waiting, discarding recommendation")
            return self.state

        reasoning = result["reasoning_by_addon_id"]
        print(f"[ADDONS] recommended={result['recommended_addon_ids']}")
        return self.update(lambda s: {
            "add_ons": [{**sel, "recommendation_reasoning": reasoning.get(sel["id"])} for sel in s["add_ons"]],
            "addon_intro_text": result["intro_text"],
        })

    # ────────── DETAILS ──────────

    async def prefill_details(self) -> OrderState:
        """Suggest names and contacts. Only blank fields are filled."""
        errors = validate_contact(self.state)
        errors.pop("user_phone", None)
        inc_errors = validate_incorporation(self.state)
        for key in ("incorporation.jurisdiction", "incorporation.company_type"):
            if key in inc_errors:
                errors[key] = inc_errors[key]
        raise_for(errors)

        inputs = self._prefill_inputs()
        with self._action("prefill"):
            result = await self._call("prefill", inputs,
                                      lambda i: self.client.prefill_company_details(**i),
                                      fallback_prefill)

        if self._is_stale(inputs, self._prefill_inputs()):
            print("[PREFILL] Order changed while waiting, discarding suggestions")
            return self.state

        names = result["suggested_company_names"]
        director = result["suggested_director"]
        contact = result["suggested_primary_contact"]

        def _fill(s: OrderState) -> dict:
            anchor = s["directors"][0]
            return {
                "company_names": _blank_only(s["company_names"], {
                    "first_choice": names.get("first_choice", ""),
                    "second_choice": names.get("second_choice", ""),
                    "third_choice": names.get("third_choice", ""),
                }),
                "directors": [
                    {**anchor, **_blank_only(anchor, {
                        "full_name": director.get("full_name", ""),
                        "email": director.get("email", ""),
                    })},
                    *s["directors"][1:],
                ],
                "primary_contact": _blank_only(s["primary_contact"], {
                    "full_name": contact.get("full_name", ""),
                    "email": contact.get("email", ""),
                    "phone": contact.get("phone", "") or s["user_phone"],
                }),
            }

        print(f"[PREFILL] first_choice='{names.get('first_choice', '')}' director='{director.get('full_name', '')}'")
        return self.update(_fill)

    def add_director(self) -> OrderState:
        return self.update(lambda s: {"directors": [*s["directors"], new_director()]})

    def update_director(self, index: int, **fields) -> OrderState:
        return self._update_entry("directors", index, fields, ("full_name", "email", "phone"))

    def remove_director(self, index: int) -> OrderState:
        return self._remove_entry("directors", index)

    def add_shareholder(self, shareholder_type: ShareholderType = ShareholderType.INDIVIDUAL) -> OrderState:
        try:
            entry = new_shareholder(shareholder_type)
        except ValueError:
            raise WizardValidationError({"shareholders.type": f"Unknown shareholder type '{shareholder_type}'."}) from None
        return self.update(lambda s: {"shareholders": [*s["shareholders"], entry]})

    def update_shareholder(self, index: int, **fields) -> OrderState:
        if "type" in fields and fields["type"] not in {t.value for t in ShareholderType}:
            raise_for({f"shareholders.{index}.type": f"Unknown shareholder type '{fields['type']}'."})
        return self._update_entry("shareholders", index, fields,
                                  ("type", "full_name_or_entity_name", "registration_number", "share_allocation"))

    def remove_shareholder(self, index: int) -> OrderState:
        return self._remove_entry("shareholders", index)

    # ────────── REVIEW & PAY ──────────

    def use_delivery_address_for_billing(self, flag: bool = True) -> OrderState:
        if flag:
            return self.update(lambda s: {"billing_address": {**s["delivery_address"], "use_delivery_address": True}})
        return self.update({"billing_address": {"use_delivery_address": False}})

    def use_contact_address_for_billing(self, flag: bool = True) -> OrderState:
        if flag:
            return self.update(lambda s: {"billing_address": {
                **s["primary_contact"]["address"], "use_primary_contact_address": True,
            }})
        return self.update({"billing_address": {"use_primary_contact_address": False}})

    def remove_item(self, item_id: str) -> OrderState:
        return self.update(lambda s: remove_item_update(s, item_id))

    def checkout(self, payment_method: Optional[str] = None) -> OrderState:
        """Mock payment. A zero total completes without a payment method.

        Nothing is written unless every check passes.
        """
        if self.state["order_id"]:
            raise_for({"order_id": f"Order {self.state['order_id']} has already been placed."})
        method = self.state["payment_method"] if payment_method is None else payment_method

        total = self.total
        raise_for({
            **validate_contact(self.state),
            **validate_incorporation(self.state),
            **validate_addons(self.state),
            **validate_details(self.state),
            **validate_checkout({**self.state, "payment_method": method}, total),
        })

        status = "completed_free" if total == 0 else "success"
        order_id = f"IBC-{int(time.time() * 1000)}"
        print(f"[CHECKOUT] {order_id} | total={total} | method={method} | status={status}")
        return self.update({
            "payment_method": method,
            "order_id": order_id,
            "order_status": status,
            "payment_date": datetime.now(timezone.utc).isoformat(),
        })

    # ────────── RECOMMENDATION PLUMBING ──────────

    @contextmanager
    def _action(self, name: str):
        if name in self._in_flight:
            raise ActionInProgress(f"'{name}' is already running for session {self.session_id}")
        self._in_flight.add(name)
        try:
            yield
        finally:
            self._in_flight.discard(name)

    async def _call(self, name: str, inputs: dict, fetch, fallback) -> dict:
        """Cached fetch with the per-call fallback policy and an API trace entry."""
        cached = self.cache.is_current(name, inputs) and bool(self.cache.peek(name))
        t0 = time.time()
        try:
            output = await self.cache.get_or_refresh(name, inputs, fetch)
        except RecommendationUnavailable as e:
            strict = name in self.strict
            self._trace(f"LLM: {CALL_LABELS[name]}", time.time() - t0,
                        "Failed" if strict else "Failed, using fallback",
                        {"error": e.reason, "strict": strict})
            if strict:
                raise
            print(f"[{name.upper()}] Unavailable, falling back: {e.reason}")
            return fallback(inputs)

        self._trace(f"LLM: {CALL_LABELS[name]}", time.time() - t0,
                    "Cached" if cached else "OK", {"fingerprint": fingerprint(inputs)[:60], "cached": cached})
        return output

    def _trace(self, name: str, duration: float, result_summary: str, data: dict = None):
        """Append an API call trace entry for dev tools visibility."""
        self.api_trace.append({
            "api": name,
            "time": round(duration, 2),
            "summary": result_summary,
            "data": data or {},
        })

    @staticmethod
    def _is_stale(before: dict, now: dict) -> bool:
        return fingerprint(before) != fingerprint(now)

    def _incorporation_inputs(self) -> dict:
        needs = self.state["needs_assessment"]
        return {
            "business_activities": list(needs["business_activities"]),
            "strategic_objectives": list(needs["strategic_objectives"]),
            "region": needs["region"],
            "business_description": needs["business_description"],
        }

    def _intro_inputs(self) -> dict:
        needs = self.state["needs_assessment"]
        return {
            "region": needs["region"],
            "business_activities": list(needs["business_activities"]),
            "strategic_objectives": list(needs["strategic_objectives"]),
        }

    def _summary_inputs(self) -> dict:
        return {"business_description": self.state["needs_assessment"]["business_description"].strip()}

    def _addon_inputs(self) -> dict:
        inc = self.state["incorporation"]
        return {
            "main_service_details": {
                "jurisdiction": inc["jurisdiction"],
                "state": inc["state"],
                "company_type": inc["company_type"],
                "package_name": inc["package_name"],
            },
            "user_needs": dict(self.state["needs_assessment"]),
            "available_addons": [{"id": a.id, "name": a.name, "description": a.description} for a in ADDONS],
        }

    def _prefill_inputs(self) -> dict:
        needs = self.state["needs_assessment"]
        inc = self.state["incorporation"]
        purpose = ", ".join(needs["business_activities"]) or needs["business_description"] or "General business"
        return {
            "user_email": self.state["user_email"],
            "user_phone": self.state["user_phone"],
            "business_purpose": purpose,
            "business_description": needs["business_description"],
            "selected_jurisdiction": inc["jurisdiction"],
            "selected_state": inc["state"],
            "selected_company_type": inc["company_type"],
        }

    # ────────── HELPERS ──────────

    def _update_entry(self, key: str, index: int, fields: dict, allowed: tuple) -> OrderState:
        entries = self.state[key]
        if not 0 <= index < len(entries):
            raise_for({f"{key}.{index}": "No such entry."})
        unknown = set(fields) - set(allowed)
        if unknown:
            raise_for({f"{key}.{index}": f"Unknown fields: {', '.join(sorted(unknown))}"})
        return self.update({key: [
            {**entry, **fields} if i == index else entry for i, entry in enumerate(entries)
        ]})

    def _remove_entry(self, key: str, index: int) -> OrderState:
        entries = self.state[key]
        if index == 0:
            raise_for({f"{key}.0": "The first entry is required and cannot be removed."})
        if not 0 < index < len(entries):
            raise_for({f"{key}.{index}": "No such entry."})
        return self.update({key: [e for i, e in enumerate(entries) if i != index]})


def _blank_only(current: dict, suggested: dict) -> dict:
    """Suggested values for the fields that are still empty."""
    return {k: v for k, v in suggested.items() if v and not str(current.get(k) or "").strip()}
