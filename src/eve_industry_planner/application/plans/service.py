from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any, Iterator, Optional

from eve_industry_planner.application.errors import ServiceError, bad_request, not_found
from eve_industry_planner.application.plans import acquisitions, build_progress
from eve_industry_planner.application.plans.aggregator import PlanRecalculator, RecalculationResult
from eve_industry_planner.application.plans.collaborators import (
    MarketSettings,
    OwnedRecipeLookup,
    PriceEstimator,
    RecipeExpander,
    RecipeIndex,
)
from eve_industry_planner.config.settings import market_settings, max_depth, price_workers
from eve_industry_planner.domain.plan import (
    ACTIVITY_REACTION,
    EXPANSION_MODES,
    PLAN_STATUS_COMPLETED,
    PLAN_STATUSES,
    AcquisitionLogEntry,
    MaterialLine,
    Plan,
    PlanEntry,
    ProductLine,
)
from eve_industry_planner.infrastructure.database_manager import transaction
from eve_industry_planner.infrastructure.market_pricing import PRICE_KINDS
from eve_industry_planner.infrastructure.persistence import plan_ledger_repo, plans_repo
from eve_industry_planner.infrastructure.persistence.blueprints_repo import OwnedBlueprintLookup
from eve_industry_planner.infrastructure.recipe_calculator import get_catalog
from eve_industry_planner.infrastructure.session_provider import SessionProvider, StateSessionProvider


logger = logging.getLogger(__name__)


class PlanLocks:
    """One re-entrant lock per plan id. Mutations of different plans run in parallel."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.RLock] = {}

    def for_plan(self, plan_id: int) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(int(plan_id))
            if lock is None:
                lock = threading.RLock()
                self._locks[int(plan_id)] = lock
            return lock


_DEFAULT_LOCKS = PlanLocks()


def _int_field(data: dict, name: str, *, minimum: int, maximum: Optional[int] = None) -> int:
    try:
        value = int(data[name])
    except (TypeError, ValueError):
        raise bad_request(f"{name} must be an integer", **{name: data.get(name)})
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise bad_request(f"{name} must be {bounds}", **{name: value})
    return value


def _clean_entry_fields(data: dict) -> dict:
    """Validate and normalize the entry fields present in `data`."""

    out: dict[str, Any] = {}
    for name in plans_repo.ENTRY_UPDATABLE_FIELDS:
        if name not in data:
            continue
        if name == "runs":
            out[name] = _int_field(data, name, minimum=1)
        elif name == "lines":
            out[name] = _int_field(data, name, minimum=1)
        elif name == "me_level":
            out[name] = _int_field(data, name, minimum=0, maximum=10)
        elif name == "te_level":
            out[name] = _int_field(data, name, minimum=0, maximum=20)
        elif name == "expansion_mode":
            if data[name] not in EXPANSION_MODES:
                raise bad_request(f"expansion_mode must be one of {sorted(EXPANSION_MODES)}", expansion_mode=data[name])
            out[name] = data[name]
        elif name == "facility_snapshot":
            if data[name] is not None and not isinstance(data[name], dict):
                raise bad_request("facility_snapshot must be an object")
            out[name] = data[name]
        else:
            out[name] = data[name]
    return out


def _optional_id(data: dict, name: str) -> Optional[int]:
    if data[name] in (None, ""):
        return None
    try:
        value = int(data[name])
    except (TypeError, ValueError):
        raise bad_request(f"{name} must be an integer or null", **{name: data[name]})
    if value <= 0:
        raise bad_request(f"{name} must be positive", **{name: value})
    return value


def _clean_settings_fields(data: dict) -> dict:
    """Validate the plan settings present in `data`. `None` clears an override."""

    out: dict[str, Any] = {}
    for name in plans_repo.PLAN_SETTINGS_FIELDS:
        if name not in data:
            continue
        if name == "reactions_as_intermediates":
            if not isinstance(data[name], bool):
                raise bad_request(f"{name} must be a boolean", **{name: data[name]})
            out[name] = data[name]
        elif name.endswith("_price_kind"):
            if data[name] is None:
                out[name] = None
                continue
            kind = str(data[name]).lower()
            if kind not in PRICE_KINDS:
                raise bad_request(f"{name} must be one of {sorted(PRICE_KINDS)}", **{name: data[name]})
            out[name] = kind
        else:
            out[name] = _optional_id(data, name)
    return out


class PlansService:
    def __init__(
        self,
        *,
        state: Any,
        sessions: SessionProvider | None = None,
        recipes: RecipeExpander | None = None,
        recipe_index: RecipeIndex | None = None,
        owned_recipes: OwnedRecipeLookup | None = None,
        pricing: PriceEstimator | None = None,
        market: MarketSettings | None = None,
    ):
        self._state = state
        self._sessions = sessions or StateSessionProvider(state=state)
        self._recipes = recipes
        self._recipe_index = recipe_index
        self._owned_recipes = owned_recipes
        self._pricing = pricing
        self._market = market

    # --------------------------
    # Wiring
    # --------------------------
    def _locks(self) -> PlanLocks:
        return getattr(self._state, "plan_locks", None) or _DEFAULT_LOCKS

    def _catalog(self) -> tuple[RecipeExpander, RecipeIndex]:
        if self._recipes is not None and self._recipe_index is not None:
            return self._recipes, self._recipe_index
        catalog = get_catalog(self._state, self._sessions.sde_session())
        return self._recipes or catalog, self._recipe_index or catalog

    def _recalculator(self, session: Any) -> PlanRecalculator:
        recipes, recipe_index = self._catalog()
        pricing = self._pricing if self._pricing is not None else getattr(self._state, "pricing", None)
        return PlanRecalculator(
            recipes=recipes,
            recipe_index=recipe_index,
            owned_recipes=self._owned_recipes or OwnedBlueprintLookup(session),
            pricing=pricing,
            market=self._market or market_settings(),
            max_depth=max_depth(),
            price_workers=price_workers(),
        )

    def _plan_or_404(self, session: Any, plan_id: int) -> Plan:
        plan = plans_repo.get_plan(session, plan_id)
        if plan is None:
            raise not_found("Manufacturing plan", plan_id)
        return plan

    def _entry_or_404(self, session: Any, entry_id: int) -> PlanEntry:
        entry = plans_repo.get_entry(session, entry_id)
        if entry is None:
            raise not_found("Plan entry", entry_id)
        return entry

    def _recalculate(self, session: Any, plan_id: int, *, refresh_prices: bool) -> RecalculationResult:
        return self._recalculator(session).recalculate(session, plan_id, refresh_prices=refresh_prices)

    # --------------------------
    # Plans
    # --------------------------
    def create_plan(self, *, data: dict) -> Plan:
        if not data.get("character_id"):
            raise ServiceError("Character ID is required to create a manufacturing plan.", status_code=400)
        if data.get("status") is not None and data["status"] not in PLAN_STATUSES:
            raise bad_request(f"status must be one of {sorted(PLAN_STATUSES)}", status=data["status"])

        session: Any = self._sessions.app_session()
        with transaction(session):
            plan_id = plans_repo.create_plan(session, data)
        logger.info("Created manufacturing plan %s for character %s", plan_id, data.get("character_id"))
        return self._plan_or_404(session, plan_id)

    def get_plan(self, *, plan_id: int) -> Plan:
        session: Any = self._sessions.app_session()
        return self._plan_or_404(session, plan_id)

    def list_plans(self, *, character_id: int, status: str | None = None) -> list[Plan]:
        if status is not None and status not in PLAN_STATUSES:
            raise bad_request(f"status must be one of {sorted(PLAN_STATUSES)}", status=status)
        session: Any = self._sessions.app_session()
        return plans_repo.list_by_character_id(session, character_id, status=status)

    def update_plan(self, *, plan_id: int, data: dict) -> Plan:
        updates = {k: data[k] for k in ("plan_name", "description", "status") if k in data}
        if "status" in updates:
            if updates["status"] not in PLAN_STATUSES:
                raise bad_request(f"status must be one of {sorted(PLAN_STATUSES)}", status=updates["status"])
            updates["completed_at"] = datetime.now() if updates["status"] == PLAN_STATUS_COMPLETED else None

        session: Any = self._sessions.app_session()
        with self._locks().for_plan(plan_id):
            self._plan_or_404(session, plan_id)
            with transaction(session):
                plans_repo.update_plan(session, plan_id, updates)
        return self._plan_or_404(session, plan_id)

    def delete_plan(self, *, plan_id: int) -> None:
        session: Any = self._sessions.app_session()
        with self._locks().for_plan(plan_id):
            self._plan_or_404(session, plan_id)
            with transaction(session):
                plans_repo.delete_plan(session, plan_id)
        logger.info("Deleted manufacturing plan %s", plan_id)

    # --------------------------
    # Read accessors
    # --------------------------
    def list_entries(self, *, plan_id: int) -> list[PlanEntry]:
        session: Any = self._sessions.app_session()
        self._plan_or_404(session, plan_id)
        return plans_repo.list_entries(session, plan_id)

    def list_intermediates(self, *, plan_id: int) -> list[PlanEntry]:
        session: Any = self._sessions.app_session()
        self._plan_or_404(session, plan_id)
        return plans_repo.list_entries(session, plan_id, is_intermediate=True)

    def list_materials(self, *, plan_id: int) -> list[MaterialLine]:
        session: Any = self._sessions.app_session()
        self._plan_or_404(session, plan_id)
        return plan_ledger_repo.list_materials(session, plan_id)

    def list_products(self, *, plan_id: int, is_intermediate: bool | None = None) -> list[ProductLine]:
        session: Any = self._sessions.app_session()
        self._plan_or_404(session, plan_id)
        return plan_ledger_repo.list_products(session, plan_id, is_intermediate=is_intermediate)

    def plan_summary(self, *, plan_id: int) -> dict[str, Any]:
        session: Any = self._sessions.app_session()
        plan = self._plan_or_404(session, plan_id)
        materials = plan_ledger_repo.list_materials(session, plan_id)
        products = plan_ledger_repo.list_products(session, plan_id)

        material_cost = 0.0
        missing_prices = 0
        for m in materials:
            base = m.base_price
            if base is None and m.custom_price is None:
                missing_prices += 1
            manual = min(int(m.manually_acquired_quantity), int(m.quantity))
            manual_price = m.custom_price if m.custom_price is not None else (base or 0.0)
            material_cost += manual * float(manual_price)
            material_cost += (int(m.quantity) - manual) * float(base or 0.0)

        finals = [p for p in products if not p.is_intermediate]
        product_value = sum(int(p.quantity) * float(p.base_price or 0.0) for p in finals)
        profit = product_value - material_cost
        roi = (profit / material_cost * 100.0) if material_cost > 0 else None

        entries = plans_repo.list_entries(session, plan_id)
        return {
            "plan": plan.to_dict(),
            "entry_count": sum(1 for e in entries if not e.is_intermediate),
            "intermediate_count": sum(1 for e in entries if e.is_intermediate),
            "material_count": len(materials),
            "acquired_material_count": sum(1 for m in materials if m.remaining_quantity == 0),
            "final_product_count": len(finals),
            "intermediate_product_count": len(products) - len(finals),
            "material_cost": round(material_cost, 2),
            "product_value": round(product_value, 2),
            "profit": round(profit, 2),
            "roi_percent": round(roi, 2) if roi is not None else None,
            "missing_prices": missing_prices,
        }

    # --------------------------
    # Entry mutations
    # --------------------------
    @contextmanager
    def _atomic(self, session: Any, plan_id: int) -> Iterator[None]:
        """One transaction for a write and the recalculation it triggers."""

        try:
            with transaction(session):
                yield
        except ServiceError:
            raise
        except Exception as e:
            logger.exception("Plan %s: update failed and was rolled back", plan_id)
            raise ServiceError(f"Failed to update plan {plan_id}: {e}", status_code=500, data={"plan_id": plan_id})

    def add_entry(self, *, plan_id: int, data: dict) -> dict[str, Any]:
        if data.get("blueprint_type_id") in (None, ""):
            raise bad_request("blueprint_type_id is required")
        if data.get("runs") is None:
            raise bad_request("runs is required")
        fields = _clean_entry_fields({"lines": 1, **data})
        try:
            blueprint_type_id = int(data["blueprint_type_id"])
        except (TypeError, ValueError):
            raise bad_request("blueprint_type_id must be an integer", blueprint_type_id=data.get("blueprint_type_id"))

        session: Any = self._sessions.app_session()
        with self._locks().for_plan(plan_id):
            plan = self._plan_or_404(session, plan_id)
            recipes, recipe_index = self._catalog()
            try:
                recipes.expand_recipe(blueprint_type_id, 1, 0, plan.character_id, None)
            except KeyError:
                raise bad_request(f"Blueprint {blueprint_type_id} has no manufacturing or reaction recipe", blueprint_type_id=blueprint_type_id)
            fields["activity"] = recipe_index.activity_of(blueprint_type_id)

            recalculator = self._recalculator(session)
            with self._atomic(session, plan_id):
                entry_id = plans_repo.add_entry(session, plan_id, {**fields, "blueprint_type_id": blueprint_type_id})
                result = recalculator.run(session, plan_id, refresh_prices=True)
            logger.info("Plan %s: added blueprint %s as entry %s", plan_id, blueprint_type_id, entry_id)
        return {"entry": self._entry_or_404(session, entry_id), "recalculation": result}

    def update_entry(self, *, entry_id: int, data: dict) -> dict[str, Any]:
        session: Any = self._sessions.app_session()
        entry = self._entry_or_404(session, entry_id)
        fields = _clean_entry_fields(data)
        if entry.is_intermediate and ({"runs", "lines"} & set(fields)):
            raise bad_request("Runs and lines of intermediate entries are derived from demand", entry_id=entry_id)
        if not fields:
            raise bad_request("No updatable fields provided", allowed=list(plans_repo.ENTRY_UPDATABLE_FIELDS))

        with self._locks().for_plan(entry.plan_id):
            recalculator = self._recalculator(session)
            with self._atomic(session, entry.plan_id):
                plans_repo.update_entry(session, entry_id, fields)
                result = recalculator.run(session, entry.plan_id, refresh_prices=False)
        return {"entry": plans_repo.get_entry(session, entry_id), "recalculation": result}

    def bulk_update_entries(self, *, plan_id: int, updates: list[dict]) -> RecalculationResult | None:
        """Apply every update or none of them, together with one recalculation."""

        if not updates:
            return None
        session: Any = self._sessions.app_session()
        with self._locks().for_plan(plan_id):
            self._plan_or_404(session, plan_id)

            validated: list[tuple[int, dict]] = []
            for item in updates:
                entry_id = item.get("entry_id")
                entry = plans_repo.get_entry(session, entry_id) if entry_id is not None else None
                if entry is None or entry.plan_id != int(plan_id):
                    raise bad_request(f"Entry {entry_id} not found in plan {plan_id}", entry_id=entry_id)
                fields = _clean_entry_fields(item.get("updates") or {})
                if entry.is_intermediate and ({"runs", "lines"} & set(fields)):
                    raise bad_request("Runs and lines of intermediate entries are derived from demand", entry_id=entry_id)
                validated.append((entry.id, fields))

            recalculator = self._recalculator(session)
            with self._atomic(session, plan_id):
                for entry_id, fields in validated:
                    if fields:
                        plans_repo.update_entry(session, entry_id, fields)
                result = recalculator.run(session, plan_id, refresh_prices=False)
            logger.info("Plan %s: bulk updated %s entries", plan_id, len(validated))
            return result

    def remove_entry(self, *, entry_id: int) -> RecalculationResult:
        session: Any = self._sessions.app_session()
        entry = self._entry_or_404(session, entry_id)
        with self._locks().for_plan(entry.plan_id):
            recalculator = self._recalculator(session)
            with self._atomic(session, entry.plan_id):
                tree = plans_repo.load_tree(session, entry.plan_id)
                slot = tree.slot_for_entry(entry_id)
                removed = tree.remove_subtree(slot) if slot is not None else []
                plans_repo.save_tree(session, tree)
                result = recalculator.run(session, entry.plan_id, refresh_prices=False)
            logger.info("Plan %s: removed entry %s and %s descendant(s)", entry.plan_id, entry_id, max(0, len(removed) - 1))
            return result

    def mark_built(self, *, entry_id: int, built_runs: Any) -> RecalculationResult:
        session: Any = self._sessions.app_session()
        entry = self._entry_or_404(session, entry_id)
        value = build_progress.validate_built_runs(entry, built_runs)

        with self._locks().for_plan(entry.plan_id):
            recalculator = self._recalculator(session)
            with self._atomic(session, entry.plan_id):
                plans_repo.set_built_runs(session, entry_id, value)
                result = recalculator.run(session, entry.plan_id, refresh_prices=False)
            logger.info("Plan %s: entry %s built runs set to %s", entry.plan_id, entry_id, value)
            return result

    def mark_reaction_built(self, *, entry_id: int, built_runs: Any) -> RecalculationResult:
        session: Any = self._sessions.app_session()
        entry = self._entry_or_404(session, entry_id)
        if entry.activity != ACTIVITY_REACTION:
            raise bad_request("Entry is not a reaction", entry_id=entry_id)
        return self.mark_built(entry_id=entry_id, built_runs=built_runs)

    def recalculate(self, *, plan_id: int, refresh_prices: bool = False) -> RecalculationResult:
        session: Any = self._sessions.app_session()
        with self._locks().for_plan(plan_id):
            return self._recalculate(session, plan_id, refresh_prices=refresh_prices)

    # --------------------------
    # Plan settings
    # --------------------------
    def get_plan_settings(self, *, plan_id: int) -> dict[str, Any]:
        session: Any = self._sessions.app_session()
        self._plan_or_404(session, plan_id)
        settings = plans_repo.get_plan_settings(session, plan_id)
        market = self._market or market_settings()
        return {"settings": settings, "effective_market": asdict(market.overridden_by(settings))}

    def update_plan_settings(self, *, plan_id: int, data: dict) -> dict[str, Any]:
        """Store the plan's overrides and recalculate; prices are refetched when a market field changed."""

        fields = _clean_settings_fields(data)
        if not fields:
            raise bad_request("No plan settings provided", allowed=list(plans_repo.PLAN_SETTINGS_FIELDS))

        session: Any = self._sessions.app_session()
        with self._locks().for_plan(plan_id):
            self._plan_or_404(session, plan_id)
            refresh_prices = any(name != "reactions_as_intermediates" for name in fields)
            recalculator = self._recalculator(session)
            with self._atomic(session, plan_id):
                plans_repo.upsert_plan_settings(session, plan_id, fields)
                result = recalculator.run(session, plan_id, refresh_prices=refresh_prices)
            logger.info("Plan %s: settings updated (%s)", plan_id, ", ".join(sorted(fields)))
        out = self.get_plan_settings(plan_id=plan_id)
        out["recalculation"] = result
        return out

    # --------------------------
    # Reactions
    # --------------------------
    def list_reactions(self, *, plan_id: int) -> list[PlanEntry]:
        session: Any = self._sessions.app_session()
        self._plan_or_404(session, plan_id)
        return plans_repo.list_entries(session, plan_id, is_intermediate=True, activity=ACTIVITY_REACTION)

    # --------------------------
    # Acquisitions
    # --------------------------
    def mark_material_acquired(self, *, plan_id: int, type_id: int, data: dict) -> dict[str, Any]:
        session: Any = self._sessions.app_session()
        with self._locks().for_plan(plan_id):
            self._plan_or_404(session, plan_id)
            with transaction(session):
                return acquisitions.mark_material_acquired(
                    session,
                    plan_id,
                    type_id,
                    quantity=data.get("quantity"),
                    method=data.get("acquisition_method") or "purchased",
                    custom_price=data.get("custom_price"),
                    note=data.get("note"),
                    mode=data.get("mode") or acquisitions.MODE_SET,
                )

    def unmark_material_acquired(self, *, plan_id: int, type_id: int) -> None:
        session: Any = self._sessions.app_session()
        with self._locks().for_plan(plan_id):
            self._plan_or_404(session, plan_id)
            with transaction(session):
                acquisitions.unmark_material_acquired(session, plan_id, type_id)

    def update_material_custom_price(self, *, plan_id: int, type_id: int, custom_price: Any) -> None:
        session: Any = self._sessions.app_session()
        with self._locks().for_plan(plan_id):
            self._plan_or_404(session, plan_id)
            with transaction(session):
                acquisitions.update_material_custom_price(session, plan_id, type_id, custom_price)

    def cleanup_excess_acquisitions(self, *, plan_id: int, type_id: int | None = None) -> int:
        session: Any = self._sessions.app_session()
        with self._locks().for_plan(plan_id):
            self._plan_or_404(session, plan_id)
            with transaction(session):
                return acquisitions.cleanup_excess_acquisitions(session, plan_id, type_id)

    def get_acquisition_log(self, *, plan_id: int, type_id: int | None = None, limit: int = 100) -> list[AcquisitionLogEntry]:
        session: Any = self._sessions.app_session()
        self._plan_or_404(session, plan_id)
        return acquisitions.get_acquisition_log(session, plan_id, type_id=type_id, limit=max(1, min(int(limit), 1000)))
