# treatment_planner/services/scenarios.py
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional, Tuple

from ..schemas import (
    BudgetApproach as B,
    CostEstimate,
    PatientPreferences,
    PrimaryExpectation as E,
    TreatmentPlan,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CostFormula:
    """Total-planning cost: crowns×crown + implants×implant (+ graft when augmentation is needed)."""

    crown: float
    implant: float
    graft: float = 0.0

    def label(self) -> str:
        s = f"Crown×{self.crown:g} + Implant×{self.implant:g}"
        if self.graft:
            s += f" + Graft {self.graft:g} if needed"
        return s


@dataclass(frozen=True)
class Scenario:
    number: int
    expectation: E
    budget: B
    implant_systems: Tuple[str, ...]
    anterior_bridges_allowed: bool
    veneers_allowed: bool
    restore_smile_line: bool
    implant_trigger_exempt: bool
    summary: str
    cost_formula: Optional[CostFormula] = None


_PREMIUM_SYSTEMS = ("Nobel", "Straumann")
_ECONOMIC_SYSTEMS = ("Osstem", "Medentika")

# Coefficients of the published formulas are in hundreds of euros.
_FORMULA_3 = CostFormula(crown=400, implant=500, graft=300)
_FORMULA_4 = CostFormula(crown=300, implant=500)

_SCENARIO_TABLE = (
    Scenario(
        1, E.COMPLETE_MISSING_TEETH, B.PREMIUM, _PREMIUM_SYSTEMS,
        anterior_bridges_allowed=True, veneers_allowed=False, restore_smile_line=False,
        implant_trigger_exempt=True,
        summary="Implant for all missing teeth. Graft included if required.",
    ),
    Scenario(
        2, E.COMPLETE_MISSING_TEETH, B.BALANCED, _ECONOMIC_SYSTEMS,
        anterior_bridges_allowed=False, veneers_allowed=False, restore_smile_line=False,
        implant_trigger_exempt=True,
        summary="Implant for all missing teeth. No anterior bridges.",
    ),
    Scenario(
        3, E.COMPLETE_MISSING_TEETH, B.ECONOMY, _ECONOMIC_SYSTEMS,
        anterior_bridges_allowed=True, veneers_allowed=False, restore_smile_line=False,
        implant_trigger_exempt=False,
        summary="Cost formula: (Crown×4) + (Implant×5) + (Graft +3 if needed).",
        cost_formula=_FORMULA_3,
    ),
    Scenario(
        4, E.COMPLETE_MISSING_TEETH, B.BASIC, ("Osstem",),
        anterior_bridges_allowed=True, veneers_allowed=False, restore_smile_line=False,
        implant_trigger_exempt=False,
        summary="Cost formula: (Crown×3) + (Implant×5). Minimum implants, maximum bridges.",
        cost_formula=_FORMULA_4,
    ),
    Scenario(
        5, E.SMILE_MAKEOVER, B.PREMIUM, _PREMIUM_SYSTEMS,
        anterior_bridges_allowed=True, veneers_allowed=True, restore_smile_line=True,
        implant_trigger_exempt=False,
        summary="All smile-line teeth restored with crown/veneer. Missing teeth → implant + crown.",
    ),
    Scenario(
        6, E.SMILE_MAKEOVER, B.BALANCED, _ECONOMIC_SYSTEMS,
        anterior_bridges_allowed=True, veneers_allowed=False, restore_smile_line=True,
        implant_trigger_exempt=False,
        summary="Smile-line teeth with crowns (no veneers). More economic implant options.",
    ),
    Scenario(
        7, E.SMILE_MAKEOVER, B.ECONOMY, _ECONOMIC_SYSTEMS,
        anterior_bridges_allowed=True, veneers_allowed=False, restore_smile_line=True,
        implant_trigger_exempt=False,
        summary="Posterior missing → priority implants. Anterior → bridge if possible.",
    ),
    Scenario(
        8, E.SMILE_MAKEOVER, B.BASIC, ("Osstem",),
        anterior_bridges_allowed=True, veneers_allowed=False, restore_smile_line=True,
        implant_trigger_exempt=False,
        summary="Basic formula applied (as scenario 4). Smile line restored with crowns.",
        cost_formula=_FORMULA_4,
    ),
)

SCENARIOS: Dict[Tuple[E, B], Scenario] = {(s.expectation, s.budget): s for s in _SCENARIO_TABLE}

# Itemized unit prices (EUR)
UNIT_PRICES: Dict[str, float] = {
    "Nobel": 1100.0,
    "Straumann": 1050.0,
    "Osstem": 550.0,
    "Medentika": 650.0,
    "crown": 350.0,
    "veneer": 400.0,
    "filling": 80.0,
    "root-canal": 250.0,
    "graft": 400.0,
}

IMPLANT_SYSTEMS = _PREMIUM_SYSTEMS + _ECONOMIC_SYSTEMS

PAYMENT_OPTIONS = ["Full payment", "Installments", "Insurance coverage"]


def implant_price(implant_type: str, scenario: Scenario) -> float:
    """Unit price of the system named in a site's implant type; the scenario's first system otherwise."""
    label = (implant_type or "").lower()
    for system in IMPLANT_SYSTEMS:
        if system.lower() in label:
            return UNIT_PRICES[system]
    return UNIT_PRICES[scenario.implant_systems[0]]


def select_scenario(prefs: PatientPreferences) -> Scenario:
    return SCENARIOS[(prefs.primary_expectation, prefs.budget_approach)]


def resolve_formula(scenario: Scenario, overrides: Mapping[int, Mapping[str, float]]) -> Optional[CostFormula]:
    """Configured overrides win; otherwise the scenario's published formula (may be None)."""
    cfg = overrides.get(scenario.number) if overrides else None
    if cfg:
        base = scenario.cost_formula or CostFormula(crown=0, implant=0)
        return replace(base, **{k: float(v) for k, v in cfg.items() if k in ("crown", "implant", "graft")})
    return scenario.cost_formula


def estimate_cost(
    plan: TreatmentPlan,
    scenario: Scenario,
    *,
    total_planning: bool,
    graft_required: bool,
    currency: str = "EUR",
    overrides: Optional[Mapping[int, Mapping[str, float]]] = None,
) -> CostEstimate:
    q = plan.quick_overview
    payment = plan.cost_estimate.payment_options or list(PAYMENT_OPTIONS)

    formula = resolve_formula(scenario, overrides or {}) if total_planning else None
    if total_planning and formula is None:
        logger.info("Scenario %s has no total-planning formula configured; using itemized pricing", scenario.number)

    if formula is not None:
        breakdown = {
            "implants": q.total_implants * formula.implant,
            "crowns": q.total_crowns * formula.crown,
        }
        if graft_required and formula.graft:
            breakdown["additionalProcedures"] = formula.graft
        return CostEstimate(
            total_cost=round(sum(breakdown.values()), 2),
            currency=currency,
            breakdown=breakdown,
            payment_options=payment,
            formula=formula.label(),
        )

    breakdown = {
        "implants": sum(implant_price(s.implant_type, scenario) for s in plan.regional_planning.implant_sites),
        "crowns": q.total_crowns * UNIT_PRICES["crown"],
        "veneers": q.total_veneers * UNIT_PRICES["veneer"],
        "fillings": q.total_fillings * UNIT_PRICES["filling"],
        "rootCanals": q.total_root_canals * UNIT_PRICES["root-canal"],
    }
    if graft_required:
        breakdown["additionalProcedures"] = UNIT_PRICES["graft"]
    return CostEstimate(
        total_cost=round(sum(breakdown.values()), 2),
        currency=currency,
        breakdown=breakdown,
        payment_options=payment,
    )
