# treatment_planner/services/plan_validator.py
"""
Post-hoc sanity layer over a parsed TreatmentPlan.

Hard biomechanical rules (bridge composition, bridge length, free-end pontics)
are only checked: a violation raises PlanValidationError. Bookkeeping issues
(summary counts, veneers where the rules require crowns, missing crown
entries for implant/pontic units) are repaired in place. Running the
validator on an already-valid plan changes nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from ..errors import PlanValidationError
from ..schemas import CrownTooth, TreatmentPlan
from .dentition import SMILE_LINE, arch_sorted, is_contiguous, is_valid_fdi, tooth_name
from .rules_engine import MAX_PONTICS_PER_BRIDGE, MAX_SEGMENT

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    repairs: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.repairs)


def biomechanical_violations(plan: TreatmentPlan, *, total_planning: bool) -> List[str]:
    rp = plan.regional_planning
    implants = set(rp.implant_positions())
    violations: List[str] = []

    for site in rp.implant_sites:
        if not is_valid_fdi(site.fdi_number):
            violations.append(f"implant site {site.fdi_number!r} is not a valid FDI position")

    for bridge in rp.bridge_members:
        name = "-".join(bridge.fdi_numbers) or "<empty>"
        pontics = bridge.pontic_numbers

        if not all(is_valid_fdi(t) for t in bridge.fdi_numbers) or not is_contiguous(bridge.fdi_numbers):
            violations.append(f"bridge {name} is not a contiguous span of one arch")
            continue
        # ends are judged along the arch, not by listing order
        span = arch_sorted(bridge.fdi_numbers)
        if not set(pontics) <= set(span):
            violations.append(f"bridge {name} lists pontics outside its span")
            continue
        if len(pontics) > MAX_PONTICS_PER_BRIDGE or len(span) > MAX_SEGMENT:
            violations.append(f"bridge {name} exceeds {MAX_SEGMENT} units / {MAX_PONTICS_PER_BRIDGE} pontics")

        overlap = implants & set(pontics)
        if overlap:
            violations.append(f"bridge {name} uses implant site(s) {sorted(overlap)} as pontics")

        abutments = bridge.abutments
        if not abutments:
            violations.append(f"bridge {name} has no abutments")
            continue
        on_implant = [t for t in abutments if t in implants]
        if on_implant and len(on_implant) != len(abutments):
            violations.append(f"bridge {name} mixes implant and natural-tooth abutments")

        if pontics and (span[0] in pontics or span[-1] in pontics) and not total_planning:
            violations.append(f"bridge {name} has a free-end pontic outside total planning")

    return violations


def _repair_veneers(plan: TreatmentPlan, missing: FrozenSet[str], veneers_allowed: bool, report: ValidationReport):
    rp = plan.regional_planning
    smile_gap = bool(SMILE_LINE & missing)
    keep, demoted = [], []
    for v in rp.veneer_teeth:
        if v.fdi_number in missing or not veneers_allowed or (smile_gap and v.fdi_number in SMILE_LINE):
            demoted.append(v)
        else:
            keep.append(v)
    if not demoted:
        return
    crowned = {c.fdi_number for c in rp.crown_teeth}
    for v in demoted:
        if v.fdi_number not in crowned:
            support = "natural" if v.fdi_number not in missing else "implant"
            rp.crown_teeth.append(CrownTooth(
                fdi_number=v.fdi_number, tooth_name=v.tooth_name, support=support,
                justification="Crown instead of veneer (smile-line rule)",
            ))
            crowned.add(v.fdi_number)
    rp.veneer_teeth = keep
    report.repairs.append(f"veneers on {[v.fdi_number for v in demoted]} replaced by crowns")


def _repair_crown_units(plan: TreatmentPlan, report: ValidationReport):
    rp = plan.regional_planning
    crowned = {c.fdi_number for c in rp.crown_teeth}
    added = []
    for site in rp.implant_sites:
        if site.fdi_number not in crowned and is_valid_fdi(site.fdi_number):
            rp.crown_teeth.append(CrownTooth(fdi_number=site.fdi_number, tooth_name=tooth_name(site.fdi_number),
                                             support="implant", justification="Implant-supported crown"))
            crowned.add(site.fdi_number)
            added.append(site.fdi_number)
    for p in rp.pontic_positions():
        if p not in crowned and is_valid_fdi(p):
            rp.crown_teeth.append(CrownTooth(fdi_number=p, tooth_name=tooth_name(p),
                                             support="pontic", justification="Pontic unit"))
            crowned.add(p)
            added.append(p)
    if added:
        report.repairs.append(f"crown units added for {added}")


def _reconcile_counts(plan: TreatmentPlan, total_planning: bool, report: ValidationReport):
    rp = plan.regional_planning
    extra = plan.additional_treatments
    q = plan.quick_overview
    expected = {
        "total_implants": len(set(rp.implant_positions())),
        "total_veneers": len({v.fdi_number for v in rp.veneer_teeth}),
        "total_crowns": len({c.fdi_number for c in rp.crown_teeth}) + int(extra.get("crown", 0)),
        "total_fillings": int(extra.get("filling", q.total_fillings)),
        "total_root_canals": int(extra.get("root-canal", q.total_root_canals)),
        "total_planning": total_planning,
    }
    for attr, value in expected.items():
        current = getattr(q, attr)
        if current != value:
            setattr(q, attr, value)
            report.repairs.append(f"quickOverview.{attr} {current} -> {value}")


def validate_plan(
    plan: TreatmentPlan,
    *,
    total_planning: Optional[bool] = None,
    missing_teeth: FrozenSet[str] = frozenset(),
    veneers_allowed: bool = True,
) -> ValidationReport:
    """
    Check hard rules and repair counts in place.

    Raises PlanValidationError for illegal bridge composition or a free-end
    pontic outside total planning. The itemized regionalPlanning lists are
    authoritative over quickOverview.
    """
    if total_planning is None:
        total_planning = plan.quick_overview.total_planning

    violations = biomechanical_violations(plan, total_planning=total_planning)
    if violations:
        logger.warning("Plan rejected: %s", "; ".join(violations))
        raise PlanValidationError(violations)

    report = ValidationReport()
    _repair_veneers(plan, frozenset(missing_teeth), veneers_allowed, report)
    _repair_crown_units(plan, report)
    _reconcile_counts(plan, total_planning, report)
    for r in report.repairs:
        logger.warning("Plan repaired: %s", r)
    return report
