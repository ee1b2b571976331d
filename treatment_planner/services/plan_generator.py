# treatment_planner/services/plan_generator.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..deps import Settings, get_settings
from ..errors import PlanGenerationError, PlanValidationError, TextGenerationError
from ..schemas import (
    ANCILLARY_KINDS,
    BridgeMember,
    CrownTooth,
    DentalFinding,
    ImplantSite,
    PatientPreferences,
    TreatmentPlan,
    VeneerTooth,
)
from .dentition import arch_sorted, tooth_name
from .plan_parser import parse_plan
from .plan_validator import biomechanical_violations, validate_plan
from .prompt_builder import build_plan_prompt
from .rules_engine import RuleLayout, Segment, allowed_patterns, plan_layout
from .scenarios import Scenario, estimate_cost
from .text_generation import TextGenerator

logger = logging.getLogger(__name__)


@dataclass
class GeneratedPlan:
    plan: TreatmentPlan
    scenario: Scenario
    layout: RuleLayout
    repairs: List[str] = field(default_factory=list)


def _default_duration(implants: int, total_planning: bool) -> str:
    if total_planning:
        return "6-9 months"
    if implants:
        return "4-7 months"
    return "2-6 weeks"


def _conform_segments(plan: TreatmentPlan, layout: RuleLayout, repairs: List[str]) -> List[Segment]:
    """Keep the draft's pattern per segment when the decision table allows it, else the rule default."""
    rp = plan.regional_planning
    implants = set(rp.implant_positions())
    pontics = set(rp.pontic_positions())
    out = []
    for seg in layout.segments:
        drafted = "".join("I" if t in implants else "P" if t in pontics else "-" for t in seg.teeth)
        if drafted in allowed_patterns(seg.teeth, layout.scenario):
            out.append(Segment(teeth=seg.teeth, pattern=drafted))
            continue
        repairs.append(f"teeth {'-'.join(seg.teeth)}: draft pattern {drafted} replaced by {seg.pattern}")
        out.append(seg)

    covered = {t for seg in layout.segments for t in seg.teeth}
    stray = sorted((implants | pontics) - covered)
    if stray:
        repairs.append(f"implant/pontic positions {stray} are not missing teeth; dropped")
    return out


def _rebuild_regional_planning(plan: TreatmentPlan, layout: RuleLayout, segments: List[Segment]) -> None:
    rp = plan.regional_planning
    systems = layout.scenario.implant_systems
    drafted_sites = {s.fdi_number: s for s in rp.implant_sites}
    bridge_notes = {tuple(arch_sorted(b.fdi_numbers)): b.justification for b in rp.bridge_members}
    veneer_notes = {v.fdi_number: v.justification for v in rp.veneer_teeth}
    crown_notes = {c.fdi_number: c.justification for c in rp.crown_teeth}

    sites = []
    for seg in segments:
        for t in seg.implants:
            prev = drafted_sites.get(t)
            implant_type = systems[0]
            if prev and any(s.lower() in prev.implant_type.lower() for s in systems):
                implant_type = prev.implant_type
            sites.append(ImplantSite(
                fdi_number=t,
                tooth_name=tooth_name(t),
                implant_type=implant_type,
                justification=(prev.justification if prev else "") or "Missing tooth replacement",
            ))

    bridges = [
        BridgeMember(
            fdi_numbers=span,
            pontic_numbers=pontics,
            justification=bridge_notes.get(tuple(span)) or "Implant-supported bridge",
        )
        for seg in segments
        for span, pontics in seg.bridges()
    ]

    veneers = [
        VeneerTooth(fdi_number=t, tooth_name=tooth_name(t),
                    justification=veneer_notes.get(t) or "Smile line restoration")
        for t in layout.veneer_teeth
    ]

    crowns = [CrownTooth(fdi_number=s.fdi_number, tooth_name=s.tooth_name, support="implant",
                         justification=crown_notes.get(s.fdi_number) or "Implant-supported crown")
              for s in sites]
    crowns += [CrownTooth(fdi_number=p, tooth_name=tooth_name(p), support="pontic",
                          justification=crown_notes.get(p) or "Pontic unit")
               for b in bridges for p in b.pontic_numbers]
    crowns += [CrownTooth(fdi_number=t, tooth_name=tooth_name(t), support="natural",
                          justification=crown_notes.get(t) or "Smile line restoration")
               for t in layout.natural_crown_teeth]

    rp.implant_sites = sites
    rp.bridge_members = bridges
    rp.veneer_teeth = veneers
    rp.crown_teeth = crowns


class PlanGenerator:
    """
    Rules first, narrative second:
      1) compute the deterministic RuleLayout
      2) ask the text generator for a plan draft that follows it
      3) reject drafts that break hard rules, conform the rest to the layout
      4) validate/repair counts and price the result
    """

    def __init__(self, text_generator: TextGenerator, settings: Optional[Settings] = None):
        self.text_generator = text_generator
        self.settings = settings or get_settings()

    def draft(self, finding: DentalFinding, prefs: PatientPreferences, layout: RuleLayout) -> TreatmentPlan:
        prompt = build_plan_prompt(finding, prefs, layout)
        try:
            text = self.text_generator.complete(prompt)
        except TextGenerationError as e:
            raise PlanGenerationError(str(e)) from e
        return parse_plan(text, expect_regional=bool(finding.missing_teeth))

    def generate(self, finding: DentalFinding, prefs: PatientPreferences) -> GeneratedPlan:
        layout = plan_layout(finding, prefs)
        plan = self.draft(finding, prefs, layout)

        violations = biomechanical_violations(plan, total_planning=layout.total_planning)
        if violations:
            logger.warning("Draft plan rejected: %s", "; ".join(violations))
            raise PlanValidationError(violations)

        repairs: List[str] = []
        segments = _conform_segments(plan, layout, repairs)
        _rebuild_regional_planning(plan, layout, segments)
        for r in repairs:
            logger.warning("Draft conformed to rule layout: %s", r)

        additional: Dict[str, int] = {k.value: finding.ancillary(k) for k in ANCILLARY_KINDS}
        plan.additional_treatments = additional
        q = plan.quick_overview
        q.total_planning = layout.total_planning
        q.complexity_level = layout.complexity
        if not q.estimated_duration:
            q.estimated_duration = _default_duration(len(layout.implant_sites), layout.total_planning)

        report = validate_plan(
            plan,
            total_planning=layout.total_planning,
            missing_teeth=finding.missing_teeth,
            veneers_allowed=layout.scenario.veneers_allowed,
        )
        repairs.extend(report.repairs)

        plan.cost_estimate = estimate_cost(
            plan,
            layout.scenario,
            total_planning=layout.total_planning,
            graft_required=layout.graft_required,
            currency=self.settings.currency,
            overrides=self.settings.scenario_cost_overrides,
        )
        return GeneratedPlan(plan=plan, scenario=layout.scenario, layout=layout, repairs=repairs)


def generate_plan(
    finding: DentalFinding,
    prefs: PatientPreferences,
    text_generator: TextGenerator,
    settings: Optional[Settings] = None,
) -> TreatmentPlan:
    return PlanGenerator(text_generator, settings).generate(finding, prefs).plan
