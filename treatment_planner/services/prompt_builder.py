# treatment_planner/services/prompt_builder.py
from __future__ import annotations

import json
from typing import Iterable, List

from ..schemas import DentalFinding, PatientPreferences, TreatmentRequirements
from .dentition import arch_sorted
from .rules_engine import RuleLayout
from .scenarios import SCENARIOS

ROLE = (
    "You are the decision engine of a digital dental implant planning platform. "
    "You write personalized, justified and explainable preliminary treatment plans "
    "that support, and never replace, the final evaluation by the treating dentist."
)

DECISION_TABLE = """### Core Decision Flow (per contiguous run of missing teeth)
- 1 missing tooth: 1 implant
- 2 missing teeth: 2 implants (no I-P)
- 3 missing teeth: I-P-I
- 4 missing teeth: I-P-I-I or I-I-P-I
- 5 missing teeth: I-P-I-P-I
- 6+ missing teeth: divide into segments and apply the table to each"""

SMILE_LINE_RULES = """### Smile Line Rules
- Smile line: 15-25 (upper), 35-45 (lower)
- If a smile-line tooth is missing: veneers are not allowed, use crowns.
- If no smile-line tooth is missing: veneers only for premium budget, crowns for all others."""

BIOMECHANICAL_RULES = """### Biomechanical Rules
- Implant and natural tooth cannot be in the same bridge (I-P-D prohibited).
- Maximum bridge length is 5 units (at most 2 pontics).
- Cantilever only allowed in total planning.
- Free-end pontics are prohibited (I-P, D-P not allowed)."""

TOTAL_PLANNING_RULES = """### Total Planning Criteria
- <=4 sound teeth in one jaw
- >=50% suspicious teeth
- >=10 missing teeth
- >=8 planned implants (except scenarios 1 and 2)"""

RESPONSE_SHAPE = {
    "quickOverview": {
        "totalImplants": 0,
        "totalCrowns": 0,
        "totalVeneers": 0,
        "estimatedDuration": "X months",
        "complexityLevel": "Low/Medium/High",
    },
    "regionalPlanning": {
        "implantSites": [
            {"fdiNumber": "11", "toothName": "Upper Right Central Incisor",
             "implantType": "system name", "justification": "..."}
        ],
        "bridgeMembers": [
            {"fdiNumbers": ["21", "22", "23"], "ponticNumbers": ["22"], "type": "bridge",
             "justification": "..."}
        ],
        "veneerTeeth": [{"fdiNumber": "11", "toothName": "...", "justification": "..."}],
        "crownTeeth": [{"fdiNumber": "11", "toothName": "...", "support": "implant|pontic|natural",
                        "justification": "..."}],
    },
    "detailedExplanation": {
        "missingTeeth": [{"fdiNumber": "11", "condition": "Missing", "action": "Implant placement",
                          "justification": "..."}],
        "extractableTeeth": [],
        "biomechanicalAnalysis": {"implantDistribution": "...", "bridgeLength": "...", "occlusalLoad": "..."},
        "flexibilityAdjustments": {"systemicHealth": "...", "economicPreferences": "..."},
    },
    "conclusion": {
        "consistencyWithGoals": "...",
        "systemRulesCompliance": "...",
        "recommendations": ["..."],
    },
    "treatmentSequence": [
        {"phase": 1, "title": "Preparation Phase", "treatments": ["..."], "duration": "2-4 weeks"}
    ],
    "costEstimate": {"paymentOptions": ["Full payment", "Installments"]},
}


def _scenario_lines() -> List[str]:
    return [
        f"{s.number}. {s.expectation.value} + {s.budget.value}: {s.summary} "
        f"(implant systems: {', '.join(s.implant_systems)})"
        for s in sorted(SCENARIOS.values(), key=lambda s: s.number)
    ]


def _teeth(teeth: Iterable[str]) -> str:
    listed = arch_sorted(teeth)
    return ", ".join(listed) if listed else "none"


def _layout_lines(layout: RuleLayout) -> List[str]:
    lines = []
    for seg in layout.segments:
        lines.append(f"- Teeth {'-'.join(seg.teeth)}: pattern {'-'.join(seg.pattern)}")
    for span, pontics in layout.bridges:
        lines.append(f"- Bridge {'-'.join(span)} with pontic(s) {', '.join(pontics)}")
    if layout.veneer_teeth:
        lines.append(f"- Veneers: {_teeth(layout.veneer_teeth)}")
    if layout.natural_crown_teeth:
        lines.append(f"- Crowns on natural teeth: {_teeth(layout.natural_crown_teeth)}")
    if layout.total_planning:
        lines.append(f"- TOTAL PLANNING applies: {'; '.join(layout.total_planning_reasons)}")
    if layout.graft_required:
        lines.append("- Bone augmentation (graft) required")
    return lines or ["- No missing teeth: no implant or bridge work"]


def build_plan_prompt(finding: DentalFinding, prefs: PatientPreferences, layout: RuleLayout) -> str:
    rf = finding.risk_factors
    ancillary = {k.value: v for k, v in finding.ancillary_treatment_counts.items()}
    sections = [
        ROLE,
        "",
        "## Planning Output Format",
        "Quick overview, regional planning (implant sites, bridges, veneers, crowns with FDI numbers), "
        "detailed explanation (missing and extractable teeth, biomechanical analysis, flexibility "
        "adjustments), conclusion, treatment sequence.",
        "",
        "## Patient Data",
        f"- Input source: {'radiographic analysis' if finding.source == 'xray' else 'questionnaire and tooth selection'}",
        f"- Missing or extractable teeth: {_teeth(finding.missing_teeth)}",
        f"- Suspicious teeth: {_teeth(finding.suspicious_teeth)}",
        f"- Additional treatments: {json.dumps(ancillary)}",
        f"- Medical condition: {rf.medical_condition or 'Not specified'}",
        f"- Age: {rf.age if rf.age is not None else 'Not specified'}",
        f"- Smoking: {'Yes' if rf.smoking else 'No'}",
        f"- Chronic diseases: {', '.join(rf.chronic_diseases) or 'None'}",
        f"- Bone loss reported: {'Yes' if finding.bone_loss else 'No'}",
        "",
        "## Planning Rules",
        f"- Primary expectation: {prefs.primary_expectation.value}",
        f"- Budget approach: {prefs.budget_approach.value}",
        f"- Selected scenario: {layout.scenario.number}",
        "",
        "### Planning Actions According to 8 Scenarios",
        *_scenario_lines(),
        "",
        SMILE_LINE_RULES,
        "",
        DECISION_TABLE,
        "",
        TOTAL_PLANNING_RULES,
        "",
        BIOMECHANICAL_RULES,
        "",
        "## Rule Layout (already computed, the plan must follow it)",
        *_layout_lines(layout),
        "",
        "## Response Format",
        "Respond with a single JSON object with this exact structure, no commentary:",
        json.dumps(RESPONSE_SHAPE, indent=2),
    ]
    return "\n".join(sections)


def build_relevant_treatments_prompt(requirements: TreatmentRequirements, vocabulary: Iterable[str]) -> str:
    names = sorted(vocabulary)
    return "\n".join([
        "You are a dental treatment planning assistant. A patient has a treatment plan, but no clinic "
        "in our database offers the exact treatments they need.",
        "",
        "CURRENT TREATMENT PLAN REQUEST:",
        f"- Implants: {requirements.implants}",
        f"- Crowns: {requirements.crowns}",
        f"- Fillings: {requirements.fillings}",
        f"- Root Canals: {requirements.root_canals}",
        f"- Veneers: {requirements.veneers}",
        f"- Complexity: {requirements.complexity}",
        "",
        "AVAILABLE TREATMENTS IN OUR CLINIC DATABASE:",
        ", ".join(names),
        "",
        "Suggest 3-5 relevant treatments that:",
        "1. Use ONLY names from the available list above, spelled exactly as listed",
        "2. Address the patient's dental needs as closely as possible",
        "3. Are realistic and commonly offered by dental clinics",
        "",
        "Respond with a single JSON object:",
        json.dumps({
            "relevantTreatments": [
                {"name": "Treatment Name (from available list)", "description": "...",
                 "rationale": "...", "category": "service or specialty"}
            ],
            "message": "We found relevant treatments that can address your dental needs.",
        }, indent=2),
    ])

