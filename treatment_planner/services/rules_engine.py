# treatment_planner/services/rules_engine.py
"""
Deterministic planning rules.

Turns a DentalFinding + PatientPreferences into a RuleLayout: which missing
positions receive implants, which become pontics, how bridges are formed,
which smile-line teeth get veneers or crowns, and whether the case falls
under total planning. The text generator only narrates this layout; the
validator checks its draft against the same rules.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from ..schemas import DentalFinding, PatientPreferences
from .dentition import ALL_TEETH, LOWER_ARCH, SMILE_LINE, UPPER_ARCH, arch_sorted, contiguous_runs, in_smile_line
from .scenarios import Scenario, select_scenario

logger = logging.getLogger(__name__)

MAX_SEGMENT = 5
MAX_PONTICS_PER_BRIDGE = 2

# Core decision table: run length → allowed I(mplant)/P(ontic) patterns, first is the default.
ALLOWED_PATTERNS: Dict[int, Tuple[str, ...]] = {
    1: ("I",),
    2: ("II",),
    3: ("IPI",),
    4: ("IPII", "IIPI"),
    5: ("IPIPI",),
}

# Total planning thresholds
MIN_SOUND_TEETH_PER_JAW = 4
SUSPICIOUS_SHARE = 0.5
MISSING_TEETH_TRIGGER = 10
IMPLANT_TRIGGER = 8


@dataclass
class Segment:
    teeth: List[str]
    pattern: str

    @property
    def implants(self) -> List[str]:
        return [t for t, p in zip(self.teeth, self.pattern) if p == "I"]

    @property
    def pontics(self) -> List[str]:
        return [t for t, p in zip(self.teeth, self.pattern) if p == "P"]

    def bridges(self) -> List[Tuple[List[str], List[str]]]:
        return bridges_for(self.teeth, self.pattern)


@dataclass
class RuleLayout:
    scenario: Scenario
    segments: List[Segment]
    veneer_teeth: List[str] = field(default_factory=list)
    natural_crown_teeth: List[str] = field(default_factory=list)
    total_planning: bool = False
    total_planning_reasons: List[str] = field(default_factory=list)
    graft_required: bool = False

    @property
    def implant_sites(self) -> List[str]:
        return [t for s in self.segments for t in s.implants]

    @property
    def pontics(self) -> List[str]:
        return [t for s in self.segments for t in s.pontics]

    @property
    def bridges(self) -> List[Tuple[List[str], List[str]]]:
        return [b for s in self.segments for b in s.bridges()]

    @property
    def complexity(self) -> str:
        return complexity_for(len(self.implant_sites), len(self.bridges), self.total_planning)


def split_run(run: List[str]) -> List[List[str]]:
    """Split a run into ceil(n/5) balanced segments, longest first."""
    n = len(run)
    if n <= MAX_SEGMENT:
        return [list(run)]
    k = math.ceil(n / MAX_SEGMENT)
    base, extra = divmod(n, k)
    sizes = [base + 1] * extra + [base] * (k - extra)
    out, i = [], 0
    for size in sizes:
        out.append(list(run[i:i + size]))
        i += size
    return out


def allowed_patterns(teeth: List[str], scenario: Scenario) -> Tuple[str, ...]:
    if not scenario.anterior_bridges_allowed and in_smile_line(teeth):
        return ("I" * len(teeth),)
    return ALLOWED_PATTERNS[len(teeth)]


def bridges_for(teeth: List[str], pattern: str) -> List[Tuple[List[str], List[str]]]:
    """Bridges are maximal I(PI)+ windows: (span, pontics)."""
    out = []
    i = 0
    while i < len(pattern):
        if pattern[i] == "I" and pattern[i + 1:i + 3] == "PI":
            j = i + 2
            while pattern[j + 1:j + 3] == "PI":
                j += 2
            span = teeth[i:j + 1]
            out.append((span, [t for t, p in zip(span, pattern[i:j + 1]) if p == "P"]))
            i = j + 1
        else:
            i += 1
    return out


def segments_for(missing: List[str], scenario: Scenario) -> List[Segment]:
    segments = []
    for run in contiguous_runs(missing):
        for teeth in split_run(run):
            segments.append(Segment(teeth=teeth, pattern=allowed_patterns(teeth, scenario)[0]))
    return segments


def smile_line_restorations(finding: DentalFinding, scenario: Scenario) -> Tuple[List[str], List[str]]:
    """(veneer teeth, natural crown teeth) for the present smile-line teeth."""
    if not scenario.restore_smile_line:
        return [], []
    present = arch_sorted(SMILE_LINE - finding.missing_teeth)
    smile_gap = bool(SMILE_LINE & finding.missing_teeth)
    if scenario.veneers_allowed and not smile_gap:
        # suspicious teeth are not veneer candidates
        veneers = [t for t in present if t not in finding.suspicious_teeth]
        crowns = [t for t in present if t in finding.suspicious_teeth]
        return veneers, crowns
    return [], present


def total_planning_reasons(finding: DentalFinding, implant_count: int, scenario: Scenario) -> List[str]:
    reasons = []
    for jaw, arch in (("upper", UPPER_ARCH), ("lower", LOWER_ARCH)):
        sound = [t for t in arch if t not in finding.missing_teeth and t not in finding.suspicious_teeth]
        if len(sound) <= MIN_SOUND_TEETH_PER_JAW:
            reasons.append(f"{len(sound)} sound teeth in {jaw} jaw")
    present = len(ALL_TEETH - finding.missing_teeth)
    if present and len(finding.suspicious_teeth) / present >= SUSPICIOUS_SHARE:
        reasons.append(f"{len(finding.suspicious_teeth)} of {present} present teeth suspicious")
    if len(finding.missing_teeth) >= MISSING_TEETH_TRIGGER:
        reasons.append(f"{len(finding.missing_teeth)} missing teeth")
    if implant_count >= IMPLANT_TRIGGER and not scenario.implant_trigger_exempt:
        reasons.append(f"{implant_count} planned implants")
    return reasons


def graft_required(finding: DentalFinding, implant_count: int) -> bool:
    rf = finding.risk_factors
    if not implant_count:
        return False
    if finding.bone_loss:
        return True
    if rf.smoking and implant_count >= 4:
        return True
    return rf.age is not None and rf.age >= 65


def complexity_for(implants: int, bridges: int, total_planning: bool) -> str:
    if total_planning or implants >= 6:
        return "High"
    if implants >= 2 or bridges:
        return "Medium"
    return "Low"


def plan_layout(finding: DentalFinding, prefs: PatientPreferences) -> RuleLayout:
    scenario = select_scenario(prefs)
    segments = segments_for(list(finding.missing_teeth), scenario)
    veneers, crowns = smile_line_restorations(finding, scenario)
    implant_count = sum(len(s.implants) for s in segments)
    reasons = total_planning_reasons(finding, implant_count, scenario)

    layout = RuleLayout(
        scenario=scenario,
        segments=segments,
        veneer_teeth=veneers,
        natural_crown_teeth=crowns,
        total_planning=bool(reasons),
        total_planning_reasons=reasons,
        graft_required=graft_required(finding, implant_count),
    )
    logger.info(
        "Scenario %s: %d implants, %d bridges, total planning=%s %s",
        scenario.number, implant_count, len(layout.bridges), layout.total_planning, reasons or "",
    )
    return layout
