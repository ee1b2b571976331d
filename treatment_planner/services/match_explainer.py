# treatment_planner/services/match_explainer.py
from __future__ import annotations
from typing import List, Optional, Sequence

from ..schemas import MatchResult, RelevantTreatment, TreatmentRequirements

_COMPLEXITY_HINT = {
    "High": "a multi-stage plan; prefer clinics with implant and prosthetic specialists on site.",
    "Medium": "several appointments; check that the clinic can do surgery and crowns in-house.",
    "Low": "routine restorative work that most general dental clinics handle.",
}


def summary_message(results: Sequence[MatchResult]) -> str:
    n = len(results)
    return f"Found {n} clinic{'s' if n != 1 else ''} matching your treatment plan"


def _requirement_notes(req: TreatmentRequirements) -> List[str]:
    notes: List[str] = []
    for label, count in (
        ("implant", req.implants),
        ("crown", req.crowns),
        ("root canal", req.root_canals),
        ("filling", req.fillings),
        ("veneer", req.veneers),
    ):
        if count:
            notes.append(f"{count} {label}{'s' if count != 1 else ''}")
    return notes


def _clinic_line(r: MatchResult) -> str:
    c = r.clinic
    where = ", ".join(p for p in (c.city, c.country) if p)
    parts = [f"- **{c.name}**" + (f" ({where})" if where else "") + f" — match {r.treatment_match_score}/100"]
    if r.distance_km is not None:
        parts.append(f"{r.distance_km:,.1f} km away")
    if c.rating:
        parts.append(f"rated {c.rating:.1f} ({c.review_count} reviews)")
    if c.is_verified:
        parts.append("verified")
    line = ", ".join(parts)
    if r.matched_services:
        line += f". Offers: {', '.join(r.matched_services)}"
    return line + "."


def explain_matches(
    requirements: TreatmentRequirements,
    results: Sequence[MatchResult],
    relevant: Optional[Sequence[RelevantTreatment]] = None,
    *,
    header: Optional[str] = None,
) -> str:
    lines: List[str] = [header or "Clinics for your treatment plan", ""]
    notes = _requirement_notes(requirements)
    if notes:
        lines.append(f"**Your plan needs:** {', '.join(notes)}.")
    hint = _COMPLEXITY_HINT.get(requirements.complexity)
    if hint:
        lines.append(f"**Complexity {requirements.complexity}:** {hint}")
    if relevant:
        lines.append("")
        lines.append("**No clinic offers the exact plan; these related treatments were used instead:**")
        for t in relevant:
            lines.append(f"- {t.name}" + (f": {t.rationale}" if t.rationale else ""))
    lines.append("")
    if not results:
        lines.append("_No matching clinics found. Try a wider search radius._")
        return "\n".join(lines)
    lines.append("**Clinics (ranked by treatment match, then distance):**")
    for r in results:
        lines.append(_clinic_line(r))
    lines.append("")
    lines.append("**Tip:** Final prices and implant systems are confirmed by the clinic after an in-person exam.")
    return "\n".join(lines)
