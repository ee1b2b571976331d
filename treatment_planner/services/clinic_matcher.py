# treatment_planner/services/clinic_matcher.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..deps import Settings, get_settings
from ..errors import PlannerError
from ..schemas import (
    TREATMENT_LABELS,
    ClinicProfile,
    Location,
    MatchResponse,
    MatchResult,
    RelevantTreatment,
    TreatmentKind,
    TreatmentPlan,
    TreatmentRequirements,
)
from .clinic_repository import ClinicFilter, ClinicRepository
from .match_explainer import explain_matches, summary_message
from .plan_parser import parse_json_object
from .prompt_builder import build_relevant_treatments_prompt
from .text_generation import TextGenerator

logger = logging.getLogger(__name__)

# Relative cost/complexity of each category
TREATMENT_WEIGHTS: Dict[TreatmentKind, int] = {
    TreatmentKind.IMPLANT: 30,
    TreatmentKind.CROWN: 25,
    TreatmentKind.ROOT_CANAL: 20,
    TreatmentKind.FILLING: 15,
    TreatmentKind.VENEER: 10,
}
VERIFIED_BONUS = 10
RATING_BONUS = ((4.5, 15), (4.0, 10), (3.5, 5))
MAX_SCORE = 100
MAX_SUGGESTIONS = 5

SUPPORT_MESSAGE = (
    "No clinics found matching your exact requirements. "
    "Please contact our support team for personalized recommendations."
)

_KIND_BY_LABEL: Dict[str, TreatmentKind] = {
    label.lower(): kind for kind, labels in TREATMENT_LABELS.items() for label in labels
}


@dataclass(frozen=True)
class Requirement:
    name: str
    labels: FrozenSet[str]
    weight: int


def extract_requirements(plan: TreatmentPlan) -> TreatmentRequirements:
    q = plan.quick_overview
    return TreatmentRequirements(
        implants=q.total_implants,
        crowns=q.total_crowns,
        fillings=q.total_fillings,
        root_canals=q.total_root_canals,
        veneers=q.total_veneers,
        complexity=q.complexity_level or "Low",
    )


def requirement_set(requirements: TreatmentRequirements) -> List[Requirement]:
    return [
        Requirement(name=kind.value, labels=frozenset(TREATMENT_LABELS[kind]), weight=weight)
        for kind, weight in TREATMENT_WEIGHTS.items()
        if requirements.count(kind) > 0
    ]


def _rating_bonus(rating: float) -> int:
    for threshold, bonus in RATING_BONUS:
        if rating >= threshold:
            return bonus
    return 0


def score_clinic(clinic: ClinicProfile, requirements: Iterable[Requirement]) -> Tuple[int, List[str]]:
    """Weighted score in [0, 100] and the clinic labels that satisfied a requirement."""
    score = 0
    matched: Set[str] = set()
    for req in requirements:
        hits = clinic.capabilities & req.labels
        if hits:
            score += req.weight
            matched |= hits
    if clinic.is_verified:
        score += VERIFIED_BONUS
    score += _rating_bonus(clinic.rating)
    return max(0, min(score, MAX_SCORE)), sorted(matched)


def passes_filter(clinic: ClinicProfile, requirements: List[Requirement], *, strict: bool) -> bool:
    if not requirements:
        return True
    tests = (clinic.offers_any(req.labels) for req in requirements)
    return all(tests) if strict else any(tests)


def rank_clinics(
    clinics: Iterable[ClinicProfile],
    requirements: List[Requirement],
    *,
    strict: bool = True,
    limit: int = 10,
) -> List[MatchResult]:
    """
    Filter, score and order clinics.

    Order: score descending, then distance ascending when known; equal keys
    keep the repository order.
    """
    out: List[MatchResult] = []
    for clinic in clinics:
        if not passes_filter(clinic, requirements, strict=strict):
            continue
        score, matched = score_clinic(clinic, requirements)
        out.append(MatchResult(
            clinic=clinic,
            treatment_match_score=score,
            matched_services=matched,
            distance_km=clinic.distance_km,
        ))
    out.sort(key=lambda r: (-r.treatment_match_score,
                            r.distance_km if r.distance_km is not None else float("inf")))
    return out[:limit]


def accept_suggestions(raw: Any, vocabulary: Iterable[str]) -> List[RelevantTreatment]:
    """
    Keep only suggested treatments whose name is in the clinic vocabulary.
    Matching ignores case; accepted names take the vocabulary spelling.
    """
    canonical = {v.strip().lower(): v for v in vocabulary if v and v.strip()}
    accepted: List[RelevantTreatment] = []
    seen: Set[str] = set()
    for item in raw if isinstance(raw, list) else []:
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict):
            continue
        key = str(item.get("name") or "").strip().lower()
        name = canonical.get(key)
        if name is None:
            logger.info("Discarding suggested treatment outside the clinic vocabulary: %r", item.get("name"))
            continue
        if name in seen:
            continue
        seen.add(name)
        category = item.get("category")
        accepted.append(RelevantTreatment(
            name=name,
            description=str(item.get("description") or ""),
            rationale=str(item.get("rationale") or ""),
            category=category if isinstance(category, str) and category else None,
        ))
    return accepted[:MAX_SUGGESTIONS]


class ClinicMatcher:
    def __init__(
        self,
        repository: ClinicRepository,
        text_generator: Optional[TextGenerator] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.text_generator = text_generator
        self.settings = settings or get_settings()

    def _fallback_requirement(self, name: str) -> Requirement:
        kind = _KIND_BY_LABEL.get(name.lower())
        weight = TREATMENT_WEIGHTS[kind] if kind else self.settings.fallback_treatment_weight
        return Requirement(name=name, labels=frozenset({name}), weight=weight)

    def _load_clinics(self, flt: ClinicFilter) -> List[ClinicProfile]:
        try:
            return self.repository.find_active_clinics(flt)
        except (SQLAlchemyError, ValueError, KeyError) as e:
            logger.warning("Clinic repository unavailable, treating as no clinics: %s", e)
            return []

    def _fallback(
        self,
        clinics: List[ClinicProfile],
        requirements: TreatmentRequirements,
        limit: int,
    ) -> MatchResponse:
        empty = MatchResponse(requirements=requirements, fallback_used=True, message=SUPPORT_MESSAGE)
        if self.text_generator is None:
            logger.info("No text generator configured; skipping relevant-treatment fallback")
            return empty
        try:
            vocabulary = self.repository.find_all_service_vocabulary()
            if not vocabulary:
                return empty
            prompt = build_relevant_treatments_prompt(requirements, vocabulary)
            data = parse_json_object(self.text_generator.complete(prompt))
            relevant = accept_suggestions(data.get("relevantTreatments"), vocabulary)
        except (PlannerError, SQLAlchemyError, ValueError) as e:
            logger.warning("Relevant-treatment fallback failed: %s", e)
            return empty

        if not relevant:
            return empty
        fallback_reqs = [self._fallback_requirement(t.name) for t in relevant]
        results = rank_clinics(clinics, fallback_reqs, strict=False, limit=limit)
        if not results:
            return empty.model_copy(update={"relevant_treatments": relevant})

        message = str(data.get("message") or "") or (
            "We found clinics offering treatments relevant to your dental needs."
        )
        return MatchResponse(
            results=results,
            requirements=requirements,
            relevant_treatments=relevant,
            fallback_used=True,
            message=message,
            explanation=explain_matches(requirements, results, relevant),
        )

    def match(
        self,
        plan: TreatmentPlan,
        location: Optional[Location] = None,
        radius_km: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> MatchResponse:
        limit = limit or self.settings.match_limit
        requirements = extract_requirements(plan)
        flt = ClinicFilter()
        if location is not None:
            flt = ClinicFilter(
                latitude=location.latitude,
                longitude=location.longitude,
                radius_km=radius_km if radius_km is not None else self.settings.match_radius_km,
            )

        clinics = self._load_clinics(flt)
        results = rank_clinics(
            clinics,
            requirement_set(requirements),
            strict=self.settings.strict_treatment_filter,
            limit=limit,
        )
        logger.info("Clinic match: %d candidates, %d matched", len(clinics), len(results))
        if results:
            return MatchResponse(
                results=results,
                requirements=requirements,
                message=summary_message(results),
                explanation=explain_matches(requirements, results),
            )
        return self._fallback(clinics, requirements, limit)


def match_clinics(
    plan: TreatmentPlan,
    location: Optional[Location] = None,
    radius_km: Optional[float] = None,
    limit: Optional[int] = None,
    *,
    repository: Optional[ClinicRepository] = None,
    text_generator: Optional[TextGenerator] = None,
    settings: Optional[Settings] = None,
) -> List[MatchResult]:
    matcher = ClinicMatcher(repository or ClinicRepository(), text_generator, settings)
    return matcher.match(plan, location, radius_km, limit).results
