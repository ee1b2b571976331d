from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # Generator output and the HTTP surface both speak camelCase.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


# -----------------------------
# Vocabulary
# -----------------------------
class PrimaryExpectation(str, Enum):
    COMPLETE_MISSING_TEETH = "complete-missing-teeth"
    SMILE_MAKEOVER = "smile-makeover"


class BudgetApproach(str, Enum):
    PREMIUM = "premium"
    BALANCED = "balanced"
    ECONOMY = "economy"
    BASIC = "basic"


class TreatmentKind(str, Enum):
    IMPLANT = "implant"
    CROWN = "crown"
    FILLING = "filling"
    ROOT_CANAL = "root-canal"
    VENEER = "veneer"


# Labels a clinic may list under services or specialties for each treatment kind.
TREATMENT_LABELS: Dict[TreatmentKind, FrozenSet[str]] = {
    TreatmentKind.IMPLANT: frozenset({"Dental Implants"}),
    TreatmentKind.CROWN: frozenset({"Crowns", "Crowns and Bridges"}),
    TreatmentKind.FILLING: frozenset({"Fillings"}),
    TreatmentKind.ROOT_CANAL: frozenset({"Root Canal Treatment"}),
    TreatmentKind.VENEER: frozenset({"Veneers"}),
}

ANCILLARY_KINDS = (TreatmentKind.CROWN, TreatmentKind.FILLING, TreatmentKind.ROOT_CANAL)


# -----------------------------
# Planning input
# -----------------------------
class RiskFactors(CamelModel):
    medical_condition: Optional[str] = None
    smoking: bool = False
    chronic_diseases: List[str] = []
    age: Optional[int] = Field(default=None, ge=0, le=120)


class DentalFinding(CamelModel):
    missing_teeth: FrozenSet[str] = frozenset()
    suspicious_teeth: FrozenSet[str] = frozenset()
    ancillary_treatment_counts: Dict[TreatmentKind, int] = {}
    risk_factors: RiskFactors = Field(default_factory=RiskFactors)
    bone_loss: bool = False
    source: Literal["xray", "form"] = "form"

    def ancillary(self, kind: TreatmentKind) -> int:
        return int(self.ancillary_treatment_counts.get(kind, 0))


class PatientPreferences(CamelModel):
    primary_expectation: PrimaryExpectation
    budget_approach: BudgetApproach


# -----------------------------
# Treatment plan
# -----------------------------
class QuickOverview(CamelModel):
    total_implants: int = 0
    total_crowns: int = 0
    total_veneers: int = 0
    total_fillings: int = 0
    total_root_canals: int = 0
    estimated_duration: str = ""
    complexity_level: str = "Low"
    total_planning: bool = False


class ImplantSite(CamelModel):
    fdi_number: str
    tooth_name: Optional[str] = None
    implant_type: str = ""
    justification: str = ""


class BridgeMember(CamelModel):
    fdi_numbers: List[str]
    pontic_numbers: List[str] = []
    type: str = "bridge"
    justification: str = ""

    @property
    def abutments(self) -> List[str]:
        pontics = set(self.pontic_numbers)
        return [t for t in self.fdi_numbers if t not in pontics]


class VeneerTooth(CamelModel):
    fdi_number: str
    tooth_name: Optional[str] = None
    justification: str = ""


class CrownTooth(CamelModel):
    fdi_number: str
    tooth_name: Optional[str] = None
    support: Literal["implant", "pontic", "natural"] = "natural"
    justification: str = ""


class RegionalPlanning(CamelModel):
    implant_sites: List[ImplantSite] = []
    bridge_members: List[BridgeMember] = []
    veneer_teeth: List[VeneerTooth] = []
    crown_teeth: List[CrownTooth] = []

    def implant_positions(self) -> List[str]:
        return [s.fdi_number for s in self.implant_sites]

    def pontic_positions(self) -> List[str]:
        return [p for b in self.bridge_members for p in b.pontic_numbers]


class ToothDecision(CamelModel):
    fdi_number: str
    condition: str = ""
    action: str = ""
    justification: str = ""


class DetailedExplanation(CamelModel):
    missing_teeth: List[ToothDecision] = []
    extractable_teeth: List[ToothDecision] = []
    biomechanical_analysis: Dict[str, Any] = {}
    flexibility_adjustments: Dict[str, Any] = {}


class Conclusion(CamelModel):
    consistency_with_goals: str = ""
    system_rules_compliance: str = ""
    recommendations: List[str] = []


class TreatmentPhase(CamelModel):
    phase: int
    title: str
    treatments: List[str] = []
    duration: str = ""


class CostEstimate(CamelModel):
    total_cost: float = 0.0
    currency: str = "EUR"
    breakdown: Dict[str, float] = {}
    payment_options: List[str] = []
    formula: Optional[str] = None


class TreatmentPlan(CamelModel):
    quick_overview: QuickOverview
    regional_planning: RegionalPlanning
    detailed_explanation: DetailedExplanation
    conclusion: Conclusion
    treatment_sequence: List[TreatmentPhase] = []
    cost_estimate: CostEstimate = Field(default_factory=CostEstimate)
    additional_treatments: Dict[str, int] = {}


# -----------------------------
# Clinics and matching
# -----------------------------
class ClinicProfile(CamelModel):
    id: str
    name: str = ""
    city: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    status: str = "ACTIVE"
    services: FrozenSet[str] = frozenset()
    specialties: FrozenSet[str] = frozenset()
    rating: float = Field(default=0.0, ge=0, le=5)
    review_count: int = 0
    is_verified: bool = False
    pricing_tier: Optional[str] = None
    distance_km: Optional[float] = None

    @property
    def capabilities(self) -> FrozenSet[str]:
        return self.services | self.specialties

    def offers(self, treatment: TreatmentKind) -> bool:
        return self.offers_any(TREATMENT_LABELS[treatment])

    def offers_any(self, labels: Iterable[str]) -> bool:
        return not self.capabilities.isdisjoint(labels)


class MatchResult(CamelModel):
    clinic: ClinicProfile
    treatment_match_score: int = Field(ge=0, le=100)
    matched_services: List[str] = []
    distance_km: Optional[float] = None


class TreatmentRequirements(CamelModel):
    implants: int = 0
    crowns: int = 0
    fillings: int = 0
    root_canals: int = 0
    veneers: int = 0
    complexity: str = "Low"

    def count(self, kind: TreatmentKind) -> int:
        return {
            TreatmentKind.IMPLANT: self.implants,
            TreatmentKind.CROWN: self.crowns,
            TreatmentKind.FILLING: self.fillings,
            TreatmentKind.ROOT_CANAL: self.root_canals,
            TreatmentKind.VENEER: self.veneers,
        }[kind]


class RelevantTreatment(CamelModel):
    name: str
    description: str = ""
    rationale: str = ""
    category: Optional[str] = None


class Location(CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class MatchRequest(CamelModel):
    treatment_plan: TreatmentPlan
    location: Optional[Location] = None
    radius_km: Optional[float] = Field(default=None, gt=0)
    limit: int = Field(default=10, ge=1, le=50)


class MatchResponse(CamelModel):
    results: List[MatchResult] = []
    requirements: TreatmentRequirements
    relevant_treatments: List[RelevantTreatment] = []
    fallback_used: bool = False
    message: str = ""
    explanation: str = ""


# -----------------------------
# Plan generation request/response
# -----------------------------
class GeneratePlanRequest(CamelModel):
    source: Literal["xray", "form"]
    preferences: PatientPreferences
    analysis: Optional[Dict[str, Any]] = None
    selected_teeth: Optional[List[Any]] = None
    form_data: Optional[Dict[str, Any]] = None
    risk_factors: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None


class GeneratePlanResponse(CamelModel):
    plan: TreatmentPlan
    plan_id: Optional[str] = None
    scenario: int
    repairs: List[str] = []
    message: str = "Treatment plan generated successfully"


class StoredPlan(CamelModel):
    id: str
    user_id: Optional[str] = None
    source: str
    title: str
    summary: str
    selected_teeth: List[str] = []
    created_at: str
    plan: TreatmentPlan
