# treatment_planner/services/normalizer.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Union

from ..errors import ValidationError
from ..schemas import ANCILLARY_KINDS, DentalFinding, RiskFactors, TreatmentKind
from .dentition import is_valid_fdi

# Radiographic tooth statuses → canonical state (first match wins)
_STATUS_RULES = (
    ("missing", ("missing", "absent", "edentulous")),
    ("extractable", ("extract", "remnant", "residual root", "hopeless", "fracture")),
    ("suspicious", ("suspicious", "caries", "lesion", "periapical", "decay", "infection")),
)

# Per-tooth treatment annotations → treatment kind (first match wins)
_METHOD_RULES = (
    ("implant", ("implant",)),
    ("extraction", ("extract",)),
    (TreatmentKind.ROOT_CANAL, ("root canal", "endodont", "rct")),
    (TreatmentKind.CROWN, ("crown", "cap")),
    (TreatmentKind.FILLING, ("filling", "restoration", "composite", "amalgam")),
)

# Form field → ancillary kind
_FORM_COUNT_FIELDS = {
    "crowns": TreatmentKind.CROWN,
    "fillings": TreatmentKind.FILLING,
    "rootCanals": TreatmentKind.ROOT_CANAL,
}

_TRUTHY = {"yes", "true", "1", "y"}
_FALSY = {"no", "false", "0", "n", ""}


@dataclass
class RadiographicInput:
    analysis: Dict[str, Any]
    questionnaire: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ManualInput:
    selected_teeth: List[Any]
    form_data: Dict[str, Any] = field(default_factory=dict)


def _classify(label: Any, rules) -> Optional[Any]:
    text = str(label or "").strip().lower()
    if not text:
        return None
    for mapped, keywords in rules:
        if any(k in text for k in keywords):
            return mapped
    return None


def _coerce_count(name: str, value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValidationError(name, "must be a number")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(name, "must be a whole number")
        value = int(value)
    if isinstance(value, str):
        s = value.strip()
        if not s.lstrip("-").isdigit():
            raise ValidationError(name, f"must be a number, got {value!r}")
        value = int(s)
    if not isinstance(value, int):
        raise ValidationError(name, "must be a number")
    if value < 0:
        raise ValidationError(name, "must not be negative")
    return value


def _coerce_age(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        age = float(value)
    except (TypeError, ValueError):
        raise ValidationError("age", f"must be a number, got {value!r}")
    if isinstance(value, bool) or not age.is_integer():
        raise ValidationError("age", "must be a whole number of years")
    if not 0 <= age <= 120:
        raise ValidationError("age", "must be between 0 and 120")
    return int(age)


def _coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    text = str(value).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise ValidationError(name, f"expected yes/no, got {value!r}")


def _coerce_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [str(value)]


def normalize_risk_factors(data: Optional[Dict[str, Any]]) -> RiskFactors:
    data = data or {}
    condition = data.get("medicalCondition", data.get("medical_condition"))
    return RiskFactors(
        medical_condition=str(condition).strip() if condition not in (None, "") else None,
        smoking=_coerce_bool("smoking", data.get("smoking")),
        chronic_diseases=_coerce_list(data.get("chronicDiseases", data.get("chronic_diseases"))),
        age=_coerce_age(data.get("age")),
    )


def _tooth_results(analysis: Dict[str, Any]) -> Dict[str, Any]:
    results = analysis.get("tooth_results")
    if results is None and isinstance(analysis.get("results"), dict):
        results = analysis["results"].get("tooth_results")
    if results is None:
        return {}
    if not isinstance(results, dict):
        raise ValidationError("tooth_results", "must be a mapping of tooth position to status")
    return results


def _tally_methods(methods: Any, counts: Dict[TreatmentKind, int]) -> Set[str]:
    """Add annotated treatments to counts; return structural markers (implant/extraction)."""
    markers: Set[str] = set()
    if not isinstance(methods, list):
        return markers
    for m in methods:
        label = m.get("treatment_method") if isinstance(m, dict) else m
        kind = _classify(label, _METHOD_RULES)
        if kind is None:
            continue
        if kind in ("implant", "extraction"):
            markers.add(kind)
            continue
        n = _coerce_count("count", m.get("count", 1)) if isinstance(m, dict) else 1
        counts[kind] = counts.get(kind, 0) + n
    return markers


def normalize_radiographic(data: RadiographicInput) -> DentalFinding:
    counts: Dict[TreatmentKind, int] = {k: 0 for k in ANCILLARY_KINDS}
    missing: Set[str] = set()
    suspicious: Set[str] = set()
    bone_loss = bool(data.analysis.get("bone_loss"))

    for raw_tooth, result in _tooth_results(data.analysis).items():
        tooth = str(raw_tooth).strip()
        if not is_valid_fdi(tooth):
            raise ValidationError("tooth_results", f"invalid FDI tooth number {raw_tooth!r}")
        if isinstance(result, dict):
            labels = [result.get("status")] + _coerce_list(result.get("conditions"))
            methods = result.get("treatment_methods")
        else:
            labels, methods = [result], None

        states = {_classify(lbl, _STATUS_RULES) for lbl in labels}
        if any("bone" in str(lbl).lower() for lbl in labels if lbl):
            bone_loss = True
        markers = _tally_methods(methods, counts)
        if states & {"missing", "extractable"} or markers:
            missing.add(tooth)
        elif "suspicious" in states:
            suspicious.add(tooth)

    _tally_methods(data.analysis.get("treatment_methods"), counts)

    return DentalFinding(
        missing_teeth=frozenset(missing),
        suspicious_teeth=frozenset(suspicious),
        ancillary_treatment_counts=counts,
        risk_factors=normalize_risk_factors(data.questionnaire),
        bone_loss=bone_loss,
        source="xray",
    )


def normalize_manual(data: ManualInput) -> DentalFinding:
    if not isinstance(data.selected_teeth, (list, tuple)):
        raise ValidationError("selectedTeeth", "must be a list of FDI tooth numbers")
    invalid = [t for t in data.selected_teeth if not is_valid_fdi(t if isinstance(t, str) else str(t))]
    if invalid:
        raise ValidationError("selectedTeeth", f"invalid FDI tooth numbers: {invalid}")

    form = data.form_data or {}
    counts = {kind: _coerce_count(name, form.get(name)) for name, kind in _FORM_COUNT_FIELDS.items()}
    # informational only; implant count comes from the rule layout
    _coerce_count("implants", form.get("implants"))

    return DentalFinding(
        missing_teeth=frozenset(str(t) for t in data.selected_teeth),
        ancillary_treatment_counts=counts,
        risk_factors=normalize_risk_factors(form),
        source="form",
    )


def normalize(data: Union[RadiographicInput, ManualInput]) -> DentalFinding:
    """Map either input shape onto the canonical DentalFinding."""
    if isinstance(data, RadiographicInput):
        return normalize_radiographic(data)
    if isinstance(data, ManualInput):
        return normalize_manual(data)
    raise TypeError(f"unsupported planning input: {type(data).__name__}")
