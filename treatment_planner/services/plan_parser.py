# treatment_planner/services/plan_parser.py
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List

from pydantic import ValidationError as SchemaError

from ..errors import PlanGenerationError
from ..schemas import TreatmentPlan

logger = logging.getLogger(__name__)

_FENCED = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

REQUIRED_SECTIONS = ("quickOverview", "regionalPlanning", "detailedExplanation", "conclusion")
REQUIRED_NARRATIVE = (
    ("conclusion", "consistencyWithGoals"),
    ("conclusion", "systemRulesCompliance"),
    ("detailedExplanation", "biomechanicalAnalysis"),
)


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Locate the first JSON object in generator output. The service may wrap it
    in code fences or commentary, so fenced blocks are tried first, then every
    '{' in the raw text.
    """
    if not text or not text.strip():
        raise PlanGenerationError("generator returned empty output", text)

    candidates = [m.group(1) for m in _FENCED.finditer(text)] + [text]
    decoder = json.JSONDecoder()
    for chunk in candidates:
        start = chunk.find("{")
        while start != -1:
            try:
                obj, _ = decoder.raw_decode(chunk, start)
            except json.JSONDecodeError:
                start = chunk.find("{", start + 1)
                continue
            if isinstance(obj, dict):
                return obj
            start = chunk.find("{", start + 1)
    logger.warning("No JSON object in generator output: %.200s", text)
    raise PlanGenerationError("no JSON object found in generator output", text)


def _blank(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return not value


def narrative_gaps(data: Dict[str, Any], *, expect_regional: bool) -> List[str]:
    """Required narrative fields the draft left empty."""
    gaps = [f"{section}.{key}" for section, key in REQUIRED_NARRATIVE if _blank(data[section].get(key))]
    if expect_regional and not any(data["regionalPlanning"].get(k) for k in ("implantSites", "bridgeMembers")):
        gaps.append("regionalPlanning")
    return gaps


def parse_plan(text: str, *, expect_regional: bool = False) -> TreatmentPlan:
    data = parse_json_object(text)

    missing = [k for k in REQUIRED_SECTIONS if not isinstance(data.get(k), dict)]
    if missing:
        raise PlanGenerationError(f"plan is missing sections: {', '.join(missing)}", text)

    gaps = narrative_gaps(data, expect_regional=expect_regional)
    if gaps:
        logger.warning("Generator plan left fields empty: %s", gaps)
        raise PlanGenerationError(f"plan leaves required fields empty: {', '.join(gaps)}", text)

    # Costs are recomputed locally; only the payment labels are kept from the draft.
    cost = data.pop("costEstimate", None)
    if isinstance(cost, dict) and isinstance(cost.get("paymentOptions"), list):
        data["costEstimate"] = {"paymentOptions": [str(p) for p in cost["paymentOptions"]]}

    try:
        return TreatmentPlan.model_validate(data)
    except SchemaError as e:
        logger.warning("Generator plan failed schema validation: %s", e)
        raise PlanGenerationError(f"plan does not match the expected shape: {e}", text) from e
