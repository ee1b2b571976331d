# treatment_planner/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Request
from fastapi.responses import JSONResponse

from .deps import Settings, get_settings, get_text_generator
from .errors import PlanGenerationError, PlanValidationError, ValidationError
from .schemas import (
    GeneratePlanRequest,
    GeneratePlanResponse,
    MatchRequest,
    MatchResponse,
    StoredPlan,
)
from .services.clinic_matcher import ClinicMatcher
from .services.clinic_repository import ClinicRepository
from .services.normalizer import ManualInput, RadiographicInput, normalize
from .services.plan_generator import PlanGenerator
from .services.plan_store import PlanStore
from .services.text_generation import TextGenerator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    yield


app = FastAPI(title="Dental Treatment Planner", lifespan=lifespan)


# -----------------------------
# Collaborators (overridable in tests)
# -----------------------------
def get_clinic_repository() -> ClinicRepository:
    return ClinicRepository()


def get_plan_store() -> PlanStore:
    return PlanStore()


def require_text_generator(
    generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> TextGenerator:
    if generator is None:
        raise HTTPException(status_code=503, detail="Plan generation is not configured (missing GEMINI_API_KEY).")
    return generator


# -----------------------------
# Error mapping
# -----------------------------
@app.exception_handler(ValidationError)
def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": "invalid_input", "field": exc.field, "detail": exc.message})


@app.exception_handler(PlanValidationError)
def _plan_validation_error(request: Request, exc: PlanValidationError):
    return JSONResponse(status_code=422, content={"error": "plan_rule_violation", "violations": exc.violations})


@app.exception_handler(PlanGenerationError)
def _plan_generation_error(request: Request, exc: PlanGenerationError):
    return JSONResponse(
        status_code=502,
        content={"error": "plan_generation_failed", "detail": str(exc), "rawText": exc.excerpt()},
    )


@app.exception_handler(Exception)
def _unhandled(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "internal_error", "detail": "Internal server error"})


# -----------------------------
# Routes
# -----------------------------
@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/treatment-plans", response_model=GeneratePlanResponse, response_model_by_alias=True)
def create_treatment_plan(
    req: GeneratePlanRequest,
    generator: TextGenerator = Depends(require_text_generator),
    store: PlanStore = Depends(get_plan_store),
    settings: Settings = Depends(get_settings),
):
    # 1) normalize
    if req.source == "xray":
        if not req.analysis:
            raise ValidationError("analysis", "required for X-ray based planning")
        finding = normalize(RadiographicInput(analysis=req.analysis, questionnaire=req.risk_factors or {}))
    else:
        if req.selected_teeth is None:
            raise ValidationError("selectedTeeth", "required for manual planning")
        form = {**(req.form_data or {}), **(req.risk_factors or {})}
        finding = normalize(ManualInput(selected_teeth=req.selected_teeth, form_data=form))

    # 2) generate + validate
    result = PlanGenerator(generator, settings).generate(finding, req.preferences)

    # 3) persist only for signed-in users; a storage failure does not lose the plan
    plan_id = None
    if req.user_id:
        try:
            plan_id = store.save(result.plan, req.user_id, req.source, finding)
        except Exception:
            logger.exception("Failed to persist treatment plan for user %s", req.user_id)

    return GeneratePlanResponse(
        plan=result.plan,
        plan_id=plan_id,
        scenario=result.scenario.number,
        repairs=result.repairs,
    )


@app.get("/treatment-plans/{plan_id}", response_model=StoredPlan, response_model_by_alias=True)
def get_treatment_plan(
    plan_id: str = Path(..., description="Id returned when the plan was saved"),
    store: PlanStore = Depends(get_plan_store),
):
    rec = store.get(plan_id)
    if rec is None:
        raise HTTPException(status_code=404, detail=f"Treatment plan '{plan_id}' not found.")
    return rec


@app.post("/clinics/match", response_model=MatchResponse, response_model_by_alias=True)
def match_clinics_endpoint(
    req: MatchRequest,
    repository: ClinicRepository = Depends(get_clinic_repository),
    generator: Optional[TextGenerator] = Depends(get_text_generator),
    settings: Settings = Depends(get_settings),
):
    matcher = ClinicMatcher(repository, generator, settings)
    return matcher.match(req.treatment_plan, req.location, req.radius_km, req.limit)
