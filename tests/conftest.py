import json
from typing import List

import pandas as pd
import pytest
from sqlalchemy import create_engine

from data_pipeline.build_clinics_sqlite import load_seed
from treatment_planner.deps import Settings
from treatment_planner.errors import TextGenerationError
from treatment_planner.schemas import (
    BudgetApproach,
    DentalFinding,
    PatientPreferences,
    PrimaryExpectation,
)
from treatment_planner.services.rules_engine import plan_layout


class FakeTextGenerator:
    """Returns queued responses in order; an Exception in the queue is raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: List[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise TextGenerationError("no response queued")
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def prefs(expectation: str = "complete-missing-teeth", budget: str = "premium") -> PatientPreferences:
    return PatientPreferences(
        primary_expectation=PrimaryExpectation(expectation),
        budget_approach=BudgetApproach(budget),
    )


def finding(*missing: str, **kw) -> DentalFinding:
    return DentalFinding(missing_teeth=frozenset(missing), **kw)


def draft_json(layout, *, wrap: bool = True, **sections) -> str:
    """Generator-style draft that follows a RuleLayout; sections override top-level keys."""
    system = layout.scenario.implant_systems[0]
    body = {
        "quickOverview": {
            "totalImplants": 99,
            "totalCrowns": 0,
            "totalVeneers": 0,
            "estimatedDuration": "4-6 months",
            "complexityLevel": "Low",
        },
        "regionalPlanning": {
            "implantSites": [
                {"fdiNumber": t, "implantType": f"{system} implant", "justification": "Replaces missing tooth"}
                for t in layout.implant_sites
            ],
            "bridgeMembers": [
                {"fdiNumbers": span, "ponticNumbers": pontics, "justification": "Short-span bridge"}
                for span, pontics in layout.bridges
            ],
            "veneerTeeth": [{"fdiNumber": t, "justification": "Aesthetics"} for t in layout.veneer_teeth],
        },
        "detailedExplanation": {
            "missingTeeth": [{"fdiNumber": t, "condition": "missing", "action": "restore"} for t in layout.implant_sites],
            "biomechanicalAnalysis": {"implantDistribution": "Implants at segment ends", "bridgeLength": "Within limits"},
        },
        "conclusion": {
            "consistencyWithGoals": "Restores function.",
            "systemRulesCompliance": "Follows the decision table.",
            "recommendations": ["Schedule a CBCT scan"],
        },
        "costEstimate": {"totalCost": 123456, "paymentOptions": ["Full payment", "Installments"]},
    }
    body.update(sections)
    text = json.dumps(body)
    return f"Here is the plan:\n```json\n{text}\n```" if wrap else text


@pytest.fixture
def make_prefs():
    return prefs


@pytest.fixture
def make_finding():
    return finding


@pytest.fixture
def make_draft():
    def _make(f: DentalFinding, p: PatientPreferences, **sections) -> str:
        return draft_json(plan_layout(f, p), **sections)
    return _make


@pytest.fixture
def fake_generator():
    return FakeTextGenerator


@pytest.fixture
def settings():
    return Settings(gemini_api_key=None, currency="EUR", scenario_cost_overrides={})


@pytest.fixture
def clinic_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'clinics.sqlite'}")
    df = load_seed()
    closed = pd.DataFrame([{
        "id": "closed-clinic",
        "name": "Closed Dental",
        "city": "Istanbul",
        "country": "Turkey",
        "latitude": 41.0082,
        "longitude": 28.9784,
        "status": "INACTIVE",
        "services": json.dumps(["Dental Implants", "Orthodontic Aligners"]),
        "specialties": json.dumps([]),
        "rating": 5.0,
        "review_count": 10,
        "is_verified": 1,
        "pricing_tier": "standard",
    }])
    pd.concat([df, closed], ignore_index=True).to_sql("clinics", engine, index=False)
    return engine


@pytest.fixture
def plan_engine(tmp_path):
    return create_engine(f"sqlite:///{tmp_path / 'plans.sqlite'}")
