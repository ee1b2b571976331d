import pytest
from fastapi.testclient import TestClient

from treatment_planner.deps import get_settings, get_text_generator
from treatment_planner.main import app, get_clinic_repository, get_plan_store
from treatment_planner.services.clinic_repository import ClinicRepository
from treatment_planner.services.plan_store import PlanStore

PREFS = {"primaryExpectation": "complete-missing-teeth", "budgetApproach": "premium"}


@pytest.fixture
def client(clinic_engine, plan_engine, settings):
    state = {"generator": None}
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_text_generator] = lambda: state["generator"]
    app.dependency_overrides[get_clinic_repository] = lambda: ClinicRepository(clinic_engine)
    app.dependency_overrides[get_plan_store] = lambda: PlanStore(plan_engine)
    with TestClient(app) as c:
        c.state = state
        yield c
    app.dependency_overrides.clear()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_app_starts_with_default_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SCENARIO_COST_OVERRIDES", raising=False)
    get_settings.cache_clear()
    try:
        with TestClient(app) as c:
            assert c.get("/health").status_code == 200
    finally:
        get_settings.cache_clear()


def test_create_plan_from_form_and_fetch_it(client, make_finding, make_prefs, make_draft, fake_generator):
    client.state["generator"] = fake_generator(make_draft(make_finding("21", "22", "23"), make_prefs()))
    r = client.post("/treatment-plans", json={
        "source": "form",
        "selectedTeeth": ["21", "22", "23"],
        "formData": {"crowns": 0, "fillings": 1, "rootCanals": 0},
        "riskFactors": {"age": 45, "smoking": "no"},
        "preferences": PREFS,
        "userId": "user-7",
    })
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["scenario"] == 1
    sites = [s["fdiNumber"] for s in body["plan"]["regionalPlanning"]["implantSites"]]
    assert sorted(sites) == ["21", "23"]
    assert body["plan"]["regionalPlanning"]["bridgeMembers"][0]["ponticNumbers"] == ["22"]
    assert body["plan"]["quickOverview"]["totalFillings"] == 1
    assert body["planId"]

    stored = client.get(f"/treatment-plans/{body['planId']}")
    assert stored.status_code == 200
    assert stored.json()["userId"] == "user-7"
    assert stored.json()["selectedTeeth"] == ["21", "22", "23"]


def test_plan_not_persisted_without_user(client, make_finding, make_prefs, make_draft, fake_generator):
    client.state["generator"] = fake_generator(make_draft(make_finding("46"), make_prefs()))
    r = client.post("/treatment-plans", json={"source": "form", "selectedTeeth": ["46"], "preferences": PREFS})
    assert r.status_code == 200
    assert r.json()["planId"] is None


def test_create_plan_from_xray(client, make_finding, make_prefs, make_draft, fake_generator):
    client.state["generator"] = fake_generator(make_draft(make_finding("36"), make_prefs()))
    r = client.post("/treatment-plans", json={
        "source": "xray",
        "analysis": {"tooth_results": {"36": {"status": "missing"}, "11": {"status": "sound"}}},
        "preferences": PREFS,
    })
    assert r.status_code == 200, r.text
    assert [s["fdiNumber"] for s in r.json()["plan"]["regionalPlanning"]["implantSites"]] == ["36"]


def test_invalid_tooth_is_400(client, fake_generator):
    client.state["generator"] = fake_generator()
    r = client.post("/treatment-plans", json={"source": "form", "selectedTeeth": ["50"], "preferences": PREFS})
    assert r.status_code == 400
    assert r.json()["field"] == "selectedTeeth"


def test_unparseable_generator_output_is_502(client, fake_generator):
    client.state["generator"] = fake_generator("not a plan")
    r = client.post("/treatment-plans", json={"source": "form", "selectedTeeth": ["21"], "preferences": PREFS})
    assert r.status_code == 502
    assert r.json()["rawText"] == "not a plan"


def test_rule_violation_is_422(client, make_finding, make_prefs, make_draft, fake_generator):
    draft = make_draft(make_finding("21", "22"), make_prefs(), regionalPlanning={
        "implantSites": [{"fdiNumber": "21"}],
        "bridgeMembers": [{"fdiNumbers": ["21", "22"], "ponticNumbers": ["22"]}],
    })
    client.state["generator"] = fake_generator(draft)
    r = client.post("/treatment-plans", json={"source": "form", "selectedTeeth": ["21", "22"], "preferences": PREFS})
    assert r.status_code == 422
    assert any("free-end" in v for v in r.json()["violations"])


def test_generation_unavailable_without_api_key(client):
    r = client.post("/treatment-plans", json={"source": "form", "selectedTeeth": ["21"], "preferences": PREFS})
    assert r.status_code == 503


def test_unknown_plan_is_404(client):
    assert client.get("/treatment-plans/nope").status_code == 404


def test_match_clinics(client):
    plan = {
        "quickOverview": {"totalImplants": 2, "totalCrowns": 3, "complexityLevel": "Medium"},
        "regionalPlanning": {},
        "detailedExplanation": {},
        "conclusion": {},
    }
    r = client.post("/clinics/match", json={
        "treatmentPlan": plan,
        "location": {"latitude": 41.0082, "longitude": 28.9784},
        "radiusKm": 25,
    })
    assert r.status_code == 200, r.text
    body = r.json()
    assert [m["clinic"]["name"] for m in body["results"]] == ["Happy Smile Clinics"]
    assert body["results"][0]["treatmentMatchScore"] == 80
    assert body["requirements"]["implants"] == 2
    assert body["fallbackUsed"] is False
    assert "Happy Smile Clinics" in body["explanation"]


def test_match_with_no_candidates_and_no_generator(client):
    plan = {"quickOverview": {"totalVeneers": 4}, "regionalPlanning": {}, "detailedExplanation": {}, "conclusion": {}}
    r = client.post("/clinics/match", json={
        "treatmentPlan": plan,
        "location": {"latitude": 0.0, "longitude": 0.0},
        "radiusKm": 10,
    })
    assert r.status_code == 200
    assert r.json()["results"] == []
    assert r.json()["fallbackUsed"] is True
