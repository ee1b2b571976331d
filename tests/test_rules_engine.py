import pytest

from treatment_planner.schemas import RiskFactors
from treatment_planner.services.dentition import SMILE_LINE, contiguous_runs, is_contiguous, tooth_name
from treatment_planner.services.rules_engine import (
    ALLOWED_PATTERNS,
    bridges_for,
    complexity_for,
    plan_layout,
    split_run,
)
from treatment_planner.services.scenarios import SCENARIOS, select_scenario


def test_smile_line_bounds():
    assert {"15", "11", "21", "25", "35", "31", "41", "45"} <= SMILE_LINE
    assert not {"16", "26", "36", "46", "18"} & SMILE_LINE


def test_runs_cross_the_midline_but_not_jaws():
    assert contiguous_runs(["11", "21", "22", "31", "41", "17"]) == [["17"], ["11", "21", "22"], ["41", "31"]]
    assert is_contiguous(["12", "11", "21"])
    assert not is_contiguous(["11", "22"])
    assert not is_contiguous(["21", "31"])
    assert is_contiguous(["14", "15", "16"])
    assert is_contiguous(["44", "46", "45"])
    assert not is_contiguous(["14", "14", "15"])


def test_tooth_name():
    assert tooth_name("21") == "Upper Left Central Incisor"
    assert tooth_name("46") == "Lower Right First Molar"


@pytest.mark.parametrize("n,sizes", [(5, [5]), (6, [3, 3]), (7, [4, 3]), (11, [4, 4, 3]), (16, [4, 4, 4, 4])])
def test_split_run_balanced(n, sizes):
    run = [str(i) for i in range(n)]
    parts = split_run(run)
    assert [len(p) for p in parts] == sizes
    assert sum(parts, []) == run


@pytest.mark.parametrize("pattern,expected", [
    ("I", []),
    ("II", []),
    ("IPI", [(["a", "b", "c"], ["b"])]),
    ("IPII", [(["a", "b", "c"], ["b"])]),
    ("IIPI", [(["b", "c", "d"], ["c"])]),
    ("IPIPI", [(["a", "b", "c", "d", "e"], ["b", "d"])]),
])
def test_bridges_for(pattern, expected):
    assert bridges_for(list("abcde")[:len(pattern)], pattern) == expected


def test_decision_table_three_teeth(make_finding, make_prefs):
    layout = plan_layout(make_finding("21", "22", "23"), make_prefs())
    assert layout.scenario.number == 1
    assert layout.implant_sites == ["21", "23"]
    assert layout.bridges == [(["21", "22", "23"], ["22"])]
    assert not layout.total_planning


def test_decision_table_patterns_respect_bridge_limits(make_finding, make_prefs):
    missing = ["17", "16", "15", "14", "13", "12", "11"]
    layout = plan_layout(make_finding(*missing), make_prefs())
    assert [len(s.teeth) for s in layout.segments] == [4, 3]
    for seg in layout.segments:
        assert seg.pattern in ALLOWED_PATTERNS[len(seg.teeth)]
    for span, pontics in layout.bridges:
        assert len(pontics) <= 2
        assert span[0] not in pontics and span[-1] not in pontics


def test_no_anterior_bridges_in_balanced_completion(make_finding, make_prefs):
    layout = plan_layout(make_finding("21", "22", "23"), make_prefs(budget="balanced"))
    assert layout.scenario.number == 2
    assert layout.implant_sites == ["21", "22", "23"]
    assert layout.bridges == []


def test_posterior_bridge_allowed_in_balanced_completion(make_finding, make_prefs):
    layout = plan_layout(make_finding("26", "27", "28"), make_prefs(budget="balanced"))
    assert layout.implant_sites == ["26", "28"]


def test_smile_line_gap_means_crowns_not_veneers(make_finding, make_prefs):
    layout = plan_layout(make_finding("21"), make_prefs("smile-makeover", "premium"))
    assert layout.scenario.number == 5
    assert layout.veneer_teeth == []
    assert "21" not in layout.natural_crown_teeth
    assert "11" in layout.natural_crown_teeth


def test_premium_smile_makeover_without_gap_uses_veneers(make_finding, make_prefs):
    layout = plan_layout(make_finding("36", suspicious_teeth=frozenset({"12"})), make_prefs("smile-makeover", "premium"))
    assert "11" in layout.veneer_teeth
    assert "12" not in layout.veneer_teeth
    assert layout.natural_crown_teeth == ["12"]


def test_balanced_smile_makeover_crowns_only(make_finding, make_prefs):
    layout = plan_layout(make_finding("36"), make_prefs("smile-makeover", "balanced"))
    assert layout.veneer_teeth == []
    assert len(layout.natural_crown_teeth) == 20


def test_completion_scenarios_leave_smile_line_alone(make_finding, make_prefs):
    layout = plan_layout(make_finding("36"), make_prefs("complete-missing-teeth", "economy"))
    assert layout.veneer_teeth == [] and layout.natural_crown_teeth == []


def test_total_planning_missing_teeth(make_finding, make_prefs):
    missing = ["18", "17", "16", "15", "14", "24", "25", "26", "27", "28"]
    layout = plan_layout(make_finding(*missing), make_prefs(budget="economy"))
    assert layout.total_planning
    assert any("missing teeth" in r for r in layout.total_planning_reasons)


def test_total_planning_sound_teeth_per_jaw(make_finding, make_prefs):
    suspicious = frozenset({"48", "47", "46", "45", "44", "43", "42", "41", "31", "32", "33", "34"})
    layout = plan_layout(make_finding(suspicious_teeth=suspicious), make_prefs())
    assert layout.total_planning
    assert "4 sound teeth in lower jaw" in layout.total_planning_reasons


def test_total_planning_suspicious_share(make_finding, make_prefs):
    suspicious = frozenset(["17", "16", "15", "14", "13", "12", "11", "21", "22", "23", "24", "25", "26", "27", "28", "18"])
    layout = plan_layout(make_finding(suspicious_teeth=suspicious), make_prefs())
    assert any("present teeth suspicious" in r for r in layout.total_planning_reasons)


def test_implant_trigger_waived_for_first_two_scenarios(make_finding, make_prefs):
    # 8 implants (11-21 pair as II), fewer than 10 missing
    missing = ["17", "15", "13", "11", "27", "25", "23", "21"]
    assert not plan_layout(make_finding(*missing), make_prefs(budget="premium")).total_planning
    layout = plan_layout(make_finding(*missing), make_prefs(budget="economy"))
    assert layout.total_planning_reasons == ["8 planned implants"]


@pytest.mark.parametrize("risk,bone_loss,missing,expected", [
    (RiskFactors(), False, ["21"], False),
    (RiskFactors(), True, ["21"], True),
    (RiskFactors(), True, [], False),
    (RiskFactors(age=70), False, ["46"], True),
    (RiskFactors(smoking=True), False, ["46"], False),
    (RiskFactors(smoking=True), False, ["46", "36", "26", "16"], True),
])
def test_graft_requirement(make_finding, make_prefs, risk, bone_loss, missing, expected):
    f = make_finding(*missing, risk_factors=risk, bone_loss=bone_loss)
    assert plan_layout(f, make_prefs()).graft_required is expected


@pytest.mark.parametrize("implants,bridges,total,expected", [
    (0, 0, False, "Low"),
    (1, 0, False, "Low"),
    (2, 0, False, "Medium"),
    (1, 1, False, "Medium"),
    (6, 0, False, "High"),
    (0, 0, True, "High"),
])
def test_complexity(implants, bridges, total, expected):
    assert complexity_for(implants, bridges, total) == expected


def test_every_preference_pair_has_a_scenario(make_prefs):
    assert len(SCENARIOS) == 8
    numbers = {
        select_scenario(make_prefs(e, b)).number
        for e in ("complete-missing-teeth", "smile-makeover")
        for b in ("premium", "balanced", "economy", "basic")
    }
    assert numbers == set(range(1, 9))
