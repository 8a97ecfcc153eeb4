from datetime import date

import pytest

from nl_inference import (
    apply_semantic_postprocessing,
    build_ranking_plan,
    fill_legacy_time,
    guess_group_by_from_message,
    infer_time_from_message,
    looks_like_ranking_question,
)
from plan_schema import (
    PlanFilter,
    TimeBucketKey,
    plan_to_wire,
    validate_plan,
    validate_universal_plan,
)


@pytest.mark.parametrize("text,expected", [
    ("How many students got placed in July 2025?", {"month": 7, "year": 2025}),
    ("placements in 2024", {"year": 2024}),
    ("offers made in sept", {"month": 9}),
    ("how many students", {}),
    ("", {}),
    (None, {}),
])
def test_infer_time_from_message(text, expected):
    assert infer_time_from_message(text) == expected


def test_infer_time_first_month_wins():
    # january is scanned before june regardless of word order
    assert infer_time_from_message("between june and january 2025")["month"] == 1


def test_infer_time_ignores_years_outside_2000s():
    assert infer_time_from_message("placed in 1999") == {}


@pytest.mark.parametrize("text", [
    "Which month had the most placements in 2025?",
    "what company hired the maximum students",
    "peak placement month",
])
def test_ranking_questions(text):
    assert looks_like_ranking_question(text)


@pytest.mark.parametrize("text", [
    "How many students got placed in July 2025?",
    "which company has the highest package",
    "",
    None,
])
def test_not_ranking_questions(text):
    assert not looks_like_ranking_question(text)


def test_guess_group_by_month_first():
    key = guess_group_by_from_message("which month did the company hire most")
    assert isinstance(key, TimeBucketKey)
    assert key.time_bucket.field == "offerDate"
    assert key.time_bucket.unit == "month"


def test_guess_group_by_company_and_location():
    assert guess_group_by_from_message("which company placed the most") == "companyName"
    assert guess_group_by_from_message("which city had the most placements") == "location"
    assert guess_group_by_from_message("top location for hiring") == "location"


def test_guess_group_by_defaults_to_month_bucket():
    key = guess_group_by_from_message("when were the most students hired")
    assert isinstance(key, TimeBucketKey)


def _exists_plan():
    return validate_universal_plan({
        "kind": "count",
        "filters": [{"field": "offerDate", "op": "exists"}],
    })


def test_postprocessing_drops_unrequested_exists_filter():
    plan = apply_semantic_postprocessing(_exists_plan(), "How many students are there?")
    assert plan.filters == []


def test_postprocessing_keeps_exists_filter_for_placement_questions():
    plan = apply_semantic_postprocessing(_exists_plan(), "How many students got placed?")
    assert [(f.field, f.op) for f in plan.filters] == [("offerDate", "exists")]


def test_postprocessing_adds_outstanding_fee_filter():
    plan = apply_semantic_postprocessing(
        validate_universal_plan({"kind": "count"}),
        "How many students have outstanding fees?",
    )
    assert [(f.field, f.op, f.value) for f in plan.filters] == [("remainingFee", ">", 0)]


def test_postprocessing_adds_paid_in_full_filter():
    plan = apply_semantic_postprocessing(
        validate_universal_plan({"kind": "count"}),
        "How many students are paid in full?",
    )
    assert [(f.field, f.op, f.value) for f in plan.filters] == [("remainingFee", "<=", 0)]


def test_postprocessing_no_dues_adds_both_fee_filters():
    # "no dues" also contains "dues"; both rules fire
    plan = apply_semantic_postprocessing(
        validate_universal_plan({"kind": "count"}),
        "students with no dues",
    )
    assert {(f.field, f.op) for f in plan.filters} == {
        ("remainingFee", ">"),
        ("remainingFee", "<="),
    }


def test_postprocessing_does_not_duplicate_existing_filter():
    original = validate_universal_plan({
        "kind": "count",
        "filters": [{"field": "remainingFee", "op": ">", "value": 1000}],
    })
    plan = apply_semantic_postprocessing(original, "students with remaining fees")
    assert len(plan.filters) == 1
    assert plan.filters[0].value == 1000


def test_postprocessing_is_idempotent():
    text = "How many students have outstanding fees?"
    once = apply_semantic_postprocessing(_exists_plan(), text)
    twice = apply_semantic_postprocessing(once, text)
    assert plan_to_wire(once) == plan_to_wire(twice)


def test_postprocessing_does_not_mutate_input():
    original = _exists_plan()
    apply_semantic_postprocessing(original, "students with unpaid balance")
    assert original.filters == [PlanFilter(field="offerDate", op="exists")]


def test_build_ranking_plan_with_year():
    plan = build_ranking_plan("Which month had the most placements in 2025?")
    assert plan.kind == "aggregate"
    assert plan.time_range.year == 2025
    assert plan.time_range.month is None
    assert [(f.field, f.op) for f in plan.filters] == [("offerDate", "exists")]
    assert isinstance(plan.group_by[0], TimeBucketKey)
    assert plan.metrics[0].op == "count"
    assert plan.metrics[0].as_ == "count"
    assert [(s.by, s.dir) for s in plan.sort] == [("count", "desc")]
    assert plan.limit == 1


def test_build_ranking_plan_without_year():
    plan = build_ranking_plan("which company hired the most students")
    assert plan.time_range is None
    assert plan.group_by == ["companyName"]


def test_fill_legacy_time_from_message():
    plan = validate_plan({"intent": "COUNT_PLACEMENTS"})
    filled = fill_legacy_time(plan, "students placed in July 2025", date(2026, 3, 1))
    assert (filled.time.year, filled.time.month) == (2025, 7)


def test_fill_legacy_time_month_defaults_to_current_year():
    plan = validate_plan({"intent": "COUNT_PLACEMENTS"})
    filled = fill_legacy_time(plan, "students placed in august", date(2026, 3, 1))
    assert (filled.time.year, filled.time.month) == (2026, 8)


def test_fill_legacy_time_keeps_planner_values():
    plan = validate_plan({"intent": "COUNT_PLACEMENTS", "time": {"year": 2024, "month": 2}})
    filled = fill_legacy_time(plan, "placed in July 2025", date(2026, 3, 1))
    assert (filled.time.year, filled.time.month) == (2024, 2)
