import pytest

from errors import UnknownFieldReference
from plan_schema import (
    Metric,
    PlanValidationError,
    TimeBucketKey,
    check_field_references,
    group_output_key,
    metric_output_name,
    parse_plan,
    parse_universal_plan,
    plan_to_wire,
    validate_plan,
    validate_universal_plan,
)


def _paths(exc_info):
    return [issue["path"] for issue in exc_info.value.issues]


def test_defaults_applied():
    plan = validate_universal_plan({})
    assert plan.kind == "count"
    assert plan.filters == []
    assert plan.group_by == []
    assert plan.time_range is None
    assert plan.limit is None


def test_time_range_defaults():
    plan = validate_universal_plan({"timeRange": {"year": 2025}})
    assert plan.time_range.field == "offerDate"
    assert plan.time_range.timezone == "Asia/Kolkata"


def test_sort_direction_defaults_to_desc():
    plan = validate_universal_plan({"sort": [{"by": "count"}]})
    assert plan.sort[0].dir == "desc"


def test_month_13_rejected_with_path():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_universal_plan({"timeRange": {"year": 2025, "month": 13}})
    assert "timeRange.month" in _paths(exc_info)


def test_limit_zero_rejected_with_path():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_universal_plan({"kind": "list", "limit": 0})
    assert "limit" in _paths(exc_info)


def test_limit_above_cap_rejected():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_universal_plan({"limit": 500})
    assert "limit" in _paths(exc_info)


def test_unknown_operator_rejected_with_path():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_universal_plan({"filters": [{"field": "packageLPA", "op": "~", "value": 5}]})
    assert "filters.0.op" in _paths(exc_info)


def test_unknown_kind_rejected():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_universal_plan({"kind": "delete"})
    assert "kind" in _paths(exc_info)


def test_numbers_are_not_coerced_from_strings():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_universal_plan({"timeRange": {"year": 2025, "month": "7"}})
    assert "timeRange.month" in _paths(exc_info)


def test_metric_field_required_unless_count():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_universal_plan({"metrics": [{"op": "sum"}]})
    assert any(p.startswith("metrics.0") for p in _paths(exc_info))

    plan = validate_universal_plan({"metrics": [{"op": "count", "as": "n"}]})
    assert plan.metrics[0].as_ == "n"


def test_group_by_accepts_names_and_time_buckets():
    plan = validate_universal_plan({
        "groupBy": [
            "companyName",
            {"timeBucket": {"field": "offerDate", "unit": "month"}},
        ]
    })
    assert plan.group_by[0] == "companyName"
    assert isinstance(plan.group_by[1], TimeBucketKey)
    assert plan.group_by[1].time_bucket.unit == "month"


def test_group_by_rejects_unknown_unit():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_universal_plan({"groupBy": [{"timeBucket": {"field": "offerDate", "unit": "decade"}}]})
    assert any(p.startswith("groupBy.0") for p in _paths(exc_info))


def test_extra_keys_ignored():
    plan = validate_universal_plan({"kind": "count", "explanation": "because"})
    assert "explanation" not in plan_to_wire(plan)


def test_non_object_rejected():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_universal_plan(["count"])
    assert _paths(exc_info) == ["$"]


def test_parse_rejects_non_json():
    with pytest.raises(PlanValidationError) as exc_info:
        parse_universal_plan("Sure! Here is your plan: {kind: count}")
    assert _paths(exc_info) == ["$"]


def test_parse_accepts_json_text():
    plan = parse_universal_plan('{"kind":"list","limit":10}')
    assert plan.kind == "list"
    assert plan.limit == 10


def test_plan_to_wire_uses_camel_case():
    plan = validate_universal_plan({
        "timeRange": {"year": 2025},
        "metrics": [{"op": "count", "as": "count"}],
    })
    wire = plan_to_wire(plan)
    assert wire["timeRange"]["year"] == 2025
    assert wire["metrics"] == [{"op": "count", "as": "count"}]


def test_legacy_plan_validation():
    plan = validate_plan({
        "intent": "CHART_PLACEMENTS_BY_STUDENT",
        "time": {"year": 2025, "month": 7},
        "chart": {"kind": "bar", "xKey": "studentName", "yKeys": ["packageLPA"]},
    })
    assert plan.time.month == 7
    assert plan.chart.x_key == "studentName"


def test_legacy_plan_requires_intent():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_plan({"time": {"year": 2025}})
    assert "intent" in _paths(exc_info)


def test_legacy_parse_rejects_unknown_intent():
    with pytest.raises(PlanValidationError) as exc_info:
        parse_plan('{"intent": "DROP_EVERYTHING"}')
    assert "intent" in _paths(exc_info)


def test_output_names():
    assert group_output_key("hr.name") == "hr_name"
    bucket = validate_universal_plan(
        {"groupBy": [{"timeBucket": {"field": "offerDate", "unit": "quarter"}}]}
    ).group_by[0]
    assert group_output_key(bucket) == "offerDate_quarter"
    assert metric_output_name(Metric(op="count")) == "count"
    assert metric_output_name(Metric(op="sum", field="installments.amount")) == "sum_installments_amount"
    assert metric_output_name(Metric(op="avg", field="packageLPA", as_="avgPackage")) == "avgPackage"


def test_unknown_filter_field_rejected_with_suggestion():
    plan = validate_universal_plan({"filters": [{"field": "salary", "op": ">", "value": 5}]})
    with pytest.raises(UnknownFieldReference) as exc_info:
        check_field_references(plan)
    assert exc_info.value.path == "filters.0.field"
    assert exc_info.value.field == "salary"
    assert "packageLPA" in exc_info.value.message
    assert exc_info.value.status_code == 400


def test_unknown_time_bucket_field_rejected():
    plan = validate_universal_plan(
        {"groupBy": [{"timeBucket": {"field": "createdOn", "unit": "month"}}]}
    )
    with pytest.raises(UnknownFieldReference) as exc_info:
        check_field_references(plan)
    assert exc_info.value.path == "groupBy.0.timeBucket.field"


def test_unknown_projection_field_rejected():
    plan = validate_universal_plan({"kind": "list", "projection": ["studentName", "password"]})
    with pytest.raises(UnknownFieldReference) as exc_info:
        check_field_references(plan)
    assert exc_info.value.path == "projection.1"


def test_sort_may_name_aggregate_outputs():
    plan = validate_universal_plan({
        "kind": "aggregate",
        "groupBy": ["companyName", {"timeBucket": {"field": "offerDate", "unit": "month"}}],
        "metrics": [{"op": "count", "as": "count"}, {"op": "avg", "field": "packageLPA"}],
        "sort": [{"by": "count"}, {"by": "avg_packageLPA"}, {"by": "offerDate_month"}],
    })
    check_field_references(plan)


def test_sort_on_unknown_name_rejected():
    plan = validate_universal_plan({"sort": [{"by": "popularity"}]})
    with pytest.raises(UnknownFieldReference) as exc_info:
        check_field_references(plan)
    assert exc_info.value.path == "sort.0.by"


@pytest.mark.parametrize("year", [0, 1, 1969, 9999, 10000])
def test_year_outside_calendar_window_rejected(year):
    with pytest.raises(PlanValidationError) as exc_info:
        validate_universal_plan({"timeRange": {"year": year}})
    assert "timeRange.year" in _paths(exc_info)


def test_year_bounds_accepted():
    assert validate_universal_plan({"timeRange": {"year": 1970}}).time_range.year == 1970
    assert validate_universal_plan({"timeRange": {"year": 9998, "month": 12}}).time_range.year == 9998


def test_legacy_year_outside_calendar_window_rejected():
    with pytest.raises(PlanValidationError) as exc_info:
        validate_plan({"intent": "COUNT_PLACEMENTS", "time": {"year": 10000}})
    assert "time.year" in _paths(exc_info)
