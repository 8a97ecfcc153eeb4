"""
Question → answer pipelines behind the AI endpoints.

``run_ai_query`` (UniversalPlan):

1. require a non-empty message
2. acquire a plan from the oracle, validate it, check field names
3. semantic post-processing (fee / placement vocabulary)
4. ranking override: a plain count for a "which ... most placements"
   question is replaced by a top-1 grouped aggregate built locally.  This
   is a deliberate substitution, the local heuristics win over the oracle.
5. compile, pass the safety gate, execute, shape the response

``run_ai_chat`` runs the older intent-based planner.

Both hold no state between calls; the oracle and the store are passed in.
"""

from datetime import date
from typing import Any, Dict, Optional

from catalog import PLACEMENT_DATE_FIELD, TIMEZONE
from errors import ExecutionError, InvalidRequest, QueryError, UpstreamPlanInvalid
from llm_planner import acquire_legacy_plan, acquire_universal_plan
from logger import logger
from nl_inference import (
    apply_semantic_postprocessing,
    build_ranking_plan,
    fill_legacy_time,
    looks_like_ranking_question,
)
from plan_compiler import (
    MAX_LIMIT,
    assert_safe,
    compile_aggregation,
    compile_filter,
    compile_find,
    compile_legacy_match,
    compile_monthly_trend,
    compile_students_chart,
)
from plan_schema import Metric, UniversalPlan, check_field_references, plan_to_wire
from response_formatter import (
    chart_response,
    default_chart,
    is_top_count_plan,
    list_response,
    paraphrase_plan,
    text_response,
    top_group_answer,
)
from time_window import civil_today, month_name

DEFAULT_PROJECTION = [
    "studentName",
    "companyName",
    "location",
    "packageLPA",
    PLACEMENT_DATE_FIELD,
]


def _require_message(message: Any) -> str:
    if not isinstance(message, str) or not message.strip():
        raise InvalidRequest("message required")
    return message


def _debug_block(enabled: bool, raw: str, plan: UniversalPlan, **queries: Any) -> Optional[Dict[str, Any]]:
    if not enabled:
        return None
    block: Dict[str, Any] = {
        "raw": raw,
        "plan": plan_to_wire(plan),
        "interpretation": paraphrase_plan(plan),
    }
    block.update(queries)
    return block


def _execute(plan: UniversalPlan, store, raw: str, debug: bool) -> Dict[str, Any]:
    if plan.kind == "count" and not plan.group_by:
        match = compile_filter(plan)
        assert_safe(match)
        logger.info("[PIPELINE] Step 5 - count, filter=%s", match)
        count = store.count(match)
        return text_response(str(count), _debug_block(debug, raw, plan, match=match))

    if plan.kind == "list":
        query = compile_find(plan)
        assert_safe(query["filter"])
        projection = plan.projection or DEFAULT_PROJECTION
        logger.info(
            "[PIPELINE] Step 5 - list, filter=%s, sort=%s, limit=%s",
            query["filter"], query["sort"], query["limit"],
        )
        rows = store.find(query["filter"], projection, query["sort"], query["limit"])
        return list_response(rows, _debug_block(debug, raw, plan, match=query["filter"]))

    # aggregate / chart, and counts broken down by a groupBy
    if plan.kind == "count" and not plan.metrics:
        plan = plan.model_copy(update={"metrics": [Metric(op="count", as_="count")]})

    pipeline = compile_aggregation(plan)
    assert_safe(pipeline)
    logger.info("[PIPELINE] Step 5 - %s, pipeline=%s", plan.kind, pipeline)
    rows = store.aggregate(pipeline)
    debug_info = _debug_block(debug, raw, plan, pipeline=pipeline)

    if plan.kind == "chart":
        return chart_response(default_chart(plan), rows, debug_info)

    if is_top_count_plan(plan):
        return text_response(top_group_answer(plan, rows), debug_info, data=rows)

    return list_response(rows, debug_info)


def run_ai_query(message: Any, oracle, store, debug: bool = False) -> Dict[str, Any]:
    """Answer a natural-language question with a UniversalPlan."""
    message = _require_message(message)

    raw, plan = acquire_universal_plan(oracle, message)
    check_field_references(plan)
    logger.info("[PIPELINE] Step 2 - plan accepted: %s", plan_to_wire(plan))

    plan = apply_semantic_postprocessing(plan, message)
    logger.info("[PIPELINE] Step 3 - post-processed filters: %s", plan_to_wire(plan).get("filters"))

    if plan.kind == "count" and not plan.group_by and looks_like_ranking_question(message):
        plan = build_ranking_plan(message)
        logger.info("[PIPELINE] Step 4 - ranking override: %s", plan_to_wire(plan))

    try:
        return _execute(plan, store, raw, debug)
    except UpstreamPlanInvalid as e:
        if e.raw is None:
            e.raw = raw
        raise
    except QueryError:
        raise
    except Exception as e:
        logger.error("[PIPELINE] Step 5 - execution failed: %s", e)
        raise ExecutionError(str(e)) from e


# ---------------------- INTENT PLANNER ----------------------


def _when_text(year: Optional[int], month: Optional[int]) -> str:
    if year and month:
        return f"{month_name(month)} {year}"
    if year:
        return str(year)
    return ""


def _run_intent(plan, store, today: date) -> Dict[str, Any]:
    match = compile_legacy_match(plan)
    assert_safe(match)
    year = plan.time.year if plan.time else None
    month = plan.time.month if plan.time else None
    when = _when_text(year, month)

    if plan.intent == "COUNT_PLACEMENTS":
        count = store.count(match)
        return text_response(f"Students placed{' in ' + when if when else ''}: {count}.")

    if plan.intent == "LIST_PLACEMENTS":
        rows = store.find(match, DEFAULT_PROJECTION, [(PLACEMENT_DATE_FIELD, 1)], MAX_LIMIT)
        return list_response(rows)

    if plan.intent == "CHART_PLACEMENTS_BY_STUDENT":
        pipeline = compile_students_chart(match)
        assert_safe(pipeline)
        rows = store.aggregate(pipeline)
        requested = plan.chart
        if requested and requested.kind and requested.x_key and requested.y_keys:
            chart = {"kind": requested.kind, "xKey": requested.x_key, "yKeys": requested.y_keys}
        else:
            chart = {"kind": "bar", "xKey": "studentName", "yKeys": ["packageLPA"]}
        month_when = when if year and month else ""
        summary = (
            f"{len(rows)} student{'' if len(rows) == 1 else 's'} placed"
            f"{' in ' + month_when if month_when else ''}."
        )
        return chart_response(chart, rows, summary=summary, unit="LPA")

    # CHART_MONTHLY_TREND
    trend_year = year or today.year
    pipeline = compile_monthly_trend(trend_year, TIMEZONE)
    assert_safe(pipeline)
    rows = store.aggregate(pipeline)
    data = [{"month": month_name(r["month"]), "count": r["count"]} for r in rows]
    return chart_response(
        {"kind": "line", "xKey": "month", "yKeys": ["count"]},
        data,
        summary=f"Monthly placement trend for {trend_year}.",
    )


def run_ai_chat(message: Any, oracle, store, today: Optional[date] = None) -> Dict[str, Any]:
    """Answer a question with the intent planner."""
    message = _require_message(message)
    today = today or civil_today()

    raw, plan = acquire_legacy_plan(oracle, message)
    plan = fill_legacy_time(plan, message, today)
    logger.debug("[CHAT] raw plan: %s", raw)
    logger.info("[CHAT] intent=%s, plan=%s", plan.intent, plan_to_wire(plan))

    try:
        return _run_intent(plan, store, today)
    except QueryError:
        raise
    except Exception as e:
        logger.error("[CHAT] execution failed: %s", e)
        raise ExecutionError(str(e)) from e
