"""
Response formatter: builds the JSON bodies returned by the AI endpoints.

Shapes:
    {"ok": true, "type": "text",  "text": "..."}
    {"ok": true, "type": "list",  "rows": [...]}
    {"ok": true, "type": "chart", "chart": {"kind", "xKey", "yKeys"}, "data": [...]}
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId

from plan_schema import (
    UniversalPlan,
    group_output_key,
    metric_output_name,
)
from time_window import month_name, to_civil


def _sanitise_value(obj: Any) -> Any:
    """Recursively convert non-JSON-safe types to safe representations."""
    if isinstance(obj, dict):
        return {k: _sanitise_value(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_sanitise_value(item) for item in obj]
    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=timezone.utc)
        return obj.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, bytes):
        try:
            return obj.decode("utf-8")
        except (UnicodeDecodeError, ValueError):
            return f"[binary {len(obj)} bytes]"
    if isinstance(obj, (int, float, str, bool, type(None))):
        return obj
    # Decimal128 and friends
    return str(obj)


def sanitise(obj: Any) -> Any:
    return _sanitise_value(obj)


def _with_debug(body: Dict[str, Any], debug: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if debug is not None:
        body["_debug"] = sanitise(debug)
    return body


def text_response(text: str, debug: Optional[Dict[str, Any]] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"ok": True, "type": "text", "text": text}
    body.update(sanitise(extra))
    return _with_debug(body, debug)


def list_response(rows: List[Dict[str, Any]], debug: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return _with_debug({"ok": True, "type": "list", "rows": sanitise(rows)}, debug)


def chart_response(
    chart: Dict[str, Any],
    data: List[Dict[str, Any]],
    debug: Optional[Dict[str, Any]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"ok": True, "type": "chart"}
    body.update(sanitise(extra))
    body["chart"] = chart
    body["data"] = sanitise(data)
    return _with_debug(body, debug)


# ---------------------- CHARTS ----------------------


def default_chart(plan: UniversalPlan) -> Dict[str, Any]:
    """Chart descriptor for a chart plan, filling gaps from groupBy / metrics."""
    spec = plan.chart
    x = spec.x if spec and spec.x else None
    y = spec.y if spec and spec.y else None
    if x is None:
        x = group_output_key(plan.group_by[0]) if plan.group_by else "x"
    if y is None:
        y = [metric_output_name(m) for m in plan.metrics] or ["y"]
    kind = spec.kind if spec and spec.kind else "bar"
    return {"kind": kind, "xKey": x, "yKeys": y}


# ---------------------- TOP-1 ANSWERS ----------------------


def _bucket_label(value: datetime, unit: str) -> str:
    local = to_civil(value)
    if unit == "year":
        return str(local.year)
    if unit == "quarter":
        return f"Q{(local.month - 1) // 3 + 1} {local.year}"
    if unit == "day":
        return f"{local.day} {month_name(local.month)} {local.year}"
    if unit == "week":
        return f"the week of {local.day} {month_name(local.month)} {local.year}"
    return f"{month_name(local.month)} {local.year}"


def is_top_count_plan(plan: UniversalPlan) -> bool:
    return (
        bool(plan.group_by)
        and len(plan.metrics) == 1
        and plan.metrics[0].op == "count"
        and plan.limit == 1
    )


def top_group_answer(plan: UniversalPlan, rows: List[Dict[str, Any]]) -> str:
    """One-line answer for a top-1 count aggregate.

    Time buckets are named in civil time ("July 2025"); otherwise the
    company or location of the top row is used.
    """
    count_field = metric_output_name(plan.metrics[0]) if plan.metrics else "count"
    top = rows[0] if rows else {}
    n = top.get(count_field, 0)

    for entry in plan.group_by:
        if isinstance(entry, str):
            continue
        value = top.get(group_output_key(entry))
        if isinstance(value, datetime):
            label = _bucket_label(value, entry.time_bucket.unit)
            return f"Most placements in {label}: {n} students."

    if isinstance(top.get("companyName"), str):
        return f"Most placements by {top['companyName']}: {n} students."
    if isinstance(top.get("location"), str):
        return f"Most placements in {top['location']}: {n} students."
    return f"Top group count: {n}."


# ---------------------- INTERPRETATION ----------------------


def paraphrase_plan(plan: UniversalPlan) -> str:
    """Generate a human-readable description of a plan."""
    parts: List[str] = []

    if plan.kind == "count":
        parts.append("Counting records")
    elif plan.kind == "list":
        parts.append("Showing records")
    elif plan.metrics:
        metrics = ", ".join(
            m.op if m.op == "count" else f"{m.op} of {m.field}" for m in plan.metrics
        )
        parts.append(f"Calculating {metrics}")
    else:
        parts.append("Aggregating records")

    for fil in plan.filters:
        if fil.op == "exists":
            parts.append(f"where {fil.field} is set")
        elif fil.op == "between":
            parts.append(f"where {fil.field} from {fil.start} to {fil.end}")
        else:
            parts.append(f"where {fil.field} {fil.op} {fil.value}")

    tr = plan.time_range
    if tr is not None:
        if tr.year and tr.month:
            parts.append(f"in {month_name(tr.month)} {tr.year} ({tr.field})")
        elif tr.year:
            parts.append(f"in {tr.year} ({tr.field})")
        elif tr.start or tr.end:
            parts.append(f"with {tr.field} from {tr.start or '...'} to {tr.end or '...'}")

    if plan.group_by:
        parts.append(f"grouped by {', '.join(group_output_key(g) for g in plan.group_by)}")

    if plan.sort:
        parts.append(
            "sorted by " + ", ".join(f"{s.by} ({s.dir})" for s in plan.sort)
        )

    if plan.limit:
        parts.append(f"limited to {plan.limit} results")

    return " ".join(parts) + "."
