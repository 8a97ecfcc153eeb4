"""
UniversalPlan-to-MongoDB compiler.

Pure functions: a validated plan goes in, a filter document or an
aggregation pipeline comes out.  Nothing here touches the database.

Filter operators:

  - ``=`` / ``!=``             → equality / ``$ne``
  - ``>`` ``>=`` ``<`` ``<=``  → range operators, merged per field so
    ``> 5`` and ``<= 10`` become ``{"$gt": 5, "$lte": 10}``; an operator
    the field already carries is ANDed through a top-level ``$and``
  - ``between``                → ``[start, end)``, either bound optional
  - ``contains``               → case-insensitive regex on the escaped value
  - ``in``                     → ``$in`` (scalars wrapped in a list)
  - ``exists``                 → present and non-null (``$ne: None``)

Values on catalog ``date`` fields are converted to UTC datetimes; a value
that does not read as a date rejects the plan.  A
``timeRange`` is installed last and replaces any predicate already built
for its field.

Aggregation stage order is fixed: ``$match`` → ``$addFields`` (time
buckets) → ``$group`` → ``$project`` → ``$sort`` → ``$limit``.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from catalog import PLACEMENT_DATE_FIELD, TIMEZONE, TYPE_DATE, field_type
from errors import UnsafePipeline, UpstreamPlanInvalid
from plan_schema import (
    Plan,
    PlanFilter,
    TimeRange,
    UniversalPlan,
    group_output_key,
    metric_output_name,
)
from time_window import month_range, parse_instant, year_range

MAX_LIMIT = 200
DEFAULT_LIST_LIMIT = 50

# Operators that write data or run arbitrary code.
FORBIDDEN_OPERATORS = frozenset({
    "$out", "$merge", "$function", "$accumulator", "$where",
})

_RANGE_OPS = {">": "$gt", ">=": "$gte", "<": "$lt", "<=": "$lte"}

_METRIC_OPS = {"sum": "$sum", "avg": "$avg", "min": "$min", "max": "$max"}


def _parse_date(value: Any, path: str) -> Any:
    if value is None:
        return None
    parsed = parse_instant(value)
    if not isinstance(parsed, datetime):
        message = f"{value!r} is not a date"
        raise UpstreamPlanInvalid(
            "Plan JSON invalid",
            issues=[{"path": path, "message": message}],
        )
    return parsed


def _coerce(field: str, value: Any, path: str) -> Any:
    """Convert date-like values for date-typed catalog fields."""
    if field_type(field) != TYPE_DATE:
        return value
    if isinstance(value, list):
        return [_parse_date(v, f"{path}.{i}") for i, v in enumerate(value)]
    return _parse_date(value, path)


def _merge(match: Dict[str, Any], field: str, ops: Dict[str, Any]) -> None:
    """AND ``ops`` into the predicate already built for ``field``.

    An operator the field already carries goes into a top-level ``$and``
    so neither condition replaces the other.
    """
    if field not in match:
        match[field] = dict(ops)
        return
    existing = match[field]
    if isinstance(existing, dict) and all(k.startswith("$") for k in existing):
        merged = dict(existing)
    else:
        merged = {"$eq": existing}
    if any(op in merged for op in ops):
        match.setdefault("$and", []).append({field: dict(ops)})
        return
    merged.update(ops)
    match[field] = merged


def _contains_predicate(value: Any) -> Dict[str, Any]:
    return {"$regex": re.escape(str(value if value is not None else "")), "$options": "i"}


def _apply_filter(match: Dict[str, Any], fil: PlanFilter, path: str) -> None:
    field = fil.field
    op = fil.op

    if op == "=":
        value = _coerce(field, fil.value, f"{path}.value")
        if field in match:
            _merge(match, field, {"$eq": value})
        else:
            match[field] = value
    elif op == "!=":
        _merge(match, field, {"$ne": _coerce(field, fil.value, f"{path}.value")})
    elif op in _RANGE_OPS:
        _merge(match, field, {_RANGE_OPS[op]: _coerce(field, fil.value, f"{path}.value")})
    elif op == "contains":
        _merge(match, field, _contains_predicate(fil.value))
    elif op == "in":
        values = fil.value if isinstance(fil.value, list) else [fil.value]
        _merge(match, field, {"$in": _coerce(field, values, f"{path}.value")})
    elif op == "between":
        bounds: Dict[str, Any] = {}
        if fil.start is not None:
            bounds["$gte"] = _coerce(field, fil.start, f"{path}.start")
        if fil.end is not None:
            bounds["$lt"] = _coerce(field, fil.end, f"{path}.end")
        if bounds:
            _merge(match, field, bounds)
    elif op == "exists":
        _merge(match, field, {"$ne": None})


def _time_range_predicate(time_range: TimeRange) -> Optional[Dict[str, Any]]:
    if time_range.year and time_range.month:
        start, end = month_range(time_range.year, time_range.month)
        return {"$gte": start, "$lt": end}
    if time_range.year:
        start, end = year_range(time_range.year)
        return {"$gte": start, "$lt": end}
    bounds: Dict[str, Any] = {}
    if time_range.start:
        bounds["$gte"] = _parse_date(time_range.start, "timeRange.start")
    if time_range.end:
        bounds["$lt"] = _parse_date(time_range.end, "timeRange.end")
    return bounds or None


def compile_filter(plan: UniversalPlan) -> Dict[str, Any]:
    """Build the MongoDB filter document for a plan."""
    match: Dict[str, Any] = {}
    for i, fil in enumerate(plan.filters):
        _apply_filter(match, fil, f"filters.{i}")

    if plan.time_range is not None:
        predicate = _time_range_predicate(plan.time_range)
        if predicate is not None:
            field = plan.time_range.field or PLACEMENT_DATE_FIELD
            match[field] = predicate
            extra = [c for c in match.pop("$and", []) if field not in c]
            if extra:
                match["$and"] = extra

    return match


def compile_aggregation(plan: UniversalPlan) -> List[Dict[str, Any]]:
    """Lower a plan into an aggregation pipeline."""
    pipeline: List[Dict[str, Any]] = []

    match = compile_filter(plan)
    if match:
        pipeline.append({"$match": match})

    if plan.group_by or plan.metrics:
        timezone = plan.time_range.timezone if plan.time_range else TIMEZONE
        group_id: Dict[str, Any] = {}
        add_fields: Dict[str, Any] = {}

        for idx, entry in enumerate(plan.group_by):
            key = group_output_key(entry)
            if isinstance(entry, str):
                group_id[key] = f"${entry}"
            else:
                bucket = entry.time_bucket
                private = f"__tb{idx}"
                add_fields[private] = {
                    "$dateTrunc": {
                        "date": f"${bucket.field}",
                        "unit": bucket.unit,
                        "timezone": timezone,
                    }
                }
                group_id[key] = f"${private}"

        if add_fields:
            pipeline.append({"$addFields": add_fields})

        group: Dict[str, Any] = {"_id": group_id or None}
        for metric in plan.metrics:
            name = metric_output_name(metric)
            if metric.op == "count":
                group[name] = {"$sum": 1}
            else:
                group[name] = {_METRIC_OPS[metric.op]: f"${metric.field}"}
        pipeline.append({"$group": group})

        project: Dict[str, Any] = {}
        for key in group_id:
            project[key] = f"$_id.{key}"
        for metric in plan.metrics:
            name = metric_output_name(metric)
            project[name] = f"${name}"
        if project:
            project["_id"] = 0
            pipeline.append({"$project": project})

    if plan.sort:
        pipeline.append({
            "$sort": {s.by: 1 if s.dir == "asc" else -1 for s in plan.sort}
        })

    if plan.limit:
        pipeline.append({"$limit": min(plan.limit, MAX_LIMIT)})

    return pipeline


def compile_find(plan: UniversalPlan) -> Dict[str, Any]:
    """Sort and limit for a list query; ``offerDate`` ascending by default."""
    if plan.sort:
        sort = [(s.by, 1 if s.dir == "asc" else -1) for s in plan.sort]
    else:
        sort = [(PLACEMENT_DATE_FIELD, 1)]
    return {
        "filter": compile_filter(plan),
        "sort": sort,
        "limit": min(plan.limit or DEFAULT_LIST_LIMIT, MAX_LIMIT),
    }


# ---------------------- LEGACY INTENT PLANS ----------------------


def compile_legacy_match(plan: Plan) -> Dict[str, Any]:
    """Filter for the intent planner.

    Without any time window "placed" means ``offerDate`` is set.
    """
    match: Dict[str, Any] = {}
    filters = plan.filters
    if filters is not None:
        if filters.company:
            match["companyName"] = _contains_predicate(filters.company)
        if filters.location:
            match["location"] = _contains_predicate(filters.location)

    time = plan.time
    if time is not None and time.year and time.month:
        start, end = month_range(time.year, time.month)
        match[PLACEMENT_DATE_FIELD] = {"$gte": start, "$lt": end}
    elif time is not None and time.year:
        start, end = year_range(time.year)
        match[PLACEMENT_DATE_FIELD] = {"$gte": start, "$lt": end}
    else:
        match[PLACEMENT_DATE_FIELD] = {"$ne": None}
    return match


def compile_students_chart(match: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"$match": match},
        {"$project": {"_id": 0, "studentName": 1, "packageLPA": 1}},
        {"$sort": {"studentName": 1}},
    ]


def compile_monthly_trend(year: int, timezone: str = TIMEZONE) -> List[Dict[str, Any]]:
    """Placements per civil month for ``year``."""
    start, end = year_range(year)
    return [
        {"$match": {PLACEMENT_DATE_FIELD: {"$gte": start, "$lt": end}}},
        {
            "$group": {
                "_id": {
                    "$month": {"date": f"${PLACEMENT_DATE_FIELD}", "timezone": timezone}
                },
                "count": {"$sum": 1},
            }
        },
        {"$project": {"_id": 0, "month": "$_id", "count": 1}},
        {"$sort": {"month": 1}},
    ]


# ---------------------- SAFETY GATE ----------------------


def _find_forbidden(node: Any) -> Optional[str]:
    if isinstance(node, dict):
        for key, value in node.items():
            if key in FORBIDDEN_OPERATORS:
                return key
            found = _find_forbidden(value)
            if found:
                return found
    elif isinstance(node, list):
        for item in node:
            found = _find_forbidden(item)
            if found:
                return found
    return None


def assert_safe(query: Any) -> None:
    """Reject a filter or pipeline that writes data or runs server-side code.

    Plan values are oracle output, so the scan covers every nesting level,
    not only top-level stages.
    """
    found = _find_forbidden(query)
    if found:
        raise UnsafePipeline(f"Forbidden operator in pipeline: {found}")
