"""
Plan grammars and the validation boundary for oracle output.

Two grammars are accepted:

- ``UniversalPlan``: the general count / list / aggregate / chart plan
  compiled by ``plan_compiler``.
- ``Plan``: the older intent-based grammar used by the chat endpoint.

Oracle output is untrusted: it is parsed strictly (no string-to-number
coercion, enum values must match exactly) and any mismatch raises
``PlanValidationError`` with one issue per offending field path.  Field
names are then checked against the catalog by ``check_field_references``
before anything is compiled.
"""

import json
from difflib import get_close_matches
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from catalog import FIELDS, PLACEMENT_DATE_FIELD, TIMEZONE
from errors import UnknownFieldReference

FilterOp = Literal[
    "=", "!=", ">", ">=", "<", "<=", "contains", "in", "between", "exists",
]
MetricOp = Literal["count", "sum", "avg", "min", "max"]
TimeUnit = Literal["day", "week", "month", "quarter", "year"]
ChartKind = Literal["bar", "line", "pie"]
PlanKind = Literal["count", "list", "aggregate", "chart"]
Intent = Literal[
    "COUNT_PLACEMENTS",
    "LIST_PLACEMENTS",
    "CHART_PLACEMENTS_BY_STUDENT",
    "CHART_MONTHLY_TREND",
]

Month = Annotated[int, Field(strict=True, ge=1, le=12)]
Year = Annotated[int, Field(strict=True, ge=1970, le=9998)]
Limit = Annotated[int, Field(strict=True, ge=1, le=200)]


class PlanValidationError(ValueError):
    """Oracle output that does not match a plan grammar."""

    def __init__(self, issues: List[Dict[str, str]]):
        self.issues = issues
        summary = "; ".join(f"{i['path']}: {i['message']}" for i in issues)
        super().__init__(f"Invalid plan: {summary}")


class _PlanModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------- UNIVERSAL PLAN ----------------------


class PlanFilter(_PlanModel):
    field: StrictStr
    op: FilterOp
    value: Any = None
    start: Any = None
    end: Any = None


class TimeRange(_PlanModel):
    field: StrictStr = PLACEMENT_DATE_FIELD
    year: Optional[Year] = None
    month: Optional[Month] = None
    start: Optional[StrictStr] = None
    end: Optional[StrictStr] = None
    timezone: StrictStr = TIMEZONE


class TimeBucket(_PlanModel):
    field: StrictStr
    unit: TimeUnit


class TimeBucketKey(_PlanModel):
    time_bucket: TimeBucket


GroupKey = Union[StrictStr, TimeBucketKey]


class Metric(_PlanModel):
    op: MetricOp
    field: Optional[StrictStr] = None
    as_: Optional[StrictStr] = Field(default=None, alias="as")

    @model_validator(mode="after")
    def _field_required(self):
        if self.op != "count" and not self.field:
            raise ValueError(f"field is required for '{self.op}' metrics")
        return self


class SortKey(_PlanModel):
    by: StrictStr
    dir: Literal["asc", "desc"] = "desc"


class ChartSpec(_PlanModel):
    kind: Optional[ChartKind] = None
    x: Optional[StrictStr] = None
    y: Optional[List[StrictStr]] = None


class UniversalPlan(_PlanModel):
    kind: PlanKind = "count"
    filters: List[PlanFilter] = Field(default_factory=list)
    time_range: Optional[TimeRange] = None
    group_by: List[GroupKey] = Field(default_factory=list)
    metrics: List[Metric] = Field(default_factory=list)
    sort: List[SortKey] = Field(default_factory=list)
    limit: Optional[Limit] = None
    projection: Optional[List[StrictStr]] = None
    chart: Optional[ChartSpec] = None
    answer_template: Optional[StrictStr] = None


# ---------------------- LEGACY INTENT PLAN ----------------------


class PlanTime(_PlanModel):
    year: Optional[Year] = None
    month: Optional[Month] = None


class PlanFilters(_PlanModel):
    company: Optional[StrictStr] = None
    location: Optional[StrictStr] = None


class LegacyChart(_PlanModel):
    kind: Optional[ChartKind] = None
    x_key: Optional[StrictStr] = None
    y_keys: Optional[List[StrictStr]] = None


class Plan(_PlanModel):
    intent: Intent
    time: Optional[PlanTime] = None
    filters: Optional[PlanFilters] = None
    chart: Optional[LegacyChart] = None


# ---------------------- VALIDATION ----------------------


def _issues_from(exc: ValidationError) -> List[Dict[str, str]]:
    issues = []
    for err in exc.errors():
        path = ".".join(str(part) for part in err["loc"]) or "$"
        issues.append({"path": path, "message": err["msg"]})
    return issues


def _validate(model, data: Any):
    if not isinstance(data, dict):
        raise PlanValidationError(
            [{"path": "$", "message": "plan must be a JSON object"}]
        )
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise PlanValidationError(_issues_from(exc)) from exc


def _loads(raw_text: str) -> Any:
    try:
        return json.loads(raw_text)
    except (TypeError, ValueError) as exc:
        raise PlanValidationError(
            [{"path": "$", "message": f"not valid JSON: {exc}"}]
        ) from exc


def validate_universal_plan(data: Any) -> UniversalPlan:
    return _validate(UniversalPlan, data)


def validate_plan(data: Any) -> Plan:
    return _validate(Plan, data)


def parse_universal_plan(raw_text: str) -> UniversalPlan:
    return validate_universal_plan(_loads(raw_text))


def parse_plan(raw_text: str) -> Plan:
    return validate_plan(_loads(raw_text))


def plan_to_wire(plan: BaseModel) -> Dict[str, Any]:
    """camelCase dict of a plan, unset values omitted."""
    return plan.model_dump(by_alias=True, exclude_none=True)


# ---------------------- OUTPUT NAMES ----------------------


def _flat(name: str) -> str:
    # $group / $project output names cannot contain dots
    return name.replace(".", "_")


def group_output_key(entry: GroupKey) -> str:
    """Top-level name a groupBy entry gets in aggregate rows."""
    if isinstance(entry, str):
        return _flat(entry)
    bucket = entry.time_bucket
    return f"{_flat(bucket.field)}_{bucket.unit}"


def metric_output_name(metric: Metric) -> str:
    if metric.as_:
        return metric.as_
    if metric.field:
        return f"{metric.op}_{_flat(metric.field)}"
    return metric.op


# ---------------------- FIELD ALLOW-LIST ----------------------


def _suggest_field(field: str) -> str:
    """Return a 'did you mean?' hint built from names and synonyms."""
    lookup: Dict[str, str] = {}
    for name, spec in FIELDS.items():
        lookup.setdefault(name.lower(), name)
        for synonym in spec.get("synonyms", []):
            lookup.setdefault(synonym.lower(), name)

    matches = get_close_matches(field.lower(), list(lookup), n=3, cutoff=0.6)
    suggestions: List[str] = []
    for m in matches:
        if lookup[m] not in suggestions:
            suggestions.append(lookup[m])
    if suggestions:
        return f" Did you mean: {', '.join(suggestions)}?"
    return ""


def _require_known(field: str, path: str, allowed: Set[str]) -> None:
    if field not in allowed:
        raise UnknownFieldReference(
            f"Field '{field}' at {path} is not in the catalog.{_suggest_field(field)}",
            field=field,
            path=path,
        )


def check_field_references(plan: UniversalPlan) -> None:
    """Reject plans that reference fields outside the catalog.

    ``sort[].by`` may also name an aggregate output (metric name or group
    key) since sorting happens after the group stage.
    """
    known = set(FIELDS)

    for i, f in enumerate(plan.filters):
        _require_known(f.field, f"filters.{i}.field", known)

    if plan.time_range is not None:
        _require_known(plan.time_range.field, "timeRange.field", known)

    for i, entry in enumerate(plan.group_by):
        if isinstance(entry, str):
            _require_known(entry, f"groupBy.{i}", known)
        else:
            _require_known(
                entry.time_bucket.field, f"groupBy.{i}.timeBucket.field", known,
            )

    for i, metric in enumerate(plan.metrics):
        if metric.field is not None:
            _require_known(metric.field, f"metrics.{i}.field", known)

    for i, name in enumerate(plan.projection or []):
        _require_known(name, f"projection.{i}", known)

    sortable = (
        known
        | {group_output_key(g) for g in plan.group_by}
        | {metric_output_name(m) for m in plan.metrics}
    )
    for i, key in enumerate(plan.sort):
        _require_known(key.by, f"sort.{i}.by", sortable)
