"""
Lexical heuristics over the raw user message.

These fill gaps the oracle left empty and repair plans where it misread
the question.  They are keyword matches, not a parser: false positives
("top" inside "laptop") are a known limitation.  Rule order matters; the
first month name found wins even if the message names two months.
"""

import re
from datetime import date
from typing import Dict, List, Optional

from catalog import PLACEMENT_DATE_FIELD
from plan_schema import (
    GroupKey,
    Metric,
    Plan,
    PlanFilter,
    PlanTime,
    SortKey,
    TimeBucket,
    TimeBucketKey,
    TimeRange,
    UniversalPlan,
)

# Scanned January -> December, first hit wins.
MONTH_WORDS: List[List[str]] = [
    ["january", "jan"],
    ["february", "feb"],
    ["march", "mar"],
    ["april", "apr"],
    ["may"],
    ["june", "jun"],
    ["july", "jul"],
    ["august", "aug"],
    ["september", "sep", "sept"],
    ["october", "oct"],
    ["november", "nov"],
    ["december", "dec"],
]

_YEAR_RE = re.compile(r"\b(20\d{2})\b")

_SUPERLATIVE_RE = re.compile(r"(most|maximum|highest|top|max|peak)")
_WHICH_RE = re.compile(r"(which|what)")
_RANKING_SUBJECT_RE = re.compile(r"(plac|hired|hire|placement)")

_PLACEMENT_RE = re.compile(r"(plac|placement|placed|offer)")
_OUTSTANDING_RE = re.compile(r"(remaining|outstanding|due|dues|balance|unpaid)")
_PAID_FULL_RE = re.compile(r"(paid in full|no due|no dues|0 due|zero due|account closed)")

FEE_FIELD = "remainingFee"


def _lower(text: Optional[str]) -> str:
    return (text or "").lower()


def infer_time_from_message(text: Optional[str]) -> Dict[str, int]:
    """Pull ``month`` (1..12) and ``year`` (2000-2099) out of free text.

    "in July 2025" -> {"month": 7, "year": 2025}; "in 2025" -> {"year": 2025}.
    """
    m = _lower(text)
    found: Dict[str, int] = {}

    for i, words in enumerate(MONTH_WORDS):
        if any(w in m for w in words):
            found["month"] = i + 1
            break

    year_match = _YEAR_RE.search(m)
    if year_match:
        found["year"] = int(year_match.group(1))

    return found


def looks_like_ranking_question(text: Optional[str]) -> bool:
    m = _lower(text)
    has_superlative = bool(_SUPERLATIVE_RE.search(m))
    has_which = bool(_WHICH_RE.search(m))
    about_placements = bool(_RANKING_SUBJECT_RE.search(m))
    return has_superlative and (has_which or has_superlative) and about_placements


def _month_bucket() -> TimeBucketKey:
    return TimeBucketKey(
        time_bucket=TimeBucket(field=PLACEMENT_DATE_FIELD, unit="month"),
    )


def guess_group_by_from_message(text: Optional[str]) -> GroupKey:
    m = _lower(text)
    if "month" in m:
        return _month_bucket()
    if "company" in m:
        return "companyName"
    if "location" in m or "city" in m:
        return "location"
    return _month_bucket()


def _has_filter(filters: List[PlanFilter], field: str, op: str) -> bool:
    return any(f.field == field and f.op == op for f in filters)


def apply_semantic_postprocessing(plan: UniversalPlan, text: Optional[str]) -> UniversalPlan:
    """Return a copy of ``plan`` with message-driven filter repairs applied.

    1. Drop an ``offerDate exists`` filter the user never asked for.
    2. Outstanding / due / unpaid vocabulary -> ``remainingFee > 0``.
    3. Paid-in-full vocabulary -> ``remainingFee <= 0``.

    Filters are only added when no filter with the same field and operator
    exists, so applying this twice is the same as applying it once.
    """
    m = _lower(text)
    filters = list(plan.filters)

    if not _PLACEMENT_RE.search(m):
        filters = [
            f for f in filters
            if not (f.field == PLACEMENT_DATE_FIELD and f.op == "exists")
        ]

    if _OUTSTANDING_RE.search(m) and not _has_filter(filters, FEE_FIELD, ">"):
        filters.append(PlanFilter(field=FEE_FIELD, op=">", value=0))

    if _PAID_FULL_RE.search(m) and not _has_filter(filters, FEE_FIELD, "<="):
        filters.append(PlanFilter(field=FEE_FIELD, op="<=", value=0))

    return plan.model_copy(update={"filters": filters, "kind": plan.kind or "count"})


def build_ranking_plan(text: Optional[str]) -> UniversalPlan:
    """Top-1 ranking aggregate used when the oracle answered a "which ... most"
    question with a plain count."""
    inferred = infer_time_from_message(text)
    time_range = None
    if inferred.get("year"):
        time_range = TimeRange(field=PLACEMENT_DATE_FIELD, year=inferred["year"])

    return UniversalPlan(
        kind="aggregate",
        filters=[PlanFilter(field=PLACEMENT_DATE_FIELD, op="exists")],
        group_by=[guess_group_by_from_message(text)],
        metrics=[Metric(op="count", as_="count")],
        sort=[SortKey(by="count", dir="desc")],
        limit=1,
        time_range=time_range,
    )


def fill_legacy_time(plan: Plan, text: Optional[str], today: date) -> Plan:
    """Fill month / year the intent planner left out.

    A month without a year means the current civil year.
    """
    inferred = infer_time_from_message(text)
    current = plan.time or PlanTime()
    month = current.month or inferred.get("month")
    year = current.year or inferred.get("year")
    if month and not year:
        year = today.year
    return plan.model_copy(update={"time": PlanTime(year=year, month=month)})
