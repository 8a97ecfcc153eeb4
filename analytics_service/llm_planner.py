"""
Plan acquisition from Google Gemini.

Architecture:
    User question + catalog  →  system instructions  →  Gemini  →  raw JSON text
    raw JSON text  →  plan_schema (strict)  →  UniversalPlan / Plan

The model is an untrusted collaborator.  ``GeminiOracle`` only moves text:
it never parses, repairs or guesses.  ``acquire_universal_plan`` and
``acquire_legacy_plan`` run the raw text through the plan grammar and turn
any mismatch into ``UpstreamPlanInvalid`` carrying the raw text.  Invalid
plans are never retried; only HTTP 429 responses are.
"""

import time
from typing import Any, Callable, Dict, Optional, Tuple

from google import genai
from google.genai import types

from catalog import COLLECTION, PLACEMENT_DATE_FIELD, TIMEZONE, catalog_lines
from config import GEMINI_API_KEY, GEMINI_MODEL, LLM_MAX_RETRIES, LLM_TIMEOUT_MS
from errors import PlannerUnavailable, UpstreamPlanInvalid
from logger import logger
from plan_schema import (
    Plan,
    PlanValidationError,
    UniversalPlan,
    parse_plan,
    parse_universal_plan,
)


# ---------------------------------------------------------------------------
# Instructions
# ---------------------------------------------------------------------------

def build_universal_instructions() -> str:
    """System instructions for the UniversalPlan planner."""
    # Use double-braces {{ }} to escape literal JSON braces inside f-string
    return f"""You convert natural language questions about the MongoDB
collection "{COLLECTION}" into a strict JSON "UniversalPlan" that the server
compiles to MongoDB.  Dates are interpreted in the {TIMEZONE} timezone.

FIELDS (canonical name (type): synonyms):
{catalog_lines()}

OUTPUT FORMAT:
{{
  "kind": "count" | "list" | "aggregate" | "chart",
  "filters": [{{"field": "<canonical>", "op": "<op>", "value": <value>, "start": <v>, "end": <v>}}],
  "timeRange": {{"field": "{PLACEMENT_DATE_FIELD}", "year": <int>, "month": <1-12>, "start": "<ISO date>", "end": "<ISO date>"}},
  "groupBy": ["<canonical>" | {{"timeBucket": {{"field": "<date field>", "unit": "day|week|month|quarter|year"}}}}],
  "metrics": [{{"op": "count|sum|avg|min|max", "field": "<numeric field>", "as": "<output name>"}}],
  "sort": [{{"by": "<field or output name>", "dir": "asc|desc"}}],
  "limit": <1-200>,
  "projection": ["<canonical>"],
  "chart": {{"kind": "bar|line|pie", "x": "<output key>", "y": ["<output name>"]}}
}}

OPERATORS:
  =, !=           exact match / not equal
  >, >=, <, <=    numeric or date comparison
  contains        case-insensitive substring (strings only)
  in              value is an array of allowed values
  between         start inclusive, end exclusive (use "start" / "end")
  exists          field is present and not null (no value)

RULES:
- Map user words to canonical field names via synonyms only.  Never invent
  field names.
- Time windows like "in July 2025" → "timeRange": {{"field": "{PLACEMENT_DATE_FIELD}", "year": 2025, "month": 7}}.
- A numeric answer → "kind": "count".
- "which X has most Y" (month/company/location with placements) → "kind":
  "aggregate", groupBy the dimension, "metrics": [{{"op": "count", "as": "count"}}],
  sort by count desc, limit 1.
- Charts → "kind": "chart" with "chart": {{"kind", "x", "y"}}.  A grouped
  field appears in rows under its own name; a time bucket appears as
  "<field>_<unit>" (e.g. "offerDate_month").
- Lists → "kind": "list" with "projection".
- "field" is required for sum / avg / min / max metrics.
- Return ONLY the JSON object.  No prose, no markdown.

EXAMPLES:
Q: "How many total students do we have?"
{{"kind":"count"}}

Q: "How many students got placed in July 2025?"
{{"kind":"count","timeRange":{{"field":"offerDate","year":2025,"month":7}},"filters":[{{"field":"offerDate","op":"exists"}}]}}

Q: "How many students have remaining fees?"
{{"kind":"count","filters":[{{"field":"remainingFee","op":">","value":0}}]}}

Q: "How many students are paid in full?"
{{"kind":"count","filters":[{{"field":"remainingFee","op":"<=","value":0}}]}}

Q: "In which month did most students get placed in 2025?"
{{"kind":"aggregate","timeRange":{{"field":"offerDate","year":2025}},"filters":[{{"field":"offerDate","op":"exists"}}],"groupBy":[{{"timeBucket":{{"field":"offerDate","unit":"month"}}}}],"metrics":[{{"op":"count","as":"count"}}],"sort":[{{"by":"count","dir":"desc"}}],"limit":1}}

Q: "Top 5 companies by placements in 2025"
{{"kind":"aggregate","timeRange":{{"field":"offerDate","year":2025}},"filters":[{{"field":"offerDate","op":"exists"}}],"groupBy":["companyName"],"metrics":[{{"op":"count","as":"count"}}],"sort":[{{"by":"count","dir":"desc"}}],"limit":5}}

Q: "Average package by company"
{{"kind":"aggregate","filters":[{{"field":"offerDate","op":"exists"}}],"groupBy":["companyName"],"metrics":[{{"op":"avg","field":"packageLPA","as":"avgPackage"}}],"sort":[{{"by":"avgPackage","dir":"desc"}}]}}

Q: "List students placed in Pune with package above 6 LPA"
{{"kind":"list","filters":[{{"field":"location","op":"contains","value":"Pune"}},{{"field":"packageLPA","op":">","value":6}}],"projection":["studentName","companyName","location","packageLPA","offerDate"]}}

Q: "Bar chart of placements by location in July 2025"
{{"kind":"chart","timeRange":{{"field":"offerDate","year":2025,"month":7}},"filters":[{{"field":"offerDate","op":"exists"}}],"groupBy":["location"],"metrics":[{{"op":"count","as":"count"}}],"chart":{{"kind":"bar","x":"location","y":["count"]}}}}
"""


def build_legacy_instructions() -> str:
    """System instructions for the intent planner behind the chat endpoint."""
    return """You are a data query planner for a MongoDB collection "PostPlacementOffer".
Each document has: studentName, offerDate(Date), joiningDate(Date), companyName, location,
hr:{name,contactNumber,email}, packageLPA(Number), totalPostPlacementFee(Number),
remainingPrePlacementFee(Number), discount(Number), installments[{label,amount}],
remainingFee(Number), remainingFeeNote(String).

Mapping rules:
- "placed" => documents where offerDate is set and falls in the requested time window.
- "in July 2025" => time.year=2025, time.month=7 (1..12).
- "package" refers to packageLPA.
- "at <company>" => filters.company; "in <city>" => filters.location.
- For "bar graph of students placed in <month> <year> and their package":
  intent=CHART_PLACEMENTS_BY_STUDENT,
  chart={kind:"bar", xKey:"studentName", yKeys:["packageLPA"]}
- For "monthly trend of placements in <year>": intent=CHART_MONTHLY_TREND.

Return ONLY strict JSON (no prose, no code fences) following the response schema.
"""


LEGACY_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "intent": {
            "type": "STRING",
            "enum": [
                "COUNT_PLACEMENTS",
                "LIST_PLACEMENTS",
                "CHART_PLACEMENTS_BY_STUDENT",
                "CHART_MONTHLY_TREND",
            ],
        },
        "time": {
            "type": "OBJECT",
            "properties": {
                "year": {"type": "INTEGER"},
                "month": {"type": "INTEGER"},
            },
        },
        "filters": {
            "type": "OBJECT",
            "properties": {
                "company": {"type": "STRING"},
                "location": {"type": "STRING"},
            },
        },
        "chart": {
            "type": "OBJECT",
            "properties": {
                "kind": {"type": "STRING", "enum": ["bar", "line", "pie"]},
                "xKey": {"type": "STRING"},
                "yKeys": {"type": "ARRAY", "items": {"type": "STRING"}},
            },
        },
    },
    "required": ["intent"],
}

UNIVERSAL_INSTRUCTIONS = build_universal_instructions()
LEGACY_INSTRUCTIONS = build_legacy_instructions()


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------

class GeminiOracle:
    """Text-in / JSON-text-out access to a Gemini model."""

    def __init__(
        self,
        api_key: str = GEMINI_API_KEY,
        model: str = GEMINI_MODEL,
        timeout_ms: int = LLM_TIMEOUT_MS,
        max_retries: int = LLM_MAX_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = (api_key or "").strip()
        self.model = model
        self.timeout_ms = timeout_ms
        self.max_retries = max_retries
        self._sleep = sleep
        self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if not self.configured:
            raise PlannerUnavailable("GEMINI_API_KEY is not configured")
        if self._client is None:
            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=self.timeout_ms),
            )
        return self._client

    def generate(
        self,
        system_instructions: str,
        message: str,
        response_schema: Optional[Dict[str, Any]] = None,
    ) -> str:
        client = self._get_client()
        config = types.GenerateContentConfig(
            system_instruction=system_instructions,
            temperature=0.0,
            max_output_tokens=1024,
            response_mime_type="application/json",
            response_schema=response_schema,
        )

        for attempt in range(self.max_retries + 1):
            start = time.time()
            try:
                response = client.models.generate_content(
                    model=self.model,
                    contents=message,
                    config=config,
                )
            except Exception as e:
                elapsed = time.time() - start
                rate_limited = getattr(e, "code", None) == 429 or "429" in str(e)
                if rate_limited and attempt < self.max_retries:
                    wait = 4 * (attempt + 1)  # 4s, 8s backoff
                    logger.warning(
                        "[LLM] Rate limited (attempt %d/%d), retrying in %ds...",
                        attempt + 1, self.max_retries + 1, wait,
                    )
                    self._sleep(wait)
                    continue
                logger.error("[LLM] Gemini call failed after %.2fs: %s", elapsed, e)
                raise PlannerUnavailable(f"Plan oracle call failed: {e}") from e

            elapsed = time.time() - start
            raw_text = response.text or ""
            logger.info(
                "[LLM] Gemini responded in %.2fs (%d chars)", elapsed, len(raw_text),
            )
            logger.debug("[LLM] Raw response: %s", raw_text[:500])
            return raw_text

        raise PlannerUnavailable("Plan oracle call failed: retries exhausted")


# ---------------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------------

def acquire_universal_plan(oracle, message: str) -> Tuple[str, UniversalPlan]:
    """Ask the oracle for a UniversalPlan and validate it."""
    raw = oracle.generate(UNIVERSAL_INSTRUCTIONS, message)
    try:
        plan = parse_universal_plan(raw)
    except PlanValidationError as e:
        logger.warning("[LLM] UniversalPlan rejected: %s | raw=%s", e, (raw or "")[:300])
        raise UpstreamPlanInvalid("Plan JSON invalid", raw=raw, issues=e.issues) from e
    return raw, plan


def acquire_legacy_plan(oracle, message: str) -> Tuple[str, Plan]:
    """Ask the oracle for an intent Plan and validate it."""
    raw = oracle.generate(LEGACY_INSTRUCTIONS, message, LEGACY_RESPONSE_SCHEMA)
    try:
        plan = parse_plan(raw)
    except PlanValidationError as e:
        logger.warning("[LLM] intent plan rejected: %s | raw=%s", e, (raw or "")[:300])
        raise UpstreamPlanInvalid(
            "LLM did not return valid JSON", raw=raw, issues=e.issues,
        ) from e
    return raw, plan
