"""In-memory stand-ins for the plan oracle and the placement store."""

import json
from typing import Any, Dict, List, Optional


class FakeOracle:
    """Returns canned text and records every prompt it was given."""

    configured = True

    def __init__(self, response: Any):
        self.response = response if isinstance(response, str) else json.dumps(response)
        self.calls: List[Dict[str, Any]] = []

    def generate(self, system_instructions, message, response_schema=None):
        self.calls.append({
            "system": system_instructions,
            "message": message,
            "response_schema": response_schema,
        })
        return self.response


class FakeStore:
    """Records the queries it receives and answers with fixed results."""

    def __init__(
        self,
        count_result: int = 0,
        rows: Optional[List[Dict[str, Any]]] = None,
        error: Optional[Exception] = None,
    ):
        self.count_result = count_result
        self.rows = rows or []
        self.error = error
        self.count_calls: List[Dict[str, Any]] = []
        self.find_calls: List[Dict[str, Any]] = []
        self.aggregate_calls: List[List[Dict[str, Any]]] = []

    @property
    def touched(self) -> bool:
        return bool(self.count_calls or self.find_calls or self.aggregate_calls)

    def count(self, mongo_filter):
        self.count_calls.append(mongo_filter)
        if self.error:
            raise self.error
        return self.count_result

    def find(self, mongo_filter, projection=None, sort=None, limit=0):
        self.find_calls.append({
            "filter": mongo_filter,
            "projection": projection,
            "sort": sort,
            "limit": limit,
        })
        if self.error:
            raise self.error
        return [dict(r) for r in self.rows]

    def aggregate(self, pipeline):
        self.aggregate_calls.append(pipeline)
        if self.error:
            raise self.error
        return [dict(r) for r in self.rows]
