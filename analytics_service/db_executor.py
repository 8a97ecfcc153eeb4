"""
Database executor: read-only count / find / aggregate against the
placement-offer collection, each call bounded by a server-side time budget.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from pymongo import MongoClient
from pymongo.errors import ExecutionTimeout, PyMongoError

from config import (
    COLLECTION_NAME,
    DATABASE_NAME,
    MONGO_URI,
    QUERY_TIMEOUT_MS,
    SERVER_SELECTION_TIMEOUT_MS,
)
from errors import ExecutionError
from logger import logger


# ---------------------- HELPERS ----------------------

def _build_projection(fields: Optional[Sequence[str]]) -> Optional[Dict[str, int]]:
    """Convert a list of field names into a MongoDB projection dict."""
    if not fields:
        return None
    return {f: 1 for f in fields}


def _safe_client(mongo_uri: str) -> MongoClient:
    """Create a MongoClient with timeout protection."""
    return MongoClient(
        mongo_uri,
        serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS,
        tz_aware=True,
    )


# ---------------------- STORE ----------------------

class PlacementStore:
    """The three read operations the query pipeline needs."""

    def __init__(self, collection, max_time_ms: int = QUERY_TIMEOUT_MS):
        self.collection = collection
        self.max_time_ms = max_time_ms

    def count(self, mongo_filter: Dict[str, Any]) -> int:
        try:
            return self.collection.count_documents(
                mongo_filter, maxTimeMS=self.max_time_ms,
            )
        except ExecutionTimeout as e:
            logger.error("count timed out: %s", e)
            raise ExecutionError("Query timed out after exceeding the time limit.") from e
        except PyMongoError as e:
            logger.error("count failed: %s", e)
            raise ExecutionError(f"Query execution error: {e}") from e

    def find(
        self,
        mongo_filter: Dict[str, Any],
        projection: Optional[Sequence[str]] = None,
        sort: Optional[List[Tuple[str, int]]] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        try:
            cursor = self.collection.find(
                mongo_filter,
                _build_projection(projection),
                max_time_ms=self.max_time_ms,
            )
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)
        except ExecutionTimeout as e:
            logger.error("find timed out: %s", e)
            raise ExecutionError("Query timed out after exceeding the time limit.") from e
        except PyMongoError as e:
            logger.error("find failed: %s", e)
            raise ExecutionError(f"Query execution error: {e}") from e

    def aggregate(self, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        try:
            return list(
                self.collection.aggregate(
                    pipeline,
                    maxTimeMS=self.max_time_ms,
                    allowDiskUse=False,
                )
            )
        except ExecutionTimeout as e:
            logger.error("aggregate timed out: %s", e)
            raise ExecutionError("Query timed out after exceeding the time limit.") from e
        except PyMongoError as e:
            logger.error("aggregate failed: %s", e)
            raise ExecutionError(f"Query execution error: {e}") from e


@contextmanager
def open_store(
    mongo_uri: str = MONGO_URI,
    database_name: str = DATABASE_NAME,
    collection_name: str = COLLECTION_NAME,
) -> Iterator[PlacementStore]:
    """Yield a store bound to a fresh client; the client is closed on exit."""
    client = _safe_client(mongo_uri)
    try:
        yield PlacementStore(client[database_name][collection_name])
    finally:
        client.close()
