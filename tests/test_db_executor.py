import pytest
from pymongo.errors import ExecutionTimeout, OperationFailure

from db_executor import PlacementStore
from errors import ExecutionError


class StubCursor:
    def __init__(self, docs):
        self.docs = docs
        self.sorted_by = None
        self.limited_to = None

    def sort(self, keys):
        self.sorted_by = keys
        return self

    def limit(self, n):
        self.limited_to = n
        return self

    def __iter__(self):
        return iter(self.docs)


class StubCollection:
    def __init__(self, docs=None, error=None):
        self.docs = docs or []
        self.error = error
        self.calls = []
        self.cursor = None

    def count_documents(self, mongo_filter, **kwargs):
        self.calls.append(("count", mongo_filter, kwargs))
        if self.error:
            raise self.error
        return len(self.docs)

    def find(self, mongo_filter, projection=None, **kwargs):
        self.calls.append(("find", mongo_filter, projection, kwargs))
        if self.error:
            raise self.error
        self.cursor = StubCursor(self.docs)
        return self.cursor

    def aggregate(self, pipeline, **kwargs):
        self.calls.append(("aggregate", pipeline, kwargs))
        if self.error:
            raise self.error
        return iter(self.docs)


def test_count_carries_time_budget():
    coll = StubCollection(docs=[{}, {}])
    store = PlacementStore(coll, max_time_ms=1234)
    assert store.count({"location": "Pune"}) == 2
    assert coll.calls == [("count", {"location": "Pune"}, {"maxTimeMS": 1234})]


def test_find_applies_projection_sort_and_limit():
    coll = StubCollection(docs=[{"studentName": "Asha"}])
    store = PlacementStore(coll, max_time_ms=500)

    rows = store.find({}, ["studentName", "offerDate"], [("offerDate", 1)], 10)

    assert rows == [{"studentName": "Asha"}]
    _, _, projection, kwargs = coll.calls[0]
    assert projection == {"studentName": 1, "offerDate": 1}
    assert kwargs == {"max_time_ms": 500}
    assert coll.cursor.sorted_by == [("offerDate", 1)]
    assert coll.cursor.limited_to == 10


def test_aggregate_is_bounded_and_in_memory():
    coll = StubCollection(docs=[{"count": 3}])
    store = PlacementStore(coll, max_time_ms=500)
    assert store.aggregate([{"$match": {}}]) == [{"count": 3}]
    assert coll.calls[0][2] == {"maxTimeMS": 500, "allowDiskUse": False}


def test_timeout_becomes_execution_error():
    store = PlacementStore(StubCollection(error=ExecutionTimeout("operation exceeded time limit")))
    with pytest.raises(ExecutionError) as exc_info:
        store.count({})
    assert "timed out" in exc_info.value.message


def test_server_error_becomes_execution_error():
    store = PlacementStore(StubCollection(error=OperationFailure("bad query")))
    with pytest.raises(ExecutionError) as exc_info:
        store.aggregate([])
    assert "bad query" in exc_info.value.message
