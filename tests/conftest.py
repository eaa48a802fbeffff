import random
import threading
from types import SimpleNamespace

import pytest
from bson import ObjectId # type: ignore


class FakeCollection:
    """In-memory stand-in for the few pymongo Collection calls the workload makes."""

    def __init__(self, name, docs=None):
        self.name = name
        self.docs = {}
        self.pipelines = []
        self.bulk_requests = []
        self.write_concern = None
        self.failures = {}
        for doc in docs or []:
            self.docs[doc.get("_id", ObjectId())] = doc

    def _maybe_fail(self, method):
        error = self.failures.get(method)
        if error is not None:
            raise error

    def estimated_document_count(self):
        self._maybe_fail("estimated_document_count")
        return len(self.docs)

    def insert_many(self, docs, ordered=True):
        self._maybe_fail("insert_many")
        inserted_ids = []
        for doc in docs:
            doc.setdefault("_id", ObjectId())
            self.docs[doc["_id"]] = doc
            inserted_ids.append(doc["_id"])
        return SimpleNamespace(inserted_ids=inserted_ids)

    def aggregate(self, pipeline):
        self._maybe_fail("aggregate")
        self.pipelines.append(pipeline)
        first = pipeline[0]
        if "$sample" in first:
            size = min(first["$sample"]["size"], len(self.docs))
            return iter([{"_id": _id} for _id in random.sample(list(self.docs), size)])
        return iter([])

    def delete_many(self, filter):
        self._maybe_fail("delete_many")
        if "$sampleRate" in filter:
            doomed = [_id for _id in self.docs if random.random() < filter["$sampleRate"]]
        else:
            doomed = [_id for _id in filter["_id"]["$in"] if _id in self.docs]
        for _id in doomed:
            del self.docs[_id]
        return SimpleNamespace(deleted_count=len(doomed))

    def create_index(self, keys):
        self.indexes = getattr(self, "indexes", []) + [keys]
        return "_".join(f"{field}_{kind}" for field, kind in keys)

    def with_options(self, write_concern=None):
        self.write_concern = write_concern
        return self

    def bulk_write(self, requests, ordered=True):
        self._maybe_fail("bulk_write")
        self.bulk_requests.extend(requests)
        return SimpleNamespace(matched_count=len(requests))


class FakeDatabase:
    def __init__(self, name="test"):
        self.name = name
        self.collections = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def get_collection(self, name, write_concern=None):
        collection = self[name]
        collection.write_concern = write_concern
        return collection

    def list_collection_names(self):
        return list(self.collections)

    def create_collection(self, name):
        return self[name]


class FakeAdmin:
    def __init__(self, client):
        self.client = client
        self.calls = []

    def command(self, name, value=1, **kwargs):
        self.calls.append((name, value, kwargs))
        failure = self.client.failures.get(name)
        if callable(failure):
            failure = failure(value, kwargs)
        if failure is not None:
            raise failure
        if name == "listShards":
            return {"shards": [{"_id": s, "host": f"{s}/localhost:27018"} for s in self.client.shards], "ok": 1}
        if name == "shardCollection":
            self.client.shard(value, kwargs["key"])
        return {"ok": 1}

    def calls_named(self, name):
        return [(value, kwargs) for called, value, kwargs in self.calls if called == name]


class FakeConfigCollection:
    def __init__(self, docs):
        self.docs = docs

    def find_one(self, filter):
        for doc in self.docs:
            if doc.get("_id") == filter["_id"]:
                return doc
        return None

    def find(self, filter, projection=None):
        clauses = filter.get("$or", [filter])
        return [doc for doc in self.docs if any(all(doc.get(k) == v for k, v in c.items()) for c in clauses)]


class FakeClient:
    """Just enough of MongoClient for the admin commands and config reads of the setup code."""

    def __init__(self, shards=("shA", "shB", "shC")):
        self.shards = list(shards)
        self.failures = {}
        self.admin = FakeAdmin(self)
        self.config = {
            "collections": FakeConfigCollection([]),
            "chunks": FakeConfigCollection([]),
        }

    def __getitem__(self, name):
        assert name == "config"
        return self.config

    def shard(self, ns, key, uuid=None):
        self.config["collections"].docs.append({"_id": ns, "key": key, "uuid": uuid})


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def stop():
    return threading.Event()


@pytest.fixture(autouse=True)
def seeded_random():
    random.seed(1234)


@pytest.fixture(autouse=True)
def no_pause(monkeypatch):
    import app
    monkeypatch.setattr(app, "FAILURE_PAUSE", 0)
