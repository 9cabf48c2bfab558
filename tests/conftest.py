"""Shared fakes for provider tests.

Backends are replaced by in-memory doubles shaped like the clients the
adapters talk to: an aiohttp-style session (Cosmos REST, Identity Toolkit,
Supabase health probe), a Firestore client and a Supabase async client.
"""

import asyncio
import json
import operator
import os
import re
import sys
import urllib.parse
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import Mock

import pytest
from google.api_core.exceptions import NotFound

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from dbconnector.utils.logging import setup_logging


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Route structlog through the standard library so stdout stays clean."""
    setup_logging(log_level="INFO", log_format="json")


COMPARATORS = {
    "==": operator.eq,
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}


async def settle(rounds: int = 10):
    """Let scheduled callbacks and background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualClock:
    """Injectable ``sleep`` whose sleepers only wake on ``advance()``."""

    def __init__(self):
        self.sleepers: List[asyncio.Future] = []
        self.delays: List[float] = []

    async def sleep(self, delay: float):
        future = asyncio.get_running_loop().create_future()
        self.sleepers.append(future)
        self.delays.append(delay)
        await future

    def advance(self):
        sleepers, self.sleepers = self.sleepers, []
        for future in sleepers:
            if not future.done():
                future.set_result(None)


class Recorder:
    """Snapshot callback that keeps every delivery."""

    def __init__(self):
        self.calls = []

    def __call__(self, data, error):
        self.calls.append((data, error))

    @property
    def data(self):
        return [data for data, error in self.calls if error is None]

    @property
    def errors(self):
        return [error for data, error in self.calls if error is not None]


# HTTP

class FakeResponse:
    """aiohttp response stand-in usable as ``async with``."""

    def __init__(
        self,
        status: int = 200,
        json_data: Any = None,
        text: str = "",
        headers: Optional[Dict[str, str]] = None,
        reason: Optional[str] = None,
        hang: bool = False
    ):
        self.status = status
        self._json = json_data
        self._text = text or (json.dumps(json_data) if json_data is not None else "")
        self.headers = headers or {}
        self.reason = reason
        self.hang = hang

    async def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    async def text(self):
        return self._text

    async def __aenter__(self):
        if self.hang:
            await asyncio.Event().wait()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeHttpSession:
    """Routes every request to ``handler(method, url, **kwargs)``."""

    def __init__(self, handler: Callable[..., FakeResponse]):
        self.handler = handler
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.handler(method, url, **kwargs)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    async def close(self):
        self.closed = True


# Azure Cosmos DB

COSMOS_ENDPOINT = "https://fake-cosmos.documents.azure.com:443"
COSMOS_KEY = "c2VjcmV0LW1hc3Rlci1rZXk="

QUERY_PATTERN = re.compile(r'^SELECT \* FROM c(?: WHERE c\[(".*?")\] (>=|<=|=|>|<) (.+))?$')


class FakeCosmos:
    """In-memory Cosmos SQL REST API.

    ``fail`` maps an operation (``probe``, ``query``, ``upsert``, ``replace``,
    ``delete``) to the HTTP status it should answer with.
    """

    def __init__(self, database_id: str = "TestDB", page_size: Optional[int] = None):
        self.database_id = database_id
        self.page_size = page_size
        self.containers: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.fail: Dict[str, int] = {}
        self.queries: List[str] = []
        self.replaced: List[Dict[str, Any]] = []
        self.session = FakeHttpSession(self.handle)
        self._etag = 0

    def seed(self, container: str, *documents):
        for document in documents:
            self.containers.setdefault(container, {})[document["id"]] = self._stamp(dict(document))

    def _stamp(self, document):
        self._etag += 1
        document.update({"_rid": f"rid{self._etag}", "_etag": f'"{self._etag}"', "_ts": 1700000000, "_self": "self"})
        return document

    def _error(self, status):
        return FakeResponse(status, {"code": str(status), "message": "injected"}, reason="Injected")

    def handle(self, method, url, headers=None, data=None, **kwargs):
        parts = urllib.parse.urlparse(url).path.strip("/").split("/")
        body = json.loads(data) if data else None
        headers = headers or {}

        if parts[0] != "dbs" or parts[1] != self.database_id:
            return self._error(404)

        if method == "GET" and parts[2:] == ["colls"]:
            if "probe" in self.fail:
                return self._error(self.fail["probe"])
            return FakeResponse(200, {"DocumentCollections": [{"id": c} for c in self.containers]})

        container = self.containers.setdefault(parts[3], {})

        if method == "POST" and headers.get("x-ms-documentdb-isquery") == "True":
            if "query" in self.fail:
                return self._error(self.fail["query"])
            return self._query(container, body["query"], headers.get("x-ms-continuation"))

        if method == "POST":
            if "upsert" in self.fail:
                return self._error(self.fail["upsert"])
            document = self._stamp(dict(body))
            container[document["id"]] = document
            return FakeResponse(201, document)

        doc_id = parts[5]
        if method == "PUT":
            if "replace" in self.fail:
                return self._error(self.fail["replace"])
            if doc_id not in container:
                return self._error(404)
            self.replaced.append(dict(body))
            container[doc_id] = self._stamp(dict(body))
            return FakeResponse(200, container[doc_id])

        if method == "DELETE":
            if "delete" in self.fail:
                return self._error(self.fail["delete"])
            if container.pop(doc_id, None) is None:
                return self._error(404)
            return FakeResponse(204)

        return self._error(405)

    def _query(self, container, query, continuation):
        self.queries.append(query)
        match = QUERY_PATTERN.match(query)
        documents = list(container.values())

        if match and match.group(1):
            field = json.loads(match.group(1))
            compare = COMPARATORS["==" if match.group(2) == "=" else match.group(2)]
            value = json.loads(match.group(3))
            documents = [d for d in documents if field in d and compare(d[field], value)]

        start = int(continuation or 0)
        headers = {}
        if self.page_size:
            page = documents[start:start + self.page_size]
            if start + self.page_size < len(documents):
                headers["x-ms-continuation"] = str(start + self.page_size)
        else:
            page = documents

        return FakeResponse(200, {"Documents": page, "_count": len(page)}, headers=headers)


# Firestore

class FakeSnapshot:
    def __init__(self, doc_id, data, broken=False):
        self.id = doc_id
        self._data = data
        self._broken = broken

    def to_dict(self):
        if self._broken:
            raise ValueError("corrupt document")
        return dict(self._data)


class FakeRpc:
    """Bidi RPC stand-in: done callbacks run once the stream ends for good."""

    def __init__(self):
        self.callbacks = []

    def add_done_callback(self, callback):
        self.callbacks.append(callback)

    def finish(self, reason):
        callbacks, self.callbacks = self.callbacks, []
        for callback in callbacks:
            callback(reason)


class FakeWatch:
    def __init__(self, firestore, query, callback):
        self.firestore = firestore
        self.query = query
        self.callback = callback
        self.unsubscribed = False
        self._rpc = FakeRpc()

    def fail(self, reason):
        """Terminate the listen stream the way Watch.close(reason=...) does."""
        self.callback = None
        if self in self.firestore.watches:
            self.firestore.watches.remove(self)
        self._rpc.finish(reason)

    def unsubscribe(self):
        self.unsubscribed = True
        self._rpc.callbacks = []
        if self in self.firestore.watches:
            self.firestore.watches.remove(self)


class FakeQuery:
    def __init__(self, firestore, path, filters=None):
        self.firestore = firestore
        self.path = path
        self.filters = list(filters or [])

    def where(self, filter=None):
        return FakeQuery(self.firestore, self.path, self.filters + [filter])

    def _matches(self, data):
        for field_filter in self.filters:
            field = field_filter.field_path
            if field not in data or not COMPARATORS[field_filter.op_string](data[field], field_filter.value):
                return False
        return True

    def stream(self):
        self.firestore.check("read")
        documents = self.firestore.collections.get(self.path, {})
        return [FakeSnapshot(doc_id, data) for doc_id, data in documents.items() if self._matches(data)]

    def on_snapshot(self, callback):
        self.firestore.check("snapshot")
        watch = FakeWatch(self.firestore, self, callback)
        self.firestore.watches.append(watch)
        return watch


class FakeDocument:
    def __init__(self, firestore, path, doc_id):
        self.firestore = firestore
        self.path = path
        self.id = doc_id

    def set(self, data, merge=False):
        self.firestore.check("write")
        collection = self.firestore.collections.setdefault(self.path, {})
        current = collection.get(self.id, {}) if merge else {}
        collection[self.id] = {**current, **data}

    def update(self, data):
        self.firestore.check("update")
        collection = self.firestore.collections.setdefault(self.path, {})
        if self.id not in collection:
            raise NotFound(f"No document to update: {self.path}/{self.id}")
        collection[self.id].update(data)

    def delete(self):
        self.firestore.check("delete")
        collection = self.firestore.collections.get(self.path, {})
        if self.firestore.strict_delete and self.id not in collection:
            raise NotFound(f"No document: {self.path}/{self.id}")
        collection.pop(self.id, None)


class FakeCollection(FakeQuery):
    def document(self, doc_id):
        return FakeDocument(self.firestore, self.path, doc_id)


class FakeFirestore:
    """Firestore client double with the calls the adapter makes."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.watches: List[FakeWatch] = []
        self.fail: Dict[str, Exception] = {}
        self.strict_delete = False
        self.closed = False

    def check(self, operation):
        if operation in self.fail:
            raise self.fail[operation]

    def collection(self, path):
        return FakeCollection(self, path)

    def emit(self, path, broken=False):
        """Fire every watch on ``path`` the way Firestore's watch thread does."""
        for watch in list(self.watches):
            if watch.query.path != path:
                continue
            documents = self.collections.get(path, {})
            docs = [
                FakeSnapshot(doc_id, data, broken=broken)
                for doc_id, data in documents.items()
                if watch.query._matches(data)
            ]
            watch.callback(docs, [], None)

    def close(self):
        self.closed = True


class FakeIdentityToolkit:
    """Identity Toolkit REST endpoints: anonymous sign-up and token lookup."""

    def __init__(self):
        self.valid_tokens = {}
        self.refresh_tokens = {}
        self.refreshed = 0
        self.issued = 0
        self.fail_status: Optional[int] = None
        self.hang = False
        self.session = FakeHttpSession(self.handle)

    def handle(self, method, url, params=None, json=None, **kwargs):
        if self.hang:
            return FakeResponse(hang=True)
        if self.fail_status:
            return FakeResponse(self.fail_status, {"error": {"message": "OPERATION_NOT_ALLOWED"}})

        if url.endswith("accounts:signUp"):
            token, refresh_token, uid = self._issue(f"uid-{self.issued + 1}")
            return FakeResponse(200, {
                "idToken": token,
                "refreshToken": refresh_token,
                "expiresIn": "3600",
                "localId": uid,
            })

        if url == "https://securetoken.googleapis.com/v1/token":
            uid = self.refresh_tokens.pop(kwargs["data"]["refresh_token"], None)
            if uid is None:
                return FakeResponse(400, {"error": {"message": "INVALID_REFRESH_TOKEN"}})
            self.refreshed += 1
            token, refresh_token, uid = self._issue(uid)
            return FakeResponse(200, {
                "id_token": token,
                "refresh_token": refresh_token,
                "expires_in": "3600",
                "user_id": uid,
            })

        if url.endswith("accounts:lookup"):
            uid = self.valid_tokens.get(json["idToken"])
            if uid is None:
                return FakeResponse(400, {"error": {"message": "INVALID_ID_TOKEN"}})
            return FakeResponse(200, {"users": [{"localId": uid}]})

        return FakeResponse(404, {"error": {"message": "NOT_FOUND"}})

    def _issue(self, uid):
        self.issued += 1
        token = f"id-token-{self.issued}"
        refresh_token = f"refresh-{self.issued}"
        self.valid_tokens[token] = uid
        self.refresh_tokens[refresh_token] = uid
        return token, refresh_token, uid


# Supabase

class FakeSupabaseRequest:
    """PostgREST request builder double applying filters to an in-memory table."""

    def __init__(self, client, table, action, payload=None):
        self.client = client
        self.table = table
        self.action = action
        self.payload = payload
        self.filters = []

    def select(self, columns="*"):
        return self

    def _filter(self, op, field, value):
        self.filters.append((op, field, value))
        return self

    def eq(self, field, value):
        return self._filter("==", field, value)

    def gt(self, field, value):
        return self._filter(">", field, value)

    def lt(self, field, value):
        return self._filter("<", field, value)

    def gte(self, field, value):
        return self._filter(">=", field, value)

    def lte(self, field, value):
        return self._filter("<=", field, value)

    def _matches(self, row):
        return all(field in row and COMPARATORS[op](row[field], value) for op, field, value in self.filters)

    async def execute(self):
        self.client.executed.append((self.table, self.action, list(self.filters)))
        if self.action in self.client.fail:
            raise self.client.fail[self.action]

        rows = self.client.tables.setdefault(self.table, {})
        if self.action == "select":
            return Mock(data=[dict(row) for row in rows.values() if self._matches(row)])
        if self.action == "upsert":
            rows[self.payload["id"]] = {**rows.get(self.payload["id"], {}), **self.payload}
            return Mock(data=[dict(rows[self.payload["id"]])])

        matched = [key for key, row in rows.items() if self._matches(row)]
        if self.action == "update":
            for key in matched:
                rows[key].update(self.payload)
            return Mock(data=[dict(rows[key]) for key in matched])

        removed = [rows.pop(key) for key in matched]
        return Mock(data=removed)


class FakeSupabaseTable:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def select(self, columns="*"):
        return FakeSupabaseRequest(self.client, self.name, "select")

    def upsert(self, record):
        return FakeSupabaseRequest(self.client, self.name, "upsert", record)

    def update(self, changes):
        return FakeSupabaseRequest(self.client, self.name, "update", changes)

    def delete(self):
        return FakeSupabaseRequest(self.client, self.name, "delete")


class FakeChannel:
    def __init__(self, name):
        self.name = name
        self.listeners = []
        self.subscribed = False
        self.fail_subscribe: Optional[Exception] = None
        self.join_status = "SUBSCRIBED"
        self.status_callback = None

    def on_postgres_changes(self, event, schema=None, table=None, callback=None, **kwargs):
        self.listeners.append({"event": event, "schema": schema, "table": table, "callback": callback})
        return self

    async def subscribe(self, callback=None):
        if self.fail_subscribe:
            raise self.fail_subscribe
        self.status_callback = callback
        self.subscribed = self.join_status == "SUBSCRIBED"
        self.report(self.join_status)
        return self

    def report(self, status, error=None):
        """Push a channel state the way the realtime client does."""
        if self.status_callback is not None:
            self.status_callback(status, error)

    def emit(self, payload=None):
        for listener in self.listeners:
            listener["callback"](payload or {"eventType": "UPDATE"})


class FakeSupabaseAuth:
    def __init__(self):
        self.user = None
        self.fail: Optional[Exception] = None
        self.signed_out = 0

    async def sign_in_anonymously(self, credentials=None):
        if self.fail:
            raise self.fail
        self.user = {"id": "sb-user-1", "is_anonymous": True}
        return Mock(session=Mock(access_token="sb-access-token"), user=dict(self.user))

    async def sign_out(self, options=None):
        self.signed_out += 1
        if self.fail:
            raise self.fail
        self.user = None

    async def get_user(self, jwt=None):
        if self.user is None:
            return None
        return Mock(user=dict(self.user))


class FakeSupabaseClient:
    """Async Supabase client double: tables, auth and realtime channels."""

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.fail: Dict[str, Exception] = {}
        self.executed = []
        self.auth = FakeSupabaseAuth()
        self.channels: List[FakeChannel] = []
        self.removed: List[FakeChannel] = []
        self.join_status = "SUBSCRIBED"

    def seed(self, table, *rows):
        for row in rows:
            self.tables.setdefault(table, {})[row["id"]] = dict(row)

    def table(self, name):
        return FakeSupabaseTable(self, name)

    def channel(self, name, params=None):
        channel = FakeChannel(name)
        channel.join_status = self.join_status
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel):
        self.removed.append(channel)


SUPABASE_URL = "https://project.supabase.co"


def supabase_health_session(status: int = 200) -> FakeHttpSession:
    def handle(method, url, **kwargs):
        if url == f"{SUPABASE_URL}/auth/v1/health":
            return FakeResponse(status, {"name": "GoTrue"} if status == 200 else None, text="unhealthy")
        return FakeResponse(404)
    return FakeHttpSession(handle)
