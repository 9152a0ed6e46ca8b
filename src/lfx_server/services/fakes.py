"""In-memory fakes of the upstream collaborators for testing.

- ``FakeResourceApi``: an ``httpx.MockTransport`` handler that serves a
  dict-backed resource store with versioned ETags and enforces If-Match.
- ``FakeNatsConnection``: request/reply with per-subject responders.
- ``FakeWarehouse``: a connection factory whose connections answer from
  canned rows and count round-trips.

No network, no Snowflake, no NATS server.
"""

# pyright: reportUnusedFunction=false

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx
from nats.errors import NoRespondersError

from lfx_server.constants import (
    ACCESS_CHECK_PATH,
    ORG_SUGGEST_PATH,
    QUERY_RESOURCES_COUNT_PATH,
    QUERY_RESOURCES_PATH,
    HttpHeader,
)
from lfx_server.warehouse.protocols import QueryResult

_TOKEN_ENDPOINTS = ("/oauth/token", "/api/oidc/token")

# ── Resource API ─────────────────────────────────────────


@dataclass
class _Stored:
    body: dict[str, Any]
    version: int = 1

    @property
    def etag(self) -> str:
        return f'"v{self.version}"'


@dataclass
class _Indexed:
    resource_type: str
    data: dict[str, Any]
    tags: tuple[str, ...]


class FakeResourceApi:
    """Dict-backed stand-in for the v2 resource, query and token services.

    Pass ``fake.transport()`` to ``httpx.AsyncClient``. Every request is
    recorded in ``requests``.
    """

    def __init__(self) -> None:
        self._store: dict[str, _Stored] = {}
        self._index: list[_Indexed] = []
        self.writers: set[str] = set()
        self.suggestions: list[dict[str, Any]] = []
        self.omit_etag: set[str] = set()
        self.broken: dict[str, int] = {}
        self.deleted: list[str] = []
        self.requests: list[httpx.Request] = []
        self.m2m_token = "m2m-token"
        self.token_requests: list[httpx.Request] = []
        self._failures: list[httpx.Response | Exception] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._dispatch)

    # ── Seeding ──

    def put(self, path: str, body: dict[str, Any]) -> None:
        self._store[path] = _Stored(body=dict(body))

    def get(self, path: str) -> dict[str, Any] | None:
        stored = self._store.get(path)
        return None if stored is None else stored.body

    def etag_of(self, path: str) -> str:
        return self._store[path].etag

    def bump(self, path: str) -> None:
        """Simulate a concurrent write by another client."""
        self._store[path].version += 1

    def index(
        self,
        resource_type: str,
        data: dict[str, Any],
        *tags: str,
    ) -> None:
        self._index.append(_Indexed(resource_type, dict(data), tags))

    def fail_next(
        self,
        status: int = 500,
        body: Any = None,
        *,
        exc: Exception | None = None,
    ) -> None:
        """Queue a failure for the next request."""
        if exc is not None:
            self._failures.append(exc)
        else:
            self._failures.append(
                httpx.Response(status, json=body or {"message": "boom"})
            )

    # ── Handler ──

    def _dispatch(self, request: httpx.Request) -> httpx.Response:
        return self.handle(request)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._failures:
            failure = self._failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return failure

        path = request.url.path
        if path in self.broken:
            return httpx.Response(
                self.broken[path], json={"message": "unavailable"}
            )
        if path.endswith(_TOKEN_ENDPOINTS):
            self.token_requests.append(request)
            return httpx.Response(
                200,
                json={
                    "access_token": self.m2m_token,
                    "token_type": "Bearer",
                    "expires_in": 3600,
                },
            )
        if path == QUERY_RESOURCES_PATH:
            return self._query(request)
        if path == QUERY_RESOURCES_COUNT_PATH:
            return httpx.Response(
                200, json={"count": len(self._matching(request))}
            )
        if path == ACCESS_CHECK_PATH:
            return self._access_check(request)
        if path == ORG_SUGGEST_PATH:
            return httpx.Response(
                200, json={"suggestions": self.suggestions}
            )

        method = request.method
        if method == "GET":
            return self._read(path)
        if method == "POST":
            return self._create(request, path)
        if method == "PUT":
            return self._write(request, path)
        if method == "DELETE":
            return self._delete(request, path)
        return httpx.Response(405, json={"message": "method not allowed"})

    def _matching(self, request: httpx.Request) -> list[_Indexed]:
        params = request.url.params
        rtype = params.get("type")
        tags = params.get("tags")
        name = params.get("name")
        parent = params.get("parent")
        found = []
        for item in self._index:
            if item.resource_type != rtype:
                continue
            if tags and tags not in item.tags and tags != item.data.get("uid"):
                continue
            if parent and parent not in item.tags:
                continue
            if name and name.lower() not in str(item.data.get("name", "")).lower():
                continue
            found.append(item)
        return found

    def _query(self, request: httpx.Request) -> httpx.Response:
        resources = [
            {"type": i.resource_type, "id": i.data.get("uid"), "data": i.data}
            for i in self._matching(request)
        ]
        return httpx.Response(200, json={"resources": resources})

    def _access_check(self, request: httpx.Request) -> httpx.Response:
        requests: list[str] = json.loads(request.content)["requests"]
        results = []
        for entry in requests:
            resource, _, _relation = entry.partition("#")
            uid = resource.split(":", 1)[-1]
            allowed = "true" if uid in self.writers else "false"
            results.append(f"{entry}@user:caller\t{allowed}")
        return httpx.Response(200, json={"results": results})

    def _read(self, path: str) -> httpx.Response:
        stored = self._store.get(path)
        if stored is None:
            return httpx.Response(404, json={"message": "Not found"})
        headers = {} if path in self.omit_etag else {
            HttpHeader.ETAG: stored.etag
        }
        return httpx.Response(200, json=stored.body, headers=headers)

    def _create(self, request: httpx.Request, path: str) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        uid = body.get("uid") or uuid.uuid4().hex
        created = {**body, "uid": uid}
        self._store[f"{path}/{uid}"] = _Stored(body=created)
        return httpx.Response(201, json=created)

    def _precondition(
        self, request: httpx.Request, owner: str
    ) -> httpx.Response | None:
        stored = self._store.get(owner)
        if stored is None:
            return httpx.Response(404, json={"message": "Not found"})
        if_match = request.headers.get(HttpHeader.IF_MATCH)
        if if_match is not None and if_match != stored.etag:
            return httpx.Response(
                412, json={"message": "precondition failed"}
            )
        return None

    def _owner(self, path: str) -> str:
        """Nearest stored path at or above ``path``."""
        candidate = path
        while candidate and candidate not in self._store:
            candidate = candidate.rsplit("/", 1)[0]
        return candidate or path

    def _write(self, request: httpx.Request, path: str) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        if path not in self._store and request.headers.get(
            HttpHeader.IF_MATCH
        ) is None:
            self._store[path] = _Stored(body=body)
            return httpx.Response(200, json=body)
        rejected = self._precondition(request, path)
        if rejected is not None:
            return rejected
        stored = self._store[path]
        stored.body = body
        stored.version += 1
        return httpx.Response(
            200, json=body, headers={HttpHeader.ETAG: stored.etag}
        )

    def _delete(self, request: httpx.Request, path: str) -> httpx.Response:
        owner = self._owner(path)
        rejected = self._precondition(request, owner)
        if rejected is not None:
            return rejected
        if owner == path:
            del self._store[path]
        self.deleted.append(path)
        return httpx.Response(204)


# ── NATS ─────────────────────────────────────────────────


@dataclass
class FakeMsg:
    data: bytes


type Responder = Callable[[bytes], bytes] | bytes | Exception


class FakeNatsConnection:
    """Request/reply double; unknown subjects raise NoRespondersError."""

    def __init__(self, responders: dict[str, Responder] | None = None) -> None:
        self.responders: dict[str, Responder] = dict(responders or {})
        self.sent: list[tuple[str, bytes]] = []
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def request(
        self, subject: str, payload: bytes = b"", timeout: float = 0.5
    ) -> FakeMsg:
        self.sent.append((subject, payload))
        responder = self.responders.get(subject)
        if responder is None:
            raise NoRespondersError
        if isinstance(responder, Exception):
            raise responder
        if isinstance(responder, bytes):
            return FakeMsg(responder)
        return FakeMsg(responder(payload))

    async def drain(self) -> None:
        self._closed = True


def fake_nats_connector(
    conn: FakeNatsConnection,
) -> Callable[[str], Any]:
    """Connector returning ``conn``; counts calls in ``connector.calls``."""

    async def _connect(url: str) -> FakeNatsConnection:
        _connect.calls += 1  # type: ignore[attr-defined]
        return conn

    _connect.calls = 0  # type: ignore[attr-defined]
    return _connect


# ── Warehouse ────────────────────────────────────────────


@dataclass
class FakeWarehouse:
    """Connection factory for ``SnowflakeService`` tests.

    ``rows`` maps an SQL fragment to the rows returned for any statement
    containing it. ``delay`` holds each execute open so concurrent
    callers overlap.
    """

    rows: dict[str, list[dict[str, Any]]] = field(
        default_factory=lambda: dict[str, list[dict[str, Any]]]()
    )
    delay: float = 0.0
    error: Exception | None = None
    executions: int = 0
    opened: int = 0
    closed: int = 0
    statements: list[tuple[str, tuple[Any, ...]]] = field(
        default_factory=lambda: list[tuple[str, tuple[Any, ...]]]()
    )
    connections: list[FakeWarehouseConnection] = field(
        default_factory=lambda: list[FakeWarehouseConnection]()
    )

    async def __call__(self) -> FakeWarehouseConnection:
        self.opened += 1
        conn = FakeWarehouseConnection(self)
        self.connections.append(conn)
        return conn

    def lookup(self, sql_text: str) -> list[dict[str, Any]]:
        normalized = " ".join(sql_text.split()).upper()
        for fragment, rows in self.rows.items():
            if " ".join(fragment.split()).upper() in normalized:
                return [dict(r) for r in rows]
        return []


class FakeWarehouseConnection:
    def __init__(self, warehouse: FakeWarehouse) -> None:
        self._warehouse = warehouse
        self.alive = True
        self.handle_seq = 0

    async def execute(
        self,
        sql_text: str,
        binds: Sequence[Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> QueryResult:
        wh = self._warehouse
        wh.executions += 1
        wh.statements.append((sql_text, tuple(binds or ())))
        if wh.delay:
            await asyncio.sleep(wh.delay)
        if wh.error is not None:
            raise wh.error
        rows = wh.lookup(sql_text)
        self.handle_seq += 1
        columns = list(rows[0]) if rows else []
        return QueryResult(
            rows=rows,
            metadata=[{"name": c, "type_code": 2, "nullable": True} for c in columns],
            statement_handle=f"fake-{id(self):x}-{self.handle_seq}",
        )

    async def is_alive(self) -> bool:
        return self.alive

    async def close(self) -> None:
        if self.alive:
            self.alive = False
            self._warehouse.closed += 1
