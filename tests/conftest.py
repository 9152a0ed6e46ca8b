"""Shared test fixtures: in-memory upstreams, no network."""

import os

# Settings() is also built at import of lfx_server.main; keep the real
# environment (and any .env) from pointing tests at live services.
os.environ["LFX_V2_SERVICE"] = "http://lfx-api.test"
os.environ["NATS_URL"] = "nats://nats.test:4222"
os.environ["SNOWFLAKE_ACCOUNT"] = ""
os.environ["M2M_AUTH_ISSUER_BASE_URL"] = ""
os.environ["AUTH_JWKS_URL"] = ""
os.environ["AUTH_TRUST_PROXY_HEADERS"] = "false"

from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import Request
from jose import jwk, jwt

from lfx_server.api.app_state import AppState, build_app_state
from lfx_server.api.middleware.session import BearerToken, Session
from lfx_server.clients.api_client import ApiClient
from lfx_server.config import Settings
from lfx_server.context import RequestContext
from lfx_server.main import app
from lfx_server.services.etag_service import ETagService
from lfx_server.services.fakes import (
    FakeNatsConnection,
    FakeResourceApi,
    FakeWarehouse,
    fake_nats_connector,
)
from lfx_server.services.microservice_proxy import MicroserviceProxy
from lfx_server.services.nats_service import NatsService
from lfx_server.services.snowflake_service import SnowflakeService

BASE_URL = "http://lfx-api.test"
AUTH_URL = "https://auth.test"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "lfx_v2_service": BASE_URL,
        "nats_url": "nats://nats.test:4222",
        "snowflake_min_connections": 1,
        "snowflake_max_connections": 3,
        "m2m_auth_issuer_base_url": AUTH_URL,
        "m2m_auth_audience": "https://api.test/",
        "m2m_auth_client_id": "client-id",
        "m2m_auth_client_secret": "client-secret",
    }
    values.update(overrides)
    return Settings(**values)


class TokenSigner:
    """RS256 key pair that signs test tokens and publishes its JWKS."""

    def __init__(self, kid: str = "test-key") -> None:
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.kid = kid
        self._private_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode("ascii")
        public_pem = key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
        public_jwk = jwk.construct(public_pem, "RS256").to_dict()
        self.jwks = {"keys": [{**public_jwk, "kid": kid, "use": "sig"}]}

    def sign(self, claims: dict[str, Any]) -> str:
        return jwt.encode(
            claims,
            self._private_pem,
            algorithm="RS256",
            headers={"kid": self.kid},
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(
            lambda request: httpx.Response(200, json=self.jwks)
        )


class StaticSessionProvider:
    """Returns the same session for every request (None = signed out)."""

    def __init__(self, session: Session | None = None) -> None:
        self.session = session

    async def load(self, request: Request) -> Session | None:
        return self.session


def signed_in(
    username: str = "jdoe",
    email: str = "jdoe@example.com",
    token: str = "user-token",
    expires_at: float | None = None,
) -> Session:
    return Session(
        user={
            "sub": f"auth0|{username}",
            "preferred_username": username,
            "email": email,
            "name": "Jane Doe",
        },
        access_token=BearerToken(token, expires_at),
    )


def setup_test_app(
    upstream: FakeResourceApi,
    *,
    nats: FakeNatsConnection | None = None,
    warehouse: FakeWarehouse | None = None,
    session: Session | None = None,
    settings: Settings | None = None,
) -> AppState:
    """Common app-state setup for API test fixtures.

    Wires real services over the in-memory upstreams and stores them
    on ``app.state.typed``, the way lifespan does at startup.
    """
    settings = settings or make_settings()
    state = build_app_state(
        settings,
        http=httpx.AsyncClient(transport=upstream.transport()),
        nats_connector=fake_nats_connector(nats or FakeNatsConnection()),
        warehouse_factory=warehouse or FakeWarehouse(),
        sessions=StaticSessionProvider(
            session if session is not None else signed_in()
        ),
    )
    app.state.settings = settings
    app.state.typed = state
    return state


async def app_client(state: AppState) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(
        transport=transport, base_url="http://test"
    ) as c:
        yield c
    await state.aclose()
    app.dependency_overrides.clear()


# ── Service-level fixtures ───────────────────────────────────


@pytest.fixture
def upstream() -> FakeResourceApi:
    return FakeResourceApi()


@pytest_asyncio.fixture
async def http(upstream: FakeResourceApi) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=upstream.transport()) as client:
        yield client


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(
        request_id="req-1",
        bearer_token="user-token",
        username="jdoe",
        email="jdoe@example.com",
        name="Jane Doe",
    )


@pytest.fixture
def proxy(http: httpx.AsyncClient) -> MicroserviceProxy:
    return MicroserviceProxy(ApiClient(http), make_settings())


@pytest.fixture
def etag_service(proxy: MicroserviceProxy) -> ETagService:
    return ETagService(proxy)


@pytest.fixture
def nats_conn() -> FakeNatsConnection:
    return FakeNatsConnection()


@pytest_asyncio.fixture
async def nats_service(
    nats_conn: FakeNatsConnection,
) -> AsyncIterator[NatsService]:
    service = NatsService(
        make_settings(), connector=fake_nats_connector(nats_conn)
    )
    yield service
    await service.shutdown()


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


@pytest_asyncio.fixture
async def snowflake(
    warehouse: FakeWarehouse,
) -> AsyncIterator[SnowflakeService]:
    service = SnowflakeService(
        make_settings(), connection_factory=warehouse
    )
    yield service
    await service.shutdown()
