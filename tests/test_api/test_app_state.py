"""Tests for service wiring in build_app_state."""

from __future__ import annotations

import httpx
import pytest
from starlette.requests import Request

from lfx_server.api.app_state import build_app_state
from lfx_server.api.middleware.session import HeaderSessionProvider
from lfx_server.context import RequestContext
from lfx_server.services.fakes import (
    FakeNatsConnection,
    FakeResourceApi,
    FakeWarehouse,
    fake_nats_connector,
)
from tests.conftest import TokenSigner, make_settings


class TestBuildAppState:
    @pytest.mark.asyncio
    async def test_services_use_given_client(
        self, upstream: FakeResourceApi, ctx: RequestContext
    ) -> None:
        state = build_app_state(
            make_settings(),
            http=httpx.AsyncClient(transport=upstream.transport()),
            warehouse_factory=FakeWarehouse(),
        )
        assert await state.committees.get_committees_count(ctx) == 0
        assert upstream.requests[-1].url.host == "lfx-api.test"
        assert isinstance(state.sessions, HeaderSessionProvider)
        assert state.snowflake.is_connected() is False
        await state.aclose()
        assert state.http.is_closed

    @pytest.mark.asyncio
    async def test_aclose_drains_nats_and_pool(
        self, upstream: FakeResourceApi
    ) -> None:
        conn = FakeNatsConnection({"lfx.ping": b"pong"})
        warehouse = FakeWarehouse()
        state = build_app_state(
            make_settings(),
            http=httpx.AsyncClient(transport=upstream.transport()),
            nats_connector=fake_nats_connector(conn),
            warehouse_factory=warehouse,
        )
        await state.nats.request("lfx.ping", "")
        await state.snowflake.execute("SELECT 1")
        await state.aclose()
        assert conn.is_closed
        assert warehouse.closed == warehouse.opened


class TestSessionProviderWiring:
    @pytest.mark.asyncio
    async def test_jwks_url_enables_verified_claims(self) -> None:
        signer = TokenSigner()
        settings = make_settings(
            auth_jwks_url="https://sso.test/.well-known/jwks.json"
        )
        state = build_app_state(
            settings,
            http=httpx.AsyncClient(transport=signer.transport()),
            warehouse_factory=FakeWarehouse(),
        )
        token = signer.sign({"sub": "auth0|jdoe", "email": "jdoe@example.com"})
        session = await state.sessions.load(_bearer_request(token))
        assert session is not None
        assert session.user["email"] == "jdoe@example.com"
        await state.aclose()

    @pytest.mark.asyncio
    async def test_default_ignores_token_claims(
        self, upstream: FakeResourceApi
    ) -> None:
        state = build_app_state(
            make_settings(),
            http=httpx.AsyncClient(transport=upstream.transport()),
            warehouse_factory=FakeWarehouse(),
        )
        token = TokenSigner().sign({"email": "jdoe@example.com"})
        session = await state.sessions.load(_bearer_request(token))
        assert session is not None
        assert session.user == {}
        await state.aclose()


def _bearer_request(token: str) -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/api/profile",
            "headers": [(b"authorization", f"Bearer {token}".encode("latin-1"))],
        }
    )
