"""Typed application state and service wiring."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from lfx_server.api.middleware.session import (
    HeaderSessionProvider,
    JwksTokenVerifier,
    SessionProvider,
)
from lfx_server.clients.api_client import ApiClient
from lfx_server.config import Settings
from lfx_server.logger import OperationLogger
from lfx_server.services.committee_service import CommitteeService
from lfx_server.services.etag_service import ETagService
from lfx_server.services.m2m_token import M2MTokenProvider
from lfx_server.services.meeting_service import MeetingService
from lfx_server.services.microservice_proxy import MicroserviceProxy
from lfx_server.services.nats_service import NatsConnector, NatsService
from lfx_server.services.organization_service import OrganizationService
from lfx_server.services.project_service import ProjectService
from lfx_server.services.snowflake_service import SnowflakeService
from lfx_server.services.user_service import UserService
from lfx_server.warehouse.protocols import ConnectionFactory

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Typed container for app.state attributes."""

    settings: Settings
    http: httpx.AsyncClient
    api_client: ApiClient
    proxy: MicroserviceProxy
    etag: ETagService
    nats: NatsService
    snowflake: SnowflakeService
    m2m: M2MTokenProvider
    committees: CommitteeService
    meetings: MeetingService
    projects: ProjectService
    organizations: OrganizationService
    users: UserService
    sessions: SessionProvider

    async def aclose(self) -> None:
        """Drain NATS and the warehouse pool, then close HTTP."""
        await self.nats.shutdown()
        await self.snowflake.shutdown()
        await self.api_client.aclose()
        await self.http.aclose()


def build_app_state(
    settings: Settings,
    *,
    http: httpx.AsyncClient | None = None,
    nats_connector: NatsConnector | None = None,
    warehouse_factory: ConnectionFactory | None = None,
    sessions: SessionProvider | None = None,
) -> AppState:
    """Wire every service from settings.

    Tests pass an ``http`` client on a mock transport, a fake NATS
    connector and an in-memory warehouse factory.
    """
    http = http or httpx.AsyncClient(timeout=settings.api_timeout_seconds)
    ops = OperationLogger()
    api_client = ApiClient(http, timeout=settings.api_timeout_seconds)
    proxy = MicroserviceProxy(api_client, settings)
    etag = ETagService(proxy, ops)
    nats = NatsService(settings, connector=nats_connector)
    snowflake = SnowflakeService(
        settings, connection_factory=warehouse_factory
    )
    m2m = M2MTokenProvider(settings, http, ops)
    users = UserService(nats, snowflake)
    return AppState(
        settings=settings,
        http=http,
        api_client=api_client,
        proxy=proxy,
        etag=etag,
        nats=nats,
        snowflake=snowflake,
        m2m=m2m,
        committees=CommitteeService(proxy, etag, ops),
        meetings=MeetingService(proxy, etag, m2m, ops),
        projects=ProjectService(proxy, etag, nats, users, snowflake),
        organizations=OrganizationService(proxy, snowflake),
        users=users,
        sessions=sessions or _session_provider(settings, http),
    )


def _session_provider(
    settings: Settings, http: httpx.AsyncClient
) -> HeaderSessionProvider:
    verifier = None
    if settings.auth_jwks_url:
        verifier = JwksTokenVerifier(
            http,
            settings.auth_jwks_url,
            issuer=settings.auth_issuer,
            audience=settings.auth_audience,
            algorithms=[
                a.strip()
                for a in settings.auth_jwt_algorithms.split(",")
                if a.strip()
            ],
        )
    elif not settings.auth_trust_proxy_headers:
        logger.warning(
            "event=session_identity_disabled"
            " hint=set_AUTH_JWKS_URL_or_AUTH_TRUST_PROXY_HEADERS"
        )
    return HeaderSessionProvider(
        verifier, trust_proxy_headers=settings.auth_trust_proxy_headers
    )
