"""FastAPI application with lifespan startup."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

# Logging is configured from settings before any service module is
# imported, so module-level loggers pick up the root configuration.
from lfx_server.config import Settings
from lfx_server.logging_config import setup_logging

_settings = Settings()
setup_logging(_settings.log_level, _settings.snowflake_log_level)

from fastapi import FastAPI  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402

from lfx_server import __version__  # noqa: E402
from lfx_server.api.app_state import build_app_state  # noqa: E402
from lfx_server.api.error_handlers import register_error_handlers  # noqa: E402
from lfx_server.api.middleware.auth import SessionAuthMiddleware  # noqa: E402
from lfx_server.api.routes import (  # noqa: E402
    analytics,
    committees,
    health,
    meetings,
    organizations,
    past_meetings,
    profile,
    projects,
    public_meetings,
)
from lfx_server.constants import HttpHeader  # noqa: E402

_logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = _settings
    state = build_app_state(settings)

    app.state.settings = settings
    app.state.typed = state

    if not settings.snowflake_account:
        _logger.warning("event=warehouse_unconfigured action=analytics_disabled")
    if not settings.m2m_auth_client_id:
        _logger.warning("event=m2m_unconfigured action=public_meetings_disabled")

    _logger.info(
        "event=server_started version=%s upstream=%s",
        __version__,
        settings.lfx_v2_service,
    )

    yield

    await state.aclose()
    _logger.info("event=server_stopped")


app = FastAPI(
    title="LFX Server",
    description=(
        "Gateway for the LFX resource APIs, NATS lookups"
        " and the analytics warehouse"
    ),
    version=__version__,
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)

register_error_handlers(app)

# Starlette runs the last-added middleware first. CORS sits outside
# the session check so preflight requests never need a token.
_cors_origins = [
    o.strip()
    for o in _settings.cors_origins.split(",")
    if o.strip()
]

app.add_middleware(SessionAuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        HttpHeader.IF_MATCH,
        HttpHeader.REQUEST_ID,
    ],
    expose_headers=[HttpHeader.ETAG, HttpHeader.REQUEST_ID],
    allow_credentials=True,
)

app.include_router(health.router)
app.include_router(committees.router)
app.include_router(meetings.router)
app.include_router(past_meetings.router)
app.include_router(public_meetings.router)
app.include_router(projects.router)
app.include_router(organizations.router)
app.include_router(profile.router)
app.include_router(analytics.router)
