"""Shared constants: single source of truth for cross-module values.

All magic strings and numbers that appear in 2+ files belong here.
StrEnum members are str-compatible, so downstream code (JSON bodies,
HTTP headers, NATS subjects) works unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ── String Enums ─────────────────────────────────────────


class ErrorCode(StrEnum):
    """Stable machine-readable error codes returned to clients."""

    NOT_FOUND = "NOT_FOUND"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    ETAG_MISSING = "ETAG_MISSING"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    READ_ONLY_VIOLATION = "READ_ONLY_VIOLATION"
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_GATEWAY = "BAD_GATEWAY"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    GATEWAY_TIMEOUT = "GATEWAY_TIMEOUT"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    TIMEOUT = "TIMEOUT"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    QUERY_EXECUTION_FAILED = "QUERY_EXECUTION_FAILED"
    AUTH0_TOKEN_FAILED = "AUTH0_TOKEN_FAILED"
    AUTHELIA_TOKEN_FAILED = "AUTHELIA_TOKEN_FAILED"
    INVALID_TOKEN_RESPONSE = "INVALID_TOKEN_RESPONSE"


class HttpHeader(StrEnum):
    """HTTP header names used on upstream requests."""

    ETAG = "ETag"
    IF_MATCH = "If-Match"
    CONTENT_TYPE = "Content-Type"
    AUTHORIZATION = "Authorization"
    USER_AGENT = "User-Agent"
    ACCEPT = "Accept"
    CACHE_CONTROL = "Cache-Control"
    REQUEST_ID = "X-Request-Id"


class NatsSubject(StrEnum):
    """Request/reply subjects served by the v2 platform."""

    USER_METADATA_READ = "lfx.auth-service.user_metadata.read"
    USER_METADATA_UPDATE = "lfx.auth-service.user_metadata.update"
    EMAIL_TO_SUB = "lfx.auth-service.email_to_sub"
    EMAIL_TO_USERNAME = "lfx.auth-service.email_to_username"
    PROJECT_SLUG_TO_UID = "lfx.projects-api.slug_to_uid"


class LockStrategy(StrEnum):
    """Query deduplication backend."""

    MEMORY = "memory"


class AuthMode(StrEnum):
    """How a route treats the caller's session."""

    PUBLIC = "public"
    OPTIONAL = "optional"
    REQUIRED = "required"


class WriteState(StrEnum):
    """States of one conditional (If-Match) write."""

    START = "start"
    FETCHED = "fetched"
    WRITTEN = "written"
    PRECONDITION_FAILED = "precondition_failed"
    NOT_FOUND = "not_found"
    NETWORK_ERROR = "network_error"


class EditType(StrEnum):
    """Scope of a recurring meeting update."""

    SINGLE = "single"
    FUTURE = "future"


class ResourceType(StrEnum):
    """Resource kinds served by the query service."""

    COMMITTEE = "committee"
    MEETING = "meeting"
    PROJECT = "project"
    MEETING_REGISTRANT = "meeting_registrant"
    COMMITTEE_MEMBER = "committee_member"
    PAST_MEETING = "past_meeting"
    V1_PAST_MEETING = "v1_past_meeting"
    PAST_MEETING_PARTICIPANT = "past_meeting_participant"
    PAST_MEETING_RECORDING = "past_meeting_recording"
    V1_PAST_MEETING_RECORDING = "v1_past_meeting_recording"
    PAST_MEETING_SUMMARY = "past_meeting_summary"
    V1_PAST_MEETING_SUMMARY = "v1_past_meeting_summary"
    PAST_MEETING_ATTACHMENT = "past_meeting_attachment"


# ── Warehouse ────────────────────────────────────────────

SNOWFLAKE_QUERY_TIMEOUT = 60  # seconds
SNOWFLAKE_CONNECTION_TIMEOUT = 30
SNOWFLAKE_MIN_CONNECTIONS = 2
SNOWFLAKE_MAX_CONNECTIONS = 10
SNOWFLAKE_ACQUIRE_TIMEOUT = 30
SNOWFLAKE_IDLE_TIMEOUT = 600
SNOWFLAKE_MAX_CONNECTION_LIFETIME = 3600
SNOWFLAKE_LOCK_TTL_BUFFER = 5
SNOWFLAKE_DRAIN_TIMEOUT = 30
SNOWFLAKE_VALIDATION_QUERY = "SELECT 1"

READ_ONLY_DENY_PATTERNS: tuple[str, ...] = (
    r"\bINSERT\s+INTO\b",
    r"\bUPDATE\s+",
    r"\bDELETE\s+FROM\b",
    r"\bDROP\s+",
    r"\bCREATE\s+",
    r"\bALTER\s+",
    r"\bTRUNCATE\s+",
    r"\bMERGE\s+INTO\b",
    r"\bGRANT\s+",
    r"\bREVOKE\s+",
    r"\bEXECUTE\s+",
    r"\bCALL\s+",
)
READ_ONLY_PREFIX_PATTERN = r"^\s*(SELECT|WITH)\b"

# ── Circuit Breaker Configuration ────────────────────────

CB_UPSTREAM_FAILURE_THRESHOLD = 5
CB_UPSTREAM_RECOVERY_TIMEOUT = 30

# ── Retry Strategy ───────────────────────────────────────

RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_WAIT = 1
RETRY_MAX_WAIT = 10

# ── Upstream HTTP ────────────────────────────────────────

DEFAULT_LFX_V2_SERVICE = "http://lfx-api.k8s.orb.local"
DEFAULT_USER_AGENT = "lfx-server/0.1.0"
DEFAULT_QUERY_PARAMS: dict[str, str] = {"v": "1"}
QUERY_RESOURCES_PATH = "/query/resources"
QUERY_RESOURCES_COUNT_PATH = "/query/resources/count"
ACCESS_CHECK_PATH = "/access-check"
ORG_SUGGEST_PATH = "/query/orgs/suggest"

# ── M2M Tokens ───────────────────────────────────────────

AUTHELIA_ISSUER_MARKER = "auth.k8s.orb.local"
M2M_TOKEN_EXPIRY_MARGIN = 60  # seconds
M2M_DEFAULT_EXPIRES_IN = 3600

# ── NATS ─────────────────────────────────────────────────

NATS_DEFAULT_URL = "nats://lfx-platform-nats.lfx.svc.cluster.local:4222"
NATS_REQUEST_TIMEOUT = 5  # seconds
NATS_DRAIN_TIMEOUT = 10

# ── Logging ──────────────────────────────────────────────

SENSITIVE_FIELDS: tuple[str, ...] = (
    "password",
    "token",
    "secret",
    "key",
    "authorization",
    "cookie",
    "jwt",
    "bearer",
    "auth",
    "credentials",
    "apikey",
    "api_key",
    "access_token",
    "refresh_token",
    "email",
    "passcode",
    "organizers",
)
REDACTED = "[REDACTED]"
ERROR_TRUNCATION_CHARS = 200

# ── Auth Routes ──────────────────────────────────────────

# Ordered: first matching prefix wins.
AUTH_ROUTE_MODES: tuple[tuple[str, AuthMode], ...] = (
    ("/api/health", AuthMode.PUBLIC),
    ("/public/api", AuthMode.OPTIONAL),
    ("/api", AuthMode.REQUIRED),
)
AUTH_DEFAULT_MODE = AuthMode.REQUIRED
AUTH_EXEMPT_PATHS = frozenset({
    "/api/docs",
    "/api/redoc",
    "/api/openapi.json",
})
JWKS_CACHE_SECONDS = 3600.0

# ── Validation ───────────────────────────────────────────

COMMITTEE_NAME_MAX_LENGTH = 255
COMMITTEE_DISPLAY_NAME_MAX_LENGTH = 255
COMMITTEE_DESCRIPTION_MAX_LENGTH = 2000
COMMITTEE_CATEGORIES = frozenset({
    "Ambassador",
    "Board",
    "Code of Conduct",
    "Committers",
    "Expert Group",
    "Finance Committee",
    "Government Advisory Council",
    "Legal Committee",
    "Maintainers",
    "Marketing Committee/Sub Committee",
    "Marketing Mailing List",
    "Marketing Oversight Committee/Marketing Advisory Committee",
    "Product Security",
    "Special Interest Group",
    "Technical Mailing List",
    "Technical Oversight Committee/Technical Advisory Committee",
    "Technical Steering Committee",
    "Working Group",
    "Other",
})
COMMITTEE_BOOLEAN_FIELDS: tuple[str, ...] = (
    "business_email_required",
    "enable_voting",
    "is_audit_enabled",
    "joinable",
    "public",
    "sso_group_enabled",
)
COMMITTEE_SETTINGS_FIELDS: tuple[str, ...] = (
    "business_email_required",
    "is_audit_enabled",
)
T_SHIRT_SIZES = frozenset({"XS", "S", "M", "L", "XL", "XXL", "XXXL"})
PHONE_PATTERN = r"^[+]?[\d\s\-().]+$"
POSTAL_CODE_PATTERN = r"^[A-Za-z0-9\s-]+$"
USER_METADATA_MAX_LENGTHS: dict[str, int] = {
    "country": 100,
    "state_province": 100,
    "city": 100,
    "address": 500,
    "organization": 200,
    "job_title": 200,
}
