"""Per-request caller context passed from routes into services."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RequestContext:
    """Who is calling and with which upstream credential.

    ``bearer_token`` is forwarded as ``Authorization: Bearer`` on
    upstream calls; it is either the user's access token or an M2M
    token for public routes.
    """

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    bearer_token: str | None = None
    username: str | None = None
    email: str | None = None
    name: str | None = None
    path: str | None = None
    claims: dict[str, Any] = field(default_factory=lambda: dict[str, Any]())

    @property
    def authenticated(self) -> bool:
        return self.bearer_token is not None

    def with_token(self, token: str) -> RequestContext:
        """Copy of this context carrying a different upstream token."""
        return RequestContext(
            request_id=self.request_id,
            bearer_token=token,
            username=self.username,
            email=self.email,
            name=self.name,
            path=self.path,
            claims=dict(self.claims),
        )
