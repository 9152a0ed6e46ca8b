"""Request/response schemas for the HTTP API.

Committee and meeting bodies are passed through as dicts: upstream owns
their shape and the services validate the fields they care about.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class CountResponse(BaseModel):
    count: int


class ProjectRoleUpdate(BaseModel):
    """Body for changing an existing user's project role."""

    role: Literal["view", "manage"]
    name: str | None = None
    email: str | None = None
    avatar: str | None = None

    def manual_user_info(self) -> dict[str, Any] | None:
        """Caller-supplied profile, used instead of a NATS lookup."""
        if not self.name:
            return None
        return {
            "name": self.name,
            "email": self.email or "",
            "avatar": self.avatar,
        }


class ProjectPermissionRequest(ProjectRoleUpdate):
    """Body for granting a user a project role."""

    username: str = Field(min_length=1, max_length=320)


class UserMetadataUpdate(BaseModel):
    """Body for PUT /api/profile."""

    user_metadata: dict[str, Any] = Field(default_factory=dict)
