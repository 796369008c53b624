from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shared.constants import Role


class CurrentUser(BaseModel):
    """User context decoded from the bearer token."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: UUID
    email: str
    roles: list[Role] = Field(default_factory=list)

    def has_role(self, role: Role) -> bool:
        return role in self.roles or Role.ADMIN in self.roles
