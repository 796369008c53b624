from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_files() -> list[str]:
    """Repo-root .env first, then the working directory's."""
    root = Path(__file__).resolve().parents[3]  # shared/shared/auth/ → repo root
    return [str(root / ".env"), ".env"]


class AuthSettings(BaseSettings):
    """Bearer-token verification. Tokens are minted by the identity provider, never here."""

    model_config = SettingsConfigDict(
        env_prefix="JWT_",
        env_file=_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    secret: str = "change-me"
    algorithm: str = "HS256"
    issuer: str = "shahadati-identity"
    audience: str = "shahadati-services"
    # Clock skew tolerated on exp/nbf/iat between the issuer and this service
    leeway_seconds: int = Field(default=30, ge=0, le=300)
