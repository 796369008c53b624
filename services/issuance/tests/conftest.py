import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import issuance.models  # noqa: F401 - register with Base
from issuance.config import Settings
from issuance.integrity import generate_access_code, generate_unique_link
from issuance.main import create_app
from issuance.models.access_code import AccessCode
from issuance.models.enums import AccessCodeStatus
from issuance.models.template import CertificateTemplate
from issuance.rate_limit import limiter
from issuance.storage import LocalBlobStore
from shared.auth.config import AuthSettings
from shared.database.postgres import Base, get_async_session_factory

INSTRUCTOR_ID = uuid.UUID("11111111-1111-4111-8111-111111111111")

SeedFn = Callable[..., Awaitable[tuple[CertificateTemplate, AccessCode]]]


@pytest.fixture
def database_url(tmp_path) -> str:
    # On-disk file so concurrent sessions really use separate connections
    return f"sqlite+aiosqlite:///{tmp_path / 'issuance.db'}"


@pytest.fixture
def settings(tmp_path, database_url: str) -> Settings:
    return Settings(
        _env_file=None,
        database_url=database_url,
        blob_backend="local",
        local_storage_root=str(tmp_path / "blobs"),
        encryption_key="test-master-secret",
        encryption_iterations=1_000,
        verification_base_url="https://verify.test/c",
    )


@pytest.fixture
def blob_store(settings: Settings) -> LocalBlobStore:
    return LocalBlobStore(settings.local_storage_root)


@pytest_asyncio.fixture
async def session_factory(
    database_url: str,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    factory = get_async_session_factory(database_url, expire_on_commit=False)
    engine = factory.kw["bind"]
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield factory
    await engine.dispose()


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> SeedFn:
    """Insert a template and one access code for it, committed."""

    async def _seed(
        *,
        usage_limit: int = 1,
        used_count: int = 0,
        status: AccessCodeStatus = AccessCodeStatus.ACTIVE,
        expires_at: datetime | None = None,
        instructor_id: uuid.UUID = INSTRUCTOR_ID,
    ) -> tuple[CertificateTemplate, AccessCode]:
        async with session_factory() as db:
            template = CertificateTemplate(
                instructor_id=instructor_id,
                course_name="Data Structures",
                organization_name="Shahadati Academy",
            )
            db.add(template)
            await db.flush()
            code = AccessCode(
                template_id=template.template_id,
                code=generate_access_code(),
                unique_link=generate_unique_link(),
                status=status,
                usage_limit=usage_limit,
                used_count=used_count,
                expires_at=expires_at,
                created_by=instructor_id,
            )
            db.add(code)
            await db.commit()
            return template, code

    return _seed


def _make_token(user_id: uuid.UUID, roles: list[str], email: str = "user@example.com") -> str:
    auth = AuthSettings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "roles": roles,
        "iss": auth.issuer,
        "aud": auth.audience,
        "iat": now,
        "exp": now + timedelta(minutes=15),
    }
    return jwt.encode(payload, auth.secret, algorithm=auth.algorithm)


def _auth_headers(user_id: uuid.UUID, *roles: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {_make_token(user_id, list(roles))}"}


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_rate_limits() -> None:
    limiter.reset()


@pytest.fixture
def client(settings: Settings) -> Generator[TestClient, None, None]:
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """``auth_headers(user_id, "instructor")`` -> Authorization header for a signed token."""
    return _auth_headers
