from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from issuance.access_codes.router import router as access_codes_router
from issuance.backups.router import router as backups_router
from issuance.certificates.pdf_generator import ReportLabRenderer
from issuance.certificates.router import router as certificates_router
from issuance.config import Settings
from issuance.database import create_all, dispose_db, init_db
from issuance.rate_limit import configure_limits, limiter
from issuance.storage import build_blob_store
from issuance.templates.router import router as templates_router
from shared.database.postgres import is_sqlite_url
from shared.middleware.error_handler import error_envelope_middleware
from shared.middleware.request_id import request_id_middleware


SWAGGER_DESCRIPTION = """\
## Shahadati Issuance Service

Instructors define certificate templates and hand out access codes;
students redeem a code to receive a personalised PDF certificate.

### Domain Tags

| Tag | Description |
|-----|-------------|
| **Templates** | Course details and recipient-name placement |
| **Access Codes** | Code creation, validation, student resolution, disable/expire |
| **Certificates** | Redemption, retrieval, public verification |
| **Backups** | Full/incremental snapshots, verified restore, retention (admin) |

### Authentication

Instructor and admin endpoints require a JWT Bearer token.
Token structure: `{"sub": "<user_uuid>", "email": "...", "roles": [...]}`.
Redemption, code resolution and verification are public.

### Status Transitions

```
AccessCode:      active → disabled | expired   (any → disabled)
BackupOperation: pending → running → completed | failed
```
"""


class HealthResponse(BaseModel):
    status: str
    service: str


def get_settings() -> Settings:
    return Settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    init_db(settings.database_url)
    if is_sqlite_url(settings.database_url):
        # Local dev and tests have no migration step
        await create_all()
    yield
    await dispose_db()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title="Shahadati Issuance",
        version="0.1.0",
        description=SWAGGER_DESCRIPTION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.blob_store = build_blob_store(settings)
    app.state.renderer = ReportLabRenderer(
        settings.certificate_font_path or None,
        settings.certificate_bold_font_path or None,
    )

    # Attach rate limiter state before middleware
    configure_limits(settings)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Middleware is applied in reverse-registration order (last added = outermost).
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(error_envelope_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    app.include_router(templates_router, prefix="/api/v1")
    app.include_router(access_codes_router, prefix="/api/v1")
    app.include_router(certificates_router, prefix="/api/v1")
    app.include_router(backups_router, prefix="/api/v1")

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", service="issuance")

    return app


app = create_app()
