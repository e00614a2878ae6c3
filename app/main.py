from typing import Optional

from app.core.config import Settings, get_settings
from app.core.errors import register_error_handlers
from app.core.logging import configure_logging
from app.core.middleware import RequestIdMiddleware
from app.api.v1.router import v1_router
from app.services.identity_service import IdentityService

from fastapi import FastAPI


def build_identity(settings: Settings) -> IdentityService:
    # imported lazily so tests can build the app without touching the default database
    from app.db.base import Base
    from app.db.session import SessionLocal, engine
    from app.services.challenge_store import InMemoryChallengeStore, SqlAlchemyChallengeStore
    from app.services.messaging import build_gateway
    from app.services.profile_store import SqlAlchemyProfileStore
    from app.services.selected_role_store import SqlAlchemySelectedRoleStore

    import app.models  # noqa: F401  (register tables)

    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)

    challenge_store = (
        SqlAlchemyChallengeStore(SessionLocal) if settings.otp_store == "sql" else InMemoryChallengeStore()
    )
    return IdentityService.build(
        settings,
        challenge_store=challenge_store,
        profile_store=SqlAlchemyProfileStore(SessionLocal),
        selected_role_store=SqlAlchemySelectedRoleStore(SessionLocal),
        gateway=build_gateway(settings),
    )


def create_app(identity: Optional[IdentityService] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.identity = identity or build_identity(settings)

    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    register_error_handlers(app)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app
