import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from . import init_database
from .config import Settings, load_settings
from .database import build_engine, build_session_factory
from .domain import StorageUnavailable
from .identity import IdentityResolver
from .mailer import SmtpMailer
from .routes import router
from .security import TokenVerifier

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler()],
    )


def create_app(settings: Settings | None = None, engine: Engine | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    if engine is None:
        engine = build_engine(settings.database_url, settings.db_timeout_seconds)
    session_factory = build_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            logger.info("Initializing Database...")
            init_database(engine, session_factory, settings)
            logger.info("Database Initialized.")
        except SQLAlchemyError as e:
            logger.error(f"Startup DB Error: {e}")
        yield
        logger.info("Shutting down...")
        engine.dispose()

    app = FastAPI(title="School Portal API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.token_verifier = TokenVerifier(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        exp_minutes=settings.jwt_exp_minutes,
    )
    app.state.identity_resolver = IdentityResolver(app.state.token_verifier)
    app.state.mailer = SmtpMailer(settings)

    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
        logger.error(f"Storage unavailable during {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Service temporarily unavailable"},
        )

    app.include_router(router)
    return app
