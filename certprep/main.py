"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from certprep.api.auth import router as auth_router
from certprep.api.categories import router as categories_router
from certprep.api.chat import router as chat_router
from certprep.api.data import router as data_router
from certprep.api.health import router as health_router
from certprep.api.questions import router as questions_router
from certprep.api.sessions import router as sessions_router
from certprep.api.settings import router as settings_router
from certprep.api.tests import router as tests_router
from certprep.api.upload import router as upload_router
from certprep.core.config import settings
from certprep.core.database import Database
from certprep.core.errors import CertPrepError
from certprep.services.catalog import seed_defaults

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL), format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


def create_app(database: Optional[Database] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s (%s)...", settings.APP_NAME, settings.ENVIRONMENT)
        db_handle: Database = app.state.database
        db_handle.create_all()
        with db_handle.session() as db:
            seed_defaults(db)
        logger.info("Database initialized (%s)", db_handle.dialect)
        Path(settings.DIAGRAM_DIR).mkdir(parents=True, exist_ok=True)

        yield

        logger.info("Shutting down %s...", settings.APP_NAME)
        db_handle.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.database = database or Database()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins(),
        allow_origin_regex=settings.CORS_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CertPrepError)
    async def certprep_error_handler(request: Request, exc: CertPrepError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    prefix = settings.API_PREFIX
    app.include_router(health_router, prefix=prefix, tags=["health"])
    app.include_router(auth_router, prefix=f"{prefix}/auth", tags=["auth"])
    app.include_router(questions_router, prefix=f"{prefix}/questions", tags=["questions"])
    app.include_router(tests_router, prefix=f"{prefix}/tests", tags=["tests"])
    app.include_router(sessions_router, prefix=f"{prefix}/sessions", tags=["sessions"])
    app.include_router(categories_router, prefix=f"{prefix}/categories", tags=["categories"])
    app.include_router(settings_router, prefix=f"{prefix}/settings", tags=["settings"])
    app.include_router(data_router, prefix=f"{prefix}/data", tags=["data"])
    app.include_router(upload_router, prefix=f"{prefix}/upload", tags=["upload"])
    app.include_router(chat_router, prefix=f"{prefix}/chat", tags=["chat"])
    app.mount("/diagrams", StaticFiles(directory=settings.DIAGRAM_DIR, check_dir=False), name="diagrams")
    return app


app = create_app()
