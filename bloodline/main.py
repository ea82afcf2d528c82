from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import RedirectResponse

from bloodline.config import Settings, get_settings
from bloodline.database import Database
from bloodline.errors import InvalidInput
from bloodline.middlewares.logging_middleware import setup_logging_middleware
from bloodline.routes import router as api_router
from bloodline.routes.responses import error_response
from bloodline.utils.logging_config import configure_logging, get_logger

logger = get_logger(__name__)


def create_application(
    settings: Optional[Settings] = None, database: Optional[Database] = None
) -> FastAPI:  # Create the fastapi application
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Build the storage handle on startup and dispose of it on shutdown.
        """
        configure_logging(
            level=settings.LOG_LEVEL,
            environment=settings.ENVIRONMENT,
            log_to_file=settings.LOG_TO_FILE,
            log_dir=settings.LOG_DIR,
        )
        db = database or Database.from_settings(settings)
        await db.init_db()
        app.state.database = db
        logger.info(f"{settings.PROJECT_NAME} started in {settings.ENVIRONMENT} mode")

        yield

        if database is None:
            await db.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description=settings.PROJECT_DESCRIPTION,
        version=settings.VERSION,
        debug=settings.DEBUG,
        docs_url=settings.DOCS_URL,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "loc": [str(part) for part in error.get("loc", ())],
                "msg": error.get("msg"),
                "type": error.get("type"),
            }
            for error in exc.errors()
        ]
        return error_response(InvalidInput(errors=errors))

    setup_logging_middleware(app)

    # Include API routes
    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.get("/", include_in_schema=False)
    async def root():
        return RedirectResponse(url=settings.DOCS_URL)

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok", "version": settings.VERSION}

    return app


app = create_application()
