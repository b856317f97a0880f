from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db
from .errors import PocketLedgerError
from .logger import configure_logging, get_logger
from .routers import auth as auth_router
from .routers import budgets as budgets_router
from .routers import expenses as expenses_router
from .routers import goals as goals_router
from .routers import income as income_router
from .routers import insights as insights_router
from .routers import jobs as jobs_router

logger = get_logger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Pocket Ledger", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def on_startup():
        init_db()
        logger.info("app_started", environment=settings.environment)

    @app.exception_handler(PocketLedgerError)
    async def handle_domain_error(request: Request, exc: PocketLedgerError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(auth_router.router)
    app.include_router(expenses_router.router)
    app.include_router(budgets_router.router)
    app.include_router(goals_router.router)
    app.include_router(income_router.router)
    app.include_router(insights_router.router)
    app.include_router(jobs_router.router)

    return app


app = create_app()
