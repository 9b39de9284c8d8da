from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medcure.api.api_v1.api import api_router as api_v1_router
from medcure.api.exception_handlers import register_exception_handlers
from medcure.core.config import settings
from medcure.core.logging_config import setup_logging, get_logger
from medcure.db.init_db import ensure_tables_exist
from medcure.services.scheduler import init_scheduler, shutdown_scheduler, get_scheduler_status

setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle"""
    logger.info("Starting inventory engine")

    await ensure_tables_exist()
    logger.info("Database tables ready")

    init_scheduler()
    yield
    logger.info("Shutting down")
    shutdown_scheduler()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    description="Pharmacy batch inventory: FIFO allocation, COGS and displayed price",
    lifespan=lifespan
)

# CORS
if settings.BACKEND_CORS_ORIGINS:
    logger.info(f"CORS origins: {settings.BACKEND_CORS_ORIGINS}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

register_exception_handlers(app)

logger.info(f"Registering API routes under {settings.API_V1_STR}")
app.include_router(api_v1_router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"message": settings.PROJECT_NAME}


@app.get("/health")
async def health():
    return {"status": "ok", "scheduler": get_scheduler_status()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000, log_level="info")
