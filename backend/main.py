from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
import logging
from contextlib import asynccontextmanager

from enrollsync import __version__
from enrollsync.core.config import settings
from enrollsync.core.database import engine, init_db
from enrollsync.api.v1 import sync
from enrollsync.services.sync.runtime import build_sync_runtime

logger = logging.getLogger(__name__)


def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    # basicConfig leaves an already configured root logger alone
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Local schema, including the sync bookkeeping tables
    await init_db()

    runtime = build_sync_runtime(settings, engine)
    app.state.sync_runtime = runtime
    if runtime is not None:
        await runtime.start()

    yield

    if runtime is not None:
        await runtime.shutdown()
    await engine.dispose()


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Bidirectional sync between the local school records database and the central database",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync.router, prefix="/api/v1/sync", tags=["sync"])


@app.get("/")
async def root():
    return {"message": f"{settings.APP_NAME} API", "status": "running"}


@app.get("/health")
async def health_check():
    runtime = getattr(app.state, "sync_runtime", None)
    return {
        "status": "healthy",
        "version": __version__,
        "sync_enabled": runtime is not None
    }


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "status_code": exc.status_code}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "status_code": 500}
    )


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower() if not settings.DEBUG else "debug"
    )
