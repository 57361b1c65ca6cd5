import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dandi.config import build_key_store, load_config
from dandi.keys.store import KeyStore
from dandi.routes import keys
from dandi.schemas.errors import (
    DandiError,
    DeleteKeyError,
    InternalServerError,
    UpdateKeyUsageError,
)

logger = logging.getLogger("dandi")

_REJECTED_REQUEST_ERRORS: dict[str, type[DandiError]] = {
    "PATCH": UpdateKeyUsageError,
    "DELETE": DeleteKeyError,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = load_config()

    logging.basicConfig(
        level=getattr(logging, config.server.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    key_store: KeyStore | None = getattr(app.state, "key_store", None)
    if key_store is None:
        key_store = build_key_store(config)
        if config.store_backend == "supabase":
            logger.info(
                "Using Supabase key store at %s (key present: %s)",
                config.supabase.url,
                bool(config.supabase.key),
            )
        else:
            logger.info("Using sqlite key store in %s", config.key_store_dir)

    await key_store.initialize()

    app.state.config = config
    app.state.key_store = key_store

    logger.info("Dandi started on %s:%d", config.server.host, config.server.port)

    yield

    await key_store.close()
    logger.info("Dandi shutdown complete")


def _error_response(error: DandiError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_response().model_dump(),
    )


def create_app(key_store: KeyStore | None = None) -> FastAPI:
    application = FastAPI(title="Dandi", version="0.1.0", lifespan=lifespan)
    application.state.key_store = key_store

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(keys.router, prefix="/api")

    @application.exception_handler(DandiError)
    async def dandi_error_handler(request: Request, exc: DandiError):
        return _error_response(exc)

    @application.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
        error_cls = _REJECTED_REQUEST_ERRORS.get(request.method, InternalServerError)
        return _error_response(error_cls())

    @application.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return _error_response(InternalServerError())

    @application.get("/health")
    async def health(request: Request):
        return {"status": "ok", "store": type(request.app.state.key_store).__name__}

    @application.get("/ready")
    async def ready(request: Request):
        return {"status": "ok"}

    return application


app = create_app()


def run() -> None:
    import uvicorn

    config = load_config()
    uvicorn.run(
        "dandi.main:app",
        host=config.server.host,
        port=config.server.port,
        workers=config.server.workers,
    )


if __name__ == "__main__":
    run()
