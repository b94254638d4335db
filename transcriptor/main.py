"""Application entry point and FastAPI app factory."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import sys
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config.settings import Settings, settings as default_settings
from .controllers import health, sessions
from .middleware import StructuredLoggingMiddleware, TelemetryMiddleware
from .pipelines.session import SessionOrchestrator
from .services.audio_extraction import AudioExtractionService
from .services.code_detection import CodeDetectionService
from .services.llm_client import BedrockLlmClient
from .services.session_store import DuplicateSessionError, SessionNotFoundError, SessionStore
from .services.storage import MediaStorage
from .services.transcription import TranscriptionService

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _rotating_handler(path_value: str, max_bytes: int, fmt: str) -> RotatingFileHandler:
    log_path = Path(path_value)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_path,
        maxBytes=max_bytes,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _configure_logging(config: Settings) -> None:
    """Stream logs to stdout and rotate the app, pipeline and transcript files."""

    logging.getLogger().handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.addHandler(stdout_handler)
    root_logger.addHandler(_rotating_handler(config.log_file, 1_000_000, _LOG_FORMAT))
    root_logger.setLevel(logging.DEBUG if config.debug else logging.INFO)

    middleware_logger = logging.getLogger("transcriptor.middleware.structured")
    middleware_logger.handlers.clear()
    middleware_stdout = logging.StreamHandler(sys.stdout)
    middleware_stdout.setFormatter(logging.Formatter("%(message)s"))
    middleware_logger.addHandler(middleware_stdout)
    middleware_logger.setLevel(logging.INFO)
    middleware_logger.propagate = False

    pipeline_logger = logging.getLogger("transcriptor.pipeline")
    pipeline_logger.handlers.clear()
    pipeline_logger.addHandler(
        _rotating_handler(config.pipeline_log_file, 500_000, "%(asctime)s | %(levelname)s | %(message)s")
    )
    pipeline_logger.setLevel(logging.INFO)

    transcript_logger = logging.getLogger("transcriptor.logs.transcript")
    transcript_logger.handlers.clear()
    transcript_logger.addHandler(
        _rotating_handler(config.transcript_log_file, 500_000, "%(asctime)s | %(levelname)s | %(message)s")
    )
    transcript_logger.setLevel(logging.INFO)

    noisy_loggers = [
        "botocore",
        "boto3",
        "urllib3",
        "httpx",
        "httpcore",
    ]
    for name in noisy_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def create_app(
    config: Optional[Settings] = None,
    *,
    store: Optional[SessionStore] = None,
    storage: Optional[MediaStorage] = None,
    transcription: Optional[TranscriptionService] = None,
    extraction: Optional[AudioExtractionService] = None,
    detection: Optional[CodeDetectionService] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators default to the real services built from ``config``;
    tests pass fakes in their place. The session store and orchestrator
    are created on startup so importing this module touches no data files.
    """

    config = config or default_settings
    if configure_logging:
        _configure_logging(config)

    app = FastAPI(
        title=config.app_name,
        version=config.app_version,
        debug=config.debug,
        description="Media transcription service with JBA code detection",
    )

    app.state.settings = config
    app.state.store = store
    app.state.storage = storage or MediaStorage(config.storage)
    app.state.transcription = transcription or TranscriptionService(config.assemblyai)
    app.state.extraction = extraction or AudioExtractionService(config.extraction)
    app.state.detection = detection or CodeDetectionService(
        config.detection,
        BedrockLlmClient(config.bedrock, config.aws),
    )
    app.state.orchestrator = None

    app.add_middleware(TelemetryMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=config.cors_allow_credentials,
        allow_methods=config.cors_allow_methods,
        allow_headers=config.cors_allow_headers,
    )

    app.include_router(sessions.router)
    app.include_router(health.router)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        """Root endpoint."""

        return {
            "message": f"Welcome to {config.app_name}",
            "version": config.app_version,
            "status": "operational",
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Expose application metrics for Prometheus scraping."""

        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
        return JSONResponse(status_code=404, content={"detail": "Session not found"})

    @app.exception_handler(DuplicateSessionError)
    async def duplicate_session_handler(request: Request, exc: DuplicateSessionError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.on_event("startup")
    async def startup_event() -> None:
        config.storage.ensure_dirs()
        if app.state.store is None:
            app.state.store = SessionStore(config.storage.sessions_file)
        app.state.orchestrator = SessionOrchestrator(
            app.state.store,
            app.state.storage,
            app.state.transcription,
            app.state.extraction,
            app.state.detection,
        )
        logger.info(
            "%s started (transcription configured=%s, code detection available=%s)",
            config.app_name,
            app.state.transcription.configured,
            app.state.detection.is_available(),
        )

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if app.state.orchestrator is not None:
            await app.state.orchestrator.shutdown()
        await app.state.transcription.aclose()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "transcriptor.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
    )
