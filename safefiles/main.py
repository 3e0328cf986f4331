from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from .config import Settings, get_settings
from .deps import app_settings
from .errors import ClientError, FileServiceError
from .routers import files
from .services.backend import build_backend
from .services.file_ops import FileBackend

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def _parse_cors_origins(value: str) -> list[str]:
    return [origin.strip() for origin in value.split(',') if origin.strip()]


def _status_label(status_code: int) -> str:
    if status_code >= 500:
        return 'ERROR'
    if status_code >= 400:
        return 'CLIENT_ERROR'
    return 'SUCCESS'


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)

    missing = settings.missing_settings()
    if missing:
        logger.critical('Missing configuration %s; every /api request will be refused', ', '.join(missing))
    elif settings.storage_backend == 'local':
        Path(settings.files_root).mkdir(parents=True, exist_ok=True)

    try:
        yield
    finally:
        backend: Optional[FileBackend] = app.state.backend
        if backend is not None:
            backend.close()


async def configuration_middleware(request: Request, call_next):
    if request.url.path.startswith('/api/'):
        missing = request.app.state.settings.missing_settings()
        if missing:
            return JSONResponse(
                {
                    'success': False,
                    'message': f"Server configuration is incomplete. Set {', '.join(missing)} and restart.",
                },
                status_code=500,
            )
    return await call_next(request)


async def access_log_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        '%s %s | Status: %d (%s) | Time: %.0fms',
        request.method,
        request.url.path,
        response.status_code,
        _status_label(response.status_code),
        elapsed_ms,
    )
    return response


async def file_service_error_handler(request: Request, exc: FileServiceError):
    if exc.status_code >= 500:
        logger.error('%s %s failed: %s', request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_payload(), status_code=exc.status_code)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        if error.get('type') == 'json_invalid':
            problems.append('request body is not valid JSON')
            continue
        field = '.'.join(str(part) for part in error.get('loc', ())[1:]) or 'body'
        problems.append(f"{field}: {error.get('msg', 'invalid')}")
    return await file_service_error_handler(request, ClientError(f"Invalid request ({'; '.join(problems)})."))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error('Unhandled error on %s %s', request.method, request.url.path, exc_info=exc)
    if request.url.path.startswith('/api/'):
        return JSONResponse({'success': False, 'message': 'Internal server error. Please try again.'}, status_code=500)
    return PlainTextResponse('Unexpected error', status_code=500)


def healthz(settings: Settings = Depends(app_settings)):
    return {'ok': True, 'backend': settings.storage_backend, 'configured': not settings.missing_settings()}


def create_app(settings: Optional[Settings] = None, backend: Optional[FileBackend] = None) -> FastAPI:
    if settings is None:
        settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.backend = backend if backend is not None else build_backend(settings)

    cors_origins = _parse_cors_origins(settings.cors_origins)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'],
            allow_headers=['Content-Type'],
        )

    # last registered runs first
    app.middleware('http')(configuration_middleware)
    app.middleware('http')(access_log_middleware)

    app.add_exception_handler(FileServiceError, file_service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_api_route('/healthz', healthz, methods=['GET'])
    app.include_router(files.router)

    if settings.static_dir and Path(settings.static_dir).is_dir():
        app.mount('/', StaticFiles(directory=settings.static_dir, html=True), name='static')
    return app


app = create_app()
