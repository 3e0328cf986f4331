"""Entrypoint for running the file service."""

from __future__ import annotations

import uvicorn

from .config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        'safefiles.main:app',
        host=settings.app_host,
        port=settings.app_port,
        reload=False,
        log_level=settings.log_level,
    )


if __name__ == '__main__':
    main()
