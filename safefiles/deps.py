from __future__ import annotations

from fastapi import Request

from .config import Settings
from .errors import BackendError, ClientError
from .services.file_ops import FileBackend


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_backend(request: Request) -> FileBackend:
    backend = getattr(request.app.state, 'backend', None)
    if backend is None:
        # the config middleware normally answers first
        raise BackendError('Storage backend is not configured.', error_type='NOT_CONFIGURED')
    return backend


def require_fields(**fields) -> None:
    """Raise a client error naming every field that is None or empty.

    ``content`` is the one field allowed to be an empty string.
    """
    missing = [
        name for name, value in fields.items()
        if value is None or (value == '' and name != 'content')
    ]
    if missing:
        raise ClientError(f"Missing required field(s): {', '.join(missing)}.")
