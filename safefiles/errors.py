from __future__ import annotations

import errno
from typing import Any, Optional


class FileServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {'success': False, 'message': self.message}


class ClientError(FileServiceError):
    status_code = 400


class PathEscapesRoot(FileServiceError):
    status_code = 403

    def __init__(self, user_path: str):
        super().__init__('Requested path is outside the storage root.')
        self.user_path = user_path

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload['error_type'] = 'PathEscapesRoot'
        return payload


class BackendError(FileServiceError):
    def __init__(
        self,
        message: str,
        *,
        error: Optional[str] = None,
        error_type: Any = 'UNKNOWN',
        internal_message: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.error = error
        self.error_type = error_type
        self.internal_message = internal_message
        if status_code is not None:
            self.status_code = status_code

    @classmethod
    def from_os_error(cls, message: str, exc: OSError) -> 'BackendError':
        # strerror never carries the absolute path, str(exc) does
        code = errno.errorcode.get(exc.errno or 0, 'EIO')
        return cls(message, error=exc.strerror or type(exc).__name__, error_type=code)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.error is not None:
            payload['error'] = self.error
        payload['error_type'] = self.error_type
        if self.internal_message is not None:
            payload['internal_message'] = self.internal_message
        return payload


class StaleFingerprint(BackendError):
    status_code = 409


class UnsupportedOperation(BackendError):
    status_code = 501

    def __init__(self, operation: str, backend: str):
        super().__init__(
            f'{operation} is not supported by the {backend} backend.',
            error_type='UNSUPPORTED',
        )
