from __future__ import annotations

import io
import logging
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Protocol

from ..errors import BackendError
from .paths import ConfinementPolicy, PathResolver

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class DirEntry:
    name: str
    is_dir: bool


@dataclass(frozen=True)
class DirectoryListing:
    entries: list[DirEntry]
    relative_dir: str


@dataclass(frozen=True)
class FileContent:
    content: str
    sha: Optional[str] = None


@dataclass
class Download:
    filename: str
    chunks: Iterator[bytes]
    size: Optional[int] = None


class FileBackend(Protocol):
    name: str
    requires_fingerprint: bool
    resolver: PathResolver

    def list_dir(self, target: str) -> DirectoryListing:
        ...

    def read_text(self, target: str) -> FileContent:
        ...

    def write_text(self, target: str, content: str, sha: Optional[str] = None) -> Optional[str]:
        ...

    def make_dir(self, target: str) -> None:
        ...

    def delete(self, target: str, sha: Optional[str] = None) -> str:
        ...

    def rename(self, old: str, new: str) -> None:
        ...

    def store_upload(self, target: str, stream: BinaryIO) -> None:
        ...

    def open_download(self, target: str) -> Download:
        ...

    def close(self) -> None:
        ...


class LocalFileOps:
    name = 'local'
    requires_fingerprint = False

    def __init__(self, root: str, policy: ConfinementPolicy | str = ConfinementPolicy.REJECT):
        self.resolver = PathResolver(str(Path(root).resolve()), policy)

    @property
    def root(self) -> str:
        return self.resolver.root

    def list_dir(self, target: str) -> DirectoryListing:
        entries: list[DirEntry] = []
        try:
            with os.scandir(target) as it:
                for entry in it:
                    entries.append(DirEntry(name=entry.name, is_dir=entry.is_dir()))
        except OSError as exc:
            raise _backend_error('Failed to read directory.', exc) from exc
        return DirectoryListing(entries=entries, relative_dir=self.resolver.relativize(target))

    def read_text(self, target: str) -> FileContent:
        try:
            with open(target, 'r', encoding='utf-8', newline='') as handle:
                return FileContent(content=handle.read())
        except UnicodeDecodeError as exc:
            logger.error('File %s is not valid UTF-8: %s', target, exc)
            raise BackendError(
                'Failed to read file.', error='File is not valid UTF-8 text', error_type='EILSEQ'
            ) from exc
        except OSError as exc:
            raise _backend_error('Failed to read file.', exc) from exc

    def write_text(self, target: str, content: str, sha: Optional[str] = None) -> Optional[str]:
        self._refuse_root(target, 'write')
        try:
            _atomic_write(Path(target), io.BytesIO(content.encode('utf-8')))
        except OSError as exc:
            raise _backend_error('Failed to save file.', exc) from exc
        return None

    def make_dir(self, target: str) -> None:
        try:
            os.makedirs(target, exist_ok=True)
        except OSError as exc:
            raise _backend_error('Failed to create folder.', exc) from exc

    def delete(self, target: str, sha: Optional[str] = None) -> str:
        self._refuse_root(target, 'delete')
        try:
            if os.path.isdir(target) and not os.path.islink(target):
                _remove_tree(target)
                return 'folder'
            os.unlink(target)
            return 'file'
        except OSError as exc:
            raise _backend_error('Failed to delete.', exc) from exc

    def rename(self, old: str, new: str) -> None:
        self._refuse_root(old, 'rename')
        self._refuse_root(new, 'rename')
        try:
            os.rename(old, new)
        except OSError as exc:
            raise _backend_error('Failed to rename.', exc) from exc

    def store_upload(self, target: str, stream: BinaryIO) -> None:
        self._refuse_root(target, 'write')
        try:
            _atomic_write(Path(target), stream)
        except OSError as exc:
            raise _backend_error('Failed to store uploaded file.', exc) from exc

    def open_download(self, target: str) -> Download:
        try:
            handle = open(target, 'rb')
        except OSError as exc:
            raise _backend_error('Failed to download file.', exc) from exc
        try:
            size = os.fstat(handle.fileno()).st_size
        except OSError as exc:
            handle.close()
            raise _backend_error('Failed to download file.', exc) from exc
        return Download(filename=os.path.basename(target), chunks=_iter_file(handle, target), size=size)

    def close(self) -> None:
        return None

    def _refuse_root(self, target: str, operation: str) -> None:
        if self.resolver.is_root(target):
            logger.warning('Refused to %s the storage root', operation)
            raise BackendError(
                f'Cannot {operation} the storage root.', error='Operation not permitted', error_type='EPERM'
            )


def _backend_error(message: str, exc: OSError) -> BackendError:
    logger.error('%s %s', message, exc)
    return BackendError.from_os_error(message, exc)


def _iter_file(handle: BinaryIO, target: str) -> Iterator[bytes]:
    try:
        while chunk := handle.read(CHUNK_SIZE):
            yield chunk
    except OSError as exc:
        # headers are already out; the stream just ends
        logger.error('Download of %s aborted mid-stream: %s', target, exc)
    finally:
        handle.close()


def _ignore_missing(func, path, exc: BaseException) -> None:
    if isinstance(exc, FileNotFoundError):
        return
    raise exc


def _remove_tree(target: str) -> None:
    if sys.version_info >= (3, 12):
        shutil.rmtree(target, onexc=_ignore_missing)
    else:
        shutil.rmtree(target, onerror=lambda func, path, info: _ignore_missing(func, path, info[1]))


def _atomic_write(path: Path, source: BinaryIO) -> None:
    try:
        mode = path.stat().st_mode & 0o777
    except FileNotFoundError:
        mode = 0o644
    fd, tmp_path = tempfile.mkstemp(prefix=f'.{path.name}.', suffix='.tmp', dir=str(path.parent))
    try:
        with os.fdopen(fd, 'wb') as handle:
            while chunk := source.read(CHUNK_SIZE):
                handle.write(chunk)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
        dir_fd = os.open(str(path.parent), os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except Exception:
        Path(tmp_path).unlink(missing_ok=True)
        raise
