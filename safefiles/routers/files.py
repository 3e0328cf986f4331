from __future__ import annotations

import logging
import mimetypes
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import StreamingResponse

from ..deps import get_backend, require_fields
from ..schemas import (
    ApiResponse,
    CreateFolderRequest,
    DeleteResponse,
    DirEntryOut,
    FileContentResponse,
    FileListResponse,
    RenameRequest,
    SaveFileRequest,
    SaveFileResponse,
    UploadResponse,
)
from ..services.file_ops import FileBackend
from ..services.paths import join_user_path

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api', tags=['files'])


@router.get('/files', response_model=FileListResponse)
def list_files(directory: str = Query(default=''), backend: FileBackend = Depends(get_backend)):
    target = backend.resolver.resolve(directory)
    listing = backend.list_dir(target)
    return FileListResponse(
        files=[DirEntryOut(name=e.name, is_dir=e.is_dir) for e in listing.entries],
        relative_dir=listing.relative_dir,
    )


@router.get('/file-content', response_model=FileContentResponse, response_model_exclude_none=True)
def file_content(
    file: Optional[str] = Query(default=None),
    directory: str = Query(default=''),
    backend: FileBackend = Depends(get_backend),
):
    require_fields(file=file)
    target = backend.resolver.resolve(join_user_path(directory, file))
    result = backend.read_text(target)
    return FileContentResponse(content=result.content, sha=result.sha)


@router.post('/save-file', response_model=SaveFileResponse, response_model_exclude_none=True)
def save_file(payload: SaveFileRequest, backend: FileBackend = Depends(get_backend)):
    require_fields(file_name=payload.file_name, content=payload.content)
    if backend.requires_fingerprint:
        require_fields(sha=payload.sha)

    target = backend.resolver.resolve(join_user_path(payload.directory, payload.file_name))
    new_sha = backend.write_text(target, payload.content, sha=payload.sha)
    return SaveFileResponse(message=f"File '{payload.file_name}' saved.", new_sha=new_sha)


@router.post('/create-folder', response_model=ApiResponse)
def create_folder(payload: CreateFolderRequest, backend: FileBackend = Depends(get_backend)):
    require_fields(new_folder=payload.new_folder)
    target = backend.resolver.resolve(join_user_path(payload.directory, payload.new_folder))
    backend.make_dir(target)
    return ApiResponse(message=f"Folder '{payload.new_folder}' created.")


@router.delete('/delete', response_model=DeleteResponse)
def delete(
    file: Optional[str] = Query(default=None),
    directory: str = Query(default=''),
    sha: Optional[str] = Query(default=None),
    backend: FileBackend = Depends(get_backend),
):
    require_fields(file=file)
    if backend.requires_fingerprint:
        require_fields(sha=sha)

    target = backend.resolver.resolve(join_user_path(directory, file))
    kind = backend.delete(target, sha=sha)
    label = 'Folder' if kind == 'folder' else 'File'
    return DeleteResponse(message=f"{label} '{file}' deleted.", kind=kind)


@router.post('/upload', response_model=UploadResponse)
def upload(
    files: Optional[list[UploadFile]] = File(default=None),
    bracketed: Optional[list[UploadFile]] = File(default=None, alias='files[]'),
    directory: str = Form(default=''),
    backend: FileBackend = Depends(get_backend),
):
    uploads = (files or []) + (bracketed or [])
    require_fields(files=uploads or None)

    stored: list[str] = []
    for item in uploads:
        require_fields(filename=item.filename)
        target = backend.resolver.resolve(join_user_path(directory, item.filename))
        backend.store_upload(target, item.file)
        stored.append(item.filename)

    logger.info('Stored %d uploaded file(s) under %r', len(stored), directory or '/')
    return UploadResponse(message=f'Uploaded {len(stored)} file(s).', files=stored)


@router.get('/download')
def download(
    file: Optional[str] = Query(default=None),
    directory: str = Query(default=''),
    backend: FileBackend = Depends(get_backend),
):
    require_fields(file=file)
    target = backend.resolver.resolve(join_user_path(directory, file))
    result = backend.open_download(target)

    # chunked on purpose; a mid-stream read failure may end the body early
    headers = {'Content-Disposition': _content_disposition(result.filename)}
    media_type = mimetypes.guess_type(result.filename)[0] or 'application/octet-stream'
    return StreamingResponse(result.chunks, media_type=media_type, headers=headers)


@router.put('/rename', response_model=ApiResponse)
def rename(payload: RenameRequest, backend: FileBackend = Depends(get_backend)):
    require_fields(old_name=payload.old_name, new_name=payload.new_name)
    old = backend.resolver.resolve(join_user_path(payload.directory, payload.old_name))
    new = backend.resolver.resolve(join_user_path(payload.directory, payload.new_name))
    backend.rename(old, new)
    return ApiResponse(message=f"Renamed '{payload.old_name}' to '{payload.new_name}'.")


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'
