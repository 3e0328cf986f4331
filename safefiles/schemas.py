from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SaveFileRequest(BaseModel):
    file_name: Optional[str] = None
    content: Optional[str] = None
    directory: Optional[str] = None
    sha: Optional[str] = None


class CreateFolderRequest(BaseModel):
    new_folder: Optional[str] = None
    directory: Optional[str] = None


class RenameRequest(BaseModel):
    old_name: Optional[str] = None
    new_name: Optional[str] = None
    directory: Optional[str] = None


class ApiResponse(BaseModel):
    success: bool = True
    message: str


class DirEntryOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    is_dir: bool = Field(alias='isDir')


class FileListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    files: list[DirEntryOut]
    relative_dir: str = Field(alias='relativeDir')


class FileContentResponse(BaseModel):
    success: bool = True
    content: str
    sha: Optional[str] = None


class SaveFileResponse(ApiResponse):
    new_sha: Optional[str] = None


class DeleteResponse(ApiResponse):
    kind: str


class UploadResponse(ApiResponse):
    files: list[str]
