"""File operations against a GitHub repository through the REST contents API.

Directories are implicit in a git tree, so folder creation and rename are
reported as unsupported. Updates and deletes are gated on the blob ``sha``
returned by the last read; GitHub rejects a stale one with 409 Conflict.
"""

from __future__ import annotations

import base64
import binascii
import logging
import posixpath
from typing import Any, BinaryIO, Optional
from urllib.parse import quote

import httpx

from ..errors import BackendError, StaleFingerprint, UnsupportedOperation
from .file_ops import CHUNK_SIZE, DirectoryListing, DirEntry, Download, FileContent
from .paths import ConfinementPolicy, RepoPathResolver

logger = logging.getLogger(__name__)

DEFAULT_API_URL = 'https://api.github.com'
RAW_MEDIA_TYPE = 'application/vnd.github.raw+json'


class GitHubContentOps:
    name = 'github'
    requires_fingerprint = True

    def __init__(
        self,
        *,
        token: str,
        owner: str,
        repo: str,
        branch: Optional[str] = None,
        api_url: str = DEFAULT_API_URL,
        api_version: str = '2022-11-28',
        commit_prefix: str = '[File Editor]',
        timeout: float = 10.0,
        policy: ConfinementPolicy | str = ConfinementPolicy.REJECT,
        client: Optional[httpx.Client] = None,
    ):
        self.resolver = RepoPathResolver(policy)
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.commit_prefix = commit_prefix
        self._headers = {
            'Authorization': f'Bearer {token}',
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': api_version,
        }
        self._client = client or httpx.Client(base_url=api_url.rstrip('/'), timeout=timeout)

    def list_dir(self, target: str) -> DirectoryListing:
        message = 'Failed to read repository directory.'
        data = self._request('GET', target, message, params=self._ref()).json()
        if not isinstance(data, list):
            raise BackendError(message, error='Not a directory', error_type='ENOTDIR')
        entries = [DirEntry(name=item['name'], is_dir=item.get('type') == 'dir') for item in data]
        return DirectoryListing(entries=entries, relative_dir=self.resolver.relativize(target))

    def read_text(self, target: str) -> FileContent:
        message = 'Failed to read file from repository.'
        self._require_file(target, message)
        data = self._request('GET', target, message, params=self._ref()).json()
        if not isinstance(data, dict) or data.get('type') != 'file':
            raise BackendError(message, error='Not a regular file', error_type=404, status_code=404)
        if data.get('encoding') != 'base64':
            raise BackendError(
                message, error='File is too large for the contents API', error_type=413, status_code=413
            )
        try:
            content = base64.b64decode(data.get('content') or '').decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as exc:
            logger.error('Repository file %s is not UTF-8 text: %s', target, exc)
            raise BackendError(message, error='File is not valid UTF-8 text', error_type='EILSEQ') from exc
        return FileContent(content=content, sha=data.get('sha'))

    def write_text(self, target: str, content: str, sha: Optional[str] = None) -> Optional[str]:
        return self._put(target, content.encode('utf-8'), sha, 'Failed to save file to repository.')

    def make_dir(self, target: str) -> None:
        raise UnsupportedOperation('Creating folders', self.name)

    def delete(self, target: str, sha: Optional[str] = None) -> str:
        message = 'Failed to delete file from repository.'
        self._require_file(target, message)
        body: dict[str, Any] = {
            'message': f'{self.commit_prefix} Deleted {self.resolver.repo_path(target)}',
            'sha': sha,
        }
        if self.branch:
            body['branch'] = self.branch
        self._request('DELETE', target, message, json=body)
        return 'file'

    def rename(self, old: str, new: str) -> None:
        raise UnsupportedOperation('Rename', self.name)

    def store_upload(self, target: str, stream: BinaryIO) -> None:
        self._put(target, stream.read(), None, 'Failed to upload file to repository.')

    def open_download(self, target: str) -> Download:
        message = 'Failed to download file from repository.'
        self._require_file(target, message)
        response = self._request(
            'GET', target, message, params=self._ref(), headers={'Accept': RAW_MEDIA_TYPE}
        )
        payload = response.content
        chunks = (payload[i:i + CHUNK_SIZE] for i in range(0, len(payload), CHUNK_SIZE))
        return Download(filename=posixpath.basename(target), chunks=chunks, size=len(payload))

    def close(self) -> None:
        self._client.close()

    def _put(self, target: str, payload: bytes, sha: Optional[str], message: str) -> Optional[str]:
        self._require_file(target, message)
        path = self.resolver.repo_path(target)
        verb = 'Updated' if sha else 'Created'
        body: dict[str, Any] = {
            'message': f'{self.commit_prefix} {verb} {path}',
            'content': base64.b64encode(payload).decode('ascii'),
        }
        if sha:
            body['sha'] = sha
        if self.branch:
            body['branch'] = self.branch
        data = self._request('PUT', target, message, json=body).json()
        return (data.get('content') or {}).get('sha')

    def _ref(self) -> Optional[dict[str, str]]:
        return {'ref': self.branch} if self.branch else None

    def _url(self, target: str) -> str:
        url = f'/repos/{quote(self.owner)}/{quote(self.repo)}/contents'
        path = self.resolver.repo_path(target)
        if path:
            url += '/' + quote(path, safe='/')
        return url

    def _require_file(self, target: str, message: str) -> None:
        if self.resolver.is_root(target):
            raise BackendError(message, error='Is a directory', error_type='EISDIR')

    def _request(
        self,
        method: str,
        target: str,
        message: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            response = self._client.request(
                method, self._url(target), params=params, json=json, headers={**self._headers, **(headers or {})}
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise _status_error(message, exc) from exc
        except httpx.HTTPError as exc:
            logger.error('%s %s %s: %s', message, method, target, exc)
            raise BackendError(message, error=type(exc).__name__, internal_message=str(exc)) from exc
        return response


def _status_error(message: str, exc: httpx.HTTPStatusError) -> BackendError:
    response = exc.response
    try:
        data = response.json()
    except ValueError:
        data = None
    detail = data.get('message', response.text) if isinstance(data, dict) else response.text
    logger.error('%s GitHub answered %s: %s', message, response.status_code, detail)
    error_cls = StaleFingerprint if response.status_code == 409 else BackendError
    return error_cls(
        message,
        error_type=response.status_code,
        internal_message=detail,
        status_code=response.status_code,
    )
