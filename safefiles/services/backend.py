from __future__ import annotations

from typing import Optional

import httpx

from ..config import Settings
from .file_ops import FileBackend, LocalFileOps
from .github_contents import GitHubContentOps


def build_backend(settings: Settings, client: Optional[httpx.Client] = None) -> Optional[FileBackend]:
    """Build the configured backend, or None when its settings are incomplete."""
    if settings.missing_settings():
        return None

    if settings.storage_backend == 'github':
        return GitHubContentOps(
            token=settings.github_token,
            owner=settings.github_owner,
            repo=settings.github_repo,
            branch=settings.github_branch,
            api_url=settings.github_api_url,
            api_version=settings.github_api_version,
            commit_prefix=settings.commit_message_prefix,
            timeout=settings.http_timeout_sec,
            policy=settings.confinement_policy,
            client=client,
        )
    return LocalFileOps(settings.files_root, settings.confinement_policy)
