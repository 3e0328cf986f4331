from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    app_name: str = 'Safe Files'
    app_host: str = '0.0.0.0'
    app_port: int = 3000
    storage_backend: Literal['local', 'github'] = 'local'
    files_root: Optional[str] = None
    confinement_policy: Literal['reject', 'fallback'] = 'reject'
    github_token: Optional[str] = None
    github_owner: Optional[str] = None
    github_repo: Optional[str] = None
    github_branch: Optional[str] = None
    github_api_url: str = 'https://api.github.com'
    github_api_version: str = '2022-11-28'
    commit_message_prefix: str = '[File Editor]'
    http_timeout_sec: float = Field(default=10.0, ge=1, le=120)
    log_level: str = 'info'
    cors_origins: str = ''
    static_dir: Optional[str] = None

    def missing_settings(self) -> list[str]:
        """Environment variables the selected backend needs but did not get."""
        if self.storage_backend == 'github':
            required = {
                'GITHUB_TOKEN': self.github_token,
                'GITHUB_OWNER': self.github_owner,
                'GITHUB_REPO': self.github_repo,
            }
        else:
            required = {'FILES_ROOT': self.files_root}
        return [name for name, value in required.items() if not value]


@lru_cache
def get_settings() -> Settings:
    return Settings()
