from __future__ import annotations

import asyncio
import json
import logging

import pytest
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient
from starlette.requests import Request

from safefiles import main
from safefiles.config import Settings
from safefiles.services.backend import build_backend
from safefiles.services.file_ops import LocalFileOps
from safefiles.services.github_contents import GitHubContentOps


def _request(method: str, path: str, app=None) -> Request:
    scope = {
        'type': 'http',
        'http_version': '1.1',
        'method': method,
        'scheme': 'http',
        'path': path,
        'raw_path': path.encode(),
        'query_string': b'',
        'headers': [],
        'client': ('127.0.0.1', 12345),
        'server': ('testserver', 80),
    }
    if app is not None:
        scope['app'] = app

    async def _receive():
        return {'type': 'http.request', 'body': b'', 'more_body': False}

    return Request(scope, _receive)


def _run_lifespan(app):
    loop = asyncio.new_event_loop()
    try:
        ctx = main.lifespan(app)
        loop.run_until_complete(ctx.__aenter__())
        loop.run_until_complete(ctx.__aexit__(None, None, None))
    finally:
        loop.close()


def test_missing_settings_for_local_backend():
    assert Settings(_env_file=None).missing_settings() == ['FILES_ROOT']
    assert Settings(_env_file=None, files_root='/srv/data').missing_settings() == []


def test_missing_settings_for_github_backend():
    settings = Settings(_env_file=None, storage_backend='github', github_owner='octo')

    assert settings.missing_settings() == ['GITHUB_TOKEN', 'GITHUB_REPO']


def test_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.setenv('FILES_ROOT', str(tmp_path))
    monkeypatch.setenv('CONFINEMENT_POLICY', 'fallback')

    settings = Settings(_env_file=None)

    assert settings.files_root == str(tmp_path)
    assert settings.confinement_policy == 'fallback'


def test_build_backend_picks_implementation(tmp_path):
    local = build_backend(Settings(_env_file=None, files_root=str(tmp_path)))
    remote = build_backend(
        Settings(_env_file=None, storage_backend='github', github_token='t', github_owner='o', github_repo='r')
    )
    try:
        assert isinstance(local, LocalFileOps)
        assert local.root == str(tmp_path.resolve())
        assert isinstance(remote, GitHubContentOps)
        assert build_backend(Settings(_env_file=None)) is None
    finally:
        remote.close()


def test_unconfigured_service_refuses_every_api_request():
    client = TestClient(main.create_app(Settings(_env_file=None)))

    listing = client.get('/api/files')
    saving = client.post('/api/save-file', json={'file_name': 'a', 'content': 'b'})
    health = client.get('/healthz')

    assert listing.status_code == 500
    assert listing.json()['success'] is False
    assert 'FILES_ROOT' in listing.json()['message']
    assert saving.status_code == 500
    assert health.status_code == 200
    assert health.json() == {'ok': True, 'backend': 'local', 'configured': False}


@pytest.mark.asyncio
async def test_configuration_middleware_passes_through_when_configured(tmp_path):
    app = main.create_app(Settings(_env_file=None, files_root=str(tmp_path)))
    request = _request('GET', '/api/files', app=app)

    async def _next(_request: Request):
        return JSONResponse({'ok': True})

    response = await main.configuration_middleware(request, _next)

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_configuration_middleware_short_circuits_api_paths():
    app = main.create_app(Settings(_env_file=None, storage_backend='github'))
    request = _request('DELETE', '/api/delete', app=app)

    async def _next(_request: Request):
        raise AssertionError('handler must not run')

    response = await main.configuration_middleware(request, _next)

    assert response.status_code == 500
    assert 'GITHUB_TOKEN' in json.loads(response.body)['message']


@pytest.mark.asyncio
async def test_access_log_records_method_path_and_status(caplog):
    caplog.set_level(logging.INFO, logger='safefiles.main')
    request = _request('GET', '/api/files')

    async def _next(_request: Request):
        return JSONResponse({'success': False}, status_code=404)

    response = await main.access_log_middleware(request, _next)

    assert response.status_code == 404
    assert 'GET /api/files | Status: 404 (CLIENT_ERROR)' in caplog.text


@pytest.mark.parametrize('code, label', [(200, 'SUCCESS'), (302, 'SUCCESS'), (400, 'CLIENT_ERROR'), (503, 'ERROR')])
def test_status_label(code, label):
    assert main._status_label(code) == label


def test_unhandled_exception_handler_api_response_is_safe():
    request = _request('GET', '/api/files')
    response = asyncio.run(main.unhandled_exception_handler(request, RuntimeError('boom at /srv/data/private')))

    assert response.status_code == 500
    assert json.loads(response.body) == {'success': False, 'message': 'Internal server error. Please try again.'}
    assert b'/srv/data/private' not in response.body


def test_unhandled_exception_handler_plain_response_is_safe():
    request = _request('GET', '/index.html')
    response = asyncio.run(main.unhandled_exception_handler(request, RuntimeError('unexpected /srv/data path')))

    assert response.status_code == 500
    assert b'Unexpected error' in response.body
    assert b'/srv/data' not in response.body


def test_lifespan_creates_local_root(tmp_path):
    root = tmp_path / 'fresh' / 'root'
    app = main.create_app(Settings(_env_file=None, files_root=str(root)))

    _run_lifespan(app)

    assert root.is_dir()


def test_lifespan_closes_backend(tmp_path):
    closed = {'count': 0}

    class _Backend(LocalFileOps):
        def close(self):
            closed['count'] += 1

    app = main.create_app(Settings(_env_file=None, files_root=str(tmp_path)), backend=_Backend(str(tmp_path)))

    _run_lifespan(app)

    assert closed['count'] == 1


def test_static_assets_are_served_next_to_api(tmp_path):
    static = tmp_path / 'static'
    static.mkdir()
    (static / 'index.html').write_text('<h1>files</h1>', encoding='utf-8')
    root = tmp_path / 'root'
    root.mkdir()
    client = TestClient(main.create_app(Settings(_env_file=None, files_root=str(root), static_dir=str(static))))

    assert '<h1>files</h1>' in client.get('/').text
    assert client.get('/api/files').json()['success'] is True
