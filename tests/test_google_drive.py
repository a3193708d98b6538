import os
import sys

import pytest
import requests

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import fossapp.integrations.google_drive as gd
from fossapp.errors import IntegrationError
from fossapp.integrations.google_drive import FOLDER_MIME, DriveService


class DummyResponse:
    def __init__(self, status_code=200, data=None, content=b''):
        self.status_code = status_code
        self._data = data or {}
        self.text = str(data)
        self.content = content

    def json(self):
        return self._data


class ScriptedSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


class FolderSession:
    """Answers list/create calls from an in-memory folder table."""

    def __init__(self):
        self.folders = {}
        self.created = []

    def request(self, method, url, **kwargs):
        params = kwargs.get('params') or {}
        if method == 'GET' and url.endswith('/files'):
            q = params['q']
            name = q.split("name = '", 1)[1].split("'", 1)[0]
            parent = q.split("and '", 1)[1].split("'", 1)[0]
            hits = [{'id': fid, 'name': n} for fid, (n, p) in self.folders.items() if n == name and p == parent]
            return DummyResponse(200, {'files': hits})
        if method == 'POST' and url.endswith('/files'):
            body = kwargs['json']
            fid = f"id{len(self.folders) + 1}"
            self.folders[fid] = (body['name'], body['parents'][0])
            self.created.append(body['name'])
            return DummyResponse(200, {'id': fid})
        raise AssertionError(f"unexpected {method} {url}")


def make_service(session, monkeypatch, sleeps=None):
    monkeypatch.setattr(gd.time, 'sleep', lambda s: (sleeps if sleeps is not None else []).append(s))
    return DriveService(session, projects_folder_id='root', archive_folder_id='archive',
                        tiles_folder_id='tiles', shared_drive_id='drive1')


def test_with_retry_backs_off_on_rate_limit(monkeypatch):
    sleeps = []
    session = ScriptedSession([DummyResponse(429), DummyResponse(503), DummyResponse(200, {'id': 'x'})])
    svc = make_service(session, monkeypatch, sleeps)
    assert svc.get_file('x')['id'] == 'x'
    assert sleeps == [1.0, 2.0]
    assert session.calls[0][2]['params']['supportsAllDrives'] == 'true'


def test_with_retry_raises_after_max_attempts(monkeypatch):
    session = ScriptedSession([DummyResponse(500)] * 3)
    svc = make_service(session, monkeypatch)
    with pytest.raises(IntegrationError) as exc:
        svc.get_file('x')
    assert exc.value.status_code == 500
    assert len(session.calls) == 3


def test_with_retry_reraises_network_error(monkeypatch):
    session = ScriptedSession([requests.Timeout('slow')] * 3)
    svc = make_service(session, monkeypatch)
    with pytest.raises(requests.Timeout):
        svc.get_file('x')


def test_not_found_is_not_retried(monkeypatch):
    session = ScriptedSession([DummyResponse(404)])
    svc = make_service(session, monkeypatch)
    with pytest.raises(IntegrationError):
        svc.get_file('x')
    assert len(session.calls) == 1


def test_delete_folder_tolerates_missing(monkeypatch):
    session = ScriptedSession([DummyResponse(404)])
    svc = make_service(session, monkeypatch)
    svc.delete_folder('gone')


def test_create_project_folder_is_idempotent(monkeypatch):
    session = FolderSession()
    svc = make_service(session, monkeypatch)
    first = svc.create_project_folder('2501-001')
    created = len(session.created)
    second = svc.create_project_folder('2501-001')
    assert second['project_folder_id'] == first['project_folder_id']
    assert len(session.created) == created
    assert session.created.count('2501-001') == 1
    assert first['areas_folder_id'] == first['folders']['02_Areas']
    assert first['web_link'].endswith(first['project_folder_id'])
    assert '00_Customer/Drawings' in first['folders']


def test_upload_tile_keeps_previous_as_backup(monkeypatch):
    svc = make_service(ScriptedSession([]), monkeypatch)
    folders = {'old': ('Tile AB12', 'tiles')}
    renamed = []

    def find_folder(name, parent):
        for fid, (n, p) in folders.items():
            if n == name and p == parent:
                return fid
        return None

    def rename(fid, name):
        renamed.append((fid, name))
        folders[fid] = (name, folders[fid][1])

    def create_folder(name, parent):
        folders['new'] = (name, parent)
        return 'new'

    monkeypatch.setattr(svc, 'find_folder', find_folder)
    monkeypatch.setattr(svc, 'rename', rename)
    monkeypatch.setattr(svc, 'create_folder', create_folder)
    monkeypatch.setattr(svc, 'upload_file', lambda parent, name, content, mime: f"{parent}/{name}")

    result = svc.upload_tile('Tile AB12', [('Tile AB12.dwg', b'dwg', 'application/acad')])
    assert renamed == [('old', 'Tile AB12.BAK')]
    assert result['folder_id'] == 'new'
    assert result['files'] == {'Tile AB12.dwg': 'new/Tile AB12.dwg'}


def test_download_tile_files_collects_sibling_images(monkeypatch):
    svc = make_service(ScriptedSession([]), monkeypatch)
    monkeypatch.setattr(svc, 'get_file', lambda fid: {'id': fid, 'name': 'T.dwg', 'parents': ['p1']})
    monkeypatch.setattr(svc, 'list_files', lambda parent: [
        {'id': 'd', 'name': 'T.dwg', 'mimeType': 'application/acad'},
        {'id': 'i1', 'name': 'a.png', 'mimeType': 'image/png'},
        {'id': 'sub', 'name': 'old', 'mimeType': FOLDER_MIME},
    ])
    monkeypatch.setattr(svc, 'download_file', lambda fid: fid.encode())
    tile = svc.download_tile_files('d')
    assert tile['dwg'] == b'd'
    assert tile['images'] == [('a.png', b'i1')]


def test_copy_folder_recurses_into_subfolders(monkeypatch):
    svc = make_service(ScriptedSession([]), monkeypatch)
    tree = {
        'src': [{'id': 'sub', 'name': 'CAD', 'mimeType': FOLDER_MIME},
                {'id': 'doc', 'name': 'notes.txt', 'mimeType': 'text/plain'}],
        'sub': [{'id': 'dwg', 'name': 'plan.dwg', 'mimeType': 'application/acad'}],
    }
    created, copied = [], []

    def create_folder(name, parent):
        created.append((name, parent))
        return f"new-{name}"

    def with_retry(method, url, **kwargs):
        copied.append((url.split('/')[-2], kwargs['json']['parents'][0]))

    monkeypatch.setattr(svc, 'create_folder', create_folder)
    monkeypatch.setattr(svc, 'list_files', lambda fid: tree.get(fid, []))
    monkeypatch.setattr(svc, 'with_retry', with_retry)

    assert svc.copy_folder('src', 'dest', 'v2') == 'new-v2'
    assert created == [('v2', 'dest'), ('CAD', 'new-v2')]
    assert copied == [('dwg', 'new-CAD'), ('doc', 'new-v2')]
