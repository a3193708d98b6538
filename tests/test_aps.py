import os
import sys

import pytest
import requests

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import fossapp.integrations.aps as aps_mod
from fossapp.errors import IntegrationError
from fossapp.integrations.aps import (
    ApsClient,
    bucket_name_for_project,
    from_urn,
    normalize_progress,
    object_key,
    parse_manifest,
    to_urn,
)


class DummyResponse:
    def __init__(self, status_code=200, data=None, text=''):
        self.status_code = status_code
        self._data = data or {}
        self.text = text
        self.content = b''

    def json(self):
        return self._data


class DummySession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []
        self.token_calls = 0

    def post(self, url, **kwargs):
        self.token_calls += 1
        return DummyResponse(200, {'access_token': f'tok{self.token_calls}', 'expires_in': 3599})

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


def make_client(responses, monkeypatch, sleeps=None):
    client = ApsClient('id', 'secret')
    client.session = DummySession(responses)
    monkeypatch.setattr(aps_mod.time, 'sleep', lambda s: (sleeps if sleeps is not None else []).append(s))
    monkeypatch.setattr(aps_mod.random, 'random', lambda: 0.5)
    return client


def test_urn_round_trip_has_no_padding():
    urn = to_urn('fossapp_prj_abc', 'LOBBY_v1_plan.dwg')
    assert '=' not in urn and '+' not in urn and '/' not in urn
    assert from_urn(urn) == ('fossapp_prj_abc', 'LOBBY_v1_plan.dwg')
    with pytest.raises(ValueError):
        from_urn(to_urn('x', 'y').replace('dXJu', 'eHh4', 1))


def test_bucket_and_object_names():
    pid = '1B4E28BA-2FA1-11D2-883F-0016D3CCA427'
    assert bucket_name_for_project(pid) == 'fossapp_prj_1b4e28ba2fa1'
    assert object_key('GF/Lobby 1', 3, 'plan.dwg') == 'GF_Lobby_1_v3_plan.dwg'
    assert object_key('GF', 1, 'plan.dwg', 'abcdef0123456789') == 'GF_v1_abcdef01_plan.dwg'


def test_normalize_progress():
    assert normalize_progress(None) == '0%'
    assert normalize_progress('complete') == '100% complete'
    assert normalize_progress('45% complete') == '45% complete'


def test_parse_manifest_without_derivatives():
    result = parse_manifest({'status': 'inprogress', 'hasThumbnail': 'false'})
    assert result['status'] == 'inprogress'
    assert result['views'] == []
    assert result['warningCount'] == 0


def test_request_retries_rate_limit_with_backoff(monkeypatch):
    sleeps = []
    client = make_client([DummyResponse(429), DummyResponse(503), DummyResponse(200, {'ok': 1})],
                         monkeypatch, sleeps)
    r = client.request('GET', 'https://aps.example/x')
    assert r.json() == {'ok': 1}
    assert sleeps == [2.5, 4.5]
    assert client.session.calls[0][2]['headers']['Authorization'] == 'Bearer tok1'


def test_request_gives_up_after_max_retries(monkeypatch):
    client = make_client([DummyResponse(500, text='down')] * 4, monkeypatch)
    with pytest.raises(IntegrationError) as exc:
        client.request('GET', 'https://aps.example/x')
    assert exc.value.status_code == 500
    assert len(client.session.calls) == 4


def test_request_retries_network_errors(monkeypatch):
    client = make_client([requests.ConnectionError('reset'), DummyResponse(200)], monkeypatch)
    assert client.request('GET', 'https://aps.example/x').status_code == 200


def test_client_errors_are_not_retried(monkeypatch):
    client = make_client([DummyResponse(400, text='bad')], monkeypatch)
    with pytest.raises(IntegrationError):
        client.request('POST', 'https://aps.example/x')
    assert len(client.session.calls) == 1


def test_token_is_cached(monkeypatch):
    client = make_client([DummyResponse(200), DummyResponse(200)], monkeypatch)
    client.request('GET', 'https://aps.example/a')
    client.request('GET', 'https://aps.example/b')
    assert client.session.token_calls == 1


def test_ensure_bucket_treats_conflict_as_existing(monkeypatch):
    client = make_client([DummyResponse(409), DummyResponse(200)], monkeypatch)
    assert client.ensure_bucket('b1') is False
    assert client.ensure_bucket('b2') is True


def test_translation_status_when_manifest_missing(monkeypatch):
    client = make_client([DummyResponse(404)], monkeypatch)
    assert client.translation_status('urn') == {'status': 'pending', 'progress': '0%', 'messages': []}


def test_wait_for_workitem_failure_and_timeout(monkeypatch):
    client = make_client([
        DummyResponse(200, {'status': 'pending'}),
        DummyResponse(200, {'status': 'failedInstructions', 'reportUrl': 'r'}),
    ], monkeypatch)
    with pytest.raises(IntegrationError):
        client.wait_for_workitem('w1', interval=0)

    client = make_client([DummyResponse(200, {'status': 'inprogress'})] * 2, monkeypatch)
    with pytest.raises(IntegrationError) as exc:
        client.wait_for_workitem('w2', interval=0, max_attempts=2)
    assert 'timed out' in str(exc.value)
