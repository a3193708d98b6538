import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import fossapp.tiles.generation as gen
from fakes import FakeAps, FakeDrive
from fossapp import create_app, db
from fossapp.tiles.board import BoardStore
from fossapp.tiles.generation import (
    TileGenerator,
    autocad_scale,
    generate_tile_script,
    layout_tile,
    normalize_member,
    pixels_to_mm,
    preview_tile_script,
)
from fossapp.tiles.progress import ProgressStore

TILE = {
    'tile': 'Tile AB12',
    'tileId': 'g1',
    'members': [
        {'productId': 'p1', 'imageFilename': 'p1_image.png', 'drawingFilename': 'p1_drawing.png',
         'tileText': 'Spot "mini"'},
        {'productId': 'p2', 'imageFilename': 'p2_image.png', 'tileText': 'Linear'},
    ],
}


def test_unit_conversions():
    assert pixels_to_mm(300, 300) == pytest.approx(25.4)
    assert autocad_scale(300) == pytest.approx(50 / 127.0)


def test_layout_stacks_rectangles():
    layout = layout_tile([normalize_member(m) for m in TILE['members']])
    assert layout['width'] == 50
    assert layout['height'] == 150
    first, second = layout['members']
    assert [r['y'] for r in first['rectangles']] == [0.0, 50.0]
    assert (second['startY'], second['endY']) == (100.0, 150.0)


def test_script_structure():
    script = generate_tile_script(TILE)
    lines = script.split('\n')
    assert lines[:3] == ['(setvar "cmdecho" 0)', '(setvar "filedia" 0)', '(command "-DWGUNITS" 3 2 2 "Y" "Y" "N")']
    assert ('(command "layer" "make" "LEGEND TILES LINE THIN" "color" "10" "" "lw" 0.3 "" '
            '"d" "Inner Tiles Style" "LEGEND TILES LINE THIN" "")') in lines
    assert sum(1 for l in lines if l.startswith('(command "-IMAGE" "ATTACH"')) == 3
    assert '(command "RECTANG" "0,0" "50,150")' in lines
    assert '(command "-MTEXT" "60,95" "H" "3" "W" "40" "Spot \'mini\'" "")' in lines
    assert '(command "-MTEXT" "60,145" "H" "3" "W" "40" "Linear" "")' in lines
    assert '(command "SAVEAS" "2018" "Tile AB12.dwg")' in lines
    assert lines[-1] == 'QUIT'


def test_script_settings_override_text():
    script = generate_tile_script(TILE, {'textGap': 5, 'textHeight': 2.5, 'outputFilename': 'out.dwg'})
    assert '(command "-MTEXT" "55,95" "H" "2.5" "W" "40" "Spot \'mini\'" "")' in script
    assert '"SAVEAS" "2018" "out.dwg"' in script


def test_preview_summary():
    preview = preview_tile_script(TILE)
    assert preview['memberCount'] == 2
    assert preview['container'] == {'width': 50, 'height': 150}
    assert [m['rectangleCount'] for m in preview['members']] == [2, 1]


class DummyResponse:
    def __init__(self, content, content_type='image/png'):
        self.content = content
        self.headers = {'Content-Type': content_type}

    def raise_for_status(self):
        pass


class DummyHttp:
    def __init__(self):
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        return DummyResponse(b'DWG' if 'oss.example' in url else b'IMG')


def setup_app(tmp_path):
    os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
    app = create_app('testing')
    with app.app_context():
        db.drop_all()
        db.create_all()
    app.extensions['fossapp'].boards = BoardStore(str(tmp_path))
    return app


PAYLOAD = {
    'tile': 'Tile AB12',
    'tileId': 'g1',
    'members': [
        {'productId': 'p1', 'fossPid': 'F-1', 'imageUrl': 'https://img.example/p1.png',
         'drawingUrl': 'https://img.example/p1-dwg.jpg', 'tileText': 'One'},
    ],
}


def test_pipeline_completes_with_drive_and_viewer(tmp_path):
    app = setup_app(tmp_path)
    aps, drive, progress = FakeAps(), FakeDrive(), ProgressStore()
    cache = app.extensions['fossapp'].urn_cache
    generator = TileGenerator(app, progress, aps, drive, urn_cache=cache)
    generator.http = DummyHttp()
    job_id = progress.create_job('Tile AB12')
    with app.app_context():
        generator.run(job_id, PAYLOAD)

    job = progress.get_job(job_id)
    assert job['status'] == 'complete'
    phases = [m['phase'] for m in job['messages']]
    for phase in ('init', 'images', 'script', 'aps', 'download', 'drive', 'storage', 'complete'):
        assert phase in phases
    result = job['result']
    assert result['driveLink'].startswith('https://drive.google.com/')
    assert result['dwgFileId'] in drive.files
    assert cache.get('g1') == result['viewerUrn']

    activity, arguments = aps.workitems[0]
    assert activity == 'fossapp.fossappTileAct2+production'
    assert arguments['tile']['verb'] == 'put'
    assert arguments['image1']['localName'] == 'F-1_image.png'
    assert arguments['image2']['localName'] == 'F-1_drawing.jpg'
    temp_bucket = [b for b in aps.deleted_buckets if b.startswith('fossapp_tile_')]
    assert len(temp_bucket) == 1

    uploaded = {drive.files[f][0] for f in drive.files}
    assert {'Tile AB12.dwg', 'Tile AB12.scr', 'F-1_image.png', 'F-1_drawing.jpg'} <= uploaded


def test_pipeline_without_images_fails(tmp_path):
    app = setup_app(tmp_path)
    progress = ProgressStore()
    generator = TileGenerator(app, progress, FakeAps(), None)
    generator.http = DummyHttp()
    job_id = progress.create_job('T')
    with app.app_context():
        generator.run(job_id, {'tile': 'T', 'members': [{'productId': 'p1'}]})
    job = progress.get_job(job_id)
    assert job['status'] == 'error'
    assert job['result']['errors'] == ['No images were fetched']


def test_runner_reports_unexpected_errors(tmp_path, monkeypatch):
    app = setup_app(tmp_path)
    progress = ProgressStore()
    aps = FakeAps()

    def boom(*args, **kwargs):
        raise RuntimeError('workitem exploded')

    monkeypatch.setattr(aps, 'submit_workitem', boom)
    generator = TileGenerator(app, progress, aps, None)
    generator.http = DummyHttp()
    job_id = progress.create_job('T')
    generator._runner(job_id, PAYLOAD)
    job = progress.get_job(job_id)
    assert job['status'] == 'error'
    assert job['messages'][-2]['detail'] == 'workitem exploded'
    assert any(b.startswith('fossapp_tile_') for b in aps.deleted_buckets)


def test_generate_route_starts_job_from_board(tmp_path, monkeypatch):
    app = setup_app(tmp_path)
    started = []
    monkeypatch.setattr(gen.threading.Thread, 'start', lambda self: started.append(self))
    client = app.test_client()
    product = {'product_id': 'p1', 'foss_pid': 'F-1', 'image_url': 'https://img.example/p1.png'}
    client.post('/api/tiles/board/bucket', json={'product': product})
    gid = client.post('/api/tiles/board/drop', json={'activeId': 'p1', 'overId': 'canvas-drop-zone'}).get_json()['groupId']

    resp = client.post('/api/tiles/generate', json={'groupId': gid})
    assert resp.status_code == 202
    job_id = resp.get_json()['jobId']
    assert app.extensions['fossapp'].progress.get_job(job_id)['status'] == 'running'
    assert len(started) == 1

    resp = client.post('/api/tiles/generate', json={'groupId': 'missing'})
    assert resp.status_code == 404


def test_preview_route_accepts_explicit_payload(tmp_path):
    app = setup_app(tmp_path)
    resp = app.test_client().post('/api/tiles/preview', json=TILE)
    assert resp.get_json()['data']['memberCount'] == 2
    resp = app.test_client().post('/api/tiles/preview', json={'tile': 'x'})
    assert resp.status_code == 400
