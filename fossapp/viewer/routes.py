# fossapp/viewer/routes.py

from flask import Blueprint, current_app, jsonify, request

from fossapp.context import get_services
from fossapp.errors import ActionError, json_action
from fossapp.viewer.workflow import ViewerSession, check_viewer_file, upload_for_viewer

bp = Blueprint('viewer', __name__)


def _aps():
    aps = get_services().aps
    if aps is None:
        raise ActionError("Autodesk Platform Services is not configured", 503)
    return aps


def _tile_id():
    return request.form.get('tileId') or (request.get_json(silent=True) or {}).get('tileId')


def _read_source():
    """Return ``(tile_id, file_name, content, images)`` from form or JSON input."""
    if request.files.get('file'):
        f = request.files['file']
        images = [(img.filename, img.read()) for img in request.files.getlist('images') if img.filename]
        return request.form.get('tileId'), check_viewer_file(f.filename), f.read(), images

    body = request.get_json(silent=True) or request.form
    drive_file_id = body.get('driveFileId')
    file_name = body.get('fileName')
    if not drive_file_id or not file_name:
        raise ActionError("No file or driveFileId provided")
    file_name = check_viewer_file(file_name)
    drive = get_services().drive
    if drive is None:
        raise ActionError("Google Drive is not configured", 503)
    tile = drive.download_tile_files(drive_file_id)
    return body.get('tileId'), file_name, tile['dwg'], tile['images']


@bp.route('/auth')
@json_action
def auth():
    token = _aps().get_viewer_token()
    return jsonify(access_token=token['access_token'], expires_in=token['expires_in'])


@bp.route('/upload', methods=['POST'])
@json_action
def upload():
    aps = _aps()
    cache = get_services().urn_cache
    tile_id = _tile_id()
    urn = cache.get(tile_id) if tile_id else None
    if urn:
        return jsonify(urn=urn, objectKey=None, expiresAt=None, cached=True)
    _, file_name, content, images = _read_source()
    result = upload_for_viewer(aps, current_app.config['VIEWER_BUCKET'], file_name, content, images)
    if tile_id:
        cache.put(tile_id, result['urn'])
    return jsonify(cached=False, **result)


@bp.route('/status/<urn>')
@json_action
def status(urn):
    result = _aps().translation_status(urn)
    if result['status'] == 'failed':
        get_services().urn_cache.discard_urn(urn)
    return jsonify(result)


@bp.route('/session', methods=['POST'])
@json_action
def session():
    aps = _aps()
    cfg = current_app.config
    services = get_services()
    tile_id = _tile_id()

    def do_upload():
        _, file_name, content, images = _read_source()
        return upload_for_viewer(aps, cfg['VIEWER_BUCKET'], file_name, content, images)

    viewer = ViewerSession(
        aps,
        services.urn_cache,
        poll_interval=cfg['VIEWER_POLL_INTERVAL'],
        max_attempts=cfg['VIEWER_POLL_MAX_ATTEMPTS'],
    )
    return jsonify(success=True, data=viewer.run(tile_id, do_upload))
