# fossapp/tiles/routes.py

import functools
import uuid

from flask import Blueprint, Response, current_app, jsonify, request

from fossapp.context import get_services
from fossapp.errors import ActionError, NotFound, json_action
from fossapp.tiles.generation import TileGenerator, preview_tile_script
from fossapp.tiles.progress import stream_job

bp = Blueprint('tiles', __name__)

BOARD_COOKIE = 'tiles_board'


def _board_id():
    board_id = request.cookies.get(BOARD_COOKIE)
    return board_id or uuid.uuid4().hex


def board_action(view):
    """Load the caller's board, run the move, save and return the new state."""

    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        store = get_services().boards
        board_id = _board_id()
        try:
            board = store.load(board_id)
        except ValueError:
            board_id = uuid.uuid4().hex
            board = store.load(board_id)
        result = view(board, *args, **kwargs)
        status = 200
        if result is not None:
            if result.success:
                store.save(board_id, board)
            else:
                status = 400
        payload = {'success': True if result is None else result.success, 'board': board.to_dict()}
        if result is not None:
            payload.update(error=result.error, groupId=result.group_id)
        resp = jsonify(payload)
        resp.status_code = status
        resp.set_cookie(BOARD_COOKIE, board_id, httponly=True, samesite='Lax')
        return resp

    return wrapper


def _body():
    return request.get_json(silent=True) or {}


@bp.route('/board')
@board_action
def get_board(board):
    return None


@bp.route('/board/bucket', methods=['POST'])
@board_action
def add_to_bucket(board):
    return board.add_to_bucket(_body().get('product'))


@bp.route('/board/bucket', methods=['DELETE'])
@board_action
def clear_bucket(board):
    return board.clear_bucket()


@bp.route('/board/bucket/<product_id>', methods=['DELETE'])
@board_action
def remove_from_bucket(board, product_id):
    return board.remove_from_bucket(product_id)


@bp.route('/board/canvas/<product_id>', methods=['POST'])
@board_action
def move_to_canvas(board, product_id):
    return board.move_to_canvas(product_id)


@bp.route('/board/canvas/<product_id>', methods=['DELETE'])
@board_action
def remove_from_canvas(board, product_id):
    return board.remove_from_canvas(product_id)


@bp.route('/board/groups', methods=['POST'])
@board_action
def create_group(board):
    body = _body()
    return board.create_group(body.get('productIds') or [], body.get('name'))


@bp.route('/board/groups/<group_id>', methods=['PATCH'])
@board_action
def rename_group(board, group_id):
    return board.rename_group(group_id, _body().get('name', ''))


@bp.route('/board/groups/<group_id>', methods=['DELETE'])
@board_action
def delete_group(board, group_id):
    return board.delete_group(group_id)


@bp.route('/board/groups/<group_id>/members/<product_id>', methods=['POST'])
@board_action
def add_to_group(board, group_id, product_id):
    return board.add_to_group(group_id, product_id)


@bp.route('/board/groups/<group_id>/members/<product_id>', methods=['DELETE'])
@board_action
def remove_from_group(board, group_id, product_id):
    return board.remove_from_group(group_id, product_id)


@bp.route('/board/groups/<group_id>/reorder', methods=['POST'])
@board_action
def reorder_group(board, group_id):
    body = _body()
    try:
        old_index, new_index = int(body['from']), int(body['to'])
    except (KeyError, TypeError, ValueError):
        old_index = new_index = -1
    return board.reorder_group(group_id, old_index, new_index)


@bp.route('/board/groups/<group_id>/texts/<product_id>', methods=['PUT'])
@board_action
def set_member_text(board, group_id, product_id):
    return board.set_member_text(group_id, product_id, _body().get('text', ''))


@bp.route('/board/drop', methods=['POST'])
@board_action
def drop(board):
    body = _body()
    return board.handle_drop(body.get('activeId') or '', body.get('overId'))


@bp.route('/board/clear', methods=['POST'])
@board_action
def clear(board):
    return board.clear_all()


def _tile_payload():
    """Either an explicit ``{tile, members}`` body or a ``groupId`` on the caller's board."""
    body = _body()
    if body.get('groupId'):
        try:
            board = get_services().boards.load(_board_id())
        except ValueError:
            raise NotFound("Tile not found")
        payload = board.tile_payload(body['groupId'])
        if payload is None:
            raise NotFound("Tile not found")
        return payload, body.get('settings')
    if not body.get('tile') or not body.get('members'):
        raise ActionError("Tile name and at least one member are required")
    return {'tile': body['tile'], 'tileId': body.get('tileId'), 'members': body['members']}, body.get('settings')


@bp.route('/preview', methods=['POST'])
@json_action
def preview():
    payload, settings = _tile_payload()
    return jsonify(success=True, data=preview_tile_script(payload, settings))


@bp.route('/generate', methods=['POST'])
@json_action
def generate():
    payload, settings = _tile_payload()
    if settings:
        payload['settings'] = settings
    services = get_services()
    generator = TileGenerator(
        current_app._get_current_object(),
        services.progress,
        services.aps,
        services.drive,
        urn_cache=services.urn_cache,
    )
    job_id = generator.start(payload)
    return jsonify(success=True, jobId=job_id), 202


@bp.route('/stream/<job_id>')
def stream(job_id):
    store = get_services().progress
    if store.get_job(job_id) is None:
        return jsonify(success=False, error="Job not found"), 404
    return Response(
        stream_job(store, job_id),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )
