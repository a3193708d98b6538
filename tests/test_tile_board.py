import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fossapp import create_app, db
from fossapp.tiles.board import (
    BUCKET_KEY,
    CANVAS_KEY,
    GROUPS_KEY,
    BoardStore,
    TileBoard,
    make_item,
)


def product(pid):
    return {'product_id': pid, 'foss_pid': f'F-{pid}', 'description_short': f'Lamp {pid}',
            'image_url': f'https://img.example/{pid}.png', 'drawing_url': None}


def board_with_bucket(*pids):
    board = TileBoard()
    for pid in pids:
        assert board.add_to_bucket(product(pid)).success
    return board


def test_add_to_bucket_rejects_duplicates_anywhere():
    board = board_with_bucket('a')
    assert not board.add_to_bucket(product('a')).success
    board.move_to_canvas('a')
    assert not board.add_to_bucket(product('a')).success
    board.create_group(['a'])
    result = board.add_to_bucket(product('a'))
    assert not result.success
    assert result.error == 'Product is already on the board'
    assert board.is_consistent()


def test_canvas_round_trip():
    board = board_with_bucket('a', 'b')
    assert board.move_to_canvas('a').success
    assert board.locate('a') == 'canvas'
    assert not board.move_to_canvas('a').success
    assert board.remove_from_canvas('a').success
    assert board.locate('a') == 'bucket'
    assert board.is_consistent()


def test_group_lifecycle_returns_members_to_bucket():
    board = board_with_bucket('a', 'b', 'c')
    result = board.create_group(['a', 'b'])
    assert result.success
    gid = result.group_id
    g = board.group(gid)
    assert g.name.startswith('Tile ') and len(g.name) == 9
    assert [m['product']['product_id'] for m in g.members] == ['a', 'b']

    assert board.add_to_group(gid, 'c').success
    assert board.reorder_group(gid, 2, 0).success
    assert [m['product']['product_id'] for m in board.group(gid).members] == ['c', 'a', 'b']

    assert board.set_member_text(gid, 'a', 'Wall washer').success
    assert board.remove_from_group(gid, 'a').success
    assert 'a' not in board.group(gid).member_texts
    assert board.locate('a') == 'bucket'

    assert board.delete_group(gid).success
    assert sorted(board.all_product_ids()) == ['a', 'b', 'c']
    assert board.tile_groups == []
    assert board.is_consistent()


def test_emptied_group_is_removed():
    board = board_with_bucket('a')
    gid = board.create_group(['a']).group_id
    result = board.remove_from_group(gid, 'a')
    assert result.success
    assert result.group_id is None
    assert board.group(gid) is None


def test_add_to_group_moves_between_tiles():
    board = board_with_bucket('a', 'b')
    g1 = board.create_group(['a']).group_id
    g2 = board.create_group(['b']).group_id
    assert board.add_to_group(g2, 'a').success
    assert board.group(g1) is None
    assert board.locate('a') == g2
    assert not board.add_to_group(g2, 'a').success


def test_clear_all_keeps_every_product_once():
    board = board_with_bucket('a', 'b', 'c', 'd')
    board.move_to_canvas('d')
    board.create_group(['a', 'b'])
    board.clear_all()
    assert board.canvas_items == []
    assert board.tile_groups == []
    assert sorted(board.all_product_ids()) == ['a', 'b', 'c', 'd']


def test_invalid_moves_leave_board_untouched():
    board = board_with_bucket('a')
    before = board.to_dict()
    assert not board.create_group([]).success
    assert not board.create_group(['a', 'a']).success
    assert not board.create_group(['a', 'zzz']).success
    assert not board.reorder_group('missing', 0, 0).success
    assert not board.rename_group('missing', 'x').success
    assert board.to_dict() == before


def test_drop_bucket_item_on_canvas_creates_tile():
    board = board_with_bucket('a')
    result = board.handle_drop('a', 'canvas-drop-zone')
    assert result.success
    assert board.locate('a') == result.group_id


def test_drop_onto_canvas_item_makes_pair_tile():
    board = board_with_bucket('a', 'b')
    board.move_to_canvas('b')
    result = board.handle_drop('a', 'b')
    assert result.success
    ids = [m['product']['product_id'] for m in board.group(result.group_id).members]
    assert ids == ['a', 'b']
    assert board.bucket_items == [] and board.canvas_items == []


def test_drop_onto_tile_or_member_adds_to_tile():
    board = board_with_bucket('a', 'b', 'c')
    gid = board.create_group(['a']).group_id
    assert board.handle_drop('b', f'tile-group-{gid}').success
    assert board.handle_drop('c', f'{gid}:a').success
    assert len(board.group(gid).members) == 3


def test_drop_member_on_member_reorders_within_tile_only():
    board = board_with_bucket('a', 'b', 'c')
    g1 = board.create_group(['a', 'b']).group_id
    g2 = board.create_group(['c']).group_id
    assert board.handle_drop(f'{g1}:b', f'{g1}:a').success
    assert [m['product']['product_id'] for m in board.group(g1).members] == ['b', 'a']
    assert not board.handle_drop(f'{g1}:a', f'{g2}:c').success
    assert not board.handle_drop('a', None).success


def test_tile_payload_uses_member_text_or_description():
    board = board_with_bucket('a', 'b')
    gid = board.create_group(['a', 'b'], name='Lobby tile').group_id
    board.set_member_text(gid, 'b', 'Custom')
    payload = board.tile_payload(gid)
    assert payload['tile'] == 'Lobby tile'
    assert payload['tileId'] == gid
    assert [m['tileText'] for m in payload['members']] == ['Lamp a', 'Custom']
    assert payload['members'][0]['imageUrl'] == 'https://img.example/a.png'


def test_from_dict_drops_duplicates_by_priority():
    data = {
        BUCKET_KEY: [make_item(product('a')), make_item(product('b'))],
        CANVAS_KEY: [make_item(product('a'))],
        GROUPS_KEY: [{'id': 'g1', 'name': 'T', 'members': [make_item(product('b'))], 'memberTexts': {}}],
    }
    board = TileBoard.from_dict(data)
    assert board.locate('a') == 'canvas'
    assert board.locate('b') == 'g1'
    assert board.is_consistent()


def test_board_store_round_trip(tmp_path):
    store = BoardStore(str(tmp_path))
    board = board_with_bucket('a', 'b')
    board.create_group(['b'], name='Saved')
    store.save('board-0001', board)
    loaded = store.load('board-0001')
    assert loaded.to_dict() == board.to_dict()
    assert store.load('board-0002').all_product_ids() == []


def setup_app(tmp_path):
    os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
    app = create_app('testing')
    with app.app_context():
        db.drop_all()
        db.create_all()
    app.extensions['fossapp'].boards = BoardStore(str(tmp_path))
    return app


def test_board_routes_persist_per_cookie(tmp_path):
    app = setup_app(tmp_path)
    client = app.test_client()
    resp = client.post('/api/tiles/board/bucket', json={'product': product('a')})
    assert resp.status_code == 200
    assert resp.get_json()['board'][BUCKET_KEY][0]['product']['product_id'] == 'a'

    resp = client.post('/api/tiles/board/bucket', json={'product': product('a')})
    assert resp.status_code == 400
    assert resp.get_json()['success'] is False

    resp = client.post('/api/tiles/board/drop', json={'activeId': 'a', 'overId': 'canvas-drop-zone'})
    gid = resp.get_json()['groupId']
    assert gid

    resp = client.patch(f'/api/tiles/board/groups/{gid}', json={'name': 'Entrance'})
    assert resp.get_json()['board'][GROUPS_KEY][0]['name'] == 'Entrance'

    resp = client.get('/api/tiles/board')
    assert resp.get_json()['board'][GROUPS_KEY][0]['id'] == gid

    other = app.test_client()
    assert other.get('/api/tiles/board').get_json()['board'][GROUPS_KEY] == []


def test_bucket_route_rejects_malformed_product(tmp_path):
    app = setup_app(tmp_path)
    client = app.test_client()
    for body in ({'product': 'a'}, {'product': ['a']}, {}):
        resp = client.post('/api/tiles/board/bucket', json=body)
        assert resp.status_code == 400
        assert resp.get_json()['success'] is False
    assert client.get('/api/tiles/board').get_json()['board'][BUCKET_KEY] == []
