"""Tile composer board: bucket, canvas and tile groups.

A :class:`TileBoard` is the only place that mutates the three collections.
Every move goes through a method that returns a :class:`MoveResult`, and
every method keeps the board invariant: a product id lives in at most one
of the bucket, the canvas or a single tile group.
"""

import json
import os
import random
import re
import string
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

BUCKET_KEY = 'tiles-bucket-items'
CANVAS_KEY = 'tiles-canvas-items'
GROUPS_KEY = 'tiles-tile-groups'

CANVAS_DROP_ZONE = 'canvas-drop-zone'
GROUP_DROP_PREFIX = 'tile-group-'
TILE_CODE_CHARS = string.ascii_uppercase + string.digits


def generate_tile_code(length: int = 4) -> str:
    return ''.join(random.choices(TILE_CODE_CHARS, k=length))


def product_id_of(item: Dict[str, Any]) -> str:
    return item['product']['product_id']


def make_item(product: Dict[str, Any]) -> Dict[str, Any]:
    return {'product': dict(product), 'addedAt': datetime.now(timezone.utc).isoformat()}


@dataclass
class MoveResult:
    success: bool
    error: Optional[str] = None
    group_id: Optional[str] = None

    def to_dict(self):
        return {'success': self.success, 'error': self.error, 'groupId': self.group_id}


def _fail(message: str) -> MoveResult:
    return MoveResult(False, message)


@dataclass
class TileGroup:
    id: str
    name: str
    members: List[Dict[str, Any]] = field(default_factory=list)
    member_texts: Dict[str, str] = field(default_factory=dict)

    def index_of(self, product_id: str) -> int:
        for i, m in enumerate(self.members):
            if product_id_of(m) == product_id:
                return i
        return -1

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'members': self.members,
            'memberTexts': self.member_texts,
        }


class TileBoard:
    def __init__(self, bucket_items=None, canvas_items=None, tile_groups=None) -> None:
        self.bucket_items: List[Dict[str, Any]] = list(bucket_items or [])
        self.canvas_items: List[Dict[str, Any]] = list(canvas_items or [])
        self.tile_groups: List[TileGroup] = list(tile_groups or [])

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------
    @staticmethod
    def _find(items, product_id):
        for item in items:
            if product_id_of(item) == product_id:
                return item
        return None

    def group(self, group_id: str) -> Optional[TileGroup]:
        for g in self.tile_groups:
            if g.id == group_id:
                return g
        return None

    def locate(self, product_id: str) -> Optional[str]:
        """Return ``'bucket'``, ``'canvas'``, a group id, or None."""
        if self._find(self.bucket_items, product_id):
            return 'bucket'
        if self._find(self.canvas_items, product_id):
            return 'canvas'
        for g in self.tile_groups:
            if g.index_of(product_id) != -1:
                return g.id
        return None

    def all_product_ids(self) -> List[str]:
        ids = [product_id_of(i) for i in self.bucket_items + self.canvas_items]
        for g in self.tile_groups:
            ids.extend(product_id_of(m) for m in g.members)
        return ids

    def is_consistent(self) -> bool:
        ids = self.all_product_ids()
        return len(ids) == len(set(ids))

    # ------------------------------------------------------------------
    # internal moves
    # ------------------------------------------------------------------
    def _take(self, product_id: str, allowed=('bucket', 'canvas')) -> Optional[Dict[str, Any]]:
        """Detach an item from the bucket or canvas (or a group when allowed)."""
        where = self.locate(product_id)
        if where is None:
            return None
        if where == 'bucket' and 'bucket' in allowed:
            item = self._find(self.bucket_items, product_id)
            self.bucket_items.remove(item)
            return item
        if where == 'canvas' and 'canvas' in allowed:
            item = self._find(self.canvas_items, product_id)
            self.canvas_items.remove(item)
            return item
        if where not in ('bucket', 'canvas') and 'group' in allowed:
            g = self.group(where)
            item = g.members.pop(g.index_of(product_id))
            g.member_texts.pop(product_id, None)
            self._drop_empty_groups()
            return item
        return None

    def _return_to_bucket(self, items) -> None:
        for item in items:
            if not self._find(self.bucket_items, product_id_of(item)):
                self.bucket_items.append(item)

    def _drop_empty_groups(self) -> None:
        self.tile_groups = [g for g in self.tile_groups if g.members]

    def _new_group_name(self) -> str:
        taken = {g.name for g in self.tile_groups}
        name = f"Tile {generate_tile_code()}"
        while name in taken:
            name = f"Tile {generate_tile_code()}"
        return name

    # ------------------------------------------------------------------
    # bucket / canvas
    # ------------------------------------------------------------------
    def add_to_bucket(self, product: Dict[str, Any]) -> MoveResult:
        if not isinstance(product, dict):
            return _fail("Product must be an object")
        pid = product.get('product_id')
        if not pid:
            return _fail("Product has no product_id")
        if self.locate(pid) is not None:
            return _fail("Product is already on the board")
        self.bucket_items.append(make_item(product))
        return MoveResult(True)

    def remove_from_bucket(self, product_id: str) -> MoveResult:
        if self._take(product_id, allowed=('bucket',)) is None:
            return _fail("Product is not in the bucket")
        return MoveResult(True)

    def clear_bucket(self) -> MoveResult:
        self.bucket_items = []
        return MoveResult(True)

    def move_to_canvas(self, product_id: str) -> MoveResult:
        item = self._take(product_id, allowed=('bucket',))
        if item is None:
            return _fail("Product is not in the bucket")
        self.canvas_items.append(item)
        return MoveResult(True)

    def remove_from_canvas(self, product_id: str) -> MoveResult:
        item = self._take(product_id, allowed=('canvas',))
        if item is None:
            return _fail("Product is not on the canvas")
        self._return_to_bucket([item])
        return MoveResult(True)

    # ------------------------------------------------------------------
    # tile groups
    # ------------------------------------------------------------------
    def create_group(self, product_ids: List[str], name: Optional[str] = None) -> MoveResult:
        """Make a new tile from loose (bucket or canvas) products."""
        if not product_ids:
            return _fail("A tile needs at least one product")
        if len(set(product_ids)) != len(product_ids):
            return _fail("Duplicate products in tile")
        for pid in product_ids:
            if self.locate(pid) not in ('bucket', 'canvas'):
                return _fail(f"Product {pid} is not available")
        members = [self._take(pid) for pid in product_ids]
        group = TileGroup(id=str(uuid.uuid4()), name=(name or '').strip() or self._new_group_name(), members=members)
        self.tile_groups.append(group)
        return MoveResult(True, group_id=group.id)

    def add_to_group(self, group_id: str, product_id: str) -> MoveResult:
        g = self.group(group_id)
        if g is None:
            return _fail("Tile not found")
        where = self.locate(product_id)
        if where == group_id:
            return _fail("Product is already in this tile")
        if where is None:
            return _fail("Product is not on the board")
        item = self._take(product_id, allowed=('bucket', 'canvas', 'group'))
        g.members.append(item)
        return MoveResult(True, group_id=group_id)

    def remove_from_group(self, group_id: str, product_id: str) -> MoveResult:
        g = self.group(group_id)
        if g is None or g.index_of(product_id) == -1:
            return _fail("Product is not in this tile")
        item = self._take(product_id, allowed=('group',))
        self._return_to_bucket([item])
        return MoveResult(True, group_id=group_id if self.group(group_id) else None)

    def reorder_group(self, group_id: str, old_index: int, new_index: int) -> MoveResult:
        g = self.group(group_id)
        if g is None:
            return _fail("Tile not found")
        n = len(g.members)
        if not (0 <= old_index < n and 0 <= new_index < n):
            return _fail("Index out of range")
        g.members.insert(new_index, g.members.pop(old_index))
        return MoveResult(True, group_id=group_id)

    def rename_group(self, group_id: str, name: str) -> MoveResult:
        g = self.group(group_id)
        if g is None:
            return _fail("Tile not found")
        if not (name or '').strip():
            return _fail("Tile name cannot be empty")
        g.name = name.strip()
        return MoveResult(True, group_id=group_id)

    def set_member_text(self, group_id: str, product_id: str, text: str) -> MoveResult:
        g = self.group(group_id)
        if g is None or g.index_of(product_id) == -1:
            return _fail("Product is not in this tile")
        if (text or '').strip():
            g.member_texts[product_id] = text
        else:
            g.member_texts.pop(product_id, None)
        return MoveResult(True, group_id=group_id)

    def delete_group(self, group_id: str) -> MoveResult:
        g = self.group(group_id)
        if g is None:
            return _fail("Tile not found")
        self.tile_groups.remove(g)
        self._return_to_bucket(g.members)
        return MoveResult(True)

    def clear_all(self) -> MoveResult:
        """Dissolve every tile and empty the canvas back into the bucket."""
        for g in self.tile_groups:
            self._return_to_bucket(g.members)
        self._return_to_bucket(self.canvas_items)
        self.tile_groups = []
        self.canvas_items = []
        return MoveResult(True)

    # ------------------------------------------------------------------
    # drag and drop
    # ------------------------------------------------------------------
    def handle_drop(self, active_id: str, over_id: Optional[str]) -> MoveResult:
        """Apply a drag-and-drop gesture.

        Ids are encoded as ``groupId:productId`` for tile members,
        ``canvas-drop-zone`` for the canvas, ``tile-group-{id}`` for a tile
        and the bare product id for loose bucket/canvas items.
        """
        if not active_id or not over_id:
            return _fail("No drop target")

        if ':' in active_id:
            active_group, active_pid = active_id.split(':', 1)
            if ':' not in over_id:
                return _fail("Tile members can only be reordered")
            over_group, over_pid = over_id.split(':', 1)
            g = self.group(active_group)
            if g is None or active_group != over_group:
                return _fail("Tile members can only be reordered within their tile")
            if active_pid == over_pid:
                return MoveResult(True, group_id=active_group)
            return self.reorder_group(active_group, g.index_of(active_pid), g.index_of(over_pid))

        where = self.locate(active_id)
        if where not in ('bucket', 'canvas'):
            return _fail("Product is not in the bucket or on the canvas")

        if over_id == CANVAS_DROP_ZONE:
            if where != 'bucket':
                return _fail("Product is already on the canvas")
            return self.create_group([active_id])

        if over_id.startswith(GROUP_DROP_PREFIX):
            return self.add_to_group(over_id[len(GROUP_DROP_PREFIX):], active_id)

        if ':' in over_id:
            return self.add_to_group(over_id.split(':', 1)[0], active_id)

        if over_id != active_id and self.locate(over_id) == 'canvas':
            if where == 'bucket':
                self.move_to_canvas(active_id)
            return self.create_group([active_id, over_id])

        return _fail("Unsupported drop")

    # ------------------------------------------------------------------
    # tile generation input
    # ------------------------------------------------------------------
    def tile_payload(self, group_id: str) -> Optional[Dict[str, Any]]:
        g = self.group(group_id)
        if g is None:
            return None
        members = []
        for m in g.members:
            product = m['product']
            pid = product['product_id']
            members.append({
                'productId': pid,
                'fossPid': product.get('foss_pid'),
                'imageUrl': product.get('image_url'),
                'drawingUrl': product.get('drawing_url'),
                'tileText': g.member_texts.get(pid) or product.get('description_short') or product.get('foss_pid') or pid,
            })
        return {'tile': g.name, 'tileId': g.id, 'members': members}

    # ------------------------------------------------------------------
    # serialization
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            BUCKET_KEY: self.bucket_items,
            CANVAS_KEY: self.canvas_items,
            GROUPS_KEY: [g.to_dict() for g in self.tile_groups],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TileBoard':
        """Rebuild a board, dropping entries that would break the invariant.

        Tile membership wins over the canvas, and the canvas over the bucket.
        """
        seen = set()

        def keep(item):
            try:
                pid = product_id_of(item)
            except (KeyError, TypeError):
                return False
            if pid in seen:
                return False
            seen.add(pid)
            return True

        groups = []
        for raw in data.get(GROUPS_KEY) or []:
            members = [m for m in raw.get('members') or [] if keep(m)]
            if members:
                groups.append(TileGroup(
                    id=raw.get('id') or str(uuid.uuid4()),
                    name=raw.get('name') or f"Tile {generate_tile_code()}",
                    members=members,
                    member_texts=dict(raw.get('memberTexts') or {}),
                ))
        canvas = [i for i in data.get(CANVAS_KEY) or [] if keep(i)]
        bucket = [i for i in data.get(BUCKET_KEY) or [] if keep(i)]
        return cls(bucket, canvas, groups)


BOARD_ID_RE = re.compile(r'^[A-Za-z0-9_-]{8,64}$')


class BoardStore:
    """JSON file per board under the instance folder."""

    def __init__(self, root: str) -> None:
        self.root = root
        self.lock = threading.Lock()

    def _path(self, board_id: str) -> str:
        if not BOARD_ID_RE.match(board_id or ''):
            raise ValueError(f"invalid board id: {board_id!r}")
        return os.path.join(self.root, f"{board_id}.json")

    def load(self, board_id: str) -> TileBoard:
        path = self._path(board_id)
        with self.lock:
            if not os.path.exists(path):
                return TileBoard()
            with open(path, encoding='utf-8') as fh:
                return TileBoard.from_dict(json.load(fh))

    def save(self, board_id: str, board: TileBoard) -> None:
        path = self._path(board_id)
        with self.lock:
            os.makedirs(self.root, exist_ok=True)
            tmp = f"{path}.tmp"
            with open(tmp, 'w', encoding='utf-8') as fh:
                json.dump(board.to_dict(), fh)
            os.replace(tmp, path)
