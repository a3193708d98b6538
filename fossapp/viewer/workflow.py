"""Upload a DWG for the browser viewer and walk it through translation."""

import io
import logging
import os
import threading
import time
import zipfile
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from fossapp.errors import ActionError
from fossapp.integrations.aps import to_urn
from fossapp.validation import ValidationError, sanitize_file_name

VIEWER_EXTENSIONS = ('.dwg', '.dxf')
VIEWER_OBJECT_TTL = timedelta(hours=24)

STAGES = ('scripts', 'upload', 'translation', 'viewer', 'ready', 'error')


class UrnCache:
    """Tile id -> translated URN, forgotten after ``ttl`` seconds."""

    def __init__(self, ttl: float = 86400, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self.clock = clock
        self.lock = threading.Lock()
        self.entries: Dict[str, Tuple[str, float]] = {}

    def get(self, tile_id: str) -> Optional[str]:
        with self.lock:
            entry = self.entries.get(tile_id)
            if entry is None:
                return None
            urn, stored_at = entry
            if self.clock() - stored_at >= self.ttl:
                del self.entries[tile_id]
                return None
            return urn

    def put(self, tile_id: str, urn: str) -> None:
        with self.lock:
            self.entries[tile_id] = (urn, self.clock())

    def discard(self, tile_id: str) -> None:
        with self.lock:
            self.entries.pop(tile_id, None)

    def discard_urn(self, urn: str) -> int:
        """Forget every tile that points at ``urn``."""
        with self.lock:
            stale = [k for k, (u, _) in self.entries.items() if u == urn]
            for k in stale:
                del self.entries[k]
        return len(stale)

    def purge_expired(self) -> int:
        now = self.clock()
        with self.lock:
            expired = [k for k, (_, at) in self.entries.items() if now - at >= self.ttl]
            for k in expired:
                del self.entries[k]
        return len(expired)


def check_viewer_file(file_name: str) -> str:
    name = (file_name or '').strip()
    if not name.lower().endswith(VIEWER_EXTENSIONS):
        raise ValidationError("Invalid file type. Only DWG and DXF files are supported.")
    return name


def upload_for_viewer(aps, bucket: str, file_name: str, content: bytes,
                      images: Optional[List[Tuple[str, bytes]]] = None) -> Dict[str, Any]:
    """Put a drawing in the transient viewer bucket and start translation.

    With images the drawing and its images are zipped so image references
    resolve, and the translation is told which entry is the root file.
    """
    file_name = sanitize_file_name(check_viewer_file(file_name))
    aps.ensure_bucket(bucket, policy='transient')
    stamp = int(time.time() * 1000)
    root_filename = None
    if images:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, 'w', zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(file_name, content)
            for name, data in images:
                zf.writestr(os.path.basename(name), data)
        content = buf.getvalue()
        root_filename = file_name
        object_key = f"{stamp}_{os.path.splitext(file_name)[0]}.zip"
    else:
        object_key = f"{stamp}_{file_name}"

    aps.upload_object(bucket, object_key, content)
    urn = to_urn(bucket, object_key)
    aps.start_translation(urn, root_filename=root_filename)
    logging.info("Viewer upload %s (%d bytes, %d images)", object_key, len(content), len(images or []))
    return {
        'urn': urn,
        'objectKey': object_key,
        'expiresAt': (datetime.now(timezone.utc) + VIEWER_OBJECT_TTL).isoformat(),
    }


class ViewerSession:
    """scripts -> upload -> translation -> viewer -> ready, or error."""

    def __init__(self, aps, cache: UrnCache, poll_interval: float = 2.0, max_attempts: int = 60,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self.aps = aps
        self.cache = cache
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.stage = 'scripts'
        self.history: List[Dict[str, Any]] = []
        self._enter('scripts')

    def _enter(self, stage: str, detail: Optional[str] = None) -> None:
        self.stage = stage
        self.history.append({'stage': stage, 'at': datetime.now(timezone.utc).isoformat(), 'detail': detail})

    def wait_for_translation(self, urn: str) -> Dict[str, Any]:
        for attempt in range(1, self.max_attempts + 1):
            status = self.aps.translation_status(urn)
            if status['status'] == 'success':
                return status
            if status['status'] == 'failed':
                raise ActionError(
                    "Translation failed: " + ('; '.join(status.get('messages') or []) or 'unknown error'), 502
                )
            self._enter('translation', status.get('progress'))
            if attempt < self.max_attempts:
                self.sleep(self.poll_interval)
        raise ActionError("Translation timed out", 504)

    def run(self, tile_id: Optional[str], upload: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        """``upload`` is only called when ``tile_id`` has no cached URN."""
        try:
            urn = self.cache.get(tile_id) if tile_id else None
            cached = urn is not None
            if not cached:
                self._enter('upload')
                urn = upload()['urn']
            self._enter('translation')
            try:
                self.wait_for_translation(urn)
            except ActionError:
                if tile_id:
                    self.cache.discard(tile_id)
                raise
            if tile_id and not cached:
                self.cache.put(tile_id, urn)
            self._enter('viewer')
            token = self.aps.get_viewer_token()
            self._enter('ready')
            return {'urn': urn, 'token': token, 'stage': self.stage, 'cached': cached, 'history': self.history}
        except Exception as e:
            self._enter('error', str(e))
            raise
