"""In-process progress store for tile generation jobs, streamed over SSE."""

import json
import queue
import random
import string
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

PHASES = ('init', 'images', 'script', 'aps', 'download', 'drive', 'storage', 'complete', 'error', 'llm')
TERMINAL_PHASES = ('complete', 'error')


def new_job_id() -> str:
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"job-{int(time.time() * 1000)}-{suffix}"


class ProgressStore:
    """Jobs and their subscribers.

    Finished jobs are kept for ``ttl`` seconds so a late browser tab can
    still replay the log, then purged.
    """

    def __init__(self, ttl: int = 300) -> None:
        self.ttl = ttl
        self.lock = threading.Lock()
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.subscribers: Dict[str, List[queue.Queue]] = {}

    def create_job(self, tile_name: str, job_id: Optional[str] = None) -> str:
        self.purge_expired()
        job_id = job_id or new_job_id()
        with self.lock:
            self.jobs[job_id] = {
                'jobId': job_id,
                'tileName': tile_name,
                'status': 'running',
                'startTime': time.time(),
                'finishedAt': None,
                'messages': [],
                'result': None,
            }
            self.subscribers[job_id] = []
        return job_id

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self.lock:
            job = self.jobs.get(job_id)
            if job is None:
                return None
            return dict(job, messages=list(job['messages']))

    def _publish(self, job: Dict[str, Any], msg: Dict[str, Any]) -> None:
        job['messages'].append(msg)
        for q in self.subscribers.get(job['jobId'], []):
            q.put(msg)

    def _message(self, job, phase, message, detail=None, step=None, result=None):
        if phase not in PHASES:
            raise ValueError(f"unknown phase {phase!r}")
        msg = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'elapsed': f"{time.time() - job['startTime']:.1f}s",
            'phase': phase,
            'message': message,
        }
        if step is not None:
            msg['step'] = step
        if detail is not None:
            msg['detail'] = detail
        if result is not None:
            msg['result'] = result
        return msg

    def add_progress(self, job_id: str, phase: str, message: str, detail: Optional[str] = None, step: Optional[str] = None) -> None:
        with self.lock:
            job = self.jobs.get(job_id)
            if job is None:
                return
            self._publish(job, self._message(job, phase, message, detail, step))

    def complete_job(self, job_id: str, success: bool, result: Optional[Dict[str, Any]] = None, detail: Optional[str] = None) -> None:
        with self.lock:
            job = self.jobs.get(job_id)
            if job is None:
                return
            job['status'] = 'complete' if success else 'error'
            job['finishedAt'] = time.time()
            job['result'] = dict(result or {}, success=success)
            elapsed = f"{job['finishedAt'] - job['startTime']:.1f}s"
            msg = self._message(
                job,
                'complete' if success else 'error',
                'Generation complete!' if success else 'Generation failed',
                detail=detail or f"Total time: {elapsed}",
                result=job['result'],
            )
            self._publish(job, msg)

    def subscribe(self, job_id: str) -> Optional[Tuple[queue.Queue, List[Dict[str, Any]], str]]:
        """Return ``(queue, messages so far, status)`` atomically."""
        with self.lock:
            job = self.jobs.get(job_id)
            if job is None:
                return None
            q: queue.Queue = queue.Queue()
            self.subscribers[job_id].append(q)
            return q, list(job['messages']), job['status']

    def unsubscribe(self, job_id: str, q: queue.Queue) -> None:
        with self.lock:
            subs = self.subscribers.get(job_id)
            if subs and q in subs:
                subs.remove(q)

    def purge_expired(self, now: Optional[float] = None) -> int:
        now = now or time.time()
        with self.lock:
            expired = [
                jid for jid, job in self.jobs.items()
                if job['finishedAt'] is not None and now - job['finishedAt'] >= self.ttl
            ]
            for jid in expired:
                self.jobs.pop(jid, None)
                self.subscribers.pop(jid, None)
        return len(expired)


def sse(data: Dict[str, Any], event: Optional[str] = None) -> str:
    prefix = f"event: {event}\n" if event else ''
    return f"{prefix}data: {json.dumps(data)}\n\n"


def stream_job(store: ProgressStore, job_id: str, keepalive: float = 15.0) -> Iterator[str]:
    """Replay a job's log, then follow it until a terminal message."""
    sub = store.subscribe(job_id)
    if sub is None:
        return
    q, history, status = sub
    try:
        for msg in history:
            yield sse(msg)
        if status != 'running':
            yield sse({'status': status}, event='done')
            return
        while True:
            try:
                msg = q.get(timeout=keepalive)
            except queue.Empty:
                yield ": keepalive\n\n"
                continue
            yield sse(msg)
            if msg['phase'] in TERMINAL_PHASES:
                yield sse({'status': msg['phase']}, event='done')
                return
    finally:
        store.unsubscribe(job_id, q)
