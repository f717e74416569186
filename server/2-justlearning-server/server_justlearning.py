"""
JustLearning 会话 API：内存会话表 + 后台过期清理线程。
cleanup 停止清理线程并清空会话，供宿主优雅停机时调用。
"""
from __future__ import annotations

import threading
import time
import uuid

from flask import Blueprint, jsonify

SESSION_TTL_SEC = 30 * 60


class SessionStore:
    def __init__(self, ttl_sec: float = SESSION_TTL_SEC, sweep_interval_sec: float = 60):
        self.ttl_sec = ttl_sec
        self._sessions = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._sweep_loop, args=(sweep_interval_sec,), name="justlearning-sweeper", daemon=True)
        self._thread.start()

    def create(self) -> str:
        sid = uuid.uuid4().hex
        with self._lock:
            self._sessions[sid] = time.time()
        return sid

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            cutoff = time.time() - self.ttl_sec
            with self._lock:
                for sid in [s for s, ts in self._sessions.items() if ts < cutoff]:
                    del self._sessions[sid]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def close(self) -> None:
        self._stop.set()
        self._thread.join(timeout=2)
        with self._lock:
            self._sessions.clear()


def setup_justlearning(app, server, options=None):
    name = getattr(options, "name", "") or "justlearning"
    store = SessionStore()
    bp = Blueprint(f"sessions_{name}".replace(".", "_"), __name__)

    @bp.route("/api/sessions", methods=["POST"])
    def create_session():
        return jsonify({"sessionId": store.create()}), 201

    app.register_blueprint(bp)
    return {
        "get_stats": lambda: {"activeSessions": len(store), "ttlSec": store.ttl_sec},
        "cleanup": store.close,
    }
