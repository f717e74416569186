"""
保活定时器：周期性输出带运行时长与内存的存活日志，可选自 ping 一个 URL（防止托管平台休眠）。
后台守护线程，stop() 可随时打断等待。
"""
from __future__ import annotations

import logging
import threading
import time
import urllib.request
from typing import Any, Dict, Optional

import psutil

logger = logging.getLogger("multihost.keepalive")


class ServerKeepAlive:
    def __init__(self, interval_min: float = 4, ping_url: str = "", include_stats: bool = True, timeout_sec: float = 10):
        self.interval_sec = max(1.0, interval_min * 60)
        self.interval_min = interval_min
        self.ping_url = ping_url
        self.include_stats = include_stats
        self.timeout_sec = timeout_sec
        self.start_time = time.time()
        self.ping_count = 0
        self.last_ping_ok: Optional[bool] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_active:
                logger.info("keep-alive already running")
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._loop, name="keepalive", daemon=True)
            self._thread.start()
        logger.info("keep-alive started, every %s minutes", self.interval_min)

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.ping()
            self._stop.wait(self.interval_sec)

    def ping(self) -> None:
        self.ping_count += 1
        if self.ping_url:
            try:
                with urllib.request.urlopen(self.ping_url, timeout=self.timeout_sec) as r:
                    self.last_ping_ok = 200 <= r.status < 400
            except Exception as e:
                self.last_ping_ok = False
                logger.info("external ping #%d failed: %s", self.ping_count, e)
        if self.include_stats:
            uptime = int(time.time() - self.start_time)
            rss_mb = psutil.Process().memory_info().rss / 1024 / 1024
            logger.info("alive #%d | uptime %ss | memory %.0fMB", self.ping_count, uptime, rss_mb)
        else:
            logger.info("alive #%d", self.ping_count)

    def stop(self) -> None:
        self._stop.set()
        with self._lock:
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=2)
            logger.info("keep-alive stopped")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "isActive": self.is_active,
            "pingCount": self.ping_count,
            "intervalMinutes": self.interval_min,
            "uptimeSeconds": int(time.time() - self.start_time),
            "startTime": self.start_time,
            "lastPingOk": self.last_ping_ok,
        }


__all__ = ["ServerKeepAlive"]
