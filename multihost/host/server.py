"""
共享监听器：整个进程唯一的 HTTP 监听。作为 listener 参数传给各应用初始化函数，
应用可以读取地址或登记关闭回调，但不能自己再开端口。
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from werkzeug.serving import make_server

logger = logging.getLogger("multihost.server")


class HostListener:
    def __init__(self, app, host: str = "0.0.0.0", port: int = 3001):
        self.app = app
        self.host = host
        self.port = port
        self._server = None
        self._close_callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()
        self.is_running = False

    @property
    def server(self):
        return self._server

    def on_close(self, callback: Callable[[], None]) -> None:
        """应用登记的关闭回调，在监听关闭后依次执行。"""
        with self._lock:
            self._close_callbacks.append(callback)

    def bind(self) -> None:
        if self._server is not None:
            return
        self._server = make_server(self.host, self.port, self.app, threaded=True)
        self.port = self._server.server_port
        logger.info("listener bound on %s:%s", self.host, self.port)

    def serve_forever(self) -> None:
        self.bind()
        self.is_running = True
        try:
            self._server.serve_forever()
        finally:
            self.is_running = False

    def shutdown(self) -> None:
        """停止接受新连接并关闭 socket；须在 serve_forever 以外的线程调用。"""
        server: Optional[object] = self._server
        if server is not None:
            if self.is_running:
                server.shutdown()
            server.server_close()
            self._server = None
            logger.info("listener closed")
        with self._lock:
            callbacks, self._close_callbacks = self._close_callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception as e:
                logger.error("listener close callback failed: %s", e)


__all__ = ["HostListener"]
