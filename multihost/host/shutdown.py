"""
停机协调：信号（SIGTERM/SIGINT/SIGUSR2）与未捕获异常都汇入同一个清理流程。
- 正常停机预算 30s，紧急停机 5s，超时即强制退出，不会卡在某个应用的 cleanup 上；
- 同一时间只允许一次停机，其余请求被忽略。
"""
from __future__ import annotations

import logging
import os
import signal
import sys
import threading
import traceback
from typing import Callable, Optional

logger = logging.getLogger("multihost.shutdown")


def _hard_exit(code: int) -> None:
    logging.shutdown()
    os._exit(code)


class ShutdownCoordinator:
    def __init__(
        self,
        host,
        timeout_sec: float = 30,
        emergency_timeout_sec: float = 5,
        exit_func: Callable[[int], None] = _hard_exit,
    ):
        self.host = host
        self.timeout_sec = timeout_sec
        self.emergency_timeout_sec = emergency_timeout_sec
        self._exit = exit_func
        self._lock = threading.Lock()
        self.is_shutting_down = False
        self.exit_code: Optional[int] = None
        self.reason = ""
        self._done = threading.Event()

    # ---------- 注册 ----------
    def install(self) -> None:
        """注册信号与全局异常钩子；只能在主线程调用。"""
        for sig in (signal.SIGTERM, signal.SIGINT, getattr(signal, "SIGUSR2", None)):
            if sig is None:
                continue
            signal.signal(sig, self._on_signal)
        sys.excepthook = self._on_uncaught
        threading.excepthook = self._on_thread_uncaught
        logger.info("signal and fault handlers installed")

    def _on_signal(self, signum, frame) -> None:
        name = signal.Signals(signum).name
        # 监听循环占着主线程，停机放到独立线程里做
        threading.Thread(target=self.shutdown, args=(name,), name="shutdown", daemon=True).start()

    def _on_uncaught(self, exc_type, exc, tb) -> None:
        logger.critical("uncaught exception: %s", "".join(traceback.format_exception(exc_type, exc, tb)))
        self.shutdown("UNCAUGHT_EXCEPTION", emergency=True)

    def _on_thread_uncaught(self, args) -> None:
        if args.exc_type is SystemExit:
            return
        logger.critical(
            "uncaught exception in thread %s: %s",
            getattr(args.thread, "name", "?"),
            "".join(traceback.format_exception(args.exc_type, args.exc_value, args.exc_traceback)),
        )
        self.shutdown("UNCAUGHT_THREAD_EXCEPTION", emergency=True)

    # ---------- 停机 ----------
    def _begin(self, reason: str, emergency: bool) -> bool:
        with self._lock:
            if self.is_shutting_down:
                if emergency:
                    logger.warning("emergency shutdown already in progress, ignoring %s", reason)
                else:
                    logger.info("received %s during shutdown, ignoring", reason)
                return False
            self.is_shutting_down = True
            self.reason = reason
            return True

    def shutdown(self, reason: str = "UNKNOWN", emergency: bool = False) -> Optional[int]:
        """
        执行一次有界停机并退出进程；返回退出码（exit_func 被替换时便于测试）。
        重复调用返回 None。
        """
        if not self._begin(reason, emergency):
            return None
        budget = self.emergency_timeout_sec if emergency else self.timeout_sec
        if emergency:
            logger.critical("EMERGENCY SHUTDOWN: %s (budget %.1fs)", reason, budget)
        else:
            logger.info("received %s, shutting down gracefully (budget %.1fs)", reason, budget)

        result = {}

        def _run():
            try:
                # 留出一成预算给关闭监听
                result["report"] = self.host.graceful_shutdown(reason, timeout=budget * 0.9)
            except Exception as e:
                logger.exception("error during shutdown")
                result["error"] = e

        worker = threading.Thread(target=_run, name="shutdown-worker", daemon=True)
        worker.start()
        worker.join(budget)

        if worker.is_alive():
            logger.error("shutdown timed out after %.1fs, forcing exit", budget)
            code = 1
        elif "error" in result:
            code = 1
        else:
            code = 1 if emergency else 0
        self.exit_code = code
        logger.info("process exiting with code %s (%s)", code, "SUCCESS" if code == 0 else "ERROR")
        self._done.set()
        self._exit(code)
        return code

    def wait(self, timeout: Optional[float] = None) -> bool:
        """等待进行中的停机走完。"""
        return self._done.wait(timeout)


__all__ = ["ShutdownCoordinator"]
