"""
应用生命周期：用标准 options 调用每个已加载的初始化函数，收集返回的实例句柄，
供健康检查读取统计、优雅停机时统一清理。
- 单个应用初始化失败只影响自己；
- 清理并发执行、全部结算（不因一个失败而中断），并受单一截止时间约束。
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from .config import applications, backend_section

logger = logging.getLogger("multihost.lifecycle")


def _run_maybe_async(result: Any) -> Any:
    """初始化函数与 cleanup 可以是协程；在当前线程内跑完。"""
    if inspect.isawaitable(result):
        async def _await():
            return await result
        return asyncio.run(_await())
    return result


@dataclass(frozen=True)
class SetupOptions:
    """
    初始化函数的标准参数。
    start_listening 独立运行时默认 True；宿主挂载时恒为 False，应用不得自行监听端口。
    """

    start_listening: bool = True
    config: Dict[str, Any] = field(default_factory=dict)
    id: Any = None
    name: str = ""

    @property
    def features(self) -> Dict[str, Any]:
        return dict(backend_section(self.config).get("features") or {})

    @property
    def database(self) -> Any:
        return self.config.get("database")


class InstanceHandle:
    """应用实例句柄；两个方法始终存在，默认无操作，应用按需覆盖。"""

    def get_stats(self) -> Dict[str, Any]:
        return {"status": "running", "hasStats": False}

    def cleanup(self) -> Any:
        return None


class _AdaptedHandle(InstanceHandle):
    """把初始化函数返回的任意对象（mapping 或带方法的对象）适配为 InstanceHandle。"""

    def __init__(self, target: Any, stats_fn: Optional[Callable] = None, cleanup_fn: Optional[Callable] = None):
        self.target = target
        self._stats_fn = stats_fn
        self._cleanup_fn = cleanup_fn

    def get_stats(self) -> Dict[str, Any]:
        if self._stats_fn is None:
            return super().get_stats()
        return self._stats_fn()

    def cleanup(self) -> Any:
        if self._cleanup_fn is None:
            return None
        return self._cleanup_fn()


def _pick(target: Any, *names: str) -> Optional[Callable]:
    for name in names:
        fn = target.get(name) if isinstance(target, Mapping) else getattr(target, name, None)
        if callable(fn):
            return fn
    return None


def adapt_handle(result: Any) -> InstanceHandle:
    if isinstance(result, InstanceHandle):
        return result
    if result is None:
        return InstanceHandle()
    return _AdaptedHandle(
        result,
        stats_fn=_pick(result, "get_stats", "getStats"),
        cleanup_fn=_pick(result, "cleanup"),
    )


def safe_stats(handle: InstanceHandle) -> Dict[str, Any]:
    """统计失败转为错误形态的快照，绝不外抛。"""
    try:
        return handle.get_stats()
    except Exception as e:
        logger.warning("get_stats failed: %s", e)
        return {"status": "error", "error": str(e)}


@dataclass
class InstanceRecord:
    name: str
    handle: InstanceHandle
    config: Dict[str, Any]
    setup_function: str


class InstanceRegistry:
    """应用名 -> InstanceRecord；启动后基本只读，读写都加锁以容许晚注册。"""

    def __init__(self) -> None:
        self._records: Dict[str, InstanceRecord] = {}
        self._lock = threading.RLock()

    def register(self, record: InstanceRecord) -> None:
        with self._lock:
            self._records[record.name] = record

    def get(self, name: str) -> Optional[InstanceRecord]:
        with self._lock:
            return self._records.get(name)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def items(self) -> List[Tuple[str, InstanceRecord]]:
        with self._lock:
            return list(self._records.items())

    def drain(self) -> List[Tuple[str, InstanceRecord]]:
        """取出全部记录并清空；每个实例的 cleanup 只会被消费一次。"""
        with self._lock:
            items = list(self._records.items())
            self._records.clear()
            return items

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: safe_stats(record.handle) for name, record in self.items()}


def create_setup_options(app_config: Dict[str, Any]) -> SetupOptions:
    return SetupOptions(
        start_listening=False,
        config=app_config,
        id=app_config.get("id"),
        name=app_config.get("name") or "",
    )


def setup_one(app_config: Dict[str, Any], registry, app, listener, instances: InstanceRegistry) -> bool:
    name = app_config.get("name") or ""
    fn_name = backend_section(app_config).get("setupFunctionName")
    logger.info("setting up microserver %s (id=%s): %s", name, app_config.get("id"), app_config.get("description") or "")
    setup_fn = registry.get(fn_name) if isinstance(fn_name, str) and fn_name else None
    if setup_fn is None:
        logger.error(
            "setup function '%s' not found for %s (available: %s); this microserver will be skipped",
            fn_name, name, ", ".join(registry.names()),
        )
        return False
    options = create_setup_options(app_config)
    try:
        result = _run_maybe_async(setup_fn(app, listener, options))
    except Exception:
        logger.exception("failed to set up %s with %s", name, fn_name)
        return False
    instances.register(InstanceRecord(name=name, handle=adapt_handle(result), config=app_config, setup_function=fn_name))
    routes = backend_section(app_config).get("apiRoutes") or []
    logger.info("%s configured (routes: %s)", name, ", ".join(routes) or "none")
    return True


def setup_all(doc: Dict[str, Any], registry, app, listener, instances: Optional[InstanceRegistry] = None) -> InstanceRegistry:
    """按配置顺序初始化全部应用；任一失败不影响后续。"""
    instances = instances if instances is not None else InstanceRegistry()
    apps = applications(doc)
    for app_config in apps:
        setup_one(app_config, registry, app, listener, instances)
    logger.info("microserver setup completed: %d/%d active (%s)", len(instances), len(apps), ", ".join(instances.names()))
    return instances


@dataclass
class CleanupReport:
    completed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    timed_out: List[str] = field(default_factory=list)
    duration_sec: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failed and not self.timed_out


def cleanup_all(instances: InstanceRegistry, timeout: float = 30) -> CleanupReport:
    """
    并发调用每个实例的 cleanup，等待全部结算或截止时间到达。
    失败与超时分别记录，剩余线程为守护线程，直接放弃。从不抛出。
    """
    start = time.monotonic()
    deadline = start + max(0.0, timeout)
    report = CleanupReport()
    outcomes: Dict[str, Optional[str]] = {}
    lock = threading.Lock()

    def _run(name: str, handle: InstanceHandle) -> None:
        error = None
        try:
            _run_maybe_async(handle.cleanup())
        except Exception as e:
            logger.error("error cleaning up %s: %s", name, e, exc_info=True)
            error = f"{type(e).__name__}: {e}"
        with lock:
            outcomes[name] = error

    threads: List[Tuple[str, threading.Thread]] = []
    for name, record in instances.drain():
        logger.info("cleaning up %s...", name)
        t = threading.Thread(target=_run, args=(name, record.handle), name=f"cleanup-{name}", daemon=True)
        t.start()
        threads.append((name, t))

    for name, t in threads:
        t.join(max(0.0, deadline - time.monotonic()))

    with lock:
        for name, _ in threads:
            if name not in outcomes:
                report.timed_out.append(name)
            elif outcomes[name] is None:
                report.completed.append(name)
            else:
                report.failed[name] = outcomes[name]
    report.duration_sec = time.monotonic() - start
    if report.timed_out:
        logger.error("cleanup did not finish within %.1fs: %s", timeout, ", ".join(report.timed_out))
    logger.info(
        "microserver cleanup finished: completed=%d failed=%d timed_out=%d",
        len(report.completed), len(report.failed), len(report.timed_out),
    )
    return report


__all__ = [
    "SetupOptions",
    "InstanceHandle",
    "InstanceRecord",
    "InstanceRegistry",
    "CleanupReport",
    "adapt_handle",
    "safe_stats",
    "create_setup_options",
    "setup_all",
    "cleanup_all",
]
