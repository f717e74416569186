"""
后端模块注册表：完全由配置驱动的动态加载。
每个应用的模块位置 = <root>/<global.backend.root>/<paths.backend>/<backend.file>，
导出符号名 = backend.setupFunctionName；宿主代码中不出现任何具体应用的路径或函数名。
注册表以函数名为键；单个应用加载失败只记录并跳过，全部失败才是启动致命错误。
"""
from __future__ import annotations

import importlib.util
import logging
import os
import re
import sys
import threading
from typing import Any, Callable, Dict, List, Tuple

from .config import applications, backend_section
from .errors import ModuleLoadError, NoModulesLoaded

logger = logging.getLogger("multihost.modules")

DEFAULT_BACKEND_ROOT = "server"
_MODULE_PREFIX = "multihost_apps"


def _module_name(app_name: str, path: str) -> str:
    safe = re.sub(r"[^0-9A-Za-z_]", "_", app_name)
    stem = re.sub(r"[^0-9A-Za-z_]", "_", os.path.splitext(os.path.basename(path))[0])
    return f"{_MODULE_PREFIX}.{safe}.{stem}"


def _public_exports(module) -> List[str]:
    return sorted(k for k in vars(module) if not k.startswith("_"))


class ModuleRegistry:
    """setupFunctionName -> 初始化函数；加载完成后只读。"""

    def __init__(self, root: str):
        self.root = root
        self._functions: Dict[str, Callable[..., Any]] = {}
        self._sources: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.loaded_count = 0
        self.failed_count = 0
        self.is_loaded = False

    # ---------- 路径 ----------
    def backend_root(self, doc: Dict[str, Any]) -> str:
        backend = (doc.get("global") or {}).get("backend") or {}
        return os.path.join(self.root, backend.get("root") or DEFAULT_BACKEND_ROOT)

    def module_path(self, doc: Dict[str, Any], app_config: Dict[str, Any]) -> str:
        paths = app_config.get("paths") or {}
        return os.path.join(
            self.backend_root(doc),
            paths.get("backend") or "",
            backend_section(app_config).get("file") or "",
        )

    # ---------- 加载 ----------
    def load_all(self, doc: Dict[str, Any]) -> Tuple["ModuleRegistry", int, int]:
        """逐个加载所有应用模块；返回 (registry, 成功数, 失败数)。零成功抛 NoModulesLoaded。"""
        logger.info("starting dynamic import of %d application modules", len(applications(doc)))
        self.loaded_count = 0
        self.failed_count = 0
        for app_config in applications(doc):
            try:
                self._load_one(doc, app_config)
                self.loaded_count += 1
            except ModuleLoadError as e:
                self.failed_count += 1
                logger.error("[%s] %s; this microserver will be skipped", e.app_name, e)
        if self.loaded_count == 0:
            raise NoModulesLoaded(self.failed_count)
        self.is_loaded = True
        logger.info(
            "dynamic import completed: loaded=%s success=%s failed=%s",
            ", ".join(self.names()), self.loaded_count, self.failed_count,
        )
        return self, self.loaded_count, self.failed_count

    def _load_one(self, doc: Dict[str, Any], app_config: Dict[str, Any]) -> None:
        app_name = str(app_config.get("name") or app_config.get("id") or "?")
        fn_name = backend_section(app_config).get("setupFunctionName")
        path = self.module_path(doc, app_config)
        logger.info("[%s] setup function=%s path=%s", app_name, fn_name, path)
        if not isinstance(fn_name, str) or not fn_name:
            raise ModuleLoadError(app_name, "backend.setupFunctionName is missing")
        if not os.path.isfile(path):
            raise ModuleLoadError(app_name, f"File not found: {path}. Check that the path is correct")

        with self._lock:
            existing = self._sources.get(fn_name)
            if existing is not None:
                if os.path.samefile(existing, path):
                    logger.info("[%s] reusing %s already loaded from %s", app_name, fn_name, existing)
                    return
                raise ModuleLoadError(
                    app_name,
                    f"Function '{fn_name}' is already registered from {existing}; refusing to replace it with {path}",
                )

        module_name = _module_name(app_name, path)
        try:
            spec = importlib.util.spec_from_file_location(module_name, path)
            if spec is None or spec.loader is None:
                raise ImportError(f"cannot build import spec for {path}")
            module = importlib.util.module_from_spec(spec)
            sys.modules[module_name] = module
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            logger.debug("[%s] import traceback", app_name, exc_info=True)
            raise ModuleLoadError(app_name, f"Failed to import {path}: {type(e).__name__}: {e}") from e

        exports = _public_exports(module)
        logger.info("[%s] module imported, available exports: %s", app_name, exports)
        setup_fn = getattr(module, fn_name, None)
        if not callable(setup_fn):
            raise ModuleLoadError(
                app_name,
                f"Function '{fn_name}' not found in module or is not a function. Available: {exports}",
            )
        with self._lock:
            self._functions[fn_name] = setup_fn
            self._sources[fn_name] = path
        logger.info("[%s] function '%s' registered", app_name, fn_name)

    # ---------- 查询 ----------
    def get(self, fn_name: str):
        return self._functions.get(fn_name)

    def __contains__(self, fn_name: object) -> bool:
        return fn_name in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    def names(self) -> List[str]:
        return list(self._functions)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "loadedFunctions": self.names(),
            "successful": self.loaded_count,
            "failed": self.failed_count,
            "total": self.loaded_count + self.failed_count,
            "isLoaded": self.is_loaded,
        }


__all__ = ["ModuleRegistry", "DEFAULT_BACKEND_ROOT"]
