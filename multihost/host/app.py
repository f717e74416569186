"""
多应用宿主：单一 Flask 应用 + 单一监听，按域名把请求分给配置中的各个应用。
MultiHost 是唯一的宿主上下文，持有配置、域名映射、模块注册表、实例注册表与监听器，
各组件都从这里取依赖，不使用模块级全局状态。
启动顺序：加载配置 -> 构建域名映射 -> 安装请求管线 -> 加载全部模块 -> 初始化全部应用 -> 监听。
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

from flask import Flask, Response, request
from werkzeug.exceptions import HTTPException

from .config import applications, load_config
from .health import HealthReporter, install_health_endpoints
from .keepalive import ServerKeepAlive
from .lifecycle import CleanupReport, InstanceRegistry, cleanup_all, setup_all
from .modules import ModuleRegistry
from .routing import DomainMap, build_domain_map, install_domain_routing
from .server import HostListener
from .settings import Settings
from .spa import install_spa_dispatch

logger = logging.getLogger("multihost.host")


def _request_id() -> str:
    return (request.headers.get("X-Request-ID") or "").strip() if request else ""


def _error_response(code: str, message: str, details: str = "", status: int = 400) -> Response:
    """统一错误响应格式：code, message, details, requestId。"""
    body = {"code": code, "message": message, "details": details, "requestId": _request_id()}
    return Response(
        json.dumps(body, ensure_ascii=False),
        status=status,
        mimetype="application/json; charset=utf-8",
    )


def _json_log(level: str, msg: str, trace_id: str, **kwargs) -> None:
    log_obj = {"level": level, "message": msg, "trace_id": trace_id, **kwargs}
    logging.getLogger("multihost.access").info(json.dumps(log_obj, ensure_ascii=False))


class MultiHost:
    def __init__(self, settings: Optional[Settings] = None, config: Optional[Dict[str, Any]] = None):
        self.settings = settings or Settings()
        self.config: Dict[str, Any] = config or {}
        self._config_given = config is not None
        self.app = Flask(__name__, static_folder=None)
        self.app.json.ensure_ascii = False
        self.app.extensions["multihost"] = self
        self.listener = HostListener(self.app, self.settings.host, self.settings.port)
        self.modules = ModuleRegistry(self.settings.root)
        self.instances = InstanceRegistry()
        self.domain_map: Optional[DomainMap] = None
        self.health = HealthReporter(self)
        self.keepalive: Optional[ServerKeepAlive] = None
        if self.settings.keepalive_enabled:
            self.keepalive = ServerKeepAlive(self.settings.keepalive_interval_min, self.settings.keepalive_url)
        self.created_at = time.time()
        self.start_time: Optional[float] = None
        self.is_initialised = False
        self.is_running = False

    # ---------- 启动 ----------
    def initialise(self) -> "MultiHost":
        """
        完成全部启动步骤，任何致命错误（ConfigError / NoModulesLoaded）原样抛出，
        由入口脚本决定退出；单个应用的失败在注册表与生命周期内部消化。
        """
        if self.is_initialised:
            return self
        if not self._config_given:
            self.config = load_config(self.settings.secret_config_path, self.settings.config_path)
        logger.info("configuration loaded: %d microservers", len(applications(self.config)))
        self.domain_map = build_domain_map(self.config)
        self._install_pipeline()
        self.modules.load_all(self.config)
        setup_all(self.config, self.modules, self.app, self.listener, self.instances)
        self.is_initialised = True
        return self

    def _install_pipeline(self) -> None:
        app = self.app
        settings = self.settings

        @app.before_request
        def _start_timer():
            request.trace_id = request.headers.get("X-Trace-Id") or uuid.uuid4().hex
            request.start_time = time.perf_counter()

        # 顺序即管线：域名解析 -> 构建产物直出 -> SPA 兜底 -> URL 路由
        install_domain_routing(app, self.config, self.domain_map, _error_response)
        install_spa_dispatch(app, self.config, settings.root, _error_response)
        install_health_endpoints(app, self.health, _error_response)

        @app.after_request
        def _after(resp):
            resp.headers["X-Content-Type-Options"] = "nosniff"
            resp.headers["X-Frame-Options"] = "SAMEORIGIN"
            ctx = getattr(request, "routing", None)
            if ctx is not None:
                resp.headers["X-Microserver"] = ctx.app_name
            start = getattr(request, "start_time", None)
            if start is not None:
                duration_ms = int((time.perf_counter() - start) * 1000)
                resp.headers["X-Response-Time"] = str(duration_ms)
                if settings.access_log:
                    _json_log(
                        "info", "request", getattr(request, "trace_id", ""),
                        app=getattr(ctx, "app_name", None), host=request.headers.get("Host", ""),
                        method=request.method, path=request.path, status=resp.status_code,
                        duration_ms=duration_ms,
                    )
            return resp

        @app.errorhandler(HTTPException)
        def _http_error(e: HTTPException):
            if e.code is not None and e.code < 400:
                return e
            return _error_response(e.name.upper().replace(" ", "_"), e.name, e.description or "", e.code or 500)

        @app.errorhandler(Exception)
        def _unhandled(e: Exception):
            ctx = getattr(request, "routing", None)
            logger.exception("unhandled error app=%s path=%s", getattr(ctx, "app_name", "-"), request.path)
            return _error_response("INTERNAL_ERROR", "Internal server error", type(e).__name__, 500)

    def start(self) -> None:
        """绑定监听并阻塞服务；初始化未完成不得启动。"""
        if not self.is_initialised:
            raise RuntimeError("Server must be initialised before starting")
        if self.is_running:
            logger.info("server already running")
            return
        self.listener.bind()
        if self.keepalive is not None:
            self.keepalive.start()
        self.is_running = True
        self.start_time = time.time()
        self.log_startup_banner()
        self.listener.serve_forever()

    def log_startup_banner(self) -> None:
        logger.info("=" * 64)
        logger.info("MULTIHOST %s:%s env=%s", self.listener.host, self.listener.port, self.settings.environment)
        logger.info(
            "microservers: %d/%d active, %d setup functions loaded",
            len(self.instances), len(applications(self.config)), len(self.modules),
        )
        for app_config in applications(self.config):
            logger.info(
                "  %s -> %s (%s)",
                ", ".join(app_config.get("domains") or []), app_config.get("name"), app_config.get("description") or "",
            )
        for fn_name in self.modules.names():
            logger.info("  setup function: %s", fn_name)
        logger.info("endpoints: /api/health, /api/config%s", "" if not self.settings.is_production else " (debug_token)")
        logger.info("=" * 64)

    # ---------- 停机 ----------
    def graceful_shutdown(self, reason: str = "UNKNOWN", timeout: float = 30) -> CleanupReport:
        logger.info("shutting down (%s)...", reason)
        if self.keepalive is not None:
            self.keepalive.stop()
        report = cleanup_all(self.instances, timeout=timeout)
        self.listener.shutdown()
        self.is_running = False
        logger.info("graceful shutdown completed")
        return report

    # ---------- 状态 ----------
    def server_state(self) -> Dict[str, Any]:
        return {
            "isInitialised": self.is_initialised,
            "isRunning": self.is_running,
            "uptime": int(time.time() - self.start_time) if self.start_time else 0,
            "host": self.listener.host,
            "port": self.listener.port,
            "environment": self.settings.environment,
        }

    def is_active(self, name: str) -> bool:
        return name in self.instances

    def get_instance(self, name: str):
        record = self.instances.get(name)
        return record.handle if record else None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "server": self.server_state(),
            "modules": self.modules.get_stats(),
            "activeInstances": self.instances.names(),
            "microserverStats": self.instances.stats(),
            "keepAlive": self.keepalive.get_stats() if self.keepalive is not None else None,
        }


def create_app(settings: Optional[Settings] = None, config: Optional[Dict[str, Any]] = None) -> Flask:
    """创建并初始化宿主，返回 Flask 应用；MultiHost 实例在 app.extensions['multihost']。"""
    host = MultiHost(settings=settings, config=config)
    host.initialise()
    return host.app


__all__ = ["MultiHost", "create_app"]
