"""
健康与诊断：
- GET /api/health：公开快照（运行时长、本次请求的路由结果、模块加载统计、各应用 get_stats）。
- GET /api/config：内部状态与原始配置；生产模式下必须带正确的 debug_token。
"""
from __future__ import annotations

import hmac
import logging
import os
import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psutil
from flask import jsonify, request

from .config import applications, backend_section
from .routing import normalize_host

logger = logging.getLogger("multihost.health")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthReporter:
    """从 MultiHost 聚合状态；自身不持有可变状态。"""

    def __init__(self, host):
        self.host = host
        self.setup_time = time.time()

    # ---------- 快照 ----------
    def configured_list(self) -> list:
        instances = self.host.instances
        out = []
        for app_config in applications(self.host.config):
            name = app_config.get("name")
            backend = backend_section(app_config)
            active = name in instances
            out.append({
                "id": app_config.get("id"),
                "name": name,
                "description": app_config.get("description"),
                "domains": app_config.get("domains") or [],
                "features": backend.get("features") or {},
                "hasInstance": active,
                "setupFunction": backend.get("setupFunctionName"),
                "routes": backend.get("apiRoutes") or [],
                "status": "active" if active else "inactive",
            })
        return out

    def system_info(self) -> Dict[str, Any]:
        mem = psutil.Process().memory_info()
        return {
            "memory": {"rss": mem.rss, "vms": mem.vms},
            "pid": os.getpid(),
            "platform": sys.platform,
            "pythonVersion": platform.python_version(),
        }

    def snapshot(self, ctx=None) -> Dict[str, Any]:
        host = self.host
        registry = host.modules
        instances = host.instances
        stats = instances.stats()
        return {
            "status": "OK",
            "timestamp": _now_iso(),
            "uptime": round(time.time() - psutil.Process().create_time(), 3),
            "environment": host.settings.environment,
            "currentRequest": ctx.to_dict() if ctx is not None else None,
            "server": host.server_state(),
            "microservers": {
                "total": len(applications(host.config)),
                "active": len(instances),
                "dynamicImports": len(registry),
                "loadStats": {
                    "successful": registry.loaded_count,
                    "failed": registry.failed_count,
                    "total": registry.loaded_count + registry.failed_count,
                },
                "configured": self.configured_list(),
            },
            "stats": stats,
            "system": self.system_info(),
            "keepAlive": host.keepalive.get_stats() if host.keepalive is not None else None,
        }

    def domain_mapping(self) -> Dict[str, Dict[str, Any]]:
        mapping = {}
        for app_config in applications(self.host.config):
            for domain in app_config.get("domains") or []:
                mapping[normalize_host(str(domain))] = {
                    "serverName": app_config.get("name"),
                    "serverId": app_config.get("id"),
                    "description": app_config.get("description"),
                }
        return mapping

    def config_report(self) -> Dict[str, Any]:
        host = self.host
        doc = host.config
        return {
            "loadedAt": _now_iso(),
            "setupTime": self.setup_time,
            "applications": doc.get("applications"),
            "default": doc.get("default"),
            "global": doc.get("global"),
            "dynamicImports": {
                "loadedFunctions": host.modules.names(),
                "activeInstances": host.instances.names(),
                "loadStats": {
                    "successful": host.modules.loaded_count,
                    "failed": host.modules.failed_count,
                    "total": host.modules.loaded_count + host.modules.failed_count,
                },
            },
            "routing": {
                "availableDomains": [d for a in applications(doc) for d in a.get("domains") or []],
                "defaultServer": host.domain_map.default if host.domain_map else None,
                "domainMap": host.domain_map.to_dict() if host.domain_map else {},
                "serverDomainMapping": self.domain_mapping(),
            },
            "systemState": host.server_state(),
        }

    # ---------- 访问控制 ----------
    def config_access_allowed(self, token: Optional[str]) -> bool:
        """非生产直接放行；生产需 debug_token 与 MULTIHOST_DEBUG_TOKEN 一致。"""
        settings = self.host.settings
        if not settings.is_production:
            return True
        if not token or not settings.debug_token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), settings.debug_token.encode("utf-8"))


def install_health_endpoints(app, reporter: HealthReporter, error_response) -> None:
    @app.route("/api/health", methods=["GET"])
    def api_health():
        ctx = getattr(request, "routing", None)
        try:
            data = reporter.snapshot(ctx)
        except Exception as e:
            logger.exception("error generating health response")
            return error_response("HEALTH_FAILED", "Health check failed", str(e), 500)
        logger.info("health check from %s -> %s", getattr(ctx, "domain", "-"), getattr(ctx, "app_name", "-"))
        return jsonify(data), 200

    @app.route("/api/config", methods=["GET"])
    def api_config():
        if not reporter.config_access_allowed(request.args.get("debug_token")):
            logger.warning("configuration endpoint denied (host=%s)", request.headers.get("Host", ""))
            return error_response(
                "ACCESS_DENIED",
                "Access denied",
                "Configuration endpoint requires a valid debug_token in production",
                403,
            )
        try:
            data = reporter.config_report()
        except Exception as e:
            logger.exception("error generating config response")
            return error_response("CONFIG_REPORT_FAILED", "Configuration check failed", str(e), 500)
        return jsonify(data), 200


__all__ = ["HealthReporter", "install_health_endpoints"]
