"""
按域名路由：启动时由配置构建只读的 域名 -> 应用名 映射；每个请求按 Host 头解析目标应用，
把路由上下文挂到 request.routing，供后续 SPA 分发、健康检查与各应用使用。
未映射的域名回落到 default 应用；解析到的应用若没有配置项，则该请求返回 500。
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from flask import request

from .config import applications, find_application
from .errors import ConfigValidationError

logger = logging.getLogger("multihost.routing")

DEFAULT_KEY = "default"
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class DomainMap:
    """域名（小写、无端口）-> 应用名；default 为兜底应用名。"""

    domains: Mapping[str, str]
    default: str

    def lookup(self, domain: str) -> Optional[str]:
        return self.domains.get(domain)

    def to_dict(self) -> Dict[str, str]:
        out = dict(self.domains)
        out[DEFAULT_KEY] = self.default
        return out


@dataclass(frozen=True)
class RoutingContext:
    """单个请求的路由结果；app_config 为 None 表示配置不一致（单请求致命）。"""

    app_name: str
    app_config: Optional[Dict[str, Any]]
    full_host: str
    domain: str
    matched: bool = False
    app_id: Any = None
    description: str = ""
    features: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targetModule": self.app_name,
            "domain": self.domain,
            "fullHost": self.full_host,
            "matched": self.matched,
            "serverId": self.app_id,
            "serverDescription": self.description,
            "serverFeatures": dict(self.features),
        }


def normalize_host(host_header: Optional[str]) -> str:
    """去掉端口并转小写：'Example.com:8080' -> 'example.com'，'[::1]:80' -> '::1'。"""
    host = (host_header or "").strip().lower()
    if not host:
        return "localhost"
    if host.startswith("["):
        end = host.find("]")
        return host[1:end] if end > 0 else host[1:]
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.rstrip(".") or "localhost"


def build_domain_map(doc: Dict[str, Any]) -> DomainMap:
    """
    构建域名映射。每个应用必须有合法 name 与非空 domains，否则 ConfigValidationError。
    同一域名被多个应用声明时后声明者生效，并记录告警。
    """
    mapping: Dict[str, str] = {}
    names = set()
    for app_config in applications(doc):
        name = app_config.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigValidationError(f"Application id={app_config.get('id')} has no name")
        if not _NAME_RE.match(name):
            raise ConfigValidationError(f"Application name is not URL-safe: {name!r}")
        domains = app_config.get("domains")
        if not isinstance(domains, list) or not domains:
            raise ConfigValidationError(f"Application {name} declares no domains")
        if name in names:
            raise ConfigValidationError(f"Application name is declared more than once: {name}")
        names.add(name)
        logger.info("processing application %s (id=%s)", name, app_config.get("id"))
        for raw in domains:
            domain = normalize_host(str(raw))
            previous = mapping.get(domain)
            if previous is not None and previous != name:
                logger.warning("domain %s declared by %s and %s; %s wins", domain, previous, name, name)
            mapping[domain] = name
            logger.info("  domain %s -> %s", domain, name)

    default_name = (doc.get("default") or {}).get("name")
    if not isinstance(default_name, str) or not default_name.strip():
        raise ConfigValidationError("Configuration has no default.name")
    if default_name not in names:
        logger.warning("default application %s has no configuration entry", default_name)
    logger.info("default application: %s", default_name)
    return DomainMap(domains=MappingProxyType(mapping), default=default_name)


def resolve(host_header: Optional[str], domain_map: DomainMap, doc: Dict[str, Any]) -> RoutingContext:
    """Host 头 -> 路由上下文；未映射走 default，随后回查完整应用配置。"""
    domain = normalize_host(host_header)
    name = domain_map.lookup(domain)
    matched = name is not None
    if name is None:
        name = domain_map.default
    app_config = find_application(doc, name)
    if app_config is None:
        return RoutingContext(app_name=name, app_config=None, full_host=host_header or "", domain=domain, matched=matched)
    return RoutingContext(
        app_name=name,
        app_config=app_config,
        full_host=host_header or "",
        domain=domain,
        matched=matched,
        app_id=app_config.get("id"),
        description=app_config.get("description") or "",
        features=dict((app_config.get("backend") or {}).get("features") or {}),
    )


def install_domain_routing(app, doc: Dict[str, Any], domain_map: DomainMap, error_response) -> None:
    """注册域名解析 before_request；必须先于其他请求处理组件注册。"""

    @app.before_request
    def _route_by_domain():
        ctx = resolve(request.headers.get("Host"), domain_map, doc)
        request.routing = ctx
        logger.debug("%s (%s) -> %s", ctx.full_host, ctx.domain, ctx.app_name)
        if ctx.app_config is None:
            logger.error("no configuration found for application %s (host=%s)", ctx.app_name, ctx.full_host)
            return error_response(
                "APP_CONFIG_MISSING",
                "Server configuration error - microserver not found",
                f"application={ctx.app_name} host={ctx.full_host} path={request.path}",
                500,
            )
        return None


__all__ = ["DomainMap", "RoutingContext", "normalize_host", "build_domain_map", "resolve", "install_domain_routing"]
