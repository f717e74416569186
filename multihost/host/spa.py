"""
单页应用分发：路径命中应用的 skipPatterns 时放行给已注册的 API/静态处理器，
否则一律返回该应用唯一的 HTML 入口文档（子路径交给前端路由）。
入口文件位置：<root>/<outDir>/<publicDir>/<paths.public>/<paths.html>，即构建产物镜像源码 public 目录结构。
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, Optional

from flask import request, send_file
from werkzeug.security import safe_join

from .config import backend_section, build_section

logger = logging.getLogger("multihost.spa")

DEFAULT_OUT_DIR = "dist"
DEFAULT_PUBLIC_DIR = "public"
HTML_MIMETYPE = "text/html; charset=utf-8"

# 宿主自身的诊断端点，任何域名下都不被 SPA 兜底吞掉
RESERVED_PATHS = ("/api/health", "/api/config")


def should_skip(path: str, skip_patterns: Iterable[str]) -> bool:
    return any(path.startswith(p) for p in skip_patterns if p)


def build_output_dir(root: str, build: Dict[str, Any]) -> str:
    return os.path.join(root, build.get("outDir") or DEFAULT_OUT_DIR)


def spa_entry_path(app_config: Dict[str, Any], root: str, build: Dict[str, Any]) -> str:
    """由配置推导 HTML 入口文件的绝对路径，确定且不依赖请求。"""
    paths = app_config.get("paths") or {}
    return os.path.join(
        build_output_dir(root, build),
        build.get("publicDir") or DEFAULT_PUBLIC_DIR,
        paths.get("public") or "",
        paths.get("html") or "index.html",
    )


def dispatch(ctx, path: str, root: str, build: Dict[str, Any], error_response):
    """返回 None 表示放行；否则返回 HTML 入口或带应用名的 404。"""
    app_config = ctx.app_config
    if path in RESERVED_PATHS:
        return None
    skip_patterns = backend_section(app_config).get("skipPatterns") or []
    if should_skip(path, skip_patterns):
        logger.debug("skipping SPA catch-all for %s (%s matches skipPatterns)", ctx.app_name, path)
        return None
    html_path = spa_entry_path(app_config, root, build)
    if not os.path.isfile(html_path):
        logger.error("HTML file not found for %s: %s", ctx.app_name, html_path)
        return error_response(
            "SPA_ENTRY_NOT_FOUND",
            f"HTML file not found for microserver: {ctx.app_name}",
            html_path,
            404,
        )
    logger.debug("serving SPA %s for %s", html_path, ctx.app_name)
    return send_file(html_path, mimetype=HTML_MIMETYPE)


def serve_build_asset(path: str, root: str, build: Dict[str, Any]):
    """构建目录中真实存在的文件（打包后的 JS/CSS/图片）直接返回；否则 None。"""
    if build.get("serveStatic") is False or path in ("", "/"):
        return None
    target: Optional[str] = safe_join(build_output_dir(root, build), path.lstrip("/"))
    if target is None or not os.path.isfile(target):
        return None
    return send_file(target)


def install_spa_dispatch(app, doc: Dict[str, Any], root: str, error_response) -> None:
    """注册构建产物直出与 SPA 兜底两个 before_request；须在域名路由之后注册。"""
    build = build_section(doc)

    @app.before_request
    def _serve_build_asset():
        if getattr(request, "routing", None) is None:
            return None
        return serve_build_asset(request.path, root, build)

    @app.before_request
    def _spa_catchall():
        ctx = getattr(request, "routing", None)
        if ctx is None or ctx.app_config is None:
            return None
        return dispatch(ctx, request.path, root, build, error_response)


__all__ = [
    "RESERVED_PATHS",
    "should_skip",
    "spa_entry_path",
    "dispatch",
    "serve_build_asset",
    "install_spa_dispatch",
]
