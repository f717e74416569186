"""
配置文档加载：启动时读取一次，之后只读。
优先受保护路径（生产密钥挂载），不存在时回退到项目本地文件；两者都失败即致命。
支持 JSON 与 YAML（同一结构）；不做合并，不为身份字段填默认值。
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigNotFound, ConfigParseError
from .settings import Settings

logger = logging.getLogger("multihost.config")


def _parse(path: str, content: str) -> Dict[str, Any]:
    path_lower = path.lower()
    try:
        if path_lower.endswith(".yaml") or path_lower.endswith(".yml"):
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigParseError(f"Failed to parse {path}: {e}", path) from e
    if not isinstance(data, dict):
        raise ConfigParseError(f"Configuration root must be an object: {path}", path)
    if not isinstance(data.get("applications"), list):
        raise ConfigParseError(f"Configuration has no 'applications' list: {path}", path)
    return data


def _read(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise ConfigParseError(f"Failed to read {path}: {e}", path) from e


def load_config(secret_path: Optional[str] = None, local_path: Optional[str] = None) -> Dict[str, Any]:
    """
    加载配置文档。
    secret_path 存在时它是唯一来源：读不了或解析失败直接 ConfigParseError，不回退。
    否则读 local_path；不存在 ConfigNotFound，解析失败 ConfigParseError。
    """
    if secret_path is None or local_path is None:
        settings = Settings()
        secret_path = settings.secret_config_path if secret_path is None else secret_path
        local_path = settings.config_path if local_path is None else local_path

    if secret_path and os.path.exists(secret_path):
        doc = _parse(secret_path, _read(secret_path))
        logger.info("configuration loaded from secret file %s", secret_path)
        return doc

    if not local_path or not os.path.isfile(local_path):
        raise ConfigNotFound(
            f"Configuration not found (secret={secret_path or '-'}, local={local_path or '-'})",
            local_path or "",
        )
    doc = _parse(local_path, _read(local_path))
    logger.info("configuration loaded from local file %s", local_path)
    return doc


def applications(doc: Dict[str, Any]) -> list:
    return [a for a in doc.get("applications") or [] if isinstance(a, dict)]


def find_application(doc: Dict[str, Any], name: str) -> Optional[Dict[str, Any]]:
    """按 name 找到完整的应用配置；找不到返回 None。"""
    for app_config in applications(doc):
        if app_config.get("name") == name:
            return app_config
    return None


def backend_section(app_config: Dict[str, Any]) -> Dict[str, Any]:
    return app_config.get("backend") or {}


def build_section(doc: Dict[str, Any]) -> Dict[str, Any]:
    return (doc.get("global") or {}).get("build") or {}


__all__ = ["load_config", "applications", "find_application", "backend_section", "build_section"]
