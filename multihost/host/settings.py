# 宿主运行配置：仅环境变量，开箱即用
# 应用相关的一切（域名、路径、初始化函数名）只来自配置文档，不在此处出现
from __future__ import annotations

import os
from typing import Optional

DEFAULT_SECRET_CONFIG = "/etc/secrets/servers.config.json"
DEFAULT_CONFIG_NAME = "servers.config.json"


def _float_env(key: str, default: float) -> float:
    try:
        return float(os.environ.get(key, default))
    except (TypeError, ValueError):
        return default


def _int_env(key: str, default: int) -> int:
    try:
        return int(os.environ.get(key, default))
    except (TypeError, ValueError):
        return default


class Settings:
    """统一配置入口；实例化时读取环境变量，测试可直接传参覆盖。"""

    def __init__(
        self,
        root: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        environment: Optional[str] = None,
        debug_token: Optional[str] = None,
    ):
        # 项目根目录：构建产物与后端模块路径都相对于它
        self.root = os.path.abspath(root or os.environ.get("MULTIHOST_ROOT", "").strip() or os.getcwd())
        self.host = host or os.environ.get("HOST", "0.0.0.0")
        self.port = port if port is not None else _int_env("PORT", 3001)
        self.environment = (environment or os.environ.get("MULTIHOST_ENV", "development")).strip().lower()

        self.secret_config_path = os.environ.get("MULTIHOST_SECRET_CONFIG", DEFAULT_SECRET_CONFIG).strip()
        self.config_path = (
            os.environ.get("MULTIHOST_CONFIG_PATH", "").strip()
            or os.path.join(self.root, DEFAULT_CONFIG_NAME)
        )

        # /api/config 调试令牌；生产模式下未配置则一律拒绝
        self.debug_token = debug_token if debug_token is not None else os.environ.get("MULTIHOST_DEBUG_TOKEN", "").strip()

        self.shutdown_timeout_sec = _float_env("MULTIHOST_SHUTDOWN_TIMEOUT_SEC", 30)
        self.emergency_timeout_sec = _float_env("MULTIHOST_EMERGENCY_TIMEOUT_SEC", 5)

        self.keepalive_enabled = os.environ.get("MULTIHOST_KEEPALIVE_ENABLED", "1") == "1"
        self.keepalive_interval_min = _float_env("MULTIHOST_KEEPALIVE_INTERVAL_MIN", 4)
        self.keepalive_url = os.environ.get("MULTIHOST_KEEPALIVE_URL", "").strip()

        self.access_log = os.environ.get("MULTIHOST_ACCESS_LOG") == "1"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


__all__ = ["Settings", "DEFAULT_SECRET_CONFIG", "DEFAULT_CONFIG_NAME"]
