# 多应用宿主：域名路由、SPA 分发、后端模块动态加载与生命周期
from .app import MultiHost, create_app
from .config import load_config
from .errors import (
    ConfigError,
    ConfigNotFound,
    ConfigParseError,
    ConfigValidationError,
    HostError,
    NoModulesLoaded,
)
from .lifecycle import InstanceHandle, SetupOptions
from .settings import Settings

__all__ = [
    "MultiHost",
    "create_app",
    "load_config",
    "Settings",
    "InstanceHandle",
    "SetupOptions",
    "HostError",
    "ConfigError",
    "ConfigNotFound",
    "ConfigParseError",
    "ConfigValidationError",
    "NoModulesLoaded",
]
