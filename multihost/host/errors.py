"""
多应用宿主异常层级。
启动期致命：配置缺失/损坏、零模块加载成功；单应用与单请求错误在各自边界内捕获，不外抛。
"""
from __future__ import annotations


class HostError(Exception):
    """宿主所有异常的基类。"""


class ConfigError(HostError):
    """配置文档不可用，进程不得开始服务。"""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class ConfigNotFound(ConfigError):
    """受保护路径与本地回退路径均不存在。"""


class ConfigParseError(ConfigError):
    """配置文件存在但不可读或无法解析。"""


class ConfigValidationError(ConfigError):
    """消费方所需的身份字段（name、domains、default）缺失或非法。"""


class ModuleLoadError(HostError):
    """单个应用的后端模块加载失败；仅在模块注册表内部使用。"""

    def __init__(self, app_name: str, message: str):
        super().__init__(message)
        self.app_name = app_name


class NoModulesLoaded(HostError):
    """所有应用的后端模块都加载失败，宿主无可服务内容。"""

    def __init__(self, failed: int):
        super().__init__(f"No microserver modules could be loaded ({failed} failed)")
        self.failed = failed


__all__ = [
    "HostError",
    "ConfigError",
    "ConfigNotFound",
    "ConfigParseError",
    "ConfigValidationError",
    "ModuleLoadError",
    "NoModulesLoaded",
]
