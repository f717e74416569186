#!/usr/bin/env python3
"""启动多应用宿主：读取 servers.config.json，加载并初始化全部应用，单端口监听；SIGTERM/SIGINT 优雅停机。"""
import logging
import os
import sys

sys.path.insert(0, os.environ.get("APP_ROOT", os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))))
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

from multihost.host.app import MultiHost
from multihost.host.errors import HostError
from multihost.host.settings import Settings
from multihost.host.shutdown import ShutdownCoordinator


def main() -> int:
    settings = Settings()
    host = MultiHost(settings)
    try:
        host.initialise()
    except HostError as e:
        logging.critical("startup aborted: %s", e)
        return 1
    coordinator = ShutdownCoordinator(
        host,
        timeout_sec=settings.shutdown_timeout_sec,
        emergency_timeout_sec=settings.emergency_timeout_sec,
    )
    coordinator.install()
    try:
        host.start()
    except OSError as e:
        logging.critical("listener failed: %s", e)
        coordinator.shutdown("LISTEN_FAILED", emergency=True)
        return 1
    # serve_forever 正常返回说明停机线程已接管，等它走完
    coordinator.wait(settings.shutdown_timeout_sec + 1)
    return coordinator.exit_code if coordinator.exit_code is not None else 1


if __name__ == "__main__":
    sys.exit(main())
