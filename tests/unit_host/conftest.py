"""
多应用宿主单元测试公共 fixture：路径、临时站点（配置 + 后端模块 + 构建产物）与宿主 app。
"""
from __future__ import annotations

import os
import sys
import textwrap
from types import SimpleNamespace

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

ALPHA_BACKEND = """
from flask import jsonify

CALLS = []


def setup_alpha(app, server, options):
    CALLS.append(options)

    @app.route("/api/widgets")
    def alpha_widgets():
        return jsonify({"app": "alpha", "widgets": [1, 2]})

    return {"get_stats": lambda: {"widgets": 2}}
"""

BETA_BACKEND = """
class BetaHandle:
    def __init__(self):
        self.cleaned = False

    def get_stats(self):
        return {"beta": True}

    def cleanup(self):
        self.cleaned = True


def setup_beta(app, server, options):
    return BetaHandle()
"""


def _write(path: str, content: str) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(textwrap.dedent(content))
    return path


def app_entry(name, domains, fn_name, skip_patterns=("/api/",), app_id=None, file="backend.py", **extra):
    entry = {
        "id": app_id if app_id is not None else name,
        "name": name,
        "description": f"{name} application",
        "domains": list(domains),
        "paths": {"public": name, "backend": name, "html": "index.html"},
        "backend": {
            "setupFunctionName": fn_name,
            "file": file,
            "apiRoutes": ["/api/"],
            "skipPatterns": list(skip_patterns),
            "features": {"demo": True},
        },
    }
    entry.update(extra)
    return entry


@pytest.fixture(autouse=True)
def _host_env(monkeypatch):
    """测试中不启动保活线程，不读取真实的密钥配置。"""
    monkeypatch.setenv("MULTIHOST_KEEPALIVE_ENABLED", "0")
    monkeypatch.setenv("MULTIHOST_SECRET_CONFIG", "")
    monkeypatch.delenv("MULTIHOST_ENV", raising=False)
    monkeypatch.delenv("MULTIHOST_DEBUG_TOKEN", raising=False)
    monkeypatch.delenv("MULTIHOST_CONFIG_PATH", raising=False)


@pytest.fixture
def write_file():
    return _write


@pytest.fixture
def make_entry():
    return app_entry


@pytest.fixture
def site(tmp_path):
    """alpha（a.test，跳过 /api/）与 beta（b.test，无跳过），默认 alpha；两者都有 HTML 入口。"""
    root = str(tmp_path)
    _write(os.path.join(root, "server", "alpha", "backend.py"), ALPHA_BACKEND)
    _write(os.path.join(root, "server", "beta", "backend.py"), BETA_BACKEND)
    _write(os.path.join(root, "dist", "public", "alpha", "index.html"), "<html>alpha</html>")
    _write(os.path.join(root, "dist", "public", "beta", "index.html"), "<html>beta</html>")
    config = {
        "global": {"build": {"outDir": "dist", "publicDir": "public"}, "backend": {"root": "server"}},
        "applications": [
            app_entry("alpha", ["a.test"], "setup_alpha", skip_patterns=["/api/"], app_id=1),
            app_entry("beta", ["b.test"], "setup_beta", skip_patterns=[], app_id=2),
        ],
        "default": {"id": 1, "name": "alpha"},
    }
    return SimpleNamespace(root=root, config=config)


@pytest.fixture
def make_host(site):
    """按需创建并初始化 MultiHost；可覆盖环境与配置。"""
    from multihost.host.app import MultiHost
    from multihost.host.settings import Settings

    created = []

    def _make(config=None, environment="development", debug_token=""):
        settings = Settings(root=site.root, port=0, environment=environment, debug_token=debug_token)
        host = MultiHost(settings, config=config if config is not None else site.config)
        host.initialise()
        host.app.config["TESTING"] = True
        created.append(host)
        return host

    yield _make
    for host in created:
        host.graceful_shutdown("TEST_TEARDOWN", timeout=2)


@pytest.fixture
def host(make_host):
    return make_host()


@pytest.fixture
def host_client(host):
    with host.app.test_client() as c:
        yield c
