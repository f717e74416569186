"""
健康与诊断端点单元测试：快照字段、统计容错、配置端点访问控制、宿主查询接口。
"""
from __future__ import annotations

import copy
import os

import pytest

BROKEN_STATS_BACKEND = """
def setup_beta(app, server, options):
    def get_stats():
        raise RuntimeError("counter unavailable")
    return {"get_stats": get_stats}
"""


def test_health_snapshot_fields(host_client):
    resp = host_client.get("/api/health", base_url="http://a.test:3001")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "OK"
    assert data["environment"] == "development"
    assert data["uptime"] >= 0
    assert data["currentRequest"]["targetModule"] == "alpha"
    assert data["currentRequest"]["domain"] == "a.test"
    assert data["currentRequest"]["fullHost"] == "a.test:3001"
    micro = data["microservers"]
    assert micro["total"] == 2
    assert micro["active"] == 2
    assert micro["dynamicImports"] == 2
    assert micro["loadStats"] == {"successful": 2, "failed": 0, "total": 2}
    assert data["stats"]["alpha"] == {"widgets": 2}
    assert data["stats"]["beta"] == {"beta": True}
    assert data["system"]["pid"] == os.getpid()
    assert data["system"]["memory"]["rss"] > 0
    assert data["keepAlive"] is None
    assert data["server"]["isInitialised"] is True


def test_configured_list_reports_inactive(site, make_host, make_entry):
    config = copy.deepcopy(site.config)
    config["applications"].append(make_entry("gamma", ["c.test"], "setup_gamma"))
    host = make_host(config=config)
    configured = {c["name"]: c for c in host.health.snapshot()["microservers"]["configured"]}
    assert configured["alpha"]["status"] == "active"
    assert configured["alpha"]["hasInstance"] is True
    assert configured["gamma"]["status"] == "inactive"
    assert configured["gamma"]["setupFunction"] == "setup_gamma"
    assert configured["gamma"]["domains"] == ["c.test"]


def test_stats_error_is_reported_not_raised(site, write_file, make_host):
    write_file(os.path.join(site.root, "server", "beta", "backend.py"), BROKEN_STATS_BACKEND)
    host = make_host()
    with host.app.test_client() as c:
        resp = c.get("/api/health", base_url="http://b.test")
    assert resp.status_code == 200
    assert resp.get_json()["stats"]["beta"] == {"status": "error", "error": "counter unavailable"}


def test_config_endpoint_open_in_development(host_client):
    resp = host_client.get("/api/config", base_url="http://a.test")
    assert resp.status_code == 200
    data = resp.get_json()
    assert [a["name"] for a in data["applications"]] == ["alpha", "beta"]
    assert data["default"]["name"] == "alpha"
    routing = data["routing"]
    assert routing["defaultServer"] == "alpha"
    assert routing["domainMap"] == {"a.test": "alpha", "b.test": "beta", "default": "alpha"}
    assert routing["serverDomainMapping"]["b.test"] == {"serverName": "beta", "serverId": 2, "description": "beta application"}
    assert sorted(data["dynamicImports"]["activeInstances"]) == ["alpha", "beta"]


@pytest.mark.parametrize("query", ["", "?debug_token=wrong"])
def test_config_endpoint_denied_in_production(make_host, query):
    host = make_host(environment="production", debug_token="s3cret")
    with host.app.test_client() as c:
        resp = c.get(f"/api/config{query}", base_url="http://a.test")
    assert resp.status_code == 403
    body = resp.get_json()
    assert body["code"] == "ACCESS_DENIED"
    assert "applications" not in body


def test_config_endpoint_allowed_with_token(make_host):
    host = make_host(environment="production", debug_token="s3cret")
    with host.app.test_client() as c:
        resp = c.get("/api/config?debug_token=s3cret", base_url="http://a.test")
    assert resp.status_code == 200
    assert resp.get_json()["systemState"]["environment"] == "production"


def test_config_endpoint_denied_without_configured_token(make_host):
    host = make_host(environment="production", debug_token="")
    assert host.health.config_access_allowed("") is False
    assert host.health.config_access_allowed("anything") is False


def test_host_queries(host):
    assert host.is_active("alpha") is True
    assert host.is_active("gamma") is False
    assert host.get_instance("beta").get_stats() == {"beta": True}
    assert host.get_instance("gamma") is None
    stats = host.get_stats()
    assert stats["modules"]["successful"] == 2
    assert sorted(stats["activeInstances"]) == ["alpha", "beta"]
    assert stats["microserverStats"]["alpha"] == {"widgets": 2}


def test_request_id_echoed_in_errors(host_client):
    resp = host_client.get("/api/missing", base_url="http://a.test", headers={"X-Request-ID": "req-42"})
    assert resp.status_code == 404
    assert resp.get_json()["requestId"] == "req-42"


def test_domain_views_agree_on_casing(site, make_host):
    config = copy.deepcopy(site.config)
    config["applications"][1]["domains"] = ["B.Test"]
    host = make_host(config=config)
    routing = host.health.config_report()["routing"]
    assert "b.test" in routing["serverDomainMapping"]
    assert "B.Test" not in routing["serverDomainMapping"]
    assert set(routing["serverDomainMapping"]) == set(routing["domainMap"]) - {"default"}


def test_snapshot_stats_match_instance_registry(host):
    assert host.health.snapshot()["stats"] == host.instances.stats()
