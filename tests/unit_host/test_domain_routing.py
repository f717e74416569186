"""
域名路由单元测试：映射构建、默认回落、大小写与端口无关、重复域名、配置校验。
"""
from __future__ import annotations

import copy
import logging

import pytest

from multihost.host.errors import ConfigValidationError
from multihost.host.routing import build_domain_map, normalize_host, resolve

DOC = {
    "applications": [
        {"id": 1, "name": "alpha", "domains": ["a.test", "www.a.test"], "backend": {"features": {"cors": True}}},
        {"id": 2, "name": "beta", "description": "Beta", "domains": ["B.Test"]},
    ],
    "default": {"id": 1, "name": "alpha"},
}


def test_every_domain_resolves_to_its_application():
    domain_map = build_domain_map(DOC)
    for app_config in DOC["applications"]:
        for domain in app_config["domains"]:
            ctx = resolve(domain, domain_map, DOC)
            assert ctx.app_name == app_config["name"]
            assert ctx.matched is True
            assert ctx.app_config is app_config


def test_unknown_host_falls_back_to_default():
    ctx = resolve("unknown.test", build_domain_map(DOC), DOC)
    assert ctx.app_name == "alpha"
    assert ctx.matched is False
    assert ctx.app_id == 1
    assert ctx.features == {"cors": True}


def test_missing_host_header_falls_back_to_default():
    ctx = resolve(None, build_domain_map(DOC), DOC)
    assert ctx.domain == "localhost"
    assert ctx.app_name == "alpha"


@pytest.mark.parametrize("header", ["Example.com:8080", "EXAMPLE.COM", "example.com.", " example.com "])
def test_case_and_port_insensitive(header):
    assert normalize_host(header) == "example.com"


def test_normalize_ipv6_and_empty():
    assert normalize_host("[::1]:3001") == "::1"
    assert normalize_host("[::1]") == "::1"
    assert normalize_host("") == "localhost"


def test_resolve_with_port_and_case():
    domain_map = build_domain_map(DOC)
    assert resolve("b.test:8080", domain_map, DOC).app_name == "beta"
    assert resolve("WWW.A.TEST", domain_map, DOC).app_name == "alpha"


def test_duplicate_domain_last_writer_wins(caplog):
    doc = copy.deepcopy(DOC)
    doc["applications"][1]["domains"].append("a.test")
    with caplog.at_level(logging.WARNING, logger="multihost.routing"):
        domain_map = build_domain_map(doc)
    assert domain_map.lookup("a.test") == "beta"
    assert domain_map.lookup("www.a.test") == "alpha"
    assert any("a.test" in r.getMessage() for r in caplog.records if r.levelno == logging.WARNING)


def test_domain_map_is_read_only():
    domain_map = build_domain_map(DOC)
    with pytest.raises(TypeError):
        domain_map.domains["evil.test"] = "beta"
    assert domain_map.to_dict()["default"] == "alpha"
    assert domain_map.to_dict()["b.test"] == "beta"


@pytest.mark.parametrize(
    "mutate",
    [
        lambda d: d["applications"][0].pop("name"),
        lambda d: d["applications"][0].update(name="  "),
        lambda d: d["applications"][0].update(name="has space"),
        lambda d: d["applications"][0].update(domains=[]),
        lambda d: d["applications"][0].pop("domains"),
        lambda d: d.pop("default"),
    ],
)
def test_invalid_identity_fields_rejected(mutate):
    doc = copy.deepcopy(DOC)
    mutate(doc)
    with pytest.raises(ConfigValidationError):
        build_domain_map(doc)


def test_default_without_entry_only_warns(caplog):
    doc = copy.deepcopy(DOC)
    doc["default"] = {"name": "ghost"}
    with caplog.at_level(logging.WARNING, logger="multihost.routing"):
        domain_map = build_domain_map(doc)
    assert domain_map.default == "ghost"
    ctx = resolve("nowhere.test", domain_map, doc)
    assert ctx.app_name == "ghost"
    assert ctx.app_config is None


def test_missing_entry_answers_500_per_request(make_host, site):
    config = copy.deepcopy(site.config)
    config["default"] = {"name": "ghost"}
    host = make_host(config=config)
    with host.app.test_client() as c:
        resp = c.get("/", base_url="http://nowhere.test")
        assert resp.status_code == 500
        body = resp.get_json()
        assert body["code"] == "APP_CONFIG_MISSING"
        assert "ghost" in body["details"]
        # 已映射的域名不受影响
        assert c.get("/", base_url="http://b.test").status_code == 200


def test_routing_context_to_dict():
    ctx = resolve("b.test", build_domain_map(DOC), DOC)
    assert ctx.to_dict() == {
        "targetModule": "beta",
        "domain": "b.test",
        "fullHost": "b.test",
        "matched": True,
        "serverId": 2,
        "serverDescription": "Beta",
        "serverFeatures": {},
    }


def test_duplicate_application_name_rejected():
    doc = copy.deepcopy(DOC)
    doc["applications"].append({"id": 3, "name": "alpha", "domains": ["c.test"]})
    with pytest.raises(ConfigValidationError) as exc:
        build_domain_map(doc)
    assert "alpha" in str(exc.value)


def test_duplicate_application_name_aborts_startup(site, make_host, make_entry):
    config = copy.deepcopy(site.config)
    config["applications"].append(make_entry("alpha", ["c.test"], "setup_gamma"))
    with pytest.raises(ConfigValidationError):
        make_host(config=config)
