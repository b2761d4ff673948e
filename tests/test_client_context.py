import asyncio
import json
import logging
import time

import requests
from starlette.requests import Request

from freesign.logging_config import JSONFormatter, ReadableFormatter
from freesign.schemas import Geolocation
from freesign.services import client_context


def _request(headers=None, client=("10.0.0.9", 5000)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def test_forwarded_for_wins():
    request = _request({"X-Forwarded-For": "198.51.100.4, 10.0.0.1", "X-Real-IP": "192.0.2.1"})
    assert client_context.client_ip(request) == "198.51.100.4"


def test_real_ip_then_peer():
    assert client_context.client_ip(_request({"X-Real-IP": "192.0.2.1"})) == "192.0.2.1"
    assert client_context.client_ip(_request()) == "10.0.0.9"
    assert client_context.client_ip(_request(client=None)) is None


def test_request_client_info():
    info = client_context.request_client_info(_request({"User-Agent": "Mozilla/5.0"}))
    assert info.user_agent == "Mozilla/5.0"
    assert info.ip == "10.0.0.9"
    assert info.geolocation is None
    assert info.timestamp.endswith("+00:00")


def test_client_supplied_geolocation_skips_lookup(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("lookup should not run")

    monkeypatch.setattr(client_context, "_lookup_geolocation", fail)
    monkeypatch.setattr(client_context.settings, "GEOLOCATION_LOOKUP_URL", "http://geo.test/{ip}")
    geo = Geolocation(latitude=52.5, longitude=13.4)

    info = asyncio.run(client_context.collect_client_info(_request(), geo))
    assert info.geolocation == geo


def test_slow_lookup_times_out_to_none(monkeypatch):
    def slow(ip, timeout):
        time.sleep(0.5)
        return Geolocation(latitude=1, longitude=1)

    monkeypatch.setattr(client_context, "_lookup_geolocation", slow)
    monkeypatch.setattr(client_context.settings, "GEOLOCATION_LOOKUP_URL", "http://geo.test/{ip}")

    assert asyncio.run(client_context.lookup_geolocation("10.0.0.9", timeout=0.05)) is None


def test_failed_lookup_is_none(monkeypatch):
    def broken(ip, timeout):
        raise requests.ConnectionError("no route")

    monkeypatch.setattr(client_context, "_lookup_geolocation", broken)
    monkeypatch.setattr(client_context.settings, "GEOLOCATION_LOOKUP_URL", "http://geo.test/{ip}")

    assert asyncio.run(client_context.lookup_geolocation("10.0.0.9")) is None


def test_lookup_disabled_without_url():
    assert asyncio.run(client_context.lookup_geolocation("10.0.0.9")) is None


def _record(**extra):
    record = logging.LogRecord("freesign.test", logging.INFO, __file__, 1, "Signature captured", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_correlation_ids():
    line = JSONFormatter().format(_record(document_id=3, signature_id=9))
    entry = json.loads(line)
    assert entry["message"] == "Signature captured"
    assert entry["document_id"] == 3
    assert entry["signature_id"] == 9
    assert "recipient_id" not in entry


def test_readable_formatter_appends_ids():
    line = ReadableFormatter().format(_record(recipient_id=4))
    assert "Signature captured" in line
    assert line.endswith("[recipient_id=4]")
