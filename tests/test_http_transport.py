import socket

import pytest

from dtsync.core.errors import TransportError
from dtsync.core.http import HttpTransport, Response

from conftest import ALERTING, TOKEN


def _free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_get_sends_api_token(dynatrace):
    dynatrace.seed(ALERTING, "1", "A")
    t = HttpTransport(TOKEN, timeout_sec=5)
    try:
        resp = t.get(dynatrace.base_url + ALERTING)
    finally:
        t.close()
    assert resp.status == 200
    assert resp.json() == {"values": [{"id": "1", "name": "A"}]}


def test_non_2xx_raises_without_retry(dynatrace):
    dynatrace.fail[("GET", ALERTING)] = 500
    t = HttpTransport(TOKEN, timeout_sec=5)
    try:
        with pytest.raises(TransportError) as ei:
            t.get(dynatrace.base_url + ALERTING)
    finally:
        t.close()
    assert ei.value.status == 500
    assert ei.value.url.endswith(ALERTING)
    assert len(dynatrace.calls) == 1


def test_empty_body_on_204(dynatrace):
    dynatrace.seed(ALERTING, "9", "gone")
    t = HttpTransport(TOKEN, timeout_sec=5)
    try:
        resp = t.delete(f"{dynatrace.base_url}{ALERTING}/9")
    finally:
        t.close()
    assert resp.status == 204
    assert resp.body == b"" and resp.json() is None


def test_connection_failure_is_status_zero():
    t = HttpTransport(TOKEN, timeout_sec=2)
    try:
        with pytest.raises(TransportError) as ei:
            t.get(f"http://127.0.0.1:{_free_port()}/api/config/v1/alertingProfiles")
    finally:
        t.close()
    assert ei.value.status == 0


def test_response_json_malformed():
    resp = Response(status=200, body=b"not json", url="http://x")
    with pytest.raises(TransportError) as ei:
        resp.json()
    assert ei.value.url == "http://x"


def test_error_str_truncates_body():
    err = TransportError(status=500, url="http://x", body="b" * 500, message="boom")
    text = str(err)
    assert "status=500" in text and "boom" in text
    assert len(text) < 300
