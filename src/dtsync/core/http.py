"""
HttpTransport: thin requests-based transport for the Dynatrace config API.

- Methods: get, post, put, delete, post_file (multipart).
- Full URLs in, `Response(status, body)` out.
- `Authorization: Api-Token <token>` on every call.
- Non-2xx and connection-level failures raise TransportError. No retries.
- TLS verification toggle (verify_tls=True by default).

Usage:
    transport = HttpTransport(token, verify_tls=True, timeout_sec=60)
    resp = transport.get("https://abc.live.dynatrace.com/api/config/v1/alertingProfiles")
    data = resp.json()
"""

from __future__ import annotations

import json
import logging
import os
import time
import warnings
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import requests
import urllib3

from .errors import TransportError

Body = Union[str, bytes]

_LOG_PREVIEW = int(os.getenv("DTSYNC_HTTP_PREVIEW", "600"))
_REDACT_KEYS = {
    "token", "authorization", "password", "api_token", "x-api-key", "api_key", "apikey",
    "secret", "secretkey", "accesskey", "authtoken", "privatekey",
}


def _short_json(obj: Any, limit: int = _LOG_PREVIEW) -> str:
    try:
        if isinstance(obj, (dict, list)):
            s = json.dumps(obj, ensure_ascii=False)
        elif isinstance(obj, bytes):
            s = obj.decode("utf-8", errors="replace")
        else:
            s = str(obj)
        return s[:limit]
    except Exception:
        return f"<unserializable:{type(obj).__name__}>"


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if str(k).lower() in _REDACT_KEYS:
                out[k] = "***REDACTED***"
            else:
                out[k] = _redact(v)
        return out
    if isinstance(obj, list):
        return [_redact(x) for x in obj]
    return obj


@dataclass(frozen=True)
class Response:
    """Status code and raw body of a successful (2xx) call."""
    status: int
    body: bytes
    url: str = ""

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Parse the body as JSON (None for an empty body).

        Raises:
            TransportError: If the body is not valid JSON.
        """
        if not self.body:
            return None
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise TransportError(
                status=self.status, url=self.url, body=self.text, message=f"malformed JSON response: {e}"
            ) from e


class HttpTransport:
    """Authenticated HTTP transport backed by a pooled `requests.Session`."""

    def __init__(
        self,
        token: str,
        *,
        verify_tls: bool = True,
        timeout_sec: float = 60,
        session: Optional[requests.Session] = None,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec)
        self.log = logger or logging.getLogger("dtsync.http")
        self.session = session or requests.Session()
        # No session-wide Content-Type: multipart uploads must set their own.
        self.session.headers.update({
            "Authorization": f"Api-Token {token}",
            "Accept": "application/json",
            "User-Agent": "dtsync/HttpTransport",
        })

        if not verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)

    # ------------- Public API -------------

    def get(self, url: str) -> Response:
        return self._request("GET", url)

    def post(self, url: str, body: Body) -> Response:
        return self._request("POST", url, data=_encode(body), headers={"Content-Type": "application/json"})

    def put(self, url: str, body: Body) -> Response:
        return self._request("PUT", url, data=_encode(body), headers={"Content-Type": "application/json"})

    def delete(self, url: str) -> Response:
        return self._request("DELETE", url)

    def post_file(self, url: str, field: str, filename: str, content: bytes, content_type: str) -> Response:
        """POST *content* as a single-file multipart/form-data upload."""
        return self._request("POST", url, files={field: (filename, content, content_type)})

    def close(self) -> None:
        self.session.close()

    # ------------- Internal -------------

    def _request(
        self,
        method: str,
        url: str,
        *,
        data: Optional[bytes] = None,
        files: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Response:
        start = time.time()
        try:
            resp = self.session.request(
                method=method,
                url=url,
                data=data,
                files=files,
                headers=headers,
                timeout=self.timeout,
                verify=self.verify_tls,
            )
        except requests.RequestException as exc:
            err = TransportError(status=0, url=url, message=str(exc))
            self.log.error("HTTP %s %s failed: %s", method, url, exc)
            raise err from exc

        elapsed = (time.time() - start) * 1000
        if not 200 <= resp.status_code < 300:
            snippet = resp.text[:200]
            self.log.error("HTTP %s %s -> %s: %s", method, url, resp.status_code, snippet)
            raise TransportError(
                status=resp.status_code,
                url=url,
                body=resp.text,
                message=resp.reason or "",
            )

        self.log.debug("%s %s -> %s in %.1fms", method, url, resp.status_code, elapsed)
        return Response(status=resp.status_code, body=resp.content or b"", url=url)


def _encode(body: Body) -> bytes:
    if isinstance(body, bytes):
        return body
    return body.encode("utf-8")
