"""
Extension upload path.

Extensions are not written with a JSON body. The plugin.json is zipped as
`<name>/plugin.json` inside `<name>.zip` and POSTed as the multipart field `file`
to the extensions collection. Before uploading, the installed version is read from
`<collection>/<name>` so an identical version is not uploaded twice and an older
local version never overwrites a newer remote one.
"""

from __future__ import annotations

import io
import json
import logging
import re
import uuid
import zipfile
from enum import Enum
from typing import Any, Optional, Tuple, Union
from urllib.parse import quote

from .api import DynatraceEntity
from .errors import ExtensionVersionError, TransportError
from .http import Body, HttpTransport, _short_json


class ExtensionState(str, Enum):
    NOT_INSTALLED = "not-installed"
    NEEDS_UPDATE = "needs-update"
    UP_TO_DATE = "up-to-date"


def build_archive(name: str, payload: Body) -> bytes:
    """Return the zip archive bytes holding `<name>/plugin.json`."""
    raw = payload.encode("utf-8") if isinstance(payload, str) else payload
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(f"{name}/plugin.json", raw)
    return buf.getvalue()


def _read_version(payload: Any) -> str:
    """Extract `version` from a plugin.json body or dict ("" when unknown)."""
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except (ValueError, UnicodeDecodeError):
            return ""
    if isinstance(payload, dict):
        v = payload.get("version")
        return "" if v is None else str(v)
    return ""


def _version_key(version: str) -> Tuple[Tuple[int, Union[int, str]], ...]:
    # "1.10.2" > "1.9", "1.0" == "1.0.0"; non-numeric parts compare after numeric ones
    parts = re.split(r"[.\-+]", version.strip())
    key = [(0, int(p)) if p.isdigit() else (1, p) for p in parts if p]
    while key and key[-1] == (0, 0):
        key.pop()
    return tuple(key)


class ExtensionUploader:
    """Uploads an extension archive unless the same version is already installed."""

    def __init__(
        self,
        transport: HttpTransport,
        *,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.transport = transport
        self.log = logger or logging.getLogger("dtsync.extensions")

    def check_state(self, url: str, name: str, payload: Body) -> ExtensionState:
        """Compare the installed extension with *payload*.

        Raises:
            ExtensionVersionError: If the installed version is newer.
            TransportError: On any failure other than 404.
        """
        try:
            remote = self.transport.get(f"{url}/{quote(name, safe='')}").json()
        except TransportError as e:
            if e.status == 404:
                return ExtensionState.NOT_INSTALLED
            raise

        local_version = _read_version(payload)
        remote_version = _read_version(remote)
        if not local_version or not remote_version:
            self.log.debug(
                "Extension %s: version unknown (local=%r remote=%r), uploading",
                name, local_version, remote_version,
            )
            return ExtensionState.NEEDS_UPDATE

        local_key, remote_key = _version_key(local_version), _version_key(remote_version)
        if local_key == remote_key:
            return ExtensionState.UP_TO_DATE
        if remote_key > local_key:
            raise ExtensionVersionError(name, local_version, remote_version)
        return ExtensionState.NEEDS_UPDATE

    def upload(self, url: str, name: str, payload: Body) -> DynatraceEntity:
        corr = uuid.uuid4().hex[:8]
        state = self.check_state(url, name, payload)
        if state is ExtensionState.UP_TO_DATE:
            self.log.info("UPLOAD[%s] extension %s already up to date, skipping", corr, name)
            return DynatraceEntity(id=name, name=name)

        archive = build_archive(name, payload)
        self.log.info("UPLOAD[%s] POST %s extension=%s state=%s size=%d", corr, url, name, state.value, len(archive))
        resp = self.transport.post_file(url, "file", f"{name}.zip", archive, "application/zip")
        data = resp.json()
        self.log.debug("UPLOAD[%s] response=%s", corr, _short_json(data))

        if isinstance(data, dict):
            return DynatraceEntity(
                id=str(data.get("id") or name),
                name=str(data.get("name") or name),
                description=str(data.get("description") or ""),
            )
        return DynatraceEntity(id=name, name=name)
