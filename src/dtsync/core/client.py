"""
DynatraceClient: name-addressed CRUD over the id-addressed Dynatrace config API.

The remote API only knows ids, callers only know names. Every operation resolves
the name first with a full list and a linear scan, then acts on the id:

    list            GET    <collection>
    exists_by_name  GET    <collection>                 -> (exists, id)
    read_by_name    GET    <collection>, GET <collection>/<id>
    read_by_id      GET    <collection>/<id>
    upsert_by_name  GET    <collection>, then POST <collection> or PUT <collection>/<id>
    delete_by_name  GET    <collection>, then DELETE <collection>/<id>

Extensions take the upload path instead (see `extensions.py`), selected by the
family's upsert strategy.

Nothing is cached between calls, so two concurrent upserts of the same name can both
observe "absent" and both create. Callers that need more must serialize per name.

Usage:
    with DynatraceClient("https://abc.live.dynatrace.com", token) as client:
        entity = client.upsert_by_name(get_api("alerting-profile"), "team-a", body)
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import quote

from .api import Api, DynatraceEntity, UpsertStrategy, Value
from .errors import NotFoundError, TransportError, UnsupportedFamilyError
from .extensions import ExtensionState, ExtensionUploader
from .http import Body, HttpTransport, Response, _redact, _short_json

UpsertHandler = Callable[[Api, str, str, Body], DynatraceEntity]


def _body_preview(body: Body) -> str:
    """Log-safe preview of a request body: redacted JSON, or only its size."""
    try:
        parsed = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return f"<non-JSON body, {len(body)} bytes>"
    return _short_json(_redact(parsed))


def _extract_values(api: Api, payload: Any, url: str) -> List[Value]:
    """
    Accept either:
      - {"<list_key>": [...]}
      - [...]
    Entries that are not objects, or carry no id, are skipped.
    """
    if isinstance(payload, dict) and isinstance(payload.get(api.list_key), list):
        items = payload[api.list_key]
    elif isinstance(payload, list):
        items = payload
    else:
        raise TransportError(
            status=200,
            url=url,
            body=_short_json(payload),
            message=f"list response has no '{api.list_key}' list",
        )

    values: List[Value] = []
    for it in items:
        if not isinstance(it, dict):
            continue
        obj_id = it.get(api.id_key, it.get("id"))
        if obj_id is None:
            continue
        name = it.get("name")
        values.append(Value(id=str(obj_id), name=name if isinstance(name, str) else ""))
    return values


class DynatraceClient:
    """CRUD by name for any Dynatrace config API family."""

    def __init__(
        self,
        environment_url: str,
        token: str,
        *,
        transport: Optional[HttpTransport] = None,
        verify_tls: bool = True,
        timeout_sec: float = 60,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        if not environment_url:
            raise ValueError("environment_url is required")
        self.environment_url = environment_url.rstrip("/")
        self.log = logger or logging.getLogger("dtsync.client")
        self.transport = transport or HttpTransport(
            token, verify_tls=verify_tls, timeout_sec=timeout_sec, logger=self.log
        )
        self._extensions = ExtensionUploader(self.transport, logger=self.log)
        self._strategies: Dict[UpsertStrategy, UpsertHandler] = {
            UpsertStrategy.STANDARD_JSON: self._upsert_json,
            UpsertStrategy.EXTENSION_UPLOAD: self._upload_extension,
        }

    def __enter__(self) -> "DynatraceClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self.transport.close()

    # ------------- Public API -------------

    def url(self, api: Api) -> str:
        return api.url_from_environment_url(self.environment_url)

    def _item_url(self, api: Api, obj_id: str) -> str:
        return f"{self.url(api)}/{quote(obj_id, safe='')}"

    def list(self, api: Api) -> List[Value]:
        """List the (id, name) summaries of a family. One page is treated as complete."""
        url = self.url(api)
        values = _extract_values(api, self.transport.get(url).json(), url)
        self.log.debug("Listed api=%s count=%d", api.id, len(values))
        return values

    def resolve(self, api: Api, name: str) -> Optional[str]:
        """Return the id of the first object named exactly *name*, or None."""
        matches = [v.id for v in self.list(api) if v.name == name]
        if not matches:
            return None
        if len(matches) > 1:
            self.log.warning(
                "Name '%s' is not unique in api=%s (ids=%s), using first match %s",
                name, api.id, ", ".join(matches), matches[0],
            )
        return matches[0]

    def exists_by_name(self, api: Api, name: str) -> Tuple[bool, str]:
        obj_id = self.resolve(api, name)
        return (obj_id is not None, obj_id or "")

    def read_by_name(self, api: Api, name: str) -> bytes:
        """
        Raises:
            NotFoundError: If no object carries *name*.
        """
        exists, obj_id = self.exists_by_name(api, name)
        if not exists:
            raise NotFoundError(api.id, name)
        return self.read_by_id(api, obj_id)

    def read_by_id(self, api: Api, obj_id: str) -> bytes:
        return self.transport.get(self._item_url(api, obj_id)).body

    def upsert_by_name(self, api: Api, name: str, body: Body) -> DynatraceEntity:
        """Create the object if *name* is absent, replace it in place otherwise."""
        strategy = api.upsert_strategy
        handler = self._strategies.get(strategy)
        if handler is None:
            raise UnsupportedFamilyError(f"No upsert handler for strategy '{strategy}' (api={api.id})")
        return handler(api, self.url(api), name, body)

    def extension_state(self, api: Api, name: str, body: Body) -> ExtensionState:
        """What an extension upsert would do, without uploading anything.

        Raises:
            ExtensionVersionError: If the installed version is newer.
        """
        return self._extensions.check_state(self.url(api), name, body)

    def delete_by_name(self, api: Api, name: str) -> bool:
        """Delete the object named *name*.

        Returns:
            True if a DELETE was issued, False if nothing carried the name.
        """
        obj_id = self.resolve(api, name)
        if obj_id is None:
            self.log.info("DELETE api=%s name=%s: not found, nothing to delete", api.id, name)
            return False

        corr = uuid.uuid4().hex[:8]
        path = self._item_url(api, obj_id)
        self.log.info("DELETE[%s] DELETE %s api=%s name=%s id=%s", corr, path, api.id, name, obj_id)
        self.transport.delete(path)
        return True

    # ------------- Upsert strategies -------------

    def _upsert_json(self, api: Api, url: str, name: str, body: Body) -> DynatraceEntity:
        existing_id = self.resolve(api, name)
        corr = uuid.uuid4().hex[:8]

        if existing_id is None:
            self.log.info("CREATE[%s] POST %s api=%s name=%s", corr, url, api.id, name)
            self.log.debug("CREATE[%s] payload=%s", corr, _body_preview(body))
            resp = self.transport.post(url, body)
        else:
            path = self._item_url(api, existing_id)
            self.log.info("UPDATE[%s] PUT %s api=%s name=%s id=%s", corr, path, api.id, name, existing_id)
            self.log.debug("UPDATE[%s] payload=%s", corr, _body_preview(body))
            resp = self.transport.put(path, body)

        return self._entity_from_response(api, resp, name, existing_id, corr)

    def _upload_extension(self, api: Api, url: str, name: str, body: Body) -> DynatraceEntity:
        return self._extensions.upload(url, name, body)

    def _entity_from_response(
        self,
        api: Api,
        resp: Response,
        name: str,
        existing_id: Optional[str],
        corr: str,
    ) -> DynatraceEntity:
        data = resp.json()
        self.log.debug("UPSERT[%s] response=%s", corr, _short_json(_redact(data)))

        if isinstance(data, dict):
            obj_id = data.get(api.id_key, data.get("id")) or existing_id
            if obj_id:
                return DynatraceEntity(
                    id=str(obj_id),
                    name=str(data.get("name") or name),
                    description=str(data.get("description") or ""),
                )
        elif existing_id:
            # PUT usually answers 204 without a body
            return DynatraceEntity(id=existing_id, name=name)

        raise TransportError(
            status=resp.status,
            url=resp.url,
            body=resp.text,
            message="response carries no object id",
        )
