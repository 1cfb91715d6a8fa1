import io
import json
import threading
import zipfile
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import unquote, urlparse

import pytest

TOKEN = "TEST"

ALERTING = "/api/config/v1/alertingProfiles"
EXTENSIONS = "/api/config/v1/extensions"
MONITORS = "/api/v1/synthetic/monitors"


class FakeDynatrace:
    """In-memory Dynatrace config API: collections of id-addressed objects."""

    def __init__(self):
        self.collections = {}
        self.calls = []     # (method, path, content_type)
        self.fail = {}      # (method, path) -> status
        self.raw_list = {}  # path -> raw bytes returned by GET on the collection
        self.respond = {}   # (method, path) -> (status, json) answered without side effects
        self._seq = 0

    def add_collection(self, path, list_key="values", id_key="id"):
        self.collections[path] = {"list_key": list_key, "id_key": id_key, "objects": {}}

    def seed(self, path, obj_id, name, **fields):
        self.collections[path]["objects"][obj_id] = {"id": obj_id, "name": name, **fields}

    def objects(self, path):
        return list(self.collections[path]["objects"].values())

    def named(self, path, name):
        return [o for o in self.objects(path) if o.get("name") == name]

    def methods(self):
        return [c[0] for c in self.calls]

    def next_id(self):
        self._seq += 1
        return f"id-{self._seq}"


def _parse_multipart(content_type, body):
    boundary = content_type.split("boundary=", 1)[1].strip().strip('"').encode("ascii")
    files = {}
    for part in body.split(b"--" + boundary):
        if b"\r\n\r\n" not in part:
            continue
        head, content = part.split(b"\r\n\r\n", 1)
        if content.endswith(b"\r\n"):
            content = content[:-2]
        head_text = head.decode("utf-8", errors="replace")
        if 'name="' not in head_text:
            continue
        field = head_text.split('name="', 1)[1].split('"', 1)[0]
        filename = ""
        if 'filename="' in head_text:
            filename = head_text.split('filename="', 1)[1].split('"', 1)[0]
        files[field] = (filename, content)
    return files


class _Handler(BaseHTTPRequestHandler):
    env: FakeDynatrace = None  # set per test

    protocol_version = "HTTP/1.1"

    def _send_json(self, status, obj):
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _send_raw(self, status, raw):
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _send_empty(self, status=204):
        self.send_response(status)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _body(self):
        length = int(self.headers.get("Content-Length", "0"))
        return self.rfile.read(length) if length else b""

    def _route(self, method):
        env = self.env
        path = urlparse(self.path).path.rstrip("/")
        body = self._body()
        env.calls.append((method, path, self.headers.get("Content-Type", "")))

        if self.headers.get("Authorization", "") != f"Api-Token {TOKEN}":
            self._send_json(401, {"error": {"code": 401, "message": "Missing authorization"}})
            return
        if (method, path) in env.fail:
            self._send_json(env.fail[(method, path)], {"error": {"message": "injected failure"}})
            return
        if (method, path) in env.respond:
            self._send_json(*env.respond[(method, path)])
            return

        if path in env.collections:
            self._collection(method, path, body)
            return
        parent, _, obj_id = path.rpartition("/")
        if parent in env.collections:
            self._item(method, parent, unquote(obj_id), body)
            return
        self._send_json(404, {"error": {"message": "unknown endpoint"}})

    def _collection(self, method, path, body):
        coll = self.env.collections[path]
        if method == "GET":
            if path in self.env.raw_list:
                self._send_raw(200, self.env.raw_list[path])
                return
            items = [
                {coll["id_key"]: o["id"], "name": o.get("name", "")}
                for o in coll["objects"].values()
            ]
            self._send_json(200, {coll["list_key"]: items})
        elif method == "POST":
            ctype = self.headers.get("Content-Type", "")
            if ctype.startswith("multipart/form-data"):
                self._upload(path, ctype, body)
                return
            data = json.loads(body.decode("utf-8"))
            obj_id = self.env.next_id()
            coll["objects"][obj_id] = {**data, "id": obj_id}
            self._send_json(201, {coll["id_key"]: obj_id, "name": data.get("name", "")})
        else:
            self._send_json(405, {"error": {"message": "method not allowed"}})

    def _item(self, method, path, obj_id, body):
        objects = self.env.collections[path]["objects"]
        if obj_id not in objects:
            self._send_json(404, {"error": {"code": 404, "message": f"{obj_id} not found"}})
        elif method == "GET":
            self._send_json(200, objects[obj_id])
        elif method == "PUT":
            objects[obj_id] = {**json.loads(body.decode("utf-8")), "id": obj_id}
            self._send_empty(204)
        elif method == "DELETE":
            del objects[obj_id]
            self._send_empty(204)
        else:
            self._send_json(405, {"error": {"message": "method not allowed"}})

    def _upload(self, path, ctype, body):
        files = _parse_multipart(ctype, body)
        filename, archive = files["file"]
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            member = zf.namelist()[0]
            plugin = json.loads(zf.read(member).decode("utf-8"))
        name = member.split("/", 1)[0]
        self.env.collections[path]["objects"][name] = {
            **plugin, "id": name, "name": name, "_filename": filename, "_member": member,
        }
        self._send_json(201, {"id": name, "name": name})

    def do_GET(self):  # noqa: N802
        self._route("GET")

    def do_POST(self):  # noqa: N802
        self._route("POST")

    def do_PUT(self):  # noqa: N802
        self._route("PUT")

    def do_DELETE(self):  # noqa: N802
        self._route("DELETE")

    def log_message(self, fmt, *args):  # silence server logs during tests
        return


@pytest.fixture()
def dynatrace():
    env = FakeDynatrace()
    env.add_collection(ALERTING)
    env.add_collection(EXTENSIONS, list_key="extensions")
    env.add_collection(MONITORS, list_key="monitors", id_key="entityId")

    handler = type("BoundHandler", (_Handler,), {"env": env})
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    host, port = server.server_address
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    env.base_url = f"http://{host}:{port}"
    yield env
    server.shutdown()
    thread.join(timeout=1.0)
