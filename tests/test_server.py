import asyncio
import io
import logging
from pathlib import Path

import websockets

from driftwood.build import BuildError
from driftwood.server import (
    DevServer,
    LiveReloadHub,
    _ChangeHandler,
    _ReloadHandler,
    inject_reload,
    reload_snippet,
)


class DummyEvent:
    def __init__(self, path, is_directory=False):
        self.src_path = str(path)
        self.is_directory = is_directory


def make_handler(tmp_path, path, out, handler_cls=_ReloadHandler):
    handler = handler_cls.__new__(handler_cls)
    handler.path = path
    handler.directory = str(tmp_path)
    handler.command = "GET"
    handler.request_version = "HTTP/1.1"
    handler.server_version = ""
    handler.sys_version = ""
    handler._headers_buffer = []
    handler.headers = {}
    handler.rfile = io.BytesIO(b"")
    handler.wfile = out
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None
    return handler


def test_ports_default_from_config(tmp_path):
    server = DevServer(tmp_path)
    assert server.http_port == 8080
    assert server.ws_port == 8081
    assert server.hub.port == 8081

    (tmp_path / "driftwood.yaml").write_text("port: 3000\n", encoding="utf-8")
    server = DevServer(tmp_path)
    assert (server.http_port, server.ws_port) == (3000, 3001)
    assert server.root_url == "http://localhost:3000"

    explicit = DevServer(tmp_path, http_port=5055, ws_port=6000)
    assert explicit.ws_port == 6000
    assert ":6000" in explicit.handler_class().snippet


def test_inject_reload():
    snippet = reload_snippet(9001)
    assert "':9001'" in snippet
    page = inject_reload("<html><body>Hi</body></html>", snippet)
    assert page.endswith(f"{snippet}</body></html>")
    assert inject_reload("<p>x</p>", snippet) == "<p>x</p>" + snippet


def test_is_ignored(tmp_path):
    server = DevServer(tmp_path)
    assert server.is_ignored(tmp_path / "_site" / "index.html")
    assert server.is_ignored(tmp_path / "._site.staging" / "index.html")
    assert server.is_ignored(tmp_path / ".cache" / "img" / "a-400.webp")
    assert server.is_ignored(tmp_path / "node_modules" / "x" / "a.css")
    assert server.is_ignored(tmp_path / ".git" / "HEAD")
    assert server.is_ignored(Path("/somewhere/else.md"))
    assert not server.is_ignored(tmp_path / "_posts" / "hello.md")
    assert not server.is_ignored(tmp_path / "driftwood.yaml")


def test_change_handler_filters_events(tmp_path):
    server = DevServer(tmp_path)
    calls = []
    server.rebuild = lambda: calls.append("rebuild")
    handler = _ChangeHandler(server)

    handler.on_any_event(DummyEvent(tmp_path / "_site" / "index.html"))
    handler.on_any_event(DummyEvent(tmp_path / "_posts", is_directory=True))
    assert calls == []

    handler.on_any_event(DummyEvent(tmp_path / "_posts" / "hello.md"))
    assert calls == ["rebuild"]


def test_rebuild_publishes_and_reloads(monkeypatch, tmp_path):
    server = DevServer(tmp_path, env="production")
    server._debounce_seconds = 0.0
    calls = []

    def fake_build(root, env=None, root_url=None):
        calls.append(("build", env, root_url))

    monkeypatch.setattr("driftwood.server.build_site", fake_build)
    server.hub.notify = lambda: calls.append("reload")

    sigs = [("a",), ("a",), ("b",)]
    server._compute_signature = lambda: sigs.pop(0)

    assert server.rebuild() is True
    assert server.rebuild() is False
    assert server.rebuild() is True
    assert calls == [
        ("build", "production", "http://localhost:8080"),
        "reload",
        ("build", "production", "http://localhost:8080"),
        "reload",
    ]


def test_failed_rebuild_keeps_serving(monkeypatch, tmp_path, caplog):
    server = DevServer(tmp_path)
    server._debounce_seconds = 0.0
    server._compute_signature = lambda: ("changed",)
    reloads = []
    server.hub.notify = lambda: reloads.append(True)

    def failing_build(root, env=None, root_url=None):
        raise BuildError(root / "_posts" / "x.md", "Image not found: img/x.jpg")

    monkeypatch.setattr("driftwood.server.build_site", failing_build)
    with caplog.at_level(logging.WARNING, logger="driftwood.server"):
        assert server.rebuild() is False
    assert "Rebuild failed" in caplog.text
    assert reloads == []
    assert server._last_signature is None


def test_rebuild_skipped_while_another_runs(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    server._debounce_seconds = 0.0
    monkeypatch.setattr("driftwood.server.build_site", lambda *a, **k: None)
    server._lock.acquire()
    try:
        assert server.rebuild() is False
    finally:
        server._lock.release()


def test_compute_signature(tmp_path):
    server = DevServer(tmp_path)
    assert server._compute_signature() is None
    (tmp_path / "_posts").mkdir()
    (tmp_path / "_posts" / "a.md").write_text("hi", encoding="utf-8")
    (tmp_path / "_site").mkdir()
    (tmp_path / "_site" / "index.html").write_text("out", encoding="utf-8")
    sig = server._compute_signature()
    assert [entry[0] for entry in sig] == [str(Path("_posts") / "a.md")]


def test_hub_broadcast_drops_closed_clients():
    hub = LiveReloadHub(9999)

    class GoodWS:
        def __init__(self):
            self.messages = []

        async def send(self, msg):
            self.messages.append(msg)

    class ClosedWS:
        async def send(self, msg):
            raise websockets.ConnectionClosed(None, None)

    good, closed = GoodWS(), ClosedWS()
    hub.clients = {good, closed}
    asyncio.run(hub.broadcast("hello"))
    assert good.messages == ["hello"]
    assert hub.clients == {good}


def test_hub_connect_and_server_stop(tmp_path):
    server = DevServer(tmp_path)

    class DummyWS:
        closed = False

        async def wait_closed(self):
            self.closed = True

    ws = DummyWS()
    asyncio.run(server.hub.connect(ws))
    assert ws.closed
    assert ws not in server.hub.clients

    class DummyObserver:
        def __init__(self):
            self.calls = []

        def stop(self):
            self.calls.append("stop")

        def join(self):
            self.calls.append("join")

    server._observer = DummyObserver()
    server.stop()
    assert server._observer.calls == ["stop", "join"]


def test_start_watcher_schedules_project_root(monkeypatch, tmp_path):
    server = DevServer(tmp_path)
    scheduled = []

    class DummyObserver:
        def schedule(self, handler, path, recursive):
            scheduled.append((path, recursive))

        def start(self):
            scheduled.append("started")

    monkeypatch.setattr("driftwood.server.Observer", DummyObserver)
    server._start_watcher()
    assert scheduled == [(str(tmp_path), True), "started"]


def test_reload_handler_injects_script(tmp_path):
    (tmp_path / "index.html").write_text("<html><body>Hello</body></html>", encoding="utf-8")
    (tmp_path / "plain.html").write_text("<p>No body</p>", encoding="utf-8")
    for path in ("/", "/index.html", "/plain.html"):
        out = io.BytesIO()
        handler = make_handler(tmp_path, path, out)
        handler.send_response = lambda code, message=None: None
        assert _ReloadHandler.send_head(handler) is None
        assert b"WebSocket" in out.getvalue()


def test_reload_handler_uses_server_port(tmp_path):
    (tmp_path / "index.html").write_text("<body>Hi</body>", encoding="utf-8")
    server = DevServer(tmp_path, http_port=7000)
    out = io.BytesIO()
    handler = make_handler(tmp_path, "/", out, server.handler_class())
    handler.send_response = lambda code, message=None: None
    handler.send_head()
    assert b":7001" in out.getvalue()


def test_reload_handler_serves_custom_404(tmp_path):
    (tmp_path / "404.html").write_text("<html><body>oops</body></html>", encoding="utf-8")
    out = io.BytesIO()
    handler = make_handler(tmp_path, "/missing/", out)
    codes = []
    handler.send_response = lambda code, message=None: codes.append(code)
    assert _ReloadHandler.send_head(handler) is None
    assert codes == [404]
    assert b"oops" in out.getvalue()


def test_reload_handler_plain_404(tmp_path):
    (tmp_path / "drafts").mkdir()
    handler = make_handler(tmp_path, "/drafts/", io.BytesIO())
    errors = []
    handler.send_error = lambda code, message=None: errors.append(code)
    assert _ReloadHandler.send_head(handler) is None
    assert errors == [404]


def test_send_head_falls_back_for_assets(tmp_path):
    (tmp_path / "style.css").write_text("body{}", encoding="utf-8")
    handler = make_handler(tmp_path, "/style.css", io.BytesIO())
    handler.send_response = lambda code, message=None: None
    result = _ReloadHandler.send_head(handler)
    assert result is not None
    result.close()
