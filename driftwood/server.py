"""Development server for Driftwood.

``driftwood serve`` builds the blog, serves the output directory and keeps
it fresh while you write:
- HTML responses get a small script that listens for reload messages.
- Directory listings are never shown; missing paths answer 404 (with the
  site's own 404.html when it has one).
- Changes anywhere in the project, except generated and vendored
  directories, trigger a rebuild and a browser reload.

A rebuild that fails is logged and the previous output keeps being served,
since ``build_site`` only publishes complete builds.

Key classes:
- DevServer: Owns the build, the watcher and the two listeners.
- LiveReloadHub: Websocket side; tracks browsers and tells them to reload.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import BuildError, build_site, staging_dir_for
from .config import load_config

logger = logging.getLogger(__name__)

IGNORED_PARTS = {"node_modules", ".git", "__pycache__"}
RELOAD_MESSAGE = json.dumps({"type": "reload"})


def reload_snippet(ws_port: int) -> str:
    """Script tag that reloads the page when the hub says so."""
    return (
        "<script>\n"
        "(() => {\n"
        f"  const socket = new WebSocket('ws://' + location.hostname + ':{ws_port}');\n"
        "  socket.onmessage = (event) => {\n"
        "    if (JSON.parse(event.data || '{}').type === 'reload') location.reload();\n"
        "  };\n"
        "})();\n"
        "</script>\n"
    )


def inject_reload(html: str, snippet: str) -> str:
    if "</body>" in html:
        return html.replace("</body>", f"{snippet}</body>", 1)
    return html + snippet


class _ReloadHandler(SimpleHTTPRequestHandler):
    """Static file handler for the output directory.

    Subclassed per server with the ``snippet`` for its websocket port.
    """

    snippet = reload_snippet(8081)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._not_found()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def send_head(self):
        target = Path(self.translate_path(self.path))
        if target.is_dir():
            target = target / "index.html"
        if not target.is_file():
            return self._not_found()
        if target.suffix == ".html":
            self._send_page(200, target)
            return None
        return super().send_head()

    def _send_page(self, status: int, page: Path) -> None:
        body = inject_reload(page.read_text(encoding="utf-8"), self.snippet).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _not_found(self):
        custom = Path(self.directory) / "404.html"
        if custom.is_file():
            self._send_page(404, custom)
        else:
            self.send_error(404, "File not found")
        return None


class LiveReloadHub:
    """Websocket endpoint browsers connect to for reload notifications.

    The hub runs its own event loop on a background thread; ``notify`` may
    be called from any thread.
    """

    def __init__(self, port: int):
        self.port = port
        self.clients: set = set()
        self.loop = asyncio.new_event_loop()

    def run(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_until_complete(self._serve())
        except OSError as exc:
            logger.error("Live reload server failed to start (port %d): %s", self.port, exc)

    async def _serve(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self.connect, "0.0.0.0", self.port):
            await asyncio.Future()

    async def connect(self, websocket):
        self.clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self.clients.discard(websocket)

    def notify(self) -> None:
        asyncio.run_coroutine_threadsafe(self.broadcast(RELOAD_MESSAGE), self.loop)

    async def broadcast(self, message: str) -> None:
        gone = set()
        for client in list(self.clients):
            try:
                await client.send(message)
            except websockets.ConnectionClosed:
                gone.add(client)
        self.clients -= gone

    def close(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)


class DevServer:
    """Development server with live reload.

    Attributes:
        project_root: Root directory of the project.
        config: Merged driftwood.yaml settings.
        output_dir: Directory that is served.
        env: Build environment passed to every build.
        http_port: Port for the HTTP server.
        ws_port: Port for live reload websockets (``http_port + 1`` unless given).
    """

    def __init__(
        self,
        project_root: Path,
        http_port: int | None = None,
        ws_port: int | None = None,
        env: str | None = None,
    ):
        self.project_root = project_root
        self.config = load_config(project_root)
        self.output_dir = project_root / self.config["output_dir"]
        self.env = env
        self.http_port = int(http_port or self.config.get("port", 8080))
        self.ws_port = ws_port if ws_port is not None else self.http_port + 1
        self.hub = LiveReloadHub(self.ws_port)
        self.root_url = f"http://localhost:{self.http_port}"
        self._ignored_dirs = [
            self.output_dir,
            staging_dir_for(self.output_dir),
            project_root / ".cache",
            project_root / self.config["images"]["cache_dir"],
        ]
        self._observer: Observer | None = None
        self._lock = threading.Lock()
        self._last_rebuild_at = 0.0
        self._last_signature: tuple | None = None
        self._debounce_seconds = 0.05

    def start(self) -> None:  # pragma: no cover - integration path
        build_site(self.project_root, env=self.env, root_url=self.root_url)
        self._last_signature = self._compute_signature()
        threading.Thread(target=self._serve_http, daemon=True).start()
        threading.Thread(target=self.hub.run, daemon=True).start()
        self._start_watcher()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join()
        self.hub.close()

    def handler_class(self) -> type[_ReloadHandler]:
        return type("DriftwoodHandler", (_ReloadHandler,), {"snippet": reload_snippet(self.ws_port)})

    def _serve_http(self) -> None:  # pragma: no cover - integration path
        handler = functools.partial(self.handler_class(), directory=str(self.output_dir))
        httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info("Serving %s at %s", self.output_dir, self.root_url)
        httpd.serve_forever()

    def _start_watcher(self) -> None:
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self.project_root), recursive=True)
        observer.start()
        self._observer = observer

    def is_ignored(self, path: Path) -> bool:
        """True for paths whose changes must not trigger a rebuild."""
        try:
            rel = path.relative_to(self.project_root)
        except ValueError:
            return True
        if IGNORED_PARTS.intersection(rel.parts):
            return True
        if any(part.startswith(".") for part in rel.parts[:-1]):
            return True
        return any(path.is_relative_to(ignored) for ignored in self._ignored_dirs)

    def rebuild(self) -> bool:
        """Rebuild after a change. Returns True when a new build was published."""
        if time.time() - self._last_rebuild_at < self._debounce_seconds:
            return False
        if not self._lock.acquire(blocking=False):
            return False
        try:
            signature = self._compute_signature()
            if signature is not None and signature == self._last_signature:
                return False
            logger.info("Change detected; rebuilding...")
            try:
                build_site(self.project_root, env=self.env, root_url=self.root_url)
            except BuildError as exc:
                logger.warning("Rebuild failed, still serving previous output: %s", exc)
                return False
            self._last_signature = signature
            self.hub.notify()
            return True
        finally:
            self._lock.release()
            self._last_rebuild_at = time.time()

    def _compute_signature(self) -> tuple | None:
        entries = []
        for path in sorted(self.project_root.rglob("*")):
            if self.is_ignored(path) or not path.is_file():
                continue
            try:
                stat = path.stat()
            except OSError:
                continue
            entries.append((str(path.relative_to(self.project_root)), stat.st_mtime_ns, stat.st_size))
        return tuple(entries) or None


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, server: DevServer):
        super().__init__()
        self.server = server

    def on_any_event(self, event):
        if event.is_directory or self.server.is_ignored(Path(event.src_path)):
            return
        self.server.rebuild()
