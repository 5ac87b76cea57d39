"""Qt host for tikzview: preview windows, their web documents, and the CLI."""

from __future__ import annotations

import argparse
import itertools
import json
import logging
import sys
from functools import partial
from pathlib import Path
from typing import Callable

from PySide6.QtCore import QFile, QIODevice, QObject, Qt, QTimer, QUrl, Signal, Slot
from PySide6.QtGui import QAction, QKeySequence
from PySide6.QtWebChannel import QWebChannel
from PySide6.QtWebEngineCore import QWebEnginePage, QWebEngineScript
from PySide6.QtWebEngineWidgets import QWebEngineView
from PySide6.QtWidgets import QApplication, QFileDialog, QMainWindow

from .coordinator import REQUEST_ATTR, CompletionEvent, TikzCoordinator
from .engine import load_tikzjax_payload
from .errors import EngineNotFoundError
from .renderer import MarkdownRenderer
from .settings import load_settings, save_settings

logger = logging.getLogger(__name__)

BRIDGE_OBJECT_NAME = "tikzview"
TARGET_ATTR = "data-tikzview-target"
EXPIRY_INTERVAL_MS = 1000

# Runs at document creation in every page load. Forwards DOM events to the
# Python bridge, queueing them until the web channel is connected.
_BRIDGE_BOOTSTRAP_JS = f"""
(() => {{
  window.__tikzviewPending = [];
  window.__tikzviewBridge = null;
  window.__tikzviewSend = (eventName, requestId, markup) => {{
    if (window.__tikzviewBridge) {{
      window.__tikzviewBridge.dispatch(eventName, requestId, markup);
    }} else {{
      window.__tikzviewPending.push([eventName, requestId, markup]);
    }}
  }};
  window.__tikzviewForward = (event) => {{
    const target = event.target;
    if (!(target instanceof Element)) {{
      return;
    }}
    const wrapper = target.closest("[{REQUEST_ATTR}]");
    const requestId = wrapper ? wrapper.getAttribute("{REQUEST_ATTR}") : "";
    const markup = target.outerHTML;
    target.setAttribute("{TARGET_ATTR}", "1");
    window.__tikzviewSend(event.type, requestId || "", markup);
  }};
  new QWebChannel(qt.webChannelTransport, (channel) => {{
    window.__tikzviewBridge = channel.objects.{BRIDGE_OBJECT_NAME};
    for (const args of window.__tikzviewPending.splice(0)) {{
      window.__tikzviewBridge.dispatch(...args);
    }}
  }});
}})();
"""

_APPEND_SCRIPT_JS = """
((elementId, payload) => {
  const script = document.createElement("script");
  script.id = elementId;
  script.type = "text/javascript";
  script.text = payload;
  document.body.appendChild(script);
})(%s, %s);
"""

_REMOVE_ELEMENT_JS = """
((elementId) => {
  const element = document.getElementById(elementId);
  if (element) {
    element.remove();
  }
})(%s);
"""

_LISTENER_JS = """
((eventName, attach) => {
  if (attach) {
    document.addEventListener(eventName, window.__tikzviewForward);
  } else {
    document.removeEventListener(eventName, window.__tikzviewForward);
  }
})(%s, %s);
"""

_REPLACE_GRAPHIC_JS = f"""
((requestId, markup) => {{
  let scope = document;
  if (requestId) {{
    scope = document.querySelector(`[{REQUEST_ATTR}="${{CSS.escape(requestId)}}"]`);
  }}
  if (!scope) {{
    return false;
  }}
  const target = scope.querySelector("[{TARGET_ATTR}]") || scope.querySelector('script[type="text/tikz"]');
  if (!target) {{
    return false;
  }}
  target.outerHTML = markup;
  return true;
}})(%s, %s);
"""


def _read_qwebchannel_js() -> str:
    qfile = QFile(":/qtwebchannel/qwebchannel.js")
    if not qfile.open(QIODevice.OpenModeFlag.ReadOnly):
        raise RuntimeError("qwebchannel.js is missing from the Qt resources")
    try:
        return qfile.readAll().data().decode("utf-8")
    finally:
        qfile.close()


def _bootstrap_script() -> QWebEngineScript:
    script = QWebEngineScript()
    script.setName("tikzview-bridge")
    script.setSourceCode(_read_qwebchannel_js() + "\n" + _BRIDGE_BOOTSTRAP_JS)
    script.setInjectionPoint(QWebEngineScript.InjectionPoint.DocumentCreation)
    script.setWorldId(QWebEngineScript.ScriptWorldId.MainWorld)
    script.setRunsOnSubFrames(False)
    return script


class _DocumentBridge(QObject):
    """Object exposed to page JavaScript through the web channel."""

    def __init__(self, callback: Callable[[str, str, str], None], parent=None):
        super().__init__(parent)
        self._callback = callback

    @Slot(str, str, str)
    def dispatch(self, event_name: str, request_id: str, markup: str) -> None:
        self._callback(event_name, request_id, markup)


class WebDocument(QObject):
    """Document adapter over a QWebEnginePage.

    Every page load starts from a fresh DOM, so appended scripts and event
    listeners are kept here and replayed whenever a load finishes.
    """

    def __init__(self, page: QWebEnginePage, document_id: str, parent=None):
        super().__init__(parent)
        self.document_id = document_id
        self._page = page
        self._scripts: list[tuple[str, str]] = []
        self._listeners: dict[str, list[Callable]] = {}
        self._loaded = False

        self._bridge = _DocumentBridge(self._dispatch, self)
        self._channel = QWebChannel(page)
        self._channel.registerObject(BRIDGE_OBJECT_NAME, self._bridge)
        page.setWebChannel(self._channel)
        page.scripts().insert(_bootstrap_script())
        page.loadStarted.connect(self._on_load_started)
        page.loadFinished.connect(self._on_load_finished)

    def _run(self, js: str) -> None:
        if self._loaded:
            self._page.runJavaScript(js)

    def append_script(self, element_id: str, payload: str) -> None:
        self._scripts.append((element_id, payload))
        self._run(_APPEND_SCRIPT_JS % (json.dumps(element_id), json.dumps(payload)))

    def remove_element(self, element_id: str) -> bool:
        for index, (existing_id, _payload) in enumerate(self._scripts):
            if existing_id == element_id:
                del self._scripts[index]
                self._run(_REMOVE_ELEMENT_JS % json.dumps(element_id))
                return True
        return False

    def add_event_listener(self, event_name: str, handler: Callable) -> None:
        handlers = self._listeners.setdefault(event_name, [])
        handlers.append(handler)
        if len(handlers) == 1:
            self._run(_LISTENER_JS % (json.dumps(event_name), "true"))

    def remove_event_listener(self, event_name: str, handler: Callable) -> None:
        handlers = self._listeners.get(event_name)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._listeners[event_name]
            self._run(_LISTENER_JS % (json.dumps(event_name), "false"))

    def replace_graphic(self, request_id: str, markup: str) -> None:
        self._run(_REPLACE_GRAPHIC_JS % (json.dumps(request_id), json.dumps(markup)))

    def _on_load_started(self) -> None:
        self._loaded = False

    def _on_load_finished(self, ok: bool) -> None:
        self._loaded = ok
        if not ok:
            return
        # Listeners first so no completion event can slip past.
        for event_name in self._listeners:
            self._run(_LISTENER_JS % (json.dumps(event_name), "true"))
        for element_id, payload in self._scripts:
            self._run(_APPEND_SCRIPT_JS % (json.dumps(element_id), json.dumps(payload)))

    def _dispatch(self, event_name: str, request_id: str, markup: str) -> None:
        event = CompletionEvent(self, request_id, markup)
        for handler in list(self._listeners.get(event_name, ())):
            handler(event)


class PreviewWindow(QMainWindow):
    def __init__(self, workspace: "ViewerWorkspace", document_id: str):
        super().__init__()
        self.setAttribute(Qt.WidgetAttribute.WA_DeleteOnClose)
        self._workspace = workspace
        self._path: Path | None = None
        self.view = QWebEngineView(self)
        self.setCentralWidget(self.view)
        self.document = WebDocument(self.view.page(), document_id, self)
        self.resize(1000, 800)
        self._add_actions()
        self._show_placeholder("Open a markdown file to preview")

    def _add_actions(self) -> None:
        toolbar = self.addToolBar("File")
        toolbar.setMovable(False)
        for text, shortcut, slot in (
            ("Open…", QKeySequence.StandardKey.Open, self._choose_file),
            ("New Window", QKeySequence.StandardKey.New, self._workspace.open_window),
            ("Reload", QKeySequence.StandardKey.Refresh, self.reload),
        ):
            action = QAction(text, self)
            action.setShortcut(shortcut)
            action.triggered.connect(lambda _checked=False, handler=slot: handler())
            toolbar.addAction(action)

    def _show_placeholder(self, message: str) -> None:
        html_doc = self._workspace.renderer.render_document(f"*{message}*", "tikzview")
        self.view.setHtml(html_doc, QUrl.fromLocalFile(f"{Path.home()}/"))
        self.setWindowTitle("tikzview")

    def _choose_file(self) -> None:
        start_dir = str(self._path.parent) if self._path is not None else str(Path.home())
        selected, _filter = QFileDialog.getOpenFileName(
            self,
            "Open Markdown",
            start_dir,
            "Markdown (*.md *.markdown);;All files (*)",
        )
        if selected:
            self.load_file(Path(selected))

    def load_file(self, path: Path) -> None:
        coordinator = self._workspace.coordinator
        # Renders still in flight belong to the page being replaced.
        coordinator.discard_document(self.document.document_id)
        try:
            markdown_text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            self.statusBar().showMessage(f"Could not read {path}: {exc}", 5000)
            return
        self._path = path
        resolver = partial(coordinator.render_block, self.document.document_id)
        html_doc = self._workspace.renderer.render_document(markdown_text, path.name, tikz_resolver=resolver)
        self.view.setHtml(html_doc, QUrl.fromLocalFile(f"{path.parent}/"))
        self.setWindowTitle(f"{path.name} - tikzview")

    def reload(self) -> None:
        if self._path is not None:
            self.load_file(self._path)

    def closeEvent(self, event) -> None:  # noqa: N802
        self._workspace.window_closed(self)
        super().closeEvent(event)


class ViewerWorkspace(QObject):
    """Tracks open preview windows for the coordinator."""

    window_opened = Signal(object)

    def __init__(self, renderer: MarkdownRenderer, parent=None):
        super().__init__(parent)
        self.renderer = renderer
        self.coordinator: TikzCoordinator | None = None
        self._windows: list[PreviewWindow] = []
        self._ids = itertools.count(1)
        self._expiry_timer = QTimer(self)
        self._expiry_timer.setInterval(EXPIRY_INTERVAL_MS)
        self._expiry_timer.timeout.connect(self._expire_overdue)

    def attach(self, coordinator: TikzCoordinator) -> None:
        self.coordinator = coordinator
        self._expiry_timer.start()

    def documents(self) -> list[WebDocument]:
        return [window.document for window in self._windows]

    def on_window_open(self, callback: Callable) -> Callable[[], None]:
        self.window_opened.connect(callback)

        def unsubscribe() -> None:
            self.window_opened.disconnect(callback)

        return unsubscribe

    def open_window(self, path: Path | None = None) -> PreviewWindow:
        window = PreviewWindow(self, f"window-{next(self._ids)}")
        self._windows.append(window)
        window.show()
        self.window_opened.emit(window.document)
        if path is not None:
            window.load_file(path)
        return window

    def window_closed(self, window: PreviewWindow) -> None:
        if window in self._windows:
            self._windows.remove(window)
        if self.coordinator is not None:
            self.coordinator.release_document(window.document)

    def _expire_overdue(self) -> None:
        if self.coordinator is not None:
            self.coordinator.expire_overdue()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tikzview",
        description="Preview markdown files with TikZ diagrams rendered by TikZJax.",
    )
    parser.add_argument("path", nargs="?", default=None, help="Markdown file to open.")
    parser.add_argument("--tikzjax", default=None, help="Path to the tikzjax.js bundle.")
    parser.add_argument(
        "--no-invert-colors",
        action="store_true",
        help="Keep black/white diagram colors instead of following the theme.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for a diagram before showing an error (0 disables).",
    )
    parser.add_argument("--save-settings", action="store_true", help="Persist the given options to ~/.tikzview.cfg.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings()
    if args.no_invert_colors:
        settings.invert_colors_in_dark_mode = False
    if args.timeout is not None:
        settings.render_timeout_seconds = args.timeout
    if args.tikzjax:
        settings.tikzjax_path = str(Path(args.tikzjax).expanduser())
    if args.save_settings:
        save_settings(settings)

    path = None
    if args.path is not None:
        path = Path(args.path).expanduser()
        if not path.exists():
            print(f"Path does not exist: {path}", file=sys.stderr)
            return 2
        if not path.is_file():
            print(f"Path is not a file: {path}", file=sys.stderr)
            return 2

    try:
        payload = load_tikzjax_payload(settings.tikzjax_path or None)
    except EngineNotFoundError as exc:
        print(f"tikzview: {exc}", file=sys.stderr)
        return 2

    app = QApplication(sys.argv[:1])
    app.setApplicationName("tikzview")
    app.setDesktopFileName("tikzview")

    workspace = ViewerWorkspace(MarkdownRenderer())
    coordinator = TikzCoordinator(workspace, payload, settings)
    workspace.attach(coordinator)
    coordinator.load()
    app.aboutToQuit.connect(coordinator.unload)

    workspace.open_window(path)
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
