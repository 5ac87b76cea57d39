"""Wire tikz fences, the TikZJax engine, and SVG post-processing together."""

from __future__ import annotations

import html
import logging
import re
import time
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum

from .engine import PLACEHOLDER_TYPE, Document, EngineLifecycle, Workspace
from .errors import RenderTimeoutError
from .graphic import post_process_svg
from .source_block import ParsedBlock, parse_block

logger = logging.getLogger(__name__)

REQUEST_ATTR = "data-tikzview-request"
_SCRIPT_CLOSE_RE = re.compile(r"</(script)", re.IGNORECASE)


class RenderState(Enum):
    DISCOVERED = "discovered"
    PLACEHOLDER_BUILT = "placeholder-built"
    DELEGATED = "delegated"
    COMPLETION_RECEIVED = "completion-received"
    REWRITTEN = "rewritten"
    DISPLAYED = "displayed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({RenderState.DISPLAYED, RenderState.FAILED, RenderState.CANCELLED})


@dataclass
class RenderRequest:
    request_id: str
    document_id: str
    block: ParsedBlock
    state: RenderState = RenderState.DISCOVERED
    created_at: float = field(default_factory=time.monotonic)
    future: Future = field(default_factory=Future)

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class CompletionEvent:
    """``tikzjax-load-finished`` as seen from Python.

    ``markup`` is the outer HTML of the event target, the freshly rendered
    ``<svg>`` sitting where the placeholder was.
    """
    document: Document
    request_id: str
    markup: str


def placeholder_html(block: ParsedBlock, request_id: str = "", line_attrs: str = "") -> str:
    attrs = f' {REQUEST_ATTR}="{html.escape(request_id)}"' if request_id else ""
    if block.style:
        attrs += f' style="{html.escape(block.style)}"'
    # Script text is raw; only a literal closing tag would end it early.
    source = _SCRIPT_CLOSE_RE.sub(r"<\\/\1", block.diagram_source)
    return (
        f'<div class="tikzview-fence"{line_attrs}{attrs}>'
        f'<script type="{PLACEHOLDER_TYPE}" data-show-console="true">{source}</script>'
        "</div>\n"
    )


def error_html(message: str) -> str:
    return f'<div class="tikzview-error">{html.escape(message)}</div>'


class TikzCoordinator:
    # Finished requests kept around so late completions can still be recognised.
    finished_history = 256

    def __init__(self, workspace: Workspace, payload: str, settings) -> None:
        self.settings = settings
        self.engine = EngineLifecycle(workspace, payload, self.handle_completion)
        self._workspace = workspace
        self._requests: dict[str, RenderRequest] = {}
        self._unsubscribe_window_open = None

    def load(self) -> None:
        """Inject the engine into every open window and every future one."""
        self.engine.inject_all()
        self._unsubscribe_window_open = self._workspace.on_window_open(self._on_window_open)

    def unload(self) -> None:
        try:
            self.engine.remove_all()
        except Exception:
            logger.exception("failed to remove tikzjax from every window")
        finally:
            if self._unsubscribe_window_open is not None:
                self._unsubscribe_window_open()
                self._unsubscribe_window_open = None
            for request in self.pending():
                self._cancel(request)

    def _on_window_open(self, document: Document) -> None:
        if self.engine.is_injected(document):
            return
        self.engine.inject(document)

    def request(self, request_id: str) -> RenderRequest | None:
        return self._requests.get(request_id)

    def pending(self) -> list[RenderRequest]:
        return [request for request in self._requests.values() if not request.done]

    def render_block(self, document_id: str, raw: str, line_attrs: str = "") -> str:
        """Turn one tikz fence into a placeholder TikZJax will pick up."""
        request = RenderRequest(
            request_id=uuid.uuid4().hex,
            document_id=document_id,
            block=parse_block(raw),
        )
        self._forget_finished()
        self._requests[request.request_id] = request
        markup = placeholder_html(request.block, request.request_id, line_attrs)
        request.state = RenderState.PLACEHOLDER_BUILT
        # TikZJax picks the placeholder up on its own once the page is live.
        request.state = RenderState.DELEGATED
        return markup

    def handle_completion(self, event: CompletionEvent) -> None:
        request = self._requests.get(event.request_id)
        if request is not None:
            if request.done:
                logger.debug("ignoring late completion for %s", request.request_id)
                return
            request.state = RenderState.COMPLETION_RECEIVED

        try:
            svg = post_process_svg(event.markup, self.settings)
        except Exception as exc:
            # Leave the raw graphic on the page; one bad diagram must not
            # take the document down with it.
            logger.exception("post-processing failed for tikz graphic %s", event.request_id or "<unknown>")
            if request is not None:
                self._fail(request, exc)
            return

        if request is not None:
            request.state = RenderState.REWRITTEN
        try:
            event.document.replace_graphic(event.request_id, svg)
        except Exception as exc:
            logger.exception("could not display tikz graphic %s", event.request_id or "<unknown>")
            if request is not None:
                self._fail(request, exc)
            return
        if request is not None:
            request.state = RenderState.DISPLAYED
            request.future.set_result(svg)

    def expire_overdue(self, now: float | None = None) -> list[RenderRequest]:
        """Fail requests TikZJax has not answered within the render timeout."""
        timeout = float(self.settings.render_timeout_seconds)
        if timeout <= 0:
            return []
        now = time.monotonic() if now is None else now
        expired = []
        for request in self.pending():
            if request.state is not RenderState.DELEGATED or now - request.created_at < timeout:
                continue
            message = f"TikZ render timed out after {timeout:g}s"
            self._fail(request, RenderTimeoutError(message))
            document = self.engine.document_for(request.document_id)
            if document is not None:
                document.replace_graphic(request.request_id, error_html(message))
            logger.warning("tikz render %s in %s timed out", request.request_id, request.document_id)
            expired.append(request)
        return expired

    def discard_document(self, document_id: str) -> None:
        for request in self.pending():
            if request.document_id == document_id:
                self._cancel(request)
        self._requests = {key: req for key, req in self._requests.items() if req.document_id != document_id}

    def release_document(self, document: Document) -> None:
        """Forget a closing window: drop its engine and its pending renders."""
        if self.engine.is_injected(document):
            try:
                self.engine.remove(document)
            except Exception:
                logger.exception("failed to remove tikzjax from %s", document.document_id)
        self.discard_document(document.document_id)

    def _forget_finished(self) -> None:
        finished = [key for key, request in self._requests.items() if request.done]
        for key in finished[: max(len(finished) - self.finished_history, 0)]:
            del self._requests[key]

    def _fail(self, request: RenderRequest, exc: BaseException) -> None:
        request.state = RenderState.FAILED
        if not request.future.done():
            request.future.set_exception(exc)

    def _cancel(self, request: RenderRequest) -> None:
        request.state = RenderState.CANCELLED
        request.future.cancel()
