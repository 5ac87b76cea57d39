"""Inject and remove the TikZJax engine in every open preview document."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Protocol, runtime_checkable

from .errors import EngineNotFoundError

logger = logging.getLogger(__name__)

ENGINE_ELEMENT_ID = "tikzjax"
COMPLETION_EVENT = "tikzjax-load-finished"
PLACEHOLDER_TYPE = "text/tikz"
TIKZJAX_ENV_VAR = "TIKZVIEW_TIKZJAX_JS"


@runtime_checkable
class Document(Protocol):
    """A web document hosted by one preview window."""

    document_id: str

    def append_script(self, element_id: str, payload: str) -> None: ...

    def remove_element(self, element_id: str) -> bool: ...

    def add_event_listener(self, event_name: str, handler: Callable) -> None: ...

    def remove_event_listener(self, event_name: str, handler: Callable) -> None: ...

    def replace_graphic(self, request_id: str, markup: str) -> None: ...


@runtime_checkable
class Workspace(Protocol):
    """Enumerates preview windows and announces new ones."""

    def documents(self) -> Iterable[Document]: ...

    def on_window_open(self, callback: Callable[[Document], None]) -> Callable[[], None]: ...


@dataclass
class EngineInstance:
    document: Document
    element_id: str
    listener: Callable


class EngineLifecycle:
    """Tracks at most one injected engine per window document.

    ``inject`` does not check for an existing instance: injecting twice into
    the same document without ``remove`` leaves a duplicate script and a
    duplicate completion listener behind. Callers must check ``is_injected``.
    """

    def __init__(self, workspace: Workspace, payload: str, listener: Callable) -> None:
        self._workspace = workspace
        self._payload = payload
        self._listener = listener
        self._instances: dict[str, EngineInstance] = {}

    @property
    def instances(self) -> Mapping[str, EngineInstance]:
        return MappingProxyType(self._instances)

    def is_injected(self, document: Document) -> bool:
        return document.document_id in self._instances

    def document_for(self, document_id: str) -> Document | None:
        instance = self._instances.get(document_id)
        return instance.document if instance is not None else None

    def inject(self, document: Document) -> EngineInstance:
        document.append_script(ENGINE_ELEMENT_ID, self._payload)
        document.add_event_listener(COMPLETION_EVENT, self._listener)
        instance = EngineInstance(document, ENGINE_ELEMENT_ID, self._listener)
        self._instances[document.document_id] = instance
        logger.debug("injected tikzjax into %s", document.document_id)
        return instance

    def remove(self, document: Document) -> None:
        instance = self._instances.pop(document.document_id, None)
        element_id = instance.element_id if instance is not None else ENGINE_ELEMENT_ID
        listener = instance.listener if instance is not None else self._listener
        try:
            if not document.remove_element(element_id):
                logger.warning(
                    "no #%s script in %s; treating removal as a no-op",
                    element_id,
                    document.document_id,
                )
        finally:
            document.remove_event_listener(COMPLETION_EVENT, listener)
        logger.debug("removed tikzjax from %s", document.document_id)

    def inject_all(self) -> None:
        for document in self._workspace.documents():
            self.inject(document)

    def remove_all(self) -> None:
        documents = {doc.document_id: doc for doc in self._workspace.documents()}
        # Windows that closed without release still hold a listener.
        for document_id, instance in self._instances.items():
            documents.setdefault(document_id, instance.document)
        for document in documents.values():
            try:
                self.remove(document)
            except Exception:
                logger.exception("failed to remove tikzjax from %s", document.document_id)


def first_existing_file(candidates: Iterable[Path]) -> Path | None:
    """Return the first candidate that is a readable file, resolved."""
    for candidate in candidates:
        try:
            if candidate.is_file():
                return candidate.resolve()
        except OSError:
            continue
    return None


def resolve_tikzjax_script(explicit: str | os.PathLike | None = None) -> Path | None:
    """Locate a local tikzjax.js bundle."""
    candidates: list[Path] = []
    if explicit:
        candidates.append(Path(explicit).expanduser())
    env_value = os.environ.get(TIKZJAX_ENV_VAR, "").strip()
    if env_value:
        candidates.append(Path(env_value).expanduser())

    app_dir = Path(__file__).resolve().parent
    candidates.extend(
        [
            app_dir / "vendor" / "tikzjax" / "tikzjax.js",
            app_dir / "assets" / "tikzjax.js",
            app_dir.parent / "vendor" / "tikzjax" / "tikzjax.js",
            Path.cwd() / "tikzjax.js",
            Path("/usr/share/javascript/tikzjax/tikzjax.js"),
            Path("/usr/share/tikzjax/tikzjax.js"),
        ]
    )
    return first_existing_file(candidates)


def load_tikzjax_payload(explicit: str | os.PathLike | None = None) -> str:
    path = resolve_tikzjax_script(explicit)
    if path is None:
        raise EngineNotFoundError(
            "tikzjax.js not found "
            f"(pass --tikzjax, set {TIKZJAX_ENV_VAR}, or place it at vendor/tikzjax/tikzjax.js)"
        )
    return path.read_text(encoding="utf-8")
