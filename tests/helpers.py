"""Fakes shared by the tikzview tests."""

import itertools

from tikzview.coordinator import CompletionEvent

ENGINE_PAYLOAD = "/* tikzjax */"

SAMPLE_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" '
    'width="40" height="40" viewBox="0 0 40 40">'
    '<defs><path id="a" d="M0 0L10 10"/></defs>'
    '<g stroke="#000" fill="white">'
    '<use xlink:href="#a" x="5" y="5"/>'
    '<circle id="b" cx="20" cy="20" r="5" fill="#000"/>'
    "</g></svg>"
)


class FakeDocument:
    """Records what the engine lifecycle and coordinator do to a page."""

    def __init__(self, document_id):
        self.document_id = document_id
        self.scripts = []
        self.listeners = {}
        self.replaced = []

    def append_script(self, element_id, payload):
        self.scripts.append((element_id, payload))

    def remove_element(self, element_id):
        for index, (existing_id, _payload) in enumerate(self.scripts):
            if existing_id == element_id:
                del self.scripts[index]
                return True
        return False

    def add_event_listener(self, event_name, handler):
        self.listeners.setdefault(event_name, []).append(handler)

    def remove_event_listener(self, event_name, handler):
        handlers = self.listeners.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def replace_graphic(self, request_id, markup):
        self.replaced.append((request_id, markup))

    def fire(self, event_name, request_id, markup):
        event = CompletionEvent(self, request_id, markup)
        for handler in list(self.listeners.get(event_name, [])):
            handler(event)

    def listener_count(self, event_name):
        return len(self.listeners.get(event_name, []))


class FakeWorkspace:
    def __init__(self, count=0):
        self._ids = itertools.count(1)
        self.windows = [FakeDocument(f"window-{next(self._ids)}") for _ in range(count)]
        self.subscribers = []

    def documents(self):
        return list(self.windows)

    def on_window_open(self, callback):
        self.subscribers.append(callback)

        def unsubscribe():
            self.subscribers.remove(callback)

        return unsubscribe

    def open_window(self):
        document = FakeDocument(f"window-{next(self._ids)}")
        self.windows.append(document)
        for callback in list(self.subscribers):
            callback(document)
        return document
