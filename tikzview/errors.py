"""Exceptions raised by tikzview."""

from __future__ import annotations


class TikzViewError(Exception):
    pass


class EngineNotFoundError(TikzViewError):
    """No tikzjax.js bundle could be located."""


class RenderTimeoutError(TikzViewError):
    """TikZJax never reported a finished graphic for a block."""
