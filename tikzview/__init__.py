"""tikzview: markdown previewer that renders TikZ fences with TikZJax."""

from .coordinator import CompletionEvent, RenderRequest, RenderState, TikzCoordinator
from .engine import COMPLETION_EVENT, ENGINE_ELEMENT_ID, EngineInstance, EngineLifecycle
from .errors import EngineNotFoundError, RenderTimeoutError, TikzViewError
from .graphic import color_svg_in_dark_mode, isolate_ids, optimize_svg, post_process_svg
from .settings import TikzViewSettings, load_settings, save_settings
from .source_block import ParsedBlock, parse_block, tidy_tikz_source

__version__ = "0.1.0"

__all__ = [
    "COMPLETION_EVENT",
    "ENGINE_ELEMENT_ID",
    "CompletionEvent",
    "EngineInstance",
    "EngineLifecycle",
    "EngineNotFoundError",
    "ParsedBlock",
    "RenderRequest",
    "RenderState",
    "RenderTimeoutError",
    "TikzCoordinator",
    "TikzViewError",
    "TikzViewSettings",
    "color_svg_in_dark_mode",
    "isolate_ids",
    "load_settings",
    "optimize_svg",
    "parse_block",
    "post_process_svg",
    "save_settings",
    "tidy_tikz_source",
]
