"""Markdown to HTML rendering with TikZ fences and MathJax math."""

from __future__ import annotations

import html
import json
import os
from pathlib import Path

from markdown_it import MarkdownIt
from mdit_py_plugins.dollarmath import dollarmath_plugin

from .coordinator import placeholder_html
from .engine import first_existing_file
from .source_block import parse_block

TIKZ_FENCE_INFOS = {"tikz"}
MATHJAX_ENV_VAR = "TIKZVIEW_MATHJAX_JS"
MATHJAX_CDN_URL = "https://cdn.jsdelivr.net/npm/mathjax@3/es5/tex-svg.js"

# TikZ sources live in <script type="text/tikz">, which MathJax must not touch.
_MATHJAX_CONFIG = {
    "tex": {"inlineMath": [["$", "$"]], "displayMath": [["$$", "$$"]]},
    "svg": {"fontCache": "global"},
    "options": {"skipHtmlTags": ["script", "noscript", "style", "textarea", "pre", "code"]},
}


def find_mathjax_script() -> Path | None:
    env_value = os.environ.get(MATHJAX_ENV_VAR, "").strip()
    candidates = [Path(env_value).expanduser()] if env_value else []
    vendor = Path(__file__).resolve().parent.parent / "vendor" / "mathjax" / "es5" / "tex-svg.js"
    candidates.extend([vendor, Path("/usr/share/javascript/mathjax/es5/tex-svg.js")])
    return first_existing_file(candidates)


def mathjax_head(sources: list[str]) -> str:
    """Configure MathJax and load it from the first source that answers."""
    return f"""<script>
    window.MathJax = {json.dumps(_MATHJAX_CONFIG)};
    (function load(sources) {{
      if (!sources.length) {{
        console.error("tikzview: no MathJax source could be loaded");
        return;
      }}
      const script = document.createElement("script");
      script.src = sources[0];
      script.onerror = () => load(sources.slice(1));
      document.head.appendChild(script);
    }})({json.dumps(sources)});
  </script>"""


class MarkdownRenderer:
    """Converts markdown to an HTML page whose tikz fences TikZJax can render."""

    def __init__(self) -> None:
        self._md = MarkdownIt(
            "commonmark",
            {"html": True, "linkify": True, "typographer": True},
        ).enable("table").enable("strikethrough")
        # Parse $...$ / $$...$$ before emphasis rules can mangle TeX.
        self._md.use(dollarmath_plugin)

        default_fence = self._md.renderer.rules["fence"]

        def custom_math_inline(tokens, idx, options, env):
            env["has_math"] = True
            return f"${html.escape(tokens[idx].content)}$"

        def custom_math_block(tokens, idx, options, env):
            env["has_math"] = True
            math_body = (tokens[idx].content or "").strip("\n")
            return f'<div class="tikzview-math-block">$$\n{html.escape(math_body)}\n$$</div>\n'

        def custom_fence(tokens, idx, options, env):
            token = tokens[idx]
            info = token.info.strip().split(maxsplit=1)[0].lower() if token.info else ""
            if info not in TIKZ_FENCE_INFOS:
                return default_fence(tokens, idx, options, env)

            line_attrs = ""
            if token.map and len(token.map) == 2:
                line_attrs = f' data-md-line-start="{token.map[0]}" data-md-line-end="{token.map[1]}"'
            resolver = env.get("tikz_resolver")
            if callable(resolver):
                return resolver(token.content, line_attrs)
            return placeholder_html(parse_block(token.content), line_attrs=line_attrs)

        self._md.renderer.rules["fence"] = custom_fence
        self._md.renderer.rules["math_inline"] = custom_math_inline
        self._md.renderer.rules["math_block"] = custom_math_block

    def mathjax_sources(self) -> list[str]:
        local = find_mathjax_script()
        sources = [local.as_uri()] if local is not None else []
        return sources + [MATHJAX_CDN_URL]

    def _render(self, markdown_text: str, tikz_resolver=None) -> tuple[str, dict]:
        env = {"tikz_resolver": tikz_resolver} if callable(tikz_resolver) else {}
        return self._md.render(markdown_text, env), env

    def render_body(self, markdown_text: str, tikz_resolver=None) -> str:
        return self._render(markdown_text, tikz_resolver)[0]

    def render_document(self, markdown_text: str, title: str, tikz_resolver=None) -> str:
        # The resolver lets the owning window register each fence as a
        # render request before the page is loaded.
        body, env = self._render(markdown_text, tikz_resolver)
        math_head = mathjax_head(self.mathjax_sources()) if env.get("has_math") else ""
        return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8"/>
  <meta name="viewport" content="width=device-width, initial-scale=1"/>
  <title>{html.escape(title)}</title>
  <style>
    :root {{
      color-scheme: light dark;
      --fg: #1f2937;
      --background-primary: #f9fafb;
      --code-bg: #e5e7eb;
      --border: #d1d5db;
      --error: #dc2626;
    }}
    @media (prefers-color-scheme: dark) {{
      :root {{
        --fg: #e5e7eb;
        --background-primary: #111827;
        --code-bg: #1f2937;
        --border: #374151;
        --error: #f87171;
      }}
    }}
    body {{
      margin: 0 auto;
      max-width: 980px;
      padding: 1rem 1.4rem 4rem;
      background: var(--background-primary);
      color: var(--fg);
      font-family: "Noto Sans", "DejaVu Sans", sans-serif;
      line-height: 1.55;
    }}
    pre, code {{
      background: var(--code-bg);
      font-family: "Noto Sans Mono", "DejaVu Sans Mono", monospace;
    }}
    pre {{
      border: 1px solid var(--border);
      border-radius: 6px;
      padding: 0.8rem;
      overflow: auto;
    }}
    th, td {{
      border: 1px solid var(--border);
      padding: 0.4rem 0.6rem;
    }}
    .tikzview-fence {{
      margin: 1rem 0;
      text-align: center;
      color: var(--fg);
    }}
    .tikzview-fence svg {{
      max-width: 100%;
      height: auto;
    }}
    .tikzview-error {{
      display: inline-block;
      border: 1px solid var(--error);
      border-radius: 6px;
      color: var(--error);
      padding: 0.5rem 0.8rem;
    }}
  </style>
  {math_head}
</head>
<body>
<main>{body}</main>
</body>
</html>
"""
