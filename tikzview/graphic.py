"""Rewrite SVG emitted by TikZJax so it can be inlined next to other diagrams.

TikZJax produces short identifiers ("a", "b", "g0-1", ...) that collide as
soon as two diagrams share a page, hard-coded black/white colors that vanish
on a dark background, and verbose markup that renders text misaligned in some
web views. The passes below run in this order for every rendered graphic:

1. ``isolate_ids``: give every identifier a fresh UUID and redirect its
   references.
2. ``color_svg_in_dark_mode``: swap literal black/white for theme colors
   (only when enabled in settings).
3. ``optimize_svg``: minimize with scour, leaving identifiers alone.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Callable, Iterator

from scour import scour

logger = logging.getLogger(__name__)

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"
CURRENT_COLOR = '"currentColor"'
BACKGROUND_COLOR = '"var(--background-primary)"'

# Characters allowed inside an XML name; anything else bounds an id token.
_NAME_CHARS = r"\w.:-"
# In CSS "." and ":" start a class or pseudo-class, so only these continue an id.
_CSS_IDENT_CHARS = r"\w-"

_ID_ATTR_PATTERN = rf"(?P<lead>(?<![{_NAME_CHARS}])id\s*=\s*)(?P<quote>[\"'])(?P<value>.*?)(?P=quote)"
# A start tag (or a whole <style> element); text between tags never matches.
_MARKUP_RE = re.compile(
    r"(?P<style_open><style\b[^>]*>)(?P<style_body>.*?)(?P<style_close></style\s*>)"
    r"|<[A-Za-z][^\s/>]*(?:\s+[^\s=/>]+\s*=\s*(?:\"[^\"]*\"|'[^']*'))*\s*/?>",
    re.DOTALL | re.IGNORECASE,
)
_ATTR_RE = re.compile(
    r"(?<=\s)(?P<name>[^\s=/>\"']+)(?P<eq>\s*=\s*)(?P<quote>[\"'])(?P<value>.*?)(?P=quote)",
    re.DOTALL,
)
_DARK_COLOR_RE = re.compile(r'"#000"|"black"')
_LIGHT_COLOR_RE = re.compile(r'"#fff"|"white"')
_SVG_OPEN_TAG_RE = re.compile(r"<svg\b[^>]*>", re.IGNORECASE)


def new_graphic_id() -> str:
    return str(uuid.uuid4())


def _token_alternation(old_ids) -> str:
    # Longest first so "g0-10" wins over "g0-1".
    return "|".join(re.escape(old) for old in sorted(old_ids, key=len, reverse=True))


def _start_tags(svg: str) -> Iterator[str]:
    for match in _MARKUP_RE.finditer(svg):
        yield match.group("style_open") or match.group(0)


def isolate_ids(
    svg: str,
    id_factory: Callable[[], str] = new_graphic_id,
    *,
    attributes_only: bool = True,
) -> str:
    """Replace every identifier in *svg* with a globally unique one.

    Mappings are computed up front and applied in one pass, so a freshly
    assigned identifier is never rewritten again. References are matched as
    whole tokens inside start-tag attribute values, and as ``#id`` selectors
    or ``url(#id)`` inside ``<style>`` bodies. Pass ``attributes_only=False``
    to also rewrite matching tokens in text nodes.
    """
    mapping: dict[str, str] = {}
    for tag in _start_tags(svg):
        for attr in _ATTR_RE.finditer(tag):
            old = attr.group("value")
            if attr.group("name") == "id" and old and old not in mapping:
                mapping[old] = id_factory()
    if not mapping:
        return svg

    seen: set[str] = set()

    def new_id_for(old: str) -> str:
        if old in seen:
            # Duplicate id attribute: references already point at the first one.
            logger.debug("duplicate svg id %r given its own identifier", old)
            return id_factory()
        seen.add(old)
        return mapping[old]

    def replace_token(match: re.Match) -> str:
        return mapping[match.group(0)]

    alternation = _token_alternation(mapping)
    css_ref = rf"(?<=#)(?:{alternation})(?![{_CSS_IDENT_CHARS}])"

    if not attributes_only:
        text_re = re.compile(
            rf"{_ID_ATTR_PATTERN}"
            rf"|(?P<ref>{css_ref})"
            rf"|(?<![{_NAME_CHARS}])(?P<token>{alternation})(?![{_NAME_CHARS}])",
            re.DOTALL,
        )

        def rewrite_text(match: re.Match) -> str:
            token = match.group("ref") or match.group("token")
            if token is not None:
                return mapping[token]
            old = match.group("value")
            if old not in mapping:
                return match.group(0)
            quote = match.group("quote")
            return f"{match.group('lead')}{quote}{new_id_for(old)}{quote}"

        return text_re.sub(rewrite_text, svg)

    value_re = re.compile(rf"(?<![{_NAME_CHARS}])(?:{alternation})(?![{_NAME_CHARS}])")
    css_ref_re = re.compile(css_ref)

    def rewrite_attribute(match: re.Match) -> str:
        name = match.group("name")
        value = match.group("value")
        if name == "id":
            value = new_id_for(value) if value in mapping else value
        else:
            value = value_re.sub(replace_token, value)
        quote = match.group("quote")
        return f"{name}{match.group('eq')}{quote}{value}{quote}"

    def rewrite_markup(match: re.Match) -> str:
        if match.group("style_open") is None:
            return _ATTR_RE.sub(rewrite_attribute, match.group(0))
        return (
            _ATTR_RE.sub(rewrite_attribute, match.group("style_open"))
            + css_ref_re.sub(replace_token, match.group("style_body"))
            + match.group("style_close")
        )

    return _MARKUP_RE.sub(rewrite_markup, svg)


def color_svg_in_dark_mode(svg: str) -> str:
    """Make black follow the text color and white follow the page background."""
    svg = _DARK_COLOR_RE.sub(CURRENT_COLOR, svg)
    return _LIGHT_COLOR_RE.sub(BACKGROUND_COLOR, svg)


def _scour_options():
    options = scour.sanitizeOptions()
    # Identifiers were just made unique; shortening them would bring back
    # "a", "b", ... collisions between diagrams on the same page.
    options.strip_ids = False
    options.shorten_ids = False
    options.keep_defs = True
    options.strip_xml_prolog = True
    options.strip_comments = True
    options.indent_type = "none"
    options.newlines = False
    return options


def _ensure_svg_namespaces(svg: str) -> str:
    """Declare the svg/xlink namespaces the HTML serializer may have dropped."""
    match = _SVG_OPEN_TAG_RE.search(svg)
    if match is None:
        return svg
    tag = match.group(0)
    extra = ""
    if "xmlns=" not in tag:
        extra += f' xmlns="{SVG_NS}"'
    if "xlink:" in svg and "xmlns:xlink=" not in tag:
        extra += f' xmlns:xlink="{XLINK_NS}"'
    if not extra:
        return svg
    closing = "/>" if tag.endswith("/>") else ">"
    patched = tag[: -len(closing)] + extra + closing
    return svg[: match.start()] + patched + svg[match.end():]


def optimize_svg(svg: str) -> str:
    """Minimize *svg* with scour; parse errors propagate to the caller."""
    return scour.scourString(_ensure_svg_namespaces(svg), _scour_options())


def post_process_svg(svg: str, settings) -> str:
    svg = isolate_ids(svg)
    if settings.invert_colors_in_dark_mode:
        svg = color_svg_in_dark_mode(svg)
    return optimize_svg(svg)
