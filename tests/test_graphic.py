"""Tests for SVG id isolation, dark-mode recoloring, and scour minimization."""

from __future__ import annotations

import itertools
import re
from xml.parsers.expat import ExpatError

import pytest

from tests.helpers import SAMPLE_SVG
from tikzview.graphic import (
    color_svg_in_dark_mode,
    isolate_ids,
    optimize_svg,
    post_process_svg,
)
from tikzview.settings import TikzViewSettings

_ID_RE = re.compile(r"""\bid=["']([^"']*)["']""")
_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")


def _counter_ids(prefix="tikz"):
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


def _ids(svg):
    return _ID_RE.findall(svg)


# ---------------------------------------------------------------------------
# isolate_ids
# ---------------------------------------------------------------------------


def test_isolate_rewrites_id_and_reference_to_one_fresh_uuid():
    result = isolate_ids('<svg><circle id="a"/><use href="#a"/></svg>')
    (new_id,) = _ids(result)
    assert _UUID_RE.match(new_id)
    assert result.count(new_id) == 2
    assert f'href="#{new_id}"' in result
    assert '"a"' not in result and "#a" not in result


def test_isolate_handles_xlink_and_url_references():
    svg = (
        '<svg><defs><clipPath id="cp0"><rect/></clipPath><path id="g0-1"/></defs>'
        '<g clip-path="url(#cp0)"><use xlink:href="#g0-1"/></g></svg>'
    )
    result = isolate_ids(svg, _counter_ids())
    assert result == (
        '<svg><defs><clipPath id="tikz-1"><rect/></clipPath><path id="tikz-2"/></defs>'
        '<g clip-path="url(#tikz-1)"><use xlink:href="#tikz-2"/></g></svg>'
    )


def test_isolate_matches_whole_tokens_only():
    svg = (
        '<svg><path id="a"/><path id="ab"/><path id="g0-1"/><path id="g0-10"/>'
        '<use href="#ab"/><use href="#g0-10"/><g class="a-b" fill="black" data-x="bab"/></svg>'
    )
    result = isolate_ids(svg, _counter_ids())
    assert 'href="#tikz-2"' in result
    assert 'href="#tikz-4"' in result
    assert 'class="a-b"' in result
    assert 'fill="black"' in result
    assert 'data-x="bab"' in result


def test_isolate_does_not_chain_assigned_ids():
    # The factory hands out values equal to other old ids on purpose.
    fresh = iter(["b", "c"])
    svg = '<svg><path id="a"/><path id="b"/><use href="#a"/><use href="#b"/></svg>'
    result = isolate_ids(svg, lambda: next(fresh))
    assert result == '<svg><path id="b"/><path id="c"/><use href="#b"/><use href="#c"/></svg>'


def test_isolate_gives_duplicate_ids_distinct_values():
    svg = '<svg><rect id="a"/><rect id="a"/><use href="#a"/></svg>'
    result = isolate_ids(svg)
    ids = _ids(result)
    assert len(ids) == 2
    assert len(set(ids)) == 2
    assert f'href="#{ids[0]}"' in result


def test_isolate_rewrites_style_element_references():
    svg = '<svg><style>#a { fill: red; }</style><circle id="a"/></svg>'
    result = isolate_ids(svg, _counter_ids())
    assert result == '<svg><style>#tikz-1 { fill: red; }</style><circle id="tikz-1"/></svg>'


def test_isolate_rewrites_compound_css_selectors():
    svg = '<svg><style>#a.x{fill:red} #a:hover{fill:blue} .a{}</style><circle id="a"/></svg>'
    result = isolate_ids(svg, _counter_ids())
    assert result == (
        '<svg><style>#tikz-1.x{fill:red} #tikz-1:hover{fill:blue} .a{}</style><circle id="tikz-1"/></svg>'
    )


def test_isolate_leaves_text_nodes_alone_by_default():
    svg = '<svg><text id="a">a</text><use href="#a"/></svg>'
    assert isolate_ids(svg, _counter_ids()) == '<svg><text id="tikz-1">a</text><use href="#tikz-1"/></svg>'


def test_isolate_ignores_attribute_lookalikes_in_text():
    svg = '<svg><text id="a">href="#a" id="a"</text></svg>'
    result = isolate_ids(svg, _counter_ids())
    assert result == '<svg><text id="tikz-1">href="#a" id="a"</text></svg>'


def test_isolate_can_rewrite_every_textual_occurrence():
    svg = '<svg><text id="a">a</text><use href="#a"/></svg>'
    result = isolate_ids(svg, _counter_ids(), attributes_only=False)
    assert result == '<svg><text id="tikz-1">tikz-1</text><use href="#tikz-1"/></svg>'


def test_isolate_without_ids_is_identity():
    svg = '<svg><circle r="1"/></svg>'
    assert isolate_ids(svg) == svg


def test_isolated_graphics_do_not_collide():
    first = isolate_ids(SAMPLE_SVG)
    second = isolate_ids(SAMPLE_SVG)
    combined = _ids(first + second)
    assert len(combined) == 4
    assert len(set(combined)) == 4


def test_isolate_leaves_no_dangling_references():
    result = isolate_ids(SAMPLE_SVG)
    ids = set(_ids(result))
    references = re.findall(r'href="#([^"]+)"', result)
    assert references
    assert set(references) <= ids


# ---------------------------------------------------------------------------
# color_svg_in_dark_mode
# ---------------------------------------------------------------------------


def test_recolor_rewrites_quoted_black_and_white():
    svg = '<g stroke="#000" fill="black"><rect fill="#fff" stroke="white"/></g>'
    assert color_svg_in_dark_mode(svg) == (
        '<g stroke="currentColor" fill="currentColor">'
        '<rect fill="var(--background-primary)" stroke="var(--background-primary)"/></g>'
    )


@pytest.mark.parametrize(
    "svg",
    [
        '<rect fill="#000000"/>',
        '<rect fill="Black"/>',
        "<rect fill='black'/>",
        '<rect style="fill:black"/>',
        '<rect fill="#ff0000" stroke="blue"/>',
    ],
)
def test_recolor_ignores_other_spellings(svg):
    assert color_svg_in_dark_mode(svg) == svg


# ---------------------------------------------------------------------------
# optimize_svg / post_process_svg
# ---------------------------------------------------------------------------


def test_optimize_keeps_isolated_ids():
    isolated = isolate_ids(SAMPLE_SVG, _counter_ids())
    result = optimize_svg(isolated)
    assert "<?xml" not in result
    assert 'id="tikz-1"' in result
    assert 'id="tikz-2"' in result
    assert "#tikz-1" in result


def test_optimize_adds_missing_namespaces():
    result = optimize_svg('<svg width="10" height="10"><path id="p" d="M0 0L1 1"/><use xlink:href="#p"/></svg>')
    assert 'id="p"' in result
    assert "#p" in result


def test_optimize_propagates_parse_errors():
    with pytest.raises(ExpatError):
        optimize_svg("<svg><g></svg>")


def test_post_process_without_inversion_keeps_colors_and_ids():
    result = post_process_svg(SAMPLE_SVG, TikzViewSettings(invert_colors_in_dark_mode=False))
    assert "currentColor" not in result
    assert "var(--background-primary)" not in result
    ids = _ids(result)
    assert len(ids) == 2
    assert all(_UUID_RE.match(value) for value in ids)
    assert 'id="a"' not in result


def test_post_process_with_inversion_uses_theme_colors():
    result = post_process_svg(SAMPLE_SVG, TikzViewSettings(invert_colors_in_dark_mode=True))
    assert "currentColor" in result
    assert "var(--background-primary)" in result
