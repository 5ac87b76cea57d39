"""Split fenced tikz blocks into an inline style string and TikZ source."""

from __future__ import annotations

from dataclasses import dataclass

STYLE_MARKER = "%"
NBSP_ENTITY = "&nbsp;"


@dataclass(frozen=True)
class ParsedBlock:
    style_declarations: tuple[str, ...] = ()
    diagram_source: str = ""

    @property
    def style(self) -> str:
        """Inline style string applied to the wrapper element."""
        return "; ".join(self.style_declarations)


def _is_style_line(line: str) -> bool:
    return line.lstrip().startswith(STYLE_MARKER)


def _style_text(line: str) -> str:
    # Leading "%" plus any whitespace right after it.
    text = line.lstrip()[len(STYLE_MARKER):]
    return text.strip()


def tidy_tikz_source(source: str) -> str:
    """Normalize TikZ source so TikZJax accepts pasted code."""
    # Non-breaking space entities make the TeX engine error out.
    source = source.replace(NBSP_ENTITY, "")
    lines = [line.strip() for line in source.split("\n")]
    return "\n".join(line for line in lines if line)


def parse_block(raw: str) -> ParsedBlock:
    lines = raw.split("\n")

    code_start = len(lines)
    for index, line in enumerate(lines):
        if not _is_style_line(line):
            code_start = index
            break

    declarations: list[str] = []
    for line in lines[:code_start]:
        text = _style_text(line)
        if text:
            declarations.append(text)

    code_lines = lines[code_start:]
    return ParsedBlock(
        style_declarations=tuple(declarations),
        diagram_source=tidy_tikz_source("\n".join(code_lines)),
    )
