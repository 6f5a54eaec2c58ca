import re

from sandbox_proxy.transform.context import Theme
from sandbox_proxy.transform.markup import best_effort, has_injection, inject_into_head, style_block

_INVERT = "filter: invert(1) hue-rotate(180deg) !important;"

THEME_CSS = {
    Theme.DARK: f"""
html {{ {_INVERT} }}
img, video, iframe, svg, embed, object {{ {_INVERT} }}
[style*="background-image"] {{ {_INVERT} }}
""",
    Theme.LIGHT: """
html { filter: brightness(1.1) contrast(0.9) !important; }
body { background-color: #ffffff !important; color: #333333 !important; }
""",
    Theme.AUTO: f"""
@media (prefers-color-scheme: dark) {{
  html {{ {_INVERT} }}
  img, video, iframe, svg {{ {_INVERT} }}
}}
""",
}

MOBILE_VIEWPORT = (
    '<meta name="viewport" content="width=device-width, initial-scale=1.0, '
    'maximum-scale=1.0, user-scalable=no">'
)

MOBILE_CSS = """
* { box-sizing: border-box !important; }
body { margin: 0 !important; padding: 0 !important; font-size: 16px !important; line-height: 1.4 !important; }
img { max-width: 100% !important; height: auto !important; }
table { width: 100% !important; table-layout: fixed !important; }
.desktop-only { display: none !important; }
input, button, select, textarea { font-size: 16px !important; min-height: 44px !important; }
"""

PERFORMANCE_CSS = """
* { -webkit-font-smoothing: antialiased; -moz-osx-font-smoothing: grayscale; }
"""

_VIEWPORT_META = re.compile(r"""<meta[^>]*name\s*=\s*['"]?viewport['"]?[^>]*>""", re.IGNORECASE)
_COMMENT = re.compile(r"<!--(?!\[if)[\s\S]*?-->")
# Blocks whose whitespace is significant
_PRESERVED = re.compile(r"(<(pre|textarea|script|style)\b[^>]*>[\s\S]*?</\2\s*>)", re.IGNORECASE)
_INLINE_SCRIPT = re.compile(r"<script(?![^>]*\bsrc\s*=)([^>]*)>([\s\S]*?)</script\s*>", re.IGNORECASE)
_SCRIPT_TYPE = re.compile(r"""\btype\s*=\s*['"]?([^'"\s>]+)""", re.IGNORECASE)
_CONSOLE_LOG = re.compile(r"console\.log\([^)]*\);?")
# String literals are matched so comment markers inside them survive
_JS_COMMENT = re.compile(
    r"""("(?:\\.|[^"\\\n])*"|'(?:\\.|[^'\\\n])*'|`(?:\\.|[^`\\])*`)|/\*[\s\S]*?\*/|(?<![:\\\w])//[^\n]*"""
)
_LAZY_IMG = re.compile(r"<img\b(?![^>]*\bloading\s*=)", re.IGNORECASE)

_JS_TYPES = {"", "text/javascript", "application/javascript", "module"}
_INVISIBLE_BLOCKS = {"script", "style"}


@best_effort
def inject_theme(html: str, theme: Theme) -> str:
    theme = Theme(theme)
    if theme == Theme.NONE or has_injection(html, "theme"):
        return html
    return inject_into_head(html, style_block("theme", THEME_CSS[theme]))


@best_effort
def optimize_mobile(html: str) -> str:
    """Force a fixed mobile viewport and responsive layout rules."""
    if has_injection(html, "mobile"):
        return html
    if _VIEWPORT_META.search(html):
        html = _VIEWPORT_META.sub(MOBILE_VIEWPORT, html)
    else:
        html = inject_into_head(html, MOBILE_VIEWPORT, at_start=True)
    return inject_into_head(html, style_block("mobile", MOBILE_CSS))


def _minify_segment(segment: str) -> str:
    segment = re.sub(r">\s+<", "><", segment)
    return re.sub(r"\s{2,}", " ", segment)


def minify_html(html: str) -> str:
    """
    Collapse inter-tag whitespace outside preserved blocks. Whitespace that
    separates a script or style block from a neighbouring tag is dropped too.
    """
    pieces = _PRESERVED.split(html)
    out = []
    # split() yields text, block, tag name, text, block, tag name, ...
    for index in range(0, len(pieces), 3):
        segment = _minify_segment(pieces[index])
        if index and pieces[index - 1].lower() in _INVISIBLE_BLOCKS and segment[:1].isspace():
            stripped = segment.lstrip()
            if not stripped or stripped.startswith("<"):
                segment = stripped
        if index + 2 < len(pieces) and pieces[index + 2].lower() in _INVISIBLE_BLOCKS and segment[-1:].isspace():
            stripped = segment.rstrip()
            if not stripped or stripped.endswith(">"):
                segment = stripped
        out.append(segment)
        if index + 1 < len(pieces):
            out.append(pieces[index + 1])
    return "".join(out).strip()


def strip_script_noise(code: str) -> str:
    code = _CONSOLE_LOG.sub("", code)
    return _JS_COMMENT.sub(lambda match: match.group(1) or "", code)


def _optimize_scripts(html: str) -> str:
    def _replace(match: re.Match) -> str:
        attrs, code = match.group(1), match.group(2)
        script_type = _SCRIPT_TYPE.search(attrs)
        if script_type and script_type.group(1).lower() not in _JS_TYPES:
            return match.group(0)
        return f"<script{attrs}>{strip_script_noise(code)}</script>"

    return _INLINE_SCRIPT.sub(_replace, html)


@best_effort
def optimize(html: str, minify: bool = False, remove_comments: bool = False, optimize_js: bool = False) -> str:
    """
    Size and rendering optimisations for the optimize endpoint.

    Comment removal keeps IE conditional comments. Minification leaves
    ``pre``, ``textarea``, ``script`` and ``style`` contents alone, and
    script optimisation only touches inline JavaScript.
    """
    if remove_comments:
        html = _COMMENT.sub("", html)
    if optimize_js:
        html = _optimize_scripts(html)
    if minify:
        html = minify_html(html)
    html = _LAZY_IMG.sub('<img loading="lazy"', html)
    if not has_injection(html, "performance"):
        html = inject_into_head(html, style_block("performance", PERFORMANCE_CSS))
    return html
