"""
Style Extractor

Turns a snapshot of one element's computed style into a compact CSS rule:
only properties that differ from their implied default are kept, per-side
values are folded into shorthands, and colours are normalised to hex (or an
explicit rgba() form when translucent).

The in-page runtime (templates/inspector/runtime.js) applies the same rules
inside the browser; this module is the pure, server-side version over an
explicit `ComputedStyle` snapshot so the rules can be tested without a
rendering engine.
"""

import re
from dataclasses import dataclass, fields

from tinycss2.color3 import parse_color

SIDES = ("top", "right", "bottom", "left")
CORNERS = ("top_left", "top_right", "bottom_right", "bottom_left")

FLEX_DISPLAYS = ("flex", "inline-flex")

# Values treated as "nothing to say" for the simple keyword properties.
DEFAULT_VALUES = {
    "display": ("inline",),
    "position": ("static",),
    "overflow": ("visible",),
    "box_shadow": ("none",),
    "cursor": ("auto", "default"),
    "opacity": ("1",),
    "font_weight": ("400", "normal"),
    "line_height": ("normal",),
    "text_align": ("start",),
    "flex_direction": ("row",),
    "justify_content": ("normal", "flex-start"),
    "align_items": ("normal", "stretch"),
    "gap": ("normal", "0px"),
}

NUMBER_RE = re.compile(r"^\s*(-?\d*\.?\d+)")
ZERO_RE = re.compile(r"^-?0*\.?0+[a-z%]*$", re.I)
TIME_RE = re.compile(r"(-?\d*\.?\d+)(m?s)\b")


@dataclass
class ComputedStyle:
    """
    The computed-style properties the classifier and extractor consult.

    Values are kept as the strings getComputedStyle reports; the defaults are
    what a browser reports for an unstyled inline element.
    """

    display: str = "inline"
    position: str = "static"
    overflow: str = "visible"
    cursor: str = "auto"
    color: str = "rgb(0, 0, 0)"
    background_color: str = "rgba(0, 0, 0, 0)"
    font_family: str = ""
    font_size: str = ""
    font_weight: str = "400"
    line_height: str = "normal"
    text_align: str = "start"
    opacity: str = "1"
    box_shadow: str = "none"
    transition: str = "all 0s ease 0s"

    margin_top: str = "0px"
    margin_right: str = "0px"
    margin_bottom: str = "0px"
    margin_left: str = "0px"

    padding_top: str = "0px"
    padding_right: str = "0px"
    padding_bottom: str = "0px"
    padding_left: str = "0px"

    border_top_width: str = "0px"
    border_right_width: str = "0px"
    border_bottom_width: str = "0px"
    border_left_width: str = "0px"
    border_top_style: str = "none"
    border_right_style: str = "none"
    border_bottom_style: str = "none"
    border_left_style: str = "none"
    border_top_color: str = "rgb(0, 0, 0)"
    border_right_color: str = "rgb(0, 0, 0)"
    border_bottom_color: str = "rgb(0, 0, 0)"
    border_left_color: str = "rgb(0, 0, 0)"

    border_top_left_radius: str = "0px"
    border_top_right_radius: str = "0px"
    border_bottom_right_radius: str = "0px"
    border_bottom_left_radius: str = "0px"

    flex_direction: str = "row"
    justify_content: str = "normal"
    align_items: str = "normal"
    gap: str = "normal"

    @classmethod
    def from_mapping(cls, values):
        """
        Build a snapshot from CSS property names ("margin-top"), camelCase
        names ("marginTop") or field names ("margin_top"). Unknown keys are
        ignored; missing ones keep their defaults.
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in (values or {}).items():
            name = re.sub(r"(?<!^)([A-Z])", r"_\1", key).replace("-", "_").lower()
            if name in known and value is not None:
                kwargs[name] = str(value).strip()
        return cls(**kwargs)

    def side(self, prefix, side):
        return getattr(self, f"{prefix}_{side}")

    @property
    def padding_sum(self):
        return sum(px(self.side("padding", s)) for s in SIDES)

    @property
    def has_background(self):
        return not is_transparent(self.background_color)

    @property
    def corner_radius_sum(self):
        """Top-left plus bottom-right radius, as the button heuristic uses it."""
        return px(self.border_top_left_radius) + px(self.border_bottom_right_radius)


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def px(value):
    """parseFloat-style: leading number of `value`, or 0."""
    match = NUMBER_RE.match(value or "")
    return float(match.group(1)) if match else 0.0


def is_zero(value):
    value = (value or "").strip()
    return bool(value) and bool(ZERO_RE.match(value))


def is_transparent(value):
    value = (value or "").strip().lower()
    if not value or value == "transparent":
        return True
    rgba = parse_color(value)
    return rgba is not None and not isinstance(rgba, str) and rgba.alpha <= 0


def format_color(value):
    """
    Normalise a CSS colour.

    Opaque colours become lowercase #rrggbb, translucent ones rgba(r, g, b, a),
    fully transparent ones None. Anything tinycss2 cannot parse (newer colour
    functions, currentcolor) is passed through unchanged.
    """
    value = (value or "").strip()
    if not value:
        return None
    rgba = parse_color(value)
    if rgba is None or isinstance(rgba, str):
        return value
    if rgba.alpha <= 0:
        return None
    r, g, b = (int(round(channel * 255)) for channel in rgba[:3])
    if rgba.alpha >= 1:
        return f"#{r:02x}{g:02x}{b:02x}"
    return f"rgba({r}, {g}, {b}, {round(rgba.alpha, 3):g})"


def collapse_box(top, right, bottom, left):
    """Fold four side values into the shortest equivalent shorthand."""
    if right == left:
        if top == bottom:
            if top == right:
                return top
            return f"{top} {right}"
        return f"{top} {right} {bottom}"
    return f"{top} {right} {bottom} {left}"


def _is_default(name, value):
    value = (value or "").strip()
    return not value or value in DEFAULT_VALUES.get(name, ())


def _is_default_transition(value):
    value = (value or "").strip()
    if not value or value == "none":
        return True
    times = TIME_RE.findall(value)
    return bool(times) and all(float(number) == 0 for number, _unit in times)


# ---------------------------------------------------------------------------
# Declaration builders
# ---------------------------------------------------------------------------


def box_declaration(style, prefix):
    values = [style.side(prefix, s).strip() or "0px" for s in SIDES]
    if all(is_zero(v) for v in values):
        return None
    return (prefix, collapse_box(*values))


def _border_side(style, side):
    width = style.side("border", f"{side}_width").strip()
    border_style = style.side("border", f"{side}_style").strip().lower()
    color = style.side("border", f"{side}_color")
    if border_style in ("", "none", "hidden") or not width or is_zero(width):
        return None
    color = format_color(color)
    if color is None:
        return None
    return f"{width} {border_style} {color}"


def border_declarations(style):
    sides = [_border_side(style, s) for s in SIDES]
    if sides[0] is not None and all(s == sides[0] for s in sides):
        return [("border", sides[0])]
    return [
        (f"border-{side}", value)
        for side, value in zip(SIDES, sides)
        if value is not None
    ]


def radius_declaration(style):
    corners = [getattr(style, f"border_{c}_radius").strip() or "0px" for c in CORNERS]
    if all(is_zero(c) for c in corners):
        return None
    if all(c == corners[0] for c in corners):
        return ("border-radius", corners[0])
    return ("border-radius", " ".join(corners))


def flex_declarations(style):
    if style.display.strip() not in FLEX_DISPLAYS:
        return []
    declarations = []
    for name in ("flex_direction", "justify_content", "align_items", "gap"):
        value = getattr(style, name)
        if not _is_default(name, value):
            declarations.append((name.replace("_", "-"), value.strip()))
    return declarations


def extract_declarations(style):
    """Return the ordered (property, value) list for one element."""
    declarations = []

    def keyword(name):
        value = getattr(style, name)
        if not _is_default(name, value):
            declarations.append((name.replace("_", "-"), value.strip()))

    keyword("display")
    keyword("position")

    for prefix in ("margin", "padding"):
        box = box_declaration(style, prefix)
        if box:
            declarations.append(box)

    background = format_color(style.background_color)
    if background:
        declarations.append(("background-color", background))
    color = format_color(style.color)
    if color:
        declarations.append(("color", color))

    if style.font_family.strip():
        declarations.append(("font-family", style.font_family.strip()))
    if style.font_size.strip():
        declarations.append(("font-size", style.font_size.strip()))
    keyword("font_weight")
    keyword("line_height")
    keyword("text_align")

    declarations.extend(border_declarations(style))
    radius = radius_declaration(style)
    if radius:
        declarations.append(radius)

    keyword("box_shadow")
    keyword("opacity")
    keyword("overflow")
    keyword("cursor")
    if not _is_default_transition(style.transition):
        declarations.append(("transition", style.transition.strip()))

    declarations.extend(flex_declarations(style))
    return declarations


def render_css_block(selector, declarations):
    """Render `selector {\\n  prop: value;\\n...\\n}`."""
    lines = [f"{selector} {{"]
    lines.extend(f"  {prop}: {value};" for prop, value in declarations)
    lines.append("}")
    return "\n".join(lines)


def build_css_block(selector, style):
    return render_css_block(selector, extract_declarations(style))
