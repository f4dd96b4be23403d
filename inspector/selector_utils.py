"""
Selector Synthesizer

Given one element of a parsed document, produce a selector that identifies
it, trying progressively less readable forms:

1. identity       `#id`, when that id is unique in the document;
2. semantic       `.cta-button` / `.button` for button-like elements, a
                  human-friendly label rather than a uniqueness guarantee;
3. structural     tag + up to two readable classes, then an :nth-of-type
                  qualifier, then combinations with up to four ancestors;
4. path           a readable ancestor path, best effort, not guaranteed unique.

This is the server-side version of the algorithm shipped to the browser in
templates/inspector/runtime.js. It works on BeautifulSoup trees and probes
uniqueness with soupsieve, which is what `soup.select` uses.
"""

import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup
from bs4.element import Tag
from soupsieve import SelectorSyntaxError

from .style_utils import ComputedStyle, extract_declarations, render_css_block

# ── Bounds ────────────────────────────────────────────────────────────────────
MAX_ANCESTOR_DEPTH = 4
MAX_PATH_HOPS = 10
MAX_SEMANTIC_CLASSES = 2

# ── Hashy-class heuristic ─────────────────────────────────────────────────────
MAX_CLASS_LENGTH = 24
HASHY_CLASS_RE = re.compile(r"__|--|[0-9]|[A-Z].*[A-Z]")

# ── CTA heuristics ────────────────────────────────────────────────────────────
CTA_VERBS = (
    "start", "get", "try", "sign", "sign up", "buy", "shop", "learn", "join",
    "download", "create", "book", "add", "subscribe", "continue", "choose",
    "begin", "explore", "build", "launch",
)
CLASS_TOKENS = ("btn", "button", "cta", "primary", "action")

CTA_TEXT_RE = re.compile(
    r"(^|\b)(" + "|".join(CTA_VERBS) + r")(\b|!|\?|\.|\s|$)", re.I
)
CLASS_TOKEN_RE = re.compile("(" + "|".join(CLASS_TOKENS) + ")", re.I)

BUTTON_MIN_PADDING = 16
BUTTON_MIN_RADIUS = 6

CTA_BUTTON_SELECTOR = ".cta-button"
BUTTON_SELECTOR = ".button"

# Count returned when a probe selector cannot be evaluated.
UNMATCHABLE = 9999


@dataclass
class SelectorResult:
    selector_min: str
    selector_pretty: str
    selector_path: str
    semantic: bool = False
    declarations: list = field(default_factory=list)
    css_block: str = ""


# ---------------------------------------------------------------------------
# Escaping and class filtering
# ---------------------------------------------------------------------------


def css_escape(value):
    """Escape an identifier the way the CSSOM `CSS.escape()` does."""
    value = str(value)
    out = []
    for index, ch in enumerate(value):
        code = ord(ch)
        if code == 0:
            out.append("�")
        elif 0x01 <= code <= 0x1F or code == 0x7F:
            out.append(f"\\{code:x} ")
        elif index == 0 and ch.isdigit() and ch.isascii():
            out.append(f"\\{code:x} ")
        elif index == 1 and ch.isdigit() and ch.isascii() and value[0] == "-":
            out.append(f"\\{code:x} ")
        elif index == 0 and ch == "-" and len(value) == 1:
            out.append("\\-")
        elif code >= 0x80 or ch in "-_" or (ch.isascii() and ch.isalnum()):
            out.append(ch)
        else:
            out.append("\\" + ch)
    return "".join(out)


def is_hashy(class_name):
    """True when a class name looks machine-generated."""
    return bool(HASHY_CLASS_RE.search(class_name)) or len(class_name) > MAX_CLASS_LENGTH


def class_list(el):
    classes = el.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    return list(classes)


def semantic_classes(el):
    """Up to two readable class names, shortest first."""
    readable = [c for c in class_list(el) if not is_hashy(c)]
    return sorted(readable, key=len)[:MAX_SEMANTIC_CLASSES]


def tag_and_classes(el):
    return el.name.lower() + "".join("." + css_escape(c) for c in semantic_classes(el))


def nth_of_type(el):
    return 1 + sum(
        1 for sib in el.previous_siblings if isinstance(sib, Tag) and sib.name == el.name
    )


def _is_element(node):
    return isinstance(node, Tag) and not isinstance(node, BeautifulSoup)


def _document(el):
    root = el
    while root.parent is not None:
        root = root.parent
    return root


def count_matches(document, selector):
    """How many elements `selector` matches; malformed selectors never count as unique."""
    try:
        return len(document.select(selector))
    except (SelectorSyntaxError, ValueError, NotImplementedError):
        return UNMATCHABLE


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------


def identity_selector(el, document=None):
    element_id = el.get("id")
    if not element_id:
        return None
    document = document or _document(el)
    selector = "#" + css_escape(element_id)
    if count_matches(document, selector) == 1:
        return selector
    return None


def looks_button_like(el, style=None):
    if not _is_element(el):
        return False
    if el.name.lower() == "button":
        return True
    if el.get("role") == "button":
        return True
    if CLASS_TOKEN_RE.search(" ".join(class_list(el))):
        return True

    style = style or ComputedStyle()
    roomy = style.padding_sum >= BUTTON_MIN_PADDING and (
        style.cursor == "pointer" or style.display != "inline"
    )
    return roomy or style.has_background or style.corner_radius_sum >= BUTTON_MIN_RADIUS


def looks_cta(el):
    text = el.get_text().strip().lower()
    if CTA_TEXT_RE.search(text):
        return True
    return bool(CLASS_TOKEN_RE.search(" ".join(class_list(el))))


def suggest_selector(el, style=None):
    """Semantic label for button-like elements, else None."""
    if not looks_button_like(el, style):
        return None
    if looks_cta(el):
        return CTA_BUTTON_SELECTOR
    return BUTTON_SELECTOR


def full_path(el, max_hops=MAX_PATH_HOPS):
    """Readable ancestor path, stopping at `max_hops` or the first id."""
    parts = []
    cur = el
    hops = 0
    while _is_element(cur) and hops < max_hops:
        element_id = cur.get("id")
        part = cur.name.lower()
        if element_id:
            part += "#" + css_escape(element_id)
        part += "".join("." + css_escape(c) for c in semantic_classes(cur))

        parent = cur.parent
        if _is_element(parent):
            if len(parent.find_all(cur.name, recursive=False)) > 1:
                part += f":nth-of-type({nth_of_type(cur)})"

        parts.insert(0, part)
        if element_id:
            break
        cur = parent
        hops += 1
    return " > ".join(parts)


def unique_selector(el, max_depth=MAX_ANCESTOR_DEPTH):
    """
    Shortest structural selector matching only `el`, falling back to
    `full_path` when the ancestor walk runs out.
    """
    if not _is_element(el):
        return ""
    document = _document(el)

    selector = identity_selector(el, document)
    if selector:
        return selector

    base = tag_and_classes(el)
    if count_matches(document, base) == 1:
        return base

    own_nth = f":nth-of-type({nth_of_type(el)})"
    if count_matches(document, base + own_nth) == 1:
        return base + own_nth

    cur = el.parent
    depth = 0
    while _is_element(cur) and depth < max_depth:
        cur_id = cur.get("id")
        parent_part = "#" + css_escape(cur_id) if cur_id else tag_and_classes(cur)

        candidates = (
            f"{parent_part} > {base}",
            f"{parent_part} > {base}{own_nth}",
            f"{parent_part}:nth-of-type({nth_of_type(cur)}) > {base}",
        )
        for candidate in candidates:
            if count_matches(document, candidate) == 1:
                return candidate

        cur = cur.parent
        depth += 1

    return full_path(el)


def pretty_selector(selector):
    """One segment per line, each indented two spaces deeper."""
    parts = re.split(r"\s*>\s*", selector)
    return " >\n".join(("  " * i) + part for i, part in enumerate(parts))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def synthesize(el, style=None):
    """
    Run every tier for `el` and build its CSS block.

    `style` is the element's ComputedStyle snapshot; without one the
    style-based part of the button heuristic sees an unstyled element.
    """
    style = style or ComputedStyle()

    selector = identity_selector(el)
    semantic = False
    if selector is None:
        selector = suggest_selector(el, style)
        semantic = selector is not None
    if selector is None:
        selector = unique_selector(el)

    result = SelectorResult(
        selector_min=selector,
        selector_pretty=pretty_selector(selector),
        selector_path=full_path(el),
        semantic=semantic,
    )
    result.declarations = extract_declarations(style)
    result.css_block = render_css_block(selector, result.declarations)
    return result


def describe_element(el, style=None):
    """The `select` message payload for `el`, minus its layout rectangle."""
    result = synthesize(el, style)
    return {
        "tag": el.name.lower(),
        "id": el.get("id") or "",
        "classes": class_list(el),
        "selectorMin": result.selector_min,
        "selectorPretty": result.selector_pretty,
        "selectorPath": result.selector_path,
        "cssBlock": result.css_block,
    }
