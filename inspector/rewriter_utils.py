"""
Response Rewriter

Pure string transformations applied to a fetched page before it is handed
back to the browser:

1. drop any <meta http-equiv="content-security-policy"> (transport headers are
   not forwarded, so the embedded directive is the only one that could block
   the injected runtime);
2. inject the inspector runtime as late as possible;
3. add a <base href> so relative links and assets resolve against the
   original site rather than this server.

The markup is edited in place with regular expressions instead of being
re-serialised, so the page the user inspects is byte-for-byte the page that
was fetched apart from these three edits.
"""

import html
import json
import re
from functools import lru_cache
from urllib.parse import urlsplit

from django.template.loader import render_to_string

from . import selector_utils, style_utils

CSP_META_RE = re.compile(
    r"<meta\b[^>]*?\bhttp-equiv\s*=\s*([\"']?)\s*content-security-policy\s*\1[^>]*>",
    re.I,
)
BASE_TAG_RE = re.compile(r"<base\b", re.I)
HEAD_OPEN_RE = re.compile(r"<head\b[^>]*>", re.I)
HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.I)
BODY_CLOSE_RE = re.compile(r"</body\s*>", re.I)

RUNTIME_TEMPLATE = "inspector/runtime.js"


# ---------------------------------------------------------------------------
# Individual steps
# ---------------------------------------------------------------------------


def strip_csp_meta(markup):
    """Remove every embedded content-security-policy meta tag."""
    return CSP_META_RE.sub("", markup)


def build_base_href(final_url):
    """Origin plus the directory part of the path: https://a.com/x/y.html -> https://a.com/x/"""
    parts = urlsplit(final_url)
    directory = parts.path[: parts.path.rfind("/") + 1] or "/"
    return f"{parts.scheme}://{parts.netloc}{directory}"


def insert_base_tag(markup, base_href):
    """Add <base href> right after <head>, unless the page already has a base tag."""
    if BASE_TAG_RE.search(markup):
        return markup
    tag = f'<base href="{html.escape(base_href, quote=True)}">'
    match = HEAD_OPEN_RE.search(markup)
    if match:
        return f"{markup[:match.end()]}\n{tag}{markup[match.end():]}"
    return f"<!doctype html><head>{tag}</head>{markup}"


def inject_runtime(markup, script):
    """Insert `script` before </body>, else before </head>, else at the end."""
    for pattern in (BODY_CLOSE_RE, HEAD_CLOSE_RE):
        match = pattern.search(markup)
        if match:
            return f"{markup[:match.start()]}{script}\n{markup[match.start():]}"
    return markup + script


# ---------------------------------------------------------------------------
# Runtime rendering
# ---------------------------------------------------------------------------


def runtime_config():
    """Constants shared by the Python selector/style code and the browser runtime."""
    return {
        "hashyClassPattern": selector_utils.HASHY_CLASS_RE.pattern,
        "maxClassLength": selector_utils.MAX_CLASS_LENGTH,
        "maxSemanticClasses": selector_utils.MAX_SEMANTIC_CLASSES,
        "maxAncestorDepth": selector_utils.MAX_ANCESTOR_DEPTH,
        "maxPathHops": selector_utils.MAX_PATH_HOPS,
        "ctaVerbs": list(selector_utils.CTA_VERBS),
        "classTokens": list(selector_utils.CLASS_TOKENS),
        "buttonMinPadding": selector_utils.BUTTON_MIN_PADDING,
        "buttonMinRadius": selector_utils.BUTTON_MIN_RADIUS,
        "ctaButtonSelector": selector_utils.CTA_BUTTON_SELECTOR,
        "buttonSelector": selector_utils.BUTTON_SELECTOR,
        "flexDisplays": list(style_utils.FLEX_DISPLAYS),
        "defaultValues": {
            name.replace("_", "-"): list(values)
            for name, values in style_utils.DEFAULT_VALUES.items()
        },
        "styleProperties": [
            name.replace("_", "-") for name in style_utils.ComputedStyle.__dataclass_fields__
        ],
    }


@lru_cache(maxsize=1)
def render_runtime_script():
    """The <script> block injected into every proxied page."""
    # "<" is escaped so no value can close the script element early.
    config_json = json.dumps(runtime_config(), sort_keys=True).replace("<", "\\u003c")
    source = render_to_string(RUNTIME_TEMPLATE, {"config_json": config_json})
    return f'<script data-page-inspector="runtime">\n{source}</script>'


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def rewrite_html(markup, final_url, runtime_script=None):
    """Apply every rewriting step to a fetched page."""
    if runtime_script is None:
        runtime_script = render_runtime_script()
    markup = strip_csp_meta(markup)
    markup = inject_runtime(markup, runtime_script)
    return insert_base_tag(markup, build_base_href(final_url))
