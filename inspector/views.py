import logging
from urllib.parse import urlencode

from django.http import HttpResponse
from django.shortcuts import render
from django.urls import reverse
from django.views.decorators.cache import cache_control
from django.views.decorators.clickjacking import xframe_options_sameorigin
from django.views.decorators.http import require_GET, require_http_methods

from .decorators import trim_memory_after
from .errors import InspectorError
from .fetcher_utils import fetch_html
from .forms import InspectForm
from .rewriter_utils import rewrite_html

logger = logging.getLogger(__name__)

# Generic message for every 500-class failure; details only go to the log.
PROXY_FAILED = "Proxy failed"


def _no_store(response):
    # Extra anti-caching headers
    response["Cache-Control"] = "no-cache, no-store, must-revalidate"
    response["Pragma"] = "no-cache"
    response["Expires"] = "0"
    return response


def _plain(message, status):
    return _no_store(
        HttpResponse(message, status=status, content_type="text/plain; charset=utf-8")
    )


def _bind_form(request):
    """Bind the target URL from ?u= (or its ?url= alias)."""
    data = request.GET.copy()
    if not data.get("u") and data.get("url"):
        data["u"] = data["url"]
    return InspectForm(data)


# Page Inspector: retrieval endpoint.
# Force memory trim after large pages.
@trim_memory_after
# Never let a proxied page be stored by the browser or an intermediary.
@cache_control(no_cache=True, must_revalidate=True, no_store=True)
# The host page frames this response.
@xframe_options_sameorigin
@require_http_methods(["GET", "HEAD"])
def inspect_proxy(request):
    """
    Fetch ?u=<url>, rewrite it for framing, and return it with the inspector
    runtime injected.

    400 for bad or blocked targets and redirect problems, 415 for non-HTML
    targets, 500 for network, timeout and unexpected failures.
    """
    form = _bind_form(request)
    if not form.is_valid():
        return _plain(form.first_error(), 400)

    url = form.cleaned_data["u"]
    try:
        result = fetch_html(url)
        body = rewrite_html(result.body, result.final_url)
    except InspectorError as exc:
        if exc.is_client_error:
            logger.info("Inspect request for %s refused: %s", url, exc.message)
            return _plain(exc.message, exc.status_code)
        logger.error("Proxy failed for %s: %s", url, exc.message)
        return _plain(PROXY_FAILED, 500)
    except Exception:
        logger.exception("Unexpected proxy failure for %s", url)
        return _plain(PROXY_FAILED, 500)

    return _no_store(HttpResponse(body, content_type="text/html; charset=utf-8"))


# Page Inspector: host page that frames the proxy and talks to the runtime.
@cache_control(no_cache=True, must_revalidate=True, no_store=True)
@require_GET
def inspector_page(request):
    form = InspectForm()
    frame_src = None

    if request.GET.get("u") or request.GET.get("url"):
        form = _bind_form(request)
        if form.is_valid():
            frame_src = reverse("inspector:proxy") + "?" + urlencode(
                {"u": form.cleaned_data["u"]}
            )

    return render(
        request,
        "inspector/inspector.html",
        {"form": form, "frame_src": frame_src},
    )
