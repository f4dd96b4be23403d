from django.urls import include, path, re_path
from django.views.generic.base import RedirectView

urlpatterns = [
    path("", include("inspector.urls")),
    # Redirects.
    re_path(r"^inspector/?$", RedirectView.as_view(url="/inspect/", permanent=True)),
    re_path(r"^inspect$", RedirectView.as_view(url="/inspect/", permanent=True)),
]
