from django.urls import path
from django.views.generic import RedirectView

from . import views

app_name = "inspector"

urlpatterns = [
    path("", RedirectView.as_view(url="/inspect/", permanent=False)),
    path("inspect/", views.inspector_page, name="inspector_page"),
    path("inspect/proxy/", views.inspect_proxy, name="proxy"),
    # Legacy API path.
    path("api/proxy", views.inspect_proxy, name="proxy_api"),
]
