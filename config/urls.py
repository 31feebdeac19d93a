from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import include, path

from accounts.views import signup

urlpatterns = [
    path("admin/", admin.site.urls),
    path("accounts/signup/", signup, name="signup"),
    path("accounts/", include("django.contrib.auth.urls")),
    path("", include("freight.urls")),
]

# Serve signature uploads in development.
if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)


# admin customisation
admin.site.site_header = "Road Runner Express"
admin.site.site_title = "Road Runner Express"
admin.site.index_title = "Dispatch Portal"
