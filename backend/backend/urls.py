"""URL configuration for the back-office project."""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('backoffice.urls')),
    path('api-auth/', include('rest_framework.urls')),
]
