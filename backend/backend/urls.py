"""
URL configuration for backend project.

Routes include administration, API modules, health checks, and metrics endpoints.
"""
import os

from django.contrib import admin
from django.http import HttpResponse
from django.urls import include, path
from prometheus_client import REGISTRY, CollectorRegistry, generate_latest, multiprocess

# Use the multiprocess collector only when PROMETHEUS_MULTIPROC_DIR is set (production)
if os.environ.get('PROMETHEUS_MULTIPROC_DIR'):
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY


def health_check(request):
    return HttpResponse("OK", content_type="text/plain")


def metrics(request):
    payload = generate_latest(registry)
    return HttpResponse(payload, content_type="text/plain; version=0.0.4")


urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('auctions.urls', namespace='auctions')),
    path('api/', include('bidcoins.urls', namespace='bidcoins')),
    path('api/billing/', include('billing.urls', namespace='billing')),
    path('health/', health_check, name='health_check'),
    path('metrics/', metrics, name='metrics'),
]
