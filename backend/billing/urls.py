"""URL routes for billing endpoints."""
from django.urls import path

from .views.payments import StripeConnectView

app_name = "billing"

urlpatterns = [
    path("stripe-connect/", StripeConnectView.as_view(), name="stripe-connect"),
]
