"""Billing API views."""
