"""Billing services: Stripe helpers and the seller payout queue."""
