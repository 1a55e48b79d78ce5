"""Venue resource availability, temporal holds and reconciliation service."""
