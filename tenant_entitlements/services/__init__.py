"""Billing event intake and sync."""
