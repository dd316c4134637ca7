"""Audit trail of payment and order events."""
