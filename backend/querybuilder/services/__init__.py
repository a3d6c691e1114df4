"""Outbound service clients."""
